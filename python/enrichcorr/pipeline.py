"""
Pathway Correlation Pipeline for EnrichCorr

Main orchestrator that ties together all framework components:
expression input -> identifier mapping -> gene set catalog -> GSVA scores
(cached) -> Spearman correlation with BH correction -> report and plot.

Nothing is written to the output directory until every stage has succeeded.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import matplotlib.pyplot as plt
import pandas as pd

from .cache import ScoreCache, score_cache_key
from .config import PipelineConfig
from .correlation import CorrelationRecord, correlate_scores, records_to_frame
from .errors import NoScorableGeneSetsError
from .expression import (
    align_samples,
    drop_duplicate_samples,
    filter_expression,
    load_expression,
    load_sample_metadata,
    reference_vector,
    select_samples,
)
from .gsva import run_gsva
from .id_mapper import GeneIdMapper
from .repro import ReproducibilityLogger
from .report import export_results_csv, filter_results, plot_correlations, save_figure
from .sources import GeneSetCatalog, GeneSetSourceManager

logger = logging.getLogger("EnrichCorr.Pipeline")

N_STEPS = 9


@dataclass
class PipelineResult:
    """Everything a run produced"""
    scores: pd.DataFrame
    records: List[CorrelationRecord]
    table: pd.DataFrame
    top_table: pd.DataFrame
    reference: pd.Series
    metadata: Dict
    warnings: List[str]
    cache_hit: bool = False
    artifacts: Dict[str, Path] = field(default_factory=dict)


class CorrelationPipeline:
    """
    Complete pathway correlation pipeline.

    Orchestrates:
    1. Sample selection from metadata
    2. Expression loading and sample alignment
    3. Gene ID mapping
    4. Reference vector extraction
    5. Expression filtering
    6. Gene set catalog loading
    7. GSVA scoring (or cache lookup)
    8. Correlation and BH correction
    9. Report, plot and reproducibility logging
    """

    def __init__(
        self,
        config: PipelineConfig,
        id_mapper: Optional[GeneIdMapper] = None,
        source_manager: Optional[GeneSetSourceManager] = None,
        score_cache: Optional[ScoreCache] = None
    ):
        self.config = config
        self.id_mapper = id_mapper or GeneIdMapper(
            target=config.id_namespace,
            use_mygene=config.use_mygene,
            species=config.species,
            cache_dir=config.cache_dir / 'geneid',
        )
        self.source_manager = source_manager or GeneSetSourceManager(config.cache_dir / 'genesets')
        self.score_cache = score_cache or ScoreCache(config.cache_dir / 'scores')
        self.repro_logger = ReproducibilityLogger()
        self.warnings: List[str] = []

    def _step(self, n: int, message: str):
        logger.info(f"Step {n}/{N_STEPS}: {message}")

    def _warn(self, message: str):
        self.warnings.append(message)
        self.repro_logger.add_warning(message)

    def _select_samples(self) -> Optional[List[str]]:
        cfg = self.config
        if cfg.metadata_path is None:
            return None
        metadata = load_sample_metadata(str(cfg.metadata_path), cfg.sample_id_column)
        filters = {}
        if cfg.lineages:
            filters[cfg.lineage_column] = cfg.lineages
        if cfg.subtypes:
            filters[cfg.subtype_column] = cfg.subtypes
        selected = select_samples(metadata, filters)
        if not selected:
            self._warn("No samples match the metadata filters")
        return selected

    def _reference_label(self, matrix: pd.DataFrame) -> str:
        gene = self.config.reference_gene.strip()
        if gene in matrix.index:
            return gene
        return self.id_mapper.resolve(gene)

    def load_catalog(self) -> GeneSetCatalog:
        """Load the configured gene set catalog in the mapper's namespace"""
        cfg = self.config
        catalog = self.source_manager.load_catalog(
            cfg.gene_set_source,
            category=cfg.msigdb_category,
            subcategory=cfg.msigdb_subcategory,
            version=cfg.msigdb_version,
            gmt_path=cfg.gmt_path,
            library=cfg.enrichr_library,
        )
        # Downloaded collections are symbol based; local GMT files are taken as given
        if cfg.gene_set_source != 'gmt' and catalog.namespace != cfg.id_namespace:
            catalog = catalog.map_members(self.id_mapper)
        if cfg.gene_set_keywords:
            catalog = catalog.filter(cfg.gene_set_keywords)
            logger.info(f"Keyword filter kept {len(catalog)} gene sets")
        return catalog

    def compute_scores(self, matrix: pd.DataFrame, catalog: GeneSetCatalog) -> Tuple[pd.DataFrame, bool]:
        """
        GSVA scores for the matrix, served from the cache when possible.

        Returns:
            Tuple of (score matrix, whether it came from the cache)
        """
        cfg = self.config
        params = cfg.engine_parameters()
        key = score_cache_key(matrix, catalog.hash, **params)

        if not cfg.force_recompute:
            cached = self.score_cache.get(key)
            if cached is not None:
                return cached, True
        else:
            logger.info("Forced recompute: skipping score cache lookup")

        scores = run_gsva(
            matrix,
            catalog,
            kcdf=cfg.kcdf,
            min_size=cfg.min_set_size,
            max_size=cfg.max_set_size,
            tau=cfg.tau,
            mx_diff=cfg.mx_diff,
            n_jobs=cfg.n_jobs,
        )
        self.score_cache.put(key, scores)
        return scores, False

    def run(self, write_outputs: bool = True) -> PipelineResult:
        """
        Run the complete pipeline.

        Args:
            write_outputs: write tables, figures and logs to the output directory

        Returns:
            PipelineResult

        Raises:
            EmptyInputError, NoScorableGeneSetsError, DimensionMismatchError,
            IdentifierMappingError: fatal input problems; nothing is written
        """
        cfg = self.config
        self.warnings = []

        self._step(1, "Selecting samples")
        selected = self._select_samples()

        self._step(2, "Loading expression data")
        expression = load_expression(str(cfg.expression_path), orientation=cfg.expression_orientation)
        expression, duplicates = drop_duplicate_samples(expression)
        if duplicates:
            self._warn(
                f"{len(duplicates)} sample IDs appear more than once in the expression data; "
                f"kept the first column of each ({', '.join(duplicates[:5])})"
            )
        if selected is not None:
            alignment = align_samples(expression, selected)
            if alignment.missing:
                self._warn(
                    f"{len(alignment.missing)}/{len(selected)} selected samples have no expression data"
                )
            expression = alignment.matrix

        self._step(3, "Mapping gene identifiers")
        mapped, mapping_report = self.id_mapper.map_index(expression)
        if mapping_report.unmapped_count:
            self._warn(
                f"Dropped {mapping_report.unmapped_count}/{mapping_report.input_count} genes "
                f"without a {mapping_report.target_type} identifier"
            )

        self._step(4, f"Extracting reference vector for {cfg.reference_gene}")
        reference_gene = self._reference_label(mapped)
        reference = reference_vector(mapped, reference_gene, standardize=cfg.standardize_reference)

        self._step(5, "Filtering expression matrix")
        matrix, filter_report = filter_expression(mapped)
        dropped = filter_report.empty_genes + filter_report.incomplete_genes + filter_report.constant_genes
        if dropped or filter_report.empty_samples:
            self._warn(
                f"Filtering removed {dropped} genes and {len(filter_report.empty_samples)} samples"
            )

        self._step(6, "Loading gene set catalog")
        catalog = self.load_catalog()
        scorable, size_warnings = catalog.restrict_to(matrix.index, cfg.min_set_size, cfg.max_set_size)
        if not scorable:
            raise NoScorableGeneSetsError(
                f"None of {len(catalog)} gene sets has at least {cfg.min_set_size} genes in the matrix"
            )
        if size_warnings:
            self._warn(
                f"{len(size_warnings)}/{len(catalog)} gene sets had fewer than {cfg.min_set_size} genes "
                f"in the matrix (or exceeded the maximum size) and were not scored"
            )

        self._step(7, "Scoring gene sets (GSVA)")
        scores, cache_hit = self.compute_scores(matrix, scorable)

        self._step(8, "Correlating scores with reference")
        records = correlate_scores(scores, reference, fdr_method=cfg.fdr_method, n_jobs=cfg.n_jobs)
        table = records_to_frame(records)
        top_table = filter_results(table, alpha=cfg.alpha, keywords=cfg.name_keywords, top_n=cfg.top_n)

        self._step(9, "Writing report")
        self._record_metadata(catalog, matrix, reference, filter_report, mapping_report, table, top_table)

        result = PipelineResult(
            scores=scores,
            records=records,
            table=table,
            top_table=top_table,
            reference=reference,
            metadata=self.repro_logger.get_metadata().to_dict(),
            warnings=list(self.warnings),
            cache_hit=cache_hit,
        )
        if write_outputs:
            result.artifacts = self.write_outputs(result, reference_gene)
        return result

    def _record_metadata(self, catalog, matrix, reference, filter_report, mapping_report, table, top_table):
        cfg = self.config
        self.repro_logger.set_gene_set_info(catalog.source, catalog.version, catalog.hash, len(catalog))
        self.repro_logger.set_parameters(
            **cfg.engine_parameters(),
            fdr_method=cfg.fdr_method,
            alpha=cfg.alpha,
            top_n=cfg.top_n,
            name_keywords=list(cfg.name_keywords),
            id_namespace=cfg.id_namespace,
            standardize_reference=cfg.standardize_reference,
        )
        self.repro_logger.set_input_summary(
            expression_file=str(cfg.expression_path),
            reference_gene=cfg.reference_gene,
            genes=int(matrix.shape[0]),
            samples=int(matrix.shape[1]),
            reference_samples=int(len(reference)),
        )
        self.repro_logger.set_mapping_report(mapping_report.to_dict())
        self.repro_logger.set_filter_report(filter_report.to_dict())
        positive = table[table['group'] == 'positive']
        negative = table[table['group'] == 'negative']
        self.repro_logger.set_output_summary(
            scored_gene_sets=int(len(table)),
            significant_gene_sets=int((table['p_value'] < cfg.alpha).sum()),
            reported_gene_sets=int(len(top_table)),
            top_positive=positive['gene_set'].iloc[0] if len(positive) else None,
            top_negative=negative['gene_set'].iloc[-1] if len(negative) else None,
        )

    def write_outputs(self, result: PipelineResult, reference_label: str) -> Dict[str, Path]:
        """Write tables, figures and logs; returns artifact name -> path"""
        cfg = self.config
        out = Path(cfg.output_dir)
        out.mkdir(parents=True, exist_ok=True)
        stem = out / cfg.output_prefix

        artifacts = {
            'table': export_results_csv(result.table, Path(f"{stem}_all.csv")),
            'top_table': export_results_csv(result.top_table, Path(f"{stem}_top.csv")),
        }

        fig = plot_correlations(result.top_table, reference_label)
        try:
            for path in save_figure(fig, Path(f"{stem}_barplot"), cfg.image_formats, cfg.dpi):
                artifacts[f"figure_{path.suffix.lstrip('.')}"] = path
        finally:
            plt.close(fig)

        session_path = Path(f"{stem}_session.txt")
        self.repro_logger.write_session_log(session_path)
        artifacts['session_log'] = session_path

        metadata_path = Path(f"{stem}_metadata.json")
        self.repro_logger.export_json(metadata_path)
        artifacts['metadata'] = metadata_path

        if result.warnings:
            logger.warning(f"Run finished with {len(result.warnings)} warning(s):")
            for w in result.warnings:
                logger.warning(f"  - {w}")
        return artifacts

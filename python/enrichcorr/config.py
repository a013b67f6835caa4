"""
Pipeline Configuration for EnrichCorr

A single immutable settings object, built once at start-up (usually from a
YAML file) and handed to each pipeline stage.
"""

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .gsva import KCDF_METHODS
from .expression import ORIENTATIONS
from .id_mapper import TARGET_TYPES

GENE_SET_SOURCES = ('msigdb', 'enrichr', 'gmt')

_PATH_FIELDS = ('expression_path', 'metadata_path', 'gmt_path', 'cache_dir', 'output_dir')
_TUPLE_FIELDS = ('lineages', 'subtypes', 'gene_set_keywords', 'name_keywords', 'image_formats')


@dataclass(frozen=True)
class PipelineConfig:
    """Settings for one correlation run"""

    # Inputs
    expression_path: Path
    reference_gene: str
    metadata_path: Optional[Path] = None
    expression_orientation: str = 'samples_as_rows'
    sample_id_column: str = 'ModelID'
    lineage_column: str = 'OncotreeLineage'
    lineages: Tuple[str, ...] = ()
    subtype_column: str = 'OncotreeSubtype'
    subtypes: Tuple[str, ...] = ()

    # Reference vector
    standardize_reference: bool = False

    # Gene set catalog
    gene_set_source: str = 'msigdb'
    msigdb_category: str = 'h'
    msigdb_subcategory: Optional[str] = None
    msigdb_version: Optional[str] = None
    enrichr_library: Optional[str] = None
    gmt_path: Optional[Path] = None
    # Only score gene sets whose name contains one of these (case-insensitive)
    gene_set_keywords: Tuple[str, ...] = ()

    # Identifier mapping
    id_namespace: str = 'symbol'
    use_mygene: bool = True
    species: str = 'human'

    # Enrichment engine
    # 'gaussian' and 'ecdf' compare each gene across samples, so rescaling one
    # sample can change scores; 'rank' orders genes by raw value within each
    # sample, so scores survive any monotone transform of a single sample
    kcdf: str = 'gaussian'
    min_set_size: int = 5
    max_set_size: Optional[int] = None
    tau: float = 1.0
    mx_diff: bool = True
    n_jobs: Optional[int] = None

    # Correlation and report
    fdr_method: str = 'fdr_bh'
    alpha: float = 0.05
    name_keywords: Tuple[str, ...] = ()
    top_n: int = 20
    image_formats: Tuple[str, ...] = ('pdf', 'png')
    dpi: int = 300

    # Cache and outputs
    cache_dir: Path = field(default_factory=lambda: Path.home() / '.enrichcorr' / 'cache')
    force_recompute: bool = False
    output_dir: Path = Path('results')
    output_prefix: str = 'pathway_correlation'
    log_level: str = 'INFO'

    def __post_init__(self):
        for name in _PATH_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                object.__setattr__(self, name, Path(value))
        for name in _TUPLE_FIELDS:
            value = getattr(self, name)
            if isinstance(value, str):
                value = (value,)
            object.__setattr__(self, name, tuple(value or ()))
        self.validate()

    def validate(self):
        """Raise ValueError for settings that cannot produce a run"""
        if not self.reference_gene or not str(self.reference_gene).strip():
            raise ValueError("reference_gene is required")
        if self.expression_orientation not in ORIENTATIONS:
            raise ValueError(f"expression_orientation must be one of {ORIENTATIONS}")
        if self.gene_set_source not in GENE_SET_SOURCES:
            raise ValueError(f"gene_set_source must be one of {GENE_SET_SOURCES}")
        if self.gene_set_source == 'gmt' and self.gmt_path is None:
            raise ValueError("gene_set_source 'gmt' requires gmt_path")
        if self.gene_set_source == 'enrichr' and not self.enrichr_library:
            raise ValueError("gene_set_source 'enrichr' requires enrichr_library")
        if self.id_namespace not in TARGET_TYPES:
            raise ValueError(f"id_namespace must be one of {TARGET_TYPES}")
        if self.kcdf not in KCDF_METHODS:
            raise ValueError(f"kcdf must be one of {KCDF_METHODS}")
        if self.min_set_size < 1:
            raise ValueError("min_set_size must be at least 1")
        if self.max_set_size is not None and self.max_set_size < self.min_set_size:
            raise ValueError("max_set_size must not be smaller than min_set_size")
        if self.n_jobs is not None and self.n_jobs < 1:
            raise ValueError("n_jobs must be positive or null")
        if not 0 < self.alpha <= 1:
            raise ValueError("alpha must be in (0, 1]")
        if self.top_n < 1:
            raise ValueError("top_n must be at least 1")
        if not self.image_formats:
            raise ValueError("image_formats must name at least one format")

    @classmethod
    def from_dict(cls, settings: Mapping[str, Any]) -> 'PipelineConfig':
        """Build a config from a plain mapping; unknown keys are rejected"""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(settings) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**dict(settings))

    @classmethod
    def from_yaml(cls, file_path: str) -> 'PipelineConfig':
        """
        Load a config from a YAML file.

        Relative paths in the file are resolved against the file's directory.
        """
        path = Path(file_path)
        with open(path, 'r', encoding='utf-8') as f:
            settings = yaml.safe_load(f) or {}
        if not isinstance(settings, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")

        for name in _PATH_FIELDS:
            value = settings.get(name)
            if value is not None and not Path(value).expanduser().is_absolute():
                settings[name] = path.parent / value
            elif value is not None:
                settings[name] = Path(value).expanduser()
        return cls.from_dict(settings)

    def with_overrides(self, **changes: Any) -> 'PipelineConfig':
        """Copy of this config with some settings replaced"""
        return dataclasses.replace(self, **changes)

    def engine_parameters(self) -> Dict[str, Any]:
        """Settings that determine the score matrix (used for cache keys)"""
        return {
            'kcdf': self.kcdf,
            'min_size': self.min_set_size,
            'max_size': self.max_set_size,
            'tau': self.tau,
            'mx_diff': self.mx_diff,
        }

    def to_dict(self) -> Dict[str, Any]:
        d = dataclasses.asdict(self)
        for name in _PATH_FIELDS:
            if d[name] is not None:
                d[name] = str(d[name])
        for name in _TUPLE_FIELDS:
            d[name] = list(d[name])
        return d

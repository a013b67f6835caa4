"""
Expression and Sample Metadata Input for EnrichCorr

Loads a cell-line expression table and its sample metadata, selects samples
by lineage/subtype, joins the two on explicit sample identifiers and cleans
the matrix so it can be scored.
"""

import logging
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from .errors import EmptyInputError, IdentifierMappingError

logger = logging.getLogger("EnrichCorr.Expression")

ORIENTATIONS = ('samples_as_rows', 'genes_as_rows')


@dataclass
class SampleAlignment:
    """Result of joining the expression matrix to a list of sample IDs"""
    matrix: pd.DataFrame
    matched: List[str]
    missing: List[str]

    def summary(self) -> Dict:
        return {
            'matched': len(self.matched),
            'missing': len(self.missing),
            'missing_ids': self.missing[:10],
        }


@dataclass
class FilterReport:
    """Counts of genes and samples removed while cleaning the matrix"""
    input_genes: int
    input_samples: int
    duplicate_samples: List[str] = field(default_factory=list)
    empty_samples: List[str] = field(default_factory=list)
    empty_genes: int = 0
    incomplete_genes: int = 0
    constant_genes: int = 0
    output_genes: int = 0
    output_samples: int = 0

    def to_dict(self) -> Dict:
        d = asdict(self)
        d['duplicate_samples'] = self.duplicate_samples[:10]
        d['empty_samples'] = self.empty_samples[:10]
        return d


def _infer_sep(path: Path, sep: Optional[str]) -> str:
    if sep is not None:
        return sep
    return '\t' if path.suffix.lower() in ('.tsv', '.txt', '.tab') else ','


def load_expression(
    file_path: str,
    orientation: str = 'samples_as_rows',
    index_col: int = 0,
    sep: Optional[str] = None
) -> pd.DataFrame:
    """
    Load an expression table as a genes x samples matrix.

    Args:
        file_path: Path to a delimited file with a header row
        orientation: 'samples_as_rows' (DepMap layout) or 'genes_as_rows'
        index_col: Column holding the row labels
        sep: Delimiter; inferred from the extension when None

    Returns:
        DataFrame with genes as rows and samples as columns
    """
    if orientation not in ORIENTATIONS:
        raise ValueError(f"Unknown orientation '{orientation}'. Expected one of {ORIENTATIONS}")

    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Expression file not found: {path}")

    df = pd.read_csv(path, sep=_infer_sep(path, sep), index_col=index_col)
    df.index = df.index.astype(str).str.strip()
    df.columns = df.columns.astype(str).str.strip()
    df = df.apply(pd.to_numeric, errors='coerce')

    if orientation == 'samples_as_rows':
        df = df.T

    df.index.name = 'gene'
    df.columns.name = 'sample'
    logger.info(f"Loaded expression: {df.shape[0]} genes x {df.shape[1]} samples from {path.name}")
    return df


def load_sample_metadata(
    file_path: str,
    sample_column: str,
    sep: Optional[str] = None
) -> pd.DataFrame:
    """
    Load sample metadata indexed by sample identifier.

    Rows without an identifier are dropped; duplicated identifiers keep the
    first occurrence.
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Sample metadata file not found: {path}")

    meta = pd.read_csv(path, sep=_infer_sep(path, sep), dtype=str)
    if sample_column not in meta.columns:
        raise ValueError(f"Sample column '{sample_column}' not found in {path.name}")

    meta = meta.dropna(subset=[sample_column])
    meta[sample_column] = meta[sample_column].str.strip()
    dupes = meta[sample_column].duplicated()
    if dupes.any():
        logger.warning(f"Dropping {int(dupes.sum())} duplicated sample IDs in metadata")
        meta = meta[~dupes]
    meta = meta.set_index(sample_column)
    logger.info(f"Loaded metadata for {len(meta)} samples from {path.name}")
    return meta


def select_samples(metadata: pd.DataFrame, filters: Mapping[str, Iterable[str]]) -> List[str]:
    """
    Select sample IDs whose metadata matches every filter.

    Args:
        metadata: Frame indexed by sample ID
        filters: column -> accepted values (case-insensitive); empty value
            lists are ignored

    Returns:
        Matching sample IDs in metadata order
    """
    mask = pd.Series(True, index=metadata.index)
    for column, values in filters.items():
        accepted = {str(v).strip().lower() for v in values}
        if not accepted:
            continue
        if column not in metadata.columns:
            raise ValueError(f"Metadata column '{column}' not found")
        mask &= metadata[column].fillna('').str.strip().str.lower().isin(accepted)

    selected = list(metadata.index[mask])
    logger.info(f"Selected {len(selected)}/{len(metadata)} samples by metadata filters")
    return selected


def align_samples(expression: pd.DataFrame, sample_ids: Iterable[str]) -> SampleAlignment:
    """
    Join the expression matrix to sample IDs by identity.

    Returns:
        SampleAlignment with the matrix restricted to matched samples (in the
        requested order) and the IDs with no expression column
    """
    requested = list(dict.fromkeys(str(s) for s in sample_ids))
    available = set(expression.columns)
    matched = [s for s in requested if s in available]
    missing = [s for s in requested if s not in available]
    if missing:
        logger.warning(f"{len(missing)}/{len(requested)} selected samples have no expression data")
    return SampleAlignment(matrix=expression.loc[:, matched], matched=matched, missing=missing)


def drop_duplicate_samples(expression: pd.DataFrame) -> Tuple[pd.DataFrame, List[str]]:
    """
    Keep the first column of every repeated sample ID.

    Returns:
        Tuple of (matrix with unique sample labels, repeated IDs in column order)
    """
    repeated = expression.columns.duplicated(keep='first')
    if not repeated.any():
        return expression, []
    duplicates = list(dict.fromkeys(str(s) for s in expression.columns[repeated]))
    logger.warning(
        f"Dropping {int(repeated.sum())} repeated columns for sample IDs: "
        f"{', '.join(duplicates[:10])}"
    )
    return expression.loc[:, ~repeated], duplicates


def filter_expression(expression: pd.DataFrame) -> Tuple[pd.DataFrame, FilterReport]:
    """
    Clean a genes x samples matrix for scoring.

    Removes, in order: repeated sample columns (the first is kept), samples
    with no values, genes with no values, genes with any remaining missing
    value, and genes that are constant across samples.

    Raises:
        EmptyInputError: nothing usable remains
    """
    report = FilterReport(input_genes=expression.shape[0], input_samples=expression.shape[1])
    matrix, report.duplicate_samples = drop_duplicate_samples(expression)
    matrix = matrix.replace([np.inf, -np.inf], np.nan)

    empty_samples = matrix.columns[matrix.isna().all(axis=0)]
    report.empty_samples = [str(s) for s in empty_samples]
    matrix = matrix.drop(columns=empty_samples)

    empty_genes = matrix.isna().all(axis=1)
    report.empty_genes = int(empty_genes.sum())
    matrix = matrix.loc[~empty_genes]

    incomplete = matrix.isna().any(axis=1)
    report.incomplete_genes = int(incomplete.sum())
    matrix = matrix.loc[~incomplete]

    if matrix.shape[1] > 1:
        constant = matrix.nunique(axis=1) <= 1
        report.constant_genes = int(constant.sum())
        matrix = matrix.loc[~constant]

    if matrix.index.has_duplicates:
        raise ValueError("Expression matrix has duplicated gene labels; map identifiers first")

    report.output_genes, report.output_samples = matrix.shape
    if matrix.shape[0] == 0 or matrix.shape[1] == 0:
        raise EmptyInputError(
            f"No usable expression data after filtering "
            f"({matrix.shape[0]} genes x {matrix.shape[1]} samples)"
        )

    logger.info(
        f"Filtered expression: {report.output_genes}/{report.input_genes} genes, "
        f"{report.output_samples}/{report.input_samples} samples kept"
    )
    return matrix.astype(float), report


def reference_vector(expression: pd.DataFrame, gene: str, standardize: bool = False) -> pd.Series:
    """
    Expression of one gene across samples.

    Args:
        expression: genes x samples matrix
        gene: Gene label in the matrix namespace
        standardize: z-score the values (mean 0, sd 1)

    Raises:
        IdentifierMappingError: gene is not in the matrix
    """
    if gene not in expression.index:
        raise IdentifierMappingError(gene)

    values = expression.loc[gene]
    if isinstance(values, pd.DataFrame):
        values = values.iloc[0]
    values = values.astype(float).dropna()

    if standardize:
        sd = values.std(ddof=1)
        values = (values - values.mean()) / sd if sd > 0 else values - values.mean()

    values.name = gene
    return values

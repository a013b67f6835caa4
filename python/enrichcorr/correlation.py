"""
Rank Correlation of Enrichment Scores for EnrichCorr

Correlates every gene set's per-sample enrichment scores against a reference
vector (Spearman) and applies Benjamini-Hochberg correction across all gene
sets in a single pass.
"""

import logging
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy.stats import spearmanr
from statsmodels.stats.multitest import multipletests

from .errors import DimensionMismatchError
from .gsva import default_n_jobs

logger = logging.getLogger("EnrichCorr.Correlation")

# Fewer paired observations than this leaves the correlation undefined
MIN_PAIRED_SAMPLES = 3

RESULT_COLUMNS = ['gene_set', 'rho', 'p_value', 'p_adjusted', 'n', 'group']


@dataclass
class CorrelationRecord:
    """Correlation of one gene set's scores with the reference vector"""

    gene_set: str
    rho: float
    p_value: float
    n: int
    p_adjusted: float = 1.0

    @property
    def group(self) -> str:
        if self.rho > 0:
            return 'positive'
        if self.rho < 0:
            return 'negative'
        return 'none'

    def to_dict(self) -> Dict:
        d = asdict(self)
        d['group'] = self.group
        return d


def correlate(reference: pd.Series, row: pd.Series) -> CorrelationRecord:
    """
    Spearman correlation between a reference vector and one score row.

    Values are paired by sample identity (index labels); samples that are
    missing or non-finite on either side are dropped. With fewer than three
    pairs, or a constant side, the correlation is recorded as rho=0, p=1.

    Args:
        reference: sample -> reference value
        row: sample -> enrichment score; its name is used as the gene set name

    Returns:
        CorrelationRecord with p_adjusted left at 1.0
    """
    paired = pd.concat([reference, row], axis=1, join='inner', keys=['ref', 'score'])
    paired = paired.replace([np.inf, -np.inf], np.nan).dropna()
    n = int(len(paired))
    name = str(row.name)

    if n < MIN_PAIRED_SAMPLES:
        return CorrelationRecord(gene_set=name, rho=0.0, p_value=1.0, n=n)

    with warnings.catch_warnings():
        # Constant input warnings are handled below via the NaN result
        warnings.simplefilter("ignore")
        rho, p_value = spearmanr(paired['ref'].to_numpy(), paired['score'].to_numpy())

    if not np.isfinite(rho) or not np.isfinite(p_value):
        return CorrelationRecord(gene_set=name, rho=0.0, p_value=1.0, n=n)

    return CorrelationRecord(
        gene_set=name,
        rho=float(np.clip(rho, -1.0, 1.0)),
        p_value=float(np.clip(p_value, 0.0, 1.0)),
        n=n,
    )


def fdr_correction(p_values: Sequence[float], method: str = 'fdr_bh') -> List[float]:
    """
    Adjust p-values for multiple testing.

    Args:
        p_values: raw p-values
        method: statsmodels multipletests method (default Benjamini-Hochberg)

    Returns:
        Adjusted p-values in the input order
    """
    if len(p_values) == 0:
        return []
    _, adjusted, _, _ = multipletests(np.asarray(p_values, dtype=float), method=method)
    return [float(p) for p in adjusted]


def sort_records(records: List[CorrelationRecord]) -> List[CorrelationRecord]:
    """Order by rho descending; equal rho falls back to gene set name."""
    return sorted(records, key=lambda r: (-r.rho, r.gene_set))


def correlate_scores(
    scores: pd.DataFrame,
    reference: pd.Series,
    fdr_method: str = 'fdr_bh',
    n_jobs: Optional[int] = 1
) -> List[CorrelationRecord]:
    """
    Correlate every gene set in a score matrix with the reference vector.

    Args:
        scores: gene sets x samples enrichment score matrix
        reference: sample -> reference value
        fdr_method: multiple-testing correction method
        n_jobs: worker threads for the per-row correlations; None uses all cores but one

    Returns:
        Records sorted by rho descending (ties by gene set name)

    Raises:
        DimensionMismatchError: reference shares no samples with the matrix
    """
    shared = scores.columns.intersection(reference.index)
    if len(shared) == 0:
        raise DimensionMismatchError(
            f"Reference vector ({len(reference)} samples) shares no samples with "
            f"the score matrix ({scores.shape[1]} samples)"
        )
    if len(shared) < MIN_PAIRED_SAMPLES:
        logger.warning(
            f"Only {len(shared)} samples shared with the reference; "
            f"all correlations will be undefined"
        )

    logger.info(f"Correlating {scores.shape[0]} gene sets across {len(shared)} shared samples")
    rows = [scores.loc[name] for name in scores.index]
    workers = default_n_jobs() if n_jobs is None else max(1, int(n_jobs))
    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            records = list(executor.map(lambda row: correlate(reference, row), rows))
    else:
        records = [correlate(reference, row) for row in rows]

    # All raw p-values must be in hand before correcting
    adjusted = fdr_correction([r.p_value for r in records], method=fdr_method)
    for record, p_adj in zip(records, adjusted):
        record.p_adjusted = p_adj

    return sort_records(records)


def records_to_frame(records: List[CorrelationRecord]) -> pd.DataFrame:
    """Tabulate correlation records for reporting and export."""
    if not records:
        return pd.DataFrame(columns=RESULT_COLUMNS)
    return pd.DataFrame([r.to_dict() for r in records])[RESULT_COLUMNS]

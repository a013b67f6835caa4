"""
Gene Set Variation Analysis (GSVA) for EnrichCorr

Turns a genes x samples expression matrix into a gene sets x samples matrix of
enrichment scores. The algorithm follows Hänzelmann et al. (2013):

1. Estimate, for every gene, where each sample sits in that gene's
   distribution across samples (kernel CDF, empirical CDF, or the raw value).
2. Within each sample, order genes by that statistic and weight each
   position by its distance from the middle of the ranking.
3. For each gene set, walk the ordering with a weighted running sum over
   member genes minus a uniform running sum over non-members; the score is
   the maximum-deviation difference of that walk.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.stats import norm, rankdata

from .errors import EmptyInputError, NoScorableGeneSetsError

logger = logging.getLogger("EnrichCorr.GSVA")

KCDF_METHODS = ('gaussian', 'ecdf', 'rank')

# Samples processed together when building per-set membership walks
_SAMPLE_CHUNK = 256


def default_n_jobs() -> int:
    """Worker count used when none is configured: all cores but one."""
    return max(1, (os.cpu_count() or 1) - 1)


def gaussian_kcdf(values: np.ndarray) -> np.ndarray:
    """
    Gaussian kernel estimate of each gene's CDF, evaluated at every sample.

    Bandwidth per gene is sd/4. Returns the log-odds of the CDF so that both
    tails are spread out symmetrically.

    Args:
        values: genes x samples array

    Returns:
        genes x samples array of log-odds CDF values
    """
    n_samples = values.shape[1]
    bandwidth = values.std(axis=1, ddof=1) / 4.0
    # Constant genes get a neutral statistic
    flat = ~(bandwidth > 0)
    bandwidth = np.where(flat, 1.0, bandwidth)

    cdf = np.empty_like(values, dtype=float)
    for j in range(n_samples):
        z = (values[:, [j]] - values) / bandwidth[:, None]
        cdf[:, j] = norm.cdf(z).mean(axis=1)
    cdf[flat, :] = 0.5

    eps = np.finfo(float).eps
    cdf = np.clip(cdf, eps, 1.0 - eps)
    return np.log(cdf / (1.0 - cdf))


def empirical_kcdf(values: np.ndarray) -> np.ndarray:
    """Empirical CDF of each gene across samples (average rank / n)."""
    return rankdata(values, method='average', axis=1) / values.shape[1]


def gene_statistics(values: np.ndarray, kcdf: str = 'gaussian') -> np.ndarray:
    """Per-gene, per-sample statistic used to order genes within a sample."""
    if kcdf == 'gaussian':
        return gaussian_kcdf(values)
    if kcdf == 'ecdf':
        return empirical_kcdf(values)
    if kcdf == 'rank':
        return values.astype(float, copy=True)
    raise ValueError(f"Unknown kcdf '{kcdf}'. Expected one of {KCDF_METHODS}")


def rank_order(statistics: np.ndarray) -> np.ndarray:
    """
    Order of genes within each sample, highest statistic first.

    Ties keep matrix row order so the ordering is deterministic.

    Returns:
        genes x samples array of row indices
    """
    return np.argsort(-statistics, axis=0, kind='stable')


def position_weights(n_genes: int, tau: float = 1.0) -> np.ndarray:
    """Weight |p/2 - pos|^tau for each 1-based position in the ordering."""
    positions = np.arange(1, n_genes + 1, dtype=float)
    return np.abs(n_genes / 2.0 - positions) ** tau


def random_walk_scores(
    order: np.ndarray,
    member_rows: np.ndarray,
    weights: np.ndarray,
    mx_diff: bool = True
) -> np.ndarray:
    """
    Enrichment score of one gene set in every sample.

    Args:
        order: genes x samples row ordering from rank_order()
        member_rows: row indices of the set's genes in the matrix
        weights: per-position weights from position_weights()
        mx_diff: score as max + min of the walk, else the larger extreme

    Returns:
        1-D array of scores, one per sample
    """
    n_genes, n_samples = order.shape
    membership = np.zeros(n_genes, dtype=bool)
    membership[member_rows] = True
    n_members = int(membership.sum())
    n_others = n_genes - n_members
    if n_others == 0:
        # A set covering every gene has nothing to be enriched against
        return np.zeros(n_samples, dtype=float)

    scores = np.empty(n_samples, dtype=float)
    for start in range(0, n_samples, _SAMPLE_CHUNK):
        stop = min(start + _SAMPLE_CHUNK, n_samples)
        hits = membership[order[:, start:stop]]

        hit_weights = np.where(hits, weights[:, None], 0.0)
        totals = hit_weights.sum(axis=0)
        # All members sitting on zero weight: fall back to uniform steps
        uniform = totals <= 0
        if uniform.any():
            hit_weights[:, uniform] = hits[:, uniform].astype(float)
            totals[uniform] = n_members
        walk = np.cumsum(hit_weights, axis=0) / totals
        walk -= np.cumsum(~hits, axis=0) / n_others

        top = walk.max(axis=0)
        bottom = walk.min(axis=0)
        if mx_diff:
            scores[start:stop] = top + bottom
        else:
            scores[start:stop] = np.where(np.abs(top) > np.abs(bottom), top, bottom)
    return scores


def filter_gene_sets(
    gene_sets: Mapping[str, Iterable[str]],
    genes: pd.Index,
    min_size: int = 5,
    max_size: Optional[int] = None
) -> Tuple[Dict[str, List[str]], List[str]]:
    """
    Restrict gene sets to genes present in the matrix and apply size limits.

    Returns:
        Tuple of (scorable sets as name -> present genes, excluded set names)
    """
    present = set(genes)
    kept = {}
    excluded = []
    for name in sorted(gene_sets):
        members = sorted(set(gene_sets[name]) & present)
        size = len(members)
        if size < min_size or (max_size is not None and size > max_size):
            logger.debug(f"Excluding gene set '{name}': {size} genes present")
            excluded.append(name)
            continue
        kept[name] = members
    return kept, excluded


def run_gsva(
    expression: pd.DataFrame,
    gene_sets: Mapping[str, Iterable[str]],
    kcdf: str = 'gaussian',
    min_size: int = 5,
    max_size: Optional[int] = None,
    tau: float = 1.0,
    mx_diff: bool = True,
    n_jobs: Optional[int] = 1
) -> pd.DataFrame:
    """
    Compute GSVA enrichment scores.

    Args:
        expression: genes x samples matrix, no missing values
        gene_sets: gene set name -> member genes (same namespace as the index)
        kcdf: 'gaussian', 'ecdf' or 'rank' (see gene_statistics). Only 'rank'
            leaves scores unchanged when one sample is transformed
            monotonically; the other two compare each gene across samples
        min_size: minimum number of members present in the matrix
        max_size: maximum number of members present (None for no limit)
        tau: exponent applied to the position weights
        mx_diff: use the max-minus-min walk statistic
        n_jobs: worker threads; None uses all cores but one

    Returns:
        DataFrame of gene sets (rows, sorted by name) x samples

    Raises:
        EmptyInputError: matrix has no rows or no columns
        NoScorableGeneSetsError: no gene set passes the size filter
    """
    if kcdf not in KCDF_METHODS:
        raise ValueError(f"Unknown kcdf '{kcdf}'. Expected one of {KCDF_METHODS}")
    if expression.shape[0] == 0 or expression.shape[1] == 0:
        raise EmptyInputError(
            f"Expression matrix is empty ({expression.shape[0]} genes x "
            f"{expression.shape[1]} samples)"
        )

    scorable, excluded = filter_gene_sets(gene_sets, expression.index, min_size, max_size)
    if not scorable:
        raise NoScorableGeneSetsError(
            f"None of {len(excluded)} gene sets has at least {min_size} genes in the matrix"
        )
    if excluded:
        logger.info(f"Excluded {len(excluded)}/{len(gene_sets)} gene sets by size filter")

    values = expression.to_numpy(dtype=float)
    order = rank_order(gene_statistics(values, kcdf))
    weights = position_weights(values.shape[0], tau)
    row_of = {gene: i for i, gene in enumerate(expression.index)}

    workers = default_n_jobs() if n_jobs is None else max(1, int(n_jobs))
    logger.info(
        f"Running GSVA ({kcdf} kcdf): {values.shape[0]} genes, {values.shape[1]} samples, "
        f"{len(scorable)} gene sets, {workers} worker(s)"
    )

    def score_set(name: str) -> np.ndarray:
        rows = np.fromiter((row_of[g] for g in scorable[name]), dtype=int)
        return random_walk_scores(order, rows, weights, mx_diff)

    results: Dict[str, np.ndarray] = {}
    if workers == 1:
        for name in scorable:
            results[name] = score_set(name)
    else:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(score_set, name): name for name in scorable}
            for future in as_completed(futures):
                results[futures[future]] = future.result()

    names = sorted(results)
    scores = pd.DataFrame(
        np.vstack([results[name] for name in names]),
        index=pd.Index(names, name='gene_set'),
        columns=expression.columns.copy(),
    )
    logger.info(f"GSVA complete: {scores.shape[0]} gene sets x {scores.shape[1]} samples")
    return scores

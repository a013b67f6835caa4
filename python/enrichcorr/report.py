"""
Report and Plot Layer for EnrichCorr

Filters the ranked correlation table down to the pathways worth showing and
draws them as a horizontal bar chart: bar length is the Spearman rho, bar
colour is -log10(p).
"""

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd
import matplotlib.figure
import matplotlib.pyplot as plt
from matplotlib import cm, colors

logger = logging.getLogger("EnrichCorr.Report")

RASTER_FORMATS = ('png', 'jpg', 'jpeg', 'tiff')


def filter_results(
    table: pd.DataFrame,
    alpha: float = 0.05,
    keywords: Iterable[str] = (),
    top_n: int = 20,
    p_column: str = 'p_value'
) -> pd.DataFrame:
    """
    Select the pathways to report.

    Args:
        table: Correlation table (see correlation.records_to_frame)
        alpha: Keep rows with p < alpha
        keywords: Keep rows whose gene set name contains any keyword
            (case-insensitive); empty keeps everything
        top_n: Rows kept per sign group, by largest |rho|
        p_column: 'p_value' or 'p_adjusted'

    Returns:
        Filtered table ordered by rho descending (ties by gene set name)
    """
    selected = table[table[p_column] < alpha]

    keywords = [k.lower() for k in keywords if k]
    if keywords:
        names = selected['gene_set'].str.lower()
        selected = selected[names.apply(lambda name: any(k in name for k in keywords))]

    selected = selected[selected['group'] != 'none']
    parts = []
    for _, group in selected.groupby('group', sort=True):
        ranked = group.assign(_abs=group['rho'].abs()).sort_values(
            ['_abs', 'gene_set'], ascending=[False, True], kind='mergesort'
        )
        parts.append(ranked.head(top_n).drop(columns='_abs'))

    if not parts:
        return table.iloc[0:0].copy()

    result = pd.concat(parts).sort_values(
        ['rho', 'gene_set'], ascending=[False, True], kind='mergesort'
    )
    logger.info(f"Report filter kept {len(result)}/{len(table)} gene sets (alpha={alpha}, top_n={top_n})")
    return result.reset_index(drop=True)


def neg_log10(p_values: Sequence[float]) -> np.ndarray:
    """-log10(p) with zero p-values capped at the smallest positive float"""
    p = np.asarray(p_values, dtype=float)
    return -np.log10(np.clip(p, np.finfo(float).tiny, 1.0))


def plot_correlations(
    table: pd.DataFrame,
    reference_label: str,
    title: Optional[str] = None,
    p_column: str = 'p_value',
    cmap: str = 'viridis'
) -> matplotlib.figure.Figure:
    """
    Horizontal bar chart of gene set correlations.

    Args:
        table: Filtered correlation table
        reference_label: Name of the reference variable for the axis label
        title: Figure title
        p_column: Column used for the colour scale
        cmap: Matplotlib colormap name

    Returns:
        matplotlib Figure
    """
    height = max(2.5, 0.3 * len(table) + 1.5)
    fig, ax = plt.subplots(figsize=(9, height))

    if table.empty:
        ax.text(0.5, 0.5, 'No gene sets pass the report filters',
                ha='center', va='center', transform=ax.transAxes)
        ax.set_axis_off()
    else:
        # Highest rho at the top
        ordered = table.iloc[::-1]
        significance = neg_log10(ordered[p_column])
        norm = colors.Normalize(vmin=0.0, vmax=max(float(significance.max()), 1e-6))
        mapper = cm.ScalarMappable(norm=norm, cmap=cmap)
        mapper.set_array(significance)

        y_pos = np.arange(len(ordered))
        ax.barh(y_pos, ordered['rho'], color=mapper.to_rgba(significance), edgecolor='white')
        ax.set_yticks(y_pos)
        ax.set_yticklabels([_pretty_name(n) for n in ordered['gene_set']], fontsize=8)
        ax.axvline(0, color='black', linewidth=0.8)
        ax.set_xlim(-1.05, 1.05)
        ax.set_xlabel(f"Spearman rho with {reference_label}")

        cbar = fig.colorbar(mapper, ax=ax, shrink=0.8)
        label = '-log10(adj. p)' if p_column == 'p_adjusted' else '-log10(p)'
        cbar.set_label(label)

    ax.set_title(title or f"Gene sets correlated with {reference_label}")
    fig.tight_layout()
    return fig


def _pretty_name(name: str, max_len: int = 60) -> str:
    """Shorten MSigDB-style names for axis labels"""
    label = str(name).replace('_', ' ')
    return label if len(label) <= max_len else label[:max_len - 3] + '...'


def save_figure(
    fig: matplotlib.figure.Figure,
    stem: Path,
    formats: Iterable[str] = ('pdf', 'png'),
    dpi: int = 300
) -> List[Path]:
    """
    Save a figure in several formats next to each other.

    Args:
        fig: Figure to save
        stem: Output path without extension
        formats: File formats, e.g. ('pdf', 'png')
        dpi: Resolution for raster formats

    Returns:
        Paths written
    """
    stem = Path(stem)
    stem.parent.mkdir(parents=True, exist_ok=True)
    written = []
    for fmt in formats:
        fmt = fmt.lower().lstrip('.')
        path = stem.with_name(f"{stem.name}.{fmt}")
        save_kwargs = {'format': fmt, 'bbox_inches': 'tight', 'facecolor': 'white'}
        if fmt in RASTER_FORMATS:
            save_kwargs['dpi'] = dpi
        fig.savefig(path, **save_kwargs)
        written.append(path)
    logger.info(f"Saved figure: {', '.join(p.name for p in written)}")
    return written


def export_results_csv(table: pd.DataFrame, output_path: Path) -> Path:
    """Write a correlation table as CSV"""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(output_path, index=False, float_format='%.6g')
    logger.info(f"Saved {len(table)} rows to {output_path}")
    return output_path

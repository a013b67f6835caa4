"""
Unit tests for result filtering and plotting.
"""

import matplotlib
matplotlib.use('Agg')

import matplotlib.pyplot as plt
import pandas as pd
import pytest

from enrichcorr.report import (
    export_results_csv,
    filter_results,
    neg_log10,
    plot_correlations,
    save_figure,
)


def make_table():
    rows = [
        ('HALLMARK_MYC_TARGETS_V1', 0.82, 0.0001, 0.001, 30),
        ('HALLMARK_E2F_TARGETS', 0.61, 0.002, 0.01, 30),
        ('HALLMARK_G2M_CHECKPOINT', 0.40, 0.03, 0.08, 30),
        ('HALLMARK_HYPOXIA', 0.10, 0.60, 0.70, 30),
        ('HALLMARK_APOPTOSIS', 0.0, 1.0, 1.0, 30),
        ('HALLMARK_P53_PATHWAY', -0.45, 0.01, 0.04, 30),
        ('HALLMARK_INTERFERON_GAMMA_RESPONSE', -0.70, 0.0005, 0.004, 30),
    ]
    table = pd.DataFrame(rows, columns=['gene_set', 'rho', 'p_value', 'p_adjusted', 'n'])
    table['group'] = ['positive'] * 4 + ['none'] + ['negative'] * 2
    return table


class TestFilterResults:
    """Test report filtering"""

    def test_alpha(self):
        """Only rows below alpha are kept, ordered by rho"""
        result = filter_results(make_table(), alpha=0.05)

        assert list(result['gene_set']) == [
            'HALLMARK_MYC_TARGETS_V1',
            'HALLMARK_E2F_TARGETS',
            'HALLMARK_G2M_CHECKPOINT',
            'HALLMARK_P53_PATHWAY',
            'HALLMARK_INTERFERON_GAMMA_RESPONSE',
        ]

    def test_adjusted_p(self):
        """Filtering can use the BH-adjusted column"""
        result = filter_results(make_table(), alpha=0.05, p_column='p_adjusted')

        assert 'HALLMARK_G2M_CHECKPOINT' not in set(result['gene_set'])
        assert len(result) == 4

    def test_keywords(self):
        """Keywords select names case-insensitively"""
        result = filter_results(make_table(), keywords=['targets', 'P53'])

        assert set(result['gene_set']) == {
            'HALLMARK_MYC_TARGETS_V1', 'HALLMARK_E2F_TARGETS', 'HALLMARK_P53_PATHWAY'
        }

    def test_top_n_per_group(self):
        """top_n applies separately to positive and negative correlations"""
        result = filter_results(make_table(), top_n=1)

        assert list(result['gene_set']) == [
            'HALLMARK_MYC_TARGETS_V1', 'HALLMARK_INTERFERON_GAMMA_RESPONSE'
        ]

    def test_nothing_passes(self):
        """An empty selection keeps the table's columns"""
        result = filter_results(make_table(), alpha=1e-9)

        assert result.empty
        assert list(result.columns) == list(make_table().columns)


class TestPlot:
    """Test the bar chart"""

    def test_bars(self):
        """One bar per row, with a colorbar"""
        table = filter_results(make_table())

        fig = plot_correlations(table, 'TP53')
        try:
            ax = fig.axes[0]
            assert len(ax.patches) == len(table)
            assert len(fig.axes) == 2
            assert 'TP53' in ax.get_xlabel()
            assert sorted(p.get_width() for p in ax.patches) == sorted(table['rho'])
        finally:
            plt.close(fig)

    def test_empty_table(self):
        """An empty table still produces a figure"""
        fig = plot_correlations(make_table().iloc[0:0], 'TP53')
        try:
            assert len(fig.axes[0].patches) == 0
        finally:
            plt.close(fig)

    def test_save_formats(self, tmp_path):
        """Figures are written in every requested format"""
        fig = plot_correlations(filter_results(make_table()), 'TP53')
        try:
            paths = save_figure(fig, tmp_path / 'out' / 'barplot', formats=('pdf', 'png'), dpi=72)
        finally:
            plt.close(fig)

        assert [p.name for p in paths] == ['barplot.pdf', 'barplot.png']
        assert all(p.stat().st_size > 0 for p in paths)


class TestExport:
    """Test table export"""

    def test_csv(self, tmp_path):
        """Tables round-trip through CSV"""
        path = export_results_csv(make_table(), tmp_path / 'table.csv')

        loaded = pd.read_csv(path)
        assert list(loaded['gene_set']) == list(make_table()['gene_set'])
        assert loaded['rho'].tolist() == pytest.approx(make_table()['rho'].tolist())

    def test_neg_log10(self):
        """Zero p-values are capped instead of becoming infinite"""
        values = neg_log10([1.0, 0.01, 0.0])

        assert values[0] == pytest.approx(0.0)
        assert values[1] == pytest.approx(2.0)
        assert values[2] > 300

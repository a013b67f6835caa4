"""
Unit tests for the GSVA enrichment engine.

Run with: pytest python/enrichcorr/tests/
"""

import numpy as np
import pandas as pd
import pytest

from enrichcorr.errors import EmptyInputError, NoScorableGeneSetsError
from enrichcorr.gsva import (
    default_n_jobs,
    filter_gene_sets,
    gaussian_kcdf,
    gene_statistics,
    position_weights,
    random_walk_scores,
    rank_order,
    run_gsva,
)


def make_expression(n_genes=40, n_samples=10, seed=0):
    rng = np.random.default_rng(seed)
    values = rng.normal(loc=5.0, scale=2.0, size=(n_genes, n_samples))
    return pd.DataFrame(
        values,
        index=[f"G{i}" for i in range(n_genes)],
        columns=[f"S{j}" for j in range(n_samples)],
    )


GENE_SETS = {
    'SET_A': ['G0', 'G1', 'G2', 'G3', 'G4'],
    'SET_B': ['G10', 'G11', 'G12', 'G13', 'G14', 'G15', 'G16'],
    'SET_C': ['G20', 'G21', 'G22', 'G23', 'G24', 'G25'],
}


class TestRandomWalk:
    """Test the per-set running sum statistic"""

    def test_member_at_top(self):
        """A single member at the top of the ordering scores +1"""
        order = np.arange(4)[:, None]
        weights = position_weights(4)

        scores = random_walk_scores(order, np.array([0]), weights)

        assert scores == pytest.approx([1.0])

    def test_member_at_bottom(self):
        """A single member at the bottom of the ordering scores -1"""
        order = np.arange(4)[:, None]
        weights = position_weights(4)

        scores = random_walk_scores(order, np.array([3]), weights)

        assert scores == pytest.approx([-1.0])

    def test_zero_weight_members_use_uniform_steps(self):
        """Members whose positions all carry zero weight still move the walk"""
        order = np.arange(4)[:, None]
        weights = position_weights(4)
        assert weights[1] == 0

        scores = random_walk_scores(order, np.array([1]), weights)

        assert scores == pytest.approx([1.0 / 3.0])

    def test_set_covering_all_genes(self):
        """A set containing every gene scores zero"""
        order = np.tile(np.arange(5)[:, None], (1, 3))

        scores = random_walk_scores(order, np.arange(5), position_weights(5))

        assert np.all(scores == 0)

    def test_position_weights(self):
        """Weights are distances from the middle of the ranking"""
        assert position_weights(4).tolist() == [1.0, 0.0, 1.0, 2.0]
        assert position_weights(4, tau=2.0).tolist() == [1.0, 0.0, 1.0, 4.0]


class TestGeneStatistics:
    """Test per-gene statistics and ordering"""

    def test_constant_gene_is_neutral(self):
        """A gene with no spread gets log-odds 0 in every sample"""
        values = np.array([[1.0, 1.0, 1.0], [1.0, 2.0, 3.0]])

        stats = gaussian_kcdf(values)

        assert np.allclose(stats[0], 0.0)
        assert stats[1, 0] < 0 < stats[1, 2]

    def test_rank_order_is_stable(self):
        """Tied statistics keep matrix row order"""
        stats = np.array([[1.0], [2.0], [1.0], [2.0]])

        order = rank_order(stats)

        assert order[:, 0].tolist() == [1, 3, 0, 2]

    def test_unknown_kcdf(self):
        """Unknown kcdf names are rejected"""
        with pytest.raises(ValueError):
            gene_statistics(np.ones((2, 2)), kcdf='poisson')


class TestGeneSetFilter:
    """Test gene set size filtering"""

    def test_min_size_respected(self):
        """Sets with fewer present genes than min_size are excluded"""
        genes = pd.Index(['A', 'B', 'C', 'D', 'E'])
        gene_sets = {
            'FULL': ['A', 'B', 'C', 'D', 'E'],
            'PARTIAL': ['A', 'B', 'C', 'X', 'Y'],
        }

        kept, excluded = filter_gene_sets(gene_sets, genes, min_size=5)

        assert list(kept) == ['FULL']
        assert excluded == ['PARTIAL']

    def test_max_size(self):
        """Sets larger than max_size are excluded"""
        genes = pd.Index(list('ABCDEFG'))

        kept, excluded = filter_gene_sets({'BIG': list('ABCDEFG')}, genes, min_size=1, max_size=5)

        assert kept == {}
        assert excluded == ['BIG']


class TestRunGsva:
    """Test the score matrix computation"""

    def test_output_shape(self):
        """10 samples and one 5-gene set give a 1 x 10 score matrix"""
        expr = make_expression(n_samples=10)

        scores = run_gsva(expr, {'SET_A': GENE_SETS['SET_A']})

        assert scores.shape == (1, 10)
        assert list(scores.index) == ['SET_A']
        assert list(scores.columns) == list(expr.columns)
        assert scores.index.name == 'gene_set'

    def test_undersized_set_excluded(self):
        """A set with only 3 genes in the matrix is not scored at min_size=5"""
        expr = make_expression()
        gene_sets = dict(GENE_SETS, SHORT=['G30', 'G31', 'G32', 'MISSING1', 'MISSING2'])

        scores = run_gsva(expr, gene_sets, min_size=5)

        assert 'SHORT' not in scores.index
        assert list(scores.index) == ['SET_A', 'SET_B', 'SET_C']

    def test_no_scorable_sets(self):
        """Every set below min_size is fatal"""
        expr = make_expression()

        with pytest.raises(NoScorableGeneSetsError):
            run_gsva(expr, {'SHORT': ['G0', 'G1', 'G2']}, min_size=5)

    def test_empty_matrix(self):
        """A matrix without samples is fatal"""
        expr = make_expression().iloc[:, :0]

        with pytest.raises(EmptyInputError):
            run_gsva(expr, GENE_SETS)

    @pytest.mark.parametrize('kcdf', ['gaussian', 'ecdf', 'rank'])
    def test_scores_bounded(self, kcdf):
        """Max-difference scores lie in [-1, 1]"""
        expr = make_expression(n_samples=15, seed=3)

        scores = run_gsva(expr, GENE_SETS, kcdf=kcdf)

        assert np.all(scores.to_numpy() <= 1.0)
        assert np.all(scores.to_numpy() >= -1.0)

    def test_enriched_sample_scores_highest(self):
        """Raising a set's genes in one sample raises that sample's score"""
        expr = make_expression(seed=7)
        expr.loc[GENE_SETS['SET_A'], 'S4'] += 20.0

        scores = run_gsva(expr, GENE_SETS)

        assert scores.loc['SET_A'].idxmax() == 'S4'
        assert scores.loc['SET_A', 'S4'] > 0

    def test_per_sample_monotone_invariance(self):
        """With kcdf='rank', transforming one sample monotonically keeps every score"""
        expr = make_expression(seed=11)
        transformed = expr.copy()
        transformed['S2'] = np.exp(transformed['S2']) * 3.0 + 1.0

        before = run_gsva(expr, GENE_SETS, kcdf='rank')
        after = run_gsva(transformed, GENE_SETS, kcdf='rank')

        pd.testing.assert_frame_equal(before, after)

    def test_gaussian_kcdf_depends_on_other_samples(self):
        """The default kernel CDF compares genes across samples, so one sample's transform moves scores"""
        expr = make_expression(seed=11)
        transformed = expr.copy()
        transformed['S2'] = np.exp(transformed['S2']) * 3.0 + 1.0

        before = run_gsva(expr, GENE_SETS)
        after = run_gsva(transformed, GENE_SETS)

        assert not np.allclose(before.to_numpy(), after.to_numpy())

    def test_global_monotone_invariance(self):
        """With kcdf='ecdf', a monotone transform of the whole matrix keeps every score"""
        expr = make_expression(seed=5)

        before = run_gsva(expr, GENE_SETS, kcdf='ecdf')
        after = run_gsva(np.log1p(expr - expr.min().min() + 1.0), GENE_SETS, kcdf='ecdf')

        pd.testing.assert_frame_equal(before, after)

    def test_parallel_matches_serial(self):
        """Worker count does not change the result"""
        expr = make_expression(seed=2)

        serial = run_gsva(expr, GENE_SETS, n_jobs=1)
        parallel = run_gsva(expr, GENE_SETS, n_jobs=4)

        pd.testing.assert_frame_equal(serial, parallel)

    def test_input_not_modified(self):
        """The expression matrix is left untouched"""
        expr = make_expression()
        snapshot = expr.copy()

        run_gsva(expr, GENE_SETS)

        pd.testing.assert_frame_equal(expr, snapshot)

    def test_default_n_jobs(self):
        """The default worker count is at least one"""
        assert default_n_jobs() >= 1

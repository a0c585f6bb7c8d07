import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy.stats import t as t_dist

from contrastflux.analysis.stats_ops import bh_qvalues, classify_significance, confidence_interval


class TestBenjaminiHochberg:
    def test_adjusted_not_below_raw(self):
        rng = np.random.default_rng(0)
        p = rng.uniform(size=500)
        q = bh_qvalues(p)
        assert np.all(q >= p)
        assert np.all(q <= 1.0)

    def test_single_feature_unchanged(self):
        assert_allclose(bh_qvalues(np.array([0.03])), [0.03])

    def test_known_values(self):
        p = np.array([0.01, 0.04, 0.03, 0.2])
        # p * m / rank, then cumulative min from the largest p down
        expected = np.array([0.04, 0.16 / 3, 0.16 / 3, 0.2])
        assert_allclose(bh_qvalues(p), expected)

    def test_monotone_in_raw_p(self):
        rng = np.random.default_rng(1)
        p = rng.uniform(size=200) ** 3
        q = bh_qvalues(p)
        order = np.argsort(-p)
        # sorted by descending raw p, adjusted values never increase
        assert np.all(np.diff(q[order]) <= 1e-15)

    def test_keeps_feature_association(self):
        p = np.array([0.5, 0.001, 0.2])
        q = bh_qvalues(p)
        assert np.argmin(q) == 1

    def test_empty(self):
        assert bh_qvalues(np.array([])).size == 0

    def test_rejects_nan(self):
        with pytest.raises(ValueError):
            bh_qvalues(np.array([0.1, np.nan]))


class TestConfidenceInterval:
    def test_contains_effect_and_matches_t_quantile(self):
        effect = np.array([1.0, -0.5, 0.0])
        se = np.array([0.2, 0.1, 0.3])
        df = np.array([4.0, 10.0, 30.0])
        low, high = confidence_interval(effect=effect, se=se, df=df, level=0.95)

        assert np.all(low <= effect) and np.all(effect <= high)
        assert_allclose((high - low) / 2, t_dist.ppf(0.975, df) * se)

    def test_coverage_level(self):
        low, high = confidence_interval(effect=np.array([0.0]), se=np.array([1.0]),
                                        df=np.array([6.0]), level=0.9)
        covered = t_dist.cdf(high, 6) - t_dist.cdf(low, 6)
        assert_allclose(covered, 0.9)


def test_classify_significance_thresholds():
    lfc = np.array([2.0, -2.0, 0.5, 3.0, -0.2])
    q = np.array([0.01, 0.01, 0.01, 0.5, 0.01])
    calls = classify_significance(lfc, q, alpha=0.05, lfc_threshold=1.0)
    assert list(calls) == ["up", "down", "ns", "ns", "ns"]

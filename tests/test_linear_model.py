import numpy as np
import pytest
from numpy.testing import assert_allclose

from contrastflux.analysis.linearmodelfitter import LinearModelFitter
from contrastflux.design.contrast import apply_contrast
from contrastflux.utils.exceptions import IntegrityError


@pytest.fixture
def two_group_design():
    return np.array([[1, 0], [1, 0], [1, 0], [0, 1], [0, 1], [0, 1]], dtype=float)


def test_coefficients_are_group_means(two_group_design):
    Y = np.array([
        [10.0, 10.1, 9.9, 11.0, 11.1, 10.9],
        [1.0, 2.0, 3.0, 4.0, 5.0, 6.0],
    ])
    res = LinearModelFitter(Y, two_group_design).fit().get_results()

    assert_allclose(res["coefficients"], [[10.0, 11.0], [2.0, 5.0]])
    assert res["df_residual"] == 4
    # pooled within-group variance
    assert_allclose(res["residual_variance"], [0.01, 1.0])
    assert_allclose(res["amean"], Y.mean(axis=1))
    assert_allclose(res["xtx_inv"], np.diag([1 / 3, 1 / 3]))


def test_contrast_effect_and_unscaled_sd(two_group_design):
    Y = np.array([[1.0, 1.0, 1.0, 3.0, 3.0, 3.0]])
    res = LinearModelFitter(Y, two_group_design).fit().get_results()
    effect, stdev = apply_contrast(res, np.array([-1.0, 1.0]))
    assert_allclose(effect, [2.0])
    assert_allclose(stdev, np.sqrt(2 / 3))


def test_rank_deficient_design():
    X = np.array([[1, 1], [1, 1], [1, 1]], dtype=float)
    with pytest.raises(IntegrityError, match="rank-deficient"):
        LinearModelFitter(np.zeros((2, 3)), X, contrast_name="c")


def test_no_residual_df():
    X = np.eye(2)
    with pytest.raises(IntegrityError, match="residual df"):
        LinearModelFitter(np.zeros((2, 2)), X)


def test_sample_mismatch(two_group_design):
    with pytest.raises(IntegrityError, match="mismatch"):
        LinearModelFitter(np.zeros((2, 5)), two_group_design)

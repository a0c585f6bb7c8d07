import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from contrastflux.utils.exceptions import IntegrityError
from contrastflux.workflow.filtering import filter_low_abundance
from contrastflux.workflow.normalizers.upper_quartile import (
    compute_scale_factors,
    log_cpm,
    upper_quartile_factors,
)


def test_filter_keeps_features_at_threshold():
    mat = np.array([[5.0, 7.0], [1.0, 2.0], [4.0, 4.0]])
    keep, means = filter_low_abundance(mat, threshold=4.0)
    assert_array_equal(keep, [True, False, True])
    assert_allclose(means, [6.0, 1.5, 4.0])


def test_filter_everything_removed():
    with pytest.raises(IntegrityError, match="empty filtered matrix"):
        filter_low_abundance(np.zeros((3, 2)), threshold=1.0, contrast_name="c")


def test_upper_quartile_factors_multiply_to_one():
    rng = np.random.default_rng(5)
    mat = rng.gamma(2.0, 50.0, size=(200, 6))
    mat[:, 2] *= 3.0
    f = upper_quartile_factors(mat)
    assert_allclose(np.prod(f), 1.0)
    assert f[2] == f.max()


def test_upper_quartile_ignores_all_zero_features():
    mat = np.array([[0.0, 0.0], [1.0, 2.0], [3.0, 6.0], [5.0, 10.0]])
    with_zero = upper_quartile_factors(mat)
    without = upper_quartile_factors(mat[1:])
    assert_allclose(with_zero, without)


def test_upper_quartile_with_library_size():
    # sample 2 is sample 1 sequenced twice as deep: identical after lib-size scaling
    counts = np.array([[10.0, 20.0], [30.0, 60.0], [50.0, 100.0], [70.0, 140.0]])
    f = upper_quartile_factors(counts, lib_size=counts.sum(axis=0))
    assert_allclose(f, [1.0, 1.0])


def test_identity_mode():
    assert_array_equal(compute_scale_factors(np.ones((3, 4)), "none", "intensity"), np.ones(4))


def test_log_input_is_back_transformed_for_factors():
    linear = np.array([[1.0, 2.0], [3.0, 6.0], [7.0, 14.0], [15.0, 30.0]])
    f_log = compute_scale_factors(np.log2(linear + 1.0), "upperquartile", "intensity")
    f_lin = upper_quartile_factors(linear)
    assert_allclose(f_log, f_lin)


def test_log_cpm():
    counts = np.array([[0.0, 10.0], [100.0, 90.0]])
    lib = counts.sum(axis=0)
    out = log_cpm(counts, lib, np.array([1.0, 1.0]))
    assert_allclose(out[0, 0], np.log2(0.5 / 101.0 * 1e6))
    assert_allclose(out[1, 1], np.log2(90.5 / 101.0 * 1e6))

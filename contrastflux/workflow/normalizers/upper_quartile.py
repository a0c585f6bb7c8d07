import numpy as np
from typing import Optional
from contrastflux.utils.semantics import (
    INPUT_COUNTS,
    INPUT_INTENSITY,
    NORM_NONE,
    NORM_UPPERQUARTILE,
)

# log-CPM offsets (limma voom convention)
PRIOR_COUNT = 0.5


def to_linear(mat: np.ndarray, input_kind: str) -> np.ndarray:
    """Back-transform a builder matrix to the linear scale."""
    if input_kind == INPUT_COUNTS:
        return mat
    if input_kind == INPUT_INTENSITY:
        return np.exp2(mat) - 1.0
    return np.exp2(mat)


def upper_quartile_factors(mat: np.ndarray, lib_size: Optional[np.ndarray] = None, p: float = 0.75) -> np.ndarray:
    """
    Upper-quartile scale factors (edgeR calcNormFactors(method="upperquartile")).

    Parameters:
        mat (np.ndarray): (features x samples) linear-scale matrix.
        lib_size (np.ndarray): per-sample library sizes; None compares raw quantiles.
        p (float): quantile equalized across samples.

    Returns:
        np.ndarray: per-sample factors whose product is 1.
    """
    # Features that are zero everywhere carry no information
    mat = mat[np.any(mat > 0, axis=1)]
    if mat.shape[0] == 0:
        return np.ones(mat.shape[1])

    y = mat / lib_size[None, :] if lib_size is not None else mat
    f = np.quantile(y, p, axis=0)

    if np.any(f <= 0):
        # Upper quartile is zero for some sample: too sparse to normalize
        return np.ones(mat.shape[1])
    return f / np.exp(np.mean(np.log(f)))


def compute_scale_factors(mat: np.ndarray, mode: str, input_kind: str,
                          lib_size: Optional[np.ndarray] = None) -> np.ndarray:
    """Per-sample scale factors over ONE contrast's filtered subset (features x samples)."""
    if mode == NORM_NONE:
        return np.ones(mat.shape[1])
    if mode == NORM_UPPERQUARTILE:
        return upper_quartile_factors(to_linear(mat, input_kind), lib_size=lib_size)
    raise ValueError(f"Unknown normalization mode: {mode}")


def log_cpm(counts: np.ndarray, lib_size: np.ndarray, factors: Optional[np.ndarray] = None) -> np.ndarray:
    """log2 counts-per-million with effective library sizes lib_size * factors."""
    eff = lib_size if factors is None else lib_size * factors
    return np.log2((counts + PRIOR_COUNT) / (eff[None, :] + 1.0) * 1e6)

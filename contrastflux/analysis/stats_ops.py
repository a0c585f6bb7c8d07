from __future__ import annotations

import numpy as np
from scipy.stats import t as t_dist
from statsmodels.stats.multitest import multipletests

from contrastflux.utils.semantics import DIRECTION_UP, DIRECTION_DOWN, DIRECTION_NS


def bh_qvalues(p: np.ndarray) -> np.ndarray:
    """Benjamini–Hochberg q-values over all features of one contrast."""
    p = np.asarray(p, dtype=float)
    if p.ndim != 1:
        raise ValueError(f"Expected 1D p-value array (n_features,), got shape {p.shape}")
    if p.size == 0:
        return p.copy()
    if np.any(~np.isfinite(p)):
        raise ValueError("p-values must be finite before BH correction")
    return multipletests(p, method="fdr_bh")[1]


def confidence_interval(
    *,
    effect: np.ndarray,
    se: np.ndarray,
    df: np.ndarray,
    level: float = 0.95,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Mechanical shared primitive:
      half = t.ppf(1 - (1 - level) / 2, df) * se
      (effect - half, effect + half)
    """
    crit = t_dist.ppf(1 - (1 - level) / 2, df=df)
    half = crit * se
    return effect - half, effect + half


def classify_significance(
    log2fc: np.ndarray,
    q: np.ndarray,
    alpha: float = 0.1,
    lfc_threshold: float = 0.0,
) -> np.ndarray:
    """'up' / 'down' / 'ns' per feature from two independent thresholds."""
    log2fc = np.asarray(log2fc, dtype=float)
    q = np.asarray(q, dtype=float)
    sig = q <= alpha
    out = np.full(log2fc.shape, DIRECTION_NS, dtype=object)
    out[sig & (log2fc > lfc_threshold)] = DIRECTION_UP
    out[sig & (log2fc < -lfc_threshold)] = DIRECTION_DOWN
    return out

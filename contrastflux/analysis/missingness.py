from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class MissingnessResult:
    df: pd.DataFrame
    source: str
    rule: str


def _missingness_counts(intensity_matrix_GxN: np.ndarray, conditions: list[str]) -> dict[str, np.ndarray]:
    cond_arr = np.asarray(conditions, dtype=str)
    uniq = np.unique(cond_arr)
    out: dict[str, np.ndarray] = {}
    for cond in uniq:
        mask = cond_arr == cond
        sub = intensity_matrix_GxN[:, mask]
        out[cond] = np.isnan(sub).sum(axis=1)
    return out


def compute_missingness(
    raw_GxN: np.ndarray | None,
    conditions: list[str],
    feature_ids: list[str],
) -> MissingnessResult:
    """
    Per-feature count of zero-filled (originally missing) values per group of a contrast.

    `raw_GxN` is the pre-fill matrix restricted to the contrast's features and
    samples (NaN == the run did not report the feature). When no pre-fill
    matrix exists every count is 0.
    """
    if raw_GxN is None:
        raw_GxN = np.zeros((len(feature_ids), len(conditions)))
        source = "none"
    else:
        source = "raw"

    counts = _missingness_counts(np.asarray(raw_GxN, dtype=float), conditions)
    df = pd.DataFrame(counts, index=feature_ids)
    return MissingnessResult(df=df, source=source, rule="nan-is-missing")

from __future__ import annotations

import warnings
from typing import Optional

from contrastflux.utils.exceptions import ConfigurationError
from contrastflux.utils.semantics import (
    INPUT_INTENSITY,
    INPUT_KIND_ALIASES,
    INPUT_KINDS_CANONICAL,
    NORM_NONE,
    NORMALIZATION_ALIASES,
    NORMALIZATION_MODES_CANONICAL,
)


def _normalize(raw: Optional[str], default: str, alias_map: dict, canonical: tuple, what: str) -> str:
    if raw is None:
        return default

    s = str(raw).strip()
    if not s:
        return default

    key = s.lower()
    if key in alias_map:
        out = alias_map[key]
        if out != key and key not in canonical:
            warnings.warn(
                f"{what}={s!r} is deprecated; use {out!r}.",
                category=DeprecationWarning,
                stacklevel=3,
            )
        return out

    raise ConfigurationError(
        f"Unsupported {what}={s!r}. Use one of: {', '.join(repr(c) for c in canonical)}.",
        rule="unknown option",
    )


def normalize_input_kind(raw: Optional[str]) -> str:
    """
    Normalize the dataset input kind to canonical strings (strict, explicit).

    Canonical:
      - intensity (linear, log2(x + 1) applied by the builder)
      - ratio     (already log2, used as-is)
      - counts    (count-like, log-CPM computed per contrast)

    Accepted aliases:
      - intensities, lfq -> intensity
      - ratios, log_ratio -> ratio
      - count, spectral_counts -> counts
    """
    return _normalize(raw, INPUT_INTENSITY, INPUT_KIND_ALIASES, INPUT_KINDS_CANONICAL, "input_kind")


def normalize_normalization_mode(raw: Optional[str]) -> str:
    """
    Normalize the normalization mode.

    Canonical: none, upperquartile. Aliases: identity -> none; uq, upper_quartile -> upperquartile.
    """
    return _normalize(raw, NORM_NONE, NORMALIZATION_ALIASES, NORMALIZATION_MODES_CANONICAL, "normalization")

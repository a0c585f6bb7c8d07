from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from contrastflux.analysis.result_schema import RESULT_COLUMNS, COL_PVALUE
from contrastflux.utils.analysis_type import normalize_normalization_mode
from contrastflux.utils.exceptions import ConfigurationError


@dataclass(frozen=True)
class AnalysisConfig:
    """Global, immutable parameters shared by every contrast of a run."""

    alpha: float = 0.1
    lfc_threshold: float = 0.0
    confint: float = 0.95
    normalization: str = "none"
    trend: bool = True
    robust: bool = True
    loess_span: float = 0.5
    proportion: float = 0.01
    sort_by: str = COL_PVALUE
    include_normalized: bool = False
    n_jobs: int = 1

    def __post_init__(self):
        # frozen: normalize through object.__setattr__
        object.__setattr__(self, "normalization", normalize_normalization_mode(self.normalization))

        if not 0.0 < float(self.alpha) <= 1.0:
            raise ConfigurationError(f"alpha must be in (0, 1], got {self.alpha}", rule="invalid option")
        if float(self.lfc_threshold) < 0:
            raise ConfigurationError(f"lfc_threshold must be >= 0, got {self.lfc_threshold}", rule="invalid option")
        if not 0.0 < float(self.confint) < 1.0:
            raise ConfigurationError(f"confint must be in (0, 1), got {self.confint}", rule="invalid option")
        if not 0.0 < float(self.loess_span) <= 1.0:
            raise ConfigurationError(f"loess_span must be in (0, 1], got {self.loess_span}", rule="invalid option")
        if not 0.0 < float(self.proportion) < 1.0:
            raise ConfigurationError(f"proportion must be in (0, 1), got {self.proportion}", rule="invalid option")
        if self.sort_by not in RESULT_COLUMNS:
            raise ConfigurationError(f"sort_by={self.sort_by!r} is not a result column", rule="invalid option")
        if int(self.n_jobs) < 1:
            raise ConfigurationError(f"n_jobs must be >= 1, got {self.n_jobs}", rule="invalid option")

    @classmethod
    def from_dict(cls, cfg: Optional[Dict[str, Any]]) -> "AnalysisConfig":
        """Build from the `analysis` section of a config; unknown keys are ignored."""
        cfg = cfg or {}
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in cfg.items() if k in known and v is not None}

        # legacy spelling used in older configs
        if "sign_threshold" in cfg and "alpha" not in kwargs:
            kwargs["alpha"] = cfg["sign_threshold"]
        return cls(**kwargs)

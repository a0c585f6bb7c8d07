from dataclasses import dataclass, field, asdict
from typing import Dict, FrozenSet, List, Optional
import pandas as pd

from contrastflux.utils.semantics import DIRECTION_UP, DIRECTION_DOWN, DIRECTION_CHANGED


@dataclass(frozen=True)
class ContrastSummary:
    contrast: str
    n_up: int
    n_down: int
    n_tested: int
    n_total: int
    n_filtered: int
    n_samples: int
    alpha: float
    lfc_threshold: float
    design: str
    formula: str
    normalization: str
    df_prior: float
    n_degenerate: int = 0
    scale_factors: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ContrastResult:
    name: str
    table: pd.DataFrame
    summary: ContrastSummary
    significant: Dict[str, FrozenSet[str]]

    def ids(self, direction: str = DIRECTION_CHANGED) -> FrozenSet[str]:
        """Significant feature identifiers for 'up', 'down' or 'changed'."""
        if direction not in (DIRECTION_UP, DIRECTION_DOWN, DIRECTION_CHANGED):
            raise ValueError(f"Unknown direction: {direction}")
        return self.significant[direction]


@dataclass
class PipelineResults:
    results: Dict[str, ContrastResult] = field(default_factory=dict)
    failures: Dict[str, Exception] = field(default_factory=dict)

    def __getitem__(self, name: str) -> ContrastResult:
        return self.results[name]

    @property
    def contrast_names(self) -> List[str]:
        return list(self.results)

    def summary_table(self) -> pd.DataFrame:
        """One row per successful contrast."""
        rows = []
        for res in self.results.values():
            row = res.summary.to_dict()
            row.pop("scale_factors", None)
            rows.append(row)
        return pd.DataFrame(rows).set_index("contrast") if rows else pd.DataFrame()

    def significant_long(self) -> pd.DataFrame:
        """Long table (contrast, direction, FEATURE_ID) of significant ids."""
        rows = [
            (name, direction, fid)
            for name, res in self.results.items()
            for direction in (DIRECTION_UP, DIRECTION_DOWN)
            for fid in sorted(res.significant[direction])
        ]
        return pd.DataFrame(rows, columns=["contrast", "direction", "FEATURE_ID"])

    def get(self, name: str) -> Optional[ContrastResult]:
        return self.results.get(name)

import pandas as pd
import numpy as np
import patsy
from typing import Optional, List
from contrastflux.utils.exceptions import ConfigurationError, IntegrityError


class DesignMatrixBuilder:
    """Zero-intercept, one-column-per-level design for a contrast's sample subset."""

    def __init__(
        self,
        sample_metadata: pd.DataFrame,
        design_factor: str,
        contrast_name: Optional[str] = None,
    ):
        self.meta = sample_metadata.copy()
        self.design_factor = design_factor
        self.contrast_name = contrast_name
        self.formula: Optional[str] = None
        self.levels: List[str] = []
        self.design_matrix: Optional[np.ndarray] = None
        self.design_info: Optional[patsy.DesignInfo] = None

    def build(self):
        factor = self.design_factor
        if factor not in self.meta.columns:
            raise ConfigurationError(
                f"design factor '{factor}' not found in sample metadata "
                f"(available: {list(self.meta.columns)})",
                contrast=self.contrast_name,
                rule="design factor",
            )
        if len(self.meta) == 0:
            raise IntegrityError("sample subset is empty", contrast=self.contrast_name, rule="empty subset")

        values = self.meta[factor].astype(str)
        self.levels = sorted(values.unique())

        # Indicator columns, then a patsy design without intercept (quoted so any level name works)
        tmp = pd.DataFrame(index=self.meta.index)
        for lvl in self.levels:
            tmp[lvl] = (values == lvl).astype(int)
        self.formula = "0 + " + " + ".join(f"Q({lvl!r})" for lvl in self.levels)
        design_dm = patsy.dmatrix(self.formula, tmp)

        self.design_matrix = np.asarray(design_dm, dtype=float)
        # Level-named design info: used to parse contrast formulas into coefficient vectors
        self.design_info = patsy.DesignInfo(list(self.levels))

        self._check_estimable()
        return self.design_matrix, self.design_info

    def _check_estimable(self) -> None:
        X = self.design_matrix
        n, p = X.shape
        rank = np.linalg.matrix_rank(X)
        if rank < p:
            raise IntegrityError(
                f"design matrix is rank-deficient (rank {rank} < {p} columns)",
                contrast=self.contrast_name,
                rule="rank-deficient design",
            )
        if n - rank <= 0:
            raise IntegrityError(
                f"no residual degrees of freedom ({n} samples for {p} groups)",
                contrast=self.contrast_name,
                rule="residual df",
            )

    def describe(self) -> str:
        """Human-readable design, e.g. '~ 0 + GROUP (KO, WT)'."""
        return f"~ 0 + {self.design_factor} ({', '.join(self.levels)})"

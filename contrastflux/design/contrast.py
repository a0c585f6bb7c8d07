from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Union

import numpy as np
import pandas as pd
import patsy

from contrastflux.utils.exceptions import ConfigurationError
from contrastflux.utils.utils import log_warning

SubsetPredicate = Union[Mapping[str, Any], Callable[[pd.DataFrame], Any], None]


@dataclass(frozen=True)
class ContrastDefinition:
    """
    One named comparison, supplied as static configuration.

    Attributes:
        name: Contrast name (used in logs, errors and export file names).
        design_factor: Sample-metadata column whose levels become the design columns.
        formula: Contrast as a linear expression of levels, e.g. "KO - WT" or
            "(KO_D1 - WT_D1) - (KO_D0 - WT_D0)". Mutually exclusive with `coefficients`.
        coefficients: Explicit {level: weight} mapping (levels not listed get 0), or a
            positional list with one weight per design level in sorted order.
        subset: {column: value or list of values} mapping, or a callable taking the
            sample metadata and returning a boolean mask. None keeps every sample.
        threshold: Minimum mean log2 abundance (over the subset) for a feature to be tested.
    """

    name: str
    design_factor: str = "GROUP"
    formula: Optional[str] = None
    coefficients: Optional[Mapping[str, float]] = None
    subset: SubsetPredicate = None
    threshold: float = 0.0
    description: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        if not self.name or not str(self.name).strip():
            raise ConfigurationError("contrast name must be a non-empty string", rule="contrast name")
        if (self.formula is None) == (self.coefficients is None):
            raise ConfigurationError(
                "exactly one of 'formula' or 'coefficients' must be given",
                contrast=self.name,
                rule="contrast specification",
            )
        if isinstance(self.coefficients, Mapping):
            object.__setattr__(self, "coefficients", dict(self.coefficients))
        elif self.coefficients is not None:
            # positional vector, one weight per sorted design level
            object.__setattr__(self, "coefficients", tuple(float(w) for w in self.coefficients))

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "ContrastDefinition":
        """Build from one entry of the `contrasts` config list."""
        cfg = dict(cfg or {})
        if "name" not in cfg:
            raise ConfigurationError(f"contrast entry without 'name': {cfg}", rule="contrast name")
        return cls(
            name=str(cfg["name"]),
            design_factor=str(cfg.get("design_factor", cfg.get("design", "GROUP"))),
            formula=cfg.get("formula"),
            coefficients=cfg.get("coefficients"),
            subset=cfg.get("subset"),
            threshold=float(cfg.get("threshold", 0.0)),
            description=cfg.get("description"),
        )

    def select_samples(self, obs: pd.DataFrame) -> np.ndarray:
        """Boolean mask over `obs` rows selected by the subset predicate."""
        pred = self.subset
        if pred is None:
            return np.ones(len(obs), dtype=bool)

        if callable(pred):
            mask = np.asarray(pred(obs), dtype=bool)
            if mask.shape != (len(obs),):
                raise ConfigurationError(
                    f"subset predicate returned shape {mask.shape}, expected ({len(obs)},)",
                    contrast=self.name,
                    rule="sample predicate",
                )
            return mask

        mask = np.ones(len(obs), dtype=bool)
        for col, wanted in pred.items():
            if col not in obs.columns:
                raise ConfigurationError(
                    f"subset column '{col}' not found in sample metadata",
                    contrast=self.name,
                    rule="sample predicate",
                )
            if isinstance(wanted, (list, tuple, set)):
                allowed = {str(v) for v in wanted}
            else:
                allowed = {str(wanted)}
            mask &= obs[col].astype(str).isin(allowed).to_numpy()
        return mask

    def formula_string(self) -> str:
        """Human-readable contrast."""
        if self.formula is not None:
            return " ".join(str(self.formula).split())
        if isinstance(self.coefficients, tuple):
            return "[" + ", ".join(f"{w:g}" for w in self.coefficients) + "]"
        terms = []
        for lvl, w in self.coefficients.items():
            if w == 0:
                continue
            sign = "-" if w < 0 else "+"
            mag = abs(w)
            coef = "" if mag == 1 else f"{mag:g}*"
            terms.append(f"{sign} {coef}{lvl}")
        out = " ".join(terms)
        return out[2:] if out.startswith("+ ") else out

    def contrast_vector(self, design_info: patsy.DesignInfo) -> np.ndarray:
        """
        Coefficient vector c (one entry per design column) for this contrast.

        Formulas are parsed as a single linear constraint, so an interaction
        '(A - B) - (C - D)' becomes one exact vector instead of two subtractions.
        """
        levels = list(design_info.column_names)

        if self.formula is not None:
            try:
                constraint = design_info.linear_constraint(str(self.formula))
            except patsy.PatsyError as e:
                raise ConfigurationError(
                    f"cannot parse formula {self.formula!r} against design levels {levels}: {e}",
                    contrast=self.name,
                    rule="contrast formula",
                ) from e
            if constraint.coefs.shape[0] != 1 or np.any(constraint.constants != 0):
                raise ConfigurationError(
                    f"formula {self.formula!r} must be a single linear expression of levels",
                    contrast=self.name,
                    rule="contrast formula",
                )
            vec = np.asarray(constraint.coefs[0], dtype=float)
        elif isinstance(self.coefficients, tuple):
            vec = np.asarray(self.coefficients, dtype=float)
        else:
            unknown = [lvl for lvl in self.coefficients if lvl not in levels]
            if unknown:
                raise ConfigurationError(
                    f"coefficients reference levels {unknown} absent from design levels {levels}",
                    contrast=self.name,
                    rule="coefficient vector length",
                )
            vec = np.array([float(self.coefficients.get(lvl, 0.0)) for lvl in levels])

        if vec.shape[0] != len(levels):
            raise ConfigurationError(
                f"coefficient vector has length {vec.shape[0]}, design has {len(levels)} columns",
                contrast=self.name,
                rule="coefficient vector length",
            )
        if not np.any(vec != 0):
            raise ConfigurationError("contrast vector is all zeros", contrast=self.name, rule="contrast formula")
        if abs(vec.sum()) > 1e-12:
            log_warning(f"[{self.name}] contrast coefficients sum to {vec.sum():g}, not a pure difference")
        return vec


def apply_contrast(fit_results: dict, contrast_vector: np.ndarray):
    """
    Applies one contrast vector to fitted model results.

    Parameters:
    - fit_results: output of LinearModelFitter.get_results()
    - contrast_vector: shape (p,) → p = design coefficients

    Returns:
    - log2fc: (n_proteins,) estimated contrast effects
    - stdev_unscaled: scalar sqrt(c' (X'X)^-1 c), same for all proteins
    """
    B = fit_results["coefficients"]      # (n_proteins x p)
    XtX_inv = fit_results["xtx_inv"]     # (p x p)
    c = np.asarray(contrast_vector, dtype=float)

    if c.shape[0] != B.shape[1]:
        raise ConfigurationError(
            f"coefficient vector has length {c.shape[0]}, design has {B.shape[1]} columns",
            rule="coefficient vector length",
        )

    log2fc = B @ c                       # (n_proteins,)
    variance_scale = float(c @ XtX_inv @ c)
    return log2fc, np.sqrt(variance_scale)

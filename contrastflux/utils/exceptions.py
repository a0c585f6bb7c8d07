"""Exception taxonomy for ContrastFlux.

Integrity errors flag data that cannot be fitted (missing values after the
build, empty subsets, rank-deficient designs). Configuration errors flag
contrast definitions or options that are invalid before any computation.
Both carry the contrast name and the rule that failed.
"""
from typing import Optional


class ContrastFluxError(Exception):
    """Base class for ContrastFlux errors."""

    def __init__(self, message: str, contrast: Optional[str] = None, rule: Optional[str] = None):
        self.message = message
        self.contrast = contrast
        self.rule = rule
        super().__init__(self._render())

    def _render(self) -> str:
        prefix = ""
        if self.contrast is not None:
            prefix += f"[{self.contrast}] "
        if self.rule is not None:
            prefix += f"{self.rule}: "
        return prefix + self.message


class IntegrityError(ContrastFluxError, ValueError):
    """Data-integrity violation (fatal for the matrix or for one contrast)."""


class ConfigurationError(ContrastFluxError, ValueError):
    """Invalid contrast definition or analysis option."""

from dataclasses import dataclass, field
from typing import Dict, Optional, Any, List
import numpy as np
import pandas as pd

from contrastflux.design.contrast import ContrastDefinition


@dataclass
class ContrastContext:
    """
    Per-contrast working state: owned by exactly one contrast computation,
    never shared, discarded once the result table is assembled.
    """
    definition: ContrastDefinition

    # Sample subset (rows of the shared obs, copied)
    obs: Optional[pd.DataFrame] = None

    # Feature ids of the subset, before and after low-abundance filtering
    all_features: Optional[np.ndarray] = None
    features: Optional[np.ndarray] = None

    # Store matrices at various stages (features x samples)
    matrices: Dict[str, np.ndarray] = field(default_factory=dict)

    # Stage outputs
    design_matrix: Optional[np.ndarray] = None
    levels: List[str] = field(default_factory=list)
    design_string: Optional[str] = None
    contrast_vector: Optional[np.ndarray] = None
    scale_factors: Optional[np.ndarray] = None
    lib_size: Optional[np.ndarray] = None
    fit: Dict[str, Any] = field(default_factory=dict)
    moderated: Dict[str, Any] = field(default_factory=dict)

    # Metadata for filtering and normalization steps
    metadata: Dict[str, Any] = field(default_factory=lambda: {
        "filtering": {},
        "normalization": {}})

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def samples(self) -> List[str]:
        return [] if self.obs is None else list(self.obs.index)

    def add_matrix(self, name: str, matrix: np.ndarray):
        """Add a matrix with automatic shape validation."""
        n_rows = len(self.features) if self.features is not None else len(self.all_features)
        if matrix.shape != (n_rows, len(self.samples)):
            raise ValueError(
                f"Matrix '{name}' has shape {matrix.shape}, expected ({n_rows}, {len(self.samples)})."
            )
        self.matrices[name] = matrix

    def add_metadata(self, step: str, key: str, value: Any):
        """Store metadata like threshold, scale factors, etc."""
        if step not in ["filtering", "normalization"]:
            raise ValueError("step must be 'filtering' or 'normalization'")
        self.metadata[step][key] = value

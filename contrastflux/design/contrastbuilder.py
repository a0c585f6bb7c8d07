from typing import Dict, Iterable, Iterator, List, Optional

import pandas as pd

from contrastflux.design.contrast import ContrastDefinition
from contrastflux.design.designmatrixbuilder import DesignMatrixBuilder
from contrastflux.utils.exceptions import ConfigurationError
from contrastflux.utils.utils import log_info


class ContrastRegistry:
    """
    Ordered, name-keyed collection of contrast definitions.

    The registry never computes anything; it validates definitions against the
    sample metadata so configuration errors surface before any fit starts.
    """

    def __init__(self, definitions: Optional[Iterable[ContrastDefinition]] = None):
        self._contrasts: Dict[str, ContrastDefinition] = {}
        for d in definitions or []:
            self.add(d)

    @classmethod
    def from_config(cls, contrasts_cfg: Optional[List[dict]]) -> "ContrastRegistry":
        if not contrasts_cfg:
            raise ConfigurationError("no contrasts configured", rule="contrast list")
        return cls(ContrastDefinition.from_dict(c) for c in contrasts_cfg)

    def add(self, definition: ContrastDefinition) -> None:
        if definition.name in self._contrasts:
            raise ConfigurationError("duplicate contrast name", contrast=definition.name, rule="contrast name")
        self._contrasts[definition.name] = definition

    def __getitem__(self, name: str) -> ContrastDefinition:
        return self._contrasts[name]

    def __iter__(self) -> Iterator[ContrastDefinition]:
        return iter(self._contrasts.values())

    def __len__(self) -> int:
        return len(self._contrasts)

    @property
    def names(self) -> List[str]:
        return list(self._contrasts)

    def validate_one(self, definition: ContrastDefinition, obs: pd.DataFrame) -> None:
        """Check predicate, design factor and coefficient vector of one contrast."""
        mask = definition.select_samples(obs)
        if not mask.any():
            raise ConfigurationError(
                "sample predicate matches zero samples",
                contrast=definition.name,
                rule="sample predicate",
            )
        if definition.design_factor not in obs.columns:
            raise ConfigurationError(
                f"design factor '{definition.design_factor}' not found in sample metadata",
                contrast=definition.name,
                rule="design factor",
            )
        builder = DesignMatrixBuilder(obs.loc[mask], definition.design_factor, contrast_name=definition.name)
        _, design_info = builder.build()
        definition.contrast_vector(design_info)

    def validate(self, obs: pd.DataFrame) -> None:
        """Validate every definition, raising on the first invalid one."""
        for definition in self:
            self.validate_one(definition, obs)
        log_info(f"Validated {len(self)} contrast(s): {', '.join(self.names)}")

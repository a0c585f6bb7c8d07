"""
Canonical semantics for ContrastFlux.

This module is intentionally small and declarative:
  - Canonical input kinds (what the builder receives)
  - Canonical normalization modes
  - Canonical configuration keys (and their accepted aliases)

Implementation details live elsewhere (builder, normalizers, pipelines).
"""

# Input kinds
INPUT_INTENSITY = "intensity"   # linear intensities -> log2(x + 1)
INPUT_RATIO = "ratio"           # already log2 ratios, used as-is
INPUT_COUNTS = "counts"         # count-like, log-CPM computed per contrast
INPUT_KINDS_CANONICAL = (INPUT_INTENSITY, INPUT_RATIO, INPUT_COUNTS)

# Normalization modes
NORM_NONE = "none"
NORM_UPPERQUARTILE = "upperquartile"
NORMALIZATION_MODES_CANONICAL = (NORM_NONE, NORM_UPPERQUARTILE)

NORMALIZATION_ALIASES = {
    "none": NORM_NONE,
    "identity": NORM_NONE,
    "uq": NORM_UPPERQUARTILE,
    "upper_quartile": NORM_UPPERQUARTILE,
    "upperquartile": NORM_UPPERQUARTILE,
}

INPUT_KIND_ALIASES = {
    "intensity": INPUT_INTENSITY,
    "intensities": INPUT_INTENSITY,
    "lfq": INPUT_INTENSITY,
    "ratio": INPUT_RATIO,
    "ratios": INPUT_RATIO,
    "log_ratio": INPUT_RATIO,
    "counts": INPUT_COUNTS,
    "count": INPUT_COUNTS,
    "spectral_counts": INPUT_COUNTS,
}

# Significance directions
DIRECTION_UP = "up"
DIRECTION_DOWN = "down"
DIRECTION_NS = "ns"
DIRECTION_CHANGED = "changed"

# Sample metadata columns
OBS_GROUP = "GROUP"

# Feature metadata columns
VAR_FEATURE_ID = "FEATURE_ID"
VAR_LABEL = "LABEL"

"""
Centralized result-table schema for ContrastFlux.

This module is intentionally small and declarative: it defines the canonical
column names of the per-contrast result tables and the keys written into the
shared AnnData by the builder.
"""

# -----------------------
# Result table columns (in output order)
# -----------------------
COL_FEATURE_ID = "FEATURE_ID"
COL_LABEL = "LABEL"
COL_LOG2FC = "log2FC"
COL_AVE_EXPR = "AveExpr"
COL_T = "t"
COL_PVALUE = "P.Value"
COL_ADJ_PVALUE = "adj.P.Val"
COL_LODS = "B"
COL_CI_LOW = "CI.L"
COL_CI_HIGH = "CI.R"
COL_SE = "SE"
COL_DF_TOTAL = "df.total"
COL_SIGNIFICANCE = "significance"

RESULT_COLUMNS = (
    COL_FEATURE_ID,
    COL_LABEL,
    COL_LOG2FC,
    COL_AVE_EXPR,
    COL_T,
    COL_PVALUE,
    COL_ADJ_PVALUE,
    COL_LODS,
    COL_CI_LOW,
    COL_CI_HIGH,
    COL_SE,
    COL_DF_TOTAL,
    COL_SIGNIFICANCE,
)

# Prefixes for per-group / per-sample blocks appended after RESULT_COLUMNS
PREFIX_MISSINGNESS = "Missingness_"
PREFIX_NORMALIZED = "normalized_"

# -----------------------
# .layers / .uns (builder)
# -----------------------
LAYER_RAW = "raw"
UNS_BUILD = "build"
UNS_INPUT_KIND = "input_kind"
UNS_OUTLIERS = "outliers_removed"
UNS_N_FEATURES_MERGED = "n_features_merged"
UNS_N_IMPUTED_CELLS = "n_zero_filled_cells"

from typing import Dict, FrozenSet, List, Optional

import numpy as np
import pandas as pd

from contrastflux.analysis import result_schema as rs
from contrastflux.analysis.missingness import MissingnessResult
from contrastflux.analysis.stats_ops import bh_qvalues, classify_significance, confidence_interval
from contrastflux.utils.config import AnalysisConfig
from contrastflux.utils.semantics import DIRECTION_UP, DIRECTION_DOWN, DIRECTION_CHANGED
from contrastflux.utils.utils import log_time


class StatisticalTester:
    """
    Turn one contrast's moderated statistics into its ranked result table.

    Computes FDR-adjusted q-values (BH, within the contrast), confidence
    intervals and up/down calls, then joins feature metadata, missingness
    and, optionally, the normalized values used for the fit.
    """

    def __init__(
        self,
        log2fc: np.ndarray,
        moderated: Dict[str, np.ndarray],
        amean: np.ndarray,
        feature_ids: List[str],
        labels: List[str],
        config: AnalysisConfig,
    ) -> None:
        """
        Args:
            log2fc: Estimated contrast effects (n_features,).
            moderated: Output of EbayesModerator.apply_to_contrast().
            amean: Average log abundance (n_features,).
            feature_ids: Feature identifiers of the tested features.
            labels: Human-readable labels, same order.
            config: Global analysis parameters.
        """
        self.log2fc = np.asarray(log2fc, dtype=float)
        self.moderated = moderated
        self.amean = np.asarray(amean, dtype=float)
        self.feature_ids = [str(f) for f in feature_ids]
        self.labels = [str(lbl) for lbl in labels]
        self.config = config

    @log_time("Compute statistics")
    def compute(self) -> pd.DataFrame:
        """Core statistics table, in result-schema column order (unsorted)."""
        m = self.moderated
        q_val = bh_qvalues(m["p"])
        ci_low, ci_high = confidence_interval(
            effect=self.log2fc, se=m["se"], df=m["df_total"], level=self.config.confint
        )
        calls = classify_significance(
            self.log2fc, q_val, alpha=self.config.alpha, lfc_threshold=self.config.lfc_threshold
        )

        return pd.DataFrame({
            rs.COL_FEATURE_ID: self.feature_ids,
            rs.COL_LABEL: self.labels,
            rs.COL_LOG2FC: self.log2fc,
            rs.COL_AVE_EXPR: self.amean,
            rs.COL_T: m["t"],
            rs.COL_PVALUE: m["p"],
            rs.COL_ADJ_PVALUE: q_val,
            rs.COL_LODS: m["lods"],
            rs.COL_CI_LOW: ci_low,
            rs.COL_CI_HIGH: ci_high,
            rs.COL_SE: m["se"],
            rs.COL_DF_TOTAL: np.broadcast_to(m["df_total"], self.log2fc.shape),
            rs.COL_SIGNIFICANCE: calls,
        })

    def assemble(
        self,
        missingness: Optional[MissingnessResult] = None,
        normalized: Optional[pd.DataFrame] = None,
    ) -> pd.DataFrame:
        """
        Final ordered table.

        Ordering: ascending raw p-value with ties broken by identifier; any other
        `sort_by` column sorts by that column (descending |value| for effects and
        statistics), again with identifier ties.
        """
        table = self.compute()

        blocks = [table]
        if missingness is not None:
            miss = missingness.df.reindex(self.feature_ids).add_prefix(rs.PREFIX_MISSINGNESS)
            blocks.append(miss.reset_index(drop=True))
        if normalized is not None and self.config.include_normalized:
            norm = normalized.reindex(self.feature_ids).add_prefix(rs.PREFIX_NORMALIZED)
            blocks.append(norm.reset_index(drop=True))
        table = pd.concat(blocks, axis=1)

        return self._order(table)

    def _order(self, table: pd.DataFrame) -> pd.DataFrame:
        key = self.config.sort_by
        if key in (rs.COL_PVALUE, rs.COL_ADJ_PVALUE, rs.COL_FEATURE_ID, rs.COL_LABEL, rs.COL_SIGNIFICANCE):
            ordered = table.sort_values([key, rs.COL_FEATURE_ID], kind="mergesort")
        elif key in (rs.COL_AVE_EXPR, rs.COL_DF_TOTAL, rs.COL_SE, rs.COL_CI_LOW, rs.COL_CI_HIGH):
            ordered = table.sort_values([key, rs.COL_FEATURE_ID], ascending=[False, True], kind="mergesort")
        else:
            # log2FC, t, B: strongest first
            tmp = table.assign(_abs=table[key].abs())
            ordered = tmp.sort_values(["_abs", rs.COL_FEATURE_ID], ascending=[False, True],
                                      kind="mergesort").drop(columns="_abs")
        return ordered.reset_index(drop=True)

    @staticmethod
    def significant_sets(table: pd.DataFrame) -> Dict[str, FrozenSet[str]]:
        """Per-direction sets of significant identifiers (the enrichment hand-off)."""
        calls = table[rs.COL_SIGNIFICANCE]
        ids = table[rs.COL_FEATURE_ID].astype(str)
        up = frozenset(ids[calls == DIRECTION_UP])
        down = frozenset(ids[calls == DIRECTION_DOWN])
        return {DIRECTION_UP: up, DIRECTION_DOWN: down, DIRECTION_CHANGED: up | down}

"""Export per-contrast differential-abundance results to Excel/CSV and write the shared .h5ad.

CSV layout: one `<prefix>_<contrast>.csv` per contrast plus `<prefix>_summary.csv`
and `<prefix>_significant.csv`. XLSX layout: one workbook with README, Summary,
Significant and one sheet per contrast.
"""
import re
import pandas as pd
from pathlib import Path
from datetime import datetime
from typing import Dict, Optional
from importlib.metadata import version as _pkg_version, PackageNotFoundError

from contrastflux.dataset.contrastresults import PipelineResults
from contrastflux.utils.utils import log_time, log_info

# Excel limits
_SHEET_MAX = 31
_SHEET_FORBIDDEN = re.compile(r"[\[\]:*?/\\]")
CSV_FLOAT_FORMAT = "%.17g"


def _safe_name(name: str) -> str:
    """Contrast name usable in a file name."""
    return re.sub(r"[^\w.\-]+", "_", str(name)).strip("_") or "contrast"


def _sheet_names(names) -> Dict[str, str]:
    """Map contrast -> unique sheet name (forbidden characters replaced, truncated to 31)."""
    taken = {"readme", "summary", "significant"}
    out = {}
    for name in names:
        base = _SHEET_FORBIDDEN.sub("_", str(name))[:_SHEET_MAX]
        sheet, k = base, 1
        while sheet.lower() in taken:
            k += 1
            suffix = f"~{k}"
            sheet = base[: _SHEET_MAX - len(suffix)] + suffix
        taken.add(sheet.lower())
        out[name] = sheet
    return out


class DEExporter:
    def __init__(
        self,
        results: PipelineResults,
        output_path,
        use_xlsx: bool = False,
        adata=None,
        config: Optional[dict] = None,
    ):
        """Excel/CSV and .h5ad exporter for a finished run."""
        self.results = results
        self.output_path = Path(output_path)
        self.use_xlsx = use_xlsx
        self.adata = adata
        self.config = config or {}

    def _readme(self) -> str:
        alpha = {r.summary.alpha for r in self.results.results.values()}
        lines = [
            "ContrastFlux Differential Abundance Export",
            "",
            f"Created: {datetime.now().isoformat(timespec='seconds')}",
            f"Contrasts: {', '.join(self.results.contrast_names)}",
            f"Significance level (adj.P.Val): {', '.join(f'{a:g}' for a in sorted(alpha))}",
            "",
            "Sheet Descriptions:",
            "- Summary: one row per contrast (counts, design, formula, prior df).",
            "- Significant: significant feature identifiers per contrast and direction.",
            "- <contrast>: full result table, sorted by P.Value.",
            "",
            "Columns: log2FC = contrast effect (log2), AveExpr = mean log2 abundance,",
            "t = moderated t, P.Value = raw p, adj.P.Val = BH within the contrast,",
            "B = log-odds of differential abundance, CI.L/CI.R = confidence interval,",
            "SE = moderated standard error, df.total = residual + prior df.",
        ]
        analysis = self.config.get("analysis") or {}
        if analysis:
            lines += ["", "Analysis parameters:"]
            lines += [f"- {key}: {value}" for key, value in analysis.items()]
        if self.results.failures:
            lines += ["", "Failed contrasts:"]
            lines += [f"- {name}: {err}" for name, err in self.results.failures.items()]
        return "\n".join(lines)

    def _export_excel(self) -> Path:
        """Write every table to a single XLSX with a README sheet."""
        out_file = self.output_path.with_suffix(".xlsx")
        sheets = _sheet_names(self.results.contrast_names)

        with pd.ExcelWriter(out_file, engine="xlsxwriter") as writer:
            writer.book.use_zip64()

            pd.DataFrame({"README": self._readme().split("\n")}).to_excel(
                writer, index=False, sheet_name="README"
            )
            self.results.summary_table().reset_index().to_excel(writer, index=False, sheet_name="Summary")
            self.results.significant_long().to_excel(writer, index=False, sheet_name="Significant")

            for name, sheet in sheets.items():
                table = self.results[name].table
                table.to_excel(writer, index=False, sheet_name=sheet)
                writer.sheets[sheet].set_column(0, len(table.columns) - 1, 14)
        return out_file

    def _export_csvs(self) -> Path:
        """Write each table to a separate CSV with a shared filename prefix."""
        prefix = self.output_path.with_suffix("")
        for name in self.results.contrast_names:
            self.results[name].table.to_csv(
                f"{prefix}_{_safe_name(name)}.csv", index=False, float_format=CSV_FLOAT_FORMAT
            )
        self.results.summary_table().to_csv(f"{prefix}_summary.csv", float_format=CSV_FLOAT_FORMAT)
        self.results.significant_long().to_csv(f"{prefix}_significant.csv", index=False)
        return Path(f"{prefix}_summary.csv")

    @log_time("Differential Abundance - exporting tables")
    def export(self) -> Path:
        """Export every contrast table plus summaries as xlsx (or csv)."""
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        out = self._export_excel() if self.use_xlsx else self._export_csvs()
        log_info(f"Exported {len(self.results.contrast_names)} contrast table(s) to {out.parent}")
        return out

    @log_time("Exporting .h5ad")
    def export_adata(self, h5ad_path: str) -> None:
        """Write the shared matrix (copy) with run metadata and the contrast summary."""
        if self.adata is None:
            raise ValueError("No AnnData given to the exporter.")
        adata = self.adata.copy()

        for col in adata.obs.columns:
            if adata.obs[col].dtype == object:
                adata.obs[col] = adata.obs[col].astype("category")

        try:
            cf_version = _pkg_version("contrastflux")
        except PackageNotFoundError:
            cf_version = "0+unknown"
        adata.uns["contrastflux"] = {
            "version": cf_version,
            "created_at": datetime.now().isoformat(timespec="seconds") + "Z",
            "contrasts": list(self.results.contrast_names),
            "failed_contrasts": list(self.results.failures),
        }
        summary = self.results.summary_table()
        if not summary.empty:
            adata.uns["contrast_summary"] = summary.reset_index()

        Path(h5ad_path).parent.mkdir(parents=True, exist_ok=True)
        adata.write(h5ad_path, compression="gzip")

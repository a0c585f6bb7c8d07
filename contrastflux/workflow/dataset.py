import polars as pl
import pandas as pd
import numpy as np
import anndata as ad
import warnings
from copy import deepcopy
from functools import reduce
from typing import Dict, Iterable, List, Optional, Sequence

from contrastflux.analysis import result_schema as rs
from contrastflux.utils.analysis_type import normalize_input_kind
from contrastflux.utils.exceptions import ConfigurationError, IntegrityError
from contrastflux.utils.semantics import (
    INPUT_INTENSITY,
    INPUT_RATIO,
    OBS_GROUP,
    VAR_FEATURE_ID,
    VAR_LABEL,
)
from contrastflux.utils.utils import polars_matrix_to_numpy, log_time, log_info, log_warning

# Suppress the ImplicitModificationWarning from AnnData
warnings.filterwarnings("ignore", category=UserWarning, message=".*Transforming to str index.*")


def _to_set(x) -> set:
    if x is None:
        return set()
    if isinstance(x, str):
        return {x.strip()} if x.strip() else set()
    try:
        return {str(v).strip() for v in x if str(v).strip()}
    except TypeError:
        # not iterable (e.g. int); fall back to single-item set
        s = str(x).strip()
        return {s} if s else set()


def _uniquify(ids: List[str], labels: List[str], ambiguous: set) -> List[str]:
    """Key ambiguous identifiers as ID|LABEL (then ID|LABEL#k); never drops a row."""
    out, seen = [], set()
    for fid, lbl in zip(ids, labels):
        new = f"{fid}|{lbl}" if fid in ambiguous else fid
        base, k = new, 1
        while new in seen:
            k += 1
            new = f"{base}#{k}"
        seen.add(new)
        out.append(new)
    return out


class AbundanceMatrixBuilder:
    """
    Merge raw per-run tables (wide: one numeric column per sample) into one
    dense feature x sample matrix held in an AnnData.

    Policy: full outer join on the identifier, identifier/label back-fill,
    zero-fill of missing cells, log2(x + 1) for intensities, outlier samples
    dropped after the transform. The pre-fill values are kept in layer "raw".
    """

    def __init__(
        self,
        id_col: str = "PROTEIN_ID",
        label_col: str = "GENE_NAME",
        input_kind: str = INPUT_INTENSITY,
        outliers: Optional[Iterable[str]] = None,
        group_factors: Optional[Sequence[str]] = None,
        group_col: str = OBS_GROUP,
        sample_col: str = "Sample",
    ):
        self.id_col = id_col
        self.label_col = label_col
        self.input_kind = normalize_input_kind(input_kind)
        self.outliers = _to_set(outliers)
        self.group_factors = list(group_factors or [])
        self.group_col = group_col
        self.sample_col = sample_col

    # -----------------------
    # per-run preparation
    # -----------------------
    def _prepare_run(self, df: pl.DataFrame, run_idx: int) -> pl.DataFrame:
        if self.id_col not in df.columns and self.label_col not in df.columns:
            raise IntegrityError(
                f"run {run_idx} has neither '{self.id_col}' nor '{self.label_col}'",
                rule="identifier columns",
            )
        for col in (self.id_col, self.label_col):
            if col not in df.columns:
                df = df.with_columns(pl.lit(None, dtype=pl.Utf8).alias(col))

        # Empty strings count as missing; each field back-fills the other
        def _clean(col):
            s = pl.col(col).cast(pl.Utf8).str.strip_chars()
            return pl.when(s == "").then(None).otherwise(s)

        df = df.with_columns(_clean(self.id_col).alias(self.id_col), _clean(self.label_col).alias(self.label_col))
        df = df.with_columns(
            pl.coalesce([pl.col(self.id_col), pl.col(self.label_col)]).alias(self.id_col),
            pl.coalesce([pl.col(self.label_col), pl.col(self.id_col)]).alias(self.label_col),
        )

        n_anon = df.filter(pl.col(self.id_col).is_null()).height
        if n_anon:
            raise IntegrityError(
                f"run {run_idx}: {n_anon} row(s) without identifier or label",
                rule="identifier columns",
            )

        samples = [c for c in df.columns if c not in (self.id_col, self.label_col)]
        non_numeric = [c for c in samples if not df.schema[c].is_numeric()]
        if non_numeric:
            raise IntegrityError(
                f"run {run_idx}: non-numeric sample column(s) {non_numeric}",
                rule="numeric matrix",
            )

        return df.select(
            [pl.col(self.id_col), pl.col(self.label_col).alias(f"__label_{run_idx}")]
            + [pl.col(c).cast(pl.Float64) for c in samples]
        )

    def _key_ambiguous(self, prepared: List[pl.DataFrame]) -> List[pl.DataFrame]:
        """Rename identifiers duplicated in any run to ID|LABEL in every run."""
        ambiguous = set()
        for df in prepared:
            ids = df.get_column(self.id_col)
            ambiguous |= set(ids.filter(ids.is_duplicated()).to_list())
        if not ambiguous:
            return prepared

        log_warning(f"{len(ambiguous)} duplicate identifier(s) keyed as ID|LABEL across all runs")
        out = []
        for i, df in enumerate(prepared):
            ids = df.get_column(self.id_col).to_list()
            labels = df.get_column(f"__label_{i}").to_list()
            out.append(df.with_columns(pl.Series(self.id_col, _uniquify(ids, labels, ambiguous))))
        return out

    @log_time("Merging runs")
    def merge_runs(self, runs: Sequence[pl.DataFrame]) -> pl.DataFrame:
        """Full outer join on the identifier; returns id, label and sample columns (nulls kept)."""
        if not runs:
            raise ConfigurationError("no run tables given", rule="dataset runs")

        prepared = [self._prepare_run(df, i) for i, df in enumerate(runs)]
        prepared = self._key_ambiguous(prepared)

        seen: Dict[str, int] = {}
        for i, df in enumerate(prepared):
            for c in df.columns[2:]:
                if c in seen:
                    raise IntegrityError(
                        f"sample column '{c}' appears in run {seen[c]} and run {i}",
                        rule="duplicate sample",
                    )
                seen[c] = i

        merged = reduce(
            lambda left, right: left.join(right, on=self.id_col, how="full", coalesce=True),
            prepared,
        )
        label_cols = [f"__label_{i}" for i in range(len(prepared))]
        merged = merged.with_columns(
            pl.coalesce([pl.col(c) for c in label_cols] + [pl.col(self.id_col)]).alias(self.label_col)
        ).drop(label_cols)

        sample_cols = [c for df in prepared for c in df.columns[2:]]
        merged = merged.select([self.id_col, self.label_col] + sample_cols).sort(self.id_col)
        log_info(f"Merged {len(prepared)} run(s): {merged.height} features x {len(sample_cols)} samples")
        return merged

    # -----------------------
    # matrix policy
    # -----------------------
    def _transform(self, mat: np.ndarray) -> np.ndarray:
        if self.input_kind == INPUT_INTENSITY:
            with np.errstate(invalid="ignore"):
                return np.log2(mat + 1.0)
        # ratio: already log-scale; counts: transformed per contrast (log-CPM)
        return mat

    def _attach_metadata(self, samples: List[str], sample_metadata) -> pd.DataFrame:
        if sample_metadata is None:
            obs = pd.DataFrame(index=pd.Index(samples, name=self.sample_col))
        else:
            meta = sample_metadata.to_pandas() if isinstance(sample_metadata, pl.DataFrame) else sample_metadata.copy()
            if self.sample_col in meta.columns:
                meta = meta.set_index(self.sample_col)
            meta.index = meta.index.astype(str)

            missing = [s for s in samples if s not in meta.index]
            if missing:
                raise ConfigurationError(
                    f"sample(s) {missing} not found in sample metadata",
                    rule="sample metadata",
                )
            obs = meta.loc[samples].copy()
            obs.index.name = self.sample_col

        if self.group_factors:
            absent = [f for f in self.group_factors if f not in obs.columns]
            if absent:
                raise ConfigurationError(
                    f"group factor(s) {absent} not found in sample metadata",
                    rule="sample metadata",
                )
            obs[self.group_col] = obs[self.group_factors].astype(str).agg("_".join, axis=1)

        for col in obs.columns:
            if obs[col].dtype == object:
                obs[col] = obs[col].astype(str)
        return obs

    @log_time("Building abundance matrix")
    def build(self, runs: Sequence[pl.DataFrame], sample_metadata=None) -> ad.AnnData:
        merged = self.merge_runs(runs)

        raw, ids = polars_matrix_to_numpy(merged.drop(self.label_col), index_col=self.id_col)
        labels = merged.get_column(self.label_col).to_list()
        samples = merged.columns[2:]

        if self.input_kind != INPUT_RATIO and np.any(raw[~np.isnan(raw)] < 0):
            raise IntegrityError(f"negative values in {self.input_kind} input", rule="numeric matrix")

        n_filled = int(np.isnan(raw).sum())
        X = self._transform(np.where(np.isnan(raw), 0.0, raw))
        log_info(f"Zero-filled {n_filled} missing cell(s); input kind '{self.input_kind}'")

        # Outliers are dropped after the transform
        present = set(samples)
        to_drop = sorted(self.outliers & present)
        not_found = sorted(self.outliers - present)
        if not_found:
            head = ", ".join(not_found[:10])
            tail = " ..." if len(not_found) > 10 else ""
            log_info(f"Outliers: {len(not_found)} not found in data → ignored: [{head}{tail}]")
        keep = np.array([s not in to_drop for s in samples], dtype=bool)
        if to_drop:
            log_info(f"Outliers: dropped {len(to_drop)} sample(s): {to_drop}")
        samples = [s for s, k in zip(samples, keep) if k]
        X, raw = X[:, keep], raw[:, keep]

        if not np.all(np.isfinite(X)):
            raise IntegrityError(
                f"{int((~np.isfinite(X)).sum())} missing or non-finite value(s) remain after zero-fill",
                rule="missing values",
            )
        if not samples:
            raise IntegrityError("no sample left after outlier removal", rule="empty matrix")

        obs = self._attach_metadata(samples, sample_metadata)
        var = pd.DataFrame({VAR_FEATURE_ID: ids, VAR_LABEL: [str(lbl) for lbl in labels]}, index=ids)

        adata = ad.AnnData(X=X.T.copy(), obs=obs, var=var)
        adata.layers[rs.LAYER_RAW] = raw.T.copy()
        adata.uns[rs.UNS_BUILD] = {
            rs.UNS_INPUT_KIND: self.input_kind,
            rs.UNS_OUTLIERS: list(to_drop),
            rs.UNS_N_FEATURES_MERGED: int(len(ids)),
            rs.UNS_N_IMPUTED_CELLS: n_filled,
        }
        return adata


class Dataset:
    """Config-driven loader: read run tables and sample metadata, build the AnnData."""

    def __init__(self, **kwargs):
        """
        Initialize the dataset object.

        Args:
            kwargs: dict with all the config elements
        """
        dataset_cfg = deepcopy(kwargs.get("dataset", {}) or {})

        runs = dataset_cfg.get("runs") or dataset_cfg.get("input_files") or []
        if isinstance(runs, str):
            runs = [runs]
        self.run_files: List[str] = [str(r) for r in runs]
        self.sample_table = dataset_cfg.get("sample_table")

        self.builder = AbundanceMatrixBuilder(
            id_col=dataset_cfg.get("id_column", "PROTEIN_ID"),
            label_col=dataset_cfg.get("label_column", "GENE_NAME"),
            input_kind=dataset_cfg.get("input_kind", INPUT_INTENSITY),
            outliers=_to_set(dataset_cfg.get("outliers")),
            group_factors=dataset_cfg.get("group_factors") or [],
            group_col=dataset_cfg.get("group_column", OBS_GROUP),
            sample_col=dataset_cfg.get("sample_column", "Sample"),
        )

        if not self.run_files:
            raise ConfigurationError("dataset.runs is empty", rule="dataset runs")

        raw_runs = [self._load_rawdata(f) for f in self.run_files]
        metadata = self._load_rawdata(self.sample_table) if self.sample_table else None
        if metadata is not None and self.builder.sample_col in metadata.columns:
            metadata = metadata.with_columns(pl.col(self.builder.sample_col).cast(pl.Utf8))
        self.adata = self.builder.build(raw_runs, metadata)

    @log_time("Data Loading")
    def _load_rawdata(self, file_path: str) -> pl.DataFrame:
        """Load a CSV or TSV table with polars."""
        if not str(file_path).endswith((".csv", ".tsv")):
            raise ValueError("Only CSV or TSV files are supported.")

        delimiter = "\t" if str(file_path).endswith(".tsv") else ","
        return pl.read_csv(file_path,
                           separator=delimiter,
                           infer_schema_length=10000,
                           null_values=["NA", "NaN", "N/A", ""])

    def get_anndata(self) -> ad.AnnData:
        """Export the processed dataset as an AnnData object."""
        return self.adata

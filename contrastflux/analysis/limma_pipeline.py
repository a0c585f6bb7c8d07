"""Limma-style differential abundance, one independent model per contrast.

This module provides:
  - `run_contrast`: subset -> filter -> normalize -> fit -> contrast -> eBayes -> BH -> table
  - `run_contrasts`: every contrast of a registry, with partial-failure isolation
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional

import anndata as ad
import numpy as np
import pandas as pd

from contrastflux.analysis import result_schema as rs
from contrastflux.analysis.ebayes_moderator import EbayesModerator
from contrastflux.analysis.linearmodelfitter import LinearModelFitter
from contrastflux.analysis.missingness import compute_missingness
from contrastflux.analysis.statisticaltester import StatisticalTester
from contrastflux.dataset.contrastresults import ContrastResult, ContrastSummary, PipelineResults
from contrastflux.dataset.intermediateresults import ContrastContext
from contrastflux.design.contrast import ContrastDefinition, apply_contrast
from contrastflux.design.contrastbuilder import ContrastRegistry
from contrastflux.design.designmatrixbuilder import DesignMatrixBuilder
from contrastflux.utils.config import AnalysisConfig
from contrastflux.utils.exceptions import ConfigurationError, IntegrityError
from contrastflux.utils.semantics import INPUT_COUNTS, INPUT_INTENSITY, DIRECTION_UP, DIRECTION_DOWN, VAR_LABEL
from contrastflux.utils.utils import log_info, log_warning, log_time, log_indent
from contrastflux.workflow.filtering import filter_low_abundance
from contrastflux.workflow.normalizers.upper_quartile import compute_scale_factors, log_cpm


def _input_kind(adata: ad.AnnData) -> str:
    build = adata.uns.get(rs.UNS_BUILD, {}) or {}
    return str(build.get(rs.UNS_INPUT_KIND, INPUT_INTENSITY))


def _subset(adata: ad.AnnData, ctx: ContrastContext) -> np.ndarray:
    """Select the contrast's samples; copies obs and the matrix into the context."""
    definition = ctx.definition
    mask = definition.select_samples(adata.obs)
    if not mask.any():
        raise ConfigurationError(
            "sample predicate matches zero samples", contrast=ctx.name, rule="sample predicate"
        )
    ctx.obs = adata.obs.loc[mask].copy()
    ctx.all_features = np.asarray(adata.var_names, dtype=str)

    X = np.asarray(adata.X[mask], dtype=float).T.copy()   # features x samples
    if not np.all(np.isfinite(X)):
        raise IntegrityError("matrix contains missing or non-finite values", contrast=ctx.name,
                             rule="missing values")
    ctx.add_matrix("subset", X)
    return mask


def _filter_and_normalize(ctx: ContrastContext, input_kind: str, config: AnalysisConfig) -> np.ndarray:
    """Contrast-local filtering and scale factors; returns the (features x samples) matrix to fit."""
    X = ctx.matrices["subset"]

    if input_kind == INPUT_COUNTS:
        if np.any(X < 0):
            raise IntegrityError("negative counts", contrast=ctx.name, rule="counts input")
        ctx.lib_size = X.sum(axis=0)
        if np.any(ctx.lib_size <= 0):
            raise IntegrityError("sample with zero library size", contrast=ctx.name, rule="counts input")
        # threshold applies to mean log-CPM
        keep, _ = filter_low_abundance(log_cpm(X, ctx.lib_size), ctx.definition.threshold, ctx.name)
    else:
        keep, _ = filter_low_abundance(X, ctx.definition.threshold, ctx.name)

    ctx.features = ctx.all_features[keep]
    filtered = X[keep]
    ctx.add_matrix("filtered", filtered)
    ctx.add_metadata("filtering", "threshold", ctx.definition.threshold)
    ctx.add_metadata("filtering", "n_dropped", int((~keep).sum()))

    factors = compute_scale_factors(filtered, config.normalization, input_kind, lib_size=ctx.lib_size)
    ctx.scale_factors = factors
    ctx.add_metadata("normalization", "mode", config.normalization)
    ctx.add_metadata("normalization", "applied", input_kind == INPUT_COUNTS)

    if input_kind == INPUT_COUNTS:
        fitted_on = log_cpm(filtered, ctx.lib_size, factors)
    else:
        # log-scale input: factors are reported, not applied
        fitted_on = filtered
    ctx.add_matrix("normalized", fitted_on)
    return fitted_on


@log_time("Contrast")
def run_contrast(
    adata: ad.AnnData,
    definition: ContrastDefinition,
    config: Optional[AnalysisConfig] = None,
) -> ContrastResult:
    """Full differential-abundance computation for ONE contrast.

    The shared `adata` is only read; every intermediate lives in a private
    ContrastContext that is dropped once the result table is assembled.
    """
    config = config or AnalysisConfig()
    ctx = ContrastContext(definition=definition)
    log_info(f"Contrast '{ctx.name}': {definition.formula_string()}")

    with log_indent():
        mask = _subset(adata, ctx)
        input_kind = _input_kind(adata)
        Y = _filter_and_normalize(ctx, input_kind, config)

        builder = DesignMatrixBuilder(ctx.obs, definition.design_factor, contrast_name=ctx.name)
        ctx.design_matrix, design_info = builder.build()
        ctx.levels = list(builder.levels)
        ctx.design_string = builder.describe()
        ctx.contrast_vector = definition.contrast_vector(design_info)

        fitter = LinearModelFitter(Y, ctx.design_matrix, contrast_name=ctx.name).fit()
        ctx.fit = fitter.get_results()
        log2fc, stdev_unscaled = apply_contrast(ctx.fit, ctx.contrast_vector)

        moderator = EbayesModerator(
            ctx.fit["residual_variance"],
            ctx.fit["df_residual"],
            amean=ctx.fit["amean"],
            trend=config.trend,
            robust=config.robust,
            span=config.loess_span,
            proportion=config.proportion,
            contrast_name=ctx.name,
        )
        moderator.fit()
        ctx.moderated = moderator.apply_to_contrast(log2fc, stdev_unscaled)
        if ctx.moderated["n_degenerate"]:
            log_warning(f"{ctx.moderated['n_degenerate']} feature(s) with zero standard error")

        # Per-group counts of originally missing values (pre-fill layer)
        keep_cols = np.isin(ctx.all_features, ctx.features)
        raw = None
        if rs.LAYER_RAW in adata.layers:
            raw = np.asarray(adata.layers[rs.LAYER_RAW][mask], dtype=float).T[keep_cols]
        missingness = compute_missingness(
            raw,
            conditions=ctx.obs[definition.design_factor].astype(str).tolist(),
            feature_ids=list(ctx.features),
        )

        labels = adata.var[VAR_LABEL].astype(str).to_numpy()[keep_cols] \
            if VAR_LABEL in adata.var.columns else ctx.features
        normalized = pd.DataFrame(ctx.matrices["normalized"], index=ctx.features, columns=ctx.samples)

        tester = StatisticalTester(
            log2fc=log2fc,
            moderated=ctx.moderated,
            amean=ctx.fit["amean"],
            feature_ids=list(ctx.features),
            labels=list(labels),
            config=config,
        )
        table = tester.assemble(missingness=missingness, normalized=normalized)
        significant = StatisticalTester.significant_sets(table)

        summary = ContrastSummary(
            contrast=ctx.name,
            n_up=len(significant[DIRECTION_UP]),
            n_down=len(significant[DIRECTION_DOWN]),
            n_tested=len(ctx.features),
            n_total=len(ctx.all_features),
            n_filtered=int(ctx.metadata["filtering"]["n_dropped"]),
            n_samples=len(ctx.samples),
            alpha=config.alpha,
            lfc_threshold=config.lfc_threshold,
            design=ctx.design_string,
            formula=definition.formula_string(),
            normalization=config.normalization,
            df_prior=float(moderator.d0),
            n_degenerate=int(ctx.moderated["n_degenerate"]),
            scale_factors={s: float(f) for s, f in zip(ctx.samples, ctx.scale_factors)},
        )
        log_info(f"{summary.n_up} up, {summary.n_down} down of {summary.n_tested} tested "
                 f"(adj.P.Val <= {config.alpha:g}, |log2FC| > {config.lfc_threshold:g})")

    return ContrastResult(name=ctx.name, table=table, summary=summary, significant=significant)


@log_time("Analysis pipeline")
def run_contrasts(
    adata: ad.AnnData,
    registry: ContrastRegistry,
    config: Optional[AnalysisConfig] = None,
    raise_on_error: bool = False,
) -> PipelineResults:
    """Run every registered contrast against the shared matrix.

    With `raise_on_error=False` a failing contrast is logged and recorded in
    `failures`; the remaining contrasts are still computed. Results keep the
    registry order regardless of `n_jobs`.
    """
    config = config or AnalysisConfig()
    outcomes: Dict[str, object] = {}

    def _one(definition: ContrastDefinition):
        try:
            registry.validate_one(definition, adata.obs)
            return run_contrast(adata, definition, config)
        except (ValueError, ArithmeticError, np.linalg.LinAlgError) as e:
            if raise_on_error:
                raise
            log_warning(f"Contrast '{definition.name}' failed: {e}")
            return e

    if config.n_jobs > 1 and len(registry) > 1:
        with ThreadPoolExecutor(max_workers=config.n_jobs) as pool:
            futures = {d.name: pool.submit(_one, d) for d in registry}
            for name, fut in futures.items():
                outcomes[name] = fut.result()
    else:
        for d in registry:
            outcomes[d.name] = _one(d)

    results = PipelineResults()
    for name in registry.names:
        out = outcomes[name]
        if isinstance(out, ContrastResult):
            results.results[name] = out
        else:
            results.failures[name] = out

    log_info(f"{len(results.results)} contrast(s) done, {len(results.failures)} failed")
    return results

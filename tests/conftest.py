"""Shared pytest fixtures for ContrastFlux tests.

Fixtures build small AnnData abundance matrices directly (bypassing the run
merger) so that statistical behaviour can be checked on known numbers, plus
raw polars run tables for the builder tests.
"""

import anndata as ad
import numpy as np
import pandas as pd
import polars as pl
import pytest

from contrastflux.analysis import result_schema as rs
from contrastflux.utils.config import AnalysisConfig
from contrastflux.utils.semantics import INPUT_INTENSITY, OBS_GROUP, VAR_FEATURE_ID, VAR_LABEL


def make_adata(X_fxs, samples, groups, feature_ids=None, labels=None, input_kind=INPUT_INTENSITY,
               extra_obs=None, raw_fxs=None) -> ad.AnnData:
    """AnnData from a (features x samples) matrix, as the builder would produce it."""
    X_fxs = np.asarray(X_fxs, dtype=float)
    n_feat = X_fxs.shape[0]
    feature_ids = feature_ids or [f"P{i:03d}" for i in range(n_feat)]
    labels = labels or [f"GENE{i}" for i in range(n_feat)]

    obs = pd.DataFrame({OBS_GROUP: list(groups)}, index=pd.Index(list(samples), name="Sample"))
    for col, values in (extra_obs or {}).items():
        obs[col] = list(values)
    var = pd.DataFrame({VAR_FEATURE_ID: feature_ids, VAR_LABEL: labels}, index=feature_ids)

    adata = ad.AnnData(X=X_fxs.T.copy(), obs=obs, var=var)
    adata.layers[rs.LAYER_RAW] = (X_fxs if raw_fxs is None else np.asarray(raw_fxs, dtype=float)).T.copy()
    adata.uns[rs.UNS_BUILD] = {rs.UNS_INPUT_KIND: input_kind}
    return adata


@pytest.fixture
def config() -> AnalysisConfig:
    """Default analysis parameters."""
    return AnalysisConfig()


@pytest.fixture
def scenario_a_adata() -> ad.AnnData:
    """Two groups of three; P1 is ~2-fold up in B with low variance, P2 does not change."""
    X = np.array([
        [10.0, 10.1, 9.9, 11.0, 11.1, 10.9],
        [5.0, 5.2, 4.8, 5.1, 4.9, 5.05],
    ])
    samples = ["A1", "A2", "A3", "B1", "B2", "B3"]
    groups = ["A", "A", "A", "B", "B", "B"]
    return make_adata(X, samples, groups, feature_ids=["P1", "P2"], labels=["GENE1", "GENE2"])


@pytest.fixture
def factorial_adata() -> ad.AnnData:
    """
    2x2 design (GENOTYPE KO/WT x TIME D0/D1), 3 replicates per cell, 60 features.

    Features 0-4 carry a genotype effect at D1 only (an interaction); features
    5-9 carry a genotype effect at both time points; features 50-59 are low
    abundance (mean log2 ~ 3).
    """
    rng = np.random.default_rng(42)
    genotypes = ["KO", "WT"]
    times = ["D0", "D1"]
    samples, geno_col, time_col = [], [], []
    for g in genotypes:
        for t in times:
            for r in range(1, 4):
                samples.append(f"{g}_{t}_{r}")
                geno_col.append(g)
                time_col.append(t)
    groups = [f"{g}_{t}" for g, t in zip(geno_col, time_col)]

    n_feat = 60
    base = rng.uniform(18, 26, size=n_feat)
    base[50:] = 3.0
    X = base[:, None] + rng.normal(0, 0.2, size=(n_feat, len(samples)))

    geno = np.array(geno_col)
    time = np.array(time_col)
    X[0:5][:, (geno == "KO") & (time == "D1")] += 2.0
    X[5:10][:, geno == "KO"] += 1.5

    return make_adata(X, samples, groups, extra_obs={"GENOTYPE": geno_col, "TIME": time_col})


@pytest.fixture
def run_tables():
    """Two raw runs (wide layout): one sample each, P3 reported by run 1 only."""
    run1 = pl.DataFrame({
        "PROTEIN_ID": ["P1", "P2", "P3"],
        "GENE_NAME": ["G1", None, "G3"],
        "S1": [100.0, 7.0, 31.0],
    })
    run2 = pl.DataFrame({
        "PROTEIN_ID": ["P1", None],
        "GENE_NAME": [None, "P2"],
        "S2": [300.0, 15.0],
    })
    return [run1, run2]


@pytest.fixture
def sample_table():
    return pl.DataFrame({
        "Sample": ["S1", "S2", "S3"],
        "GENOTYPE": ["WT", "KO", "KO"],
        "TIME": ["D0", "D0", "D1"],
    })

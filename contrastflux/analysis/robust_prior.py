import numpy as np
from scipy.stats import t as t_dist


def tmixture_vector(t_stat: np.ndarray, stdev_unscaled, df: np.ndarray, proportion: float = 0.01,
                    v0_lim=None) -> float:
    """
    Empirical Bayes estimation of prior variance on logFCs (var.prior),
    matching limma's tmixture.vector()

    Parameters:
    - t_stat: moderated t-values (n_genes,)
    - stdev_unscaled: sqrt(cᵀ(X'X)⁻¹c), scalar or (n_genes,)
    - df: total degrees of freedom (n_genes,)
    - proportion: assumed proportion of DE genes
    - v0_lim: optional (low, high) limits for each per-gene estimate

    Returns:
    - var_prior: estimated prior variance of the true logFCs (nan if too few genes)
    """
    t_stat = np.abs(np.asarray(t_stat, dtype=float))
    n_genes = t_stat.size
    df = np.broadcast_to(np.asarray(df, dtype=float), t_stat.shape).copy()
    v1 = np.broadcast_to(np.asarray(stdev_unscaled, dtype=float) ** 2, t_stat.shape)

    ntarget = int(np.ceil(proportion / 2 * n_genes))
    if ntarget < 1:
        return np.nan
    p = max(ntarget / n_genes, proportion)

    # Put all t-statistics on the same df scale
    max_df = np.max(df)
    lower = df < max_df
    if np.any(lower):
        tail = t_dist.logsf(t_stat[lower], df=df[lower])
        t_stat[lower] = t_dist.isf(np.exp(tail), df=max_df)
        df[lower] = max_df

    # Select top t-statistics
    top_idx = np.argsort(-t_stat, kind="stable")[:ntarget]
    t_top = t_stat[top_idx]
    v1_top = v1[top_idx]

    r = np.arange(1, ntarget + 1)
    p0 = 2 * t_dist.sf(t_top, df=max_df)
    ptarget = ((r - 0.5) / n_genes - (1 - p) * p0) / p

    v0 = np.zeros(ntarget)
    pos = ptarget > p0
    if np.any(pos):
        qtarget = t_dist.isf(ptarget[pos] / 2, df=max_df)
        v0[pos] = v1_top[pos] * ((t_top[pos] / qtarget) ** 2 - 1)

    if v0_lim is not None:
        v0 = np.clip(v0, v0_lim[0], v0_lim[1])

    return float(np.mean(v0))

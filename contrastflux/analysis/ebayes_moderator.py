import numpy as np
from typing import Optional
from scipy.stats import t as t_dist
from contrastflux.utils.utils import log_time, log_info
from contrastflux.analysis.ebayes_prior import squeeze_var
from contrastflux.analysis.robust_prior import tmixture_vector

# limma: df.prior above this is treated as infinite in the B-statistic kernel
INF_DF_PRIOR = 1e6
STDEV_COEF_LIM = (0.1, 4.0)


class EbayesModerator:
    def __init__(self, sigma2, df_residual, amean=None, trend: bool = True, robust: bool = True,
                 span: float = 0.5, proportion: float = 0.01, contrast_name: Optional[str] = None):
        """
        Parameters:
        - sigma2: (n_proteins,) vector of residual variances
        - df_residual: scalar or array of degrees of freedom (per protein)
        - amean: (n_proteins,) average log abundance, covariate of the variance trend
        - trend: shrink toward a loess trend in `amean` instead of a constant
        """
        self.sigma2 = np.asarray(sigma2, dtype=float)
        self.df_residual = np.broadcast_to(np.asarray(df_residual, dtype=float), self.sigma2.shape)
        self.amean = None if amean is None else np.asarray(amean, dtype=float)
        self.trend = trend
        self.robust = robust
        self.span = span
        self.proportion = proportion
        self.contrast_name = contrast_name
        self.d0 = None
        self.s0 = None
        self.s2_post = None
        self.df_total = None

    def fit(self):
        """Estimate the prior (s0², d0) from the full residual-variance vector."""
        covariate = self.amean if (self.trend and self.amean is not None) else None
        out = squeeze_var(self.sigma2, self.df_residual, covariate=covariate,
                          span=self.span, robust=self.robust)
        self.s0 = out["var_prior"]
        self.d0 = out["df_prior"]
        self.s2_post = out["var_post"]

        # limma caps total df at the pooled residual df
        df_pooled = float(np.sum(self.df_residual))
        self.df_total = np.minimum(self.df_residual + self.d0, df_pooled)

        log_info(f"eBayes prior: df_prior={self.d0:.3g}, "
                 f"median s2_prior={np.median(self.s0):.3g} ({'trend' if covariate is not None else 'constant'})")
        return self.d0, self.s0

    def moderate(self):
        """
        Returns:
        - moderated variances
        - total degrees of freedom (dg + d0)
        """
        if self.s2_post is None:
            self.fit()
        return self.s2_post, self.df_total

    @log_time("EBayes Computation")
    def apply_to_contrast(self, log2fc, stdev_unscaled):
        """
        Recalculate t, p and log-odds using moderated variances

        Parameters:
        - log2fc: (n_proteins,)
        - stdev_unscaled: sqrt(c^T (X'X)^-1 c) for the contrast

        Returns:
        - dict: se, t, p, lods, df_total, s2_post (each of shape n_proteins)
        """
        s2_post, df_total = self.moderate()
        log2fc = np.asarray(log2fc, dtype=float)
        se = np.sqrt(s2_post) * stdev_unscaled

        # zero-variance features: infinite t (p = 0) unless the effect is also zero
        with np.errstate(divide="ignore", invalid="ignore"):
            t_stat = log2fc / se
        degenerate = se == 0
        t_stat[degenerate & (log2fc == 0)] = 0.0

        p_val = 2 * t_dist.sf(np.abs(t_stat), df=df_total)
        lods = self._lods(t_stat, stdev_unscaled, df_total)

        return {
            "se": se,
            "t": t_stat,
            "p": p_val,
            "lods": lods,
            "df_total": df_total,
            "s2_post": s2_post,
            "n_degenerate": int(degenerate.sum()),
        }

    def _lods(self, t_stat, stdev_unscaled, df_total):
        """limma's B-statistic: log posterior odds of differential abundance."""
        proportion = self.proportion
        median_s0 = float(np.median(self.s0))
        # zero prior variance (e.g. a single constant feature): no limits, unit fallback
        if median_s0 > 0:
            var_prior_lim = (STDEV_COEF_LIM[0] ** 2 / median_s0, STDEV_COEF_LIM[1] ** 2 / median_s0)
            fallback = 1.0 / median_s0
        else:
            var_prior_lim = None
            fallback = 1.0

        with np.errstate(divide="ignore", invalid="ignore"):
            var_prior = tmixture_vector(t_stat, stdev_unscaled, df_total, proportion, v0_lim=var_prior_lim)
        if not np.isfinite(var_prior):
            var_prior = fallback

        v1 = stdev_unscaled ** 2
        r = (v1 + var_prior) / v1
        t2 = t_stat ** 2

        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            if self.d0 > INF_DF_PRIOR:
                kernel = t2 * (1 - 1 / r) / 2
            else:
                kernel = (1 + df_total) / 2 * np.log((t2 + df_total) / (t2 / r + df_total))
        kernel = np.where(np.isinf(t2), np.inf, kernel)

        return np.log(proportion / (1 - proportion)) - np.log(r) / 2 + kernel

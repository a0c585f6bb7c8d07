import numpy as np
from scipy.special import polygamma, digamma
from skmisc.loess import loess
from contrastflux.utils.utils import log_warning

# Below this many features (or distinct covariate values) the trend is not fitted
MIN_TREND_FEATURES = 10
MIN_TREND_LEVELS = 4


def logmdigamma(x):
    """log(x) - digamma(x)."""
    x = np.asarray(x, dtype=float)
    return np.log(x) - digamma(x)


def squeeze_var_input_filter(s2: np.ndarray, df) -> tuple[np.ndarray, np.ndarray]:
    # If df is scalar, broadcast it to shape of s2
    if np.isscalar(df) or np.ndim(df) == 0:
        df = np.full_like(s2, df, dtype=float)

    mask = np.isfinite(s2) & (s2 >= 0) & np.isfinite(df) & (df > 0)
    return mask, df


def _floor_variances(x: np.ndarray) -> np.ndarray:
    # Avoid zeros like limma does
    x = np.maximum(x, 0)
    m = np.median(x)
    if m == 0:
        log_warning("More than half of residual variances are exactly zero: eBayes unreliable")
        m = 1.0
    return np.maximum(x, 1e-5 * m)


def trigamma_inverse(y, tol=1e-8):
    """Solve trigamma(x) = y for x (Newton iteration on 1/trigamma)."""
    if y > 1e7:
        return 1.0 / np.sqrt(y)
    if y < 1e-6:
        return 1.0 / y

    # Initial guess
    x = 0.5 + 1.0 / y

    for _ in range(50):
        tri = polygamma(1, x)
        delta = tri * (1 - tri / y) / polygamma(2, x)
        x = x + delta
        if -delta / x < tol:
            return float(x)
    log_warning("trigamma_inverse: iteration limit exceeded")
    return float(x)


def _df_from_excess_variance(evar: float) -> float:
    if evar > 0:
        return 2 * trigamma_inverse(evar)
    return np.inf


def fit_fdist(s2: np.ndarray, df1: np.ndarray) -> tuple[float, float]:
    """
    Moment estimation of a scaled F prior (limma's fitFDist without covariate).

    Returns (s20, df2): prior variance and prior degrees of freedom.
    """
    df1 = np.broadcast_to(np.asarray(df1, dtype=float), s2.shape)
    if s2.size == 0:
        return np.nan, np.nan
    if s2.size == 1:
        return float(s2[0]), 0.0

    x = _floor_variances(s2)
    z = np.log(x)

    e = z - digamma(df1 / 2.0) + np.log(df1 / 2.0)
    emean = np.mean(e)
    evar = np.var(e, ddof=1)

    evar_adj = evar - np.mean(polygamma(1, df1 / 2.0))

    df2 = _df_from_excess_variance(evar_adj)
    if np.isfinite(df2):
        s20 = np.exp(emean + digamma(df2 / 2.0) - np.log(df2 / 2.0))
    else:
        s20 = float(np.mean(x))

    return float(s20), float(df2)


def fit_fdist_trend(s2: np.ndarray, df1: np.ndarray, covariate: np.ndarray,
                    span: float = 0.5, robust: bool = True) -> tuple[np.ndarray, float]:
    """
    Scaled F prior whose scale follows a loess trend in `covariate` (average log abundance).

    Returns (s20 per feature, df2). Falls back to the constant prior when the
    trend cannot be estimated from the available features.
    """
    n = s2.size
    df1 = np.broadcast_to(np.asarray(df1, dtype=float), s2.shape)
    covariate = np.asarray(covariate, dtype=float)

    n_levels = np.unique(covariate).size
    if n < MIN_TREND_FEATURES or n_levels < MIN_TREND_LEVELS or span * n < 5:
        s20, df2 = fit_fdist(s2, df1)
        return np.full(n, s20), df2

    x = _floor_variances(s2)
    e = np.log(x) + logmdigamma(df1 / 2.0)

    model = loess(covariate, e, span=span, degree=1,
                  family="symmetric" if robust else "gaussian")
    model.fit()
    emean = np.asarray(model.outputs.fitted_values, dtype=float)

    # residual variance of the trend, on the loess equivalent number of parameters
    resid = e - emean
    enp = float(model.outputs.enp)
    evar = np.sum(resid**2) / max(n - enp, 1.0)

    evar_adj = evar - np.mean(polygamma(1, df1 / 2.0))
    df2 = _df_from_excess_variance(evar_adj)
    if np.isfinite(df2):
        s20 = np.exp(emean - logmdigamma(df2 / 2.0))
    else:
        s20 = np.exp(emean)

    return s20, float(df2)


def posterior_var(s2: np.ndarray, df: np.ndarray, s20, df_prior: float) -> np.ndarray:
    """Precision-weighted average of feature and prior variances."""
    df = np.broadcast_to(np.asarray(df, dtype=float), s2.shape)
    s20 = np.broadcast_to(np.asarray(s20, dtype=float), s2.shape)
    if not np.isfinite(df_prior):
        return s20.copy()
    if df_prior <= 0:
        return s2.copy()
    return (df * s2 + df_prior * s20) / (df + df_prior)


def squeeze_var(s2: np.ndarray, df, covariate=None, span: float = 0.5, robust: bool = True) -> dict:
    """
    Empirical-Bayes moderation of residual variances.

    Returns dict(var_post, var_prior, df_prior).
    """
    s2 = np.asarray(s2, dtype=float)
    ok, df = squeeze_var_input_filter(s2, df)
    if not ok.all():
        raise ValueError(f"{int((~ok).sum())} residual variance(s) are not finite and non-negative")

    if covariate is None:
        s20, d0 = fit_fdist(s2, df)
        var_prior = np.full_like(s2, s20)
    else:
        var_prior, d0 = fit_fdist_trend(s2, df, covariate, span=span, robust=robust)

    var_post = posterior_var(s2, df, var_prior, d0)
    return {"var_post": var_post, "var_prior": var_prior, "df_prior": d0}

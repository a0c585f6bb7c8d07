import numpy as np
from typing import Optional, Tuple
from contrastflux.utils.exceptions import IntegrityError
from contrastflux.utils.utils import log_info


def filter_low_abundance(
    mat: np.ndarray,
    threshold: float,
    contrast_name: Optional[str] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Keep features whose mean abundance over the contrast's samples meets `threshold`.

    Parameters:
        mat (np.ndarray): (features x samples) log-scale matrix of ONE contrast's subset.
        threshold (float): minimum mean log2 abundance.

    Returns:
        Tuple[np.ndarray, np.ndarray]: boolean keep mask and per-feature means.
    """
    means = mat.mean(axis=1)
    keep = means >= threshold

    n_kept = int(keep.sum())
    n_dropped = int(keep.size - n_kept)
    log_info(f"Low-abundance filter (mean >= {threshold:g}): kept {n_kept}, dropped {n_dropped}")

    if n_kept == 0:
        raise IntegrityError(
            f"no feature passes the abundance threshold {threshold:g}",
            contrast=contrast_name,
            rule="empty filtered matrix",
        )
    return keep, means

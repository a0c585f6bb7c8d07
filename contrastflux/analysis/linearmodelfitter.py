import numpy as np
from typing import Optional
from contrastflux.utils.exceptions import IntegrityError
from contrastflux.utils.utils import log_time


class LinearModelFitter:
    def __init__(self, expression: np.ndarray, design_matrix: np.ndarray, contrast_name: Optional[str] = None):
        """
        Parameters:
        - expression: (n_proteins x n_samples) matrix (one contrast's filtered subset)
        - design_matrix: (n_samples x n_covariates) matrix from DesignMatrixBuilder
        """
        self.Y = np.asarray(expression, dtype=float)
        self.X = np.asarray(design_matrix, dtype=float)
        self.contrast_name = contrast_name
        self.coefficients = None
        self.residuals = None
        self.residual_variance = None
        self.amean = None
        self.xtx_inv = None  # (X^T X)^(-1)

        if self.Y.shape[1] != self.X.shape[0]:
            raise IntegrityError(
                f"expression has {self.Y.shape[1]} samples, design has {self.X.shape[0]} rows",
                contrast=contrast_name,
                rule="design/sample mismatch",
            )

        rank = np.linalg.matrix_rank(self.X)
        if rank < self.X.shape[1]:
            raise IntegrityError(
                f"design matrix is rank-deficient (rank {rank} < {self.X.shape[1]} columns)",
                contrast=contrast_name,
                rule="rank-deficient design",
            )
        self.df_residual = self.X.shape[0] - rank
        if self.df_residual <= 0:
            raise IntegrityError(
                f"no residual degrees of freedom ({self.X.shape[0]} samples, rank {rank})",
                contrast=contrast_name,
                rule="residual df",
            )

    @log_time("Linear Regressions")
    def fit(self):
        """
        Fits OLS for all proteins simultaneously.
        Vectorized across proteins.
        """
        X = self.X
        Y = self.Y.T  # shape: (n_samples x n_proteins)

        self.xtx_inv = np.linalg.inv(X.T @ X)

        # Fit coefficients for all proteins
        betas = np.linalg.pinv(X) @ Y   # shape: (n_covariates x n_proteins)
        self.coefficients = betas.T     # shape: (n_proteins x n_covariates)

        # Compute residuals
        fitted = X @ betas              # shape: (n_samples x n_proteins)
        resid = Y - fitted
        self.residuals = resid.T        # shape: (n_proteins x n_samples)

        # Compute residual variances
        rss = np.sum(resid**2, axis=0)  # shape: (n_proteins,)
        self.residual_variance = rss / self.df_residual

        self.amean = self.Y.mean(axis=1)

        return self

    def get_results(self) -> dict:
        """
        Returns a dictionary of results.
        """
        return {
            "coefficients": self.coefficients,
            "residuals": self.residuals,
            "residual_variance": self.residual_variance,
            "df_residual": self.df_residual,
            "xtx_inv": self.xtx_inv,
            "amean": self.amean,
        }

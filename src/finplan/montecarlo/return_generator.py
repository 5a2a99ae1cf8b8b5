# Copyright 2025 Spencer Williams
#
# Use of this source code is governed by an MIT license:
# https://github.com/sw23/life-model/blob/main/LICENSE

"""
Correlated return generator.

This module generates joint-normal monthly asset returns using Cholesky
decomposition of the asset correlation matrix.
"""

import logging

import numpy as np

from ..config import MONTHS_PER_YEAR
from ..linalg import safe_cholesky
from ..validation import require_positive_int
from .market_assumptions import ReturnAssumptions

logger = logging.getLogger(__name__)


class CorrelatedReturnGenerator:
    """Generates correlated monthly returns for a set of assets.

    Annual parameters are converted to monthly ones (geometric mean,
    volatility scaled by sqrt(12)). Independent standard normal draws are
    mapped through the Cholesky factor L to impose the correlation structure,
    then scaled to each asset's monthly mean and volatility.

    Example:
        >>> assumptions = ReturnAssumptions.create_default().subset(["stocks", "bonds"])
        >>> gen = CorrelatedReturnGenerator(assumptions)
        >>> returns = gen.generate(1000, 120, np.random.default_rng(42))
        >>> returns.shape
        (1000, 120, 2)
    """

    def __init__(self, assumptions: ReturnAssumptions):
        """Initialize the return generator.

        Args:
            assumptions: Annual return, volatility and correlation assumptions

        Raises:
            NonPositiveDefiniteError: If the correlation matrix is not positive
                definite even after nearest-PSD repair
        """
        self.assumptions = assumptions
        self.asset_order = list(assumptions.asset_order)

        annual_returns = assumptions.get_returns_vector()
        self.monthly_means = (1.0 + annual_returns) ** (1.0 / MONTHS_PER_YEAR) - 1.0
        self.monthly_volatilities = assumptions.get_volatilities_vector() / np.sqrt(MONTHS_PER_YEAR)

        # L such that L @ L^T = correlation_matrix
        self._cholesky, self.correlation_matrix = safe_cholesky(
            assumptions.correlation_matrix, "correlation matrix", is_correlation=True
        )

    @property
    def cholesky_factor(self) -> np.ndarray:
        return self._cholesky

    def generate(self, num_trials: int, num_months: int, rng: np.random.Generator) -> np.ndarray:
        """Generate correlated monthly returns.

        Args:
            num_trials: Number of independent paths
            num_months: Months per path
            rng: Random generator; the caller owns seeding

        Returns:
            Array of shape (num_trials, num_months, num_assets) with monthly
            returns in decimal form.
        """
        require_positive_int(num_trials, "num_trials")
        require_positive_int(num_months, "num_months")
        n = len(self.asset_order)

        # Generate uncorrelated standard normal samples
        uncorrelated_z = rng.standard_normal((num_trials, num_months, n))

        # z_corr = L @ z for every (trial, month) vector
        correlated_z = uncorrelated_z @ self._cholesky.T

        # R_i = mu_i + sigma_i * z_i
        return self.monthly_means + self.monthly_volatilities * correlated_z

"""
Market input estimation.

Builds the expected-return vector and covariance matrix the optimizer works
on, either from per-asset assumptions plus a correlation (or covariance)
matrix, or from price/return series supplied by the market-data feed.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from ..config import MONTHS_PER_YEAR
from ..errors import InsufficientDataError, ValidationError
from ..linalg import as_ordered_matrix, covariance_from_correlation, ensure_positive_definite
from ..models import Asset
from ..validation import require_finite_array

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketInputs:
    """Annualised optimizer inputs in a fixed symbol order.

    Attributes:
        symbols: Asset order of every vector and matrix
        expected_returns: Annual expected returns
        covariance: Annual covariance matrix (positive definite)
        historical_returns: Per-period return observations, if supplied
        periods_per_year: Observation frequency of historical_returns
        covariance_repaired: Whether the covariance needed nearest-PSD repair
    """
    symbols: tuple
    expected_returns: np.ndarray
    covariance: np.ndarray
    historical_returns: Optional[np.ndarray] = None
    periods_per_year: int = MONTHS_PER_YEAR
    covariance_repaired: bool = False

    @property
    def volatilities(self) -> np.ndarray:
        return np.sqrt(np.diag(self.covariance))

    def with_estimates(self, expected_returns: np.ndarray, covariance: np.ndarray) -> "MarketInputs":
        return MarketInputs(self.symbols, expected_returns, covariance,
                            self.historical_returns, self.periods_per_year,
                            self.covariance_repaired)


def estimate_from_returns(returns: pd.DataFrame,
                          periods_per_year: int = MONTHS_PER_YEAR,
                          symbols: Optional[Sequence[str]] = None) -> MarketInputs:
    """
    Annualised mean and covariance from a return series

    Parameters:
    returns (pd.DataFrame): Per-period returns, one column per symbol
    periods_per_year (int): 12 for monthly, 252 for daily observations
    symbols (list): Optional column order; defaults to the frame's columns

    Returns:
    MarketInputs: Annual expected returns and covariance
    """
    if not isinstance(returns, pd.DataFrame):
        returns = pd.DataFrame(returns)
    order = list(symbols) if symbols is not None else list(returns.columns)
    missing = [s for s in order if s not in returns.columns]
    if missing:
        raise ValidationError(f"Return series missing for: {missing}", field=missing[0])

    clean = returns[order].dropna()
    if len(clean) < 2:
        raise InsufficientDataError(
            f"At least 2 return observations are required, got {len(clean)}", field="returns"
        )
    values = require_finite_array(clean.to_numpy(dtype=float), "returns")

    expected = values.mean(axis=0) * periods_per_year
    covariance = np.atleast_2d(np.cov(values, rowvar=False, ddof=1)) * periods_per_year
    covariance, repaired = ensure_positive_definite(covariance, "sample covariance matrix")
    return MarketInputs(tuple(order), expected, covariance, values, periods_per_year, repaired)


def estimate_from_prices(prices: pd.DataFrame,
                         periods_per_year: int = MONTHS_PER_YEAR,
                         symbols: Optional[Sequence[str]] = None) -> MarketInputs:
    """Same as estimate_from_returns, from a price series (simple returns)."""
    if not isinstance(prices, pd.DataFrame):
        prices = pd.DataFrame(prices)
    if len(prices.dropna()) < 3:
        raise InsufficientDataError(
            f"At least 3 price observations are required, got {len(prices.dropna())}", field="prices"
        )
    if (prices.dropna() <= 0).any().any():
        raise ValidationError("Prices must be positive", field="prices")
    returns = prices.pct_change().iloc[1:]
    return estimate_from_returns(returns, periods_per_year, symbols)


def inputs_from_assets(assets: Sequence[Asset],
                       correlation=None,
                       covariance=None,
                       returns: Optional[pd.DataFrame] = None,
                       periods_per_year: int = MONTHS_PER_YEAR) -> MarketInputs:
    """Combine asset-level assumptions with the market-data feed's matrices.

    Precedence: an explicit covariance matrix, then a correlation matrix
    scaled by the assets' volatilities, then covariance estimated from the
    return series. Expected returns always come from the assets. Without any
    of these the assets are treated as uncorrelated.
    """
    if not assets:
        raise InsufficientDataError("At least one asset is required", field="assets")
    symbols = [asset.symbol for asset in assets]
    expected = np.array([asset.expected_return for asset in assets])
    history = None

    if returns is not None:
        estimated = estimate_from_returns(returns, periods_per_year, symbols)
        history = estimated.historical_returns

    if covariance is not None:
        matrix = as_ordered_matrix(covariance, symbols, "covariance matrix")
    elif correlation is not None:
        corr = as_ordered_matrix(correlation, symbols, "correlation matrix")
        matrix = covariance_from_correlation([asset.volatility for asset in assets], corr)
    elif returns is not None:
        matrix = estimated.covariance
    else:
        logger.warning("No correlation data supplied; treating %d assets as uncorrelated",
                       len(symbols))
        matrix = np.diag([asset.volatility ** 2 for asset in assets])

    matrix, repaired = ensure_positive_definite(matrix, "covariance matrix")
    return MarketInputs(tuple(symbols), expected, matrix, history, periods_per_year, repaired)

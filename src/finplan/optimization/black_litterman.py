"""
Black-Litterman return blending.

Market-implied equilibrium returns come from reverse optimization of the
market-cap portfolio; absolute investor views are blended in with a
precision set by each view's confidence.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .. import config as defaults
from ..errors import ValidationError
from ..models import Asset
from .config import MarketView

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlackLittermanResult:
    equilibrium_returns: np.ndarray
    posterior_returns: np.ndarray
    posterior_covariance: np.ndarray
    market_weights: np.ndarray


def market_weights_from_assets(assets: Sequence[Asset]) -> np.ndarray:
    """Market-cap weights; equal weights when any cap is missing."""
    caps = [asset.market_cap for asset in assets]
    if all(cap is not None and cap > 0 for cap in caps):
        caps = np.array(caps, dtype=float)
        return caps / caps.sum()
    logger.debug("Market caps incomplete; using equal equilibrium weights")
    return np.ones(len(assets)) / len(assets)


def equilibrium_returns(covariance: np.ndarray,
                        market_weights: np.ndarray,
                        risk_aversion: float = defaults.RISK_AVERSION) -> np.ndarray:
    """Reverse optimization: pi = delta * Sigma * w_mkt"""
    return risk_aversion * covariance @ market_weights


def build_view_matrices(views: Sequence[MarketView],
                        symbols: Sequence[str]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Pick matrix, view returns and confidences for absolute views

    Returns:
    tuple: (P, Q, confidence) with P of shape (k, n)
    """
    index = {symbol: i for i, symbol in enumerate(symbols)}
    p_matrix = np.zeros((len(views), len(symbols)))
    for row, view in enumerate(views):
        if view.symbol not in index:
            raise ValidationError(f"Market view references unknown asset {view.symbol!r}",
                                  field=view.symbol)
        p_matrix[row, index[view.symbol]] = 1.0
    q_vector = np.array([view.expected_return for view in views], dtype=float)
    confidence = np.array([view.confidence for view in views], dtype=float)
    return p_matrix, q_vector, confidence


def black_litterman_posterior(
    equilibrium: np.ndarray,
    covariance_matrix: np.ndarray,
    p_matrix: np.ndarray,
    views: np.ndarray,
    confidence: np.ndarray,
    tau: float = defaults.BL_TAU,
) -> Tuple[np.ndarray, np.ndarray]:
    """Calculate Black-Litterman posterior expected returns and covariance."""
    prior_cov = tau * covariance_matrix
    if p_matrix.shape[0] == 0:
        return equilibrium.copy(), covariance_matrix + prior_cov

    # Omega_ii = tau * (P Sigma P')_ii / c^2
    view_variances = np.diag(p_matrix @ prior_cov @ p_matrix.T)
    omega = np.diag(view_variances / confidence ** 2)
    a_matrix = p_matrix @ prior_cov @ p_matrix.T + omega

    try:
        a_inv = np.linalg.inv(a_matrix)
    except np.linalg.LinAlgError:
        a_inv = np.linalg.pinv(a_matrix)

    gain = prior_cov @ p_matrix.T @ a_inv
    posterior_returns = equilibrium + gain @ (views - p_matrix @ equilibrium)
    posterior_covariance = covariance_matrix + prior_cov - gain @ p_matrix @ prior_cov
    posterior_covariance = (posterior_covariance + posterior_covariance.T) / 2.0
    return posterior_returns, posterior_covariance


def apply_black_litterman(assets: Sequence[Asset],
                          covariance: np.ndarray,
                          views: Optional[Sequence[MarketView]] = None,
                          tau: float = defaults.BL_TAU,
                          risk_aversion: float = defaults.RISK_AVERSION) -> BlackLittermanResult:
    symbols = [asset.symbol for asset in assets]
    weights = market_weights_from_assets(assets)
    pi = equilibrium_returns(covariance, weights, risk_aversion)
    p_matrix, q_vector, confidence = build_view_matrices(views or (), symbols)
    posterior, posterior_cov = black_litterman_posterior(pi, covariance, p_matrix, q_vector,
                                                         confidence, tau)
    logger.debug("Black-Litterman applied with %d views", len(q_vector))
    return BlackLittermanResult(pi, posterior, posterior_cov, weights)

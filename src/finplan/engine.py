"""
Engine entry points.

The four operations consumed by the UI layer. Each takes plain data, either
the package's value objects or their wire dictionaries, and returns an
immutable result exposing to_dict().
"""

import logging
from typing import Any, List, Mapping, Optional, Sequence, Union

import pandas as pd

from .concurrency import CancellationToken
from .models import Asset, Portfolio
from .montecarlo import MonteCarloConfig, MonteCarloResults, ReturnAssumptions
from .montecarlo import run_monte_carlo as _simulate
from .optimization import (FrontierPoint, MarketView, OptimizationConfig, OptimizationConstraints,
                           OptimizationResult, PortfolioOptimizer)
from .tax import SubstituteCandidate, TaxRates, TaxStrategyConfig, TaxStrategyResult
from .tax import compute_tax_strategy as _tax_strategy

logger = logging.getLogger(__name__)


def _assets(assets: Sequence[Union[Asset, Mapping[str, Any]]]) -> List[Asset]:
    return [a if isinstance(a, Asset) else Asset.from_dict(a) for a in assets]


def _frame(data) -> Optional[pd.DataFrame]:
    if data is None or isinstance(data, pd.DataFrame):
        return data
    return pd.DataFrame(data)


def optimize_portfolio(assets,
                       constraints=None,
                       market_views: Optional[Sequence] = None,
                       config=None,
                       correlation=None,
                       covariance=None,
                       returns=None,
                       cancel_token: Optional[CancellationToken] = None) -> OptimizationResult:
    """Optimal allocation for the given assets and constraints."""
    optimizer = PortfolioOptimizer(
        _assets(assets),
        constraints=OptimizationConstraints.from_dict(constraints),
        config=OptimizationConfig.from_dict(config),
        correlation=correlation,
        covariance=covariance,
        returns=_frame(returns),
    )
    views = [v if isinstance(v, MarketView) else MarketView.from_dict(v) for v in (market_views or ())]
    return optimizer.optimize(views, cancel_token)


def compute_efficient_frontier(assets,
                               constraints=None,
                               num_points: Optional[int] = None,
                               config=None,
                               correlation=None,
                               covariance=None,
                               returns=None,
                               market_views: Optional[Sequence] = None,
                               cancel_token: Optional[CancellationToken] = None) -> List[FrontierPoint]:
    """Frontier points ordered by increasing expected return."""
    optimizer = PortfolioOptimizer(
        _assets(assets),
        constraints=OptimizationConstraints.from_dict(constraints),
        config=OptimizationConfig.from_dict(config),
        correlation=correlation,
        covariance=covariance,
        returns=_frame(returns),
    )
    return optimizer.efficient_frontier(num_points, market_views, cancel_token)


def run_monte_carlo(initial_investment: float,
                    monthly_contribution: float,
                    horizon_years: int,
                    allocation: Mapping[str, float],
                    return_assumptions=None,
                    config=None,
                    cancel_token: Optional[CancellationToken] = None) -> MonteCarloResults:
    """Simulated portfolio paths and statistics."""
    if return_assumptions is not None and not isinstance(return_assumptions, ReturnAssumptions):
        return_assumptions = ReturnAssumptions.from_dict(return_assumptions)
    return _simulate(initial_investment, monthly_contribution, horizon_years, allocation,
                     return_assumptions, MonteCarloConfig.from_dict(config), cancel_token)


def compute_tax_strategy(portfolio,
                         tax_rates=None,
                         config=None,
                         universe: Optional[Mapping[str, Sequence]] = None,
                         returns=None) -> TaxStrategyResult:
    """Asset location, harvesting opportunities and withdrawal plan."""
    if not isinstance(portfolio, Portfolio):
        portfolio = Portfolio.from_dict(portfolio)
    if universe:
        universe = {
            symbol: [c if isinstance(c, SubstituteCandidate) else SubstituteCandidate.from_dict(c)
                     for c in candidates]
            for symbol, candidates in universe.items()
        }
    return _tax_strategy(portfolio, TaxRates.from_dict(tax_rates), TaxStrategyConfig.from_dict(config),
                         universe, _frame(returns))

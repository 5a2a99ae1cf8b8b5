"""
Portfolio optimization: mean-variance, Black-Litterman, CVaR and resampling.
"""

from .config import (MAX_SHARPE, MAX_UTILITY, MIN_VARIANCE, MarketView,
                     OptimizationConfig, OptimizationConstraints)
from .estimation import MarketInputs, estimate_from_prices, estimate_from_returns, inputs_from_assets
from .black_litterman import apply_black_litterman, black_litterman_posterior, equilibrium_returns
from .solver import PortfolioProblem, check_feasibility, repair_weights
from .frontier import FrontierPoint, efficient_frontier
from .optimizer import (OptimizationResult, PortfolioOptimizer, RebalancePlan, RebalanceTrade,
                        diversification_score, parametric_risk, rebalancing_trades)

__all__ = [
    'MAX_SHARPE',
    'MAX_UTILITY',
    'MIN_VARIANCE',
    'MarketView',
    'OptimizationConfig',
    'OptimizationConstraints',
    'MarketInputs',
    'estimate_from_prices',
    'estimate_from_returns',
    'inputs_from_assets',
    'apply_black_litterman',
    'black_litterman_posterior',
    'equilibrium_returns',
    'PortfolioProblem',
    'check_feasibility',
    'repair_weights',
    'FrontierPoint',
    'efficient_frontier',
    'OptimizationResult',
    'PortfolioOptimizer',
    'RebalancePlan',
    'RebalanceTrade',
    'diversification_score',
    'parametric_risk',
    'rebalancing_trades',
]

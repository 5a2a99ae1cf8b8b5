"""
finplan: portfolio optimization, Monte Carlo projection and tax strategy.
"""

from .concurrency import CancellationToken
from .engine import compute_efficient_frontier, compute_tax_strategy, optimize_portfolio, run_monte_carlo
from .errors import (Cancelled, FinPlanError, InfeasibleConstraintError, InsufficientDataError,
                     NonPositiveDefiniteError, SolverConvergenceError, ValidationError)
from .models import Account, Asset, Portfolio, TaxLot, Trade

__version__ = "0.1.0"

__all__ = [
    'CancellationToken',
    'compute_efficient_frontier',
    'compute_tax_strategy',
    'optimize_portfolio',
    'run_monte_carlo',
    'Cancelled',
    'FinPlanError',
    'InfeasibleConstraintError',
    'InsufficientDataError',
    'NonPositiveDefiniteError',
    'SolverConvergenceError',
    'ValidationError',
    'Account',
    'Asset',
    'Portfolio',
    'TaxLot',
    'Trade',
]

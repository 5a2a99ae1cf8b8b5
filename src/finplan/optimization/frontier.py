"""
Efficient frontier.

Minimum-variance portfolios for evenly spaced target returns across the
range achievable under the weight and sector constraints.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

import numpy as np

from ..concurrency import CancellationToken, run_batches, seed_sequence
from ..errors import SolverConvergenceError, ValidationError
from .config import MIN_VARIANCE, OptimizationConfig
from .solver import (PortfolioProblem, achievable_return_range, check_feasibility,
                     portfolio_return, portfolio_volatility, solve)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrontierPoint:
    risk: float
    expected_return: float
    weights: Dict[str, float]
    sharpe_ratio: float

    def to_dict(self) -> dict:
        return {"risk": self.risk, "return": self.expected_return,
                "weights": dict(self.weights), "sharpeRatio": self.sharpe_ratio}


def efficient_frontier(problem: PortfolioProblem,
                       config: OptimizationConfig,
                       num_points: Optional[int] = None,
                       cancel_token: Optional[CancellationToken] = None) -> List[FrontierPoint]:
    """
    Trace the efficient frontier

    Only the linear constraints (bounds, sector caps and minimums) shape the
    frontier; volatility and CVaR limits are ignored so every point exists.

    Parameters:
    problem (PortfolioProblem): Problem supplying returns, covariance and constraints
    config (OptimizationConfig): Solver options and risk-free rate
    num_points (int): Number of target returns; defaults to config.num_frontier_points

    Returns:
    list: FrontierPoint tuples ordered by increasing target return
    """
    num_points = config.num_frontier_points if num_points is None else num_points
    if num_points < 1:
        raise ValidationError("num_points must be positive", field="num_points")

    base = replace(problem, objective=MIN_VARIANCE, target_return=None,
                   max_volatility=None, max_cvar=None, scenarios=None)
    check_feasibility(base, config)

    # Clamped to what the constraints can reach, which never exceeds the
    # min/max single-asset expected returns
    low, high = achievable_return_range(base)
    targets = np.linspace(low, high, num_points) if high - low > 1e-12 else np.array([low])
    children = seed_sequence(config.random_seed).spawn(len(targets))

    def solve_point(item):
        target, child = item
        weights, _ = solve(base.with_target(float(target)), config, np.random.default_rng(child))
        return weights

    def guarded(item):
        try:
            return solve_point(item)
        except SolverConvergenceError:
            logger.warning("Frontier point at target return %.4f%% did not converge", item[0] * 100)
            return None

    solutions = run_batches(guarded, list(zip(targets, children)), config.max_workers, cancel_token)

    points = []
    for weights in solutions:
        if weights is None:
            continue
        ret = portfolio_return(weights, base.expected_returns)
        risk = portfolio_volatility(weights, base.covariance)
        sharpe = (ret - config.risk_free_rate) / risk if risk > 0 else 0.0
        points.append(FrontierPoint(
            risk=risk,
            expected_return=ret,
            weights={s: float(w) for s, w in zip(base.symbols, weights)},
            sharpe_ratio=float(sharpe),
        ))

    if not points:
        raise SolverConvergenceError("No efficient frontier point converged", attempts=len(targets))
    return sorted(points, key=lambda p: p.expected_return)

"""
Portfolio Optimizer

Computes expected returns and covariance, optionally blends them with market
views (Black-Litterman), solves the constrained allocation (optionally with
a CVaR budget and Michaud resampling) and reports risk diagnostics.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.stats import norm

from .. import config as defaults
from ..concurrency import CancellationToken, check_cancelled, seed_sequence
from ..errors import ValidationError
from ..models import Asset
from ..validation import require_non_negative, require_probability
from .black_litterman import BlackLittermanResult, apply_black_litterman
from .config import MarketView, OptimizationConfig, OptimizationConstraints
from .estimation import MarketInputs, inputs_from_assets
from .frontier import FrontierPoint, efficient_frontier
from .resampling import resampled_weights
from .solver import (PortfolioProblem, check_feasibility, portfolio_return,
                     portfolio_volatility, solve)

logger = logging.getLogger(__name__)

UNCLASSIFIED_SECTOR = "Unclassified"


def diversification_score(weights) -> float:
    """Inverse Herfindahl index: the effective number of holdings."""
    weights = np.asarray(list(weights.values()) if isinstance(weights, Mapping) else weights, dtype=float)
    concentration = float(np.sum(weights ** 2))
    return 1.0 / concentration if concentration > 0 else 0.0


def parametric_risk(expected_return: float, volatility: float,
                    confidence: float = defaults.CVAR_CONFIDENCE) -> Tuple[float, float]:
    """Normal VaR and CVaR of annual loss (positive numbers are losses)."""
    z = norm.ppf(confidence)
    var = z * volatility - expected_return
    cvar = volatility * norm.pdf(z) / (1.0 - confidence) - expected_return
    return float(var), float(cvar)


@dataclass(frozen=True)
class OptimizationResult:
    """Outcome of one optimize() call. Never mutated; superseded by new results."""
    allocation: Dict[str, float]
    expected_return: float
    volatility: float
    sharpe_ratio: float
    diversification_score: float
    objective: str
    sector_exposure: Dict[str, float] = field(default_factory=dict)
    parametric_var: float = 0.0
    parametric_cvar: float = 0.0
    resamples_used: int = 0
    black_litterman_returns: Optional[Dict[str, float]] = None
    covariance_repaired: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allocation": dict(self.allocation),
            "metrics": {
                "expectedReturn": self.expected_return,
                "volatility": self.volatility,
                "sharpeRatio": self.sharpe_ratio,
                "sectorExposure": dict(self.sector_exposure),
                "valueAtRisk": self.parametric_var,
                "conditionalValueAtRisk": self.parametric_cvar,
            },
            "diagnostics": {
                "expectedReturn": self.expected_return,
                "risk": self.volatility,
                "sharpeRatio": self.sharpe_ratio,
                "diversificationScore": self.diversification_score,
                "objective": self.objective,
                "resamplesUsed": self.resamples_used,
                "blackLittermanReturns": self.black_litterman_returns,
                "covarianceRepaired": self.covariance_repaired,
            },
        }


class PortfolioOptimizer:
    """Constrained mean-variance optimizer over a fixed asset list.

    Example:
        >>> optimizer = PortfolioOptimizer(assets, correlation=corr,
        ...                                constraints=OptimizationConstraints(max_weights=0.6))
        >>> result = optimizer.optimize()
        >>> result.allocation
    """

    def __init__(self,
                 assets: Sequence[Asset],
                 constraints: Optional[OptimizationConstraints] = None,
                 config: Optional[OptimizationConfig] = None,
                 correlation=None,
                 covariance=None,
                 returns: Optional[pd.DataFrame] = None,
                 periods_per_year: int = defaults.MONTHS_PER_YEAR):
        self.assets = [a if isinstance(a, Asset) else Asset.from_dict(a) for a in assets]
        symbols = [a.symbol for a in self.assets]
        if len(set(symbols)) != len(symbols):
            raise ValidationError("Duplicate asset symbols", field="assets")
        self.constraints = constraints or OptimizationConstraints()
        self.config = config or OptimizationConfig()
        self.inputs: MarketInputs = inputs_from_assets(
            self.assets, correlation=correlation, covariance=covariance,
            returns=returns, periods_per_year=periods_per_year,
        )

    @property
    def symbols(self) -> Tuple[str, ...]:
        return self.inputs.symbols

    def _sectors(self) -> Dict[str, list]:
        sectors: Dict[str, list] = {}
        for i, asset in enumerate(self.assets):
            if asset.sector:
                sectors.setdefault(asset.sector, []).append(i)
        return sectors

    def _scenarios(self, expected: np.ndarray, covariance: np.ndarray) -> np.ndarray:
        """Annual return scenarios for the CVaR constraint.

        A return history is rescaled to an annual horizon around the expected
        returns; otherwise scenarios are drawn from N(mu, Sigma).
        """
        history = self.inputs.historical_returns
        if history is not None:
            scale = np.sqrt(self.inputs.periods_per_year)
            return expected + scale * (history - history.mean(axis=0))
        rng = np.random.default_rng(seed_sequence(self.config.random_seed))
        return rng.multivariate_normal(expected, covariance, size=self.config.cvar_scenarios)

    def build_problem(self,
                      views: Optional[Sequence[MarketView]] = None
                      ) -> Tuple[PortfolioProblem, Optional[BlackLittermanResult]]:
        cfg, cons = self.config, self.constraints
        views = [v if isinstance(v, MarketView) else MarketView.from_dict(v) for v in (views or ())]
        expected, covariance = self.inputs.expected_returns, self.inputs.covariance

        bl_result = None
        if cfg.use_black_litterman:
            bl_result = apply_black_litterman(self.assets, covariance, views, cfg.tau, cfg.risk_aversion)
            expected, covariance = bl_result.posterior_returns, bl_result.posterior_covariance
        elif views:
            logger.warning("Ignoring %d market views: Black-Litterman is disabled", len(views))

        scenarios, max_cvar = None, None
        if cfg.use_cvar:
            if cons.max_cvar is None:
                raise ValidationError("use_cvar requires constraints.max_cvar", field="max_cvar")
            scenarios, max_cvar = self._scenarios(expected, covariance), cons.max_cvar
        elif cons.max_cvar is not None:
            logger.warning("max_cvar is set but use_cvar is disabled; CVaR limit not enforced")

        market_weights = bl_result.market_weights if bl_result is not None else None
        problem = PortfolioProblem(
            symbols=self.symbols,
            expected_returns=np.asarray(expected, dtype=float),
            covariance=covariance,
            bounds=cons.bounds_for(self.symbols),
            objective=cfg.objective,
            risk_free_rate=cfg.risk_free_rate,
            risk_aversion=cfg.risk_aversion,
            sectors=self._sectors(),
            sector_caps=dict(cons.sector_caps),
            sector_minimums=dict(cons.sector_minimums),
            target_return=cons.target_return,
            max_volatility=cons.max_volatility,
            max_cvar=max_cvar,
            scenarios=scenarios,
            cvar_confidence=cfg.cvar_confidence,
            market_weights=market_weights,
        )
        return problem, bl_result

    def optimize(self,
                 views: Optional[Sequence[MarketView]] = None,
                 cancel_token: Optional[CancellationToken] = None) -> OptimizationResult:
        """
        Solve for the optimal allocation

        Raises:
        InfeasibleConstraintError: Naming the constraint that cannot hold
        SolverConvergenceError: If every solver attempt failed
        Cancelled: If the token is set during resampling
        """
        start_time = time.perf_counter()
        check_cancelled(cancel_token)
        problem, bl_result = self.build_problem(views)
        check_feasibility(problem, self.config)

        resamples_used = 0
        if self.config.use_resampling:
            weights, resamples_used = resampled_weights(problem, self.inputs, self.config, cancel_token)
        else:
            rng = np.random.default_rng(seed_sequence(self.config.random_seed))
            weights, _ = solve(problem, self.config, rng)
        check_cancelled(cancel_token)

        logger.info("Optimized %d assets (%s) in %.2fs", problem.n, problem.effective_objective,
                    time.perf_counter() - start_time)
        return self._result(weights, problem, resamples_used, bl_result)

    def efficient_frontier(self,
                           num_points: Optional[int] = None,
                           views: Optional[Sequence[MarketView]] = None,
                           cancel_token: Optional[CancellationToken] = None) -> List[FrontierPoint]:
        problem, _ = self.build_problem(views)
        return efficient_frontier(problem, self.config, num_points, cancel_token)

    def _result(self, weights: np.ndarray, problem: PortfolioProblem,
                resamples_used: int, bl_result: Optional[BlackLittermanResult]) -> OptimizationResult:
        expected = portfolio_return(weights, problem.expected_returns)
        volatility = portfolio_volatility(weights, problem.covariance)
        sharpe = (expected - self.config.risk_free_rate) / volatility if volatility > 0 else 0.0
        var, cvar = parametric_risk(expected, volatility, self.config.cvar_confidence)

        allocation = {s: float(w) for s, w in zip(self.symbols, weights)}
        exposure: Dict[str, float] = {}
        for asset in self.assets:
            sector = asset.sector or UNCLASSIFIED_SECTOR
            exposure[sector] = exposure.get(sector, 0.0) + allocation[asset.symbol]

        bl_returns = None
        if bl_result is not None:
            bl_returns = {s: float(r) for s, r in zip(self.symbols, bl_result.posterior_returns)}

        return OptimizationResult(
            allocation=allocation,
            expected_return=expected,
            volatility=volatility,
            sharpe_ratio=float(sharpe),
            diversification_score=diversification_score(weights),
            objective=problem.effective_objective,
            sector_exposure=exposure,
            parametric_var=var,
            parametric_cvar=cvar,
            resamples_used=resamples_used,
            black_litterman_returns=bl_returns,
            covariance_repaired=self.inputs.covariance_repaired,
        )


# ---- rebalancing ---------------------------------------------------------

@dataclass(frozen=True)
class RebalanceTrade:
    symbol: str
    action: str
    current_weight: float
    target_weight: float
    amount: float


@dataclass(frozen=True)
class RebalancePlan:
    trades: Tuple[RebalanceTrade, ...]
    turnover: float
    estimated_cost: float
    max_drift: float
    needs_rebalancing: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trades": [
                {"symbol": t.symbol, "action": t.action, "currentWeight": t.current_weight,
                 "targetWeight": t.target_weight, "amount": t.amount}
                for t in self.trades
            ],
            "turnover": self.turnover,
            "estimatedCost": self.estimated_cost,
            "maxDrift": self.max_drift,
            "needsRebalancing": self.needs_rebalancing,
        }


def rebalancing_trades(current: Mapping[str, float],
                       target: Mapping[str, float],
                       portfolio_value: float,
                       trading_cost_rate: float = defaults.TRADING_COSTS,
                       min_trade: float = defaults.MIN_TRADE_WEIGHT,
                       threshold: float = defaults.REBALANCING_THRESHOLD) -> RebalancePlan:
    """Trades moving current weights to target weights.

    Weight changes smaller than min_trade are left alone. Turnover is
    one-way (half the sum of absolute weight changes).
    """
    portfolio_value = require_non_negative(portfolio_value, "portfolio_value")
    trading_cost_rate = require_probability(trading_cost_rate, "trading_cost_rate")

    trades = []
    total_change = 0.0
    max_drift = 0.0
    for symbol in sorted(set(current) | set(target)):
        now = float(current.get(symbol, 0.0))
        goal = float(target.get(symbol, 0.0))
        change = goal - now
        max_drift = max(max_drift, abs(change))
        if abs(change) < min_trade:
            continue
        total_change += abs(change)
        trades.append(RebalanceTrade(symbol, "buy" if change > 0 else "sell", now, goal,
                                     abs(change) * portfolio_value))

    traded = sum(t.amount for t in trades)
    return RebalancePlan(
        trades=tuple(sorted(trades, key=lambda t: -t.amount)),
        turnover=total_change / 2.0,
        estimated_cost=traded * trading_cost_rate,
        max_drift=max_drift,
        needs_rebalancing=max_drift > threshold,
    )

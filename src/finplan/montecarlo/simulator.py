# Copyright 2025 Spencer Williams
#
# Use of this source code is governed by an MIT license:
# https://github.com/sw23/life-model/blob/main/LICENSE

"""
Monte Carlo simulation orchestrator.

This module provides the MonteCarloSimulator class which projects a
portfolio forward month by month with correlated stochastic returns,
contributions, fees and periodic rebalancing.
"""

import logging
import math
from typing import Mapping, Optional, Tuple

import numpy as np

from ..concurrency import CancellationToken, check_cancelled, run_batches, seed_sequence
from ..config import MONTHS_PER_YEAR
from ..errors import Cancelled, InsufficientDataError
from ..validation import require_non_negative, require_positive_int, validate_allocation
from .config import MonteCarloConfig
from .market_assumptions import ReturnAssumptions
from .results import MonteCarloResults
from .return_generator import CorrelatedReturnGenerator

logger = logging.getLogger(__name__)


class MonteCarloSimulator:
    """Orchestrates Monte Carlo simulations of a target-weight portfolio.

    Each trial tracks per-asset holdings, so notional weights drift with
    returns between rebalances. The workflow for one month:
    1. Deduct the proportional fee from the pre-growth holdings
    2. Grow holdings by that month's correlated asset returns
    3. Invest the inflation-adjusted contribution at the target weights
    4. On rebalance months, reset holdings to target weights, paying
       trading costs on the traded notional

    Trials are split into batches, each drawing from its own child of the
    configured seed, so the output does not depend on the worker count.

    Example:
        >>> market = ReturnAssumptions.create_default().subset(["stocks", "bonds"])
        >>> simulator = MonteCarloSimulator(market, MonteCarloConfig(num_simulations=500, random_seed=7))
        >>> results = simulator.run(100000, 1000, 10, {"stocks": 0.6, "bonds": 0.4})
        >>> print(f"Success rate: {results.success_rate():.1%}")
    """

    def __init__(self,
                 market_assumptions: Optional[ReturnAssumptions] = None,
                 config: Optional[MonteCarloConfig] = None):
        """Initialize the simulator.

        Args:
            market_assumptions: Return assumptions covering every allocated
                                asset. If None, uses default assumptions.
            config: Simulation configuration. If None, uses defaults.
        """
        self.market = market_assumptions or ReturnAssumptions.create_default()
        self.config = config or MonteCarloConfig()

    def run(self,
            initial_investment: float,
            monthly_contribution: float,
            horizon_years: int,
            allocation: Mapping[str, float],
            cancel_token: Optional[CancellationToken] = None) -> MonteCarloResults:
        """Run Monte Carlo simulation.

        Args:
            initial_investment: Portfolio value at month 0
            monthly_contribution: Contribution in month 1 money; grows with inflation
            horizon_years: Number of years to project
            allocation: Target weights by asset name, summing to 1
            cancel_token: Optional token checked before every batch

        Returns:
            MonteCarloResults computed from the complete set of trials

        Raises:
            InsufficientDataError: If nothing is invested and nothing contributed
            Cancelled: If the token is set before the run completes
        """
        initial_investment = require_non_negative(initial_investment, "initial_investment")
        monthly_contribution = require_non_negative(monthly_contribution, "monthly_contribution")
        horizon_years = require_positive_int(horizon_years, "horizon_years")
        allocation = validate_allocation(allocation, symbols=self.market.asset_order)
        if initial_investment == 0 and monthly_contribution == 0:
            raise InsufficientDataError(
                "Nothing to simulate: initial investment and contribution are both zero",
                field="initial_investment",
            )

        names = list(allocation)
        generator = CorrelatedReturnGenerator(self.market.subset(names))
        target = np.array([allocation[name] for name in names])
        target = target / target.sum()

        num_months = horizon_years * MONTHS_PER_YEAR
        contributions = self.contribution_schedule(monthly_contribution, num_months)
        total_invested = initial_investment + float(contributions.sum())

        cfg = self.config
        num_batches = math.ceil(cfg.num_simulations / cfg.batch_size)
        children = seed_sequence(cfg.random_seed).spawn(num_batches)
        batches = [
            (children[i], min(cfg.batch_size, cfg.num_simulations - i * cfg.batch_size))
            for i in range(num_batches)
        ]

        logger.info("Running %d simulations over %d months in %d batches",
                    cfg.num_simulations, num_months, num_batches)

        def simulate(batch):
            child, size = batch
            rng = np.random.default_rng(child)
            returns = generator.generate(size, num_months, rng)
            return self._simulate_batch(returns, initial_investment, contributions,
                                        target, cancel_token)

        try:
            outputs = run_batches(simulate, batches, cfg.max_workers, cancel_token)
        except Cancelled:
            logger.info("Simulation cancelled before completion")
            raise

        monthly_values = np.vstack([values for values, _ in outputs])
        portfolio_returns = np.vstack([rets for _, rets in outputs])
        logger.info("Completed %d simulations", monthly_values.shape[0])
        return MonteCarloResults(monthly_values, portfolio_returns, cfg, total_invested)

    def contribution_schedule(self, monthly_contribution: float, num_months: int) -> np.ndarray:
        """Contribution for months 1..num_months: c * (1 + inflation)^(m/12)."""
        months = np.arange(1, num_months + 1)
        return monthly_contribution * (1.0 + self.config.inflation_rate) ** (months / MONTHS_PER_YEAR)

    def _simulate_batch(self,
                        returns: np.ndarray,
                        initial_investment: float,
                        contributions: np.ndarray,
                        target: np.ndarray,
                        cancel_token: Optional[CancellationToken]) -> Tuple[np.ndarray, np.ndarray]:
        """Project one batch of trials.

        Args:
            returns: (trials, months, assets) monthly asset returns

        Returns:
            (values, portfolio_returns) with shapes (trials, months + 1)
            and (trials, months)
        """
        check_cancelled(cancel_token)
        cfg = self.config
        num_trials, num_months, _ = returns.shape
        fee_rate = cfg.fee_structure.monthly_rate if cfg.include_fees else 0.0
        trading_cost = cfg.fee_structure.trading_costs if cfg.include_fees else 0.0

        values = np.empty((num_trials, num_months + 1))
        portfolio_returns = np.zeros((num_trials, num_months))
        holdings = np.tile(initial_investment * target, (num_trials, 1))
        values[:, 0] = initial_investment

        for m in range(1, num_months + 1):
            # Fees come out of the pre-growth value, pro rata across holdings
            holdings *= 1.0 - fee_rate

            before = holdings.sum(axis=1)
            holdings *= 1.0 + returns[:, m - 1, :]
            np.maximum(holdings, 0.0, out=holdings)
            after = holdings.sum(axis=1)
            with np.errstate(divide="ignore", invalid="ignore"):
                portfolio_returns[:, m - 1] = np.where(before > 0, after / before - 1.0, 0.0)

            holdings += contributions[m - 1] * target

            if m % cfg.rebalance_frequency_months == 0:
                total = holdings.sum(axis=1, keepdims=True)
                traded = np.abs(total * target - holdings).sum(axis=1, keepdims=True)
                total = np.maximum(total - trading_cost * traded, 0.0)
                holdings = total * target

            values[:, m] = holdings.sum(axis=1)

        return values, portfolio_returns


def run_monte_carlo(initial_investment: float,
                    monthly_contribution: float,
                    horizon_years: int,
                    allocation: Mapping[str, float],
                    return_assumptions: Optional[ReturnAssumptions] = None,
                    config: Optional[MonteCarloConfig] = None,
                    cancel_token: Optional[CancellationToken] = None) -> MonteCarloResults:
    """Convenience wrapper building a simulator and running it once."""
    simulator = MonteCarloSimulator(return_assumptions, config)
    return simulator.run(initial_investment, monthly_contribution, horizon_years,
                         allocation, cancel_token)

# Copyright 2025 Spencer Williams
#
# Use of this source code is governed by an MIT license:
# https://github.com/sw23/life-model/blob/main/LICENSE

"""
Monte Carlo simulation results aggregation and analysis.

This module provides the MonteCarloResults class for analyzing simulated
portfolio paths, including checkpoint statistics, percentile bands, tail risk
and success rates. Statistics are always computed from the full completed set
of trials.
"""

from dataclasses import dataclass
from functools import cached_property
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from .. import stats
from ..config import MONTHS_PER_YEAR, RISK_FREE_RATE
from ..errors import ValidationError
from .config import SUCCESS_ANY_POINT, SUCCESS_TERMINAL, MonteCarloConfig


@dataclass(frozen=True)
class SimulationPath:
    """One trial's monthly portfolio values, month 0 through the horizon."""
    trial: int
    values: Tuple[float, ...]

    @property
    def points(self) -> List[Tuple[int, float]]:
        return list(enumerate(self.values))

    @property
    def terminal_value(self) -> float:
        return self.values[-1]

    @property
    def annual_values(self) -> Tuple[float, ...]:
        return self.values[::MONTHS_PER_YEAR]

    def max_drawdown(self) -> float:
        return stats.max_drawdown(self.values)


class MonteCarloResults:
    """Aggregates and analyzes Monte Carlo simulation results.

    Example:
        >>> results = simulator.run(...)
        >>> print(f"Success rate: {results.success_rate():.1%}")
        >>> results.get_percentile_df()['Median']
    """

    # Standard percentile levels for analysis
    PERCENTILES = {
        "Top 5%": 0.95,
        "Top 10%": 0.90,
        "Top 25%": 0.75,
        "Median": 0.50,
        "Bottom 25%": 0.25,
        "Bottom 10%": 0.10,
        "Bottom 5%": 0.05,
    }

    def __init__(self,
                 monthly_values: np.ndarray,
                 portfolio_returns: np.ndarray,
                 config: MonteCarloConfig,
                 total_invested: float):
        """Initialize with simulated paths.

        Args:
            monthly_values: (num_trials, num_months + 1) portfolio values
            portfolio_returns: (num_trials, num_months) monthly portfolio returns
            config: Configuration the simulation ran with
            total_invested: Initial investment plus all contributions
        """
        self.monthly_values = np.asarray(monthly_values, dtype=float)
        self.monthly_values.setflags(write=False)
        self.portfolio_returns = np.asarray(portfolio_returns, dtype=float)
        self.portfolio_returns.setflags(write=False)
        self.config = config
        self.total_invested = float(total_invested)

        self.num_simulations = self.monthly_values.shape[0]
        self.num_months = self.monthly_values.shape[1] - 1
        self.num_years = self.num_months // MONTHS_PER_YEAR

    # ---- paths -------------------------------------------------------

    def path(self, trial: int) -> SimulationPath:
        return SimulationPath(trial, tuple(float(v) for v in self.monthly_values[trial]))

    @property
    def paths(self) -> Tuple[SimulationPath, ...]:
        return tuple(self.path(i) for i in range(self.num_simulations))

    @property
    def annual_values(self) -> np.ndarray:
        """(num_trials, num_years + 1) values at each annual checkpoint."""
        return self.monthly_values[:, ::MONTHS_PER_YEAR]

    def get_years(self) -> List[int]:
        return list(range(self.num_years + 1))

    def get_final_values(self) -> np.ndarray:
        return self.monthly_values[:, -1].copy()

    # ---- statistics --------------------------------------------------

    @cached_property
    def annual_statistics(self) -> Dict[int, Dict[str, object]]:
        """Summary statistics for each annual checkpoint after year 0."""
        annual = self.annual_values
        return {
            year: stats.summarize(
                annual[:, year], self.config.confidence_intervals, self.config.var_alpha
            )
            for year in range(1, self.num_years + 1)
        }

    @cached_property
    def max_drawdowns(self) -> np.ndarray:
        return stats.max_drawdowns(self.monthly_values)

    def success_rate(self,
                     target_value: Optional[float] = None,
                     criterion: Optional[str] = None) -> float:
        """Fraction of trials meeting or exceeding the target.

        Args:
            target_value: Threshold; defaults to the configured target, or the
                          total amount invested when none is configured
            criterion: "terminal" compares the final value, "any_point" the
                       path maximum; defaults to the configured criterion

        Returns:
            Success rate as decimal (0.0 to 1.0)
        """
        if target_value is None:
            target_value = self.target_value
        criterion = criterion or self.config.success_criterion
        if criterion == SUCCESS_TERMINAL:
            outcomes = self.monthly_values[:, -1]
        elif criterion == SUCCESS_ANY_POINT:
            outcomes = self.monthly_values.max(axis=1)
        else:
            raise ValidationError(f"Unknown success criterion: {criterion}", field="criterion")
        return float(np.mean(outcomes >= target_value))

    @property
    def target_value(self) -> float:
        if self.config.target_value is not None:
            return float(self.config.target_value)
        return self.total_invested

    def _risk_adjusted_ratios(self) -> Tuple[float, float]:
        """Median per-trial annualised Sharpe and Sortino ratios."""
        returns = self.portfolio_returns
        if returns.shape[1] < 2:
            return 0.0, 0.0
        monthly_rf = RISK_FREE_RATE / MONTHS_PER_YEAR
        excess = returns.mean(axis=1) - monthly_rf
        vol = returns.std(axis=1)
        downside = np.sqrt(np.mean(np.minimum(returns - monthly_rf, 0.0) ** 2, axis=1))
        scale = np.sqrt(MONTHS_PER_YEAR)
        with np.errstate(divide="ignore", invalid="ignore"):
            sharpe = np.where(vol > 0, excess / vol * scale, 0.0)
            sortino = np.where(downside > 0, excess / downside * scale, 0.0)
        return float(np.median(sharpe)), float(np.median(sortino))

    @cached_property
    def overall(self) -> Dict[str, object]:
        final_values = self.get_final_values()
        sharpe, sortino = self._risk_adjusted_ratios()
        years = max(self.num_months / MONTHS_PER_YEAR, 1e-9)
        growth = np.prod(1.0 + self.portfolio_returns, axis=1) if self.num_months else np.ones(1)
        annualized = np.sign(growth) * np.abs(growth) ** (1.0 / years) - 1.0
        median_drawdown = float(np.median(self.max_drawdowns))
        return {
            "success_rate": self.success_rate(),
            "target_value": self.target_value,
            "success_criterion": self.config.success_criterion,
            "median_terminal_value": stats.median(final_values),
            "mean_terminal_value": stats.mean(final_values),
            "worst_terminal_value": float(np.min(final_values)),
            "best_terminal_value": float(np.max(final_values)),
            "var": stats.value_at_risk(final_values, self.config.var_alpha),
            "cvar": stats.conditional_value_at_risk(final_values, self.config.var_alpha),
            "risk_metrics": {
                "median_max_drawdown": median_drawdown,
                "worst_max_drawdown": float(np.max(self.max_drawdowns)),
                "sharpe_ratio": sharpe,
                "sortino_ratio": sortino,
                "calmar_ratio": stats.calmar_ratio(float(np.median(annualized)), median_drawdown),
            },
            "distribution_metrics": stats.distribution_metrics(final_values),
        }

    def get_statistics(self, year: int = -1) -> Dict[str, object]:
        """Summary statistics at an annual checkpoint (-1 for the final year)."""
        if year == -1:
            year = self.num_years
        if year not in self.annual_statistics:
            raise ValidationError(f"No checkpoint for year {year}", field="year")
        return self.annual_statistics[year]

    def get_percentile_data(self) -> Dict[str, List[float]]:
        """Percentile bands across annual checkpoints, year 0 included."""
        annual = self.annual_values
        return {
            name: [stats.percentile(annual[:, year], pct) for year in range(self.num_years + 1)]
            for name, pct in self.PERCENTILES.items()
        }

    def get_percentile_df(self) -> pd.DataFrame:
        """Percentile data as a DataFrame with years as index."""
        df = pd.DataFrame(self.get_percentile_data())
        df["Year"] = self.get_years()
        return df.set_index("Year")

    def to_dict(self, include_paths: bool = False, max_paths: Optional[int] = None) -> Dict[str, object]:
        annual = {
            str(year): {
                "mean": s["mean"],
                "median": s["median"],
                "stdDev": s["std"],
                "confidenceIntervals": {
                    str(level): {"lower": band[0], "upper": band[1]}
                    for level, band in s["confidence_intervals"].items()
                },
                "var": s["var"],
                "cvar": s["cvar"],
            }
            for year, s in self.annual_statistics.items()
        }
        overall = self.overall
        payload = {
            "statistics": {
                "annual": annual,
                "overall": {
                    "successRate": overall["success_rate"],
                    "targetValue": overall["target_value"],
                    "successCriterion": overall["success_criterion"],
                    "medianTerminalValue": overall["median_terminal_value"],
                    "meanTerminalValue": overall["mean_terminal_value"],
                    "worstTerminalValue": overall["worst_terminal_value"],
                    "bestTerminalValue": overall["best_terminal_value"],
                    "var": overall["var"],
                    "cvar": overall["cvar"],
                    "riskMetrics": overall["risk_metrics"],
                    "distributionMetrics": overall["distribution_metrics"],
                },
            },
            "metadata": {
                "numSimulations": self.num_simulations,
                "years": self.num_years,
                "months": self.num_months,
                "totalInvested": self.total_invested,
                "config": self.config.to_dict(),
            },
        }
        if include_paths:
            limit = self.num_simulations if max_paths is None else min(max_paths, self.num_simulations)
            payload["paths"] = [
                {"simulation": i, "values": self.monthly_values[i].tolist()} for i in range(limit)
            ]
        return payload

    def __repr__(self) -> str:
        return (f"MonteCarloResults(num_simulations={self.num_simulations}, "
                f"num_years={self.num_years})")

# Copyright 2025 Spencer Williams
#
# Use of this source code is governed by an MIT license:
# https://github.com/sw23/life-model/blob/main/LICENSE

"""Configuration for Monte Carlo simulations."""

from dataclasses import dataclass
from typing import Optional, Tuple

from .. import config as defaults
from ..errors import ValidationError
from ..options import OptionsMixin
from ..validation import require_non_negative, require_positive_int, require_probability

SUCCESS_TERMINAL = "terminal"
SUCCESS_ANY_POINT = "any_point"


@dataclass(frozen=True)
class FeeStructure(OptionsMixin):
    """Fee schedule applied during simulation.

    Attributes:
        management_fee: Annual management fee as decimal of portfolio value
        trading_costs: Cost per unit of traded notional when rebalancing
        admin_fee: Annual administrative fee as decimal of portfolio value
    """
    management_fee: float = defaults.MANAGEMENT_FEE
    trading_costs: float = defaults.TRADING_COSTS
    admin_fee: float = defaults.ADMIN_FEE

    def __post_init__(self):
        require_probability(self.management_fee, "management_fee")
        require_probability(self.trading_costs, "trading_costs")
        require_probability(self.admin_fee, "admin_fee")

    @property
    def monthly_rate(self) -> float:
        """Proportional monthly deduction from management and admin fees."""
        return (self.management_fee + self.admin_fee) / defaults.MONTHS_PER_YEAR


@dataclass(frozen=True)
class MonteCarloConfig(OptionsMixin):
    """Configuration for Monte Carlo simulation parameters.

    Attributes:
        num_simulations: Number of Monte Carlo trials to run. Default 1000.
        confidence_intervals: Central bands reported per checkpoint, each in (0, 1).
        inflation_rate: Annual growth applied to the monthly contribution.
        rebalance_frequency_months: Reset to target weights every N months.
        include_fees: Apply fee_structure (fees and rebalancing trading costs).
        fee_structure: Fee schedule.
        random_seed: Seed for reproducible results. None draws fresh entropy.
        target_value: Success threshold; None means total money invested.
        success_criterion: "terminal" (final value) or "any_point" (path maximum).
        var_alpha: Tail probability for VaR/CVaR of outcomes.
        batch_size: Trials per batch; each batch has its own RNG substream.
        max_workers: Worker threads used to run batches.
    """
    num_simulations: int = defaults.NUM_SIMULATIONS
    confidence_intervals: Tuple[float, ...] = defaults.CONFIDENCE_INTERVALS
    inflation_rate: float = defaults.INFLATION_RATE
    rebalance_frequency_months: int = defaults.REBALANCE_FREQUENCY_MONTHS
    include_fees: bool = True
    fee_structure: FeeStructure = FeeStructure()
    random_seed: Optional[int] = None
    target_value: Optional[float] = None
    success_criterion: str = SUCCESS_TERMINAL
    var_alpha: float = defaults.VAR_ALPHA
    batch_size: int = defaults.SIMULATION_BATCH_SIZE
    max_workers: int = 1

    NESTED = {"fee_structure": FeeStructure}
    ALIASES = {"rebalanceFrequency": "rebalance_frequency_months",
               "seed": "random_seed"}

    def __post_init__(self):
        require_positive_int(self.num_simulations, "num_simulations")
        require_positive_int(self.rebalance_frequency_months, "rebalance_frequency_months")
        require_positive_int(self.batch_size, "batch_size")
        require_positive_int(self.max_workers, "max_workers")

        levels = tuple(
            require_probability(level, "confidence_intervals", open_interval=True)
            for level in self.confidence_intervals
        )
        # stored as a sorted, de-duplicated set (widest band first)
        object.__setattr__(self, "confidence_intervals", tuple(sorted(set(levels), reverse=True)))

        if not -1.0 < float(self.inflation_rate) < 1.0:
            raise ValidationError(
                f"inflation_rate must be in (-1, 1), got {self.inflation_rate}", field="inflation_rate"
            )
        if self.target_value is not None:
            require_non_negative(self.target_value, "target_value")
        if self.success_criterion not in (SUCCESS_TERMINAL, SUCCESS_ANY_POINT):
            raise ValidationError(
                f"success_criterion must be '{SUCCESS_TERMINAL}' or '{SUCCESS_ANY_POINT}'",
                field="success_criterion",
            )
        require_probability(self.var_alpha, "var_alpha", open_interval=True)
        if not isinstance(self.fee_structure, FeeStructure):
            raise ValidationError("fee_structure must be a FeeStructure", field="fee_structure")

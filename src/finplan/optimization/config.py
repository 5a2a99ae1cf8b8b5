"""
Configuration for portfolio optimization.

Constraint sets, solver options and investor views are explicit frozen value
objects validated when built.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .. import config as defaults
from ..errors import ValidationError
from ..options import OptionsMixin
from ..validation import (require_finite, require_non_negative, require_positive,
                          require_positive_int, require_probability)

MAX_SHARPE = "max_sharpe"
MIN_VARIANCE = "min_variance"
MAX_UTILITY = "max_utility"
OBJECTIVES = (MAX_SHARPE, MIN_VARIANCE, MAX_UTILITY)

WeightBound = Union[float, Mapping[str, float]]


@dataclass(frozen=True)
class MarketView:
    """Absolute view on one asset's annual return.

    Attributes:
        symbol: Asset the view is about
        expected_return: Subjective annual return estimate
        confidence: Confidence in (0, 1]; higher pulls the posterior harder
    """
    symbol: str
    expected_return: float
    confidence: float = 0.5

    def __post_init__(self):
        require_finite(self.expected_return, f"view[{self.symbol}].expected_return")
        confidence = require_probability(self.confidence, f"view[{self.symbol}].confidence")
        if confidence == 0:
            raise ValidationError(
                f"View confidence must be in (0, 1], got {confidence}", field=self.symbol
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MarketView":
        symbol = data.get("symbol", data.get("asset"))
        if not symbol:
            raise ValidationError("Market view requires a symbol", field="symbol")
        estimate = data.get("expectedReturn", data.get("expected_return", data.get("estimate")))
        if estimate is None:
            raise ValidationError("Market view requires an estimate", field=symbol)
        return cls(symbol=symbol, expected_return=float(estimate),
                   confidence=float(data.get("confidence", 0.5)))


@dataclass(frozen=True)
class OptimizationConstraints(OptionsMixin):
    """Linear and risk constraints on the allocation.

    Attributes:
        min_weights: Lower bound for every asset, or a per-symbol mapping
                     (symbols not listed get 0)
        max_weights: Upper bound for every asset, or a per-symbol mapping
                     (symbols not listed get 1)
        sector_caps: Maximum total weight per sector
        sector_minimums: Minimum total weight per sector
        target_return: Required expected return; switches to minimum variance
        max_volatility: Upper bound on annual portfolio volatility
        max_cvar: Upper bound on CVaR of annual portfolio loss
    """
    min_weights: WeightBound = 0.0
    max_weights: WeightBound = 1.0
    sector_caps: Dict[str, float] = field(default_factory=dict)
    sector_minimums: Dict[str, float] = field(default_factory=dict)
    target_return: Optional[float] = None
    max_volatility: Optional[float] = None
    max_cvar: Optional[float] = None

    ALIASES = {"sectorConstraints": "sector_caps",
               "maxCVaR": "max_cvar"}

    def __post_init__(self):
        for name in ("min_weights", "max_weights"):
            bound = getattr(self, name)
            if isinstance(bound, Mapping):
                object.__setattr__(self, name, {
                    symbol: require_probability(value, f"{name}[{symbol}]")
                    for symbol, value in bound.items()
                })
            else:
                object.__setattr__(self, name, require_probability(bound, name))
        for name in ("sector_caps", "sector_minimums"):
            object.__setattr__(self, name, {
                sector: require_probability(value, f"{name}[{sector}]")
                for sector, value in dict(getattr(self, name) or {}).items()
            })
        if self.target_return is not None:
            require_finite(self.target_return, "target_return")
        if self.max_volatility is not None:
            require_positive(self.max_volatility, "max_volatility")
        if self.max_cvar is not None:
            require_finite(self.max_cvar, "max_cvar")

    def bounds_for(self, symbols: Sequence[str]) -> List[Tuple[float, float]]:
        """Per-asset (min, max) in symbol order; unknown symbols are rejected."""
        for name in ("min_weights", "max_weights"):
            bound = getattr(self, name)
            if isinstance(bound, Mapping):
                unknown = [s for s in bound if s not in symbols]
                if unknown:
                    raise ValidationError(f"{name} references unknown symbols: {unknown}",
                                          field=unknown[0])

        def lookup(bound, symbol, default):
            if isinstance(bound, Mapping):
                return bound.get(symbol, default)
            return bound

        return [(lookup(self.min_weights, s, 0.0), lookup(self.max_weights, s, 1.0)) for s in symbols]


@dataclass(frozen=True)
class OptimizationConfig(OptionsMixin):
    """Solver and model options.

    Attributes:
        objective: "max_sharpe", "min_variance" or "max_utility"
        risk_free_rate: Annual rate used for Sharpe ratios
        use_black_litterman: Blend equilibrium returns with market views
        tau: Black-Litterman prior uncertainty scalar
        risk_aversion: delta for equilibrium returns and the utility objective
        use_cvar: Enforce constraints.max_cvar via scenario CVaR
        cvar_confidence: CVaR confidence level
        cvar_scenarios: Simulated scenarios when no return history is given
        use_resampling: Michaud resampled optimization
        num_resamples: Number of resampling draws
        resample_observations: Monthly observations per resampling draw
        num_attempts: Multi-start SLSQP attempts
        max_iterations: SLSQP iteration limit per attempt
        tolerance: SLSQP ftol
        random_seed: Seed for random starts, scenarios and resampling
        max_workers: Threads used for resampling and frontier points
        num_frontier_points: Default efficient frontier resolution
    """
    objective: str = MAX_SHARPE
    risk_free_rate: float = defaults.RISK_FREE_RATE
    use_black_litterman: bool = False
    tau: float = defaults.BL_TAU
    risk_aversion: float = defaults.RISK_AVERSION
    use_cvar: bool = False
    cvar_confidence: float = defaults.CVAR_CONFIDENCE
    cvar_scenarios: int = defaults.CVAR_SCENARIOS
    use_resampling: bool = False
    num_resamples: int = defaults.NUM_RESAMPLES
    resample_observations: int = defaults.RESAMPLE_OBSERVATIONS
    num_attempts: int = defaults.NUM_OPTIMIZATION_ATTEMPTS
    max_iterations: int = defaults.MAX_OPTIMIZATION_ITERATIONS
    tolerance: float = defaults.CONVERGENCE_TOLERANCE
    random_seed: Optional[int] = None
    max_workers: int = 1
    num_frontier_points: int = defaults.FRONTIER_POINTS

    ALIASES = {"useBlackLitterman": "use_black_litterman",
               "useCVaR": "use_cvar",
               "useResampling": "use_resampling",
               "seed": "random_seed"}

    def __post_init__(self):
        if self.objective not in OBJECTIVES:
            raise ValidationError(f"objective must be one of {OBJECTIVES}, got {self.objective!r}",
                                  field="objective")
        require_finite(self.risk_free_rate, "risk_free_rate")
        require_positive(self.tau, "tau")
        require_positive(self.risk_aversion, "risk_aversion")
        require_probability(self.cvar_confidence, "cvar_confidence", open_interval=True)
        require_positive_int(self.cvar_scenarios, "cvar_scenarios")
        require_positive_int(self.num_resamples, "num_resamples")
        if require_positive_int(self.resample_observations, "resample_observations") < 2:
            raise ValidationError("resample_observations must be at least 2",
                                  field="resample_observations")
        require_positive_int(self.num_attempts, "num_attempts")
        require_positive_int(self.max_iterations, "max_iterations")
        require_positive(self.tolerance, "tolerance")
        require_positive_int(self.max_workers, "max_workers")
        if require_positive_int(self.num_frontier_points, "num_frontier_points") < 2:
            raise ValidationError("num_frontier_points must be at least 2",
                                  field="num_frontier_points")
        if self.random_seed is not None:
            require_non_negative(self.random_seed, "random_seed")

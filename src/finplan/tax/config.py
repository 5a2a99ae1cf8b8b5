"""Configuration and rate schedules for the tax strategy optimizer."""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Mapping, Optional

from .. import config as defaults
from ..errors import ValidationError
from ..models import normalize_account_type, parse_date
from ..options import OptionsMixin
from ..validation import require_finite, require_non_negative, require_positive_int, require_probability


@dataclass(frozen=True)
class TaxRates(OptionsMixin):
    """Marginal rates supplied by the tax-data collaborator.

    Attributes:
        federal_long_term: Federal long-term capital gains rate
        federal_short_term: Federal ordinary income rate (short-term gains,
                            tax-deferred distributions)
        state: State income tax rate
        niit: Net investment income tax rate
        niit_applies: Whether the NIIT applies to this taxpayer
    """
    federal_long_term: float = 0.15
    federal_short_term: float = 0.24
    state: float = 0.05
    niit: float = defaults.NIIT_RATE
    niit_applies: bool = False

    ALIASES = {"federalOrdinary": "federal_short_term",
               "stateRate": "state"}

    def __post_init__(self):
        for name in ("federal_long_term", "federal_short_term", "state", "niit"):
            require_probability(getattr(self, name), name)

    @property
    def long_term_rate(self) -> float:
        """Combined rate on long-term gains and harvested losses."""
        return self.federal_long_term + self.state + (self.niit if self.niit_applies else 0.0)

    @property
    def ordinary_rate(self) -> float:
        return self.federal_short_term + self.state


@dataclass(frozen=True)
class SubstituteCandidate:
    """A replacement security for a harvested position."""
    symbol: str
    correlation: float
    tracking_error: float = 0.0

    def __post_init__(self):
        correlation = require_finite(self.correlation, f"correlation[{self.symbol}]")
        if not -1.0 <= correlation <= 1.0:
            raise ValidationError(f"Correlation must be in [-1, 1], got {correlation}", field=self.symbol)
        require_non_negative(self.tracking_error, f"tracking_error[{self.symbol}]")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SubstituteCandidate":
        return cls(symbol=data["symbol"],
                   correlation=float(data["correlation"]),
                   tracking_error=float(data.get("trackingError", data.get("tracking_error", 0.0))))


@dataclass(frozen=True)
class WithdrawalPreferences(OptionsMixin):
    """Flags adjusting the withdrawal order.

    Attributes:
        consider_rmds: Draw required minimum distributions before anything else
        preserve_allocation: Draw pro rata across accounts of the same tier
                             instead of emptying the cheapest first
    """
    consider_rmds: bool = True
    preserve_allocation: bool = False

    ALIASES = {"considerRMDs": "consider_rmds",
               "maintainAssetAllocation": "preserve_allocation"}


@dataclass(frozen=True)
class TaxStrategyConfig(OptionsMixin):
    """Options for compute_tax_strategy.

    Attributes:
        harvesting_threshold: Minimum unrealized loss (dollars) to report
        wash_sale_window_days: Days before and after the evaluation date
        min_substitute_correlation: Correlation floor for alternatives
        max_alternatives: Alternatives reported per opportunity
        location_scores: Overrides of the asset-class x account-type score table
        as_of: Evaluation date; None means today
        withdrawal_preferences: Withdrawal sequencing flags
    """
    harvesting_threshold: float = defaults.HARVESTING_THRESHOLD
    wash_sale_window_days: int = defaults.WASH_SALE_WINDOW_DAYS
    min_substitute_correlation: float = defaults.SUBSTITUTE_MIN_CORRELATION
    max_alternatives: int = defaults.MAX_HARVEST_ALTERNATIVES
    location_scores: Dict[str, Dict[str, float]] = field(default_factory=dict)
    as_of: Optional[date] = None
    withdrawal_preferences: WithdrawalPreferences = WithdrawalPreferences()

    NESTED = {"withdrawal_preferences": WithdrawalPreferences}
    ALIASES = {"washSaleWindow": "wash_sale_window_days",
               "preferences": "withdrawal_preferences"}

    def __post_init__(self):
        require_non_negative(self.harvesting_threshold, "harvesting_threshold")
        require_positive_int(self.wash_sale_window_days, "wash_sale_window_days")
        require_probability(self.min_substitute_correlation, "min_substitute_correlation")
        require_positive_int(self.max_alternatives, "max_alternatives")
        if self.as_of is not None:
            object.__setattr__(self, "as_of", parse_date(self.as_of, "as_of"))
        if not isinstance(self.withdrawal_preferences, WithdrawalPreferences):
            raise ValidationError("withdrawal_preferences must be a WithdrawalPreferences",
                                  field="withdrawal_preferences")

        scores = {}
        for asset_class, by_account in dict(self.location_scores or {}).items():
            if not isinstance(by_account, Mapping):
                raise ValidationError(f"location_scores[{asset_class}] must be a mapping",
                                      field="location_scores")
            scores[str(asset_class).lower()] = {
                normalize_account_type(account): require_probability(
                    score, f"location_scores[{asset_class}][{account}]")
                for account, score in by_account.items()
            }
        object.__setattr__(self, "location_scores", scores)

    @property
    def evaluation_date(self) -> date:
        return self.as_of or date.today()


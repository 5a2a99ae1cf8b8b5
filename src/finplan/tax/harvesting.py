"""
Tax-loss harvesting.

Finds taxable positions carrying a loss worth realising, proposes
replacement securities that keep the market exposure, and flags positions
traded inside the wash-sale window.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .. import config as defaults
from ..errors import ValidationError
from ..models import TAXABLE, Asset, Portfolio, TaxLot
from .config import SubstituteCandidate, TaxRates, TaxStrategyConfig

logger = logging.getLogger(__name__)

# Widely held ETFs and close substitutes that track a different index or issuer
DEFAULT_SUBSTITUTES = {
    "SPY": (SubstituteCandidate("VOO", 0.99, 0.01), SubstituteCandidate("IVV", 0.99, 0.01),
            SubstituteCandidate("SCHX", 0.98, 0.02)),
    "VOO": (SubstituteCandidate("IVV", 0.99, 0.01), SubstituteCandidate("SPY", 0.99, 0.01)),
    "IVV": (SubstituteCandidate("VOO", 0.99, 0.01), SubstituteCandidate("SPY", 0.99, 0.01)),
    "VTI": (SubstituteCandidate("ITOT", 0.99, 0.01), SubstituteCandidate("SCHB", 0.99, 0.01)),
    "QQQ": (SubstituteCandidate("QQQM", 0.99, 0.005), SubstituteCandidate("VGT", 0.95, 0.04)),
    "IWM": (SubstituteCandidate("VTWO", 0.99, 0.01), SubstituteCandidate("SCHA", 0.97, 0.03)),
    "VEA": (SubstituteCandidate("IEFA", 0.99, 0.01), SubstituteCandidate("SCHF", 0.98, 0.015)),
    "VWO": (SubstituteCandidate("IEMG", 0.98, 0.02), SubstituteCandidate("SCHE", 0.97, 0.025)),
    "AGG": (SubstituteCandidate("BND", 0.98, 0.01), SubstituteCandidate("SCHZ", 0.97, 0.012)),
    "BND": (SubstituteCandidate("AGG", 0.98, 0.01), SubstituteCandidate("SCHZ", 0.97, 0.012)),
    "TLT": (SubstituteCandidate("VGLT", 0.98, 0.015), SubstituteCandidate("SPTL", 0.98, 0.015)),
    "VNQ": (SubstituteCandidate("SCHH", 0.97, 0.02), SubstituteCandidate("IYR", 0.97, 0.02)),
    "GLD": (SubstituteCandidate("IAU", 0.99, 0.005), SubstituteCandidate("GLDM", 0.99, 0.005)),
}

LONG_TERM = "long_term"
SHORT_TERM = "short_term"
MIXED = "mixed"
UNKNOWN = "unknown"


@dataclass(frozen=True)
class HarvestingOpportunity:
    """A position whose loss could be realised.

    Attributes:
        position: Symbol of the losing position
        unrealized_loss: Negative dollar amount
        potential_savings: |loss| x combined long-term rate
        alternatives: Replacement securities, best first
        wash_sale_risk: True when the symbol traded inside the window
        holding_period: long_term, short_term, mixed or unknown
        lots: Loss lots, highest cost per share first
        earliest_harvest_date: First date clear of the wash-sale window
    """
    position: str
    unrealized_loss: float
    potential_savings: float
    alternatives: Tuple[SubstituteCandidate, ...]
    wash_sale_risk: bool
    holding_period: str
    lots: Tuple[TaxLot, ...]
    earliest_harvest_date: date

    @property
    def harvestable(self) -> bool:
        return bool(self.alternatives) and not self.wash_sale_risk

    def to_dict(self) -> dict:
        return {
            "position": self.position,
            "unrealizedLoss": self.unrealized_loss,
            "potentialSavings": self.potential_savings,
            "alternatives": [
                {"symbol": a.symbol, "correlation": a.correlation, "trackingError": a.tracking_error}
                for a in self.alternatives
            ],
            "washSaleRisk": self.wash_sale_risk,
            "holdingPeriod": self.holding_period,
            "harvestable": self.harvestable,
            "timing": {"earliestHarvestDate": self.earliest_harvest_date.isoformat()},
            "lots": [
                {"purchaseDate": lot.purchase_date.isoformat(), "quantity": lot.quantity,
                 "costBasis": lot.cost_basis}
                for lot in self.lots
            ],
        }


def _alternatives_from_returns(symbol: str, returns: pd.DataFrame,
                               periods_per_year: int) -> List[SubstituteCandidate]:
    if symbol not in returns.columns:
        return []
    clean = returns.dropna(how="any")
    if len(clean) < 2:
        return []
    correlation = clean.corr()[symbol]
    candidates = []
    for other in clean.columns:
        if other == symbol or not np.isfinite(correlation[other]):
            continue
        tracking = float((clean[other] - clean[symbol]).std(ddof=1) * np.sqrt(periods_per_year))
        candidates.append(SubstituteCandidate(other, float(np.clip(correlation[other], -1.0, 1.0)),
                                              tracking))
    return candidates


def find_alternatives(symbol: str,
                      universe: Optional[Mapping[str, Sequence[SubstituteCandidate]]] = None,
                      returns: Optional[pd.DataFrame] = None,
                      min_correlation: float = defaults.SUBSTITUTE_MIN_CORRELATION,
                      max_alternatives: int = defaults.MAX_HARVEST_ALTERNATIVES,
                      periods_per_year: int = defaults.MONTHS_PER_YEAR) -> Tuple[SubstituteCandidate, ...]:
    """
    Replacement securities for a harvested position

    Candidates come from the caller's universe when it lists the symbol,
    otherwise from return series, otherwise from the built-in table.

    Returns:
    tuple: Candidates with correlation >= min_correlation, highest
        correlation first, lowest tracking error breaking ties
    """
    if universe and symbol in universe:
        candidates = [c if isinstance(c, SubstituteCandidate) else SubstituteCandidate.from_dict(c)
                      for c in universe[symbol]]
    elif returns is not None and symbol in returns.columns:
        candidates = _alternatives_from_returns(symbol, returns, periods_per_year)
    else:
        candidates = list(DEFAULT_SUBSTITUTES.get(symbol.upper(), ()))

    eligible = [c for c in candidates if c.symbol != symbol and c.correlation >= min_correlation]
    eligible.sort(key=lambda c: (-c.correlation, c.tracking_error, c.symbol))
    return tuple(eligible[:max_alternatives])


def _wash_sale_dates(portfolio: Portfolio, symbol: str, as_of: date, window_days: int) -> List[date]:
    """Trade and purchase dates for `symbol` within window_days of as_of."""
    window = timedelta(days=window_days)
    dates = [t.trade_date for t in portfolio.trades
             if t.symbol == symbol and abs(t.trade_date - as_of) <= window]
    dates += [lot.purchase_date for lot in portfolio.lots_for(symbol)
              if abs(lot.purchase_date - as_of) <= window]
    return dates


def wash_sale_risk(portfolio: Portfolio, symbol: str, as_of: date,
                   window_days: int = defaults.WASH_SALE_WINDOW_DAYS) -> bool:
    """True iff the symbol was bought or sold within window_days of as_of."""
    return bool(_wash_sale_dates(portfolio, symbol, as_of, window_days))


def _holding_period(lots: Sequence[TaxLot], as_of: date) -> str:
    if not lots:
        return UNKNOWN
    terms = {lot.is_long_term(as_of) for lot in lots}
    if len(terms) > 1:
        return MIXED
    return LONG_TERM if terms.pop() else SHORT_TERM


def _price(asset: Asset) -> Optional[float]:
    return asset.value / asset.quantity if asset.quantity > 0 else None


def _harvest_candidates(portfolio: Portfolio) -> List[Asset]:
    if not any(asset.account_type for asset in portfolio.assets):
        # positions carry no account metadata; every one is treated as taxable
        return list(portfolio.assets)
    return [asset for asset in portfolio.assets if asset.account_type == TAXABLE]


def find_harvesting_opportunities(portfolio: Portfolio,
                                  tax_rates: TaxRates,
                                  config: Optional[TaxStrategyConfig] = None,
                                  universe: Optional[Mapping[str, Sequence[SubstituteCandidate]]] = None,
                                  returns: Optional[pd.DataFrame] = None) -> List[HarvestingOpportunity]:
    """
    Taxable positions with an unrealized loss of at least the threshold

    Parameters:
    portfolio (Portfolio): Holdings with lots and trade history
    tax_rates (TaxRates): Rates used for the savings estimate
    config (TaxStrategyConfig): Threshold, wash-sale window and alternatives options
    universe (dict): Optional substitute candidates by symbol
    returns (DataFrame): Optional periodic returns used to score substitutes

    Returns:
    list: HarvestingOpportunity sorted by potential savings, largest first
    """
    config = config or TaxStrategyConfig()
    as_of = config.evaluation_date
    opportunities = []

    for asset in _harvest_candidates(portfolio):
        loss = asset.unrealized_gain
        if loss >= 0 or -loss < config.harvesting_threshold:
            continue

        price = _price(asset)
        lots = portfolio.lots_for(asset.symbol)
        if price is not None:
            lots = tuple(lot for lot in lots if lot.unrealized_gain(price) < 0)
        lots = tuple(sorted(lots, key=lambda lot: (-lot.cost_per_share, lot.purchase_date)))

        risk_dates = _wash_sale_dates(portfolio, asset.symbol, as_of, config.wash_sale_window_days)
        earliest = as_of
        if risk_dates:
            earliest = max(risk_dates) + timedelta(days=config.wash_sale_window_days + 1)

        opportunities.append(HarvestingOpportunity(
            position=asset.symbol,
            unrealized_loss=float(loss),
            potential_savings=float(-loss * tax_rates.long_term_rate),
            alternatives=find_alternatives(asset.symbol, universe, returns,
                                           config.min_substitute_correlation,
                                           config.max_alternatives),
            wash_sale_risk=bool(risk_dates),
            holding_period=_holding_period(lots, as_of),
            lots=lots,
            earliest_harvest_date=earliest,
        ))

    opportunities.sort(key=lambda o: (-o.potential_savings, o.position))
    logger.debug("Found %d harvesting opportunities", len(opportunities))
    return opportunities


def apply_harvest(portfolio: Portfolio, symbol: str,
                  quantity: Optional[float] = None) -> Tuple[Portfolio, float]:
    """
    Sell `quantity` units of `symbol`, highest cost lots first

    The input portfolio is left untouched; partially sold lots are split.

    Returns:
    tuple: (new Portfolio, realised gain, negative for a loss)
    """
    asset = portfolio.get_asset(symbol)
    if asset is None:
        raise ValidationError(f"Unknown symbol: {symbol}", field=symbol)
    price = _price(asset)
    if price is None:
        raise ValidationError(f"{symbol} has no quantity to sell", field=symbol)

    lots = sorted(portfolio.lots_for(symbol), key=lambda lot: (-lot.cost_per_share, lot.purchase_date))
    held = sum(lot.quantity for lot in lots) if lots else asset.quantity
    quantity = held if quantity is None else quantity
    if not 0 < quantity <= held + 1e-9:
        raise ValidationError(f"Harvest quantity must be in (0, {held}], got {quantity}", field=symbol)

    remaining_lots = [lot for lot in portfolio.tax_lots if lot.symbol != symbol]
    if lots:
        to_sell, sold_cost = quantity, 0.0
        for lot in lots:
            if to_sell <= 1e-12:
                remaining_lots.append(lot)
            elif lot.quantity <= to_sell + 1e-12:
                sold_cost += lot.cost_basis
                to_sell -= lot.quantity
            else:
                taken, rest = lot.split(to_sell)
                sold_cost += taken.cost_basis
                remaining_lots.append(rest)
                to_sell = 0.0
    else:
        sold_cost = asset.cost_basis * quantity / asset.quantity

    proceeds = price * quantity
    left = max(asset.quantity - quantity, 0.0)
    updated = replace(asset, quantity=left, value=price * left,
                      cost_basis=max(asset.cost_basis - sold_cost, 0.0))
    assets = tuple(updated if a.symbol == symbol else a for a in portfolio.assets)
    logger.info("Harvested %s units of %s for a realised gain of %.2f", quantity, symbol,
                proceeds - sold_cost)
    return replace(portfolio, assets=assets, tax_lots=tuple(remaining_lots)), float(proceeds - sold_cost)


def harvest_totals(opportunities: Sequence[HarvestingOpportunity]) -> Dict[str, float]:
    """Identified and harvestable losses and savings."""
    return {
        "identified_loss": float(sum(-o.unrealized_loss for o in opportunities)),
        "harvestable_loss": float(sum(-o.unrealized_loss for o in opportunities if o.harvestable)),
        "harvestable_savings": float(sum(o.potential_savings for o in opportunities if o.harvestable)),
    }

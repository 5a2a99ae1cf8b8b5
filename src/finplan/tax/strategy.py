"""
Tax strategy.

Runs asset location, loss harvesting and withdrawal sequencing on one
portfolio snapshot and combines them into an efficiency score, projected
savings and a list of recommendations.
"""

import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .. import config as defaults
from ..models import Portfolio
from .asset_location import AssetLocationResult, optimize_asset_location
from .config import SubstituteCandidate, TaxRates, TaxStrategyConfig
from .harvesting import HarvestingOpportunity, find_harvesting_opportunities, harvest_totals
from .withdrawals import DEFAULT_ORDER, WithdrawalPlan, plan_withdrawals

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaxEfficiency:
    location: float
    harvesting: float
    withdrawal: float

    @property
    def overall(self) -> float:
        return (defaults.LOCATION_SCORE_WEIGHT * self.location
                + defaults.HARVESTING_SCORE_WEIGHT * self.harvesting
                + defaults.WITHDRAWAL_SCORE_WEIGHT * self.withdrawal)

    def to_dict(self) -> dict:
        return {"assetLocation": self.location, "harvesting": self.harvesting,
                "withdrawal": self.withdrawal, "overall": self.overall}


@dataclass(frozen=True)
class ProjectedSavings:
    harvesting: float
    location: float
    withdrawal: float

    @property
    def total(self) -> float:
        return self.harvesting + self.location + self.withdrawal

    def to_dict(self) -> dict:
        return {"harvesting": self.harvesting, "assetLocation": self.location,
                "withdrawal": self.withdrawal, "total": self.total}


@dataclass(frozen=True)
class TaxStrategyResult:
    asset_location: AssetLocationResult
    harvesting_opportunities: Tuple[HarvestingOpportunity, ...]
    withdrawal_strategy: WithdrawalPlan
    efficiency: TaxEfficiency
    projected_savings: ProjectedSavings
    recommendations: Tuple[dict, ...]

    @property
    def efficiency_score(self) -> float:
        return self.efficiency.overall

    def to_dict(self) -> dict:
        return {
            "assetLocation": self.asset_location.to_dict(),
            "harvestingOpportunities": [o.to_dict() for o in self.harvesting_opportunities],
            "withdrawalStrategy": self.withdrawal_strategy.to_dict(),
            "efficiencyScore": self.efficiency_score,
            "taxEfficiency": self.efficiency.to_dict(),
            "projectedSavings": self.projected_savings.to_dict(),
            "recommendations": [dict(r) for r in self.recommendations],
        }


def _recommendations(portfolio: Portfolio,
                     location: AssetLocationResult,
                     opportunities: Sequence[HarvestingOpportunity],
                     withdrawals: WithdrawalPlan) -> List[dict]:
    recommendations = []
    for placement in location.placements:
        asset = portfolio.get_asset(placement.symbol)
        if asset.account_type and asset.account_type != placement.account_type:
            recommendations.append({
                "type": "relocate",
                "symbol": placement.symbol,
                "message": f"Hold {placement.symbol} in a {placement.account_type} account "
                           f"instead of {asset.account_type}",
            })
    if location.placements and location.score < defaults.LOCATION_RECOMMENDATION_SCORE:
        recommendations.append({
            "type": "review_location",
            "message": f"Asset location score {location.score:.2f} is limited by account capacity",
        })

    for opportunity in opportunities:
        if opportunity.harvestable:
            recommendations.append({
                "type": "harvest",
                "symbol": opportunity.position,
                "message": f"Sell {opportunity.position} and buy {opportunity.alternatives[0].symbol} "
                           f"to realise {-opportunity.unrealized_loss:,.2f} of losses",
            })
        elif opportunity.wash_sale_risk:
            recommendations.append({
                "type": "wait",
                "symbol": opportunity.position,
                "message": f"Harvest {opportunity.position} on or after "
                           f"{opportunity.earliest_harvest_date.isoformat()} to avoid a wash sale",
            })

    if withdrawals.shortfall > 0:
        recommendations.append({
            "type": "withdrawal_shortfall",
            "message": f"Accounts fall {withdrawals.shortfall:,.2f} short of the withdrawal need",
        })
    return recommendations


def compute_tax_strategy(portfolio: Portfolio,
                         tax_rates: TaxRates,
                         config: Optional[TaxStrategyConfig] = None,
                         universe: Optional[Mapping[str, Sequence[SubstituteCandidate]]] = None,
                         returns: Optional[pd.DataFrame] = None) -> TaxStrategyResult:
    """
    Asset location, harvesting and withdrawal plan for a portfolio

    Parameters:
    portfolio (Portfolio): Holdings, accounts, lots, trades and withdrawal need
    tax_rates (TaxRates): Marginal rates
    config (TaxStrategyConfig): Thresholds, windows and preferences
    universe (dict): Optional substitute candidates by symbol
    returns (DataFrame): Optional periodic returns used to score substitutes

    Returns:
    TaxStrategyResult: Combined strategy with efficiency score and savings
    """
    config = config or TaxStrategyConfig()

    location = optimize_asset_location(portfolio.assets, portfolio.accounts, config.location_scores)
    opportunities = find_harvesting_opportunities(portfolio, tax_rates, config, universe, returns)
    withdrawals = plan_withdrawals(portfolio.accounts, portfolio.withdrawal_needs, tax_rates,
                                   config.withdrawal_preferences)

    totals = harvest_totals(opportunities)
    harvesting_efficiency = (totals["harvestable_loss"] / totals["identified_loss"]
                             if totals["identified_loss"] > 0 else 0.0)
    efficiency = TaxEfficiency(location=location.score,
                               harvesting=harvesting_efficiency,
                               withdrawal=withdrawals.efficiency)

    location_savings = 0.0
    if location.placements:
        blended = (tax_rates.long_term_rate + tax_rates.ordinary_rate) / 2
        location_savings = max(location.baseline_drag - location.total_drag, 0.0) * blended
    withdrawal_savings = 0.0
    if withdrawals.total_withdrawn > 0:
        reverse = plan_withdrawals(portfolio.accounts, portfolio.withdrawal_needs, tax_rates,
                                   config.withdrawal_preferences, order=tuple(reversed(DEFAULT_ORDER)))
        withdrawal_savings = max(reverse.total_tax_cost - withdrawals.total_tax_cost, 0.0)
    savings = ProjectedSavings(harvesting=totals["harvestable_savings"],
                               location=float(location_savings),
                               withdrawal=float(withdrawal_savings))

    logger.info("Tax strategy: efficiency %.3f, projected savings %.2f, %d opportunities",
                efficiency.overall, savings.total, len(opportunities))
    return TaxStrategyResult(
        asset_location=location,
        harvesting_opportunities=tuple(opportunities),
        withdrawal_strategy=withdrawals,
        efficiency=efficiency,
        projected_savings=savings,
        recommendations=tuple(_recommendations(portfolio, location, opportunities, withdrawals)),
    )

"""
Tax strategy: asset location, loss harvesting and withdrawal sequencing.
"""

from .config import SubstituteCandidate, TaxRates, TaxStrategyConfig, WithdrawalPreferences
from .asset_location import AssetLocationResult, Placement, location_score, optimize_asset_location
from .harvesting import (DEFAULT_SUBSTITUTES, HarvestingOpportunity, apply_harvest, find_alternatives,
                         find_harvesting_opportunities, wash_sale_risk)
from .withdrawals import WithdrawalPlan, WithdrawalStep, plan_withdrawals
from .strategy import ProjectedSavings, TaxEfficiency, TaxStrategyResult, compute_tax_strategy

__all__ = [
    'SubstituteCandidate',
    'TaxRates',
    'TaxStrategyConfig',
    'WithdrawalPreferences',
    'AssetLocationResult',
    'Placement',
    'location_score',
    'optimize_asset_location',
    'DEFAULT_SUBSTITUTES',
    'HarvestingOpportunity',
    'apply_harvest',
    'find_alternatives',
    'find_harvesting_opportunities',
    'wash_sale_risk',
    'WithdrawalPlan',
    'WithdrawalStep',
    'plan_withdrawals',
    'ProjectedSavings',
    'TaxEfficiency',
    'TaxStrategyResult',
    'compute_tax_strategy',
]

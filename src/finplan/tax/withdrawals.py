"""
Withdrawal sequencing.

Draws a required amount from the accounts in order of tax efficiency:
taxable principal first, then tax-deferred, then tax-exempt.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import ValidationError
from ..models import TAX_DEFERRED, TAX_EXEMPT, TAXABLE, Account
from ..validation import require_non_negative
from .config import TaxRates, WithdrawalPreferences

logger = logging.getLogger(__name__)

DEFAULT_ORDER = (TAXABLE, TAX_DEFERRED, TAX_EXEMPT)
RMD = "rmd"
WITHDRAWAL = "withdrawal"


@dataclass(frozen=True)
class WithdrawalStep:
    account_id: str
    account_type: str
    amount: float
    tax_cost: float
    taxable_amount: float
    reason: str = WITHDRAWAL

    def to_dict(self) -> dict:
        return {"accountId": self.account_id, "accountType": self.account_type,
                "amount": self.amount, "taxCost": self.tax_cost,
                "taxableAmount": self.taxable_amount, "reason": self.reason}


@dataclass(frozen=True)
class WithdrawalPlan:
    """Ordered withdrawals covering a required amount.

    Attributes:
        steps: Withdrawals in execution order
        required_amount: Amount the caller needs
        total_withdrawn: Sum of step amounts (RMDs can push it above the need)
        total_tax_cost: Tax owed on the withdrawals
        taxable_amount: Portion of the withdrawals subject to tax
        shortfall: Unmet part of the requirement when balances run out
    """
    steps: Tuple[WithdrawalStep, ...]
    required_amount: float
    total_withdrawn: float
    total_tax_cost: float
    taxable_amount: float
    shortfall: float

    @property
    def efficiency(self) -> float:
        """1 - taxable share of the withdrawal; 1.0 when nothing is withdrawn."""
        if self.total_withdrawn <= 0:
            return 1.0
        return max(0.0, 1.0 - self.taxable_amount / self.total_withdrawn)

    def by_account(self) -> Dict[str, float]:
        totals: Dict[str, float] = {}
        for step in self.steps:
            totals[step.account_id] = totals.get(step.account_id, 0.0) + step.amount
        return totals

    def to_dict(self) -> dict:
        return {
            "steps": [step.to_dict() for step in self.steps],
            "requiredAmount": self.required_amount,
            "totalWithdrawn": self.total_withdrawn,
            "totalTaxCost": self.total_tax_cost,
            "taxableAmount": self.taxable_amount,
            "shortfall": self.shortfall,
            "efficiency": self.efficiency,
        }


def _taxable_portion(account: Account, amount: float) -> float:
    if account.account_type == TAXABLE:
        return amount * account.gain_fraction
    if account.account_type == TAX_DEFERRED:
        return amount
    return 0.0


def _tax_cost(account: Account, amount: float, rates: TaxRates) -> float:
    if account.account_type == TAXABLE:
        return _taxable_portion(account, amount) * rates.long_term_rate
    if account.account_type == TAX_DEFERRED:
        return amount * rates.ordinary_rate
    return 0.0


def _step(account: Account, amount: float, rates: TaxRates, reason: str = WITHDRAWAL) -> WithdrawalStep:
    return WithdrawalStep(account_id=account.account_id,
                          account_type=account.account_type,
                          amount=float(amount),
                          tax_cost=float(_tax_cost(account, amount, rates)),
                          taxable_amount=float(_taxable_portion(account, amount)),
                          reason=reason)


def plan_withdrawals(accounts: Sequence[Account],
                     required_amount: float,
                     rates: TaxRates,
                     preferences: Optional[WithdrawalPreferences] = None,
                     order: Sequence[str] = DEFAULT_ORDER) -> WithdrawalPlan:
    """
    Sequence withdrawals across accounts to cover required_amount

    Within the taxable tier accounts with the smallest embedded gain go
    first; ties fall back to account id.

    Parameters:
    accounts (list): Accounts available for withdrawal
    required_amount (float): Amount needed
    rates (TaxRates): Rates used for the tax cost
    preferences (WithdrawalPreferences): RMD and allocation flags
    order (tuple): Account type tiers, cheapest first

    Returns:
    WithdrawalPlan: Steps, tax cost and any shortfall
    """
    require_non_negative(required_amount, "required_amount")
    preferences = preferences or WithdrawalPreferences()
    if sorted(order) != sorted(DEFAULT_ORDER):
        raise ValidationError(f"order must be a permutation of {DEFAULT_ORDER}", field="order")

    available = {account.account_id: account.balance for account in accounts}
    steps: List[WithdrawalStep] = []
    remaining = float(required_amount)

    if preferences.consider_rmds:
        for account in sorted(accounts, key=lambda a: a.account_id):
            rmd = min(account.required_minimum_distribution, available[account.account_id])
            if rmd > 0:
                steps.append(_step(account, rmd, rates, RMD))
                available[account.account_id] -= rmd
                remaining -= rmd

    for tier in order:
        if remaining <= 1e-9:
            break
        members = sorted((a for a in accounts if a.account_type == tier and available[a.account_id] > 0),
                         key=lambda a: (a.gain_fraction, a.account_id))
        tier_total = sum(available[a.account_id] for a in members)
        if tier_total <= 0:
            continue

        if preferences.preserve_allocation:
            draw = min(remaining, tier_total)
            for account in members:
                amount = draw * available[account.account_id] / tier_total
                steps.append(_step(account, amount, rates))
                available[account.account_id] -= amount
            remaining -= draw
        else:
            for account in members:
                if remaining <= 1e-9:
                    break
                amount = min(remaining, available[account.account_id])
                steps.append(_step(account, amount, rates))
                available[account.account_id] -= amount
                remaining -= amount

    shortfall = max(remaining, 0.0)
    if shortfall > 1e-9:
        logger.warning("Account balances cover %.2f of the %.2f required",
                       required_amount - shortfall, required_amount)

    return WithdrawalPlan(
        steps=tuple(steps),
        required_amount=float(required_amount),
        total_withdrawn=float(sum(s.amount for s in steps)),
        total_tax_cost=float(sum(s.tax_cost for s in steps)),
        taxable_amount=float(sum(s.taxable_amount for s in steps)),
        shortfall=float(shortfall if shortfall > 1e-9 else 0.0),
    )

"""
Asset location.

Scores every (asset, account type) pair, builds a tax-drag cost matrix and
solves the assignment with the Hungarian algorithm. Account capacity is
enforced by forbidding over-capacity placements one at a time and solving
again; when that dead-ends the capacitated problem is solved as a binary
program.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import Bounds, LinearConstraint, linear_sum_assignment, milp

from ..errors import InfeasibleConstraintError
from ..models import TAX_DEFERRED, TAX_EXEMPT, TAXABLE, Account, Asset

logger = logging.getLogger(__name__)

DEFAULT_LOCATION_SCORES = {
    "bonds": {TAX_DEFERRED: 1.0, TAX_EXEMPT: 0.6, TAXABLE: 0.3},
    "stocks": {TAX_DEFERRED: 0.5, TAX_EXEMPT: 1.0, TAXABLE: 0.7},
    "reits": {TAX_DEFERRED: 0.9, TAX_EXEMPT: 0.7, TAXABLE: 0.3},
}
DEFAULT_SCORE = 0.5
CAPACITY_TOLERANCE = 1e-6


def location_score(asset_class: str,
                   account_type: str,
                   overrides: Optional[Mapping[str, Mapping[str, float]]] = None) -> float:
    """Suitability of holding an asset class in an account type, in [0, 1]."""
    asset_class = (asset_class or "").lower()
    if overrides and account_type in overrides.get(asset_class, {}):
        return overrides[asset_class][account_type]
    return DEFAULT_LOCATION_SCORES.get(asset_class, {}).get(account_type, DEFAULT_SCORE)


@dataclass(frozen=True)
class Placement:
    symbol: str
    account_id: str
    account_type: str
    value: float
    score: float
    tax_drag: float


@dataclass(frozen=True)
class AssetLocationResult:
    """Optimised placement of every asset.

    Attributes:
        score: Value-weighted mean location score of the placements
        total_drag: Sum of (1 - score) x value over placements
        baseline_drag: Drag of holding everything in a taxable account
        account_usage: Assigned value per account id
    """
    placements: Tuple[Placement, ...]
    score: float
    total_drag: float
    baseline_drag: float
    account_usage: Dict[str, float]

    def by_account_type(self) -> Dict[str, Dict[str, float]]:
        grouped: Dict[str, Dict[str, float]] = {}
        for p in self.placements:
            grouped.setdefault(p.account_type, {})[p.symbol] = p.value
        return grouped

    def placement_for(self, symbol: str) -> Optional[Placement]:
        return next((p for p in self.placements if p.symbol == symbol), None)

    def to_dict(self) -> dict:
        return {
            "placements": [
                {"symbol": p.symbol, "accountId": p.account_id, "accountType": p.account_type,
                 "value": p.value, "score": p.score, "taxDrag": p.tax_drag}
                for p in self.placements
            ],
            "byAccountType": self.by_account_type(),
            "score": self.score,
            "totalDrag": self.total_drag,
            "accountUsage": dict(self.account_usage),
        }


def _least_regret(members, cost: np.ndarray, forbidden: np.ndarray, account: int) -> Optional[int]:
    """Asset in `account` whose best remaining alternative costs the least extra.

    Equal regret evicts the highest symbol so lower symbols keep their place.
    """
    best, best_key = None, None
    for i in members:
        alternatives = [cost[i, j] for j in range(cost.shape[1]) if j != account and not forbidden[i, j]]
        if not alternatives:
            continue
        key = (min(alternatives) - cost[i, account], -i)
        if best_key is None or key < best_key:
            best, best_key = i, key
    return best


def _solve_greedy(holdings, slots, cost: np.ndarray, values: np.ndarray,
                  capacity: np.ndarray) -> Optional[np.ndarray]:
    """Hungarian assignment, re-solved after each over-capacity eviction.

    Returns None when an eviction dead-ends, which does not prove that no
    assignment exists.
    """
    n, m = cost.shape
    forbidden = np.zeros((n, m), dtype=bool)
    for _ in range(n * m + 1):
        # every account gets one column per asset so it can hold several
        expanded = np.repeat(np.where(forbidden, np.inf, cost), n, axis=1)
        try:
            rows, cols = linear_sum_assignment(expanded)
        except ValueError:
            return None
        chosen = np.empty(n, dtype=int)
        chosen[rows] = cols // n

        usage = np.bincount(chosen, weights=values, minlength=m)
        over = np.where(usage > capacity + CAPACITY_TOLERANCE * np.maximum(capacity, 1.0))[0]
        if over.size == 0:
            return chosen

        account = int(over[0])
        members = [i for i in range(n) if chosen[i] == account]
        victim = _least_regret(members, cost, forbidden, account)
        if victim is None:
            logger.debug("Account %s over capacity with no movable asset; solving exactly",
                         slots[account].account_id)
            return None
        logger.debug("Account %s over capacity; excluding %s", slots[account].account_id,
                     holdings[victim].symbol)
        forbidden[victim, account] = True
    return None


def _solve_exact(cost: np.ndarray, values: np.ndarray, capacity: np.ndarray) -> Optional[np.ndarray]:
    """Capacitated assignment as a binary program; None when nothing fits."""
    n, m = cost.shape
    # x[i * m + j] == 1 places asset i in account j
    one_account = np.kron(np.eye(n), np.ones(m))
    account_load = np.kron(values, np.eye(m))
    limit = capacity + CAPACITY_TOLERANCE * np.maximum(capacity, 1.0)
    result = milp(
        cost.ravel(),
        integrality=np.ones(n * m),
        bounds=Bounds(0, 1),
        constraints=[LinearConstraint(one_account, 1, 1),
                     LinearConstraint(account_load, -np.inf, limit)],
    )
    if not result.success:
        logger.debug("Exact asset location failed: %s", result.message)
        return None
    return result.x.reshape(n, m).argmax(axis=1)


def optimize_asset_location(assets: Sequence[Asset],
                            accounts: Sequence[Account],
                            overrides: Optional[Mapping[str, Mapping[str, float]]] = None
                            ) -> AssetLocationResult:
    """
    Place each asset in exactly one account minimising total tax drag

    Assets and accounts are processed in symbol / account id order, so ties
    resolve to the lowest symbol. Assets without value are not placed.

    Raises:
    InfeasibleConstraintError: "account_capacity" when no placement fits
        every account's balance
    """
    holdings = sorted((a for a in assets if a.value > 0), key=lambda a: a.symbol)
    slots = sorted(accounts, key=lambda a: a.account_id)
    baseline = float(sum((1.0 - location_score(a.asset_class, TAXABLE, overrides)) * a.value
                         for a in holdings))
    if not holdings or not slots:
        if holdings:
            logger.info("No accounts supplied; asset location skipped")
        return AssetLocationResult((), 0.0, 0.0, baseline, {})

    total_value = sum(a.value for a in holdings)
    total_capacity = sum(acc.balance for acc in slots)
    if total_value > total_capacity * (1 + CAPACITY_TOLERANCE) + CAPACITY_TOLERANCE:
        raise InfeasibleConstraintError(
            "account_capacity",
            f"assets worth {total_value:,.2f} exceed total account balances {total_capacity:,.2f}",
        )

    n, m = len(holdings), len(slots)
    scores = np.array([[location_score(a.asset_class, acc.account_type, overrides) for acc in slots]
                       for a in holdings])
    values = np.array([a.value for a in holdings])
    capacity = np.array([acc.balance for acc in slots])
    cost = (1.0 - scores) * values[:, None]
    chosen = _solve_greedy(holdings, slots, cost, values, capacity)
    if chosen is None:
        chosen = _solve_exact(cost, values, capacity)
    if chosen is None:
        raise InfeasibleConstraintError("account_capacity",
                                        "no assignment fits every account's balance")
    usage = np.bincount(chosen, weights=values, minlength=m)

    placements = tuple(
        Placement(symbol=a.symbol, account_id=slots[j].account_id, account_type=slots[j].account_type,
                  value=a.value, score=float(scores[i, j]), tax_drag=float(cost[i, j]))
        for i, (a, j) in enumerate(zip(holdings, chosen))
    )
    usage = {acc.account_id: float(u) for acc, u in zip(slots, usage)}
    weighted = float(sum(p.score * p.value for p in placements) / total_value)
    return AssetLocationResult(placements, weighted, float(sum(p.tax_drag for p in placements)),
                               baseline, usage)

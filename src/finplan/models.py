"""
Portfolio data model.

Immutable snapshots passed into the engine by the caller. The engine never
stores them between calls; lots and portfolios are replaced, not mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .config import LONG_TERM_HOLDING_DAYS
from .errors import ValidationError
from .validation import require_finite, require_non_negative

TAXABLE = "taxable"
TAX_DEFERRED = "tax_deferred"
TAX_EXEMPT = "tax_exempt"
ACCOUNT_TYPES = (TAXABLE, TAX_DEFERRED, TAX_EXEMPT)

_ACCOUNT_TYPE_ALIASES = {
    "taxable": TAXABLE,
    "brokerage": TAXABLE,
    "tax_deferred": TAX_DEFERRED,
    "taxdeferred": TAX_DEFERRED,
    "traditional": TAX_DEFERRED,
    "ira": TAX_DEFERRED,
    "401k": TAX_DEFERRED,
    "traditional_ira": TAX_DEFERRED,
    "traditional_401k": TAX_DEFERRED,
    "tax_exempt": TAX_EXEMPT,
    "taxexempt": TAX_EXEMPT,
    "roth": TAX_EXEMPT,
    "roth_ira": TAX_EXEMPT,
    "roth_401k": TAX_EXEMPT,
}


def normalize_account_type(value: str) -> str:
    key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return _ACCOUNT_TYPE_ALIASES[key]
    except KeyError:
        raise ValidationError(f"Unknown account type: {value!r}", field="account_type") from None


def parse_date(value, name: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as e:
        raise ValidationError(f"{name} must be an ISO date, got {value!r}", field=name) from e


def _infer_asset_class(data: Mapping[str, Any], metadata: Mapping[str, Any]) -> str:
    explicit = data.get("assetClass", data.get("asset_class"))
    if explicit:
        return str(explicit).lower()
    # dashboard payloads only carry a security type and sector
    sector = str(metadata.get("sector", "")).lower()
    kind = str(data.get("type", "")).lower()
    if kind == "cash" or "cash" in str(metadata.get("type", "")).lower():
        return "cash"
    if "fixed income" in sector or "bond" in sector:
        return "bonds"
    if "real estate" in sector or "reit" in sector:
        return "reits"
    return "stocks"


@dataclass(frozen=True)
class Asset:
    """A position or asset class held in the portfolio.

    Attributes:
        symbol: Unique key within a portfolio
        quantity: Units held
        value: Market value (quantity x price, maintained by the caller)
        cost_basis: Total cost basis
        expected_return: Annual expected return as decimal
        volatility: Annual standard deviation as decimal
        asset_class: "stocks", "bonds", "reits", "cash" or any other label
        sector: Sector label used by sector caps
        account_type: Account the position currently sits in, if known
        market_cap: Market capitalisation used for equilibrium weights
    """
    symbol: str
    quantity: float = 0.0
    value: float = 0.0
    cost_basis: float = 0.0
    expected_return: float = 0.0
    volatility: float = 0.0
    asset_class: str = "stocks"
    sector: Optional[str] = None
    account_type: Optional[str] = None
    market_cap: Optional[float] = None

    def __post_init__(self):
        if not self.symbol:
            raise ValidationError("Asset symbol cannot be empty", field="symbol")
        require_non_negative(self.value, f"value[{self.symbol}]")
        require_non_negative(self.cost_basis, f"cost_basis[{self.symbol}]")
        require_finite(self.expected_return, f"expected_return[{self.symbol}]")
        if require_finite(self.volatility, f"volatility[{self.symbol}]") < 0:
            raise ValidationError(
                f"Volatility cannot be negative: {self.volatility}", field=self.symbol
            )
        if self.market_cap is not None:
            require_non_negative(self.market_cap, f"market_cap[{self.symbol}]")
        if self.account_type is not None:
            object.__setattr__(self, "account_type", normalize_account_type(self.account_type))

    @property
    def unrealized_gain(self) -> float:
        """Positive for a gain, negative for a loss."""
        return self.value - self.cost_basis

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Asset":
        metadata = data.get("metadata") or {}
        return cls(
            symbol=data["symbol"],
            quantity=float(data.get("quantity", 0.0)),
            value=float(data.get("value", 0.0)),
            cost_basis=float(data.get("costBasis", data.get("cost_basis", 0.0))),
            expected_return=float(data.get("expectedReturn", data.get("expected_return", 0.0))),
            volatility=float(data.get("volatility", 0.0)),
            asset_class=_infer_asset_class(data, metadata),
            sector=data.get("sector", metadata.get("sector")),
            account_type=data.get("accountType", data.get("account_type")),
            market_cap=data.get("marketCap", data.get("market_cap", metadata.get("marketCap"))),
        )


@dataclass(frozen=True)
class Account:
    """An investment account used by asset location and withdrawal sequencing."""
    account_id: str
    account_type: str
    balance: float
    cost_basis: float = 0.0
    required_minimum_distribution: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "account_type", normalize_account_type(self.account_type))
        require_non_negative(self.balance, f"balance[{self.account_id}]")
        require_non_negative(self.cost_basis, f"cost_basis[{self.account_id}]")
        require_non_negative(self.required_minimum_distribution, f"rmd[{self.account_id}]")

    @property
    def gain_fraction(self) -> float:
        """Share of a taxable withdrawal that is realised gain."""
        if self.account_type != TAXABLE or self.balance <= 0:
            return 0.0
        return max(0.0, 1.0 - self.cost_basis / self.balance)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Account":
        return cls(
            account_id=str(data.get("accountId", data.get("account_id", data.get("id")))),
            account_type=data.get("accountType", data.get("account_type", data.get("type"))),
            balance=float(data.get("balance", 0.0)),
            cost_basis=float(data.get("costBasis", data.get("cost_basis", 0.0))),
            required_minimum_distribution=float(
                data.get("requiredMinimumDistribution", data.get("required_minimum_distribution", 0.0))
            ),
        )


@dataclass(frozen=True)
class Trade:
    """A past or planned buy/sell, used for wash-sale detection."""
    symbol: str
    trade_date: date
    side: str
    quantity: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "trade_date", parse_date(self.trade_date, "trade_date"))
        side = str(self.side).lower()
        if side not in ("buy", "sell"):
            raise ValidationError(f"Trade side must be 'buy' or 'sell', got {self.side!r}", field="side")
        object.__setattr__(self, "side", side)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Trade":
        return cls(
            symbol=data["symbol"],
            trade_date=data.get("tradeDate", data.get("trade_date", data.get("date"))),
            side=data["side"],
            quantity=float(data.get("quantity", 0.0)),
        )


@dataclass(frozen=True)
class TaxLot:
    """Unit tracked for holding period and wash-sale purposes.

    cost_basis is the total cost of the lot. Lots are never mutated; selling
    part of a lot produces new lots via split().
    """
    symbol: str
    purchase_date: date
    quantity: float
    cost_basis: float

    def __post_init__(self):
        object.__setattr__(self, "purchase_date", parse_date(self.purchase_date, "purchase_date"))
        if require_finite(self.quantity, f"quantity[{self.symbol}]") <= 0:
            raise ValidationError(f"Lot quantity must be positive: {self.quantity}", field=self.symbol)
        require_non_negative(self.cost_basis, f"cost_basis[{self.symbol}]")

    @property
    def cost_per_share(self) -> float:
        return self.cost_basis / self.quantity

    def holding_days(self, as_of: date) -> int:
        return (as_of - self.purchase_date).days

    def is_long_term(self, as_of: date) -> bool:
        return self.holding_days(as_of) > LONG_TERM_HOLDING_DAYS

    def unrealized_gain(self, price: float) -> float:
        return price * self.quantity - self.cost_basis

    def split(self, quantity: float) -> Tuple["TaxLot", "TaxLot"]:
        """Split into (taken, remainder) lots with cost basis pro rata."""
        if not 0 < quantity < self.quantity:
            raise ValidationError(
                f"Split quantity must be in (0, {self.quantity}), got {quantity}", field=self.symbol
            )
        taken_cost = self.cost_basis * quantity / self.quantity
        taken = replace(self, quantity=quantity, cost_basis=taken_cost)
        remainder = replace(self, quantity=self.quantity - quantity,
                            cost_basis=self.cost_basis - taken_cost)
        return taken, remainder

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TaxLot":
        quantity = float(data["quantity"])
        if "totalCost" in data or "total_cost" in data:
            cost = float(data.get("totalCost", data.get("total_cost")))
        else:
            # dashboard lots carry a per-share costBasis alongside quantity
            cost = float(data.get("costBasis", data.get("cost_basis", 0.0))) * quantity
        return cls(
            symbol=data["symbol"],
            purchase_date=data.get("purchaseDate", data.get("purchase_date")),
            quantity=quantity,
            cost_basis=cost,
        )


@dataclass(frozen=True)
class Portfolio:
    """Caller-owned snapshot of holdings, accounts, lots and trade history."""
    assets: Tuple[Asset, ...]
    accounts: Tuple[Account, ...] = ()
    tax_lots: Tuple[TaxLot, ...] = ()
    trades: Tuple[Trade, ...] = ()
    withdrawal_needs: float = 0.0
    _index: Dict[str, Asset] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "assets", tuple(self.assets))
        object.__setattr__(self, "accounts", tuple(self.accounts))
        object.__setattr__(self, "tax_lots", tuple(self.tax_lots))
        object.__setattr__(self, "trades", tuple(self.trades))
        require_non_negative(self.withdrawal_needs, "withdrawal_needs")

        index = {}
        for asset in self.assets:
            if asset.symbol in index:
                raise ValidationError(f"Duplicate asset symbol: {asset.symbol}", field=asset.symbol)
            index[asset.symbol] = asset
        object.__setattr__(self, "_index", index)

        account_ids = [account.account_id for account in self.accounts]
        duplicates = sorted({a for a in account_ids if account_ids.count(a) > 1})
        if duplicates:
            raise ValidationError(f"Duplicate account ids: {duplicates}", field=duplicates[0])

    @property
    def symbols(self) -> Tuple[str, ...]:
        return tuple(self._index)

    @property
    def total_value(self) -> float:
        return float(sum(asset.value for asset in self.assets))

    def get_asset(self, symbol: str) -> Optional[Asset]:
        return self._index.get(symbol)

    def current_allocation(self) -> Dict[str, float]:
        """Value weights by symbol; empty when the portfolio has no value."""
        total = self.total_value
        if total <= 0:
            return {}
        return {asset.symbol: asset.value / total for asset in self.assets}

    def lots_for(self, symbol: str) -> Tuple[TaxLot, ...]:
        return tuple(lot for lot in self.tax_lots if lot.symbol == symbol)

    def replace_lots(self, lots: Sequence[TaxLot]) -> "Portfolio":
        return replace(self, tax_lots=tuple(lots))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Portfolio":
        return cls(
            assets=tuple(Asset.from_dict(a) for a in data.get("assets", [])),
            accounts=tuple(Account.from_dict(a) for a in data.get("accounts", [])),
            tax_lots=tuple(TaxLot.from_dict(l) for l in data.get("taxLots", data.get("tax_lots", []))),
            trades=tuple(Trade.from_dict(t) for t in data.get("trades", [])),
            withdrawal_needs=float(data.get("withdrawalNeeds", data.get("withdrawal_needs", 0.0))),
        )

# Copyright 2025 Spencer Williams
#
# Use of this source code is governed by an MIT license:
# https://github.com/sw23/life-model/blob/main/LICENSE

"""
Return assumptions for simulated assets.

This module contains the ReturnAssumptions class which holds annual expected
return, volatility and correlation assumptions supplied by the market-data
collaborator. The asset list is dynamic and determined by the caller.
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Sequence

import numpy as np

from ..errors import ValidationError
from ..linalg import as_ordered_matrix, covariance_from_correlation, validate_correlation_matrix
from ..validation import require_finite


@dataclass(frozen=True)
class AssetClassAssumptions:
    """Return and volatility assumptions for a single asset.

    Attributes:
        name: Asset identifier (e.g., "stocks" or "SPY")
        expected_return: Annual expected return as decimal (e.g., 0.08 for 8%)
        volatility: Annual standard deviation as decimal (e.g., 0.18 for 18%)
    """
    name: str
    expected_return: float
    volatility: float

    def __post_init__(self):
        require_finite(self.expected_return, f"expected_return[{self.name}]")
        if self.expected_return <= -1.0:
            raise ValidationError(
                f"Expected return must exceed -100%: {self.expected_return}", field=self.name
            )
        if require_finite(self.volatility, f"volatility[{self.name}]") < 0:
            raise ValidationError(f"Volatility cannot be negative: {self.volatility}", field=self.name)


class ReturnAssumptions:
    """Annual return assumptions and correlations for a set of assets.

    Example:
        >>> assumptions = ReturnAssumptions.from_mappings(
        ...     {"stocks": 0.08, "bonds": 0.04},
        ...     {"stocks": 0.18, "bonds": 0.06},
        ...     {"stocks": {"stocks": 1.0, "bonds": -0.1},
        ...      "bonds": {"stocks": -0.1, "bonds": 1.0}},
        ... )
        >>> assumptions.asset_order
        ['stocks', 'bonds']
    """

    def __init__(self,
                 asset_classes: Dict[str, AssetClassAssumptions],
                 correlation_matrix,
                 asset_order: Sequence[str]):
        """Initialize return assumptions.

        Args:
            asset_classes: Dict mapping asset name to its assumptions
            correlation_matrix: NxN correlation matrix (array in asset_order,
                                DataFrame or nested mapping keyed by name)
            asset_order: Order of assets in vectors and matrices

        Raises:
            ValidationError: If matrix dimensions don't match or assets missing
        """
        self.asset_order = list(asset_order)
        missing = [name for name in self.asset_order if name not in asset_classes]
        if missing:
            raise ValidationError(f"Assets missing from assumptions: {missing}", field=missing[0])
        if len(set(self.asset_order)) != len(self.asset_order):
            raise ValidationError("asset_order contains duplicates", field="asset_order")

        self.asset_classes = dict(asset_classes)
        self.correlation_matrix = validate_correlation_matrix(
            as_ordered_matrix(correlation_matrix, self.asset_order, "correlation matrix")
        )
        self._covariance_matrix = covariance_from_correlation(
            self.get_volatilities_vector(), self.correlation_matrix
        )

    @classmethod
    def from_mappings(cls,
                      expected_returns: Mapping[str, float],
                      volatilities: Mapping[str, float],
                      correlation_matrix,
                      asset_order: Sequence[str] = None) -> "ReturnAssumptions":
        order = list(asset_order) if asset_order is not None else list(expected_returns)
        missing = [name for name in order if name not in volatilities]
        if missing:
            raise ValidationError(f"Volatility missing for: {missing}", field=missing[0])
        classes = {
            name: AssetClassAssumptions(name, float(expected_returns[name]), float(volatilities[name]))
            for name in order
        }
        return cls(classes, correlation_matrix, order)

    @property
    def covariance_matrix(self) -> np.ndarray:
        return self._covariance_matrix

    def get_returns_vector(self) -> np.ndarray:
        return np.array([self.asset_classes[name].expected_return for name in self.asset_order])

    def get_volatilities_vector(self) -> np.ndarray:
        return np.array([self.asset_classes[name].volatility for name in self.asset_order])

    def subset(self, names: List[str]) -> "ReturnAssumptions":
        """Assumptions restricted to `names`, preserving their order."""
        missing = [name for name in names if name not in self.asset_classes]
        if missing:
            raise ValidationError(f"No return assumptions for: {missing}", field=missing[0])
        idx = [self.asset_order.index(name) for name in names]
        corr = self.correlation_matrix[np.ix_(idx, idx)]
        return ReturnAssumptions({n: self.asset_classes[n] for n in names}, corr, names)

    def to_dict(self) -> dict:
        return {
            "assets": self.asset_order,
            "expectedReturns": {n: self.asset_classes[n].expected_return for n in self.asset_order},
            "volatility": {n: self.asset_classes[n].volatility for n in self.asset_order},
            "correlationMatrix": self.correlation_matrix.tolist(),
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "ReturnAssumptions":
        """Parse the wire form produced by to_dict.

        Missing correlations are treated as uncorrelated assets.
        """
        expected = data.get("expectedReturns", data.get("expected_returns"))
        volatility = data.get("volatility", data.get("volatilities"))
        if not expected or volatility is None:
            raise ValidationError("Return assumptions need expectedReturns and volatility",
                                  field="returnAssumptions")
        order = list(data.get("assets") or expected)
        correlation = data.get("correlationMatrix", data.get("correlation_matrix"))
        if correlation is None:
            correlation = np.eye(len(order))
        return cls.from_mappings(expected, volatility, correlation, order)

    @classmethod
    def create_default(cls) -> "ReturnAssumptions":
        """Default assumptions for the dashboard's broad asset classes."""
        asset_classes = {
            "stocks": AssetClassAssumptions("stocks", 0.08, 0.18),
            "international": AssetClassAssumptions("international", 0.075, 0.20),
            "bonds": AssetClassAssumptions("bonds", 0.04, 0.06),
            "reits": AssetClassAssumptions("reits", 0.07, 0.20),
            "cash": AssetClassAssumptions("cash", 0.02, 0.01),
        }
        order = list(asset_classes.keys())

        # Order: stocks, international, bonds, reits, cash
        corr = np.array([
            [1.00, 0.75, -0.10, 0.60, 0.00],  # Stocks
            [0.75, 1.00, 0.00, 0.55, 0.00],  # International
            [-0.10, 0.00, 1.00, 0.20, 0.30],  # Bonds
            [0.60, 0.55, 0.20, 1.00, 0.05],  # REITs
            [0.00, 0.00, 0.30, 0.05, 1.00],  # Cash
        ])
        return cls(asset_classes, corr, order)

"""Boundary validation helpers shared by the configuration and data objects."""

import math
from typing import Iterable, Mapping, Optional

import numpy as np

from .config import WEIGHT_SUM_TOLERANCE
from .errors import ValidationError


def require_finite(value, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be a number, got {value!r}", field=name) from e
    if not math.isfinite(number):
        raise ValidationError(f"{name} must be finite, got {number}", field=name)
    return number


def require_non_negative(value, name: str) -> float:
    number = require_finite(value, name)
    if number < 0:
        raise ValidationError(f"{name} cannot be negative: {number}", field=name)
    return number


def require_positive(value, name: str) -> float:
    number = require_finite(value, name)
    if number <= 0:
        raise ValidationError(f"{name} must be positive: {number}", field=name)
    return number


def require_probability(value, name: str, open_interval: bool = False) -> float:
    """Check that value lies in [0, 1] (or (0, 1) when open_interval)."""
    number = require_finite(value, name)
    if open_interval:
        if not 0.0 < number < 1.0:
            raise ValidationError(f"{name} must be in (0, 1), got {number}", field=name)
    elif not 0.0 <= number <= 1.0:
        raise ValidationError(f"{name} must be in [0, 1], got {number}", field=name)
    return number


def require_positive_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise ValidationError(f"{name} must be an integer, got {value!r}", field=name)
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}", field=name)
    return int(value)


def require_finite_array(values, name: str) -> np.ndarray:
    try:
        array = np.asarray(values, dtype=float)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be numeric", field=name) from e
    if not np.all(np.isfinite(array)):
        raise ValidationError(f"{name} contains NaN or infinite values", field=name)
    return array


def validate_allocation(allocation: Mapping[str, float],
                        name: str = "allocation",
                        tolerance: float = WEIGHT_SUM_TOLERANCE,
                        symbols: Optional[Iterable[str]] = None) -> dict:
    """Validate a symbol -> weight mapping: weights in [0, 1] summing to 1."""
    if not allocation:
        raise ValidationError(f"{name} cannot be empty", field=name)

    weights = {}
    for symbol, weight in allocation.items():
        weights[symbol] = require_probability(weight, f"{name}[{symbol}]")

    total = sum(weights.values())
    if abs(total - 1.0) > tolerance:
        raise ValidationError(f"{name} must sum to 1.0, got {total:.6f}", field=name)

    if symbols is not None:
        known = set(symbols)
        missing = [symbol for symbol in weights if symbol not in known]
        if missing:
            raise ValidationError(
                f"{name} references unknown symbols: {missing}", field=missing[0]
            )
    return weights

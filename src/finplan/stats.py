"""
Statistics kernel.

Sample statistics shared by the simulator, the optimizer diagnostics and the
result summaries. All functions take a 1-D sequence of numbers and reject
empty or non-finite input instead of returning NaN.
"""

import math
from typing import Dict, Sequence, Tuple

import numpy as np
from scipy import stats as sp_stats

from .config import RISK_FREE_RATE
from .errors import InsufficientDataError
from .validation import require_finite_array, require_probability


def _samples(values, name: str = "values") -> np.ndarray:
    array = require_finite_array(values, name).ravel()
    if array.size == 0:
        raise InsufficientDataError(f"{name} requires at least one sample", field=name)
    return array


def mean(values: Sequence[float]) -> float:
    return float(np.mean(_samples(values)))


def std(values: Sequence[float], ddof: int = 0) -> float:
    """Population (ddof=0) or sample (ddof=1) standard deviation.

    A single observation has zero dispersion for either convention.
    """
    array = _samples(values)
    if array.size <= ddof or array.size == 1:
        return 0.0
    return float(np.std(array, ddof=ddof))


def percentile(values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile for p in [0, 1].

    The result is always one of the samples: the ceil(p * N)-th smallest
    (the smallest sample for p = 0).
    """
    p = require_probability(p, "p")
    array = np.sort(_samples(values))
    rank = max(int(math.ceil(p * array.size)), 1)
    return float(array[rank - 1])


def median(values: Sequence[float]) -> float:
    return percentile(values, 0.5)


def confidence_band(values: Sequence[float], level: float) -> Tuple[float, float]:
    """Central band holding `level` of the outcomes."""
    level = require_probability(level, "level", open_interval=True)
    array = np.sort(_samples(values))
    lower = percentile(array, (1.0 - level) / 2.0)
    upper = percentile(array, (1.0 + level) / 2.0)
    return lower, upper


def value_at_risk(values: Sequence[float], alpha: float = 0.05) -> float:
    """VaR of an outcome distribution: the alpha-quantile of outcome values."""
    alpha = require_probability(alpha, "alpha", open_interval=True)
    return percentile(values, alpha)


def conditional_value_at_risk(values: Sequence[float], alpha: float = 0.05) -> float:
    """Expected shortfall: mean of all outcomes at or below the VaR threshold."""
    array = _samples(values)
    threshold = value_at_risk(array, alpha)
    return float(np.mean(array[array <= threshold]))


def max_drawdown(path: Sequence[float]) -> float:
    """Largest peak-to-trough decline as a fraction of the peak, in [0, 1].

    Single pass tracking the running peak. Non-positive peaks are skipped
    since a relative decline from them is undefined.
    """
    array = _samples(path, "path")
    peak = array[0]
    worst = 0.0
    for value in array:
        if value > peak:
            peak = value
        if peak > 0:
            worst = max(worst, (peak - value) / peak)
    return float(min(worst, 1.0))


def max_drawdowns(paths: np.ndarray) -> np.ndarray:
    """Vectorised max drawdown for each row of a (trials, points) array."""
    paths = np.asarray(paths, dtype=float)
    peaks = np.maximum.accumulate(paths, axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdowns = np.where(peaks > 0, (peaks - paths) / peaks, 0.0)
    return np.clip(drawdowns.max(axis=1), 0.0, 1.0)


def sharpe_ratio(returns: Sequence[float], risk_free_rate: float = RISK_FREE_RATE) -> float:
    array = _samples(returns, "returns")
    volatility = std(array)
    if volatility == 0:
        return 0.0
    return float((np.mean(array) - risk_free_rate) / volatility)


def sortino_ratio(returns: Sequence[float], risk_free_rate: float = RISK_FREE_RATE) -> float:
    """Excess return over downside deviation (returns below the risk-free rate)."""
    array = _samples(returns, "returns")
    downside = np.minimum(array - risk_free_rate, 0.0)
    downside_deviation = float(np.sqrt(np.mean(downside ** 2)))
    if downside_deviation == 0:
        return 0.0
    return float((np.mean(array) - risk_free_rate) / downside_deviation)


def calmar_ratio(annual_return: float, drawdown: float) -> float:
    if drawdown <= 0:
        return 0.0
    return float(annual_return / drawdown)


def distribution_metrics(values: Sequence[float]) -> Dict[str, float]:
    """Shape of an outcome distribution: skewness, excess kurtosis, Jarque-Bera."""
    array = _samples(values)
    if array.size < 3 or np.ptp(array) == 0:
        return {"skewness": 0.0, "kurtosis": 0.0, "jarque_bera": 0.0, "jarque_bera_pvalue": 1.0}
    jb = sp_stats.jarque_bera(array)
    return {
        "skewness": float(sp_stats.skew(array)),
        "kurtosis": float(sp_stats.kurtosis(array)),
        "jarque_bera": float(jb[0]),
        "jarque_bera_pvalue": float(jb[1]),
    }


def summarize(values: Sequence[float], confidence_levels: Sequence[float] = (),
              alpha: float = 0.05) -> Dict[str, object]:
    """Summary used for each Monte Carlo checkpoint."""
    array = _samples(values)
    return {
        "mean": mean(array),
        "median": median(array),
        "std": std(array),
        "min": float(np.min(array)),
        "max": float(np.max(array)),
        "confidence_intervals": {
            level: confidence_band(array, level) for level in confidence_levels
        },
        "var": value_at_risk(array, alpha),
        "cvar": conditional_value_at_risk(array, alpha),
    }

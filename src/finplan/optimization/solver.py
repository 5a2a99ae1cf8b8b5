"""
Constrained mean-variance solver.

Feasibility is established first with linear programs so an impossible
constraint set is reported by name. The allocation itself is solved with
multi-start SLSQP using analytic gradients; the best converged attempt wins.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy.optimize import linprog, minimize

from .. import config as defaults
from ..errors import InfeasibleConstraintError, SolverConvergenceError
from .config import MAX_SHARPE, MAX_UTILITY, MIN_VARIANCE, OptimizationConfig

logger = logging.getLogger(__name__)

FEASIBILITY_TOLERANCE = 1e-8
# SLSQP exit mode 8: positive directional derivative in line search
_SLSQP_LINESEARCH_STALL = 8


@dataclass(frozen=True)
class PortfolioProblem:
    """A fully specified allocation problem in symbol order.

    Attributes:
        scenarios: Annual return scenarios (K x n) for the CVaR constraint
        sectors: Sector name -> indices of its assets
    """
    symbols: tuple
    expected_returns: np.ndarray
    covariance: np.ndarray
    bounds: List[Tuple[float, float]]
    objective: str = MAX_SHARPE
    risk_free_rate: float = defaults.RISK_FREE_RATE
    risk_aversion: float = defaults.RISK_AVERSION
    sectors: Dict[str, List[int]] = field(default_factory=dict)
    sector_caps: Dict[str, float] = field(default_factory=dict)
    sector_minimums: Dict[str, float] = field(default_factory=dict)
    target_return: Optional[float] = None
    max_volatility: Optional[float] = None
    max_cvar: Optional[float] = None
    scenarios: Optional[np.ndarray] = None
    cvar_confidence: float = defaults.CVAR_CONFIDENCE
    market_weights: Optional[np.ndarray] = None

    @property
    def n(self) -> int:
        return len(self.symbols)

    @property
    def lower(self) -> np.ndarray:
        return np.array([lo for lo, _ in self.bounds], dtype=float)

    @property
    def upper(self) -> np.ndarray:
        return np.array([hi for _, hi in self.bounds], dtype=float)

    @property
    def uses_cvar(self) -> bool:
        return self.max_cvar is not None and self.scenarios is not None

    @property
    def effective_objective(self) -> str:
        """A target return always means minimum variance at that return."""
        return MIN_VARIANCE if self.target_return is not None else self.objective

    def with_estimates(self, expected_returns: np.ndarray, covariance: np.ndarray) -> "PortfolioProblem":
        return replace(self, expected_returns=expected_returns, covariance=covariance)

    def with_target(self, target_return: Optional[float]) -> "PortfolioProblem":
        return replace(self, target_return=target_return)


# ---- portfolio measures ------------------------------------------------

def portfolio_return(weights: np.ndarray, expected_returns: np.ndarray) -> float:
    return float(weights @ expected_returns)


def portfolio_volatility(weights: np.ndarray, covariance: np.ndarray) -> float:
    """Portfolio volatility; tiny negative quadratic forms are rounding noise."""
    quad_form = float(weights @ covariance @ weights)
    return math.sqrt(max(quad_form, 0.0))


def scenario_cvar(scenarios: np.ndarray, weights: np.ndarray, confidence: float) -> float:
    """Rockafellar-Uryasev CVaR of portfolio loss over equally likely scenarios."""
    losses = np.sort(-(scenarios @ weights))
    k = len(losses)
    var = losses[max(int(math.ceil(confidence * k)) - 1, 0)]
    return float(var + np.mean(np.maximum(losses - var, 0.0)) / (1.0 - confidence))


# ---- linear constraints and feasibility -----------------------------------

def _linear_constraints(problem: PortfolioProblem, include_target: bool = True):
    """(A_ub, b_ub, A_eq, b_eq) over the weights."""
    n = problem.n
    a_ub, b_ub = [], []
    for sector, indices in problem.sectors.items():
        row = np.zeros(n)
        row[indices] = 1.0
        if sector in problem.sector_caps:
            a_ub.append(row)
            b_ub.append(problem.sector_caps[sector])
        if sector in problem.sector_minimums:
            a_ub.append(-row)
            b_ub.append(-problem.sector_minimums[sector])

    a_eq, b_eq = [np.ones(n)], [1.0]
    if include_target and problem.target_return is not None:
        a_eq.append(np.asarray(problem.expected_returns, dtype=float))
        b_eq.append(problem.target_return)

    a_ub = np.array(a_ub) if a_ub else None
    b_ub = np.array(b_ub) if b_ub else None
    return a_ub, b_ub, np.array(a_eq), np.array(b_eq)


def _linprog(problem: PortfolioProblem, cost: np.ndarray, include_target: bool = True):
    a_ub, b_ub, a_eq, b_eq = _linear_constraints(problem, include_target)
    return linprog(cost, A_ub=a_ub, b_ub=b_ub, A_eq=a_eq, b_eq=b_eq,
                   bounds=problem.bounds, method="highs")


def achievable_return_range(problem: PortfolioProblem) -> Tuple[float, float]:
    """Lowest and highest expected return reachable under the linear constraints."""
    mu = np.asarray(problem.expected_returns, dtype=float)
    low = _linprog(problem, mu, include_target=False)
    high = _linprog(problem, -mu, include_target=False)
    if low.status != 0 or high.status != 0:
        raise InfeasibleConstraintError("sector_caps", "no allocation satisfies the linear constraints")
    return float(low.fun), float(-high.fun)


def minimum_cvar(problem: PortfolioProblem) -> float:
    """Smallest achievable scenario CVaR (Rockafellar-Uryasev linear program)."""
    scenarios = problem.scenarios
    k, n = scenarios.shape
    beta = problem.cvar_confidence
    # variables: [w (n), zeta (1), u (k)]
    cost = np.concatenate([np.zeros(n), [1.0], np.full(k, 1.0 / ((1.0 - beta) * k))])

    a_ub_w, b_ub, a_eq_w, b_eq = _linear_constraints(problem)
    tail = np.hstack([-scenarios, -np.ones((k, 1)), -np.eye(k)])
    if a_ub_w is not None:
        a_ub = np.vstack([np.hstack([a_ub_w, np.zeros((a_ub_w.shape[0], k + 1))]), tail])
        b_ub = np.concatenate([b_ub, np.zeros(k)])
    else:
        a_ub, b_ub = tail, np.zeros(k)
    a_eq = np.hstack([a_eq_w, np.zeros((a_eq_w.shape[0], k + 1))])
    bounds = list(problem.bounds) + [(None, None)] + [(0.0, None)] * k

    result = linprog(cost, A_ub=a_ub, b_ub=b_ub, A_eq=a_eq, b_eq=b_eq, bounds=bounds, method="highs")
    if result.status != 0:
        raise InfeasibleConstraintError("max_cvar", f"CVaR program failed: {result.message}")
    return float(result.fun)


def check_feasibility(problem: PortfolioProblem, config: Optional[OptimizationConfig] = None) -> None:
    """Raise InfeasibleConstraintError naming the first constraint that cannot hold."""
    tol = FEASIBILITY_TOLERANCE
    lower, upper = problem.lower, problem.upper

    for symbol, lo, hi in zip(problem.symbols, lower, upper):
        if lo > hi + tol:
            raise InfeasibleConstraintError(f"bounds[{symbol}]", f"min weight {lo:.4f} exceeds max {hi:.4f}")
    if lower.sum() > 1.0 + tol:
        raise InfeasibleConstraintError("min_weights", f"minimum weights sum to {lower.sum():.4f} > 1")
    if upper.sum() < 1.0 - tol:
        raise InfeasibleConstraintError("max_weights", f"maximum weights sum to {upper.sum():.4f} < 1")

    capacity = upper[[i for i in range(problem.n)
                      if not any(i in idx for idx in problem.sectors.values())]].sum()
    for sector, indices in problem.sectors.items():
        cap = problem.sector_caps.get(sector, 1.0)
        floor = problem.sector_minimums.get(sector, 0.0)
        if floor > cap + tol:
            raise InfeasibleConstraintError(f"sector_cap[{sector}]",
                                            f"sector minimum {floor:.4f} exceeds cap {cap:.4f}")
        if lower[indices].sum() > cap + tol:
            raise InfeasibleConstraintError(f"sector_cap[{sector}]",
                                            f"asset minimums sum to {lower[indices].sum():.4f} "
                                            f"above cap {cap:.4f}")
        if upper[indices].sum() < floor - tol:
            raise InfeasibleConstraintError(f"sector_min[{sector}]",
                                            f"asset maximums sum to {upper[indices].sum():.4f} "
                                            f"below minimum {floor:.4f}")
        capacity += min(cap, upper[indices].sum())
    for sector, floor in problem.sector_minimums.items():
        if sector not in problem.sectors and floor > tol:
            raise InfeasibleConstraintError(f"sector_min[{sector}]", "no assets in sector")
    if capacity < 1.0 - tol:
        raise InfeasibleConstraintError("sector_caps", f"caps allow only {capacity:.4f} total weight")

    low, high = achievable_return_range(problem)
    if problem.target_return is not None:
        if not low - tol <= problem.target_return <= high + tol:
            raise InfeasibleConstraintError(
                "target_return",
                f"target {problem.target_return:.4%} outside achievable range [{low:.4%}, {high:.4%}]",
            )

    if problem.uses_cvar:
        best = minimum_cvar(problem)
        if best > problem.max_cvar + tol:
            raise InfeasibleConstraintError(
                "max_cvar", f"lowest achievable CVaR {best:.4%} exceeds limit {problem.max_cvar:.4%}"
            )

    if problem.max_volatility is not None:
        unconstrained = replace(problem, objective=MIN_VARIANCE, max_volatility=None)
        weights, _ = solve(unconstrained, config or OptimizationConfig(), np.random.default_rng(0))
        lowest = portfolio_volatility(weights, problem.covariance)
        if lowest > problem.max_volatility + 1e-6:
            raise InfeasibleConstraintError(
                "max_volatility",
                f"lowest achievable volatility {lowest:.4%} exceeds limit {problem.max_volatility:.4%}",
            )


# ---- weight repair -----------------------------------------------------

def repair_weights(weights: np.ndarray,
                   bounds: List[Tuple[float, float]],
                   tolerance: float = defaults.WEIGHT_SUM_TOLERANCE) -> np.ndarray:
    """Clip into bounds and spread any residual over assets with room, so the
    weights sum to 1 with every bound holding."""
    lower = np.array([lo for lo, _ in bounds], dtype=float)
    upper = np.array([hi for _, hi in bounds], dtype=float)
    repaired = np.clip(np.asarray(weights, dtype=float), lower, upper)

    for _ in range(len(repaired) + 1):
        gap = 1.0 - repaired.sum()
        if abs(gap) <= 1e-12:
            break
        room = upper - repaired if gap > 0 else repaired - lower
        room = np.maximum(room, 0.0)
        total_room = room.sum()
        if total_room <= 0:
            break
        step = room * min(abs(gap) / total_room, 1.0)
        repaired = repaired + np.sign(gap) * step
        repaired = np.clip(repaired, lower, upper)

    total = repaired.sum()
    if abs(total - 1.0) > tolerance:
        name = "min_weights" if total > 1.0 else "max_weights"
        raise InfeasibleConstraintError(name, f"weights cannot sum to 1 within bounds (sum {total:.6f})")
    return repaired


# ---- SLSQP -------------------------------------------------------------

def _objective(problem: PortfolioProblem, n_vars: int):
    """Objective and gradient over the full variable vector."""
    mu = np.asarray(problem.expected_returns, dtype=float)
    cov = problem.covariance
    n = problem.n
    kind = problem.effective_objective

    def pad(grad_w):
        grad = np.zeros(n_vars)
        grad[:n] = grad_w
        return grad

    if kind == MIN_VARIANCE:
        def fun(x):
            w = x[:n]
            return float(w @ cov @ w)

        def jac(x):
            return pad(2.0 * cov @ x[:n])

    elif kind == MAX_UTILITY:
        delta = problem.risk_aversion

        def fun(x):
            w = x[:n]
            return float(-(w @ mu - delta / 2.0 * (w @ cov @ w)))

        def jac(x):
            w = x[:n]
            return pad(-(mu - delta * cov @ w))

    else:
        rf = problem.risk_free_rate

        def fun(x):
            w = x[:n]
            vol = math.sqrt(max(float(w @ cov @ w), 1e-16))
            return -(float(w @ mu) - rf) / vol

        def jac(x):
            w = x[:n]
            variance = max(float(w @ cov @ w), 1e-16)
            vol = math.sqrt(variance)
            excess = float(w @ mu) - rf
            # d/dw (excess / vol) = mu / vol - excess * Sigma w / vol^3
            return pad(-(mu / vol - excess * (cov @ w) / (vol * variance)))

    return fun, jac


def _constraints(problem: PortfolioProblem, n_vars: int) -> List[dict]:
    n = problem.n
    mu = np.asarray(problem.expected_returns, dtype=float)
    cov = problem.covariance

    def pad_rows(rows):
        rows = np.atleast_2d(rows)
        out = np.zeros((rows.shape[0], n_vars))
        out[:, :n] = rows
        return out

    ones = np.ones(n)
    constraints = [{"type": "eq",
                    "fun": lambda x: np.array([x[:n].sum() - 1.0]),
                    "jac": lambda x: pad_rows(ones)}]

    if problem.target_return is not None:
        target = problem.target_return
        constraints.append({"type": "eq",
                            "fun": lambda x: np.array([x[:n] @ mu - target]),
                            "jac": lambda x: pad_rows(mu)})

    a_ub, b_ub, _, _ = _linear_constraints(problem, include_target=False)
    if a_ub is not None:
        constraints.append({"type": "ineq",
                            "fun": lambda x: b_ub - a_ub @ x[:n],
                            "jac": lambda x: pad_rows(-a_ub)})

    if problem.max_volatility is not None:
        limit = problem.max_volatility ** 2
        constraints.append({"type": "ineq",
                            "fun": lambda x: np.array([limit - x[:n] @ cov @ x[:n]]),
                            "jac": lambda x: pad_rows(-2.0 * cov @ x[:n])})

    if problem.uses_cvar:
        scenarios = problem.scenarios
        k = scenarios.shape[0]
        scale = 1.0 / ((1.0 - problem.cvar_confidence) * k)
        # u_k >= -r_k'w - zeta
        tail_jac = np.hstack([scenarios, np.ones((k, 1)), np.eye(k)])
        budget_jac = np.concatenate([np.zeros(n), [-1.0], np.full(k, -scale)])
        max_cvar = problem.max_cvar
        constraints.append({"type": "ineq",
                            "fun": lambda x: x[n + 1:] + scenarios @ x[:n] + x[n],
                            "jac": lambda x: tail_jac})
        constraints.append({"type": "ineq",
                            "fun": lambda x: np.array([max_cvar - x[n] - scale * x[n + 1:].sum()]),
                            "jac": lambda x: budget_jac[np.newaxis, :]})
    return constraints


def _starting_points(problem: PortfolioProblem, attempts: int, rng: np.random.Generator) -> List[np.ndarray]:
    n = problem.n
    candidates = [np.ones(n) / n, (problem.lower + problem.upper) / 2.0]
    if problem.market_weights is not None:
        candidates.append(np.asarray(problem.market_weights, dtype=float))
    while len(candidates) < attempts:
        candidates.append(rng.dirichlet(np.ones(n)))

    starts = []
    for candidate in candidates[:attempts]:
        try:
            starts.append(repair_weights(candidate / max(candidate.sum(), 1e-12), problem.bounds))
        except InfeasibleConstraintError:
            continue
    return starts


def _is_feasible(problem: PortfolioProblem, weights: np.ndarray, tol: float = 1e-6) -> bool:
    if abs(weights.sum() - 1.0) > tol:
        return False
    if np.any(weights < problem.lower - tol) or np.any(weights > problem.upper + tol):
        return False
    a_ub, b_ub, _, _ = _linear_constraints(problem, include_target=False)
    if a_ub is not None and np.any(a_ub @ weights > b_ub + tol):
        return False
    if problem.target_return is not None and \
            abs(weights @ problem.expected_returns - problem.target_return) > tol:
        return False
    if problem.max_volatility is not None and \
            portfolio_volatility(weights, problem.covariance) > problem.max_volatility + tol:
        return False
    if problem.uses_cvar and \
            scenario_cvar(problem.scenarios, weights, problem.cvar_confidence) > problem.max_cvar + tol:
        return False
    return True


def solve(problem: PortfolioProblem,
          config: OptimizationConfig,
          rng: np.random.Generator) -> Tuple[np.ndarray, float]:
    """
    Solve the allocation problem with multi-start SLSQP

    Parameters:
    problem (PortfolioProblem): Feasibility-checked problem
    config (OptimizationConfig): Attempts, iteration limit and tolerance
    rng (np.random.Generator): Source for random starting points

    Returns:
    tuple: (weights, objective value) of the best converged attempt
    """
    n = problem.n
    n_vars = n + (1 + problem.scenarios.shape[0] if problem.uses_cvar else 0)
    fun, jac = _objective(problem, n_vars)
    constraints = _constraints(problem, n_vars)
    bounds = list(problem.bounds)
    if problem.uses_cvar:
        bounds += [(None, None)] + [(0.0, None)] * problem.scenarios.shape[0]

    best_weights, best_objective = None, float("inf")
    starts = _starting_points(problem, config.num_attempts, rng)
    for attempt, w0 in enumerate(starts, start=1):
        x0 = w0
        if problem.uses_cvar:
            losses = -(problem.scenarios @ w0)
            zeta = float(np.quantile(losses, problem.cvar_confidence))
            x0 = np.concatenate([w0, [zeta], np.maximum(losses - zeta, 0.0)])

        result = minimize(fun, x0, jac=jac, method="SLSQP", bounds=bounds,
                          constraints=constraints,
                          options={"maxiter": config.max_iterations, "ftol": config.tolerance})

        weights = result.x[:n]
        accepted = result.success or (result.status == _SLSQP_LINESEARCH_STALL
                                      and _is_feasible(problem, weights))
        if not accepted:
            logger.debug("Attempt %d failed: %s", attempt, result.message)
            continue
        if result.fun < best_objective:
            logger.debug("Attempt %d: better solution found with objective %.6e", attempt, result.fun)
            best_weights, best_objective = weights, float(result.fun)
        else:
            logger.debug("Attempt %d: converged but not better (obj: %.6e vs %.6e)",
                         attempt, result.fun, best_objective)

    if best_weights is None:
        logger.warning("All %d optimization attempts failed", len(starts))
        raise SolverConvergenceError("All portfolio optimization attempts failed", attempts=len(starts))

    return repair_weights(best_weights, problem.bounds), best_objective

"""
Michaud resampled optimization.

Each draw re-estimates the mean and covariance from a synthetic sample
(bootstrap rows of the return history when one is supplied, otherwise
multivariate normal observations), solves the same constrained problem and
the converged allocations are averaged.
"""

import logging
from collections import Counter
from typing import List, Optional, Tuple

import numpy as np

from ..concurrency import CancellationToken, run_batches, seed_sequence
from ..errors import Cancelled, InfeasibleConstraintError, SolverConvergenceError
from ..linalg import nearest_psd
from .config import OptimizationConfig
from .estimation import MarketInputs
from .solver import PortfolioProblem, check_feasibility, repair_weights, solve

logger = logging.getLogger(__name__)

DRAWS_PER_BATCH = 25


def _resampled_estimates(problem: PortfolioProblem,
                         inputs: MarketInputs,
                         observations: int,
                         rng: np.random.Generator) -> Tuple[np.ndarray, np.ndarray]:
    periods = inputs.periods_per_year
    period_mean = np.asarray(problem.expected_returns, dtype=float) / periods
    history = inputs.historical_returns
    if history is not None:
        rows = rng.integers(0, len(history), size=observations)
        # bootstrap the history's shape around the problem's (possibly blended) means
        sample = history[rows] - history.mean(axis=0) + period_mean
    else:
        sample = rng.multivariate_normal(period_mean, problem.covariance / periods, size=observations)

    expected = sample.mean(axis=0) * periods
    covariance = np.atleast_2d(np.cov(sample, rowvar=False, ddof=1)) * periods
    try:
        np.linalg.cholesky(covariance)
    except np.linalg.LinAlgError:
        covariance = nearest_psd(covariance)
    return expected, covariance


def resampled_weights(problem: PortfolioProblem,
                      inputs: MarketInputs,
                      config: OptimizationConfig,
                      cancel_token: Optional[CancellationToken] = None) -> Tuple[np.ndarray, int]:
    """
    Average allocation over config.num_resamples re-estimated problems

    Returns:
    tuple: (weights, number of draws used)

    Raises:
    InfeasibleConstraintError: If every draw was infeasible, naming the
        constraint that failed most often
    """
    children = seed_sequence(config.random_seed).spawn(config.num_resamples)
    batches = [children[i:i + DRAWS_PER_BATCH] for i in range(0, len(children), DRAWS_PER_BATCH)]

    def run_batch(batch) -> List[object]:
        outcomes = []
        for child in batch:
            rng = np.random.default_rng(child)
            expected, covariance = _resampled_estimates(
                problem, inputs, config.resample_observations, rng
            )
            candidate = problem.with_estimates(expected, covariance)
            try:
                check_feasibility(candidate, config)
                weights, _ = solve(candidate, config, rng)
            except InfeasibleConstraintError as e:
                outcomes.append(e.constraint)
                continue
            except SolverConvergenceError:
                outcomes.append("solver_convergence")
                continue
            outcomes.append(weights)
        return outcomes

    try:
        results = run_batches(run_batch, batches, config.max_workers, cancel_token)
    except Cancelled:
        logger.info("Resampled optimization cancelled")
        raise

    outcomes = [outcome for batch in results for outcome in batch]
    accepted = [o for o in outcomes if isinstance(o, np.ndarray)]
    skipped = Counter(o for o in outcomes if isinstance(o, str))
    if skipped:
        logger.warning("Skipped %d of %d resampling draws as infeasible: %s",
                       sum(skipped.values()), len(outcomes), dict(skipped))
    if not accepted:
        constraint, _ = skipped.most_common(1)[0]
        if constraint == "solver_convergence":
            raise SolverConvergenceError(
                f"No resampling draw converged ({len(outcomes)} draws)", attempts=len(outcomes)
            )
        raise InfeasibleConstraintError(constraint, f"all {len(outcomes)} resampling draws were infeasible")

    average = np.mean(accepted, axis=0)
    return repair_weights(average, problem.bounds), len(accepted)

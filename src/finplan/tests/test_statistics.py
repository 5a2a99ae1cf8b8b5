"""
Tests for the statistics kernel and matrix utilities.
"""

import unittest
import numpy as np
import pandas as pd

from .. import stats
from ..concurrency import CancellationToken, run_batches
from ..errors import Cancelled, InsufficientDataError, ValidationError
from ..linalg import (as_ordered_matrix, correlation_from_covariance, covariance_from_correlation,
                      ensure_positive_definite, nearest_correlation, nearest_psd, safe_cholesky)


class TestSampleStatistics(unittest.TestCase):
    """Tests for mean, std and percentiles."""

    def test_mean_and_std(self):
        values = [1.0, 2.0, 3.0, 4.0]
        self.assertEqual(stats.mean(values), 2.5)
        self.assertAlmostEqual(stats.std(values), np.std(values))
        self.assertAlmostEqual(stats.std(values, ddof=1), np.std(values, ddof=1))

    def test_single_sample_std_is_zero(self):
        self.assertEqual(stats.std([5.0]), 0.0)
        self.assertEqual(stats.std([5.0], ddof=1), 0.0)

    def test_empty_samples_raise(self):
        with self.assertRaises(InsufficientDataError):
            stats.mean([])
        with self.assertRaises(InsufficientDataError):
            stats.percentile([], 0.5)

    def test_nan_samples_raise(self):
        with self.assertRaises(ValidationError):
            stats.mean([1.0, float("nan")])

    def test_percentile_nearest_rank(self):
        values = [15, 20, 35, 40, 50]
        self.assertEqual(stats.percentile(values, 0.05), 15)
        self.assertEqual(stats.percentile(values, 0.30), 20)
        self.assertEqual(stats.percentile(values, 0.40), 20)
        self.assertEqual(stats.percentile(values, 0.50), 35)
        self.assertEqual(stats.percentile(values, 1.0), 50)
        self.assertEqual(stats.percentile(values, 0.0), 15)

    def test_percentile_out_of_range(self):
        with self.assertRaises(ValidationError):
            stats.percentile([1, 2, 3], 1.5)

    def test_confidence_band(self):
        values = list(range(1, 101))
        lower, upper = stats.confidence_band(values, 0.5)
        self.assertEqual((lower, upper), (25, 75))


class TestRiskStatistics(unittest.TestCase):
    """Tests for VaR, CVaR, drawdown and ratios."""

    def test_cvar_at_least_as_extreme_as_var(self):
        rng = np.random.default_rng(0)
        values = rng.normal(0.05, 0.2, 1000)
        for alpha in (0.01, 0.05, 0.25, 0.5):
            self.assertLessEqual(stats.conditional_value_at_risk(values, alpha),
                                 stats.value_at_risk(values, alpha))

    def test_max_drawdown(self):
        self.assertAlmostEqual(stats.max_drawdown([100, 120, 90, 130, 65]), 0.5)
        self.assertEqual(stats.max_drawdown([1, 2, 3]), 0.0)

    def test_max_drawdown_bounded(self):
        rng = np.random.default_rng(1)
        paths = np.maximum(np.cumsum(rng.normal(0, 10, (50, 40)), axis=1) + 100, 0)
        drawdowns = stats.max_drawdowns(paths)
        self.assertTrue(np.all((drawdowns >= 0) & (drawdowns <= 1)))
        self.assertAlmostEqual(drawdowns[0], stats.max_drawdown(paths[0]))

    def test_sharpe_and_sortino(self):
        returns = [0.10, 0.05, -0.02, 0.08]
        self.assertGreater(stats.sharpe_ratio(returns, 0.02), 0)
        self.assertGreater(stats.sortino_ratio(returns, 0.02), stats.sharpe_ratio(returns, 0.02))
        self.assertEqual(stats.sharpe_ratio([0.03, 0.03], 0.02), 0.0)

    def test_calmar_ratio(self):
        self.assertAlmostEqual(stats.calmar_ratio(0.06, 0.2), 0.3)
        self.assertEqual(stats.calmar_ratio(0.06, 0.0), 0.0)

    def test_distribution_metrics(self):
        metrics = stats.distribution_metrics(np.random.default_rng(2).normal(size=2000))
        self.assertAlmostEqual(metrics["skewness"], 0.0, delta=0.2)
        self.assertAlmostEqual(metrics["kurtosis"], 0.0, delta=0.4)
        self.assertIn("jarque_bera_pvalue", metrics)

    def test_summarize(self):
        summary = stats.summarize(list(range(100)), (0.95, 0.5))
        self.assertEqual(set(summary["confidence_intervals"]), {0.95, 0.5})
        self.assertLessEqual(summary["cvar"], summary["var"])


class TestMatrixRepair(unittest.TestCase):
    """Tests for nearest-PSD repair and Cholesky retry."""

    INDEFINITE = np.array([[1.0, 0.9, -0.9], [0.9, 1.0, 0.9], [-0.9, 0.9, 1.0]])

    def test_nearest_psd_round_trip(self):
        repaired = nearest_psd(self.INDEFINITE)
        self.assertGreaterEqual(np.linalg.eigvalsh(repaired).min(), -1e-9)
        np.testing.assert_allclose(repaired, repaired.T)

    def test_nearest_correlation_has_unit_diagonal(self):
        repaired = nearest_correlation(self.INDEFINITE)
        np.testing.assert_allclose(np.diag(repaired), 1.0)
        self.assertGreaterEqual(np.linalg.eigvalsh(repaired).min(), -1e-9)

    def test_safe_cholesky_repairs_once(self):
        with self.assertLogs("finplan.linalg", level="WARNING"):
            factor, used = safe_cholesky(self.INDEFINITE, "test matrix", is_correlation=True)
        np.testing.assert_allclose(factor @ factor.T, used, atol=1e-10)

    def test_safe_cholesky_passes_through_pd_matrix(self):
        matrix = np.array([[1.0, 0.3], [0.3, 1.0]])
        _, used = safe_cholesky(matrix)
        self.assertIs(used, matrix)
        _, repaired = ensure_positive_definite(matrix)
        self.assertFalse(repaired)

    def test_covariance_correlation_round_trip(self):
        corr = np.array([[1.0, -0.1], [-0.1, 1.0]])
        cov = covariance_from_correlation([0.18, 0.06], corr)
        np.testing.assert_allclose(correlation_from_covariance(cov), corr)

    def test_as_ordered_matrix_from_dataframe(self):
        frame = pd.DataFrame([[1.0, 0.2], [0.2, 1.0]], index=["b", "a"], columns=["b", "a"])
        matrix = as_ordered_matrix(frame, ["a", "b"], "corr")
        np.testing.assert_allclose(matrix, [[1.0, 0.2], [0.2, 1.0]])
        with self.assertRaises(ValidationError):
            as_ordered_matrix(frame, ["a", "c"], "corr")

    def test_asymmetric_matrix_rejected(self):
        with self.assertRaises(ValidationError):
            as_ordered_matrix([[1.0, 0.5], [0.1, 1.0]], ["a", "b"])


class TestBatchRunner(unittest.TestCase):
    """Tests for run_batches."""

    def test_results_in_item_order(self):
        self.assertEqual(run_batches(lambda x: x * 2, [3, 1, 2], max_workers=3), [6, 2, 4])

    def test_cancelled_before_start(self):
        token = CancellationToken()
        token.cancel()
        with self.assertRaises(Cancelled):
            run_batches(lambda x: x, [1, 2], cancel_token=token)

    def test_cancelled_mid_run(self):
        token = CancellationToken()
        seen = []

        def work(item):
            seen.append(item)
            token.cancel()
            return item

        with self.assertRaises(Cancelled):
            run_batches(work, [1, 2, 3], cancel_token=token)
        self.assertEqual(seen, [1])


if __name__ == '__main__':
    unittest.main()

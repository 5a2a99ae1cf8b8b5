# Copyright 2025 Spencer Williams
#
# Use of this source code is governed by an MIT license:
# https://github.com/sw23/life-model/blob/main/LICENSE

"""
Tests for Monte Carlo simulation module.
"""

import unittest
import numpy as np

from ..concurrency import CancellationToken
from ..errors import Cancelled, InsufficientDataError, ValidationError
from ..montecarlo.config import FeeStructure, MonteCarloConfig, SUCCESS_ANY_POINT
from ..montecarlo.market_assumptions import ReturnAssumptions, AssetClassAssumptions
from ..montecarlo.return_generator import CorrelatedReturnGenerator
from ..montecarlo.results import MonteCarloResults
from ..montecarlo.simulator import MonteCarloSimulator, run_monte_carlo


def sixty_forty():
    """Stocks/bonds assumptions used by the sanity-band scenario."""
    return ReturnAssumptions.from_mappings(
        {"stocks": 0.08, "bonds": 0.04},
        {"stocks": 0.18, "bonds": 0.06},
        [[1.0, -0.1], [-0.1, 1.0]],
    )


class TestMonteCarloConfig(unittest.TestCase):
    """Tests for MonteCarloConfig."""

    def test_default_values(self):
        """Test default configuration values."""
        config = MonteCarloConfig()
        self.assertEqual(config.num_simulations, 1000)
        self.assertEqual(config.confidence_intervals, (0.95, 0.75, 0.5))
        self.assertEqual(config.rebalance_frequency_months, 12)
        self.assertTrue(config.include_fees)
        self.assertIsNone(config.random_seed)

    def test_confidence_intervals_sorted_and_deduplicated(self):
        """Test confidence levels are stored as a sorted set."""
        config = MonteCarloConfig(confidence_intervals=(0.5, 0.95, 0.5))
        self.assertEqual(config.confidence_intervals, (0.95, 0.5))

    def test_invalid_num_simulations(self):
        """Test that invalid num_simulations raises error."""
        with self.assertRaises(ValueError):
            MonteCarloConfig(num_simulations=0)
        with self.assertRaises(ValueError):
            MonteCarloConfig(num_simulations=-1)

    def test_invalid_confidence_interval(self):
        """Test that confidence levels must lie strictly inside (0, 1)."""
        with self.assertRaises(ValidationError):
            MonteCarloConfig(confidence_intervals=(1.0,))

    def test_from_dict_wire_keys(self):
        """Test building from the camelCase wire shape with a nested fee structure."""
        config = MonteCarloConfig.from_dict({
            "numSimulations": 200,
            "inflationRate": 0.02,
            "rebalanceFrequencyMonths": 6,
            "feeStructure": {"managementFee": 0.01, "tradingCosts": 0.0, "adminFee": 0.0},
            "seed": 3,
        })
        self.assertEqual(config.num_simulations, 200)
        self.assertEqual(config.rebalance_frequency_months, 6)
        self.assertEqual(config.fee_structure.management_fee, 0.01)
        self.assertEqual(config.random_seed, 3)

    def test_from_dict_rejects_unknown_keys(self):
        with self.assertRaises(ValidationError) as ctx:
            MonteCarloConfig.from_dict({"numSimulation": 10})
        self.assertEqual(ctx.exception.field, "numSimulation")

    def test_merged_returns_new_instance(self):
        """Test overrides never mutate the original."""
        config = MonteCarloConfig()
        updated = config.merged(num_simulations=10)
        self.assertEqual(config.num_simulations, 1000)
        self.assertEqual(updated.num_simulations, 10)

    def test_fee_monthly_rate(self):
        fees = FeeStructure(management_fee=0.012, admin_fee=0.0, trading_costs=0.0)
        self.assertAlmostEqual(fees.monthly_rate, 0.001)


class TestAssetClassAssumptions(unittest.TestCase):
    """Tests for AssetClassAssumptions."""

    def test_basic_creation(self):
        """Test basic asset class creation."""
        asset = AssetClassAssumptions("stocks", 0.08, 0.18)
        self.assertEqual(asset.name, "stocks")
        self.assertEqual(asset.expected_return, 0.08)
        self.assertEqual(asset.volatility, 0.18)

    def test_negative_volatility_raises(self):
        """Test that negative volatility raises error."""
        with self.assertRaises(ValueError):
            AssetClassAssumptions("test", 0.10, -0.05)


class TestReturnAssumptions(unittest.TestCase):
    """Tests for ReturnAssumptions."""

    def test_create_default(self):
        """Test creating default market assumptions."""
        market = ReturnAssumptions.create_default()
        self.assertIn("stocks", market.asset_classes)
        self.assertIn("bonds", market.asset_classes)
        self.assertIn("cash", market.asset_classes)
        self.assertEqual(market.correlation_matrix.shape, (5, 5))
        self.assertEqual(market.covariance_matrix.shape, (5, 5))

    def test_covariance_from_correlation(self):
        market = sixty_forty()
        self.assertAlmostEqual(market.covariance_matrix[0, 0], 0.18 ** 2)
        self.assertAlmostEqual(market.covariance_matrix[0, 1], -0.1 * 0.18 * 0.06)

    def test_invalid_correlation_matrix_shape(self):
        """Test that invalid correlation matrix shape raises error."""
        with self.assertRaises(ValueError):
            ReturnAssumptions.from_mappings({"a": 0.1, "b": 0.08}, {"a": 0.18, "b": 0.15}, [[1.0]])

    def test_asymmetric_correlation_matrix_raises(self):
        """Test that asymmetric correlation matrix raises error."""
        with self.assertRaises(ValueError):
            ReturnAssumptions.from_mappings({"a": 0.1, "b": 0.08}, {"a": 0.18, "b": 0.15},
                                            [[1.0, 0.5], [0.3, 1.0]])

    def test_labelled_correlation_reordered(self):
        """Test a nested mapping is aligned to the asset order."""
        market = ReturnAssumptions.from_mappings(
            {"bonds": 0.04, "stocks": 0.08}, {"bonds": 0.06, "stocks": 0.18},
            {"stocks": {"stocks": 1.0, "bonds": 0.2}, "bonds": {"stocks": 0.2, "bonds": 1.0}},
        )
        self.assertEqual(market.asset_order, ["bonds", "stocks"])
        self.assertAlmostEqual(market.correlation_matrix[0, 1], 0.2)

    def test_subset_preserves_order(self):
        market = ReturnAssumptions.create_default().subset(["bonds", "stocks"])
        self.assertEqual(market.asset_order, ["bonds", "stocks"])
        self.assertAlmostEqual(market.correlation_matrix[0, 1], -0.10)

    def test_from_dict_round_trip(self):
        market = sixty_forty()
        restored = ReturnAssumptions.from_dict(market.to_dict())
        np.testing.assert_allclose(restored.covariance_matrix, market.covariance_matrix)

    def test_unknown_subset_raises(self):
        with self.assertRaises(ValidationError):
            sixty_forty().subset(["gold"])


class TestCorrelatedReturnGenerator(unittest.TestCase):
    """Tests for CorrelatedReturnGenerator."""

    def test_generate_shape(self):
        gen = CorrelatedReturnGenerator(sixty_forty())
        returns = gen.generate(50, 24, np.random.default_rng(1))
        self.assertEqual(returns.shape, (50, 24, 2))

    def test_same_seed_same_returns(self):
        gen = CorrelatedReturnGenerator(sixty_forty())
        first = gen.generate(20, 12, np.random.default_rng(7))
        second = gen.generate(20, 12, np.random.default_rng(7))
        np.testing.assert_array_equal(first, second)

    def test_returns_have_expected_statistics(self):
        """Test sample moments match the monthly parameters."""
        gen = CorrelatedReturnGenerator(sixty_forty())
        returns = gen.generate(4000, 12, np.random.default_rng(42)).reshape(-1, 2)

        expected_means = (1 + np.array([0.08, 0.04])) ** (1 / 12) - 1
        expected_vols = np.array([0.18, 0.06]) / np.sqrt(12)
        np.testing.assert_allclose(returns.mean(axis=0), expected_means, atol=0.002)
        np.testing.assert_allclose(returns.std(axis=0), expected_vols, rtol=0.05)

    def test_correlated_returns_are_actually_correlated(self):
        assumptions = ReturnAssumptions.from_mappings(
            {"a": 0.07, "b": 0.07}, {"a": 0.15, "b": 0.15}, [[1.0, 0.8], [0.8, 1.0]]
        )
        returns = CorrelatedReturnGenerator(assumptions).generate(3000, 12, np.random.default_rng(3))
        flat = returns.reshape(-1, 2)
        self.assertAlmostEqual(np.corrcoef(flat[:, 0], flat[:, 1])[0, 1], 0.8, delta=0.03)

    def test_non_psd_correlation_repaired(self):
        """Test an indefinite correlation matrix is replaced by its nearest PSD."""
        corr = np.array([[1.0, 0.9, -0.9], [0.9, 1.0, 0.9], [-0.9, 0.9, 1.0]])
        assumptions = ReturnAssumptions.from_mappings(
            {"a": 0.05, "b": 0.05, "c": 0.05}, {"a": 0.1, "b": 0.1, "c": 0.1}, corr
        )
        gen = CorrelatedReturnGenerator(assumptions)
        self.assertGreaterEqual(np.linalg.eigvalsh(gen.correlation_matrix).min(), -1e-9)
        np.testing.assert_allclose(np.diag(gen.correlation_matrix), 1.0)


class TestMonteCarloResults(unittest.TestCase):
    """Tests for MonteCarloResults."""

    def _create_sample_results(self, num_sims=10, num_years=2, **config):
        """Linear paths: trial i grows by (i + 1) * 100 per month from 10000."""
        months = np.arange(num_years * 12 + 1)
        values = np.array([10000 + (i + 1) * 100 * months for i in range(num_sims)], dtype=float)
        returns = values[:, 1:] / values[:, :-1] - 1
        return MonteCarloResults(values, returns, MonteCarloConfig(**config), total_invested=10000)

    def test_percentile_data(self):
        """Test getting percentile data."""
        results = self._create_sample_results()
        percentiles = results.get_percentile_data()
        self.assertIn('Median', percentiles)
        self.assertIn('Top 5%', percentiles)
        self.assertIn('Bottom 5%', percentiles)
        # Each percentile should have values for each year, year 0 included
        self.assertEqual(len(percentiles['Median']), 3)

    def test_percentile_df_indexed_by_year(self):
        df = self._create_sample_results().get_percentile_df()
        self.assertEqual(list(df.index), [0, 1, 2])
        self.assertTrue((df['Top 5%'] >= df['Bottom 5%']).all())

    def test_success_rate_all_successful(self):
        """Test success rate when all simulations succeed."""
        results = self._create_sample_results()
        self.assertEqual(results.success_rate(), 1.0)

    def test_success_rate_partial(self):
        """Test success rate against an explicit target."""
        results = self._create_sample_results()
        # terminal values are 10000 + (i + 1) * 2400
        self.assertEqual(results.success_rate(target_value=10000 + 8 * 2400), 0.3)

    def test_success_rate_any_point(self):
        values = np.array([[100.0, 150.0, 90.0], [100.0, 110.0, 120.0]])
        returns = values[:, 1:] / values[:, :-1] - 1
        results = MonteCarloResults(values, returns, MonteCarloConfig(), total_invested=100.0)
        self.assertEqual(results.success_rate(140.0), 0.0)
        self.assertEqual(results.success_rate(140.0, SUCCESS_ANY_POINT), 0.5)

    def test_get_years(self):
        self.assertEqual(self._create_sample_results().get_years(), [0, 1, 2])

    def test_get_final_values(self):
        final_values = self._create_sample_results().get_final_values()
        self.assertEqual(len(final_values), 10)

    def test_get_statistics(self):
        """Test getting summary statistics."""
        stats = self._create_sample_results().get_statistics()
        for key in ('mean', 'median', 'std', 'min', 'max', 'confidence_intervals', 'var', 'cvar'):
            self.assertIn(key, stats)
        self.assertLessEqual(stats['cvar'], stats['var'])

    def test_results_are_read_only(self):
        results = self._create_sample_results()
        with self.assertRaises(ValueError):
            results.monthly_values[0, 0] = 0.0

    def test_paths_and_drawdown(self):
        values = np.array([[100.0, 120.0, 60.0, 90.0]])
        results = MonteCarloResults(values, values[:, 1:] / values[:, :-1] - 1,
                                    MonteCarloConfig(), total_invested=100.0)
        path = results.paths[0]
        self.assertEqual(path.terminal_value, 90.0)
        self.assertAlmostEqual(path.max_drawdown(), 0.5)

    def test_to_dict_shape(self):
        payload = self._create_sample_results().to_dict(include_paths=True, max_paths=3)
        self.assertEqual(set(payload["statistics"]["annual"]), {"1", "2"})
        self.assertIn("0.95", payload["statistics"]["annual"]["1"]["confidenceIntervals"])
        self.assertIn("successRate", payload["statistics"]["overall"])
        self.assertEqual(len(payload["paths"]), 3)


class TestMonteCarloSimulator(unittest.TestCase):
    """Tests for MonteCarloSimulator."""

    def _run(self, contribution=1000.0, **config):
        options = {"num_simulations": 300, "random_seed": 42}
        options.update(config)
        return run_monte_carlo(100000, contribution, 10, {"stocks": 0.6, "bonds": 0.4},
                               sixty_forty(), MonteCarloConfig(**options))

    def test_deterministic_growth_without_volatility(self):
        """Test a zero-volatility asset compounds to its annual return."""
        market = ReturnAssumptions.from_mappings({"cash": 0.06}, {"cash": 0.0}, [[1.0]])
        config = MonteCarloConfig(num_simulations=3, include_fees=False, random_seed=1)
        results = MonteCarloSimulator(market, config).run(100000, 0, 1, {"cash": 1.0})
        np.testing.assert_allclose(results.get_final_values(), 106000.0)

    def test_fees_reduce_terminal_value(self):
        market = ReturnAssumptions.from_mappings({"cash": 0.06}, {"cash": 0.0}, [[1.0]])
        with_fees = MonteCarloSimulator(market, MonteCarloConfig(num_simulations=2, random_seed=1))
        results = with_fees.run(100000, 0, 1, {"cash": 1.0})
        self.assertLess(results.get_final_values()[0], 106000.0)

    def test_total_invested_includes_inflated_contributions(self):
        results = self._run(num_simulations=5)
        months = np.arange(1, 121)
        expected = 100000 + (1000 * 1.03 ** (months / 12)).sum()
        self.assertAlmostEqual(results.total_invested, expected)

    def test_same_seed_same_statistics(self):
        """Test two runs with the same seed are identical."""
        first = self._run()
        second = self._run()
        np.testing.assert_array_equal(first.monthly_values, second.monthly_values)
        self.assertEqual(first.overall, second.overall)

    def test_worker_count_does_not_change_results(self):
        serial = self._run(batch_size=50, max_workers=1)
        threaded = self._run(batch_size=50, max_workers=4)
        np.testing.assert_array_equal(serial.monthly_values, threaded.monthly_values)

    def test_higher_contribution_never_lowers_median(self):
        low = self._run(contribution=1000.0)
        high = self._run(contribution=2000.0)
        self.assertGreaterEqual(high.get_statistics()['median'], low.get_statistics()['median'])

    def test_sixty_forty_sanity_band(self):
        """Test the documented 60/40 scenario lands in a plausible range."""
        results = self._run(num_simulations=1000)
        median = results.overall["median_terminal_value"]
        self.assertGreater(median, 250000)
        self.assertLess(median, 600000)

    def test_success_rate_monotonic_in_target(self):
        results = self._run()
        rates = [results.success_rate(target) for target in (600000, 400000, 300000, 200000, 100000)]
        self.assertEqual(rates, sorted(rates))

    def test_drawdowns_and_tail_risk_bounds(self):
        results = self._run()
        self.assertTrue(np.all((results.max_drawdowns >= 0) & (results.max_drawdowns <= 1)))
        overall = results.overall
        self.assertLessEqual(overall["cvar"], overall["var"])

    def test_cancelled_token_raises(self):
        token = CancellationToken()
        token.cancel()
        simulator = MonteCarloSimulator(sixty_forty(), MonteCarloConfig(num_simulations=10))
        with self.assertRaises(Cancelled):
            simulator.run(100000, 0, 5, {"stocks": 0.6, "bonds": 0.4}, cancel_token=token)

    def test_nothing_invested_raises(self):
        with self.assertRaises(InsufficientDataError):
            MonteCarloSimulator(sixty_forty()).run(0, 0, 5, {"stocks": 1.0})

    def test_allocation_must_sum_to_one(self):
        with self.assertRaises(ValidationError):
            MonteCarloSimulator(sixty_forty()).run(1000, 0, 5, {"stocks": 0.5, "bonds": 0.4})

    def test_unknown_allocation_asset_raises(self):
        with self.assertRaises(ValidationError) as ctx:
            MonteCarloSimulator(sixty_forty()).run(1000, 0, 5, {"gold": 1.0})
        self.assertEqual(ctx.exception.field, "gold")


if __name__ == '__main__':
    unittest.main()

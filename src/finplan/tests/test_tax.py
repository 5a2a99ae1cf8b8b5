"""
Tests for the tax strategy optimizer.
"""

import unittest
from datetime import date

import numpy as np
import pandas as pd

from ..errors import InfeasibleConstraintError, ValidationError
from ..models import TAX_DEFERRED, TAX_EXEMPT, TAXABLE, Account, Asset, Portfolio, TaxLot, Trade
from ..tax import (SubstituteCandidate, TaxRates, TaxStrategyConfig, WithdrawalPreferences,
                   apply_harvest, compute_tax_strategy, find_alternatives,
                   find_harvesting_opportunities, location_score, optimize_asset_location,
                   plan_withdrawals, wash_sale_risk)
from ..tax.harvesting import LONG_TERM

AS_OF = date(2026, 6, 30)


def agg_lots():
    return (
        TaxLot("AGG", date(2024, 1, 10), quantity=100, cost_basis=11000.0),
        TaxLot("AGG", date(2025, 3, 1), quantity=80, cost_basis=8500.0),
    )


def harvest_portfolio(trades=(), agg_cost=19500.0):
    return Portfolio(
        assets=(
            Asset("SPY", quantity=100, value=20000.0, cost_basis=15000.0, asset_class="stocks"),
            Asset("AGG", quantity=180, value=18000.0, cost_basis=agg_cost, asset_class="bonds"),
        ),
        tax_lots=agg_lots(),
        trades=tuple(trades),
    )


class TestAssetLocation(unittest.TestCase):
    """Tests for optimize_asset_location."""

    def test_assets_go_to_preferred_accounts(self):
        assets = [Asset("AGG", value=50000.0, asset_class="bonds"),
                  Asset("SPY", value=50000.0, asset_class="stocks")]
        accounts = [Account("brokerage", TAXABLE, 100000.0),
                    Account("ira", TAX_DEFERRED, 50000.0),
                    Account("roth", TAX_EXEMPT, 50000.0)]
        result = optimize_asset_location(assets, accounts)
        self.assertEqual(result.placement_for("AGG").account_id, "ira")
        self.assertEqual(result.placement_for("SPY").account_id, "roth")
        self.assertAlmostEqual(result.score, 1.0)
        self.assertAlmostEqual(result.total_drag, 0.0)
        self.assertGreater(result.baseline_drag, 0.0)

    def test_capacity_forces_second_choice(self):
        assets = [Asset("AGG", value=40000.0, asset_class="bonds"),
                  Asset("BND", value=40000.0, asset_class="bonds")]
        accounts = [Account("brokerage", TAXABLE, 100000.0), Account("ira", TAX_DEFERRED, 50000.0)]
        result = optimize_asset_location(assets, accounts)

        self.assertEqual(len(result.placements), 2)
        self.assertEqual(result.placement_for("AGG").account_id, "ira")
        self.assertEqual(result.placement_for("BND").account_id, "brokerage")
        for account in accounts:
            self.assertLessEqual(result.account_usage[account.account_id], account.balance)
        self.assertEqual(result.by_account_type(), {TAX_DEFERRED: {"AGG": 40000.0},
                                                    TAXABLE: {"BND": 40000.0}})

    def test_equal_regret_keeps_lowest_symbol(self):
        assets = [Asset("BBB", value=5000.0, asset_class="stocks"),
                  Asset("AAA", value=5000.0, asset_class="stocks")]
        accounts = [Account("brokerage", TAXABLE, 5000.0), Account("roth", TAX_EXEMPT, 5000.0)]
        result = optimize_asset_location(assets, accounts)
        self.assertEqual(result.placement_for("AAA").account_id, "roth")
        self.assertEqual(result.placement_for("BBB").account_id, "brokerage")

    def test_tight_capacity_finds_feasible_split(self):
        assets = [Asset("AAA", value=6000.0, asset_class="stocks"),
                  Asset("BBB", value=5000.0, asset_class="stocks"),
                  Asset("CCC", value=5000.0, asset_class="stocks")]
        accounts = [Account("brokerage", TAXABLE, 6000.0), Account("roth", TAX_EXEMPT, 10000.0)]
        result = optimize_asset_location(assets, accounts)

        self.assertEqual(result.placement_for("AAA").account_id, "brokerage")
        self.assertEqual(result.placement_for("BBB").account_id, "roth")
        self.assertEqual(result.placement_for("CCC").account_id, "roth")
        self.assertAlmostEqual(result.account_usage["brokerage"], 6000.0)
        self.assertAlmostEqual(result.account_usage["roth"], 10000.0)
        self.assertAlmostEqual(result.total_drag, 0.3 * 6000.0)

    def test_tight_capacity_in_full_strategy(self):
        portfolio = Portfolio(
            assets=(Asset("AAA", quantity=60, value=6000.0, cost_basis=6000.0, asset_class="stocks"),
                    Asset("BBB", quantity=50, value=5000.0, cost_basis=5000.0, asset_class="stocks"),
                    Asset("CCC", quantity=50, value=5000.0, cost_basis=5000.0, asset_class="stocks")),
            accounts=(Account("brokerage", TAXABLE, 6000.0, cost_basis=6000.0),
                      Account("roth", TAX_EXEMPT, 10000.0)),
        )
        result = compute_tax_strategy(portfolio, TaxRates(), TaxStrategyConfig(as_of=AS_OF))
        self.assertEqual(len(result.asset_location.placements), 3)

    def test_total_capacity_too_small(self):
        with self.assertRaises(InfeasibleConstraintError) as ctx:
            optimize_asset_location([Asset("SPY", value=100000.0)],
                                    [Account("roth", TAX_EXEMPT, 50000.0)])
        self.assertEqual(ctx.exception.constraint, "account_capacity")

    def test_asset_larger_than_any_account(self):
        accounts = [Account("a", TAXABLE, 30000.0), Account("b", TAX_EXEMPT, 30000.0)]
        with self.assertRaises(InfeasibleConstraintError) as ctx:
            optimize_asset_location([Asset("SPY", value=60000.0)], accounts)
        self.assertEqual(ctx.exception.constraint, "account_capacity")

    def test_no_accounts_gives_empty_result(self):
        result = optimize_asset_location([Asset("SPY", value=1000.0)], [])
        self.assertEqual(result.placements, ())
        self.assertEqual(result.score, 0.0)

    def test_score_overrides(self):
        self.assertEqual(location_score("stocks", TAX_EXEMPT), 1.0)
        self.assertEqual(location_score("crypto", TAXABLE), 0.5)
        overrides = {"stocks": {TAX_EXEMPT: 0.2}}
        self.assertEqual(location_score("stocks", TAX_EXEMPT, overrides), 0.2)
        self.assertEqual(location_score("stocks", TAXABLE, overrides), 0.7)


class TestHarvesting(unittest.TestCase):
    """Tests for loss harvesting and wash sales."""

    def setUp(self):
        self.rates = TaxRates()
        self.config = TaxStrategyConfig(as_of=AS_OF)

    def test_only_losses_above_threshold(self):
        opportunities = find_harvesting_opportunities(harvest_portfolio(), self.rates, self.config)
        self.assertEqual([o.position for o in opportunities], ["AGG"])

        opportunity = opportunities[0]
        self.assertAlmostEqual(opportunity.unrealized_loss, -1500.0)
        self.assertAlmostEqual(opportunity.potential_savings, 1500.0 * self.rates.long_term_rate)
        self.assertEqual(opportunity.alternatives[0].symbol, "BND")
        self.assertTrue(all(a.correlation >= 0.95 for a in opportunity.alternatives))
        self.assertEqual(opportunity.holding_period, LONG_TERM)
        self.assertTrue(opportunity.harvestable)

    def test_small_loss_ignored(self):
        portfolio = harvest_portfolio(agg_cost=18500.0)
        self.assertEqual(find_harvesting_opportunities(portfolio, self.rates, self.config), [])

    def test_loss_lots_highest_cost_first(self):
        opportunity = find_harvesting_opportunities(harvest_portfolio(), self.rates, self.config)[0]
        self.assertEqual([lot.cost_per_share for lot in opportunity.lots], [110.0, 106.25])

    def test_recent_purchase_is_wash_sale_risk(self):
        portfolio = harvest_portfolio([Trade("AGG", date(2026, 6, 15), "buy", 10)])
        opportunity = find_harvesting_opportunities(portfolio, self.rates, self.config)[0]
        self.assertTrue(opportunity.wash_sale_risk)
        self.assertFalse(opportunity.harvestable)
        self.assertEqual(opportunity.earliest_harvest_date, date(2026, 7, 16))

    def test_trade_outside_window(self):
        portfolio = harvest_portfolio([Trade("AGG", date(2026, 5, 1), "buy", 10)])
        self.assertFalse(wash_sale_risk(portfolio, "AGG", AS_OF))
        self.assertTrue(wash_sale_risk(portfolio, "AGG", AS_OF, window_days=60))
        self.assertFalse(wash_sale_risk(portfolio, "BND", AS_OF, window_days=60))

    def test_only_taxable_positions_harvested(self):
        portfolio = Portfolio(assets=(
            Asset("AGG", quantity=180, value=18000.0, cost_basis=19500.0, account_type="ira"),
            Asset("VNQ", quantity=50, value=5000.0, cost_basis=7000.0, account_type="taxable"),
        ))
        opportunities = find_harvesting_opportunities(portfolio, self.rates, self.config)
        self.assertEqual([o.position for o in opportunities], ["VNQ"])

    def test_unknown_symbol_has_no_alternatives(self):
        portfolio = Portfolio(assets=(Asset("XYZ", quantity=10, value=1000.0, cost_basis=5000.0),))
        opportunity = find_harvesting_opportunities(portfolio, self.rates, self.config)[0]
        self.assertEqual(opportunity.alternatives, ())
        self.assertFalse(opportunity.harvestable)

    def test_alternatives_from_universe(self):
        universe = {"AGG": [{"symbol": "SCHZ", "correlation": 0.96},
                            {"symbol": "IUSB", "correlation": 0.97, "trackingError": 0.02},
                            SubstituteCandidate("LQD", 0.80)]}
        alternatives = find_alternatives("AGG", universe=universe)
        self.assertEqual([a.symbol for a in alternatives], ["IUSB", "SCHZ"])

    def test_alternatives_from_returns(self):
        rng = np.random.default_rng(3)
        base = rng.normal(0.005, 0.02, 60)
        returns = pd.DataFrame({
            "AGG": base,
            "BND": base + rng.normal(0, 0.001, 60),
            "QQQ": rng.normal(0.01, 0.05, 60),
        })
        alternatives = find_alternatives("AGG", returns=returns)
        self.assertEqual([a.symbol for a in alternatives], ["BND"])
        self.assertGreater(alternatives[0].tracking_error, 0.0)

    def test_apply_harvest_splits_lots(self):
        portfolio = harvest_portfolio()
        updated, gain = apply_harvest(portfolio, "AGG", quantity=120)

        self.assertAlmostEqual(gain, 12000.0 - 13125.0)
        lots = updated.lots_for("AGG")
        self.assertEqual(len(lots), 1)
        self.assertAlmostEqual(lots[0].quantity, 60)
        self.assertAlmostEqual(lots[0].cost_basis, 6375.0)

        agg = updated.get_asset("AGG")
        self.assertAlmostEqual(agg.quantity, 60)
        self.assertAlmostEqual(agg.value, 6000.0)
        self.assertAlmostEqual(agg.cost_basis, 6375.0)
        # snapshot passed in is untouched
        self.assertEqual(portfolio.lots_for("AGG"), agg_lots())

    def test_apply_harvest_rejects_oversell(self):
        with self.assertRaises(ValidationError):
            apply_harvest(harvest_portfolio(), "AGG", quantity=500)


class TestWithdrawals(unittest.TestCase):
    """Tests for plan_withdrawals."""

    def setUp(self):
        self.rates = TaxRates()
        self.accounts = [
            Account("brokerage", TAXABLE, 100000.0, cost_basis=80000.0),
            Account("ira", TAX_DEFERRED, 200000.0, required_minimum_distribution=10000.0),
            Account("roth", TAX_EXEMPT, 50000.0),
        ]

    def test_rmd_then_tax_efficient_order(self):
        plan = plan_withdrawals(self.accounts, 120000.0, self.rates)
        steps = [(s.account_id, round(s.amount, 2), s.reason) for s in plan.steps]
        self.assertEqual(steps, [("ira", 10000.0, "rmd"),
                                 ("brokerage", 100000.0, "withdrawal"),
                                 ("ira", 10000.0, "withdrawal")])
        expected_tax = 2 * 10000.0 * self.rates.ordinary_rate + 20000.0 * self.rates.long_term_rate
        self.assertAlmostEqual(plan.total_tax_cost, expected_tax)
        self.assertEqual(plan.shortfall, 0.0)
        self.assertEqual(plan.by_account(), {"ira": 20000.0, "brokerage": 100000.0})

    def test_rmds_ignored_when_disabled(self):
        preferences = WithdrawalPreferences(consider_rmds=False)
        plan = plan_withdrawals(self.accounts, 120000.0, self.rates, preferences)
        self.assertEqual([s.account_id for s in plan.steps], ["brokerage", "ira"])

    def test_pro_rata_within_tier(self):
        accounts = [Account("a", TAXABLE, 60000.0, cost_basis=60000.0),
                    Account("b", TAXABLE, 40000.0, cost_basis=40000.0)]
        plan = plan_withdrawals(accounts, 50000.0, self.rates,
                                WithdrawalPreferences(preserve_allocation=True))
        self.assertEqual(plan.by_account(), {"a": 30000.0, "b": 20000.0})
        self.assertAlmostEqual(plan.efficiency, 1.0)

    def test_shortfall_reported(self):
        with self.assertLogs("finplan.tax.withdrawals", level="WARNING"):
            plan = plan_withdrawals(self.accounts, 400000.0, self.rates)
        self.assertAlmostEqual(plan.shortfall, 50000.0)
        self.assertAlmostEqual(plan.total_withdrawn, 350000.0)

    def test_nothing_required(self):
        plan = plan_withdrawals(self.accounts, 0.0, self.rates, WithdrawalPreferences(consider_rmds=False))
        self.assertEqual(plan.steps, ())
        self.assertEqual(plan.efficiency, 1.0)

    def test_order_must_cover_every_account_type(self):
        with self.assertRaises(ValidationError):
            plan_withdrawals(self.accounts, 1000.0, self.rates, order=(TAXABLE, TAX_DEFERRED))


class TestTaxStrategy(unittest.TestCase):
    """Tests for compute_tax_strategy."""

    def setUp(self):
        self.portfolio = Portfolio(
            assets=(
                Asset("SPY", quantity=100, value=50000.0, cost_basis=40000.0,
                      asset_class="stocks", account_type="taxable"),
                Asset("AGG", quantity=180, value=18000.0, cost_basis=19500.0,
                      asset_class="bonds", account_type="taxable"),
            ),
            accounts=(
                Account("brokerage", TAXABLE, 68000.0, cost_basis=59500.0),
                Account("ira", TAX_DEFERRED, 50000.0),
                Account("roth", TAX_EXEMPT, 20000.0),
            ),
            withdrawal_needs=10000.0,
        )
        self.config = TaxStrategyConfig(as_of=AS_OF)

    def test_strategy_payload(self):
        result = compute_tax_strategy(self.portfolio, TaxRates(), self.config)
        payload = result.to_dict()
        self.assertEqual(set(payload), {"assetLocation", "harvestingOpportunities", "withdrawalStrategy",
                                        "efficiencyScore", "taxEfficiency", "projectedSavings",
                                        "recommendations"})
        self.assertGreaterEqual(result.efficiency_score, 0.0)
        self.assertLessEqual(result.efficiency_score, 1.0)

    def test_location_harvest_and_withdrawal_combined(self):
        rates = TaxRates()
        result = compute_tax_strategy(self.portfolio, rates, self.config)

        self.assertEqual(result.asset_location.placement_for("AGG").account_id, "ira")
        self.assertEqual(result.asset_location.placement_for("SPY").account_id, "brokerage")
        self.assertEqual([o.position for o in result.harvesting_opportunities], ["AGG"])
        self.assertEqual(result.withdrawal_strategy.steps[0].account_id, "brokerage")
        self.assertAlmostEqual(result.efficiency.harvesting, 1.0)

        savings = result.projected_savings
        self.assertAlmostEqual(savings.harvesting, 1500.0 * rates.long_term_rate)
        self.assertGreater(savings.location, 0.0)
        self.assertGreaterEqual(savings.withdrawal, 0.0)

        kinds = {r["type"] for r in result.recommendations}
        self.assertIn("relocate", kinds)
        self.assertIn("harvest", kinds)

    def test_empty_portfolio(self):
        result = compute_tax_strategy(Portfolio(assets=()), TaxRates(), self.config)
        self.assertEqual(result.asset_location.placements, ())
        self.assertEqual(result.harvesting_opportunities, ())
        self.assertEqual(result.projected_savings.total, 0.0)


if __name__ == '__main__':
    unittest.main()

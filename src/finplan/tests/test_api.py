"""
Tests for the Flask HTTP surface.
"""

import unittest

from ..api.app import MAX_SIMULATIONS, app

ASSETS = [
    {"symbol": "SPY", "expectedReturn": 0.08, "volatility": 0.18, "sector": "Equity"},
    {"symbol": "AGG", "expectedReturn": 0.04, "volatility": 0.06, "sector": "Fixed Income"},
    {"symbol": "VNQ", "expectedReturn": 0.07, "volatility": 0.20, "sector": "Real Estate"},
]
CORRELATION = [[1.0, -0.1, 0.6], [-0.1, 1.0, 0.2], [0.6, 0.2, 1.0]]


class TestApi(unittest.TestCase):
    """End-to-end requests against the Flask test client."""

    def setUp(self):
        app.config["TESTING"] = True
        self.client = app.test_client()

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {"status": "healthy"})

    def test_optimize(self):
        response = self.client.post("/api/optimize", json={
            "assets": ASSETS,
            "correlation": CORRELATION,
            "constraints": {"maxWeights": 0.6},
            "config": {"seed": 1},
        })
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertTrue(body["success"])
        self.assertAlmostEqual(sum(body["allocation"].values()), 1.0, places=6)
        self.assertIn("diversificationScore", body["diagnostics"])

    def test_infeasible_constraint_named(self):
        response = self.client.post("/api/optimize", json={
            "assets": ASSETS,
            "correlation": CORRELATION,
            "constraints": {"maxWeights": 0.2},
        })
        self.assertEqual(response.status_code, 422)
        body = response.get_json()
        self.assertFalse(body["success"])
        self.assertEqual(body["constraint"], "max_weights")

    def test_invalid_option_reports_field(self):
        response = self.client.post("/api/optimize", json={
            "assets": ASSETS, "correlation": CORRELATION, "config": {"objective": "max_return"},
        })
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.get_json()["field"], "objective")

    def test_efficient_frontier(self):
        response = self.client.post("/api/efficient-frontier", json={
            "assets": ASSETS, "correlation": CORRELATION, "numPoints": 5,
        })
        self.assertEqual(response.status_code, 200)
        frontier = response.get_json()["frontier"]
        self.assertGreater(len(frontier), 1)
        returns = [point["return"] for point in frontier]
        self.assertEqual(returns, sorted(returns))

    def test_monte_carlo(self):
        response = self.client.post("/api/monte-carlo", json={
            "initialInvestment": 100000,
            "monthlyContribution": 500,
            "horizonYears": 5,
            "allocation": {"stocks": 0.6, "bonds": 0.4},
            "config": {"numSimulations": 200, "seed": 42},
            "includePaths": True,
            "maxPaths": 3,
        })
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        overall = body["statistics"]["overall"]
        self.assertGreaterEqual(overall["successRate"], 0.0)
        self.assertLessEqual(overall["successRate"], 1.0)
        self.assertEqual(set(body["statistics"]["annual"]), {"1", "2", "3", "4", "5"})
        self.assertEqual(len(body["paths"]), 3)
        self.assertEqual(body["metadata"]["numSimulations"], 200)

    def test_monte_carlo_simulation_cap(self):
        response = self.client.post("/api/monte-carlo", json={
            "initialInvestment": 100000,
            "horizonYears": 5,
            "allocation": {"stocks": 1.0},
            "config": {"numSimulations": MAX_SIMULATIONS + 1},
        })
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.get_json()["field"], "numSimulations")

    def test_monte_carlo_non_numeric_investment(self):
        response = self.client.post("/api/monte-carlo", json={
            "initialInvestment": "a lot",
            "horizonYears": 5,
            "allocation": {"stocks": 1.0},
        })
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.get_json()["field"], "initialInvestment")

    def test_frontier_zero_points(self):
        response = self.client.post("/api/efficient-frontier", json={
            "assets": ASSETS, "correlation": CORRELATION, "numPoints": 0,
        })
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.get_json()["field"], "num_points")

    def test_missing_fields(self):
        response = self.client.post("/api/monte-carlo", json={"initialInvestment": 1000})
        self.assertEqual(response.status_code, 422)
        body = response.get_json()
        self.assertEqual(set(body), {"horizonYears", "allocation"})
        self.assertEqual(body["allocation"][0]["code"], "REQUIRED")

    def test_body_must_be_object(self):
        response = self.client.post("/api/optimize", json=[1, 2, 3])
        self.assertEqual(response.status_code, 400)

    def test_tax_strategy(self):
        response = self.client.post("/api/tax-strategy", json={
            "portfolio": {
                "assets": [
                    {"symbol": "SPY", "quantity": 100, "value": 50000, "costBasis": 40000,
                     "assetClass": "stocks", "accountType": "taxable"},
                    {"symbol": "AGG", "quantity": 180, "value": 18000, "costBasis": 19500,
                     "assetClass": "bonds", "accountType": "taxable"},
                ],
                "accounts": [
                    {"accountId": "brokerage", "accountType": "taxable", "balance": 68000,
                     "costBasis": 59500},
                    {"accountId": "ira", "accountType": "traditional_ira", "balance": 50000},
                ],
                "withdrawalNeeds": 5000,
            },
            "taxRates": {"federalLongTerm": 0.15, "federalShortTerm": 0.24, "state": 0.05},
            "config": {"asOf": "2026-06-30"},
        })
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertTrue(0.0 <= body["efficiencyScore"] <= 1.0)
        self.assertEqual(body["harvestingOpportunities"][0]["position"], "AGG")
        self.assertIn("byAccountType", body["assetLocation"])

    def test_tax_strategy_capacity(self):
        response = self.client.post("/api/tax-strategy", json={
            "portfolio": {
                "assets": [{"symbol": "SPY", "value": 100000}],
                "accounts": [{"accountId": "roth", "accountType": "roth", "balance": 1000}],
            },
        })
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.get_json()["constraint"], "account_capacity")


if __name__ == '__main__':
    unittest.main()

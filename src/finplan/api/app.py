"""
Flask web server for the finplan planning engine.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Tuple

from dotenv import load_dotenv
from flask import Flask, jsonify, request

from .. import engine
from ..config import DEFAULT_HOST, DEFAULT_PORT, MAX_API_SIMULATIONS
from ..errors import (Cancelled, FinPlanError, InfeasibleConstraintError, InsufficientDataError,
                      NonPositiveDefiniteError, SolverConvergenceError, ValidationError)
from ..logging_config import configure_logging
from ..validation import require_finite

# Process environment wins over .env (override=False), so container and CI
# variables take precedence over a local development file
env_path = Path(__file__).parent / ".env"
if env_path.exists():
    load_dotenv(env_path, override=False)
else:
    load_dotenv(override=False)

HOST = os.getenv("HOST", DEFAULT_HOST)
PORT = int(os.getenv("PORT", str(DEFAULT_PORT)))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
MAX_SIMULATIONS = int(os.getenv("FINPLAN_MAX_SIMULATIONS", str(MAX_API_SIMULATIONS)))

logger = logging.getLogger(__name__)

app = Flask(__name__)

_STATUS_CODES = (
    (Cancelled, 409),
    (SolverConvergenceError, 500),
    (ValidationError, 422),
    (InsufficientDataError, 422),
    (InfeasibleConstraintError, 422),
    (NonPositiveDefiniteError, 422),
)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_response(error: FinPlanError):
    status = next((code for kind, code in _STATUS_CODES if isinstance(error, kind)), 500)
    payload = error.to_dict()
    payload["success"] = False
    payload["timestamp"] = _timestamp()
    return jsonify(payload), status


def _request_body() -> Tuple[Dict[str, Any], Any]:
    """JSON object body, or an error response for anything else."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return {}, (jsonify({"success": False, "error": "Request body must be a JSON object"}), 400)
    return data, None


def _required(data: Dict[str, Any], *names: str):
    errors = {
        name: [{"message": f"{name} is required", "code": "REQUIRED"}]
        for name in names if data.get(name) is None
    }
    if errors:
        return jsonify(errors), 422
    return None


def _internal_error(e: Exception):
    logger.exception("Unhandled error while serving %s", request.path)
    return (
        jsonify({"success": False, "error": "Internal server error", "message": str(e),
                 "timestamp": _timestamp()}),
        500,
    )


@app.route("/api/optimize", methods=["POST"])
def optimize():
    """
    Optimal allocation for a set of assets.

    Request body:
    {
        "assets": [{"symbol": "SPY", "expectedReturn": 0.08, "volatility": 0.18, ...}],
        "constraints": {"minWeights": 0.0, "maxWeights": 0.6, "sectorCaps": {...}},  // Optional
        "marketViews": [{"symbol": "SPY", "expectedReturn": 0.1, "confidence": 0.6}],  // Optional
        "config": {"objective": "max_sharpe", "useBlackLitterman": true, ...},  // Optional
        "correlation": [[...]] | {"SPY": {"AGG": -0.1, ...}},  // Optional
        "covariance": ...,  // Optional
        "returns": {"SPY": [...], "AGG": [...]}  // Optional periodic return history
    }
    """
    data, error = _request_body()
    if error:
        return error
    missing = _required(data, "assets")
    if missing:
        return missing
    try:
        result = engine.optimize_portfolio(
            data["assets"],
            constraints=data.get("constraints"),
            market_views=data.get("marketViews"),
            config=data.get("config"),
            correlation=data.get("correlation"),
            covariance=data.get("covariance"),
            returns=data.get("returns"),
        )
        return jsonify({"success": True, "timestamp": _timestamp(), **result.to_dict()}), 200
    except FinPlanError as e:
        return _error_response(e)
    except Exception as e:
        return _internal_error(e)


@app.route("/api/efficient-frontier", methods=["POST"])
def efficient_frontier():
    """Frontier points ordered by increasing return. Body as /api/optimize plus numPoints."""
    data, error = _request_body()
    if error:
        return error
    missing = _required(data, "assets")
    if missing:
        return missing
    try:
        points = engine.compute_efficient_frontier(
            data["assets"],
            constraints=data.get("constraints"),
            num_points=data.get("numPoints"),
            config=data.get("config"),
            correlation=data.get("correlation"),
            covariance=data.get("covariance"),
            returns=data.get("returns"),
            market_views=data.get("marketViews"),
        )
        return jsonify({"success": True, "timestamp": _timestamp(),
                        "frontier": [p.to_dict() for p in points]}), 200
    except FinPlanError as e:
        return _error_response(e)
    except Exception as e:
        return _internal_error(e)


@app.route("/api/monte-carlo", methods=["POST"])
def monte_carlo():
    """
    Monte Carlo projection of a target allocation.

    Request body:
    {
        "initialInvestment": 100000,
        "monthlyContribution": 1000,
        "horizonYears": 10,
        "allocation": {"stocks": 0.6, "bonds": 0.4},
        "returnAssumptions": {"expectedReturns": {...}, "volatility": {...},
                              "correlationMatrix": [[...]]},  // Optional
        "config": {"numSimulations": 1000, "seed": 42, ...},  // Optional
        "includePaths": false,  // Optional
        "maxPaths": 100  // Optional
    }
    """
    data, error = _request_body()
    if error:
        return error
    missing = _required(data, "initialInvestment", "horizonYears", "allocation")
    if missing:
        return missing
    try:
        config = data.get("config") or {}
        requested = config.get("numSimulations", config.get("num_simulations", 0))
        if isinstance(requested, (int, float)) and requested > MAX_SIMULATIONS:
            raise ValidationError(f"numSimulations may not exceed {MAX_SIMULATIONS}",
                                  field="numSimulations")
        results = engine.run_monte_carlo(
            require_finite(data["initialInvestment"], "initialInvestment"),
            require_finite(data.get("monthlyContribution", 0.0), "monthlyContribution"),
            data["horizonYears"],
            data["allocation"],
            return_assumptions=data.get("returnAssumptions"),
            config=config,
        )
        payload = results.to_dict(include_paths=bool(data.get("includePaths", False)),
                                  max_paths=data.get("maxPaths"))
        return jsonify({"success": True, "timestamp": _timestamp(), **payload}), 200
    except FinPlanError as e:
        return _error_response(e)
    except Exception as e:
        return _internal_error(e)


@app.route("/api/tax-strategy", methods=["POST"])
def tax_strategy():
    """
    Tax strategy for a portfolio snapshot.

    Request body:
    {
        "portfolio": {"assets": [...], "accounts": [...], "taxLots": [...],
                      "trades": [...], "withdrawalNeeds": 0},
        "taxRates": {"federalLongTerm": 0.15, "federalShortTerm": 0.24, "state": 0.05},
        "config": {"harvestingThreshold": 1000, "asOf": "2024-06-30", ...},  // Optional
        "universe": {"SPY": [{"symbol": "VOO", "correlation": 0.99}]}  // Optional
    }
    """
    data, error = _request_body()
    if error:
        return error
    missing = _required(data, "portfolio")
    if missing:
        return missing
    try:
        result = engine.compute_tax_strategy(
            data["portfolio"],
            tax_rates=data.get("taxRates"),
            config=data.get("config"),
            universe=data.get("universe"),
            returns=data.get("returns"),
        )
        return jsonify({"success": True, "timestamp": _timestamp(), **result.to_dict()}), 200
    except FinPlanError as e:
        return _error_response(e)
    except Exception as e:
        return _internal_error(e)


@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({"status": "healthy"}), 200


def main():
    configure_logging(LOG_LEVEL)
    logger.info("Starting finplan API on %s:%d", HOST, PORT)
    app.run(host=HOST, port=PORT, debug=False)

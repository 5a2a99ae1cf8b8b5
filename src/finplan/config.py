"""
Configuration and Parameters for the Planning Engine

This module contains the default parameters and numerical constants used
throughout portfolio optimization, Monte Carlo projection and tax strategy.
Per-operation configuration objects take their defaults from here.
"""

# ===== MARKET PARAMETERS =====
RISK_FREE_RATE = 0.02  # Annual risk-free rate used for Sharpe/Sortino ratios
MONTHS_PER_YEAR = 12
TRADING_DAYS_PER_YEAR = 252  # Number of trading days per year for annualization

# ===== OPTIMIZATION PARAMETERS =====
BL_TAU = 0.025  # Black-Litterman prior uncertainty scalar
RISK_AVERSION = 2.5  # Market risk aversion (delta) for reverse optimization
NUM_RESAMPLES = 1000  # Michaud resampling draws
RESAMPLE_OBSERVATIONS = 120  # Monthly observations per resampling draw
FRONTIER_POINTS = 50  # Efficient frontier resolution
CVAR_CONFIDENCE = 0.95  # Confidence level for CVaR constraints and diagnostics
CVAR_SCENARIOS = 500  # Simulated scenarios when no historical returns are supplied
MAX_OPTIMIZATION_ITERATIONS = 1000  # Maximum iterations for optimizer
NUM_OPTIMIZATION_ATTEMPTS = 4  # Number of optimization attempts with different starting points
CONVERGENCE_TOLERANCE = 1e-10  # SLSQP ftol
WEIGHT_SUM_TOLERANCE = 1e-6  # Allowed deviation of the weight sum from 1.0
MIN_TRADE_WEIGHT = 0.001  # Smallest weight change reported as a rebalancing trade
REBALANCING_THRESHOLD = 0.05  # Largest drift tolerated before a rebalance is flagged

# ===== MONTE CARLO PARAMETERS =====
NUM_SIMULATIONS = 1000
CONFIDENCE_INTERVALS = (0.95, 0.75, 0.5)
INFLATION_RATE = 0.03
REBALANCE_FREQUENCY_MONTHS = 12
SIMULATION_BATCH_SIZE = 250  # Trials per batch (cancellation checkpoint, RNG substream)
VAR_ALPHA = 0.05  # Tail probability for VaR/CVaR of simulated outcomes
MANAGEMENT_FEE = 0.0025  # 0.25% annual
TRADING_COSTS = 0.0010  # 0.10% of traded notional
ADMIN_FEE = 0.0005  # 0.05% annual

# ===== TAX PARAMETERS =====
HARVESTING_THRESHOLD = 1000.0  # Minimum unrealized loss (dollars) worth harvesting
WASH_SALE_WINDOW_DAYS = 30  # Days before/after a sale
LONG_TERM_HOLDING_DAYS = 365
SUBSTITUTE_MIN_CORRELATION = 0.95
MAX_HARVEST_ALTERNATIVES = 3
NIIT_RATE = 0.038  # Net investment income tax
LOCATION_SCORE_WEIGHT = 0.4
HARVESTING_SCORE_WEIGHT = 0.3
WITHDRAWAL_SCORE_WEIGHT = 0.3
LOCATION_RECOMMENDATION_SCORE = 0.8  # Location scores below this trigger move recommendations

# ===== NUMERICAL STABILITY PARAMETERS =====
MIN_EIGENVALUE_THRESHOLD = 1e-10  # Eigenvalue floor for nearest-PSD repair
PSD_TOLERANCE = 1e-9  # Eigenvalues above -PSD_TOLERANCE count as non-negative
SYMMETRY_TOLERANCE = 1e-8  # Absolute tolerance for symmetry checks

# ===== HTTP SERVICE =====
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
MAX_API_SIMULATIONS = 20000  # Upper bound on numSimulations accepted over HTTP

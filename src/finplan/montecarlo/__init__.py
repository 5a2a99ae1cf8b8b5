# Copyright 2025 Spencer Williams
#
# Use of this source code is governed by an MIT license:
# https://github.com/sw23/life-model/blob/main/LICENSE

"""
Monte Carlo simulation module for retirement projections.

This module provides Monte Carlo simulation capabilities with correlated
monthly asset returns, contributions, fees and periodic rebalancing.
"""

from .config import FeeStructure, MonteCarloConfig, SUCCESS_ANY_POINT, SUCCESS_TERMINAL
from .market_assumptions import AssetClassAssumptions, ReturnAssumptions
from .return_generator import CorrelatedReturnGenerator
from .simulator import MonteCarloSimulator, run_monte_carlo
from .results import MonteCarloResults, SimulationPath

__all__ = [
    'FeeStructure',
    'MonteCarloConfig',
    'SUCCESS_ANY_POINT',
    'SUCCESS_TERMINAL',
    'AssetClassAssumptions',
    'ReturnAssumptions',
    'CorrelatedReturnGenerator',
    'MonteCarloSimulator',
    'run_monte_carlo',
    'MonteCarloResults',
    'SimulationPath',
]

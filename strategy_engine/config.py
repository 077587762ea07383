# config.py - Engine defaults (override through environment variables)
import os

# Monte Carlo sizing: large by default, trade runtime for precision.
# The simulator is a pure-Python loop costing roughly 0.3-0.5 us per
# path-step: 10^6 paths x 252 daily steps takes several minutes (about 7 on
# a typical laptop). Lower STRATEGY_MC_PATHS or pass path_count/step_count
# for interactive use; run full-size jobs through tasks.SimulationRunner.
DEFAULT_PATH_COUNT = int(os.environ.get("STRATEGY_MC_PATHS", "1000000"))
DEFAULT_SEED = int(os.environ.get("STRATEGY_MC_SEED", str(0x9E3779B9)))
TRADING_DAYS_PER_YEAR = 252

# Calendar days per year used to turn days-to-expiry into year fractions
DAY_COUNT_BASIS = float(os.environ.get("STRATEGY_DAY_BASIS", "365"))

# Standard US equity options contract multiplier
CONTRACT_MULTIPLIER = float(os.environ.get("STRATEGY_CONTRACT_MULTIPLIER", "100"))

# Default payoff grid: number of samples and margin around spot (fraction)
GRID_POINTS = int(os.environ.get("STRATEGY_GRID_POINTS", "401"))
GRID_MARGIN = float(os.environ.get("STRATEGY_GRID_MARGIN", "0.45"))

# Allowed gap between decomposed and closed-form net expectation,
# as a fraction of total premium, before a diagnostic warning is logged
CONSISTENCY_TOLERANCE = float(os.environ.get("STRATEGY_CONSISTENCY_TOLERANCE", "0.015"))

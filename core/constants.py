"""
Protocol constants for the floor-price lending model.

Amounts are integers in the smallest token unit. Prices, rates and the
interest index use WAD fixed point; fees and shares use basis points.
"""

# Fixed point
WAD = 10**18
BASIS_POINTS = 10_000

# Integer domains
MAX_UINT112 = 2**112 - 1
MAX_UINT256 = 2**256 - 1

# Trading pool
MINIMUM_LIQUIDITY = 1000
DEAD_ADDRESS = "0x000000000000000000000000000000000000dEaD"
START_FEE_BPS = 9900      # 99% at launch
END_FEE_BPS = 30          # 0.3% once the decay target has been burned
FEE_DECAY_TARGET = 100_000 * WAD
FEE_CAPTURE_BPS = 9000    # 90% of k growth goes to the fee router

# Floor price
LIQ_BOUNTY_BPS = 50       # 0.5% haircut that funds the recovery bounty
MIN_X_FINAL = MINIMUM_LIQUIDITY

# Collateral vault
GRACE_PERIOD = 72 * 60 * 60

# Lending pool rate curve (annual, WAD)
ONE_YEAR_IN_SECONDS = 365 * 24 * 60 * 60
BASE_RATE = 2 * WAD // 100
RATE_SLOPE = 10 * WAD // 100
KINK = 80 * WAD // 100
STEEP_MULTIPLIER = 3
RESERVE_FACTOR = 10 * WAD // 100

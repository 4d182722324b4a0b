from __future__ import annotations

"""Fixed-point and policy constants for the staking ledger.

- Accumulator scale: 1e18 (reward per share is stored multiplied by PRECISION)
- Amounts are unsigned 256-bit integers; anything outside that range is an error
- Penalties are expressed in basis points, capped at 50%
"""

# Accumulator scale (acc_reward_per_share is a 1e18 fixed-point value)
PRECISION: int = 10**18

# Unsigned 256-bit ceiling for every amount and accumulator value
MAX_AMOUNT: int = 2**256 - 1

# Basis points
BPS_DENOMINATOR: int = 10_000
MAX_PENALTY_BPS: int = 5_000  # 50%

# APY uses a 365-day year
SECONDS_PER_YEAR: int = 365 * 24 * 60 * 60

# Default treasury account id for early-withdrawal penalties
TREASURY_ACCOUNT_ID: str = "TREASURY"

# src/stakeledger/ledger/accumulator.py
from __future__ import annotations

"""Per-pool reward accumulator.

acc_reward_per_share grows by `elapsed * reward_rate * PRECISION // total_staked`
each time a pool is brought up to date. Division truncates, so a pool can only
ever under-distribute (by less than one PRECISION unit per advance), never
over-distribute.

While a pool is empty the clock moves but the accumulator is frozen: rewards
minted for an empty pool are not credited to anyone.
"""

from stakeledger.ledger.fixed_point import accrued, checked_add, checked_mul, checked_sub, mul_div
from stakeledger.ledger.constants import PRECISION
from stakeledger.ledger.types import Pool, StakeEntry


def project_acc(pool: Pool, now: int) -> int:
    """Accumulator value `advance(pool, now)` would produce. Pure."""
    now_i = int(now)
    if now_i <= pool.last_update_time or pool.total_staked == 0:
        return pool.acc_reward_per_share
    elapsed = now_i - pool.last_update_time
    minted = checked_mul(elapsed, pool.reward_rate)
    return checked_add(pool.acc_reward_per_share, mul_div(minted, PRECISION, pool.total_staked))


def advance(pool: Pool, now: int) -> int:
    """Bring `pool` up to `now`. Returns the reward units minted (0 if frozen)."""
    now_i = int(now)
    if now_i <= pool.last_update_time:
        return 0
    if pool.total_staked == 0:
        pool.last_update_time = now_i
        return 0

    minted = checked_mul(now_i - pool.last_update_time, pool.reward_rate)
    acc = project_acc(pool, now_i)

    pool.acc_reward_per_share = acc
    pool.last_update_time = now_i
    return minted


def pending(pool: Pool, entry: StakeEntry, now: int) -> int:
    """Unclaimed reward for `entry` as of `now`, without mutating anything."""
    if entry.amount == 0:
        return 0
    return checked_sub(accrued(entry.amount, project_acc(pool, now)), entry.reward_debt)


def settled(pool: Pool, entry: StakeEntry) -> int:
    """Unclaimed reward at the pool's current accumulator (call after advance)."""
    if entry.amount == 0:
        return 0
    return checked_sub(accrued(entry.amount, pool.acc_reward_per_share), entry.reward_debt)


__all__ = ["project_acc", "advance", "pending", "settled"]

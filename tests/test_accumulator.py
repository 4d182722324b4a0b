# tests/test_accumulator.py
from __future__ import annotations

import pytest

from stakeledger.ledger import accumulator
from stakeledger.ledger.constants import MAX_AMOUNT, PRECISION
from stakeledger.ledger.fixed_point import accrued, checked_add, checked_mul, checked_sub, mul_div
from stakeledger.ledger.types import Pool, StakeEntry
from stakeledger.runtime.errors import ArithmeticOverflow


def _pool(**kw) -> Pool:
    base = dict(pool_id=0, staking_asset="STAKE", reward_asset="REWARD", reward_rate=10, last_update_time=0)
    base.update(kw)
    return Pool(**base)


def test_advance_is_noop_when_time_does_not_move() -> None:
    p = _pool(total_staked=100, acc_reward_per_share=5, last_update_time=50)
    assert accumulator.advance(p, 50) == 0
    assert accumulator.advance(p, 10) == 0
    assert p.acc_reward_per_share == 5
    assert p.last_update_time == 50


def test_advance_on_empty_pool_moves_clock_but_freezes_acc() -> None:
    p = _pool(total_staked=0)
    assert accumulator.advance(p, 100) == 0
    assert p.last_update_time == 100
    assert p.acc_reward_per_share == 0


def test_advance_adds_minted_per_share() -> None:
    p = _pool(total_staked=100)
    minted = accumulator.advance(p, 100)
    assert minted == 1000
    assert p.acc_reward_per_share == 1000 * PRECISION // 100
    assert p.last_update_time == 100


def test_pending_is_a_pure_preview_of_advance() -> None:
    p = _pool(total_staked=100)
    e = StakeEntry(pool_id=0, user="alice", amount=100, reward_debt=0)

    first = accumulator.pending(p, e, 100)
    second = accumulator.pending(p, e, 100)
    assert first == second == 1000
    assert p.acc_reward_per_share == 0
    assert p.last_update_time == 0

    accumulator.advance(p, 100)
    assert accumulator.settled(p, e) == first


def test_truncation_never_over_distributes() -> None:
    p = _pool(reward_rate=1, total_staked=3)
    entries = [StakeEntry(pool_id=0, user=u, amount=1) for u in ("a", "b", "c")]

    for t in (1, 2, 7, 10, 1000):
        minted_total = t * p.reward_rate
        owed = sum(accumulator.pending(p, e, t) for e in entries)
        assert owed <= minted_total

    accumulator.advance(p, 10)
    assert p.acc_reward_per_share == 10 * PRECISION // 3
    assert [accumulator.settled(p, e) for e in entries] == [3, 3, 3]


def test_acc_is_non_decreasing_across_rate_changes() -> None:
    p = _pool(total_staked=7)
    seen = [p.acc_reward_per_share]
    for t, rate in ((3, 10), (9, 0), (15, 4), (40, 1)):
        accumulator.advance(p, t)
        p.reward_rate = rate
        seen.append(p.acc_reward_per_share)
    assert seen == sorted(seen)


def test_overflow_fails_instead_of_wrapping() -> None:
    p = _pool(reward_rate=MAX_AMOUNT, total_staked=1)
    with pytest.raises(ArithmeticOverflow) as e:
        accumulator.advance(p, 2)
    assert e.value.code == "arithmetic_overflow"
    assert p.acc_reward_per_share == 0
    assert p.last_update_time == 0


def test_checked_helpers_reject_out_of_range() -> None:
    assert checked_add(MAX_AMOUNT - 1, 1) == MAX_AMOUNT
    with pytest.raises(ArithmeticOverflow):
        checked_add(MAX_AMOUNT, 1)
    with pytest.raises(ArithmeticOverflow):
        checked_sub(1, 2)
    with pytest.raises(ArithmeticOverflow):
        checked_mul(MAX_AMOUNT, 2)
    with pytest.raises(ArithmeticOverflow):
        mul_div(1, 1, 0)
    assert accrued(3, PRECISION // 2) == 1

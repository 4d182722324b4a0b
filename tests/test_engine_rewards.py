# tests/test_engine_rewards.py
from __future__ import annotations

import pytest

from stakeledger.runtime.errors import AssetMismatch, NoRewardsDue, PoolInactive
from stakeledger.runtime.events import EventType


def test_claim_pays_pending_and_leaves_principal(h) -> None:
    pid = h.add_pool(reward_rate=10)
    h.fund_user("alice", 100)
    h.fund_rewards(1_000_000)

    h.engine.stake("alice", pid, 100)
    h.clock.advance(100)
    out = h.engine.claim_rewards("alice", pid)

    assert out["reward_paid"] == 1000
    assert h.reward_token.balance_of("alice") == 1000
    info = h.engine.get_user_info(pid, "alice")
    assert info == {"pool_id": pid, "user": "alice", "amount": 100, "claimed": 1000, "lock_expiry": 0, "pending": 0}


def test_claim_without_stake_or_rewards_fails(h) -> None:
    pid = h.add_pool(reward_rate=10)
    h.fund_user("alice", 100)
    h.fund_rewards(1_000)

    with pytest.raises(NoRewardsDue) as e:
        h.engine.claim_rewards("alice", pid)
    assert e.value.reason == "no_principal"

    h.engine.stake("alice", pid, 100)
    with pytest.raises(NoRewardsDue):
        h.engine.claim_rewards("alice", pid)


def test_claim_requires_active_pool(h) -> None:
    pid = h.add_pool(reward_rate=10)
    h.fund_user("alice", 100)
    h.fund_rewards(1_000)
    h.engine.stake("alice", pid, 100)
    h.clock.advance(5)
    h.engine.set_active(h.OPERATOR, pid, False)

    with pytest.raises(PoolInactive):
        h.engine.claim_rewards("alice", pid)


def test_reward_shortfall_pays_what_is_available(h) -> None:
    pid = h.add_pool(reward_rate=10)
    h.fund_user("alice", 100)
    h.fund_rewards(300)

    h.engine.stake("alice", pid, 100)
    h.clock.advance(100)
    out = h.engine.withdraw("alice", pid, 100)

    # Principal always comes back even when the reward reserve is short.
    assert out["received"] == 100
    assert out["reward_paid"] == 300
    assert h.reward_token.balance_of("alice") == 300
    assert h.engine.get_user_info(pid, "alice")["claimed"] == 300


def test_claim_with_empty_reserve_changes_nothing(h) -> None:
    pid = h.add_pool(reward_rate=10)
    h.fund_user("alice", 100)
    h.engine.stake("alice", pid, 100)
    h.clock.advance(10)
    before = h.engine.snapshot()

    with pytest.raises(NoRewardsDue) as e:
        h.engine.claim_rewards("alice", pid)

    assert e.value.reason == "reward_reserve_empty"
    assert h.engine.snapshot() == before
    assert h.engine.pending_rewards(pid, "alice") == 100


def test_compound_on_mismatched_assets_leaves_balances_unchanged(h) -> None:
    pid = h.add_pool(reward_rate=10)
    h.fund_user("alice", 100)
    h.fund_rewards(1_000)
    h.engine.stake("alice", pid, 100)
    h.clock.advance(10)

    before = h.engine.snapshot()
    balances = (h.stake_token.balance_of("alice"), h.reward_token.balance_of("alice"), h.reward_token.balance_of(h.ENGINE))

    with pytest.raises(AssetMismatch) as e:
        h.engine.compound("alice", pid)

    assert e.value.code == "asset_mismatch"
    assert h.engine.snapshot() == before
    assert (h.stake_token.balance_of("alice"), h.reward_token.balance_of("alice"), h.reward_token.balance_of(h.ENGINE)) == balances


def test_compound_reinvests_without_transfers(h) -> None:
    pid = h.add_pool(staking_asset="STAKE", reward_asset="STAKE", reward_rate=10)
    h.fund_user("alice", 100)
    h.fund_rewards(10_000, token=h.stake_token)

    h.engine.stake("alice", pid, 100)
    h.clock.advance(100)
    engine_before = h.stake_token.balance_of(h.ENGINE)

    out = h.engine.compound("alice", pid)

    assert out["compounded"] == 1000
    assert out["principal"] == 1100
    assert h.stake_token.balance_of(h.ENGINE) == engine_before
    assert h.stake_token.balance_of("alice") == 0
    assert h.engine.get_pool_info(pid)["total_staked"] == 1100
    assert h.engine.pending_rewards(pid, "alice") == 0
    assert h.engine.invariant_violations() == []
    assert h.sink.of_type(EventType.COMPOUNDED)[0].amounts == {"amount": 1000}

    h.clock.advance(11)
    assert h.engine.pending_rewards(pid, "alice") == 110


def test_same_asset_reserve_never_pays_out_principal(h) -> None:
    pid = h.add_pool(staking_asset="STAKE", reward_asset="STAKE", reward_rate=10)
    h.fund_user("alice", 100)
    h.fund_user("bob", 100)

    h.engine.stake("alice", pid, 100)
    h.engine.stake("bob", pid, 100)
    h.clock.advance(100)

    # No reserve beyond principal: reward payout is clamped to zero.
    with pytest.raises(NoRewardsDue):
        h.engine.compound("alice", pid)
    out = h.engine.withdraw("alice", pid, 100)
    assert out["reward_paid"] == 0
    assert h.stake_token.balance_of(h.ENGINE) == 100
    assert h.engine.get_pool_info(pid)["total_staked"] == 100


def test_rate_change_applies_old_rate_up_to_the_change(h) -> None:
    pid = h.add_pool(reward_rate=10)
    h.fund_user("alice", 100)
    h.fund_rewards(1_000_000)

    h.engine.stake("alice", pid, 100)
    h.clock.advance(50)
    out = h.engine.update_rate(h.OPERATOR, pid, 20)
    assert (out["old_rate"], out["new_rate"]) == (10, 20)

    h.clock.advance(50)
    assert h.engine.pending_rewards(pid, "alice") == 50 * 10 + 50 * 20


def test_pending_query_does_not_mutate_pool(h) -> None:
    pid = h.add_pool(reward_rate=10)
    h.fund_user("alice", 100)
    h.engine.stake("alice", pid, 100)
    h.clock.advance(33)

    before = h.engine.get_pool_info(pid)
    a = h.engine.pending_rewards(pid, "alice")
    b = h.engine.pending_rewards(pid, "alice")
    after = h.engine.get_pool_info(pid)

    assert a == b == 330
    assert before["acc_reward_per_share"] == after["acc_reward_per_share"]
    assert before["last_update_time"] == after["last_update_time"]


def test_apy_in_basis_points(h) -> None:
    pid = h.add_pool(reward_rate=1)
    assert h.engine.calculate_apy(pid) == 0

    h.fund_user("alice", 31_536_000)
    h.engine.stake("alice", pid, 31_536_000)
    # one unit/s over a year on a year's worth of principal = 100%
    assert h.engine.calculate_apy(pid) == 10_000
    assert h.engine.get_pool_info(pid)["apy_bps"] == 10_000

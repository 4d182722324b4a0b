# tests/test_engine_atomicity.py
from __future__ import annotations

import json
import logging

import pytest

from stakeledger.ledger.constants import MAX_AMOUNT
from stakeledger.runtime.errors import ArithmeticOverflow, NoRewardsDue, ReentrantCall, TransferFailed
from stakeledger.runtime.token_ledger import InMemoryToken, TransferResult
from stakeledger.runtime.transfers import TransferPlan


def test_failed_pull_leaves_no_trace(h) -> None:
    pid = h.add_pool()
    h.stake_token.mint("alice", 100)  # no allowance for the engine
    events_before = len(h.sink.events)
    before = h.engine.snapshot()

    with pytest.raises(TransferFailed) as e:
        h.engine.stake("alice", pid, 100)

    assert e.value.reason == "insufficient_allowance"
    assert h.engine.snapshot() == before
    assert h.engine.stakes.get(pid, "alice") is None
    assert len(h.sink.events) == events_before
    assert h.stake_token.balance_of("alice") == 100


def test_failed_push_rolls_back_withdraw(h) -> None:
    pid = h.add_pool()
    h.fund_user("alice", 100)
    h.engine.stake("alice", pid, 100)
    before = h.engine.snapshot()

    h.stake_token.freeze("alice")
    with pytest.raises(TransferFailed) as e:
        h.engine.withdraw("alice", pid, 100)

    assert e.value.reason == "account_frozen"
    assert h.engine.snapshot() == before
    assert h.stake_token.balance_of(h.ENGINE) == 100

    h.stake_token.unfreeze("alice")
    assert h.engine.withdraw("alice", pid, 100)["received"] == 100


def test_failed_reward_push_refunds_the_stake_pull(h) -> None:
    pid = h.add_pool(reward_rate=10)
    h.fund_user("alice", 200)
    h.fund_rewards(1_000)
    h.engine.stake("alice", pid, 100)
    h.clock.advance(10)
    before = h.engine.snapshot()

    h.reward_token.freeze("alice")
    with pytest.raises(TransferFailed):
        h.engine.stake("alice", pid, 100)

    assert h.engine.snapshot() == before
    assert h.stake_token.balance_of("alice") == 100
    assert h.stake_token.balance_of(h.ENGINE) == 100
    assert h.reward_token.balance_of(h.ENGINE) == 1_000


def test_overflow_aborts_operation_without_state_change(h) -> None:
    pid = h.add_pool(reward_rate=MAX_AMOUNT)
    h.fund_user("alice", 1)
    h.engine.stake("alice", pid, 1)
    h.clock.advance(2)
    before = h.engine.snapshot()

    with pytest.raises(ArithmeticOverflow):
        h.engine.withdraw("alice", pid, 1)
    with pytest.raises(ArithmeticOverflow):
        h.engine.pending_rewards(pid, "alice")

    assert h.engine.snapshot() == before


def test_reentrant_withdraw_from_token_callback_is_rejected(h) -> None:
    pid = h.add_pool(reward_rate=10)
    h.fund_user("alice", 100)
    h.fund_rewards(1_000)
    h.engine.stake("alice", pid, 100)
    h.clock.advance(10)

    seen: list[BaseException] = []
    observed_principal: list[int] = []

    def _reenter(sender: str, to: str, amount: int) -> None:
        if to != "alice" or seen:
            return
        # State is already settled when the engine pays out.
        observed_principal.append(h.engine.get_user_info(pid, "alice")["amount"])
        try:
            h.engine.withdraw("alice", pid, 100)
        except ReentrantCall as e:
            seen.append(e)

    h.stake_token.on_transfer = _reenter
    out = h.engine.withdraw("alice", pid, 100)

    assert out["received"] == 100
    assert len(seen) == 1
    assert seen[0].code == "reentrant_call"
    assert observed_principal == [0]
    assert h.stake_token.balance_of("alice") == 100
    assert h.stake_token.balance_of(h.ENGINE) == 0
    assert h.engine.get_pool_info(pid)["total_staked"] == 0
    assert h.engine.invariant_violations() == []


def test_engine_is_usable_after_a_rejected_reentry(h) -> None:
    pid = h.add_pool()
    h.fund_user("alice", 100)
    h.fund_user("bob", 50)

    def _reenter(sender: str, to: str, amount: int) -> None:
        with pytest.raises(ReentrantCall):
            h.engine.stake("bob", pid, 50)

    h.stake_token.on_transfer = _reenter
    h.engine.stake("alice", pid, 100)
    h.stake_token.on_transfer = None

    h.engine.stake("bob", pid, 50)
    assert h.engine.get_pool_info(pid)["total_staked"] == 150


def test_preflight_rejects_plan_the_engine_cannot_cover(h) -> None:
    plan = TransferPlan()
    plan.push("STAKE", "alice", 10, "principal")
    with pytest.raises(TransferFailed) as e:
        plan.execute({"STAKE": h.stake_token.client(h.ENGINE)}, h.ENGINE)
    assert e.value.reason == "engine_balance_insufficient"


def test_total_staked_matches_entries_through_a_mixed_sequence(h) -> None:
    same = h.add_pool(staking_asset="STAKE", reward_asset="STAKE", reward_rate=2, lock_duration=100, penalty_bps=250)
    other = h.add_pool(reward_rate=5)
    h.fund_rewards(10_000, token=h.stake_token)
    h.fund_rewards(10_000)
    for u in ("alice", "bob", "carol"):
        h.fund_user(u, 1_000)

    steps = [
        ("stake", "alice", same, 300),
        ("stake", "bob", other, 200),
        ("stake", "carol", same, 50),
        ("compound", "alice", same, None),
        ("withdraw", "carol", same, 20),
        ("stake", "alice", other, 400),
        ("claim", "bob", other, None),
        ("withdraw", "alice", same, 100),
        ("withdraw", "bob", other, 200),
    ]
    for op, user, pid, amount in steps:
        h.clock.advance(17)
        if op == "stake":
            h.engine.stake(user, pid, amount)
        elif op == "withdraw":
            h.engine.withdraw(user, pid, amount)
        elif op == "claim":
            h.engine.claim_rewards(user, pid)
        else:
            h.engine.compound(user, pid)
        assert h.engine.invariant_violations() == []


def test_uncaught_reentry_reverts_the_pull_and_strands_nothing(h) -> None:
    pid = h.add_pool(staking_asset="STAKE", reward_asset="STAKE", reward_rate=1)
    h.fund_user("alice", 100)
    h.fund_user("bob", 10)

    def _reenter(sender: str, to: str, amount: int) -> None:
        if sender == "alice":
            h.engine.withdraw("alice", pid, 100)

    h.stake_token.on_transfer = _reenter
    with pytest.raises(ReentrantCall):
        h.engine.stake("alice", pid, 100)
    h.stake_token.on_transfer = None

    assert h.stake_token.balance_of("alice") == 100
    assert h.stake_token.balance_of(h.ENGINE) == 0
    assert h.stake_token.allowance("alice", h.ENGINE) == 100
    assert h.engine.stakes.get(pid, "alice") is None
    assert h.engine.get_pool_info(pid)["total_staked"] == 0

    # Nothing left behind that could be paid out as reward.
    h.engine.stake("bob", pid, 10)
    h.clock.advance(100)
    with pytest.raises(NoRewardsDue) as e:
        h.engine.claim_rewards("bob", pid)
    assert e.value.reason == "reward_reserve_empty"


def test_token_hook_failure_reverts_the_transfer() -> None:
    tok = InMemoryToken("STAKE")
    tok.mint("alice", 50)

    tok.mint("bob", 5)
    tok.approve("bob", "carol", 5)

    def _hook(sender: str, to: str, amount: int) -> None:
        tok.mint("carol", 7)
        tok.approve("bob", "carol", 0)
        raise RuntimeError("receiver rejected")

    tok.on_transfer = _hook
    with pytest.raises(RuntimeError):
        tok.move("alice", "bob", 20)

    assert tok.balance_of("alice") == 50
    assert tok.balance_of("bob") == 5
    assert tok.balance_of("carol") == 0
    assert tok.allowance("bob", "carol") == 5


class _RaiseAfterMove:
    """Ledger whose first `fail_on` call completes the movement and then raises."""

    def __init__(self, token: InMemoryToken, holder: str, fail_on: str) -> None:
        self.inner = token.client(holder)
        self.fail_on = fail_on

    def _maybe_fail(self, kind: str) -> None:
        if self.fail_on == kind:
            self.fail_on = ""
            raise RuntimeError("callback failed")

    def transfer(self, to: str, amount: int) -> TransferResult:
        res = self.inner.transfer(to, amount)
        self._maybe_fail("push")
        return res

    def transfer_from(self, owner: str, to: str, amount: int) -> TransferResult:
        res = self.inner.transfer_from(owner, to, amount)
        self._maybe_fail("pull")
        return res

    def balance_of(self, account: str) -> int:
        return self.inner.balance_of(account)


def test_plan_refunds_a_pull_that_moved_before_raising(h) -> None:
    h.fund_user("alice", 40)
    ledger = _RaiseAfterMove(h.stake_token, h.ENGINE, fail_on="pull")
    plan = TransferPlan()
    plan.pull("STAKE", "alice", 40, "stake")

    with pytest.raises(RuntimeError):
        plan.execute({"STAKE": ledger}, h.ENGINE)

    assert h.stake_token.balance_of("alice") == 40
    assert h.stake_token.balance_of(h.ENGINE) == 0


def test_plan_reports_a_push_that_moved_before_raising(h, caplog) -> None:
    h.fund_rewards(30, token=h.stake_token)
    h.fund_user("bob", 5)
    ledger = _RaiseAfterMove(h.stake_token, h.ENGINE, fail_on="push")
    plan = TransferPlan()
    plan.pull("STAKE", "bob", 5, "stake")
    plan.push("STAKE", "alice", 30, "reward")

    with caplog.at_level(logging.ERROR, logger="stakeledger.transfers"):
        with pytest.raises(RuntimeError):
            plan.execute({"STAKE": ledger}, h.ENGINE)

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "partial_interaction"
    assert [p["counterparty"] for p in payload["pushed"]] == ["alice"]
    # The pull is still returned to bob.
    assert h.stake_token.balance_of("bob") == 5

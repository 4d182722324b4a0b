# src/stakeledger/runtime/engine.py
from __future__ import annotations

"""Staking engine: user operations, admin operations and queries.

Every mutating operation runs the same way:

  1) guard: take the single-writer lock and the non-reentrant busy flag
  2) checks: arguments, pause state, pool state, authorization
  3) accumulator advance for the pool, then stake-ledger effects
  4) interactions: a TransferPlan built from the settled state is executed last
  5) commit: metrics are recorded and buffered events go to the sink; a sink
     that raises is logged and counted, the operation stays committed

Any exception in 2-4 restores every pool/entry the operation touched, so a
failed operation leaves no trace. A token that calls back into the engine
mid-transfer hits the busy flag and gets ReentrantCall.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Set, Tuple

from stakeledger.ledger import accumulator
from stakeledger.ledger.constants import BPS_DENOMINATOR, SECONDS_PER_YEAR, TREASURY_ACCOUNT_ID
from stakeledger.ledger.fixed_point import as_amount, bps_of, checked_add, checked_sub, mul_div
from stakeledger.ledger.registry import PoolRegistry
from stakeledger.ledger.stakes import StakeLedger
from stakeledger.ledger.types import Pool, PoolConfig, StakeEntry
from stakeledger.runtime import metrics
from stakeledger.runtime.auth import Authorizer
from stakeledger.runtime.errors import (
    AssetMismatch,
    BelowMinimum,
    EmergencyDisabled,
    EnginePaused,
    InsufficientStake,
    InvalidAmount,
    InvalidConfig,
    NoRewardsDue,
    PoolInactive,
    ReentrantCall,
    StakingError,
)
from stakeledger.runtime.events import EventSink, EventType, LoggingEventSink, StakingEvent
from stakeledger.runtime.runtime_logging import log_event
from stakeledger.runtime.token_ledger import TokenLedger
from stakeledger.runtime.transfers import TransferPlan

Json = Dict[str, Any]


def _system_clock() -> int:
    return int(time.time())


class _Operation:
    """Per-operation scratch: saved copies for rollback, events, transfers."""

    def __init__(self, engine: "StakingEngine", name: str, now: int) -> None:
        self.engine = engine
        self.name = name
        self.now = now
        self.plan = TransferPlan()
        self.events: List[StakingEvent] = []
        self.pools_touched: Set[int] = set()
        self.tallies: List[Tuple[str, int, int]] = []
        self._saved_pools: Dict[int, Pool] = {}
        self._saved_entries: Dict[Tuple[int, str], Optional[StakeEntry]] = {}

    def pool(self, pool_id: int) -> Pool:
        reg = self.engine.registry
        pool = reg.get(pool_id)
        if pool.pool_id not in self._saved_pools:
            self._saved_pools[pool.pool_id] = reg.copy_of(pool.pool_id)
        self.pools_touched.add(pool.pool_id)
        return pool

    def entry(self, pool_id: int, user: str) -> StakeEntry:
        stakes = self.engine.stakes
        key = (int(pool_id), str(user))
        if key not in self._saved_entries:
            self._saved_entries[key] = stakes.copy_of(*key)
        return stakes.get_or_create(*key)

    def emit(self, t: EventType, pool_id: Optional[int], user: str, **amounts: int) -> None:
        self.events.append(StakingEvent(t, pool_id, str(user), {k: int(v) for k, v in amounts.items()}, self.now))

    def tally(self, counter: str, pool_id: int, amount: int) -> None:
        """Queue a per-pool counter increment, applied only on commit."""
        if amount > 0:
            self.tallies.append((counter, pool_id, int(amount)))

    def rollback(self) -> None:
        for saved in self._saved_pools.values():
            self.engine.registry.restore(saved)
        for (pool_id, user), saved in self._saved_entries.items():
            self.engine.stakes.restore(pool_id, user, saved)


class StakingEngine:
    """Share-based staking ledger over one or more pools."""

    def __init__(
        self,
        *,
        assets: Mapping[str, TokenLedger],
        engine_account: str,
        authorizer: Authorizer,
        treasury: str = TREASURY_ACCOUNT_ID,
        clock: Optional[Callable[[], int]] = None,
        events: Optional[EventSink] = None,
        emergency_withdraw_enabled: bool = False,
    ) -> None:
        if not str(engine_account or "").strip():
            raise InvalidConfig("engine_account_required")
        if not str(treasury or "").strip():
            raise InvalidConfig("treasury_required")

        self.registry = PoolRegistry()
        self.stakes = StakeLedger()
        self.authorizer = authorizer
        self.engine_account = str(engine_account)

        self._assets: Dict[str, TokenLedger] = dict(assets)
        self._treasury = str(treasury)
        self._clock = clock or _system_clock
        self._events: EventSink = events if events is not None else LoggingEventSink()
        self._emergency_withdraw_enabled = bool(emergency_withdraw_enabled)
        self._paused = False

        self._lock = threading.RLock()
        self._busy = False
        self._logger = logging.getLogger("stakeledger.engine")

    # ---- Properties ----

    @property
    def treasury(self) -> str:
        return self._treasury

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def emergency_withdraw_enabled(self) -> bool:
        return self._emergency_withdraw_enabled

    @property
    def assets(self) -> List[str]:
        return sorted(self._assets)

    def now(self) -> int:
        t = int(self._clock())
        if t < 0:
            raise InvalidConfig("clock_before_epoch", {"now": t})
        return t

    # ---- Operation scope ----

    @contextmanager
    def _operation(self, name: str) -> Iterator[_Operation]:
        with self._lock:
            if self._busy:
                metrics.record_operation(name, "reentrant_rejected")
                raise ReentrantCall(details={"op": name})
            op = _Operation(self, name, self.now())
            self._busy = True
            try:
                yield op
            except BaseException as e:
                op.rollback()
                metrics.record_operation(name, "failed")
                fields: Json = {"op": name}
                if isinstance(e, StakingError):
                    fields.update({"code": e.code, "reason": e.reason})
                else:
                    fields["error"] = repr(e)
                log_event(self._logger, "op_failed", level=logging.WARNING, **fields)
                raise
            finally:
                self._busy = False

            self._commit_observability(op)

    def _commit_observability(self, op: _Operation) -> None:
        """Metrics and events for a committed operation. Never fails the operation."""
        metrics.record_operation(op.name, "ok")
        metrics.set_gauge("pools", len(self.registry))
        for pool_id in sorted(op.pools_touched):
            pool = self.registry.get(pool_id)
            metrics.record_pool(
                pool_id, total_staked=pool.total_staked, reward_rate=pool.reward_rate, active=pool.active
            )
        for counter, pool_id, amount in op.tallies:
            metrics.inc_counter(counter, amount, pool_id=pool_id)

        for ev in op.events:
            try:
                self._events.emit(ev)
            except Exception as e:
                metrics.inc_counter("event_sink_errors_total")
                log_event(
                    self._logger,
                    "event_sink_failed",
                    level=logging.ERROR,
                    op=op.name,
                    event_type=ev.type.value,
                    pool_id=ev.pool_id,
                    user=ev.user,
                    error=repr(e),
                )

    def _interact(self, op: _Operation) -> None:
        op.plan.execute(self._assets, self.engine_account)

    # ---- Shared checks / helpers ----

    def _require_not_paused(self) -> None:
        if self._paused:
            raise EnginePaused()

    @staticmethod
    def _require_positive(amount: Any) -> int:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount(details={"amount": amount})
        return as_amount(amount, field="amount")

    def _reward_reserve(self, op: _Operation, asset: str) -> int:
        """Reward-asset units the engine can pay out without touching principal."""
        balance = int(self._assets[asset].balance_of(self.engine_account))
        held = self.registry.staked_in_asset(asset) + op.plan.planned_out(asset)
        return max(balance - held, 0)

    def _settle_reward(self, op: _Operation, pool: Pool, entry: StakeEntry, *, user: str) -> Tuple[int, int]:
        """Queue payout of everything `entry` has accrued. Returns (due, paid).

        Must run after the pool is advanced and before entry.amount changes.
        Pays min(due, reserve); any shortfall is forfeited and logged.
        """
        due = accumulator.settled(pool, entry)
        if due == 0:
            return 0, 0
        paid = min(due, self._reward_reserve(op, pool.reward_asset))
        if paid < due:
            log_event(
                self._logger,
                "reward_shortfall",
                level=logging.WARNING,
                pool_id=pool.pool_id,
                user=user,
                due=due,
                paid=paid,
            )
        entry.lifetime_claimed = checked_add(entry.lifetime_claimed, paid)
        op.plan.push(pool.reward_asset, user, paid, "reward")
        op.tally("rewards_paid_total", pool.pool_id, paid)
        op.tally("rewards_forfeited_total", pool.pool_id, due - paid)
        return due, paid

    @staticmethod
    def _penalty(pool: Pool, amount: int, entry: StakeEntry, now: int) -> int:
        if pool.penalty_bps > 0 and entry.is_locked(now):
            return bps_of(amount, pool.penalty_bps)
        return 0

    # ---- User operations ----

    def stake(self, caller: str, pool_id: int, amount: int) -> Json:
        with self._operation("stake") as op:
            self._require_not_paused()
            amt = self._require_positive(amount)
            pool = op.pool(pool_id)
            if amt < pool.min_stake:
                raise BelowMinimum(details={"amount": amt, "min_stake": pool.min_stake})
            if not pool.active:
                raise PoolInactive(details={"pool_id": pool.pool_id})

            accumulator.advance(pool, op.now)
            entry = op.entry(pool.pool_id, caller)

            paid = 0
            if entry.amount > 0:
                _, paid = self._settle_reward(op, pool, entry, user=caller)

            entry.amount = checked_add(entry.amount, amt)
            pool.total_staked = checked_add(pool.total_staked, amt)
            if pool.lock_duration > 0:
                # Re-locks the whole balance, including principal staked earlier.
                entry.lock_expiry = checked_add(op.now, pool.lock_duration)
            entry.resync(pool.acc_reward_per_share)

            op.plan.pull(pool.staking_asset, caller, amt, "stake")
            self._interact(op)

            if paid > 0:
                op.emit(EventType.REWARD_CLAIMED, pool.pool_id, caller, amount=paid)
            op.emit(EventType.STAKED, pool.pool_id, caller, amount=amt, lock_expiry=entry.lock_expiry)

            return {
                "applied": "STAKE",
                "pool_id": pool.pool_id,
                "user": caller,
                "amount": amt,
                "reward_paid": paid,
                "lock_expiry": entry.lock_expiry,
                "principal": entry.amount,
            }

    def withdraw(self, caller: str, pool_id: int, amount: int) -> Json:
        with self._operation("withdraw") as op:
            self._require_not_paused()
            amt = self._require_positive(amount)
            pool = op.pool(pool_id)

            accumulator.advance(pool, op.now)
            entry = op.entry(pool.pool_id, caller)
            if amt > entry.amount:
                raise InsufficientStake(details={"amount": amt, "principal": entry.amount})

            _, paid = self._settle_reward(op, pool, entry, user=caller)

            penalty = self._penalty(pool, amt, entry, op.now)
            entry.amount = checked_sub(entry.amount, amt)
            pool.total_staked = checked_sub(pool.total_staked, amt)
            if entry.amount == 0:
                entry.lock_expiry = 0
            entry.resync(pool.acc_reward_per_share)

            received = checked_sub(amt, penalty)
            op.plan.push(pool.staking_asset, caller, received, "principal")
            op.plan.push(pool.staking_asset, self._treasury, penalty, "penalty")
            op.tally("penalties_total", pool.pool_id, penalty)
            self._interact(op)

            if paid > 0:
                op.emit(EventType.REWARD_CLAIMED, pool.pool_id, caller, amount=paid)
            if penalty > 0:
                op.emit(EventType.PENALTY_PAID, pool.pool_id, caller, amount=penalty)
            op.emit(EventType.WITHDRAWN, pool.pool_id, caller, amount=amt, received=received, penalty=penalty)

            return {
                "applied": "WITHDRAW",
                "pool_id": pool.pool_id,
                "user": caller,
                "amount": amt,
                "received": received,
                "penalty": penalty,
                "reward_paid": paid,
                "principal": entry.amount,
            }

    def claim_rewards(self, caller: str, pool_id: int) -> Json:
        with self._operation("claim") as op:
            self._require_not_paused()
            pool = op.pool(pool_id)
            if not pool.active:
                raise PoolInactive(details={"pool_id": pool.pool_id})

            accumulator.advance(pool, op.now)
            entry = op.entry(pool.pool_id, caller)
            if entry.amount == 0:
                raise NoRewardsDue("no_principal", {"pool_id": pool.pool_id, "user": caller})

            due, paid = self._settle_reward(op, pool, entry, user=caller)
            if due == 0:
                raise NoRewardsDue(details={"pool_id": pool.pool_id, "user": caller})
            if paid == 0:
                raise NoRewardsDue("reward_reserve_empty", {"pool_id": pool.pool_id, "due": due})
            entry.resync(pool.acc_reward_per_share)

            self._interact(op)
            op.emit(EventType.REWARD_CLAIMED, pool.pool_id, caller, amount=paid)

            return {"applied": "CLAIM", "pool_id": pool.pool_id, "user": caller, "due": due, "reward_paid": paid}

    def compound(self, caller: str, pool_id: int) -> Json:
        with self._operation("compound") as op:
            self._require_not_paused()
            pool = op.pool(pool_id)
            if not pool.active:
                raise PoolInactive(details={"pool_id": pool.pool_id})
            if not pool.compoundable:
                raise AssetMismatch(
                    details={"staking_asset": pool.staking_asset, "reward_asset": pool.reward_asset}
                )

            accumulator.advance(pool, op.now)
            entry = op.entry(pool.pool_id, caller)
            due = accumulator.settled(pool, entry)
            if due == 0:
                raise NoRewardsDue(details={"pool_id": pool.pool_id, "user": caller})

            added = min(due, self._reward_reserve(op, pool.reward_asset))
            if added == 0:
                raise NoRewardsDue("reward_reserve_empty", {"pool_id": pool.pool_id, "due": due})
            if added < due:
                log_event(
                    self._logger,
                    "reward_shortfall",
                    level=logging.WARNING,
                    pool_id=pool.pool_id,
                    user=caller,
                    due=due,
                    paid=added,
                )

            # Internal re-investment: reserve units become principal, no transfer.
            entry.amount = checked_add(entry.amount, added)
            pool.total_staked = checked_add(pool.total_staked, added)
            entry.lifetime_claimed = checked_add(entry.lifetime_claimed, added)
            entry.resync(pool.acc_reward_per_share)
            op.tally("rewards_compounded_total", pool.pool_id, added)
            op.tally("rewards_forfeited_total", pool.pool_id, due - added)

            op.emit(EventType.COMPOUNDED, pool.pool_id, caller, amount=added)

            return {
                "applied": "COMPOUND",
                "pool_id": pool.pool_id,
                "user": caller,
                "due": due,
                "compounded": added,
                "principal": entry.amount,
            }

    def emergency_withdraw(self, caller: str, pool_id: int, *, user: Optional[str] = None) -> Json:
        """Return full principal now, forfeiting rewards.

        Allowed when the emergency flag is on. The owner may always call it,
        including on behalf of another `user` (principal still goes to `user`).
        The penalty is decided from the entry as it was before this call.
        """
        with self._operation("emergency_withdraw") as op:
            target = str(user or caller)
            if target != caller:
                self.authorizer.check(caller, "owner").require()
            elif not self._emergency_withdraw_enabled and not self.authorizer.is_owner(caller):
                raise EmergencyDisabled()

            pool = op.pool(pool_id)
            accumulator.advance(pool, op.now)
            entry = op.entry(pool.pool_id, target)

            before = replace(entry)
            if before.amount == 0:
                raise InsufficientStake("no_principal", {"pool_id": pool.pool_id, "user": target})

            penalty = self._penalty(pool, before.amount, before, op.now)
            forfeited = accumulator.settled(pool, before)
            op.tally("rewards_forfeited_total", pool.pool_id, forfeited)

            entry.amount = 0
            entry.reward_debt = 0
            entry.lock_expiry = 0
            pool.total_staked = checked_sub(pool.total_staked, before.amount)

            received = checked_sub(before.amount, penalty)
            op.plan.push(pool.staking_asset, target, received, "principal")
            op.plan.push(pool.staking_asset, self._treasury, penalty, "penalty")
            op.tally("penalties_total", pool.pool_id, penalty)
            self._interact(op)

            if penalty > 0:
                op.emit(EventType.PENALTY_PAID, pool.pool_id, target, amount=penalty)
            op.emit(
                EventType.EMERGENCY_WITHDRAWN,
                pool.pool_id,
                target,
                amount=before.amount,
                received=received,
                penalty=penalty,
                forfeited=forfeited,
            )

            return {
                "applied": "EMERGENCY_WITHDRAW",
                "pool_id": pool.pool_id,
                "user": target,
                "amount": before.amount,
                "received": received,
                "penalty": penalty,
                "forfeited_rewards": forfeited,
            }

    # ---- Admin operations ----

    def add_pool(self, caller: str, cfg: PoolConfig) -> Json:
        with self._operation("add_pool") as op:
            self.authorizer.check(caller, "operator").require()
            for asset in (cfg.staking_asset, cfg.reward_asset):
                if asset not in self._assets:
                    raise InvalidConfig("unknown_asset", {"asset": asset, "known": self.assets})
            pool = self.registry.add(cfg, now=op.now)
            op.pools_touched.add(pool.pool_id)
            op.emit(EventType.POOL_ADDED, pool.pool_id, caller, reward_rate=pool.reward_rate)
            log_event(
                self._logger,
                "pool_added",
                pool_id=pool.pool_id,
                staking_asset=pool.staking_asset,
                reward_asset=pool.reward_asset,
            )
            return {"applied": "ADD_POOL", "pool_id": pool.pool_id, "pool": pool.to_dict()}

    def update_rate(self, caller: str, pool_id: int, new_rate: int) -> Json:
        with self._operation("update_rate") as op:
            self.authorizer.check(caller, "operator").require()
            pool = op.pool(pool_id)
            old, new = self.registry.update_rate(pool.pool_id, new_rate, now=op.now)
            op.emit(EventType.POOL_RATE_UPDATED, pool.pool_id, caller, old_rate=old, new_rate=new)
            return {"applied": "UPDATE_RATE", "pool_id": pool.pool_id, "old_rate": old, "new_rate": new}

    def set_active(self, caller: str, pool_id: int, active: bool) -> Json:
        with self._operation("set_active") as op:
            self.authorizer.check(caller, "operator").require()
            pool = op.pool(pool_id)
            flag = self.registry.set_active(pool.pool_id, active)
            op.emit(EventType.POOL_ACTIVE_SET, pool.pool_id, caller, active=int(flag))
            return {"applied": "SET_ACTIVE", "pool_id": pool.pool_id, "active": flag}

    def set_treasury(self, caller: str, treasury: str) -> Json:
        with self._operation("set_treasury") as op:
            self.authorizer.check(caller, "owner").require()
            t = str(treasury or "").strip()
            if not t:
                raise InvalidConfig("treasury_required")
            self._treasury = t
            op.emit(EventType.TREASURY_SET, None, t)
            return {"applied": "SET_TREASURY", "treasury": t}

    def set_emergency_withdraw_enabled(self, caller: str, enabled: bool) -> Json:
        with self._operation("set_emergency") as op:
            self.authorizer.check(caller, "owner").require()
            self._emergency_withdraw_enabled = bool(enabled)
            op.emit(EventType.EMERGENCY_WITHDRAW_SET, None, caller, enabled=int(bool(enabled)))
            return {"applied": "SET_EMERGENCY_WITHDRAW", "enabled": self._emergency_withdraw_enabled}

    def set_operator(self, caller: str, account: str, enabled: bool) -> Json:
        with self._operation("set_operator"):
            self.authorizer.check(caller, "owner").require()
            self.authorizer.set_operator(account, enabled)
            return {"applied": "SET_OPERATOR", "account": account, "enabled": bool(enabled)}

    def pause(self, caller: str) -> Json:
        with self._operation("pause") as op:
            self.authorizer.check(caller, "owner").require()
            self._paused = True
            op.emit(EventType.PAUSED, None, caller)
            return {"applied": "PAUSE", "paused": True}

    def unpause(self, caller: str) -> Json:
        with self._operation("unpause") as op:
            self.authorizer.check(caller, "owner").require()
            self._paused = False
            op.emit(EventType.UNPAUSED, None, caller)
            return {"applied": "UNPAUSE", "paused": False}

    # ---- Queries ----

    def pending_rewards(self, pool_id: int, user: str) -> int:
        with self._lock:
            pool = self.registry.get(pool_id)
            return accumulator.pending(pool, self.stakes.peek(pool.pool_id, user), self.now())

    def get_user_info(self, pool_id: int, user: str) -> Json:
        with self._lock:
            pool = self.registry.get(pool_id)
            entry = self.stakes.peek(pool.pool_id, user)
            return {
                "pool_id": pool.pool_id,
                "user": str(user),
                "amount": entry.amount,
                "claimed": entry.lifetime_claimed,
                "lock_expiry": entry.lock_expiry,
                "pending": accumulator.pending(pool, entry, self.now()),
            }

    def get_pool_info(self, pool_id: int) -> Json:
        with self._lock:
            pool = self.registry.get(pool_id)
            out = pool.to_dict()
            out["compoundable"] = pool.compoundable
            out["apy_bps"] = self._apy(pool)
            return out

    def calculate_apy(self, pool_id: int) -> int:
        """Annualized reward rate over principal, in basis points (0 if empty)."""
        with self._lock:
            return self._apy(self.registry.get(pool_id))

    @staticmethod
    def _apy(pool: Pool) -> int:
        if pool.total_staked == 0:
            return 0
        yearly = pool.reward_rate * SECONDS_PER_YEAR
        return mul_div(yearly, BPS_DENOMINATOR, pool.total_staked)

    def pool_count(self) -> int:
        return len(self.registry)

    def user_pools(self, user: str) -> List[int]:
        with self._lock:
            return self.stakes.pools_for_user(user)

    def snapshot(self) -> Json:
        with self._lock:
            return {
                "pools": self.registry.to_dict(),
                "stakes": self.stakes.to_dict(),
                "treasury": self._treasury,
                "paused": self._paused,
                "emergency_withdraw_enabled": self._emergency_withdraw_enabled,
                "engine_account": self.engine_account,
            }

    def invariant_violations(self) -> List[Json]:
        """Pools whose total_staked disagrees with the sum of their entries."""
        out: List[Json] = []
        with self._lock:
            for pool in self.registry:
                entries_sum = self.stakes.total_for_pool(pool.pool_id)
                if entries_sum != pool.total_staked:
                    out.append(
                        {"pool_id": pool.pool_id, "total_staked": pool.total_staked, "entries_sum": entries_sum}
                    )
        return out


__all__ = ["StakingEngine"]

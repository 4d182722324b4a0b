"""stakeledger.ledger.types

Pool and stake records + strict config validation.

This module defines:
  - PoolConfig: frozen admin input for creating a pool
  - Pool: mutable per-pool configuration and accumulator state
  - StakeEntry: per (pool id, user) principal and reward bookkeeping
  - JSON interop (to_dict / from_dict) with strict int coercion
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from stakeledger.ledger.constants import MAX_AMOUNT, MAX_PENALTY_BPS
from stakeledger.ledger.fixed_point import accrued
from stakeledger.runtime.errors import InvalidConfig

Json = Dict[str, Any]


def _coerce_int(v: Any, *, field: str) -> int:
    try:
        # bool is an int subclass; disallow it explicitly
        if isinstance(v, bool):
            raise ValueError("bool is not a valid int")
        return int(v)
    except Exception as e:
        raise ValueError(f"stake ledger schema error: field '{field}' must be int-coercible (got {type(v).__name__})") from e


def _coerce_str(v: Any, *, field: str) -> str:
    if not isinstance(v, str):
        raise ValueError(f"stake ledger schema error: field '{field}' must be str (got {type(v).__name__})")
    return v


@dataclass(frozen=True)
class PoolConfig:
    staking_asset: str
    reward_asset: str
    reward_rate: int
    min_stake: int = 0
    lock_duration: int = 0
    penalty_bps: int = 0


def validate_config_amount(name: str, v: Any) -> int:
    """Admin-supplied integer setting in [0, MAX_AMOUNT], else InvalidConfig."""
    if isinstance(v, bool) or not isinstance(v, int):
        raise InvalidConfig("int_required", {"field": name, "type": type(v).__name__})
    if v < 0 or v > MAX_AMOUNT:
        raise InvalidConfig("out_of_range", {"field": name, "value": v})
    return v


def validate_pool_config(cfg: PoolConfig) -> None:
    """Fail-fast validation for admin pool input."""

    for name, asset in (("staking_asset", cfg.staking_asset), ("reward_asset", cfg.reward_asset)):
        if not isinstance(asset, str) or not asset.strip():
            raise InvalidConfig("asset_reference_required", {"field": name})

    for name, v in (
        ("reward_rate", cfg.reward_rate),
        ("min_stake", cfg.min_stake),
        ("lock_duration", cfg.lock_duration),
        ("penalty_bps", cfg.penalty_bps),
    ):
        validate_config_amount(name, v)

    if cfg.penalty_bps > MAX_PENALTY_BPS:
        raise InvalidConfig("penalty_bps_too_high", {"penalty_bps": cfg.penalty_bps, "max": MAX_PENALTY_BPS})


@dataclass
class Pool:
    pool_id: int
    staking_asset: str
    reward_asset: str
    reward_rate: int
    min_stake: int = 0
    lock_duration: int = 0
    penalty_bps: int = 0
    acc_reward_per_share: int = 0
    last_update_time: int = 0
    total_staked: int = 0
    active: bool = True

    @classmethod
    def from_config(cls, pool_id: int, cfg: PoolConfig, *, now: int) -> "Pool":
        return cls(
            pool_id=int(pool_id),
            staking_asset=cfg.staking_asset,
            reward_asset=cfg.reward_asset,
            reward_rate=int(cfg.reward_rate),
            min_stake=int(cfg.min_stake),
            lock_duration=int(cfg.lock_duration),
            penalty_bps=int(cfg.penalty_bps),
            acc_reward_per_share=0,
            last_update_time=int(now),
            total_staked=0,
            active=True,
        )

    @property
    def compoundable(self) -> bool:
        return self.staking_asset == self.reward_asset

    def to_dict(self) -> Json:
        return {
            "pool_id": self.pool_id,
            "staking_asset": self.staking_asset,
            "reward_asset": self.reward_asset,
            "reward_rate": self.reward_rate,
            "min_stake": self.min_stake,
            "lock_duration": self.lock_duration,
            "penalty_bps": self.penalty_bps,
            "acc_reward_per_share": self.acc_reward_per_share,
            "last_update_time": self.last_update_time,
            "total_staked": self.total_staked,
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, d: Json) -> "Pool":
        if not isinstance(d, dict):
            raise ValueError(f"stake ledger schema error: pool must be dict (got {type(d).__name__})")
        active = d.get("active", True)
        if not isinstance(active, bool):
            raise ValueError("stake ledger schema error: field 'active' must be bool")
        return cls(
            pool_id=_coerce_int(d.get("pool_id"), field="pool_id"),
            staking_asset=_coerce_str(d.get("staking_asset"), field="staking_asset"),
            reward_asset=_coerce_str(d.get("reward_asset"), field="reward_asset"),
            reward_rate=_coerce_int(d.get("reward_rate", 0), field="reward_rate"),
            min_stake=_coerce_int(d.get("min_stake", 0), field="min_stake"),
            lock_duration=_coerce_int(d.get("lock_duration", 0), field="lock_duration"),
            penalty_bps=_coerce_int(d.get("penalty_bps", 0), field="penalty_bps"),
            acc_reward_per_share=_coerce_int(d.get("acc_reward_per_share", 0), field="acc_reward_per_share"),
            last_update_time=_coerce_int(d.get("last_update_time", 0), field="last_update_time"),
            total_staked=_coerce_int(d.get("total_staked", 0), field="total_staked"),
            active=active,
        )


@dataclass
class StakeEntry:
    """Principal and reward debt for one user in one pool.

    `reward_debt` is the accumulator-derived entitlement already accounted for;
    unclaimed reward at the last sync point is `accrued(amount, acc) - reward_debt`.
    """

    pool_id: int
    user: str
    amount: int = 0
    reward_debt: int = 0
    lock_expiry: int = 0
    lifetime_claimed: int = 0

    def resync(self, acc_reward_per_share: int) -> None:
        self.reward_debt = accrued(self.amount, acc_reward_per_share)

    def is_locked(self, now: int) -> bool:
        return int(now) < int(self.lock_expiry)

    def to_dict(self) -> Json:
        return {
            "pool_id": self.pool_id,
            "user": self.user,
            "amount": self.amount,
            "reward_debt": self.reward_debt,
            "lock_expiry": self.lock_expiry,
            "lifetime_claimed": self.lifetime_claimed,
        }

    @classmethod
    def from_dict(cls, d: Json) -> "StakeEntry":
        if not isinstance(d, dict):
            raise ValueError(f"stake ledger schema error: entry must be dict (got {type(d).__name__})")
        return cls(
            pool_id=_coerce_int(d.get("pool_id"), field="pool_id"),
            user=_coerce_str(d.get("user"), field="user"),
            amount=_coerce_int(d.get("amount", 0), field="amount"),
            reward_debt=_coerce_int(d.get("reward_debt", 0), field="reward_debt"),
            lock_expiry=_coerce_int(d.get("lock_expiry", 0), field="lock_expiry"),
            lifetime_claimed=_coerce_int(d.get("lifetime_claimed", 0), field="lifetime_claimed"),
        )


__all__ = ["PoolConfig", "Pool", "StakeEntry", "validate_pool_config", "validate_config_amount", "Json"]

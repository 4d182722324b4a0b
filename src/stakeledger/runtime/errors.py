from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class StakingError(Exception):
    """Canonical error type for staking engine failures.

    Every failure is local and synchronous: when one of these escapes an
    engine operation, no state from that operation has been persisted.
    """

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class InvalidAmount(StakingError):
    def __init__(self, reason: str = "amount_must_be_positive", details: Any | None = None) -> None:
        super().__init__("invalid_amount", reason, details)


class BelowMinimum(StakingError):
    def __init__(self, reason: str = "amount_below_min_stake", details: Any | None = None) -> None:
        super().__init__("below_minimum", reason, details)


class PoolInactive(StakingError):
    def __init__(self, reason: str = "pool_not_active", details: Any | None = None) -> None:
        super().__init__("pool_inactive", reason, details)


class PoolNotFound(StakingError):
    def __init__(self, reason: str = "unknown_pool_id", details: Any | None = None) -> None:
        super().__init__("pool_not_found", reason, details)


class InsufficientStake(StakingError):
    def __init__(self, reason: str = "amount_exceeds_principal", details: Any | None = None) -> None:
        super().__init__("insufficient_stake", reason, details)


class NoRewardsDue(StakingError):
    def __init__(self, reason: str = "nothing_pending", details: Any | None = None) -> None:
        super().__init__("no_rewards_due", reason, details)


class AssetMismatch(StakingError):
    def __init__(self, reason: str = "staking_asset_differs_from_reward_asset", details: Any | None = None) -> None:
        super().__init__("asset_mismatch", reason, details)


class TransferFailed(StakingError):
    def __init__(self, reason: str = "token_transfer_rejected", details: Any | None = None) -> None:
        super().__init__("transfer_failed", reason, details)


class Unauthorized(StakingError):
    def __init__(self, reason: str = "caller_not_authorized", details: Any | None = None) -> None:
        super().__init__("unauthorized", reason, details)


class ArithmeticOverflow(StakingError):
    def __init__(self, reason: str = "value_out_of_range", details: Any | None = None) -> None:
        super().__init__("arithmetic_overflow", reason, details)


class InvalidConfig(StakingError):
    def __init__(self, reason: str = "invalid_pool_config", details: Any | None = None) -> None:
        super().__init__("invalid_config", reason, details)


class EnginePaused(StakingError):
    def __init__(self, reason: str = "engine_paused", details: Any | None = None) -> None:
        super().__init__("paused", reason, details)


class EmergencyDisabled(StakingError):
    def __init__(self, reason: str = "emergency_withdraw_disabled", details: Any | None = None) -> None:
        super().__init__("emergency_disabled", reason, details)


class ReentrantCall(StakingError):
    def __init__(self, reason: str = "operation_in_progress", details: Any | None = None) -> None:
        super().__init__("reentrant_call", reason, details)


__all__ = [
    "StakingError",
    "InvalidAmount",
    "BelowMinimum",
    "PoolInactive",
    "PoolNotFound",
    "InsufficientStake",
    "NoRewardsDue",
    "AssetMismatch",
    "TransferFailed",
    "Unauthorized",
    "ArithmeticOverflow",
    "InvalidConfig",
    "EnginePaused",
    "EmergencyDisabled",
    "ReentrantCall",
]

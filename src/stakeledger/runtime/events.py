# src/stakeledger/runtime/events.py
from __future__ import annotations

"""Engine events and the sinks that receive them.

Events are buffered while an operation runs and handed to the sink only after
the operation has committed, so a failed operation emits nothing.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from stakeledger.runtime.runtime_logging import log_event

Json = Dict[str, Any]


class EventType(str, Enum):
    STAKED = "Staked"
    WITHDRAWN = "Withdrawn"
    REWARD_CLAIMED = "RewardClaimed"
    COMPOUNDED = "Compounded"
    EMERGENCY_WITHDRAWN = "EmergencyWithdrawn"
    PENALTY_PAID = "PenaltyPaid"
    POOL_ADDED = "PoolAdded"
    POOL_RATE_UPDATED = "PoolRateUpdated"
    POOL_ACTIVE_SET = "PoolActiveSet"
    TREASURY_SET = "TreasurySet"
    EMERGENCY_WITHDRAW_SET = "EmergencyWithdrawSet"
    PAUSED = "Paused"
    UNPAUSED = "Unpaused"


@dataclass(frozen=True)
class StakingEvent:
    type: EventType
    pool_id: Optional[int]
    user: str
    amounts: Dict[str, int] = field(default_factory=dict)
    ts: int = 0

    def to_dict(self) -> Json:
        return {
            "type": self.type.value,
            "pool_id": self.pool_id,
            "user": self.user,
            "amounts": dict(self.amounts),
            "ts": self.ts,
        }


class EventSink(Protocol):
    def emit(self, event: StakingEvent) -> None: ...


class RecordingEventSink:
    """Keeps every event in memory, in emission order."""

    def __init__(self) -> None:
        self.events: List[StakingEvent] = []

    def emit(self, event: StakingEvent) -> None:
        self.events.append(event)

    def of_type(self, t: EventType) -> List[StakingEvent]:
        return [e for e in self.events if e.type == t]


class LoggingEventSink:
    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("stakeledger.events")

    def emit(self, event: StakingEvent) -> None:
        log_event(
            self._logger,
            event.type.value,
            pool_id=event.pool_id,
            user=event.user,
            amounts=dict(event.amounts),
            ts=event.ts,
        )


__all__ = ["EventType", "StakingEvent", "EventSink", "RecordingEventSink", "LoggingEventSink"]

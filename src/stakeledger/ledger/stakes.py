from __future__ import annotations

"""Per-user, per-pool stake records.

Entries are created lazily on first stake and never removed: a full withdrawal
leaves a zero-amount entry behind so lifetime_claimed history survives.
"""

from dataclasses import replace
from typing import Dict, Iterator, List, Optional, Tuple

from stakeledger.ledger.types import Json, StakeEntry

_Key = Tuple[int, str]


class StakeLedger:
    def __init__(self) -> None:
        self._entries: Dict[_Key, StakeEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[StakeEntry]:
        return iter(self._entries.values())

    def get(self, pool_id: int, user: str) -> Optional[StakeEntry]:
        return self._entries.get((int(pool_id), str(user)))

    def peek(self, pool_id: int, user: str) -> StakeEntry:
        """Return the stored entry, or a detached zero entry for read paths."""
        e = self.get(pool_id, user)
        return e if e is not None else StakeEntry(pool_id=int(pool_id), user=str(user))

    def get_or_create(self, pool_id: int, user: str) -> StakeEntry:
        key = (int(pool_id), str(user))
        e = self._entries.get(key)
        if e is None:
            e = StakeEntry(pool_id=key[0], user=key[1])
            self._entries[key] = e
        return e

    def copy_of(self, pool_id: int, user: str) -> Optional[StakeEntry]:
        e = self.get(pool_id, user)
        return replace(e) if e is not None else None

    def restore(self, pool_id: int, user: str, saved: Optional[StakeEntry]) -> None:
        """Put back a copy taken with copy_of (None means the entry did not exist)."""
        key = (int(pool_id), str(user))
        if saved is None:
            self._entries.pop(key, None)
        else:
            self._entries[key] = saved

    def entries_for_pool(self, pool_id: int) -> List[StakeEntry]:
        pid = int(pool_id)
        return [e for (p, _), e in sorted(self._entries.items()) if p == pid]

    def total_for_pool(self, pool_id: int) -> int:
        return sum(e.amount for e in self.entries_for_pool(pool_id))

    def pools_for_user(self, user: str) -> List[int]:
        u = str(user)
        return sorted(p for (p, who), e in self._entries.items() if who == u and e.amount > 0)

    def to_dict(self) -> List[Json]:
        return [e.to_dict() for _, e in sorted(self._entries.items())]

    @classmethod
    def from_dict(cls, rows: List[Json]) -> "StakeLedger":
        led = cls()
        for row in rows or []:
            e = StakeEntry.from_dict(row)
            led._entries[(e.pool_id, e.user)] = e
        return led


__all__ = ["StakeLedger"]

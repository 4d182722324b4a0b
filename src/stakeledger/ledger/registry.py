from __future__ import annotations

"""Pool registry: an owned arena of pools indexed by sequential id.

Pools are never deleted; archiving is `active=False`. All pool mutation other
than accumulator/principal bookkeeping goes through these methods.
"""

from dataclasses import replace
from typing import Iterator, List, Tuple

from stakeledger.ledger import accumulator
from stakeledger.ledger.types import Json, Pool, PoolConfig, validate_config_amount, validate_pool_config
from stakeledger.runtime.errors import PoolNotFound


class PoolRegistry:
    def __init__(self) -> None:
        self._pools: List[Pool] = []

    def __len__(self) -> int:
        return len(self._pools)

    def __iter__(self) -> Iterator[Pool]:
        return iter(self._pools)

    def get(self, pool_id: int) -> Pool:
        if isinstance(pool_id, bool) or not isinstance(pool_id, int):
            raise PoolNotFound("pool_id_must_be_int", {"pool_id": pool_id})
        if pool_id < 0 or pool_id >= len(self._pools):
            raise PoolNotFound(details={"pool_id": pool_id, "pool_count": len(self._pools)})
        return self._pools[pool_id]

    def add(self, cfg: PoolConfig, *, now: int) -> Pool:
        validate_pool_config(cfg)
        pool = Pool.from_config(len(self._pools), cfg, now=now)
        self._pools.append(pool)
        return pool

    def update_rate(self, pool_id: int, new_rate: int, *, now: int) -> Tuple[int, int]:
        """Change a pool's reward rate. Returns (old_rate, new_rate).

        The accumulator is advanced first so the old rate covers everything up
        to `now` and the new rate applies only from `now` on.
        """
        pool = self.get(pool_id)
        rate = validate_config_amount("reward_rate", new_rate)
        accumulator.advance(pool, now)
        old = pool.reward_rate
        pool.reward_rate = rate
        return old, rate

    def set_active(self, pool_id: int, active: bool) -> bool:
        pool = self.get(pool_id)
        pool.active = bool(active)
        return pool.active

    def staked_in_asset(self, asset: str) -> int:
        """Principal held across all pools whose staking asset is `asset`."""
        return sum(p.total_staked for p in self._pools if p.staking_asset == asset)

    def copy_of(self, pool_id: int) -> Pool:
        return replace(self.get(pool_id))

    def restore(self, saved: Pool) -> None:
        self.get(saved.pool_id)
        self._pools[saved.pool_id] = saved

    def to_dict(self) -> List[Json]:
        return [p.to_dict() for p in self._pools]

    @classmethod
    def from_dict(cls, rows: List[Json]) -> "PoolRegistry":
        reg = cls()
        for i, row in enumerate(rows or []):
            pool = Pool.from_dict(row)
            if pool.pool_id != i:
                raise ValueError(f"stake ledger schema error: pool ids must be sequential (index {i}, got {pool.pool_id})")
            reg._pools.append(pool)
        return reg


__all__ = ["PoolRegistry"]

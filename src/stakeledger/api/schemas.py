from __future__ import annotations

"""Pydantic response schemas for the query API.

These mirror the engine's query dicts; they exist for HTTP validation and a
stable OpenAPI surface.
"""

from typing import List

from pydantic import BaseModel, Field


class PoolInfo(BaseModel):
    pool_id: int
    staking_asset: str
    reward_asset: str
    reward_rate: int = Field(..., description="Reward units per second")
    min_stake: int
    lock_duration: int = Field(..., description="Seconds; 0 means no lock")
    penalty_bps: int = Field(..., description="Early-withdrawal penalty in basis points")
    acc_reward_per_share: int = Field(..., description="1e18 fixed-point accumulator")
    last_update_time: int
    total_staked: int
    active: bool
    compoundable: bool
    apy_bps: int


class PoolList(BaseModel):
    ok: bool = True
    count: int
    pools: List[PoolInfo]


class PoolResponse(BaseModel):
    ok: bool = True
    pool: PoolInfo


class ApyResponse(BaseModel):
    ok: bool = True
    pool_id: int
    apy_bps: int


class UserInfo(BaseModel):
    pool_id: int
    user: str
    amount: int
    claimed: int
    lock_expiry: int
    pending: int


class UserInfoResponse(BaseModel):
    ok: bool = True
    info: UserInfo


class PendingResponse(BaseModel):
    ok: bool = True
    pool_id: int
    user: str
    pending: int

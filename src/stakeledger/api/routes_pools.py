from __future__ import annotations

from fastapi import APIRouter, Request

from stakeledger.api.errors import ApiError
from stakeledger.api.schemas import (
    ApyResponse,
    PendingResponse,
    PoolInfo,
    PoolList,
    PoolResponse,
    UserInfo,
    UserInfoResponse,
)
from stakeledger.runtime.engine import StakingEngine

router = APIRouter()


def _engine(request: Request) -> StakingEngine:
    eng = getattr(request.app.state, "engine", None)
    if eng is None:
        raise ApiError.internal("not_ready", "engine not attached to app.state", {})
    return eng


@router.get("/pools", response_model=PoolList)
def v1_pools(request: Request) -> PoolList:
    eng = _engine(request)
    pools = [PoolInfo(**eng.get_pool_info(i)) for i in range(eng.pool_count())]
    return PoolList(count=len(pools), pools=pools)


@router.get("/pools/{pool_id}", response_model=PoolResponse)
def v1_pool_get(pool_id: int, request: Request) -> PoolResponse:
    return PoolResponse(pool=PoolInfo(**_engine(request).get_pool_info(pool_id)))


@router.get("/pools/{pool_id}/apy", response_model=ApyResponse)
def v1_pool_apy(pool_id: int, request: Request) -> ApyResponse:
    return ApyResponse(pool_id=pool_id, apy_bps=_engine(request).calculate_apy(pool_id))


@router.get("/pools/{pool_id}/users/{user}", response_model=UserInfoResponse)
def v1_user_info(pool_id: int, user: str, request: Request) -> UserInfoResponse:
    return UserInfoResponse(info=UserInfo(**_engine(request).get_user_info(pool_id, user)))


@router.get("/pools/{pool_id}/users/{user}/pending", response_model=PendingResponse)
def v1_user_pending(pool_id: int, user: str, request: Request) -> PendingResponse:
    return PendingResponse(pool_id=pool_id, user=user, pending=_engine(request).pending_rewards(pool_id, user))

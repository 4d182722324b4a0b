from __future__ import annotations

import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from stakeledger.api.errors import ApiError
from stakeledger.api.routes_health import router as health_router
from stakeledger.api.routes_pools import router as pools_router
from stakeledger.api.structured_logging import RequestLogMiddleware
from stakeledger.runtime.engine import StakingEngine
from stakeledger.runtime.engine_boot import build_engine as _build_engine
from stakeledger.runtime.errors import StakingError


def build_engine() -> StakingEngine:
    """Build the engine for API runtime.

    This wrapper exists so tests can monkeypatch `stakeledger.api.app.build_engine`
    without reaching into runtime modules.
    """
    return _build_engine()


def create_app(*, engine: Optional[StakingEngine] = None, boot_runtime: bool = True) -> FastAPI:
    """Create the read-only query API.

    engine:
      - given: attached as-is (embedding hosts, tests)
      - None and boot_runtime=True: built from config via build_engine()
      - None and boot_runtime=False: no engine; query routes answer 500 not_ready
    """
    mode = os.environ.get("STAKELEDGER_MODE", "prod").strip().lower()

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(title="Stakeledger API", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="Stakeledger API")

    if engine is None and boot_runtime:
        engine = build_engine()
    app.state.engine = engine

    app.add_middleware(RequestLogMiddleware)

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        request.state.error_code = exc.code
        return JSONResponse(status_code=exc.status_code, content=exc.to_json())

    @app.exception_handler(StakingError)
    async def _staking_error(request: Request, exc: StakingError) -> JSONResponse:
        request.state.error_code = exc.code
        err = ApiError.from_staking_error(exc)
        return JSONResponse(status_code=err.status_code, content=err.to_json())

    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(pools_router, prefix="/v1", tags=["pools"])

    return app

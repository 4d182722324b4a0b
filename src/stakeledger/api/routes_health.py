from __future__ import annotations

import time
from typing import Any

from fastapi import APIRouter, Request, Response

from stakeledger.runtime.metrics import format_prometheus, metrics_enabled

router = APIRouter()


def _now_ms() -> int:
    return int(time.time() * 1000)


@router.get("/health")
def v1_health(request: Request) -> dict[str, Any]:
    eng = getattr(request.app.state, "engine", None)
    return {
        "ok": eng is not None,
        "service": "stakeledger",
        "version": "v1",
        "ts_ms": _now_ms(),
        "pools": eng.pool_count() if eng is not None else None,
        "paused": eng.paused if eng is not None else None,
        "emergency_withdraw_enabled": eng.emergency_withdraw_enabled if eng is not None else None,
    }


@router.get("/metrics")
def metrics() -> Response:
    """Prometheus-style metrics.

    Disabled by default. Enable with:
      STAKELEDGER_METRICS_ENABLED=1
    """
    if not metrics_enabled():
        return Response(status_code=404, content="not_found\n", media_type="text/plain")
    return Response(content=format_prometheus(), media_type="text/plain")

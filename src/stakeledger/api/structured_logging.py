# src/stakeledger/api/structured_logging.py
from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from stakeledger.runtime.runtime_logging import log_event

Json = Dict[str, Any]


def _truthy(v: str | None) -> bool:
    if v is None:
        return False
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Structured request logging middleware.

    Controls:
      - STAKELEDGER_LOG_REQUESTS=0 to disable (default on)
      - STAKELEDGER_LOG_REQUEST_HEADERS=1 to include a small header subset
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        raw = (os.environ.get("STAKELEDGER_LOG_REQUESTS") or "1").strip().lower()
        self._enabled = raw not in {"0", "false", "no", "n", "off"}
        self._log_headers = _truthy(os.environ.get("STAKELEDGER_LOG_REQUEST_HEADERS"))
        self._logger = logging.getLogger("stakeledger.http")

    def _header_subset(self, request: Request) -> Json:
        if not self._log_headers:
            return {}
        out: Json = {}
        for k in ["user-agent", "content-type", "x-forwarded-for"]:
            v = request.headers.get(k)
            if v:
                out[k] = v
        return out

    def _route_fields(self, request: Request) -> Json:
        """Pool/user the request addressed, plus the engine error code if one was mapped."""
        params = request.scope.get("path_params") or {}
        out: Json = {}
        if "pool_id" in params:
            out["pool_id"] = params["pool_id"]
        if "user" in params:
            out["user"] = params["user"]
        code = getattr(request.state, "error_code", None)
        if code:
            out["error_code"] = code
        return out

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        started = time.monotonic()
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id

        status = 500
        err: Optional[str] = None
        response: Optional[Response] = None

        try:
            response = await call_next(request)
            status = int(response.status_code)
            return response
        except Exception as e:
            err = repr(e)
            raise
        finally:
            if response is not None:
                response.headers.setdefault("x-request-id", request_id)
            log_event(
                self._logger,
                "http_request",
                level=logging.WARNING if status >= 500 else logging.INFO,
                request_id=request_id,
                method=request.method,
                route=self._route_template(request),
                status=status,
                duration_ms=int((time.monotonic() - started) * 1000),
                headers=self._header_subset(request),
                error=err,
                **self._route_fields(request),
            )

    @staticmethod
    def _route_template(request: Request) -> str:
        # "/v1/pools/{pool_id}" rather than the concrete path, so logs group by endpoint.
        route = request.scope.get("route")
        return str(getattr(route, "path", "") or request.url.path or "")

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from stakeledger.runtime.errors import StakingError

_STATUS_BY_CODE: Dict[str, int] = {
    "pool_not_found": 404,
    "unauthorized": 403,
    "paused": 409,
    "reentrant_call": 409,
}


@dataclass(eq=False)
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    @staticmethod
    def from_staking_error(e: StakingError) -> "ApiError":
        details = e.details if isinstance(e.details, dict) else ({"value": e.details} if e.details is not None else {})
        return ApiError(_STATUS_BY_CODE.get(e.code, 400), e.code, e.reason, details)

    def to_json(self) -> Dict[str, Any]:
        return {"ok": False, "error": {"code": self.code, "message": self.message, "details": self.details}}

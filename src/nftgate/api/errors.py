from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from nftgate.errors import (
    CorruptBlob,
    CorruptMetadata,
    GatewayError,
    InvalidArgument,
    NotFound,
    StorageUnavailable,
)


@dataclass(frozen=True, slots=True)
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
    def too_large(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(413, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    @staticmethod
    def unavailable(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(503, code, message, details or {})

    @staticmethod
    def from_gateway_error(err: GatewayError) -> "ApiError":
        details = err.details if isinstance(err.details, dict) else ({} if err.details is None else {"details": err.details})
        if isinstance(err, InvalidArgument):
            return ApiError.bad_request(err.code, err.reason, details)
        if isinstance(err, NotFound):
            return ApiError.not_found(err.code, err.reason, details)
        if isinstance(err, StorageUnavailable):
            return ApiError.unavailable(err.code, err.reason, details)
        if isinstance(err, (CorruptMetadata, CorruptBlob)):
            return ApiError.internal(err.code, err.reason, details)
        return ApiError.internal(err.code or "internal_error", err.reason, details)

    def to_json(self) -> Dict[str, Any]:
        return {"ok": False, "error": {"code": self.code, "message": self.message, "details": self.details}}

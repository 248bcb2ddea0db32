"""Canonical error codes and exceptions for the compatibility proxy."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import ErrorBody

# Canonical mapping of proxy error codes to HTTP status codes
ERROR_HTTP_MAP = {
    "route_not_found": 404,
    "translation_failed": 400,
    "request_body_unreadable": 400,
    "upstream_unavailable": 502,
    "upstream_timeout": 504,
    "upstream_unexpected_shape": 500,
    "internal_error": 500,
}


def http_status_for(code: str) -> int:
    return int(ERROR_HTTP_MAP.get(code, 500))


def build_error_body(request_id: str | None, code: str, message: str | None = None) -> ErrorBody:
    return ErrorBody(error=code, message=message, request_id=request_id)


class CompatProxyError(Exception):
    """Base exception for all proxy-side failures."""

    error_code = "internal_error"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)

    @property
    def http_status(self) -> int:
        return http_status_for(self.error_code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"


class RouteNotFound(CompatProxyError):
    """No logical operation matches the request; it is passed through."""

    error_code = "route_not_found"

    def __init__(self, method: str, path: str):
        super().__init__(
            f"no translation rule for {method} {path}",
            details={"method": method, "path": path},
        )
        self.method = method
        self.path = path


class TranslationError(CompatProxyError):
    """A single field of a legacy request could not be translated."""

    error_code = "translation_failed"

    def __init__(self, field: str, reason: str, required: bool = False):
        super().__init__(
            f"cannot translate field '{field}': {reason}",
            details={"field": field, "reason": reason, "required": required},
        )
        self.field = field
        self.reason = reason
        self.required = required

    @property
    def severity(self) -> str:
        return "required" if self.required else "optional"


class TranslationAborted(CompatProxyError):
    """The translation policy rejected a request because of field errors."""

    error_code = "translation_failed"

    def __init__(self, operation_id: str, errors: List[TranslationError]):
        fields = ", ".join(err.field for err in errors)
        super().__init__(
            f"{operation_id}: cannot translate {fields}",
            details={
                "operation_id": operation_id,
                "fields": [err.details for err in errors],
            },
        )
        self.operation_id = operation_id
        self.errors = list(errors)


class RequestBodyUnreadable(CompatProxyError):
    error_code = "request_body_unreadable"

    def __init__(self, message: str = "Failed to receive request body"):
        super().__init__(message)


class UpstreamUnavailable(CompatProxyError):
    """Connection failure or timeout talking to the upstream backend."""

    error_code = "upstream_unavailable"

    def __init__(self, upstream: str, reason: str, timeout: bool = False):
        super().__init__(
            f"Upstream failed to respond: {reason}",
            error_code="upstream_timeout" if timeout else "upstream_unavailable",
            details={"upstream": upstream, "reason": reason},
        )
        self.upstream = upstream
        self.timeout = timeout


class UpstreamUnexpectedShape(CompatProxyError):
    """The upstream reply does not have the shape the mapping table expects."""

    error_code = "upstream_unexpected_shape"

    def __init__(self, operation_id: str, field: str, reason: str):
        super().__init__(
            f"{operation_id}: unexpected upstream shape at '{field}': {reason}",
            details={"operation_id": operation_id, "field": field, "reason": reason},
        )
        self.operation_id = operation_id
        self.field = field
        self.reason = reason


__all__ = [
    "ERROR_HTTP_MAP",
    "http_status_for",
    "build_error_body",
    "CompatProxyError",
    "RouteNotFound",
    "TranslationError",
    "TranslationAborted",
    "RequestBodyUnreadable",
    "UpstreamUnavailable",
    "UpstreamUnexpectedShape",
]

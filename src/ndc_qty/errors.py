# src/ndc_qty/errors.py
from __future__ import annotations

from typing import Any, Dict, List, Optional


class NdcQtyError(Exception):
    """
    Base error of the quantity engine.

    Every subclass maps to one outward error code. `to_dict()` builds the
    payload returned to the caller; internal details stay in the logs.
    """

    error_code = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[str] = None,
        retry_after_ms: Optional[int] = None,
        field_errors: Optional[List[Dict[str, str]]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.retry_after_ms = retry_after_ms
        self.field_errors = field_errors

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "error_code": self.error_code}
        if self.detail:
            payload["detail"] = self.detail
        if self.retry_after_ms is not None:
            payload["retry_after_ms"] = self.retry_after_ms
        if self.field_errors:
            payload["field_errors"] = self.field_errors
        return payload


class ValidationError(NdcQtyError):
    """Caller input outside documented bounds. Never retried."""

    error_code = "validation_error"


class ParseError(NdcQtyError):
    """Dosing instructions could not be interpreted by any stage."""

    error_code = "parse_error"


class DependencyError(NdcQtyError):
    """Upstream registry unavailable after retries (and no stale data to serve)."""

    error_code = "dependency_failure"


class RateLimitError(NdcQtyError):
    """Local quota guard for an upstream registry tripped."""

    error_code = "rate_limit_exceeded"


class InternalError(NdcQtyError):
    """Programming or invariant failure. Detail stays generic."""

    error_code = "internal_error"


def error_to_dict(error: BaseException) -> Dict[str, Any]:
    if isinstance(error, NdcQtyError):
        return error.to_dict()
    return {
        "error": "Internal Server Error",
        "error_code": InternalError.error_code,
        "detail": "An unexpected error occurred",
    }

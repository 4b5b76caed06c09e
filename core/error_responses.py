"""
ERROR_RESPONSES.PY - Standardized Error Response Utilities

This module provides consistent error response formats across all API endpoints.

Usage:
    from core.error_responses import make_error, ErrorCode

    return JSONResponse(
        status_code=402,
        content=make_error(
            code=ErrorCode.INSUFFICIENT_POINTS,
            message="Not enough points",
            required=1000, current=200, shortage=800,
        )
    )

Response Format:
    {
        "status": "error",
        "error": "Not enough points",          # Legacy single error
        "errors": [
            {
                "code": "INSUFFICIENT_POINTS",
                "message": "Not enough points",
                "required": 1000,
                "current": 200,
                "shortage": 800
            }
        ],
        "timestamp": "2026-10-19T13:00:00+09:00"
    }
"""

from typing import List, Optional, Dict, Any
from dataclasses import dataclass, field as dc_field


@dataclass
class ErrorDetail:
    """Single error detail."""
    code: str
    message: str
    field: Optional[str] = None
    extra: Dict[str, Any] = dc_field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, excluding None fields."""
        result: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.field is not None:
            result["field"] = self.field
        result.update(self.extra)
        return result


@dataclass
class ErrorResponse:
    """Standardized error response."""
    status: str = "error"
    error: Optional[str] = None  # Legacy single error
    errors: List[ErrorDetail] = dc_field(default_factory=list)
    request_id: Optional[str] = None
    timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON response."""
        result: Dict[str, Any] = {"status": self.status}

        if self.error is not None:
            result["error"] = self.error

        if self.errors:
            result["errors"] = [e.to_dict() for e in self.errors]

        if self.request_id is not None:
            result["request_id"] = self.request_id

        if self.timestamp is not None:
            result["timestamp"] = self.timestamp

        return result


class ErrorCode:
    """Standard error codes surfaced to the UI layer."""

    # Authentication
    API_KEY_MISSING = "API_KEY_MISSING"
    API_KEY_INVALID = "API_KEY_INVALID"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_PARAMETER = "INVALID_PARAMETER"
    INVALID_DATE = "INVALID_DATE"

    # Resource
    NOT_FOUND = "NOT_FOUND"
    ALREADY_UNLOCKED = "ALREADY_UNLOCKED"

    # Entitlement
    INSUFFICIENT_POINTS = "INSUFFICIENT_POINTS"
    NO_VOUCHER = "NO_VOUCHER"
    FREE_LIMIT_REACHED = "FREE_LIMIT_REACHED"

    # Payment (lower-case codes are passed through to redirect URLs as-is)
    AMOUNT_MISMATCH = "amount_mismatch"
    PAYMENT_NOT_FOUND = "payment_not_found"
    INVALID_ORDER_ID = "invalid_order_id"
    INVALID_AMOUNT = "invalid_amount"
    CONFIRMATION_FAILED = "confirmation_failed"
    OWNERSHIP_MISMATCH = "ownership_mismatch"
    INVALID_SIGNATURE = "invalid_signature"
    UNKNOWN_PRODUCT = "unknown_product"

    # Internal
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


def make_error(
    code: str,
    message: str,
    field: Optional[str] = None,
    request_id: Optional[str] = None,
    include_timestamp: bool = True,
    **extra: Any,
) -> Dict[str, Any]:
    """
    Create standardized error response dict.

    Args:
        code: Error code from ErrorCode class
        message: Human-readable error message
        field: Optional field name that caused the error
        request_id: Optional request correlation ID
        include_timestamp: Whether to include timestamp (default True)
        **extra: Remediation data attached to the error detail
                 (e.g. required/current/shortage for INSUFFICIENT_POINTS)

    Returns:
        Dict suitable for JSONResponse content

    Example:
        >>> make_error(ErrorCode.NO_VOUCHER, "No compatibility voucher", include_timestamp=False)
        {'status': 'error', 'error': 'No compatibility voucher', 'errors': [{'code': 'NO_VOUCHER', 'message': 'No compatibility voucher'}]}
    """
    from core.time_kst import format_as_of_kst

    timestamp = format_as_of_kst() if include_timestamp else None

    error_detail = ErrorDetail(code=code, message=message, field=field, extra=extra)

    response = ErrorResponse(
        error=message,  # Legacy compatibility
        errors=[error_detail],
        request_id=request_id,
        timestamp=timestamp,
    )

    return response.to_dict()


# Export list
__all__ = [
    'ErrorDetail',
    'ErrorResponse',
    'ErrorCode',
    'make_error',
]

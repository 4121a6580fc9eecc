"""
API error types.

Every error a service can raise is an HTTPException carrying a stable
error_code; main.py renders all of them as {"message", "error_code"}.
"""
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class APIException(HTTPException):
    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class _CodedError(APIException):
    """Fixed status and error_code; subclasses only vary the message."""

    http_status: int = status.HTTP_400_BAD_REQUEST
    code: str = "BAD_REQUEST"
    default_detail: Optional[str] = None
    headers_: Optional[Dict[str, str]] = None

    def __init__(self, detail: Optional[str] = None):
        super().__init__(
            status_code=self.http_status,
            detail=detail or self.default_detail or self.code,
            error_code=self.code,
            headers=self.headers_,
        )


class AuthenticationError(_CodedError):
    http_status = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHENTICATED"
    default_detail = "Authentication required"
    headers_ = {"WWW-Authenticate": "Bearer"}


class AuthorizationError(_CodedError):
    """Wrong role, or not the owner/assignee of the resource."""

    http_status = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    default_detail = "Access denied"


class InvalidStateError(_CodedError):
    """Operation not allowed in the resource's current lifecycle state."""

    code = "INVALID_STATE"


class SelfAssignmentError(_CodedError):
    code = "SELF_ASSIGNMENT"
    default_detail = "You cannot instruct your own goal"


class ConflictError(_CodedError):
    http_status = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class PaymentStateError(_CodedError):
    """The goal's payment row is missing or not HELD. Indicates drift, hence 500."""

    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "PAYMENT_STATE_ERROR"


class NotFoundError(APIException):
    """Missing, or not visible to the caller."""

    def __init__(self, resource: str, identifier: Any = None):
        detail = f"{resource} not found" if identifier is None else f"{resource} not found: {identifier}"
        super().__init__(status.HTTP_404_NOT_FOUND, detail, error_code="NOT_FOUND")


class ValidationError(APIException):
    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(status.HTTP_400_BAD_REQUEST, detail, error_code=error_code)


class PaymentError(APIException):
    """
    The gateway declined or failed.

    A 4xx/5xx status reported by the provider is passed through (a declined
    card stays 402); anything else becomes 502.
    """

    def __init__(self, detail: str, gateway_status: Optional[int] = None):
        code = gateway_status if gateway_status and gateway_status >= 400 else status.HTTP_502_BAD_GATEWAY
        super().__init__(code, detail, error_code="PAYMENT_ERROR")
        self.gateway_status = gateway_status

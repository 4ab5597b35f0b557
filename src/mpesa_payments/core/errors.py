"""
Error taxonomy for the M-Pesa client.

Every failure the client reports is a :class:`MpesaError` tagged with one
:class:`ErrorKind`. Callers are expected to branch on ``error.kind``.
"""

from __future__ import annotations

import enum
import json
from typing import Any, Optional, Union

import requests

__all__ = [
    "ConfigError",
    "ErrorKind",
    "MpesaError",
    "classify_failure",
    "classify_status",
    "domain_failure",
]


class ConfigError(Exception):
    """Raised when the supplied configuration is invalid."""


class ErrorKind(str, enum.Enum):
    AUTHENTICATION_FAILED = "AuthenticationFailed"
    VALIDATION_FAILED = "ValidationFailed"
    TRANSIENT_SERVICE_ERROR = "TransientServiceError"
    DOMAIN_OPERATION_FAILED = "DomainOperationFailed"
    UNKNOWN_ERROR = "UnknownError"

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.TRANSIENT_SERVICE_ERROR


_OPERATION_LABELS = {
    "authenticate": "Authentication",
    "stk_push": "STK Push",
    "b2c_payment": "B2C",
    "register_c2b_url": "Register URL",
}


class MpesaError(Exception):
    """
    A classified failure.

    ``payload`` is the upstream response body exactly as received (when there
    was one) so callers can inspect diagnostic codes such as ``ResponseCode``
    or ``resultCode``.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: Optional[int] = None,
        payload: Any = None,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.payload = payload
        self.operation = operation

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    @property
    def code(self) -> Optional[str]:
        """Upstream diagnostic code, if the payload carries one."""
        if not isinstance(self.payload, dict):
            return None
        for key in ("ResponseCode", "responseCode", "resultCode", "errorCode"):
            if self.payload.get(key) is not None:
                return str(self.payload[key])
        return None

    def with_operation(self, operation: str) -> "MpesaError":
        if self.operation is None:
            self.operation = operation
        return self

    def describe(self) -> str:
        label = _OPERATION_LABELS.get(self.operation or "", "M-Pesa")
        detail = self.message
        if isinstance(self.payload, dict):
            detail = (
                self.payload.get("ResponseDescription")
                or self.payload.get("responseMessage")
                or self.payload.get("resultDesc")
                or self.payload.get("errorMessage")
                or self.message
            )
        if self.code is None:
            return f"{label} Error: {detail}"
        return f"{label} Error: {detail} (Code: {self.code})"

    def __repr__(self) -> str:
        return (
            f"MpesaError(kind={self.kind.value!r}, message={self.message!r}, "
            f"status_code={self.status_code!r}, operation={self.operation!r})"
        )


# status -> (kind, message); statuses not listed fall back by range
_STATUS_MAP = {
    400: (ErrorKind.VALIDATION_FAILED, "Bad Request: Check your input."),
    401: (ErrorKind.AUTHENTICATION_FAILED, "Unauthorized: Invalid credentials."),
    403: (ErrorKind.AUTHENTICATION_FAILED, "Forbidden: Access denied."),
    404: (
        ErrorKind.VALIDATION_FAILED,
        "Not Found: The requested resource does not exist.",
    ),
}


def classify_status(status: int) -> ErrorKind:
    if status in _STATUS_MAP:
        return _STATUS_MAP[status][0]
    if status >= 500:
        return ErrorKind.TRANSIENT_SERVICE_ERROR
    return ErrorKind.UNKNOWN_ERROR


def _decode_body(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None


def _status_message(status: int, payload: Any) -> str:
    if status in _STATUS_MAP:
        return _STATUS_MAP[status][1]
    if status >= 500:
        return "Server Error: Try again later."
    if payload is None:
        rendered = "Unknown error"
    elif isinstance(payload, str):
        rendered = payload
    else:
        rendered = json.dumps(payload)
    return f"HTTP Error: {status} - {rendered}"


def classify_failure(
    failure: Union[BaseException, requests.Response],
) -> MpesaError:
    """
    Convert a failed request into a :class:`MpesaError`.

    ``failure`` is either the exception raised while performing the request
    or a response whose status code is 400 or above. No response at all
    (connection refused, timeout, DNS failure) is transient.
    """
    if isinstance(failure, MpesaError):
        return failure

    response: Optional[requests.Response]
    if isinstance(failure, requests.Response):
        response = failure
    else:
        response = getattr(failure, "response", None)

    if response is None:
        if isinstance(failure, requests.Timeout):
            message = "Network Error: Request timed out."
        elif isinstance(failure, requests.RequestException):
            message = "Network Error: No response from server."
        else:
            return MpesaError(ErrorKind.UNKNOWN_ERROR, f"Error: {failure}")
        return MpesaError(ErrorKind.TRANSIENT_SERVICE_ERROR, message)

    status = response.status_code
    payload = _decode_body(response)
    return MpesaError(
        classify_status(status),
        _status_message(status, payload),
        status_code=status,
        payload=payload,
    )


def domain_failure(
    operation: str,
    payload: Any,
    message: Optional[str] = None,
    *,
    status_code: Optional[int] = None,
) -> MpesaError:
    label = _OPERATION_LABELS.get(operation, operation)
    return MpesaError(
        ErrorKind.DOMAIN_OPERATION_FAILED,
        message or f"{label} request failed",
        status_code=status_code,
        payload=payload,
        operation=operation,
    )

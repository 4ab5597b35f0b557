"""
Request payload shapes for the M-Pesa endpoints and small helpers for
building them.
"""

from __future__ import annotations

import base64
import re
from datetime import datetime
from typing import Any, List, Literal, Mapping, Optional, Sequence, TypedDict

from .errors import ErrorKind, MpesaError

__all__ = [
    "B2C_REQUIRED_FIELDS",
    "REGISTER_URL_REQUIRED_FIELDS",
    "STK_PUSH_REQUIRED_FIELDS",
    "B2CPayload",
    "ReferenceItem",
    "RegisterUrlPayload",
    "StkPushPayload",
    "format_api_timestamp",
    "to_base64",
    "truncate",
    "validate_payload",
    "validate_positive_number",
    "validate_url",
]


class ReferenceItem(TypedDict):
    Key: str
    Value: str


class StkPushPayload(TypedDict, total=False):
    MerchantRequestID: str
    BusinessShortCode: str
    Password: str
    Timestamp: str
    TransactionType: Literal["CustomerPayBillOnline", "CustomerBuyGoodsOnline"]
    Amount: float
    PartyA: int
    PartyB: int
    PhoneNumber: int
    CallBackURL: str
    AccountReference: str
    TransactionDesc: str
    ReferenceData: List[ReferenceItem]


class B2CPayload(TypedDict, total=False):
    InitiatorName: str
    SecurityCredential: str
    CommandID: Literal["BusinessPayment", "SalaryPayment", "PromotionPayment"]
    Amount: float
    PartyA: int
    PartyB: str
    Remarks: str
    QueueTimeOutURL: str
    ResultURL: str
    Occassion: str


class RegisterUrlPayload(TypedDict, total=False):
    ShortCode: int
    ResponseType: Literal["Canceled", "Completed"]
    CommandID: Literal["RegisterURL"]
    ValidationURL: str
    ConfirmationURL: str


STK_PUSH_REQUIRED_FIELDS = (
    "BusinessShortCode",
    "Password",
    "Timestamp",
    "TransactionType",
    "Amount",
    "PartyA",
    "PartyB",
    "PhoneNumber",
    "CallBackURL",
    "AccountReference",
    "TransactionDesc",
)

B2C_REQUIRED_FIELDS = (
    "InitiatorName",
    "SecurityCredential",
    "CommandID",
    "Amount",
    "PartyA",
    "PartyB",
    "QueueTimeOutURL",
    "ResultURL",
)

REGISTER_URL_REQUIRED_FIELDS = (
    "ShortCode",
    "ResponseType",
    "CommandID",
    "ValidationURL",
    "ConfirmationURL",
)

_URL_PATTERN = re.compile(
    r"^(https?://)?([\w-]+\.)+[a-z]{2,}(:[0-9]{1,5})?(/[\w#!:.?+=&%@/~-]*)?$",
    re.IGNORECASE,
)


def _invalid(operation: Optional[str], message: str) -> MpesaError:
    return MpesaError(ErrorKind.VALIDATION_FAILED, message, operation=operation)


def validate_payload(
    operation: str,
    payload: Any,
    required: Sequence[str],
) -> Mapping[str, Any]:
    """
    Check that ``payload`` is a mapping carrying every ``required`` field.

    Raises a ``ValidationFailed`` :class:`MpesaError` before any network
    traffic happens.
    """
    if not isinstance(payload, Mapping):
        raise _invalid(operation, "Payload must be a JSON object.")
    missing = [
        name for name in required if payload.get(name) is None or payload.get(name) == ""
    ]
    if missing:
        raise _invalid(operation, f"{', '.join(missing)} is required.")
    return payload


def validate_positive_number(value: Any, field_name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise _invalid(None, f"{field_name} must be a positive number.")


def validate_url(url: str, field_name: str) -> None:
    if not isinstance(url, str) or not _URL_PATTERN.match(url):
        raise _invalid(None, f"{field_name} must be a valid URL.")


def format_api_timestamp(moment: Optional[datetime] = None) -> str:
    """Format ``moment`` (default: now) as ``YYYYMMDDHHmmss``."""
    moment = moment or datetime.now()
    return moment.strftime("%Y%m%d%H%M%S")


def to_base64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def truncate(value: str, max_length: int) -> str:
    return value[:max_length] + "..." if len(value) > max_length else value

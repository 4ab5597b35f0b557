"""
Response objects decoded from M-Pesa API bodies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

__all__ = [
    "AuthResponse",
    "B2CResponse",
    "RegisterUrlResponse",
    "StkPushResponse",
]


def _require_mapping(payload: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise TypeError(f"{name} body must be a JSON object, got {type(payload).__name__}")
    return payload


@dataclass(frozen=True)
class AuthResponse:
    access_token: str
    token_type: Optional[str]
    expires_in: int

    @classmethod
    def from_response(cls, payload: Any) -> "AuthResponse":
        data = _require_mapping(payload, "Token")
        token = data.get("access_token")
        if not token:
            raise KeyError("access_token")
        # expires_in arrives as a numeric string
        expires_in = int(str(data.get("expires_in", "")).strip())
        if expires_in <= 0:
            raise ValueError(f"expires_in must be positive, got {expires_in}")
        return cls(
            access_token=str(token),
            token_type=data.get("token_type"),
            expires_in=expires_in,
        )


@dataclass(frozen=True)
class StkPushResponse:
    merchant_request_id: Optional[str]
    checkout_request_id: Optional[str]
    response_code: Optional[str]
    response_description: Optional[str]
    customer_message: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_response(cls, payload: Any) -> "StkPushResponse":
        data = _require_mapping(payload, "STK Push")
        return cls(
            merchant_request_id=data.get("MerchantRequestID"),
            checkout_request_id=data.get("CheckoutRequestID"),
            response_code=data.get("ResponseCode"),
            response_description=data.get("ResponseDescription"),
            customer_message=data.get("CustomerMessage"),
            raw=dict(data),
        )

    def is_success(self) -> bool:
        return self.response_code == "0"

    def __str__(self) -> str:
        return (
            f"STK Push Response: {self.response_description} "
            f"(Code: {self.response_code})"
        )


@dataclass(frozen=True)
class B2CResponse:
    conversation_id: Optional[str]
    originator_conversation_id: Optional[str]
    response_code: Optional[str]
    response_description: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_response(cls, payload: Any) -> "B2CResponse":
        data = _require_mapping(payload, "B2C")
        return cls(
            conversation_id=data.get("ConversationID"),
            originator_conversation_id=data.get("OriginatorConversationID"),
            response_code=data.get("ResponseCode"),
            response_description=data.get("ResponseDescription"),
            raw=dict(data),
        )

    def is_success(self) -> bool:
        return self.response_code == "0"

    def __str__(self) -> str:
        return f"B2C Response: {self.response_description} (Code: {self.response_code})"


@dataclass(frozen=True)
class RegisterUrlResponse:
    response_code: Optional[str]
    response_message: Optional[str]
    customer_message: Optional[str]
    timestamp: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_response(cls, payload: Any) -> "RegisterUrlResponse":
        data = _require_mapping(payload, "Register URL")
        return cls(
            response_code=data.get("responseCode"),
            response_message=data.get("responseMessage"),
            customer_message=data.get("customerMessage"),
            timestamp=data.get("timestamp"),
            raw=dict(data),
        )

    def is_success(self) -> bool:
        return self.response_code == "200"

    def __str__(self) -> str:
        return (
            f"Register URL Response: {self.response_message} "
            f"(Code: {self.response_code})"
        )

"""
Public facade for the M-Pesa client package.

The most useful pieces are re-exported here so integrators can
``from mpesa_payments import ...`` without navigating the package.
"""

from .api import b2c_payment, create_mpesa_client, register_c2b_url, stk_push
from .core import (
    AuthResponse,
    B2CPayload,
    B2CResponse,
    ConfigError,
    Credential,
    ErrorKind,
    MpesaClient,
    MpesaConfig,
    MpesaError,
    NullLogger,
    RegisterUrlPayload,
    RegisterUrlResponse,
    RetryPolicy,
    StkPushPayload,
    StkPushResponse,
    TokenManager,
    Transport,
    format_api_timestamp,
    load_mpesa_config,
)

__all__ = (
    "AuthResponse",
    "B2CPayload",
    "B2CResponse",
    "ConfigError",
    "Credential",
    "ErrorKind",
    "MpesaClient",
    "MpesaConfig",
    "MpesaError",
    "NullLogger",
    "RegisterUrlPayload",
    "RegisterUrlResponse",
    "RetryPolicy",
    "StkPushPayload",
    "StkPushResponse",
    "TokenManager",
    "Transport",
    "b2c_payment",
    "create_mpesa_client",
    "format_api_timestamp",
    "load_mpesa_config",
    "register_c2b_url",
    "stk_push",
)

"""
Core primitives: error taxonomy, transport, token lifecycle and the
authenticated request pipeline.
"""

from .auth import Credential, TokenManager, basic_auth_header
from .client import MpesaClient
from .config import BASE_URLS, MpesaConfig, load_env_file, load_mpesa_config
from .errors import (
    ConfigError,
    ErrorKind,
    MpesaError,
    classify_failure,
    classify_status,
    domain_failure,
)
from .logging import NullLogger, build_logger
from .payloads import (
    B2CPayload,
    RegisterUrlPayload,
    StkPushPayload,
    format_api_timestamp,
    to_base64,
)
from .responses import AuthResponse, B2CResponse, RegisterUrlResponse, StkPushResponse
from .transport import RequestDescriptor, RetryPolicy, Transport, exponential_backoff

__all__ = [
    "BASE_URLS",
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
    "RequestDescriptor",
    "RetryPolicy",
    "StkPushPayload",
    "StkPushResponse",
    "TokenManager",
    "Transport",
    "basic_auth_header",
    "build_logger",
    "classify_failure",
    "classify_status",
    "domain_failure",
    "exponential_backoff",
    "format_api_timestamp",
    "load_env_file",
    "load_mpesa_config",
    "to_base64",
]

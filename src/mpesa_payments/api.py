"""
Public, high-level helpers for talking to the M-Pesa API.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

import requests

from .core.client import MpesaClient
from .core.config import MpesaConfig, load_mpesa_config
from .core.logging import DiagnosticSink
from .core.payloads import B2CPayload, RegisterUrlPayload, StkPushPayload
from .core.responses import B2CResponse, RegisterUrlResponse, StkPushResponse

__all__ = [
    "b2c_payment",
    "create_mpesa_client",
    "register_c2b_url",
    "stk_push",
]


def create_mpesa_client(
    *,
    config: Optional[MpesaConfig] = None,
    session: Optional[requests.Session] = None,
    logger: Optional[DiagnosticSink] = None,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    **parameters: Any,
) -> MpesaClient:
    """
    Construct a :class:`MpesaClient`.

    Callers either hand over a ready-made :class:`MpesaConfig` or let the
    helper assemble one from environment data and keyword parameters
    (``api_key=...``, ``environment=...`` and so on).
    """
    if config is not None:
        extras = (overrides, base, *parameters.values())
        if any(item is not None and item != {} for item in extras):
            raise ValueError(
                "Provide either a pre-built MpesaConfig or individual parameters, not both."
            )
        cfg = config
    else:
        cfg = load_mpesa_config(
            env_file=env_file,
            overrides=overrides,
            base=base,
            **parameters,
        )
    return MpesaClient(cfg, session=session, logger=logger)


def stk_push(payload: StkPushPayload, **client_options: Any) -> StkPushResponse:
    """One-shot STK push with a freshly built client."""
    with create_mpesa_client(**client_options) as client:
        return client.stk_push(payload)


def b2c_payment(payload: B2CPayload, **client_options: Any) -> B2CResponse:
    """One-shot B2C payout with a freshly built client."""
    with create_mpesa_client(**client_options) as client:
        return client.b2c_payment(payload)


def register_c2b_url(
    payload: RegisterUrlPayload, **client_options: Any
) -> RegisterUrlResponse:
    """One-shot C2B URL registration with a freshly built client."""
    with create_mpesa_client(**client_options) as client:
        return client.register_c2b_url(payload)

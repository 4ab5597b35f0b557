"""
Bearer token acquisition and caching.
"""

from __future__ import annotations

import base64
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .errors import ErrorKind, MpesaError
from .logging import DiagnosticSink, NullLogger, context
from .responses import AuthResponse
from .transport import RequestDescriptor, Transport

__all__ = [
    "TOKEN_PATH",
    "Credential",
    "TokenManager",
    "basic_auth_header",
]

TOKEN_PATH = "/v1/token/generate?grant_type=client_credentials"


def basic_auth_header(api_key: str, secret_key: str) -> str:
    raw = f"{api_key}:{secret_key}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


@dataclass(frozen=True)
class Credential:
    token: str
    issued_at: float
    expires_at: float
    token_type: str = "Bearer"

    def __post_init__(self) -> None:
        if self.expires_at <= self.issued_at:
            raise ValueError("credential must expire after it was issued")

    def is_valid(self, now: float, margin: float = 0.0) -> bool:
        return now < self.expires_at - margin

    @property
    def authorization(self) -> str:
        return f"Bearer {self.token}"


class TokenManager:
    """
    Lazily fetches a credential and refreshes it once it has expired.

    Refreshes are serialised with a lock so concurrent callers that all see
    an expired credential trigger a single authentication call. Reads of a
    still-valid credential do not take the lock.
    """

    def __init__(
        self,
        transport: Transport,
        api_key: str,
        secret_key: str,
        *,
        clock: Callable[[], float] = time.monotonic,
        refresh_margin_seconds: float = 0.0,
        logger: Optional[DiagnosticSink] = None,
    ) -> None:
        self.transport = transport
        self._authorization = basic_auth_header(api_key, secret_key)
        self.clock = clock
        self.refresh_margin_seconds = refresh_margin_seconds
        self.logger = logger or NullLogger()
        self._credential: Optional[Credential] = None
        self._lock = threading.Lock()

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def invalidate(self) -> None:
        with self._lock:
            self._credential = None

    def _current(self) -> Optional[Credential]:
        credential = self._credential
        if credential is not None and credential.is_valid(
            self.clock(), self.refresh_margin_seconds
        ):
            return credential
        return None

    def ensure_valid(self) -> Credential:
        credential = self._current()
        if credential is not None:
            return credential

        with self._lock:
            # another caller may have refreshed while we waited
            credential = self._current()
            if credential is not None:
                return credential
            self._credential = None
            self._credential = self._authenticate()
            return self._credential

    def _authenticate(self) -> Credential:
        descriptor = RequestDescriptor(
            "GET", TOKEN_PATH, headers={"Authorization": self._authorization}
        )
        try:
            body = self.transport.execute_json(descriptor)
            issued_at = self.clock()
            auth = AuthResponse.from_response(body)
            credential = Credential(
                token=auth.access_token,
                issued_at=issued_at,
                expires_at=issued_at + auth.expires_in,
                token_type=auth.token_type or "Bearer",
            )
        except MpesaError as exc:
            error = _authentication_error(exc.message, exc.payload, exc.status_code)
            self.logger.error(
                "Authentication failed",
                **context(kind=exc.kind.value, status=exc.status_code),
            )
            raise error from exc
        except (TypeError, ValueError, KeyError) as exc:
            self.logger.error("Authentication failed", **context(reason=str(exc)))
            raise _authentication_error(
                f"Malformed token response: {exc}", None, None
            ) from exc

        self.logger.info(
            "Authentication successful",
            **context(expires_in=credential.expires_at - credential.issued_at),
        )
        return credential


def _authentication_error(
    message: str, payload: Any, status_code: Optional[int]
) -> MpesaError:
    if isinstance(payload, dict) and payload.get("resultDesc"):
        message = str(payload["resultDesc"])
    return MpesaError(
        ErrorKind.AUTHENTICATION_FAILED,
        message,
        status_code=status_code,
        payload=payload,
        operation="authenticate",
    )

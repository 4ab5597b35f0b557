"""
Authenticated request orchestration and the M-Pesa operations built on it.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Type, TypeVar

import requests

from .auth import Credential, TokenManager
from .config import MpesaConfig
from .errors import ErrorKind, MpesaError, domain_failure
from .logging import DiagnosticSink, build_logger, context
from .payloads import (
    B2C_REQUIRED_FIELDS,
    REGISTER_URL_REQUIRED_FIELDS,
    STK_PUSH_REQUIRED_FIELDS,
    B2CPayload,
    RegisterUrlPayload,
    StkPushPayload,
    validate_payload,
    validate_positive_number,
    validate_url,
)
from .responses import B2CResponse, RegisterUrlResponse, StkPushResponse
from .transport import RequestDescriptor, RetryPolicy, Transport, exponential_backoff

__all__ = [
    "B2C_PATH",
    "REGISTER_URL_PATH",
    "STK_PUSH_PATH",
    "MpesaClient",
]

STK_PUSH_PATH = "/mpesa/stkpush/v3/processrequest"
B2C_PATH = "/mpesa/b2c/v2/paymentrequest"
REGISTER_URL_PATH = "/v1/c2b-register-url/register"

R = TypeVar("R")


class MpesaClient:
    """
    Entry point for calling the M-Pesa API.

    One client owns one credential cache, one transport and one session.
    Several clients with different configurations can live side by side.

    Transient failures are retried for every operation, including STK push
    and B2C payouts. That is only safe because the remote service is expected
    to deduplicate on the payload's own reference fields (``MerchantRequestID``
    and friends); this client does not generate idempotency keys.
    """

    def __init__(
        self,
        config: MpesaConfig,
        *,
        session: Optional[requests.Session] = None,
        logger: Optional[DiagnosticSink] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.config = config
        self._owns_session = session is None
        self.logger = logger if logger is not None else build_logger(config.log_level)

        clock = clock or time.monotonic
        retry_policy = RetryPolicy(
            config.max_attempts,
            backoff=exponential_backoff(config.backoff_base_seconds),
            sleep=sleep or time.sleep,
            max_delay=config.timeout_seconds,
            deadline=config.timeout_seconds,
            clock=clock,
            logger=self.logger,
        )
        self.transport = Transport(
            config.base_url,
            session=session,
            timeout_seconds=config.timeout_seconds,
            retry_policy=retry_policy,
            logger=self.logger,
        )
        self.tokens = TokenManager(
            self.transport,
            config.api_key,
            config.secret_key,
            clock=clock,
            refresh_margin_seconds=config.token_refresh_margin_seconds,
            logger=self.logger,
        )
        self.logger.info(
            "M-Pesa client initialised for %s",
            config.environment,
            **context(
                environment=config.environment,
                base_url=config.base_url,
                max_attempts=config.max_attempts,
            ),
        )

    @property
    def session(self) -> requests.Session:
        return self.transport.session

    def authenticate(self) -> Credential:
        """Fetch (or reuse) the bearer credential."""
        return self.tokens.ensure_valid()

    def _bearer_headers(self) -> Dict[str, str]:
        credential = self.tokens.ensure_valid()
        return {"Authorization": credential.authorization}

    def call_authenticated(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None,
        *,
        operation: str,
        response_type: Optional[Type[R]] = None,
        success: Optional[Callable[[R], bool]] = None,
    ) -> Any:
        """
        Perform ``method path`` with a bearer token and check the body.

        When ``response_type`` is given the JSON body is decoded with its
        ``from_response`` and ``success`` (default: ``is_success()``) decides
        whether the call worked. A failed check raises a
        ``DomainOperationFailed`` error carrying the body verbatim; such
        failures are not retried.
        """
        try:
            headers = self._bearer_headers()
            payload = self.transport.execute_json(
                RequestDescriptor(method, path, body=body, headers=headers)
            )
            if response_type is None:
                result = payload
            else:
                result = response_type.from_response(payload)  # type: ignore[attr-defined]
                check = success or (lambda response: response.is_success())
                if not check(result):
                    raise domain_failure(operation, payload)
        except MpesaError as exc:
            exc.with_operation(operation)
            self._log_failure(operation, exc)
            raise
        except (TypeError, ValueError, KeyError) as exc:
            error = MpesaError(
                ErrorKind.UNKNOWN_ERROR,
                f"Unexpected response during {operation}: {exc}",
                operation=operation,
            )
            self._log_failure(operation, error)
            raise error from exc

        self.logger.info(
            "%s succeeded",
            operation,
            **context(operation=operation, path=path),
        )
        return result

    def _log_failure(self, operation: str, error: MpesaError) -> None:
        ctx = context(
            operation=operation,
            kind=error.kind.value,
            status=error.status_code,
            response=error.payload,
        )
        if error.kind is ErrorKind.DOMAIN_OPERATION_FAILED:
            self.logger.warning("%s failed: %s", operation, error.describe(), **ctx)
        elif error.kind is ErrorKind.UNKNOWN_ERROR:
            self.logger.critical("%s failed: %s", operation, error.message, **ctx)
        else:
            self.logger.error("%s failed: %s", operation, error.message, **ctx)

    def fetch_all(
        self,
        path: str,
        results_field: str = "data",
        cursor_field: str = "next",
    ) -> List[Any]:
        """
        Collect every page of an authenticated, cursor-paginated listing.

        The credential is checked before each page, so a token that expires
        mid-traversal is refreshed rather than replayed.
        """
        operation = "fetch_all"
        try:
            items = self.transport.fetch_all_pages(
                path,
                results_field,
                cursor_field,
                headers=self._bearer_headers,
            )
        except MpesaError as exc:
            exc.with_operation(operation)
            self._log_failure(operation, exc)
            raise
        except (TypeError, ValueError, KeyError) as exc:
            error = MpesaError(
                ErrorKind.UNKNOWN_ERROR,
                f"Unexpected response during {operation}: {exc}",
                operation=operation,
            )
            self._log_failure(operation, error)
            raise error from exc

        self.logger.info(
            "%s succeeded",
            operation,
            **context(operation=operation, path=path, items=len(items)),
        )
        return items

    def stk_push(self, payload: StkPushPayload) -> StkPushResponse:
        """
        Send an STK push (customer payment prompt).

        Raises ``DomainOperationFailed`` unless ``ResponseCode`` is ``"0"``.
        """
        checked = validate_payload("stk_push", payload, STK_PUSH_REQUIRED_FIELDS)
        _check_fields("stk_push", checked, amounts=("Amount",), urls=("CallBackURL",))
        return self.call_authenticated(
            "POST",
            STK_PUSH_PATH,
            dict(checked),
            operation="stk_push",
            response_type=StkPushResponse,
        )

    def b2c_payment(self, payload: B2CPayload) -> B2CResponse:
        """
        Send a B2C payout.

        Raises ``DomainOperationFailed`` unless ``ResponseCode`` is ``"0"``.
        """
        checked = validate_payload("b2c_payment", payload, B2C_REQUIRED_FIELDS)
        _check_fields(
            "b2c_payment",
            checked,
            amounts=("Amount",),
            urls=("QueueTimeOutURL", "ResultURL"),
        )
        return self.call_authenticated(
            "POST",
            B2C_PATH,
            dict(checked),
            operation="b2c_payment",
            response_type=B2CResponse,
        )

    def register_c2b_url(self, payload: RegisterUrlPayload) -> RegisterUrlResponse:
        """
        Register the C2B validation and confirmation URLs.

        Raises ``DomainOperationFailed`` unless ``responseCode`` is ``"200"``.
        """
        checked = validate_payload(
            "register_c2b_url", payload, REGISTER_URL_REQUIRED_FIELDS
        )
        _check_fields(
            "register_c2b_url",
            checked,
            urls=("ValidationURL", "ConfirmationURL"),
        )
        return self.call_authenticated(
            "POST",
            f"{REGISTER_URL_PATH}?apikey={self.config.api_key}",
            dict(checked),
            operation="register_c2b_url",
            response_type=RegisterUrlResponse,
        )

    def close(self) -> None:
        if self._owns_session:
            self.transport.session.close()

    def __enter__(self) -> "MpesaClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def _check_fields(
    operation: str,
    payload: Mapping[str, Any],
    *,
    amounts: tuple = (),
    urls: tuple = (),
) -> None:
    try:
        for name in amounts:
            validate_positive_number(payload[name], name)
        for name in urls:
            validate_url(payload[name], name)
    except MpesaError as exc:
        raise exc.with_operation(operation)

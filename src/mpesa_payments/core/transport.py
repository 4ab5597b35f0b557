"""
HTTP transport for the M-Pesa API: a single call, a bounded retry policy and
cursor-following pagination.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar, Union

import requests

from .errors import ErrorKind, MpesaError, classify_failure
from .logging import DiagnosticSink, NullLogger, context

__all__ = [
    "RequestDescriptor",
    "RetryPolicy",
    "Transport",
    "exponential_backoff",
]

T = TypeVar("T")

# floor for the per-attempt timeout once the deadline is nearly spent
_MIN_ATTEMPT_TIMEOUT = 0.01


@dataclass(frozen=True)
class RequestDescriptor:
    method: str
    path: str
    body: Optional[Any] = None
    headers: Mapping[str, str] = field(default_factory=dict)


def exponential_backoff(base_seconds: float) -> Callable[[int], float]:
    """Return ``attempt_index -> base_seconds * 2 ** attempt_index``."""

    def delay(attempt_index: int) -> float:
        return base_seconds * (2**attempt_index)

    return delay


class RetryPolicy:
    """
    Bounded retry around a callable.

    Only failures whose classified kind is retryable are re-attempted.
    Validation and authentication errors surface on the first occurrence.
    Once the budget is spent the last classified error is raised as-is.

    With a ``deadline`` (seconds, measured on ``clock`` from the start of the
    first attempt) no retry is scheduled whose backoff would end at or past
    the deadline.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        *,
        backoff: Optional[Callable[[int], float]] = None,
        classifier: Callable[[BaseException], MpesaError] = classify_failure,
        sleep: Callable[[float], None] = time.sleep,
        max_delay: Optional[float] = None,
        deadline: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[DiagnosticSink] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if deadline is not None and deadline <= 0:
            raise ValueError("deadline must be positive")
        self.max_attempts = max_attempts
        self.backoff = backoff or exponential_backoff(0.1)
        self.classifier = classifier
        self.sleep = sleep
        self.max_delay = max_delay
        self.deadline = deadline
        self.clock = clock
        self.logger = logger or NullLogger()

    def delay_for(self, attempt_index: int) -> float:
        delay = max(0.0, self.backoff(attempt_index))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def time_left(self, started: float) -> Optional[float]:
        """Seconds until the deadline for a run begun at ``started``, or None."""
        if self.deadline is None:
            return None
        return started + self.deadline - self.clock()

    def run(
        self,
        attempt: Callable[[int], T],
        *,
        max_attempts: Optional[int] = None,
        label: str = "request",
        started: Optional[float] = None,
    ) -> T:
        budget = max_attempts if max_attempts is not None else self.max_attempts
        if budget < 1:
            raise ValueError("attempt budget must be at least 1")
        if started is None:
            started = self.clock()

        for index in range(budget):
            try:
                return attempt(index)
            except Exception as exc:
                error = self.classifier(exc)
                if error is not exc:
                    error.__cause__ = exc
                remaining = budget - index - 1
                delay = self.delay_for(index)
                time_left = self.time_left(started)
                out_of_time = time_left is not None and time_left <= delay
                if not error.retryable or remaining == 0 or out_of_time:
                    self.logger.debug(
                        "%s classified as %s after %d attempt(s)",
                        label,
                        error.kind.value,
                        index + 1,
                        **context(
                            kind=error.kind.value,
                            status=error.status_code,
                            deadline_reached=out_of_time,
                        ),
                    )
                    raise error
                self.logger.warning(
                    "%s failed (%s); retrying in %.3fs (%d attempt(s) left)",
                    label,
                    error.message,
                    delay,
                    remaining,
                    **context(kind=error.kind.value, attempt=index + 1),
                )
                if delay > 0:
                    self.sleep(delay)
        # unreachable: the last iteration either returns or raises
        raise AssertionError("retry loop exited without a result")


class Transport:
    """
    Performs HTTP calls against one base address using a shared session.
    """

    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout_seconds: float = 5.0,
        retry_policy: Optional[RetryPolicy] = None,
        logger: Optional[DiagnosticSink] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds
        self.logger = logger or NullLogger()
        self.retry_policy = retry_policy or RetryPolicy(
            max_delay=timeout_seconds,
            deadline=timeout_seconds,
            logger=self.logger,
        )

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return self.base_url + path

    def _attempt_timeout(self, started: float) -> float:
        time_left = self.retry_policy.time_left(started)
        if time_left is None:
            return self.timeout_seconds
        return max(min(self.timeout_seconds, time_left), _MIN_ATTEMPT_TIMEOUT)

    def _send(
        self,
        descriptor: RequestDescriptor,
        attempt_index: int,
        timeout: Optional[float] = None,
    ) -> requests.Response:
        url = self.url_for(descriptor.path)
        self.logger.debug(
            "%s %s (attempt %d)",
            descriptor.method,
            url,
            attempt_index + 1,
            **context(method=descriptor.method, url=url, attempt=attempt_index + 1),
        )
        response = self.session.request(
            descriptor.method,
            url,
            json=descriptor.body,
            headers=dict(descriptor.headers),
            timeout=self.timeout_seconds if timeout is None else timeout,
        )
        if response.status_code >= 400:
            raise classify_failure(response)
        return response

    def execute(
        self,
        descriptor: RequestDescriptor,
        attempt_budget: Optional[int] = None,
    ) -> requests.Response:
        label = f"{descriptor.method} {descriptor.path}"
        started = self.retry_policy.clock()
        try:
            return self.retry_policy.run(
                lambda index: self._send(
                    descriptor, index, self._attempt_timeout(started)
                ),
                max_attempts=attempt_budget,
                label=label,
                started=started,
            )
        except MpesaError as exc:
            self.logger.error(
                "%s failed: %s",
                label,
                exc.message,
                **context(kind=exc.kind.value, status=exc.status_code),
            )
            raise

    def execute_json(
        self,
        descriptor: RequestDescriptor,
        attempt_budget: Optional[int] = None,
    ) -> Any:
        response = self.execute(descriptor, attempt_budget)
        try:
            return response.json()
        except ValueError as exc:
            raise MpesaError(
                ErrorKind.UNKNOWN_ERROR,
                f"Failed to parse JSON from {self.url_for(descriptor.path)}",
                status_code=response.status_code,
                payload=response.text,
            ) from exc

    def fetch_all_pages(
        self,
        start_url: str,
        results_field: str = "data",
        cursor_field: str = "next",
        *,
        headers: Union[Mapping[str, str], Callable[[], Mapping[str, str]], None] = None,
    ) -> List[Any]:
        """
        Follow ``cursor_field`` from page to page, collecting ``results_field``.

        Stops when the cursor is missing or falsy. There is no page cap.
        ``headers`` may be a callable, evaluated once per page.
        """
        results: List[Any] = []
        next_url: Optional[str] = start_url
        pages = 0

        while next_url:
            page_headers = headers() if callable(headers) else headers
            body = self.execute_json(
                RequestDescriptor("GET", next_url, headers=dict(page_headers or {}))
            )
            pages += 1
            page: Dict[str, Any] = body if isinstance(body, dict) else {}

            items = page.get(results_field)
            if isinstance(items, list):
                results.extend(items)

            next_url = page.get(cursor_field) or None

        self.logger.debug(
            "Fetched %d item(s) across %d page(s) from %s",
            len(results),
            pages,
            start_url,
            **context(pages=pages, items=len(results)),
        )
        return results

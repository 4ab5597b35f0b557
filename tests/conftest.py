import json
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union
from unittest.mock import MagicMock

import pytest
from requests import Response

from mpesa_payments import MpesaClient, MpesaConfig

TOKEN_FRAGMENT = "/v1/token/generate"


def make_response(status_code: int = 200, body: Any = None, *, raw: Optional[bytes] = None) -> Response:
    """Create a real Response object carrying ``body`` as JSON."""
    response = Response()
    response.status_code = status_code
    if raw is not None:
        response._content = raw
    elif body is None:
        response._content = b""
    else:
        response._content = json.dumps(body).encode("utf-8")
    response.encoding = "utf-8"
    response.headers["Content-Type"] = "application/json"
    return response


def token_response(token: str = "T", expires_in: Any = "3600") -> Response:
    return make_response(
        200, {"access_token": token, "token_type": "Bearer", "expires_in": expires_in}
    )


@dataclass
class Call:
    method: str
    url: str
    json: Any
    headers: Dict[str, str]
    timeout: Any


Outcome = Union[Response, BaseException, Callable[[Call], Response]]


@dataclass
class _Route:
    fragment: str
    outcomes: List[Outcome] = field(default_factory=list)


class FakeSession:
    """
    Stand-in for ``requests.Session``.

    Outcomes are queued per URL fragment. The last queued outcome of a route
    is reused once the queue runs dry, so ``queue(path, failure)`` keeps
    failing forever.
    """

    def __init__(self) -> None:
        self.calls: List[Call] = []
        self.closed = False
        self._routes: List[_Route] = []
        self._lock = threading.Lock()

    def queue(self, fragment: str, *outcomes: Outcome) -> "FakeSession":
        for route in self._routes:
            if route.fragment == fragment:
                route.outcomes.extend(outcomes)
                return self
        self._routes.append(_Route(fragment, list(outcomes)))
        return self

    def calls_to(self, fragment: str) -> List[Call]:
        return [call for call in self.calls if fragment in call.url]

    def request(self, method, url, json=None, headers=None, timeout=None, **kwargs):
        call = Call(method, url, json, dict(headers or {}), timeout)
        with self._lock:
            self.calls.append(call)
            route = next((r for r in self._routes if r.fragment in url), None)
            if route is None or not route.outcomes:
                raise AssertionError(f"unexpected request {method} {url}")
            outcome = route.outcomes[0] if len(route.outcomes) == 1 else route.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome) and not isinstance(outcome, Response):
            return outcome(call)
        return outcome

    def close(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def logger():
    return MagicMock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def config():
    return MpesaConfig(
        environment="sandbox",
        api_key="testApiKey",
        secret_key="testSecretKey",
        timeout_millis=5000,
        max_attempts=3,
        log_level="none",
    )


@pytest.fixture
def make_client(session, clock, logger, sleeps):
    def factory(cfg: MpesaConfig) -> MpesaClient:
        return MpesaClient(
            cfg,
            session=session,
            logger=logger,
            clock=clock,
            sleep=sleeps.append,
        )

    return factory


@pytest.fixture
def client(make_client, config):
    return make_client(config)


@pytest.fixture
def stk_payload():
    return {
        "MerchantRequestID": "SFC-Testing-9146-4216-9455-e3947ac570fc",
        "BusinessShortCode": "554433",
        "Password": "123",
        "Timestamp": "20160216165627",
        "TransactionType": "CustomerPayBillOnline",
        "Amount": 10.00,
        "PartyA": 251700404789,
        "PartyB": 554433,
        "PhoneNumber": 251700404789,
        "TransactionDesc": "Monthly Unlimited Package via Chatbot",
        "CallBackURL": "https://apigee-listener.oat.mpesa.safaricomet.net/api/ussd-push/result",
        "AccountReference": "DATA",
        "ReferenceData": [
            {"Key": "BundleName", "Value": "Monthly Unlimited Bundle"},
            {"Key": "BundleType", "Value": "Self"},
        ],
    }


@pytest.fixture
def b2c_payload():
    return {
        "InitiatorName": "testapi",
        "SecurityCredential": "c2VjdXJpdHktY3JlZGVudGlhbA==",
        "Occassion": "Disbursement",
        "CommandID": "BusinessPayment",
        "PartyA": 101010,
        "PartyB": "251700100100",
        "Remarks": "Test B2C",
        "Amount": 12,
        "QueueTimeOutURL": "https://mydomain.com/b2c/timeout",
        "ResultURL": "https://mydomain.com/b2c/result",
    }


@pytest.fixture
def register_payload():
    return {
        "ShortCode": 101010,
        "ResponseType": "Completed",
        "CommandID": "RegisterURL",
        "ConfirmationURL": "http://mydomain.com/c2b/confirmation",
        "ValidationURL": "http://mydomain.com/c2b/validation",
    }

import base64
import logging
from concurrent.futures import ThreadPoolExecutor

import pytest
import requests

from conftest import TOKEN_FRAGMENT, make_response, token_response
from mpesa_payments import (
    B2CResponse,
    ErrorKind,
    MpesaClient,
    MpesaConfig,
    MpesaError,
    RegisterUrlResponse,
    StkPushResponse,
)
from mpesa_payments.core.client import B2C_PATH, REGISTER_URL_PATH, STK_PUSH_PATH

STK_SUCCESS = {
    "MerchantRequestID": "testRequestId",
    "CheckoutRequestID": "testCheckoutId",
    "ResponseCode": "0",
    "ResponseDescription": "Success",
    "CustomerMessage": "Request accepted",
}


@pytest.fixture
def authed(session):
    session.queue(TOKEN_FRAGMENT, token_response("testToken", "3600"))
    return session


class TestCallAuthenticated:
    def test_scenario_basic_then_bearer(self, make_client, session, clock):
        cfg = MpesaConfig(environment="sandbox", api_key="K", secret_key="S")
        client = make_client(cfg)
        session.queue(TOKEN_FRAGMENT, token_response("T", "3600"))
        session.queue("/orders", make_response(200, {"ok": True}))

        client.call_authenticated("GET", "/orders", operation="list_orders")
        clock.advance(1800)
        client.call_authenticated("GET", "/orders", operation="list_orders")
        clock.advance(1799)
        client.call_authenticated("GET", "/orders", operation="list_orders")

        [auth_call] = session.calls_to(TOKEN_FRAGMENT)
        assert auth_call.headers["Authorization"] == "Basic " + base64.b64encode(b"K:S").decode()
        order_calls = session.calls_to("/orders")
        assert [c.headers["Authorization"] for c in order_calls] == ["Bearer T"] * 3

    def test_one_more_authentication_after_expiry(self, client, authed, clock):
        authed.queue("/orders", make_response(200, {"ok": True}))

        client.call_authenticated("GET", "/orders", operation="list_orders")
        client.call_authenticated("GET", "/orders", operation="list_orders")
        assert len(authed.calls_to(TOKEN_FRAGMENT)) == 1

        clock.advance(3600)
        client.call_authenticated("GET", "/orders", operation="list_orders")
        assert len(authed.calls_to(TOKEN_FRAGMENT)) == 2

    def test_without_response_type_returns_body(self, client, authed):
        authed.queue("/raw", make_response(200, {"anything": [1, 2]}))
        assert client.call_authenticated("GET", "/raw", operation="raw") == {"anything": [1, 2]}

    def test_custom_success_predicate(self, client, authed):
        body = dict(STK_SUCCESS, ResponseCode="0")
        authed.queue("/custom", make_response(200, body))

        with pytest.raises(MpesaError) as excinfo:
            client.call_authenticated(
                "POST",
                "/custom",
                {},
                operation="custom",
                response_type=StkPushResponse,
                success=lambda response: response.customer_message == "never",
            )

        assert excinfo.value.kind is ErrorKind.DOMAIN_OPERATION_FAILED
        assert excinfo.value.operation == "custom"

    def test_authentication_failure_stops_the_call(self, client, session):
        session.queue(TOKEN_FRAGMENT, make_response(401, {"resultDesc": "Bad key"}))

        with pytest.raises(MpesaError) as excinfo:
            client.call_authenticated("GET", "/orders", operation="list_orders")

        assert excinfo.value.kind is ErrorKind.AUTHENTICATION_FAILED
        assert session.calls_to("/orders") == []

    def test_non_object_body_is_unknown_error(self, client, authed, logger):
        authed.queue(STK_PUSH_PATH, make_response(200, ["unexpected"]))

        with pytest.raises(MpesaError) as excinfo:
            client.call_authenticated(
                "POST",
                STK_PUSH_PATH,
                {},
                operation="stk_push",
                response_type=StkPushResponse,
            )

        assert excinfo.value.kind is ErrorKind.UNKNOWN_ERROR
        assert excinfo.value.operation == "stk_push"
        logger.critical.assert_called_once()

    def test_concurrent_calls_share_one_authentication(self, client, authed):
        authed.queue("/orders", make_response(200, {"ok": True}))

        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(
                pool.map(
                    lambda _: client.call_authenticated("GET", "/orders", operation="list"),
                    range(12),
                )
            )

        assert results == [{"ok": True}] * 12
        assert len(authed.calls_to(TOKEN_FRAGMENT)) == 1

    def test_concurrent_calls_after_expiry_refresh_once(self, client, session, clock):
        session.queue(TOKEN_FRAGMENT, token_response("T1", "60"), token_response("T2", "3600"))
        session.queue("/orders", make_response(200, {"ok": True}))
        client.call_authenticated("GET", "/orders", operation="list")
        clock.advance(60)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(
                pool.map(
                    lambda _: client.call_authenticated("GET", "/orders", operation="list"),
                    range(16),
                )
            )

        assert len(session.calls_to(TOKEN_FRAGMENT)) == 2
        later = session.calls_to("/orders")[1:]
        assert {c.headers["Authorization"] for c in later} == {"Bearer T2"}


class TestStkPush:
    def test_success(self, client, authed, stk_payload, logger):
        authed.queue(STK_PUSH_PATH, make_response(200, STK_SUCCESS))

        response = client.stk_push(stk_payload)

        call = authed.calls_to(STK_PUSH_PATH)[0]
        assert call.method == "POST"
        assert call.url == "https://apisandbox.safaricom.et" + STK_PUSH_PATH
        assert call.json == stk_payload
        assert call.headers == {"Authorization": "Bearer testToken"}
        assert response == StkPushResponse(
            merchant_request_id="testRequestId",
            checkout_request_id="testCheckoutId",
            response_code="0",
            response_description="Success",
            customer_message="Request accepted",
        )
        assert response.raw == STK_SUCCESS
        assert str(response) == "STK Push Response: Success (Code: 0)"
        logger.info.assert_any_call(
            "%s succeeded",
            "stk_push",
            extra={"mpesa": {"operation": "stk_push", "path": STK_PUSH_PATH}},
        )

    def test_failure_code_raises_domain_error_with_body(self, client, authed, stk_payload, logger):
        body = dict(STK_SUCCESS, ResponseCode="1", ResponseDescription="Failed")
        authed.queue(STK_PUSH_PATH, make_response(200, body))

        with pytest.raises(MpesaError) as excinfo:
            client.stk_push(stk_payload)

        error = excinfo.value
        assert error.kind is ErrorKind.DOMAIN_OPERATION_FAILED
        assert error.payload == body
        assert error.operation == "stk_push"
        assert error.describe() == "STK Push Error: Failed (Code: 1)"
        assert len(authed.calls_to(STK_PUSH_PATH)) == 1
        logger.warning.assert_called_once()

    def test_bad_request_is_not_retried(self, client, authed, stk_payload):
        authed.queue(STK_PUSH_PATH, make_response(400, {"errorCode": "400.002.02"}))

        with pytest.raises(MpesaError) as excinfo:
            client.stk_push(stk_payload)

        assert excinfo.value.kind is ErrorKind.VALIDATION_FAILED
        assert excinfo.value.operation == "stk_push"
        assert excinfo.value.code == "400.002.02"
        assert len(authed.calls_to(STK_PUSH_PATH)) == 1

    def test_server_errors_exhaust_attempts(self, client, authed, stk_payload, sleeps):
        authed.queue(STK_PUSH_PATH, make_response(503))

        with pytest.raises(MpesaError) as excinfo:
            client.stk_push(stk_payload)

        assert excinfo.value.kind is ErrorKind.TRANSIENT_SERVICE_ERROR
        assert len(authed.calls_to(STK_PUSH_PATH)) == 3
        assert sleeps == pytest.approx([0.1, 0.2])

    def test_timeout_then_success(self, client, authed, stk_payload):
        authed.queue(
            STK_PUSH_PATH,
            requests.Timeout("read timed out"),
            make_response(200, STK_SUCCESS),
        )

        assert client.stk_push(stk_payload).is_success()
        assert len(authed.calls_to(STK_PUSH_PATH)) == 2

    def test_missing_field_fails_before_any_request(self, client, session, stk_payload):
        del stk_payload["CallBackURL"]

        with pytest.raises(MpesaError) as excinfo:
            client.stk_push(stk_payload)

        assert excinfo.value.kind is ErrorKind.VALIDATION_FAILED
        assert "CallBackURL" in excinfo.value.message
        assert session.calls == []

    @pytest.mark.parametrize(
        "field, value",
        [("Amount", 0), ("Amount", "ten"), ("CallBackURL", "not a url")],
    )
    def test_invalid_field_values(self, client, session, stk_payload, field, value):
        stk_payload[field] = value

        with pytest.raises(MpesaError) as excinfo:
            client.stk_push(stk_payload)

        assert excinfo.value.kind is ErrorKind.VALIDATION_FAILED
        assert excinfo.value.operation == "stk_push"
        assert session.calls == []


class TestB2CPayment:
    def test_success(self, client, authed, b2c_payload):
        body = {
            "ConversationID": "AG_20240101_1",
            "OriginatorConversationID": "orig-1",
            "ResponseCode": "0",
            "ResponseDescription": "Accept the service request successfully.",
        }
        authed.queue(B2C_PATH, make_response(200, body))

        response = client.b2c_payment(b2c_payload)

        assert isinstance(response, B2CResponse)
        assert response.conversation_id == "AG_20240101_1"
        assert response.is_success()
        assert authed.calls_to(B2C_PATH)[0].json == b2c_payload

    def test_failure_is_tagged_with_operation(self, client, authed, b2c_payload):
        body = {"ResponseCode": "1", "ResponseDescription": "Failed"}
        authed.queue(B2C_PATH, make_response(200, body))

        with pytest.raises(MpesaError) as excinfo:
            client.b2c_payment(b2c_payload)

        assert excinfo.value.kind is ErrorKind.DOMAIN_OPERATION_FAILED
        assert excinfo.value.operation == "b2c_payment"
        assert excinfo.value.payload == body
        assert excinfo.value.describe() == "B2C Error: Failed (Code: 1)"


class TestRegisterC2BUrl:
    def test_success_uses_api_key_query(self, client, authed, register_payload):
        body = {
            "responseCode": "200",
            "responseMessage": "Request processed successfully",
            "customerMessage": "Request processed successfully",
            "timestamp": "2024-01-01T00:00:00.000",
        }
        authed.queue(REGISTER_URL_PATH, make_response(200, body))

        response = client.register_c2b_url(register_payload)

        assert isinstance(response, RegisterUrlResponse)
        assert response.is_success()
        call = authed.calls_to(REGISTER_URL_PATH)[0]
        assert call.url.endswith(f"{REGISTER_URL_PATH}?apikey=testApiKey")

    def test_non_200_code_is_domain_failure(self, client, authed, register_payload):
        body = {"responseCode": "400", "responseDescription": "Failed"}
        authed.queue(REGISTER_URL_PATH, make_response(200, body))

        with pytest.raises(MpesaError) as excinfo:
            client.register_c2b_url(register_payload)

        assert excinfo.value.kind is ErrorKind.DOMAIN_OPERATION_FAILED
        assert excinfo.value.payload == body


class TestFetchAll:
    def test_paginates_with_bearer_token(self, client, authed):
        authed.queue(
            "/transactions",
            make_response(200, {"data": [1, 2], "next": "/transactions?cursor=A"}),
            make_response(200, {"data": [3, 4], "next": None}),
        )

        assert client.fetch_all("/transactions") == [1, 2, 3, 4]
        page_calls = authed.calls_to("/transactions")
        assert len(page_calls) == 2
        assert all(c.headers["Authorization"] == "Bearer testToken" for c in page_calls)

    def test_refreshes_token_that_expires_between_pages(self, client, session, clock):
        session.queue(TOKEN_FRAGMENT, token_response("T1", "10"), token_response("T2", "3600"))

        def slow_first_page(call):
            clock.advance(20)
            return make_response(200, {"data": [1], "next": "/transactions?cursor=A"})

        session.queue(
            "/transactions",
            slow_first_page,
            make_response(200, {"data": [2], "next": None}),
        )

        assert client.fetch_all("/transactions") == [1, 2]
        page_calls = session.calls_to("/transactions")
        assert [c.headers["Authorization"] for c in page_calls] == ["Bearer T1", "Bearer T2"]
        assert len(session.calls_to(TOKEN_FRAGMENT)) == 2

    def test_logs_success_with_operation(self, client, authed, logger):
        authed.queue("/transactions", make_response(200, {"data": [1]}))

        client.fetch_all("/transactions")

        assert logger.info.call_args.args == ("%s succeeded", "fetch_all")
        assert logger.info.call_args.kwargs["extra"]["mpesa"]["items"] == 1

    def test_page_failure_is_tagged_and_logged(self, client, authed, logger):
        authed.queue(
            "/transactions",
            make_response(200, {"data": [1], "next": "/transactions?cursor=A"}),
            make_response(404),
        )

        with pytest.raises(MpesaError) as excinfo:
            client.fetch_all("/transactions")

        assert excinfo.value.kind is ErrorKind.VALIDATION_FAILED
        assert excinfo.value.operation == "fetch_all"
        assert logger.error.call_args.args == ("%s failed: %s", "fetch_all", excinfo.value.message)
        assert logger.error.call_args.kwargs["extra"]["mpesa"]["operation"] == "fetch_all"


class TestClientLifecycle:
    def test_clients_keep_separate_credentials(self, session, clock):
        session.queue(TOKEN_FRAGMENT, token_response("A"), token_response("B"))
        first = MpesaClient(
            MpesaConfig(environment="sandbox", api_key="k1", secret_key="s1", log_level="none"),
            session=session,
            clock=clock,
        )
        second = MpesaClient(
            MpesaConfig(environment="production", api_key="k2", secret_key="s2", log_level="none"),
            session=session,
            clock=clock,
        )

        assert first.authenticate().token == "A"
        assert second.authenticate().token == "B"
        assert first.authenticate().token == "A"
        assert session.calls[1].url.startswith("https://api.safaricom.et/")

    def test_log_levels_are_per_client(self, session):
        verbose = MpesaClient(
            MpesaConfig(environment="sandbox", api_key="k", secret_key="s", log_level="verbose"),
            session=session,
        )
        quiet = MpesaClient(
            MpesaConfig(environment="sandbox", api_key="k", secret_key="s", log_level="error"),
            session=session,
        )

        assert verbose.logger.isEnabledFor(logging.DEBUG)
        assert not quiet.logger.isEnabledFor(logging.INFO)

    def test_logs_construction(self, config, session, logger):
        MpesaClient(config, session=session, logger=logger)
        logger.info.assert_called_once()
        assert logger.info.call_args.args[1] == "sandbox"

    def test_close_leaves_injected_session_open(self, client, session):
        client.close()
        assert not session.closed

    def test_context_manager_closes_owned_session(self, config, monkeypatch):
        closed = []
        monkeypatch.setattr(requests.Session, "close", lambda self: closed.append(self))

        with MpesaClient(config) as client:
            owned = client.session

        assert closed == [owned]

"""
Tests for the Stripe gateway
============================
Webhook signature handling, form encoding, and request/response mapping
against a fake aiohttp session.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import aiohttp
import pytest

from goalstake.core.config import StripeConfig
from goalstake.core.exceptions import ConfigurationError, GatewayError, ValidationError
from goalstake.core.paths import GoalAddress
from goalstake.settlement.gateway import PAYMENT_COMPLETED, SessionMetadata
from goalstake.settlement.stripe_gateway import StripeGateway, StripeSignature, encode_form

SECRET = "whsec_test"
NOW = 1_700_000_000


class FakeResponse:
    def __init__(self, status: int, body: Any):
        self.status = status
        self._body = body

    async def json(self, content_type: Optional[str] = "application/json"):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeRequest:
    def __init__(self, outcome):
        self._outcome = outcome

    async def __aenter__(self):
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        return self._outcome

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeHttpSession:
    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.outcomes: List[Any] = []
        self.closed = False

    def respond(self, status: int, body: Any) -> None:
        self.outcomes.append(FakeResponse(status, body))

    def fail(self, exc: BaseException) -> None:
        self.outcomes.append(exc)

    def request(self, method, url, data=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "data": data, "headers": headers})
        return FakeRequest(self.outcomes.pop(0))

    async def close(self):
        self.closed = True


@pytest.fixture
def http():
    return FakeHttpSession()


@pytest.fixture
def stripe(http):
    config = StripeConfig(api_key="sk_test_abc", webhook_secret=SECRET)
    return StripeGateway(config, http_session=http, clock=lambda: NOW)


def goal_metadata():
    return SessionMetadata.for_goal(GoalAddress("u1", "g1", "c1"))


def event_payload(event_type=PAYMENT_COMPLETED, metadata=None):
    return json.dumps({
        "id": "evt_1",
        "type": event_type,
        "data": {"object": {
            "id": "cs_1",
            "payment_intent": "pi_1",
            "metadata": metadata if metadata is not None else goal_metadata().to_wire(),
        }},
    }).encode()


class TestStripeSignature:
    def test_sign_then_verify(self):
        payload = b'{"type": "checkout.session.completed"}'
        header = StripeSignature.sign(payload, SECRET, timestamp=NOW)
        assert header.startswith(f"t={NOW},v1=")
        assert StripeSignature.verify(payload, SECRET, header, now=NOW)

    def test_tampered_payload(self):
        header = StripeSignature.sign(b"original", SECRET, timestamp=NOW)
        assert not StripeSignature.verify(b"tampered", SECRET, header, now=NOW)

    def test_wrong_secret(self):
        header = StripeSignature.sign(b"payload", "whsec_other", timestamp=NOW)
        assert not StripeSignature.verify(b"payload", SECRET, header, now=NOW)

    def test_outside_tolerance(self):
        header = StripeSignature.sign(b"payload", SECRET, timestamp=NOW - 301)
        assert not StripeSignature.verify(b"payload", SECRET, header, tolerance_seconds=300, now=NOW)
        assert StripeSignature.verify(b"payload", SECRET, header, tolerance_seconds=400, now=NOW)

    def test_any_matching_v1_accepted(self):
        good = StripeSignature.compute(b"payload", SECRET, NOW)
        header = f"t={NOW},v1=deadbeef,v1={good}"
        assert StripeSignature.verify(b"payload", SECRET, header, now=NOW)

    @pytest.mark.parametrize("header", ["", "garbage", f"t={NOW}", "v1=abc", "t=notanumber,v1=abc"])
    def test_malformed_headers(self, header):
        assert not StripeSignature.verify(b"payload", SECRET, header, now=NOW)


class TestEncodeForm:
    def test_nested_fields(self):
        fields = encode_form({
            "mode": "payment",
            "line_items": [{"price_data": {"unit_amount": 1000}, "quantity": 1}],
            "metadata": {"userId": "u1"},
            "skip": None,
            "flag": True,
        })
        assert fields == [
            ("mode", "payment"),
            ("line_items[0][price_data][unit_amount]", "1000"),
            ("line_items[0][quantity]", "1"),
            ("metadata[userId]", "u1"),
            ("flag", "true"),
        ]


class TestRequests:
    @pytest.mark.asyncio
    async def test_create_session(self, stripe, http):
        http.respond(200, {"id": "cs_1", "url": "https://checkout.stripe.com/c/cs_1"})

        session = await stripe.create_session(
            goal_metadata(), 1000, "jpy", "https://app/success", "https://app/cancel", description="Run"
        )

        assert session.session_id == "cs_1"
        assert session.url == "https://checkout.stripe.com/c/cs_1"
        call = http.calls[0]
        assert call["method"] == "POST"
        assert call["url"] == "https://api.stripe.com/v1/checkout/sessions"
        assert call["headers"]["Authorization"] == "Bearer sk_test_abc"
        form = dict(call["data"])
        assert form["line_items[0][price_data][unit_amount]"] == "1000"
        assert form["line_items[0][price_data][currency]"] == "jpy"
        assert form["metadata[goalId]"] == "g1"
        assert form["metadata[categoryId]"] == "c1"
        assert form["success_url"] == "https://app/success"

    @pytest.mark.asyncio
    async def test_verify_session(self, stripe, http):
        http.respond(200, {
            "id": "cs_1",
            "payment_status": "paid",
            "payment_intent": {"id": "pi_9", "object": "payment_intent"},
            "metadata": goal_metadata().to_wire(),
        })

        status = await stripe.verify_session("cs_1")

        assert status.paid is True
        assert status.charge_reference == "pi_9"
        assert status.metadata == goal_metadata()
        assert http.calls[0]["method"] == "GET"
        assert http.calls[0]["data"] is None

    @pytest.mark.asyncio
    async def test_unpaid_session(self, stripe, http):
        http.respond(200, {"id": "cs_1", "payment_status": "unpaid", "payment_intent": None, "metadata": {}})
        status = await stripe.verify_session("cs_1")
        assert status.paid is False
        assert status.metadata is None

    @pytest.mark.asyncio
    async def test_refund_partial(self, stripe, http):
        http.respond(200, {"id": "re_1", "amount": 250})

        receipt = await stripe.refund_partial("pi_1", 250, {"milestone": "25"})

        assert receipt.refund_id == "re_1"
        assert receipt.amount == 250
        form = dict(http.calls[0]["data"])
        assert form == {
            "payment_intent": "pi_1",
            "amount": "250",
            "reason": "requested_by_customer",
            "metadata[milestone]": "25",
        }

    @pytest.mark.asyncio
    async def test_error_status(self, stripe, http):
        http.respond(402, {"error": {"type": "card_error", "message": "Your card was declined."}})
        with pytest.raises(GatewayError) as exc_info:
            await stripe.refund_partial("pi_1", 250)
        assert "declined" in str(exc_info.value)
        assert exc_info.value.context["status"] == 402

    @pytest.mark.asyncio
    async def test_transport_error(self, stripe, http):
        http.fail(aiohttp.ClientConnectionError("connection reset"))
        with pytest.raises(GatewayError) as exc_info:
            await stripe.verify_session("cs_1")
        assert exc_info.value.operation == "verify_session"

    @pytest.mark.asyncio
    async def test_timeout(self, stripe, http):
        http.fail(asyncio.TimeoutError())
        with pytest.raises(GatewayError):
            await stripe.verify_session("cs_1")

    @pytest.mark.asyncio
    async def test_missing_api_key(self, http):
        gateway = StripeGateway(StripeConfig(), http_session=http)
        with pytest.raises(ConfigurationError):
            await gateway.verify_session("cs_1")
        assert http.calls == []

    @pytest.mark.asyncio
    async def test_injected_session_not_closed(self, stripe, http):
        await stripe.close()
        assert http.closed is False


class TestParseEvent:
    def test_payment_completed(self, stripe):
        payload = event_payload()
        event = stripe.parse_event(payload, StripeSignature.sign(payload, SECRET, timestamp=NOW))
        assert event.session_id == "cs_1"
        assert event.charge_reference == "pi_1"
        assert event.metadata.goal == GoalAddress("u1", "g1", "c1")

    def test_other_event_types_ignored(self, stripe):
        payload = event_payload(event_type="payment_intent.created")
        assert stripe.parse_event(payload, StripeSignature.sign(payload, SECRET, timestamp=NOW)) is None

    def test_bad_signature(self, stripe):
        payload = event_payload()
        with pytest.raises(ValidationError):
            stripe.parse_event(payload, StripeSignature.sign(payload, "whsec_wrong", timestamp=NOW))

    def test_missing_signature(self, stripe):
        with pytest.raises(ValidationError):
            stripe.parse_event(event_payload(), None)

    def test_invalid_json(self, stripe):
        payload = b"not json"
        with pytest.raises(ValidationError):
            stripe.parse_event(payload, StripeSignature.sign(payload, SECRET, timestamp=NOW))

    def test_missing_webhook_secret(self):
        gateway = StripeGateway(StripeConfig(api_key="sk_test_abc"))
        with pytest.raises(ConfigurationError):
            gateway.parse_event(event_payload(), "t=1,v1=abc")

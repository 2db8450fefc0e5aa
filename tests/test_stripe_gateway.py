"""
Tests for `integrations/stripe_gateway.py`.

The HTTP layer is replaced with `httpx.MockTransport`, so these check the
requests we build and how responses map onto ChargeResult / GatewayError.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from urllib.parse import parse_qs

import httpx
import pytest

from domain.errors import GatewayError, ValidationError
from factories import make_buyer
from integrations.stripe_gateway import StripeGateway, verify_webhook_signature

API_BASE = "https://api.stripe.test/v1"


class Recorder:
    """MockTransport handler that replays canned responses by path."""

    def __init__(self, responses):
        self.responses = responses
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses[request.url.path.rsplit("/", 1)[-1]]
        return httpx.Response(status, json=body)


def form(request: httpx.Request) -> dict:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


def make_gateway(handler) -> StripeGateway:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return StripeGateway("sk_test_123", api_base=API_BASE, http_client=client)


def test_missing_api_key_is_rejected() -> None:
    with pytest.raises(RuntimeError):
        StripeGateway("")


def test_create_customer_posts_buyer_details() -> None:
    recorder = Recorder({"customers": (200, {"id": "cus_123"})})
    buyer = make_buyer(customer_ref=None)

    with make_gateway(recorder) as gateway:
        assert gateway.create_customer(buyer) == "cus_123"

    request = recorder.requests[0]
    fields = form(request)
    assert request.headers["Authorization"] == "Bearer sk_test_123"
    assert request.headers["Idempotency-Key"] == f"customer-{buyer.buyer_id}"
    assert fields["email"] == buyer.email
    assert fields["metadata[user_id]"] == str(buyer.buyer_id)


def test_charge_success() -> None:
    recorder = Recorder({"payment_intents": (200, {"id": "pi_1", "status": "succeeded"})})

    with make_gateway(recorder) as gateway:
        result = gateway.charge_off_session(
            "cus_1",
            "pm_1",
            13200,
            "gbp",
            metadata={"invoice_id": "abc"},
            idempotency_key="invoice-abc-attempt-1",
        )

    assert result.succeeded
    assert result.charge_ref == "pi_1"
    fields = form(recorder.requests[0])
    assert fields["amount"] == "13200"
    assert fields["off_session"] == "true"
    assert fields["confirm"] == "true"
    assert fields["metadata[invoice_id]"] == "abc"
    assert recorder.requests[0].headers["Idempotency-Key"] == "invoice-abc-attempt-1"


def test_charge_decline_is_a_result_not_an_error() -> None:
    body = {
        "error": {
            "type": "card_error",
            "code": "card_declined",
            "decline_code": "insufficient_funds",
            "payment_intent": {"id": "pi_2", "status": "requires_payment_method"},
        }
    }
    recorder = Recorder({"payment_intents": (402, body)})

    with make_gateway(recorder) as gateway:
        result = gateway.charge_off_session(
            "cus_1", "pm_1", 500, "gbp", metadata={}, idempotency_key="k"
        )

    assert not result.succeeded
    assert result.charge_ref == "pi_2"
    assert result.decline_code == "insufficient_funds"


def test_charge_requiring_action_is_not_success() -> None:
    recorder = Recorder({"payment_intents": (200, {"id": "pi_3", "status": "requires_action"})})

    with make_gateway(recorder) as gateway:
        result = gateway.charge_off_session("cus_1", "pm_1", 500, "gbp", metadata={}, idempotency_key="k")

    assert not result.succeeded
    assert result.status == "requires_action"


def test_charge_rejects_non_positive_amount() -> None:
    with make_gateway(Recorder({})) as gateway:
        with pytest.raises(ValidationError):
            gateway.charge_off_session("cus_1", "pm_1", 0, "gbp", metadata={}, idempotency_key="k")


def test_server_error_is_retryable_gateway_error() -> None:
    recorder = Recorder({"payment_intents": (500, {"error": {"message": "boom", "code": "api_error"}})})

    with make_gateway(recorder) as gateway:
        with pytest.raises(GatewayError) as exc_info:
            gateway.charge_off_session("cus_1", "pm_1", 500, "gbp", metadata={}, idempotency_key="k")

    assert exc_info.value.retryable
    assert exc_info.value.code == "api_error"


def test_bad_request_is_not_retryable() -> None:
    recorder = Recorder({"customers": (400, {"error": {"message": "Invalid email"}})})

    with make_gateway(recorder) as gateway:
        with pytest.raises(GatewayError) as exc_info:
            gateway.create_customer(make_buyer())

    assert not exc_info.value.retryable


def test_transport_failure_is_retryable_gateway_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with make_gateway(handler) as gateway:
        with pytest.raises(GatewayError) as exc_info:
            gateway.create_customer(make_buyer())

    assert exc_info.value.retryable


def test_payment_link_creates_price_then_link() -> None:
    recorder = Recorder(
        {
            "prices": (200, {"id": "price_1"}),
            "payment_links": (200, {"id": "plink_1", "url": "https://buy.stripe.com/test_1"}),
        }
    )

    with make_gateway(recorder) as gateway:
        link = gateway.create_payment_link(
            13200,
            "gbp",
            description="Invoice INV-1",
            metadata={"invoice_id": "abc", "invoice_number": "INV-1"},
            redirect_url="https://auctions.example.com/invoice/abc?payment=success",
            idempotency_key="invoice-abc-attempt-1-link",
        )

    assert link.link_ref == "plink_1"
    assert link.url == "https://buy.stripe.com/test_1"

    price_request, link_request = recorder.requests
    price_fields = form(price_request)
    assert price_fields["unit_amount"] == "13200"
    assert price_fields["product_data[name]"] == "Invoice INV-1"
    assert price_request.headers["Idempotency-Key"] == "invoice-abc-attempt-1-link-price"

    link_fields = form(link_request)
    assert link_fields["line_items[0][price]"] == "price_1"
    assert link_fields["line_items[0][quantity]"] == "1"
    assert link_fields["metadata[invoice_id]"] == "abc"
    assert link_fields["payment_intent_data[metadata][invoice_number]"] == "INV-1"
    assert link_fields["after_completion[type]"] == "redirect"
    assert link_request.headers["Idempotency-Key"] == "invoice-abc-attempt-1-link"


def test_payment_link_without_url_is_an_error() -> None:
    recorder = Recorder({"prices": (200, {"id": "price_1"}), "payment_links": (200, {"id": "plink_1"})})

    with make_gateway(recorder) as gateway:
        with pytest.raises(GatewayError):
            gateway.create_payment_link(100, "gbp", description="x", metadata={})


# ----------------------------------------------------------------------
# Webhook signatures
# ----------------------------------------------------------------------

SECRET = "whsec_test"
PAYLOAD = json.dumps({"id": "evt_1", "type": "payment_intent.succeeded"}).encode()


def sign(payload: bytes, timestamp: int, secret: str = SECRET) -> str:
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_valid_signature_returns_event() -> None:
    event = verify_webhook_signature(PAYLOAD, sign(PAYLOAD, 1_700_000_000), SECRET, now=1_700_000_010)

    assert event["id"] == "evt_1"


def test_any_matching_v1_signature_is_accepted() -> None:
    header = sign(PAYLOAD, 1_700_000_000) + ",v1=deadbeef"

    assert verify_webhook_signature(PAYLOAD, header, SECRET, now=1_700_000_000)["type"] == (
        "payment_intent.succeeded"
    )


@pytest.mark.parametrize(
    "header",
    [
        None,
        "",
        "v1=abc",
        "t=notanumber,v1=abc",
        sign(PAYLOAD, 1_700_000_000, secret="whsec_other"),
    ],
)
def test_invalid_signatures_are_rejected(header) -> None:
    with pytest.raises(ValidationError):
        verify_webhook_signature(PAYLOAD, header, SECRET, now=1_700_000_000)


def test_tampered_body_is_rejected() -> None:
    header = sign(PAYLOAD, 1_700_000_000)

    with pytest.raises(ValidationError):
        verify_webhook_signature(PAYLOAD + b" ", header, SECRET, now=1_700_000_000)


def test_stale_timestamp_is_rejected() -> None:
    header = sign(PAYLOAD, 1_700_000_000)

    with pytest.raises(ValidationError):
        verify_webhook_signature(PAYLOAD, header, SECRET, now=1_700_000_000 + 301)

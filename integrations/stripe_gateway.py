"""
Payment gateway client for the Stripe REST API.

Provides the three gateway operations billing needs:
- create_customer
- charge_off_session (PaymentIntent, confirmed off-session)
- create_payment_link (a one-off Price, then a Payment Link for it)

plus webhook signature verification.

Every call is a single blocking HTTP request with a timeout and no retry;
callers decide whether to try again. Card declines are returned as a failed
ChargeResult. Transport failures and API errors raise GatewayError.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import Any, Mapping, Optional

import httpx

from config.settings import Settings
from domain.buyer import Buyer
from domain.errors import GatewayError, ValidationError
from domain.payment import ChargeResult, PaymentLink

logger = logging.getLogger(__name__)

_SIGNATURE_TOLERANCE_SECONDS = 300


def _form_fields(data: Mapping[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested dicts/lists into Stripe's bracketed form encoding."""

    fields: list[tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, Mapping):
            fields.extend(_form_fields(value, name))
        elif isinstance(value, (list, tuple)):
            for index, entry in enumerate(value):
                entry_name = f"{name}[{index}]"
                if isinstance(entry, Mapping):
                    fields.extend(_form_fields(entry, entry_name))
                else:
                    fields.append((entry_name, str(entry)))
        elif isinstance(value, bool):
            fields.append((name, "true" if value else "false"))
        else:
            fields.append((name, str(value)))
    return fields


class StripeGateway:
    """
    Thin synchronous Stripe client.

    Usage:
        gateway = StripeGateway.from_settings(settings)
        try:
            link = gateway.create_payment_link(13200, "gbp", "Invoice INV-...", {...})
        finally:
            gateway.close()
    """

    def __init__(
        self,
        api_key: str,
        *,
        api_base: str = "https://api.stripe.com/v1",
        timeout: float = 20.0,
        http_client: Optional[httpx.Client] = None,
    ):
        if not api_key:
            raise RuntimeError("Stripe is not configured: missing secret key")
        self._api_base = api_base.rstrip("/")
        self._client = http_client or httpx.Client(timeout=timeout)
        self._auth_header = {"Authorization": f"Bearer {api_key}"}

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeGateway":
        return cls(
            settings.stripe_secret_key,
            api_base=settings.stripe_api_base,
            timeout=settings.gateway_timeout_seconds,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "StripeGateway":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _post(
        self,
        path: str,
        data: Mapping[str, Any],
        *,
        idempotency_key: Optional[str] = None,
    ) -> httpx.Response:
        headers = dict(self._auth_header)
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        try:
            return self._client.post(
                f"{self._api_base}{path}",
                headers=headers,
                data=dict(_form_fields(data)),
            )
        except httpx.HTTPError as exc:
            logger.error("Stripe request failed: POST %s (%s)", path, exc)
            raise GatewayError("Unable to reach the payment gateway", retryable=True) from exc

    @staticmethod
    def _error_details(response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            return {}
        error = payload.get("error") if isinstance(payload, dict) else None
        return error if isinstance(error, dict) else {}

    def _raise_for_status(self, response: httpx.Response, path: str) -> dict[str, Any]:
        if response.status_code >= 400:
            error = self._error_details(response)
            message = error.get("message", "Stripe request failed")
            logger.error("Stripe API error POST %s (%s): %s", path, response.status_code, message)
            raise GatewayError(
                f"Stripe error: {message}",
                code=error.get("code"),
                retryable=response.status_code == 429 or response.status_code >= 500,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError("Stripe returned an unreadable response") from exc

    def create_customer(self, buyer: Buyer) -> str:
        """Create a gateway customer for the buyer and return its id."""

        path = "/customers"
        response = self._post(
            path,
            {
                "email": buyer.email,
                "name": buyer.display_name,
                "metadata": {"user_id": str(buyer.buyer_id)},
            },
            idempotency_key=f"customer-{buyer.buyer_id}",
        )
        customer = self._raise_for_status(response, path)
        customer_id = customer.get("id")
        if not customer_id:
            raise GatewayError("Stripe did not return a customer id")
        return str(customer_id)

    def charge_off_session(
        self,
        customer_ref: str,
        method_ref: str,
        amount: int,
        currency: str,
        *,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> ChargeResult:
        """
        Charge a stored card without the buyer present.

        A card decline (HTTP 402) is an expected outcome and comes back as
        ChargeResult(succeeded=False). Anything else that goes wrong raises
        GatewayError.
        """

        if amount <= 0:
            raise ValidationError("Charge amount must be positive")
        path = "/payment_intents"
        response = self._post(
            path,
            {
                "amount": amount,
                "currency": currency,
                "customer": customer_ref,
                "payment_method": method_ref,
                "off_session": True,
                "confirm": True,
                "metadata": dict(metadata),
            },
            idempotency_key=idempotency_key,
        )

        if response.status_code == 402:
            error = self._error_details(response)
            intent = error.get("payment_intent") or {}
            return ChargeResult(
                succeeded=False,
                charge_ref=intent.get("id"),
                status=str(intent.get("status") or "requires_payment_method"),
                decline_code=error.get("decline_code") or error.get("code"),
            )

        intent = self._raise_for_status(response, path)
        status = str(intent.get("status") or "")
        return ChargeResult(
            succeeded=status == "succeeded",
            charge_ref=intent.get("id"),
            status=status,
        )

    def create_payment_link(
        self,
        amount: int,
        currency: str,
        *,
        description: str,
        metadata: Mapping[str, str],
        redirect_url: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> PaymentLink:
        """Create a payer-facing link for a fixed amount, tagged with `metadata`."""

        if amount <= 0:
            raise ValidationError("Payment link amount must be positive")
        price_path = "/prices"
        price = self._raise_for_status(
            self._post(
                price_path,
                {
                    "currency": currency,
                    "unit_amount": amount,
                    "product_data": {"name": description},
                },
                idempotency_key=f"{idempotency_key}-price" if idempotency_key else None,
            ),
            price_path,
        )
        if not price.get("id"):
            raise GatewayError("Stripe did not return a price id")

        path = "/payment_links"
        data: dict[str, Any] = {
            "line_items": [{"price": str(price["id"]), "quantity": 1}],
            "metadata": dict(metadata),
            # copied onto the resulting PaymentIntent so webhooks can correlate
            "payment_intent_data": {"metadata": dict(metadata)},
        }
        if redirect_url:
            data["after_completion"] = {"type": "redirect", "redirect": {"url": redirect_url}}

        link = self._raise_for_status(
            self._post(path, data, idempotency_key=idempotency_key), path
        )
        if not link.get("id") or not link.get("url"):
            raise GatewayError("Stripe did not return a payment link")
        return PaymentLink(link_ref=str(link["id"]), url=str(link["url"]))


def verify_webhook_signature(
    payload: bytes,
    signature_header: Optional[str],
    secret: str,
    *,
    now: Optional[float] = None,
    tolerance: int = _SIGNATURE_TOLERANCE_SECONDS,
) -> dict[str, Any]:
    """
    Verify a `Stripe-Signature: t=...,v1=...` header and return the parsed event.

    Raises:
        ValidationError: missing/malformed header, bad signature, stale
            timestamp, or a body that is not JSON.
    """

    if not signature_header:
        raise ValidationError("Missing webhook signature")

    timestamp: Optional[int] = None
    signatures: list[str] = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as exc:
                raise ValidationError("Malformed webhook signature timestamp") from exc
        elif key == "v1":
            signatures.append(value)
    if timestamp is None or not signatures:
        raise ValidationError("Malformed webhook signature")

    signed = f"{timestamp}.".encode() + payload
    expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise ValidationError("Webhook signature mismatch")

    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance:
        raise ValidationError("Webhook timestamp outside tolerance")

    try:
        event = json.loads(payload)
    except ValueError as exc:
        raise ValidationError("Webhook body is not valid JSON") from exc
    if not isinstance(event, dict):
        raise ValidationError("Webhook body must be a JSON object")
    return event


__all__ = ["StripeGateway", "verify_webhook_signature"]

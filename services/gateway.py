"""Payment gateway adapters.

``StripeCheckoutGateway`` talks to a Stripe-compatible checkout sessions API
over HTTP; ``FakeGateway`` simulates it for development and tests.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List
from uuid import uuid4

import requests

from core.config import settings
from core.errors import PaymentGatewayError
from core.retry import http_retry


@dataclass(frozen=True)
class LineItem:
    name: str
    unit_amount: int
    quantity: int


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str | None
    paid: bool = False
    expired: bool = False
    transaction_id: str | None = None
    raw: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(ABC):
    @abstractmethod
    def create_checkout_session(
        self,
        order_number: str,
        currency: str,
        customer_email: str,
        line_items: List[LineItem],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        ...

    @abstractmethod
    def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        ...


def _session_from_payload(data: Dict[str, Any]) -> CheckoutSession:
    intent = data.get("payment_intent")
    if isinstance(intent, dict):
        intent = intent.get("id")
    expires_at = data.get("expires_at")
    return CheckoutSession(
        id=data["id"],
        url=data.get("url"),
        paid=data.get("payment_status") == "paid",
        expired=data.get("status") == "expired" or (expires_at is not None and expires_at < int(time.time())),
        transaction_id=intent,
        raw=data,
    )


class StripeCheckoutGateway(PaymentGateway):
    def __init__(self, secret_key: str, base_url: str):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.secret_key}"}

    @http_retry()
    def _post(self, path: str, form: Dict[str, Any], idempotency_key: str) -> Dict[str, Any]:
        # Same key on every attempt, so a retried create cannot open a second session
        headers = {**self._headers(), "Idempotency-Key": idempotency_key}
        resp = requests.post(f"{self.base_url}{path}", data=form, headers=headers, timeout=20)
        resp.raise_for_status()
        return resp.json()

    @http_retry()
    def _get(self, path: str) -> Dict[str, Any]:
        resp = requests.get(f"{self.base_url}{path}", headers=self._headers(), timeout=20)
        resp.raise_for_status()
        return resp.json()

    def create_checkout_session(self, order_number, currency, customer_email, line_items, success_url, cancel_url):
        form: Dict[str, Any] = {
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": customer_email,
            "payment_method_types[0]": "card",
            "client_reference_id": order_number,
        }
        for i, item in enumerate(line_items):
            prefix = f"line_items[{i}]"
            form[f"{prefix}[price_data][currency]"] = currency.lower()
            form[f"{prefix}[price_data][product_data][name]"] = item.name
            form[f"{prefix}[price_data][unit_amount]"] = item.unit_amount
            form[f"{prefix}[quantity]"] = item.quantity
        try:
            data = self._post("/checkout/sessions", form, idempotency_key=f"checkout-{order_number}-{uuid4().hex}")
        except requests.RequestException as e:
            raise PaymentGatewayError("Failed to create payment session") from e
        return _session_from_payload(data)

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        try:
            data = self._get(f"/checkout/sessions/{session_id}")
        except requests.RequestException as e:
            raise PaymentGatewayError("Failed to retrieve payment session") from e
        return _session_from_payload(data)


class FakeGateway(PaymentGateway):
    """Configurable in-memory gateway."""

    def __init__(self) -> None:
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.calls: list[dict] = []
        self.should_fail: bool = False

    def create_checkout_session(self, order_number, currency, customer_email, line_items, success_url, cancel_url):
        self.calls.append({"method": "create_checkout_session", "order_number": order_number, "currency": currency})
        if self.should_fail:
            raise PaymentGatewayError("Failed to create payment session")
        session_id = f"cs_test_{uuid4().hex[:16]}"
        self.sessions[session_id] = {
            "id": session_id,
            "url": f"https://checkout.example.com/pay/{session_id}",
            "payment_status": "unpaid",
            "status": "open",
            "payment_intent": None,
            "amount_total": sum(item.unit_amount * item.quantity for item in line_items),
        }
        return _session_from_payload(self.sessions[session_id])

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        self.calls.append({"method": "retrieve_checkout_session", "session_id": session_id})
        if session_id not in self.sessions:
            raise PaymentGatewayError("Payment session not found")
        return _session_from_payload(self.sessions[session_id])

    def mark_paid(self, session_id: str) -> None:
        self.sessions[session_id].update(payment_status="paid", status="complete", payment_intent=f"pi_test_{uuid4().hex[:12]}")

    def mark_expired(self, session_id: str) -> None:
        self.sessions[session_id].update(status="expired")


def build_gateway() -> PaymentGateway:
    if settings.TESTING or not settings.PAYMENT_GATEWAY_SECRET_KEY:
        return FakeGateway()
    return StripeCheckoutGateway(settings.PAYMENT_GATEWAY_SECRET_KEY, settings.PAYMENT_GATEWAY_BASE_URL)

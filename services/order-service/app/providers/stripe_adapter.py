"""Stripe Checkout adapter (webhook flow).

Stripe tells us about completed checkouts through signed webhook
deliveries. The signature is checked against the endpoint secret before a
single byte of the payload is trusted.

Handled:
- ``checkout.session.completed`` in ``payment`` mode with
  ``payment_status == "paid"`` -> completed

Everything else (other event types, subscription/setup sessions, delayed
payment methods still in flight) is acknowledged and ignored so Stripe does
not keep redelivering it.
"""

import json
from typing import Any, Dict, Optional

import stripe

from ..config import StripeConfig
from ..errors import ProviderError, WebhookRejected
from .port import (
    Completion,
    Flow,
    Notification,
    PaymentProvider,
    ProviderTransaction,
    PurchaseIntent,
    Verdict,
)

CHECKOUT_COMPLETED = "checkout.session.completed"
MODE_PAYMENT = "payment"
PAID = "paid"


class StripeProvider(PaymentProvider):
    kind = "stripe"
    flow = Flow.WEBHOOK
    signature_header = "Stripe-Signature"

    def __init__(self, config: StripeConfig) -> None:
        self.config = config

    def _line_items(self, intent: PurchaseIntent) -> list:
        items = []
        for it in intent.items:
            product: Dict[str, Any] = {"name": it.name}
            # stripe rejects empty descriptions
            if it.description:
                product["description"] = it.description
            items.append(
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": intent.currency.lower(),
                        "tax_behavior": "inclusive",
                        "unit_amount": it.price,
                        "product_data": product,
                    },
                }
            )
        return items

    def create_transaction(self, intent: PurchaseIntent) -> ProviderTransaction:
        params = {
            "mode": MODE_PAYMENT,
            "success_url": self.config.success_url,
            "cancel_url": self.config.cancel_url,
            "client_reference_id": intent.user_id,
            "line_items": self._line_items(intent),
        }
        try:
            session = stripe.checkout.Session.create(api_key=self.config.secret_key, **params)
        except stripe.StripeError as e:
            raise ProviderError(
                "creating stripe checkout session failed",
                context={"user_id": intent.user_id},
            ) from e

        return ProviderTransaction(
            provider=self.kind,
            transaction_id=session.id,
            redirect_url=session.url,
            payload={"id": session.id, "url": session.url},
        )

    def parse_notification(
        self, payload: bytes, signature: Optional[str], secret: str
    ) -> Completion:
        if not signature:
            raise WebhookRejected("received stripe event is not signed")
        if not secret:
            raise WebhookRejected("stripe webhook secret is not configured")

        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as e:
            raise WebhookRejected("stripe event is not valid utf-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                body, signature, secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookRejected("invalid stripe signature") from e

        try:
            event = json.loads(body)
        except ValueError as e:
            raise WebhookRejected("unable to decode stripe event") from e
        if not isinstance(event, dict):
            raise WebhookRejected("unable to decode stripe event")

        event_type = event.get("type")
        if event_type != CHECKOUT_COMPLETED:
            return Completion(transaction_id=None, verdict=Verdict.IGNORED, status=event_type)

        data = event.get("data")
        session = data.get("object") if isinstance(data, dict) else None
        if not isinstance(session, dict):
            raise WebhookRejected("stripe checkout event without a session object")
        session_id = session.get("id")
        if not session_id:
            raise WebhookRejected("stripe checkout event without a session id")

        if session.get("mode") != MODE_PAYMENT:
            return Completion(session_id, Verdict.IGNORED, status=f"mode:{session.get('mode')}")
        if session.get("payment_status") != PAID:
            return Completion(
                session_id, Verdict.IGNORED, status=f"payment_status:{session.get('payment_status')}"
            )

        return Completion(session_id, Verdict.COMPLETED, status=event_type)

    def resolve_verdict(self, notification: Notification) -> Completion:
        return self.parse_notification(
            notification.payload, notification.signature, self.config.webhook_secret
        )


def configure_sdk() -> None:
    # a retried session create is a second checkout for the same cart
    stripe.max_network_retries = 0

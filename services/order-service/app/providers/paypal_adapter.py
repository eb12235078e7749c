"""PayPal Orders v2 adapter (redirect + capture flow).

The buyer approves the order on PayPal, is redirected back to the client,
and the client asks us to capture. Only a capture whose status is
``COMPLETED`` counts as paid.
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx

from ..config import PaypalConfig
from ..errors import ProviderError
from .port import (
    Completion,
    Flow,
    Notification,
    PaymentProvider,
    ProviderTransaction,
    PurchaseIntent,
    Verdict,
    minor_to_decimal,
)

logger = logging.getLogger(__name__)

COMPLETED = "COMPLETED"
ALREADY_CAPTURED = "ORDER_ALREADY_CAPTURED"

# refresh the token a little before PayPal expires it
_TOKEN_LEEWAY = 60


class PaypalProvider(PaymentProvider):
    kind = "paypal"
    flow = Flow.REDIRECT

    def __init__(self, client: httpx.Client, config: PaypalConfig) -> None:
        self.client = client
        self.config = config
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        data = self._call(
            "POST",
            "/v1/oauth2/token",
            op="authenticating with paypal",
            data={"grant_type": "client_credentials"},
            auth=(self.config.client_id, self.config.client_secret),
        )
        try:
            self._token = data["access_token"]
        except KeyError:
            raise ProviderError("paypal did not return an access token")
        ttl = int(data.get("expires_in", 0))
        self._token_expires_at = time.monotonic() + max(ttl - _TOKEN_LEEWAY, 0)
        return self._token

    def _send(self, method: str, path: str, *, op: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.config.api_base}{path}"
        try:
            return self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderError(f"{op}: paypal timeout") from e
        except httpx.RequestError as e:
            raise ProviderError(f"{op}: paypal unavailable") from e

    def _call(self, method: str, path: str, *, op: str, **kwargs: Any) -> Dict[str, Any]:
        return self._json(self._send(method, path, op=op, **kwargs), method, path, op)

    def _json(self, r: httpx.Response, method: str, path: str, op: str) -> Dict[str, Any]:
        if r.status_code >= 400:
            logger.warning("paypal %s %s -> %s: %s", method, path, r.status_code, r.text[:500])
            raise ProviderError(f"{op}: paypal answered {r.status_code}")

        try:
            return r.json()
        except ValueError as e:
            raise ProviderError(f"{op}: bad response from paypal") from e

    def _authed(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token()}"}

    def _purchase_units(self, intent: PurchaseIntent) -> list:
        items = [
            {
                "name": it.name,
                "description": it.description,
                "quantity": "1",
                "unit_amount": {
                    "currency_code": intent.currency,
                    "value": minor_to_decimal(it.price),
                },
            }
            for it in intent.items
        ]
        total = minor_to_decimal(intent.total)
        return [
            {
                "items": items,
                "amount": {
                    "currency_code": intent.currency,
                    "value": total,
                    "breakdown": {
                        "item_total": {"currency_code": intent.currency, "value": total},
                    },
                },
            }
        ]

    def create_transaction(self, intent: PurchaseIntent) -> ProviderTransaction:
        body: Dict[str, Any] = {
            "intent": "CAPTURE",
            "purchase_units": self._purchase_units(intent),
        }
        app_ctx = {}
        if self.config.return_url:
            app_ctx["return_url"] = self.config.return_url
        if self.config.cancel_url:
            app_ctx["cancel_url"] = self.config.cancel_url
        if app_ctx:
            body["application_context"] = app_ctx

        data = self._call(
            "POST",
            "/v2/checkout/orders",
            op="creating paypal order",
            json=body,
            headers=self._authed(),
        )
        order_id = data.get("id")
        if not order_id:
            raise ProviderError("creating paypal order: no order id in response")

        approve = next(
            (l.get("href") for l in data.get("links", []) if l.get("rel") in ("approve", "payer-action")),
            None,
        )
        return ProviderTransaction(
            provider=self.kind,
            transaction_id=order_id,
            redirect_url=approve,
            payload=data,
        )

    def capture_transaction(self, transaction_id: str) -> Completion:
        op = f"capturing paypal order[{transaction_id}]"
        path = f"/v2/checkout/orders/{transaction_id}/capture"
        r = self._send("POST", path, op=op, json={}, headers=self._authed())

        if r.status_code == 422 and ALREADY_CAPTURED in r.text:
            # a retried capture: report the order's current status instead
            path = f"/v2/checkout/orders/{transaction_id}"
            r = self._send("GET", path, op=op, headers=self._authed())
            data = self._json(r, "GET", path, op)
        else:
            data = self._json(r, "POST", path, op)

        status = data.get("status")
        verdict = Verdict.COMPLETED if status == COMPLETED else Verdict.NOT_COMPLETED
        return Completion(transaction_id=transaction_id, verdict=verdict, status=status)

    def resolve_verdict(self, notification: Notification) -> Completion:
        if not notification.transaction_id:
            raise ProviderError("capture requires a paypal order id")
        return self.capture_transaction(notification.transaction_id)

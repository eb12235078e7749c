"""
Error taxonomy of the checkout and fulfillment pipeline.

Every error carries the HTTP status the API layer answers with and a
``detail`` message that is safe to show to the caller. Store and provider
failures are wrapped into one of these classes with the identifiers needed
to diagnose them.

``FulfillmentFailed`` is the one class flagged ``critical``: the provider has
confirmed the payment but the order could not be marked paid, so the user
holds no entitlement for money already taken. Alerting matches on the flag.
"""

from typing import Any, Dict, Optional


class CheckoutError(Exception):
    status_code = 500
    critical = False

    def __init__(self, detail: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        self.detail = detail
        self.context = context or {}
        super().__init__(detail)

    def __str__(self) -> str:
        if not self.context:
            return self.detail
        ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.detail} ({ctx})"


class UnprocessableEntity(CheckoutError):
    status_code = 422


class NotFound(CheckoutError):
    status_code = 404


class Duplicate(CheckoutError):
    status_code = 409


class ProviderError(CheckoutError):
    """The payment provider call failed or timed out. Never retried."""

    status_code = 502


class PaymentNotCompleted(CheckoutError):
    status_code = 409


class WebhookRejected(CheckoutError):
    """Unsigned, badly signed or unreadable webhook delivery."""

    status_code = 400


class FulfillmentFailed(CheckoutError):
    """Payment confirmed by the provider, local fulfillment did not happen."""

    status_code = 500
    critical = True

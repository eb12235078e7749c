"""
Turns a confirmed payment into a paid order.

fulfill() is safe to call any number of times for the same provider
transaction: the status update only fires while the order is still pending,
and the cart is cleared only by the call that performed that update. Retried
captures, redelivered webhooks and a webhook racing a capture all collapse
into one transition.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import cart, store
from .db import transaction
from .errors import CheckoutError, FulfillmentFailed, PaymentNotCompleted
from .providers.port import Completion, Notification, PaymentProvider, Verdict

logger = logging.getLogger(__name__)


def fulfill(db: Session, provider_transaction_id: str) -> bool:
    """
    Mark the order bound to ``provider_transaction_id`` as paid and empty the
    owner's cart, as one unit.

    Returns True when this call performed the transition, False when the
    order was already paid. Raises ``NotFound`` for an unknown transaction
    and ``FulfillmentFailed`` when the store fails; in that case nothing is
    changed.
    """
    ctx = {"provider_transaction_id": provider_transaction_id}

    try:
        with transaction(db):
            order = store.fetch_by_provider_id(db, provider_transaction_id)
            order_id = ctx["order_id"] = order.id

            transitioned = store.mark_success(db, order_id)
            # last step, only once the order is paid
            if transitioned:
                cart.clear(db, order.user_id)
    except SQLAlchemyError as e:
        raise FulfillmentFailed("the order was paid but its fulfillment failed", context=ctx) from e

    if transitioned:
        logger.info("order %s fulfilled (payment %s)", order_id, provider_transaction_id)
    else:
        logger.info("order %s already fulfilled, nothing to do (payment %s)", order_id, provider_transaction_id)
    return transitioned


@dataclass(frozen=True)
class Settlement:
    completion: Completion
    fulfilled: bool  # this call moved the order to success


def settle(db: Session, provider: PaymentProvider, notification: Notification) -> Settlement:
    """
    Resolve a provider completion signal and fulfill the order it confirms.

    Ignored notifications return without touching anything. A provider
    status other than completed raises ``PaymentNotCompleted``. Once the
    provider has confirmed the payment, every failure is reported as
    ``FulfillmentFailed``.
    """
    completion = provider.resolve_verdict(notification)

    if completion.verdict is Verdict.IGNORED:
        logger.info("%s notification ignored (%s)", provider.kind, completion.status)
        return Settlement(completion, fulfilled=False)

    if completion.verdict is not Verdict.COMPLETED:
        logger.warning(
            "%s transaction %s not completed (status %s)",
            provider.kind,
            completion.transaction_id,
            completion.status,
        )
        raise PaymentNotCompleted(
            "payment was not completed",
            context={"provider_transaction_id": completion.transaction_id, "status": completion.status},
        )

    try:
        fulfilled = fulfill(db, completion.transaction_id)
    except FulfillmentFailed:
        raise
    except CheckoutError as e:
        raise FulfillmentFailed(
            "the order was paid but its fulfillment failed",
            context={"provider_transaction_id": completion.transaction_id, **e.context},
        ) from e
    return Settlement(completion, fulfilled=fulfilled)

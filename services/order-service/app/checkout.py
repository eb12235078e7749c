import logging

from sqlalchemy.orm import Session

from . import cart, store
from .config import CURRENCY
from .errors import UnprocessableEntity
from .providers.port import IntentItem, PaymentProvider, ProviderTransaction, PurchaseIntent

logger = logging.getLogger(__name__)


def initiate_checkout(db: Session, provider: PaymentProvider, user_id: str) -> ProviderTransaction:
    """
    Start a purchase of everything in the user's cart with ``provider``.

    The provider transaction is created first and the local pending order
    second, so a provider failure never leaves an orphan order behind. The
    reverse case (provider transaction exists, local write failed) cannot be
    undone cheaply on the provider side; it is logged for reconciliation and
    the error is raised to the caller.
    """
    courses = cart.snapshot(db, user_id)
    if not courses:
        raise UnprocessableEntity("no items to checkout", context={"user_id": user_id})

    intent = PurchaseIntent(
        user_id=user_id,
        currency=CURRENCY,
        items=tuple(
            IntentItem(course_id=c.course_id, name=c.name, description=c.description, price=c.price)
            for c in courses
        ),
    )

    txn = provider.create_transaction(intent)

    try:
        order_id = store.create_pending(db, user_id, txn.transaction_id, courses)
    except BaseException:
        logger.error(
            "RECONCILE: %s transaction %s created for user %s (total %s %s) but the order was not stored",
            provider.kind,
            txn.transaction_id,
            user_id,
            intent.total,
            intent.currency,
            exc_info=True,
        )
        raise

    logger.info(
        "order %s pending on %s transaction %s (%d items, total %s %s)",
        order_id,
        provider.kind,
        txn.transaction_id,
        len(intent.items),
        intent.total,
        intent.currency,
    )
    return txn

"""
Durable record of orders and their items.

Orders are only ever created ``pending`` together with all of their items,
and only ever move to ``success`` through :func:`mark_success`, a
conditional update that fires only while the row is still ``pending``.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .cart import PricedCourse
from .db import transaction
from .errors import CheckoutError, Duplicate, NotFound, UnprocessableEntity
from .models import Order, OrderItem, OrderStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_pending(
    db: Session,
    user_id: str,
    provider_transaction_id: str,
    courses: Sequence[PricedCourse],
) -> str:
    """
    Persist a pending order bound to ``provider_transaction_id`` with one item
    per course, as a single unit. Returns the new order id.
    """
    if not courses:
        raise UnprocessableEntity("no items to checkout", context={"user_id": user_id})

    order_id = uuid.uuid4().hex
    now = _now()
    ctx = {"user_id": user_id, "provider_transaction_id": provider_transaction_id}

    try:
        with transaction(db):
            db.add(
                Order(
                    id=order_id,
                    user_id=user_id,
                    provider_transaction_id=provider_transaction_id,
                    status=OrderStatus.PENDING.value,
                    created_at=now,
                    updated_at=now,
                )
            )
            db.flush()  # parent row first

            for c in courses:
                db.add(
                    OrderItem(
                        order_id=order_id,
                        course_id=c.course_id,
                        price=c.price,
                        created_at=now,
                    )
                )
            db.flush()
    except IntegrityError as e:
        raise Duplicate("order already bound to this payment", context=ctx) from e
    except SQLAlchemyError as e:
        raise CheckoutError("creating the order failed", context=ctx) from e

    return order_id


def fetch_by_provider_id(db: Session, provider_transaction_id: str) -> Order:
    order = db.scalars(
        select(Order).where(Order.provider_transaction_id == provider_transaction_id)
    ).first()
    if order is None:
        raise NotFound(
            "no order bound to this payment",
            context={"provider_transaction_id": provider_transaction_id},
        )
    return order


def mark_success(db: Session, order_id: str) -> bool:
    """
    pending -> success. Returns False when the order was not pending anymore,
    which callers treat as the same outcome as a fresh transition.
    Runs inside the caller's unit of work.
    """
    result = db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.PENDING.value)
        .values(status=OrderStatus.SUCCESS.value, updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def fetch_for_user(db: Session, order_id: str, user_id: str) -> Order:
    order = db.scalars(
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.id == order_id, Order.user_id == user_id)
    ).first()
    if order is None:
        raise NotFound("order not found", context={"order_id": order_id})
    return order


def list_for_user(db: Session, user_id: str) -> List[Order]:
    stmt = (
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id)
    )
    return list(db.scalars(stmt))

"""
Read side of the user's cart, plus the terminal clear used by fulfillment.

The snapshot resolves every cart line against the catalog at the moment of
checkout. A line pointing at a course that no longer exists fails the whole
snapshot: checking out fewer courses than the user saw is worse than
refusing the checkout.
"""

from dataclasses import dataclass
from typing import List

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from . import catalog
from .models import CartItem


@dataclass(frozen=True)
class PricedCourse:
    course_id: str
    name: str
    description: str
    price: int


def fetch_items(db: Session, user_id: str) -> List[CartItem]:
    stmt = (
        select(CartItem)
        .where(CartItem.user_id == user_id)
        .order_by(CartItem.created_at, CartItem.course_id)
    )
    return list(db.scalars(stmt))


def clear(db: Session, user_id: str) -> int:
    """
    Empty the cart inside the caller's unit of work. Does not commit.
    """
    result = db.execute(delete(CartItem).where(CartItem.user_id == user_id))
    return result.rowcount


def snapshot(db: Session, user_id: str) -> List[PricedCourse]:
    courses: List[PricedCourse] = []
    for it in fetch_items(db, user_id):
        c = catalog.fetch_course(db, it.course_id)
        courses.append(
            PricedCourse(
                course_id=c.id,
                name=c.name,
                description=c.description or "",
                price=int(c.price),
            )
        )
    return courses

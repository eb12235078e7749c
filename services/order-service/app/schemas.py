from datetime import datetime
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict


class CheckoutOut(BaseModel):
    provider: str
    transaction_id: str
    redirect_url: str | None = None
    payload: Dict[str, Any] = {}


class OrderItemOut(BaseModel):
    course_id: str
    price: int

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    id: str
    status: str
    provider_transaction_id: str
    total: int
    items: list[OrderItemOut]
    created_at: datetime
    updated_at: datetime

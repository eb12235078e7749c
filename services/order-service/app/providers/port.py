"""Payment provider port (abstract interface).

Checkout and fulfillment only talk to providers through this contract.
Each adapter owns the translation between a :class:`PurchaseIntent` and its
provider's wire format, and between the provider's completion signal and a
:class:`Completion`.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


class Flow(str, enum.Enum):
    REDIRECT = "redirect"  # client returns to us and we capture
    WEBHOOK = "webhook"  # provider calls us when the checkout completes


class Verdict(str, enum.Enum):
    COMPLETED = "completed"
    NOT_COMPLETED = "not_completed"
    IGNORED = "ignored"


@dataclass(frozen=True)
class IntentItem:
    course_id: str
    name: str
    description: str
    price: int  # minor units


@dataclass(frozen=True)
class PurchaseIntent:
    """What the user is about to pay for, independent of any provider."""

    user_id: str
    currency: str
    items: Tuple[IntentItem, ...]

    @property
    def total(self) -> int:
        return sum(it.price for it in self.items)


@dataclass(frozen=True)
class ProviderTransaction:
    """Provider-side handle returned to the caller after checkout."""

    provider: str
    transaction_id: str
    redirect_url: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Notification:
    """
    A completion signal as received over HTTP.

    Redirect providers only need ``transaction_id``; webhook providers need
    the raw body and the signature header.
    """

    transaction_id: Optional[str] = None
    payload: bytes = b""
    signature: Optional[str] = None


@dataclass(frozen=True)
class Completion:
    transaction_id: Optional[str]
    verdict: Verdict
    status: Optional[str] = None  # provider's own status or event type


class PaymentProvider(ABC):
    """Abstract payment provider interface."""

    kind: str
    flow: Flow
    signature_header: Optional[str] = None  # webhook providers only

    @abstractmethod
    def create_transaction(self, intent: PurchaseIntent) -> ProviderTransaction:
        """Create the provider-side transaction for ``intent``."""
        ...

    @abstractmethod
    def resolve_verdict(self, notification: Notification) -> Completion:
        """Turn a provider completion signal into a verdict."""
        ...


def minor_to_decimal(amount: int) -> str:
    """1050 -> '10.50'"""
    sign = "-" if amount < 0 else ""
    units, cents = divmod(abs(amount), 100)
    return f"{sign}{units}.{cents:02d}"

import hashlib
import hmac
import os
import tempfile
import time
from datetime import datetime, timedelta, timezone

# Configure the service before anything under app/ or shared/ is imported.
_tmp = tempfile.mkdtemp(prefix="order-service-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp, 'orders.db')}"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["EVENT_BACKEND"] = "log"
os.environ.pop("JWT_ISSUER", None)
os.environ.pop("JWT_AUDIENCE", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app import models  # noqa: E402
from app.config import StripeConfig  # noqa: E402
from app.db import Base, SessionLocal, engine  # noqa: E402
from app.errors import ProviderError  # noqa: E402
from app.providers.port import (  # noqa: E402
    Completion,
    Flow,
    Notification,
    PaymentProvider,
    ProviderTransaction,
    PurchaseIntent,
    Verdict,
)
from app.providers.stripe_adapter import StripeProvider  # noqa: E402
from shared.security import make_token  # noqa: E402

WEBHOOK_SECRET = "whsec_test_secret"


class FakeRedirectProvider(PaymentProvider):
    """Redirect/capture provider with a scripted capture status."""

    kind = "fakepay"
    flow = Flow.REDIRECT

    def __init__(self) -> None:
        self.intents: list[PurchaseIntent] = []
        self.captures: list[str] = []
        self.capture_status = "COMPLETED"
        self.fail_create = False
        self.next_id: str | None = None
        self._n = 0

    def create_transaction(self, intent: PurchaseIntent) -> ProviderTransaction:
        self.intents.append(intent)
        if self.fail_create:
            raise ProviderError("fake provider is down")
        self._n += 1
        txn_id = self.next_id or f"TXN-{self._n}"
        return ProviderTransaction(
            provider=self.kind,
            transaction_id=txn_id,
            redirect_url=f"https://pay.example/approve/{txn_id}",
            payload={"id": txn_id},
        )

    def resolve_verdict(self, notification: Notification) -> Completion:
        self.captures.append(notification.transaction_id)
        verdict = Verdict.COMPLETED if self.capture_status == "COMPLETED" else Verdict.NOT_COMPLETED
        return Completion(notification.transaction_id, verdict, status=self.capture_status)


class Seeder:
    def __init__(self, db) -> None:
        self.db = db
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def course(self, course_id: str, price: int, name: str | None = None, description: str = "") -> None:
        self.db.add(
            models.Course(id=course_id, name=name or course_id, description=description, price=price)
        )
        self.db.commit()

    def cart(self, user_id: str, *course_ids: str) -> None:
        for cid in course_ids:
            self._clock += timedelta(seconds=1)
            self.db.add(models.CartItem(user_id=user_id, course_id=cid, created_at=self._clock))
        self.db.commit()


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def fresh():
    """Open an independent session, to look at what was really committed."""
    sessions = []

    def _open():
        s = SessionLocal()
        sessions.append(s)
        return s

    yield _open
    for s in sessions:
        s.close()


@pytest.fixture()
def seed(db):
    return Seeder(db)


@pytest.fixture()
def fake_provider():
    return FakeRedirectProvider()


@pytest.fixture()
def stripe_provider():
    return StripeProvider(
        StripeConfig(
            secret_key="sk_test_123",
            webhook_secret=WEBHOOK_SECRET,
            success_url="https://shop.example/success",
            cancel_url="https://shop.example/cancel",
        )
    )


def stripe_signature(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    mac = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"


@pytest.fixture()
def sign():
    return stripe_signature


@pytest.fixture()
def auth_headers():
    def _headers(user_id: str = "user-1") -> dict:
        return {"Authorization": f"Bearer {make_token(user_id)}"}

    return _headers


@pytest.fixture()
def client(fake_provider, stripe_provider):
    from app.main import app, get_providers

    app.dependency_overrides[get_providers] = lambda: {
        fake_provider.kind: fake_provider,
        stripe_provider.kind: stripe_provider,
    }
    yield TestClient(app)
    app.dependency_overrides.clear()

import os
import logging
from contextlib import asynccontextmanager
from typing import Dict, List

import httpx
from fastapi import FastAPI, Depends, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from . import store
from .checkout import initiate_checkout
from .config import PROVIDER_TIMEOUT
from .db import SessionLocal, init_schema
from .errors import CheckoutError, NotFound
from .fulfillment import settle
from .models import Order
from .providers import build_providers, get_provider
from .providers.port import Flow, Notification, PaymentProvider
from .schemas import CheckoutOut, OrderItemOut, OrderOut
from shared.security import current_user_id
from shared.events import publish

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Provider adapters share one HTTP client for the life of the process.
    Schema creation is opt-in (INIT_SCHEMA=1); run migrations at deploy-time.
    """
    if os.getenv("INIT_SCHEMA") == "1":
        init_schema()
    http_client = httpx.Client(timeout=PROVIDER_TIMEOUT)
    app.state.providers = build_providers(http_client)
    try:
        yield
    finally:
        http_client.close()


app = FastAPI(title="order-service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in prod
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    if exc.critical:
        # user has paid and holds nothing; needs manual reconciliation
        logger.critical("%s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        await run_in_threadpool(
            publish,
            "order.fulfillment_failed",
            {"path": request.url.path, "error": exc.detail, **exc.context},
            safe=True,
        )
    elif exc.status_code >= 500:
        logger.error("%s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    else:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def get_providers(request: Request) -> Dict[str, PaymentProvider]:
    return request.app.state.providers


def _provider_for(providers: Dict[str, PaymentProvider], kind: str, flow: Flow) -> PaymentProvider:
    p = get_provider(providers, kind)
    if p.flow is not flow:
        raise NotFound(f"{kind} does not support the {flow.value} flow", context={"provider": kind})
    return p


def to_out(o: Order) -> OrderOut:
    items = [OrderItemOut.model_validate(i) for i in o.items]
    return OrderOut(
        id=o.id,
        status=o.status,
        provider_transaction_id=o.provider_transaction_id,
        total=sum(i.price for i in items),
        items=items,
        created_at=o.created_at,
        updated_at=o.updated_at,
    )


@app.post("/checkout/{provider}", response_model=CheckoutOut, status_code=201)
def checkout(
    provider: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    providers: Dict[str, PaymentProvider] = Depends(get_providers),
):
    p = get_provider(providers, provider)
    txn = initiate_checkout(db, p, user_id)

    publish(
        "order.created",
        {"user_id": user_id, "provider": txn.provider, "transaction_id": txn.transaction_id},
        safe=True,
    )
    return CheckoutOut(
        provider=txn.provider,
        transaction_id=txn.transaction_id,
        redirect_url=txn.redirect_url,
        payload=txn.payload,
    )


@app.post("/checkout/{provider}/capture/{transaction_id}", status_code=204)
def capture(
    provider: str,
    transaction_id: str,
    db: Session = Depends(get_db),
    providers: Dict[str, PaymentProvider] = Depends(get_providers),
):
    p = _provider_for(providers, provider, Flow.REDIRECT)
    result = settle(db, p, Notification(transaction_id=transaction_id))

    if result.fulfilled:
        publish("order.fulfilled", {"provider": p.kind, "transaction_id": transaction_id}, safe=True)
    return Response(status_code=204)


@app.post("/webhooks/{provider}", status_code=204)
async def webhook(
    provider: str,
    request: Request,
    db: Session = Depends(get_db),
    providers: Dict[str, PaymentProvider] = Depends(get_providers),
):
    p = _provider_for(providers, provider, Flow.WEBHOOK)

    # signature covers the exact bytes, so never parse before verifying
    body = await request.body()
    notification = Notification(payload=body, signature=request.headers.get(p.signature_header or ""))

    result = await run_in_threadpool(settle, db, p, notification)

    if result.fulfilled:
        await run_in_threadpool(
            publish,
            "order.fulfilled",
            {"provider": p.kind, "transaction_id": result.completion.transaction_id},
            safe=True,
        )
    return Response(status_code=204)


@app.get("/orders", response_model=List[OrderOut])
def list_my_orders(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    return [to_out(o) for o in store.list_for_user(db, user_id)]


@app.get("/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: str, user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    return to_out(store.fetch_for_user(db, order_id, user_id))


@app.get("/health")
def health():
    return {"ok": True}

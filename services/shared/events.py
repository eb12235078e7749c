import os
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

logger = logging.getLogger(__name__)

EXCHANGE = os.getenv("EVENT_EXCHANGE", "microshop.events")

# Reuse AWS client across invocations (Lambda-friendly)
_sqs_client = None


def envelope(event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": uuid.uuid4().hex,
        "type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }


def publish(event_type: str, payload: Dict[str, Any], *, safe: bool = False) -> None:
    """
    Publish an event to the configured backend (rabbitmq | sqs | log).

    safe=True: log and swallow backend failures. Request paths use it so a
    broker outage never changes the answer given to the caller.
    """
    backend = os.getenv("EVENT_BACKEND", "rabbitmq").strip().lower()
    body = json.dumps(envelope(event_type, payload), default=str)

    try:
        if backend == "rabbitmq":
            _publish_rabbitmq(event_type, body)
            return

        if backend == "sqs":
            _publish_sqs(event_type, body)
            return

        if backend == "log":
            logger.info("event %s", body)
            return

        raise RuntimeError(f"Unsupported EVENT_BACKEND={backend}")

    except Exception:
        if safe:
            logger.exception("event publish failed: %s", event_type)
            return
        raise


def _publish_rabbitmq(event_type: str, body: str) -> None:
    # Import here so Lambda zip can omit pika if you only use SQS
    import pika

    rabbitmq_url = os.getenv("RABBITMQ_URL")
    if not rabbitmq_url:
        raise RuntimeError("RABBITMQ_URL is not set")

    params = pika.URLParameters(rabbitmq_url)
    params.heartbeat = int(os.getenv("RABBITMQ_HEARTBEAT", "30"))
    params.blocked_connection_timeout = float(os.getenv("RABBITMQ_BLOCKED_TIMEOUT", "5"))

    conn = pika.BlockingConnection(params)
    try:
        ch = conn.channel()
        ch.exchange_declare(exchange=EXCHANGE, exchange_type="topic", durable=True)
        ch.basic_publish(
            exchange=EXCHANGE,
            routing_key=event_type,
            body=body.encode("utf-8"),
            properties=pika.BasicProperties(delivery_mode=2, content_type="application/json"),
        )
    finally:
        if conn.is_open:
            conn.close()


def _publish_sqs(event_type: str, body: str) -> None:
    global _sqs_client
    import boto3

    queue_url = os.getenv("SQS_QUEUE_URL")
    if not queue_url:
        raise RuntimeError("SQS_QUEUE_URL is not set")

    if _sqs_client is None:
        _sqs_client = boto3.client("sqs")

    _sqs_client.send_message(
        QueueUrl=queue_url,
        MessageBody=body,
        MessageAttributes={
            "type": {"DataType": "String", "StringValue": event_type}
        },
    )

# missionledger/streaming/producer.py
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from kafka import KafkaProducer
from kafka.errors import KafkaError

from missionledger.core.config import settings
from missionledger.core.security import stable_json_dumps
from missionledger.streaming.messages import build_domain_event

log = logging.getLogger("missionledger.kafka")

# ------------------------------------------------------------------------------
# helpers
# ------------------------------------------------------------------------------

def _json_dumps(obj: Any) -> bytes:
    return stable_json_dumps(obj).encode("utf-8")


# ------------------------------------------------------------------------------
# lazy singleton
# ------------------------------------------------------------------------------

_lock = threading.Lock()
_instance: Optional["EventProducer"] = None


def get_producer() -> Optional["EventProducer"]:
    """
    Lazy accessor.
    Never connects to Kafka at import time.
    Returns None when disabled or when the broker is unavailable.
    """
    global _instance

    if not settings.kafka_enabled:
        return None

    if _instance is not None:
        return _instance

    with _lock:
        if _instance is None:
            try:
                _instance = EventProducer()
            except Exception as e:
                # events are best-effort; the ledger is the source of truth
                log.error("Kafka producer init failed (non-fatal): %s", e)
                _instance = None

    return _instance


def publish_domain_event(kind: str, *, key: str, data: Dict[str, Any]) -> None:
    """
    Fire-and-forget publish of a committed state change.
    Call only after commit: consumers must never see a rolled-back event.
    """
    producer = get_producer()
    if producer is None:
        return
    producer.publish(
        topic=settings.kafka_events_topic,
        key=key,
        value=build_domain_event(kind=kind, key=key, data=data),
    )


def close_producer() -> None:
    global _instance

    with _lock:
        if _instance is not None:
            _instance.close()
            _instance = None


# ------------------------------------------------------------------------------
# producer
# ------------------------------------------------------------------------------

class EventProducer:
    """
    Thin wrapper around kafka-python producer.

    - No Kafka connection at import time
    - Non-fatal on failures
    """

    def __init__(self) -> None:
        self._producer: Optional[KafkaProducer] = None

        brokers = settings.redpanda_brokers.split(",")
        log.info("Initializing Kafka producer brokers=%s", brokers)

        self._producer = KafkaProducer(
            bootstrap_servers=brokers,
            client_id=settings.kafka_client_id,
            acks=settings.kafka_acks,
            linger_ms=settings.kafka_linger_ms,
            retries=settings.kafka_retries,
            value_serializer=_json_dumps,
            key_serializer=lambda k: k.encode("utf-8") if isinstance(k, str) else k,
        )

    def publish(self, *, topic: str, key: str, value: Dict[str, Any]) -> None:
        if not self._producer:
            return

        try:
            fut = self._producer.send(topic, key=key, value=value)
            fut.add_errback(
                lambda exc: log.error(
                    "Kafka publish failed topic=%s key=%s err=%s",
                    topic,
                    key,
                    exc,
                )
            )
        except KafkaError as e:
            log.error("Kafka error topic=%s key=%s err=%s", topic, key, e)
        except Exception as e:
            log.error("Kafka unexpected error topic=%s key=%s err=%s", topic, key, e)

    def close(self) -> None:
        if self._producer:
            try:
                self._producer.flush(timeout=1.0)
                self._producer.close(timeout=1.0)
            except KafkaError as e:
                log.warning("Kafka close failed: %s", e)

"""
Async Kafka producer.

Publishes one event type:
  feed-analytics  — one message per generated feed, emitted by the analytics
                    dispatcher when ANALYTICS_BACKEND=kafka.
                    Consumed by: downstream analytics / warehouse loaders.
"""
import json
import logging
from typing import Optional

from aiokafka import AIOKafkaProducer

from smartfeed.engine.types import FeedAnalyticsEvent

logger = logging.getLogger(__name__)

_producer: Optional[AIOKafkaProducer] = None


async def init_kafka(bootstrap_servers: str) -> None:
    global _producer
    _producer = AIOKafkaProducer(
        bootstrap_servers=bootstrap_servers,
        value_serializer=lambda v: json.dumps(v).encode("utf-8"),
        acks="all",          # wait for all in-sync replicas
        enable_idempotence=True,
    )
    await _producer.start()
    logger.info("Kafka producer started → %s", bootstrap_servers)


async def stop_kafka() -> None:
    global _producer
    if _producer:
        await _producer.stop()
        _producer = None


def get_producer() -> AIOKafkaProducer:
    if _producer is None:
        raise RuntimeError("Kafka producer not initialised")
    return _producer


class KafkaAnalyticsSink:
    """AnalyticsSink that publishes FeedAnalyticsEvents to a topic keyed by user."""

    def __init__(self, topic: str, producer: Optional[AIOKafkaProducer] = None) -> None:
        self.topic = topic
        self._producer = producer

    async def record(self, event: FeedAnalyticsEvent) -> None:
        producer = self._producer or get_producer()
        payload = event.model_dump(mode="json")
        await producer.send_and_wait(self.topic, payload, key=event.user_id.encode("utf-8"))
        logger.debug("Published feed analytics event for user_id=%s", event.user_id)

import json
import logging
from aiokafka import AIOKafkaProducer

from marketplace_orders.application.interfaces import ChangePublisher
from marketplace_orders.domain.events import ChangeEvent

logger = logging.getLogger(__name__)


class KafkaChangePublisher(ChangePublisher):
    def __init__(self, bootstrap_servers: str, topic: str):
        self._bootstrap_servers = bootstrap_servers
        self._producer: AIOKafkaProducer | None = None
        self._topic = topic

    async def start(self):
        if not self._producer:
            self._producer = AIOKafkaProducer(
                bootstrap_servers=self._bootstrap_servers
            )
            await self._producer.start()
            logger.info("Kafka producer started")

    async def stop(self):
        if self._producer:
            await self._producer.stop()
            self._producer = None
            logger.info("Kafka producer stopped")

    async def publish_change(self, change: ChangeEvent) -> bool:
        if not self._producer:
            logger.error("Kafka producer not started")
            return False

        row = change.new or change.old
        key = str(row.get("order_id") or row.get("id") or "")
        try:
            await self._producer.send_and_wait(
                topic=self._topic,
                key=key.encode(),
                value=json.dumps(change.to_payload()).encode()
            )
            logger.info(f"Published {change.event} on {change.table} for {key}")
            return True

        except Exception as e:
            logger.error(f"Failed to publish {change.event} on {change.table}: {e}")
            return False

import asyncio
import json
import logging
import uuid
from typing import List, Dict

from aiokafka import AIOKafkaConsumer

from marketplace_orders.application.interfaces import ChangeFeed, ChangeCallback, ChangePublisher, Subscription
from marketplace_orders.domain.events import ChangeEvent, ChangeFilter

logger = logging.getLogger(__name__)


class FeedSubscription(Subscription):
    def __init__(self, feed, filters: List[ChangeFilter], callback: ChangeCallback):
        self.id = str(uuid.uuid4())
        self._feed = feed
        self.filters = filters
        self.callback = callback
        self._active = True

    @property
    def is_active(self) -> bool:
        return self._active

    def wants(self, change: ChangeEvent) -> bool:
        return self._active and any(f.matches(change) for f in self.filters)

    async def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        await self._feed._remove(self)


class InMemoryChangeFeed(ChangeFeed, ChangePublisher):
    """Fan-out of change events to subscribers in the same process"""

    def __init__(self):
        self._subscriptions: Dict[str, FeedSubscription] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def subscribe(self, filters: List[ChangeFilter], callback: ChangeCallback) -> Subscription:
        subscription = FeedSubscription(self, filters, callback)
        self._subscriptions[subscription.id] = subscription
        logger.info(f"Subscription {subscription.id} opened ({len(filters)} filters)")
        return subscription

    async def _remove(self, subscription: FeedSubscription) -> None:
        self._subscriptions.pop(subscription.id, None)
        logger.info(f"Subscription {subscription.id} closed")

    async def publish(self, change: ChangeEvent) -> int:
        """Delivers to every matching subscriber. Returns the number of deliveries."""
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if not subscription.wants(change):
                continue
            try:
                await subscription.callback(change)
                delivered += 1
            except Exception as e:
                logger.error(f"Subscriber {subscription.id} failed on {change.event} {change.table}: {e}")
        return delivered

    async def publish_change(self, change: ChangeEvent) -> bool:
        await self.publish(change)
        return True


class KafkaChangeFeed(ChangeFeed):
    """Consumes the order-changes topic and dispatches to local subscribers"""

    def __init__(self, bootstrap_servers: str, topic: str):
        self._bootstrap_servers = bootstrap_servers
        self._topic = topic
        self._consumer: AIOKafkaConsumer | None = None
        self._task: asyncio.Task | None = None
        self._local = InMemoryChangeFeed()

    async def start(self):
        # Every process reads all changes, so no consumer group is shared
        self._consumer = AIOKafkaConsumer(
            self._topic,
            bootstrap_servers=self._bootstrap_servers,
            group_id=None,
            auto_offset_reset="latest",
            value_deserializer=lambda v: json.loads(v.decode())
        )
        await self._consumer.start()
        self._task = asyncio.create_task(self.consume())
        logger.info("Kafka change feed started")

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._consumer:
            await self._consumer.stop()
            self._consumer = None
            logger.info("Kafka change feed stopped")

    async def consume(self):
        """Endless consumption loop"""
        try:
            async for msg in self._consumer:
                try:
                    change = ChangeEvent.model_validate(msg.value)
                    await self._local.publish(change)
                except Exception as e:
                    logger.error(f"Error processing change message: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Change feed consumer error: {e}")

    async def subscribe(self, filters: List[ChangeFilter], callback: ChangeCallback) -> Subscription:
        return await self._local.subscribe(filters, callback)

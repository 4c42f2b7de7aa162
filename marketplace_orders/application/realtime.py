import inspect
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Callable, Awaitable, Optional, Any

from marketplace_orders.domain.events import ChangeEvent, ChangeFilter
from marketplace_orders.domain.models import Order, OrderDetails, status_message
from marketplace_orders.application.changes import ORDERS_TABLE, STATUS_HISTORY_TABLE
from marketplace_orders.application.interfaces import ChangeFeed, Subscription

logger = logging.getLogger(__name__)


class ListenerState(str, Enum):
    CONNECTED = "connected"
    CLOSED = "closed"


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


def order_change_filters(order_id: str) -> list:
    return [
        ChangeFilter(event="UPDATE", schema="public", table=ORDERS_TABLE, filter=f"id=eq.{order_id}"),
        ChangeFilter(event="INSERT", schema="public", table=STATUS_HISTORY_TABLE, filter=f"order_id=eq.{order_id}"),
    ]


class OrderRealtimeListener:
    """Keeps a local copy of one order in sync with its change events.

    `notify` receives user-facing status messages, `on_update` the new local
    state after every applied change. Both may be plain or async callables.
    """

    def __init__(
        self,
        change_feed: ChangeFeed,
        refetch: Callable[[str], Awaitable[OrderDetails]],
        notify: Callable[[str], Any],
        on_update: Optional[Callable[[OrderDetails], Any]] = None
    ):
        self._feed = change_feed
        self._refetch = refetch
        self._notify = notify
        self._on_update = on_update
        self._order: Optional[OrderDetails] = None
        self._subscription: Optional[Subscription] = None
        self._state = ListenerState.CLOSED

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def order(self) -> Optional[OrderDetails]:
        return self._order

    @asynccontextmanager
    async def listen(self, order: OrderDetails):
        """Subscribes for the lifetime of the block; leaving it always unsubscribes"""
        self._order = order
        self._subscription = await self._feed.subscribe(order_change_filters(order.id), self.handle)
        self._state = ListenerState.CONNECTED
        logger.info(f"Listening for changes on order {order.id}")
        try:
            yield self._subscription
        finally:
            await self._subscription.unsubscribe()
            self._state = ListenerState.CLOSED
            logger.info(f"Stopped listening on order {order.id}")

    async def handle(self, change: ChangeEvent) -> None:
        if self._state != ListenerState.CONNECTED:
            return
        if change.table == ORDERS_TABLE and change.event == "UPDATE":
            await self._merge(change.new)
        elif change.table == STATUS_HISTORY_TABLE and change.event == "INSERT":
            await self.reload()

    async def _merge(self, new_row: dict) -> None:
        previous_status = self._order.status
        changed = {key: value for key, value in new_row.items() if key in Order.model_fields}
        self._order = OrderDetails.model_validate({**self._order.model_dump(), **changed})

        if self._order.status != previous_status:
            await _maybe_await(self._notify(
                f"Order #{self._order.order_number}: {status_message(self._order.status)}"
            ))
        await self._publish_state()

    async def reload(self) -> bool:
        """Re-reads the order and publishes it. On failure the local copy is kept."""
        try:
            self._order = await self._refetch(self._order.id)
        except Exception as e:
            logger.error(f"Failed to reload order {self._order.id}: {e}")
            return False
        await self._publish_state()
        return True

    async def _publish_state(self) -> None:
        if self._on_update:
            await _maybe_await(self._on_update(self._order))

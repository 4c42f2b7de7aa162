"""
Tests for the status workflow and counterparty notifications.
"""
from datetime import datetime, timezone

import pytest

from conftest import BUYER_ID, SELLER_ID, make_order_dto, outbox_rows
from marketplace_orders.application.changes import ORDER_CHANGED
from marketplace_orders.application.get_order import GetOrderUseCase
from marketplace_orders.application.notifications import NotificationEmitter, NOTIFICATION_SEND
from marketplace_orders.application.update_status import UpdateOrderStatusUseCase, UpdateOrderStatusDTO
from marketplace_orders.domain.exceptions import (
    InvalidStatusTransitionError, AccessDeniedError, OrderNotFoundError
)
from marketplace_orders.domain.models import OrderStatus
from marketplace_orders.infrastructure.kv_store import InMemoryKeyValueStore
from marketplace_orders.infrastructure.procedures import SQLAlchemyOrderProcedures


@pytest.fixture
def dedup_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def update_status(uow, procedures, dedup_store):
    return UpdateOrderStatusUseCase(uow, procedures, NotificationEmitter(uow), dedup_store)


async def status_notifications(session_factory):
    rows = await outbox_rows(session_factory, NOTIFICATION_SEND)
    return [row.event_data for row in rows if row.event_data["type"] != "new_order_received"]


def move(order_id, status, changed_by=SELLER_ID):
    return UpdateOrderStatusDTO(order_id=order_id, new_status=status, changed_by=changed_by)


@pytest.mark.asyncio
async def test_full_lifecycle_records_history_in_order(create_order, update_status):
    order = await create_order(make_order_dto())

    await update_status(move(order.id, OrderStatus.PROCESSING))
    await update_status(move(order.id, OrderStatus.DELIVER))
    details = await update_status(move(order.id, OrderStatus.RECEIVED, changed_by=BUYER_ID))

    assert details.status == OrderStatus.RECEIVED
    assert [entry.status for entry in details.status_history] == [
        OrderStatus.REVIEW, OrderStatus.PROCESSING, OrderStatus.DELIVER, OrderStatus.RECEIVED
    ]
    changed_at = [entry.changed_at for entry in details.status_history]
    assert changed_at == sorted(changed_at)


@pytest.mark.asyncio
async def test_terminal_order_cannot_move_back(create_order, update_status, uow):
    order = await create_order(make_order_dto())
    for status in (OrderStatus.PROCESSING, OrderStatus.DELIVER, OrderStatus.RECEIVED):
        await update_status(move(order.id, status))

    with pytest.raises(InvalidStatusTransitionError) as exc_info:
        await update_status(move(order.id, OrderStatus.PROCESSING))

    assert "received" in str(exc_info.value)
    assert "processing" in str(exc_info.value)
    current = await GetOrderUseCase(uow)(order.id)
    assert current.status == OrderStatus.RECEIVED
    assert len(current.status_history) == 4


@pytest.mark.asyncio
async def test_cancelled_order_is_terminal(create_order, update_status):
    order = await create_order(make_order_dto())
    await update_status(move(order.id, OrderStatus.CANCELLED, changed_by=BUYER_ID))

    with pytest.raises(InvalidStatusTransitionError):
        await update_status(move(order.id, OrderStatus.PROCESSING))


@pytest.mark.asyncio
async def test_skipping_a_step_is_rejected(create_order, update_status):
    order = await create_order(make_order_dto())

    with pytest.raises(InvalidStatusTransitionError):
        await update_status(move(order.id, OrderStatus.DELIVER))


@pytest.mark.asyncio
async def test_outsider_cannot_change_status(create_order, update_status):
    order = await create_order(make_order_dto())

    with pytest.raises(AccessDeniedError):
        await update_status(move(order.id, OrderStatus.PROCESSING, changed_by="someone-else"))


@pytest.mark.asyncio
async def test_unknown_order(update_status):
    with pytest.raises(OrderNotFoundError):
        await update_status(move("missing", OrderStatus.PROCESSING))


@pytest.mark.asyncio
async def test_only_counterparty_is_notified(create_order, update_status, session_factory):
    order = await create_order(make_order_dto())

    await update_status(move(order.id, OrderStatus.PROCESSING, changed_by=SELLER_ID))
    await update_status(move(order.id, OrderStatus.CANCELLED, changed_by=BUYER_ID))

    notifications = await status_notifications(session_factory)
    assert [n["recipient_id"] for n in notifications] == [BUYER_ID, SELLER_ID]
    assert notifications[0]["type"] == "order_status_update"
    assert notifications[0]["title"] == "Order Status Updated"
    assert notifications[0]["message"] == f"Order #{order.order_number}: Your order is being processed"
    assert notifications[1]["type"] == "order_cancelled"


@pytest.mark.asyncio
async def test_duplicate_notification_suppressed(create_order, update_status, dedup_store, session_factory):
    order = await create_order(make_order_dto())
    await dedup_store.add(f"status-notification:{BUYER_ID}:{order.id}:processing", "1", ttl_seconds=300)

    details = await update_status(move(order.id, OrderStatus.PROCESSING))

    assert details.status == OrderStatus.PROCESSING
    assert await status_notifications(session_factory) == []


@pytest.mark.asyncio
async def test_status_change_records_realtime_events(create_order, update_status, session_factory):
    order = await create_order(make_order_dto())
    await update_status(move(order.id, OrderStatus.PROCESSING))

    changes = [row.event_data for row in await outbox_rows(session_factory, ORDER_CHANGED)]
    assert [(c["event"], c["table"]) for c in changes] == [
        ("UPDATE", "orders"), ("INSERT", "order_status_history")
    ]
    assert changes[0]["old"]["status"] == "review"
    assert changes[0]["new"]["status"] == "processing"
    assert changes[1]["new"]["order_id"] == order.id


@pytest.mark.asyncio
async def test_order_numbers_never_collide(session_factory):
    fixed_day = datetime(2024, 3, 1, tzinfo=timezone.utc)
    procedures = SQLAlchemyOrderProcedures(session_factory, clock=lambda: fixed_day)

    numbers = [await procedures.generate_order_number() for _ in range(10_000)]

    assert len(set(numbers)) == 10_000
    assert numbers[0] == "CHF-20240301-000001"
    assert numbers[-1] == "CHF-20240301-010000"

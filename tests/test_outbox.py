"""
Tests for outbox delivery: notifications, emails and change events.
"""
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.dialects import postgresql

from conftest import BUYER_ID, SELLER_ID, make_order_dto, outbox_rows
from marketplace_orders.application.notification_inbox import ListNotificationsUseCase
from marketplace_orders.application.notifications import NotificationEmitter
from marketplace_orders.application.process_outbox import ProcessOutboxEventsUseCase
from marketplace_orders.application.realtime import order_change_filters
from marketplace_orders.domain.models import NotificationType, OrderStatus
from marketplace_orders.infrastructure.change_feeds import InMemoryChangeFeed
from marketplace_orders.infrastructure.repositories import pending_events_query

TEMPLATES = {"order_confirmation": "tpl_confirm", "notification": "tpl_notify"}


@pytest.fixture
def email_sender():
    sender = AsyncMock()
    sender.send_template.return_value = True
    return sender


@pytest.fixture
def change_publisher():
    publisher = AsyncMock()
    publisher.publish_change.return_value = True
    return publisher


@pytest.fixture
def process_outbox(uow, change_publisher, email_sender):
    return ProcessOutboxEventsUseCase(uow, change_publisher, email_sender, TEMPLATES, app_name="Chifere")


def statuses(rows):
    return [row.status for row in rows]


@pytest.mark.asyncio
async def test_new_order_events_are_delivered(create_order, process_outbox, email_sender, uow, session_factory):
    order = await create_order(make_order_dto())

    processed = await process_outbox()

    assert processed == 2
    assert statuses(await outbox_rows(session_factory)) == ["published", "published"]

    inbox = await ListNotificationsUseCase(uow)(SELLER_ID)
    assert len(inbox) == 1
    assert inbox[0].type == NotificationType.NEW_ORDER_RECEIVED
    assert inbox[0].order_id == order.id
    assert inbox[0].read_at is None

    email_sender.send_template.assert_awaited_once()
    template_id, params = email_sender.send_template.await_args.args
    assert template_id == "tpl_confirm"
    assert params["to_email"] == "juan@example.com"
    assert params["order_number"] == order.order_number
    assert params["app_name"] == "Chifere"


@pytest.mark.asyncio
async def test_nothing_pending(process_outbox):
    assert await process_outbox() == 0


@pytest.mark.asyncio
async def test_claimed_events_are_not_claimed_again(create_order, uow, session_factory):
    await create_order(make_order_dto())

    async with uow() as tx:
        claimed = await tx.outbox.claim_pending(limit=10)
        await tx.commit()
    async with uow() as tx:
        assert await tx.outbox.claim_pending(limit=10) == []

    assert len(claimed) == 2
    assert statuses(await outbox_rows(session_factory)) == ["processing", "processing"]


def test_pending_query_skips_locked_rows():
    sql = str(pending_events_query(5).compile(dialect=postgresql.dialect()))
    assert "FOR UPDATE SKIP LOCKED" in sql


@pytest.mark.asyncio
async def test_failed_email_is_not_retried(create_order, process_outbox, email_sender, session_factory):
    await create_order(make_order_dto())
    email_sender.send_template.return_value = False

    await process_outbox()
    email_sender.send_template.reset_mock()
    second_run = await process_outbox()

    assert second_run == 0
    email_sender.send_template.assert_not_awaited()
    assert sorted(statuses(await outbox_rows(session_factory))) == ["failed", "published"]


@pytest.mark.asyncio
async def test_email_without_address_fails(uow, process_outbox, email_sender, session_factory):
    await NotificationEmitter(uow).emit_email("no-profile", "order_confirmation", {"order_number": "X"})

    await process_outbox()

    email_sender.send_template.assert_not_awaited()
    assert statuses(await outbox_rows(session_factory)) == ["failed"]


@pytest.mark.asyncio
async def test_publisher_error_marks_failed_and_continues(
    create_order, procedures, process_outbox, change_publisher, session_factory
):
    order = await create_order(make_order_dto())
    await procedures.update_order_status(order.id, OrderStatus.PROCESSING, SELLER_ID)
    change_publisher.publish_change.side_effect = [RuntimeError("broker down"), True]

    processed = await process_outbox()

    assert processed == 4
    rows = await outbox_rows(session_factory)
    assert statuses(rows) == ["published", "published", "failed", "published"]


@pytest.mark.asyncio
async def test_changes_reach_in_memory_subscribers(create_order, procedures, uow, email_sender):
    feed = InMemoryChangeFeed()
    received = []

    async def collect(change):
        received.append(change)

    order = await create_order(make_order_dto())
    await feed.subscribe(order_change_filters(order.id), collect)
    await procedures.update_order_status(order.id, OrderStatus.PROCESSING, BUYER_ID)

    await ProcessOutboxEventsUseCase(uow, feed, email_sender, TEMPLATES)()

    assert [(c.event, c.table) for c in received] == [("UPDATE", "orders"), ("INSERT", "order_status_history")]
    assert received[0].new["status"] == "processing"


@pytest.mark.asyncio
async def test_emit_never_raises():
    class BrokenUnitOfWork:
        def __call__(self):
            raise RuntimeError("database unavailable")

    emitter = NotificationEmitter(BrokenUnitOfWork())

    queued = await emitter.emit("order-1", BUYER_ID, NotificationType.ORDER_STATUS_UPDATE, "Title", "Message")
    emailed = await emitter.emit_email(BUYER_ID, "notification", {})

    assert queued is False
    assert emailed is False

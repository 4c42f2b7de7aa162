"""
Tests for order creation.
"""
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from conftest import BUYER_ID, SELLER_ID, make_order_dto, outbox_rows
from marketplace_orders.application.create_order import CreateOrderUseCase, CreateOrderItemDTO, calculate_totals
from marketplace_orders.application.list_orders import ListUserOrdersUseCase
from marketplace_orders.application.notifications import NotificationEmitter, NOTIFICATION_SEND, EMAIL_SEND
from marketplace_orders.domain.exceptions import ValidationError, OrderCreationError
from marketplace_orders.domain.models import OrderStatus, PaymentStatus, UserRole
from marketplace_orders.infrastructure.repositories import SQLAlchemyOrderItemRepository


def test_calculate_totals_is_exact():
    items = [
        CreateOrderItemDTO(product_id="a", quantity=3, unit_price=Decimal("0.10")),
        CreateOrderItemDTO(product_id="b", quantity=1, unit_price=Decimal("0.20")),
    ]
    subtotal, total = calculate_totals(items, Decimal("0.05"), Decimal("0.01"))
    assert subtotal == Decimal("0.50")
    assert total == Decimal("0.56")


@pytest.mark.asyncio
async def test_create_order_computes_totals_and_initial_history(create_order):
    order = await create_order(make_order_dto())

    assert order.subtotal == Decimal("150")
    assert order.total_amount == Decimal("218")
    assert order.total_amount == order.subtotal + order.shipping_fee + order.tax_amount
    assert order.status == OrderStatus.REVIEW
    assert order.payment_status == PaymentStatus.PENDING
    assert order.order_number.startswith("CHF-")
    assert len(order.items) == 2
    assert [entry.status for entry in order.status_history] == [OrderStatus.REVIEW]
    assert order.status_history[0].notes == "Order created"
    assert order.status_history[0].changed_by == BUYER_ID


@pytest.mark.asyncio
async def test_create_order_queues_seller_notification_and_buyer_email(create_order, session_factory):
    order = await create_order(make_order_dto())

    notifications = await outbox_rows(session_factory, NOTIFICATION_SEND)
    assert len(notifications) == 1
    data = notifications[0].event_data
    assert data["recipient_id"] == SELLER_ID
    assert data["type"] == "new_order_received"
    assert order.order_number in data["message"]

    emails = await outbox_rows(session_factory, EMAIL_SEND)
    assert len(emails) == 1
    assert emails[0].event_data["recipient_id"] == BUYER_ID
    assert emails[0].event_data["template"] == "order_confirmation"


@pytest.mark.asyncio
async def test_empty_items_rejected_without_writes(create_order, uow, session_factory):
    with pytest.raises(ValidationError, match="at least one item"):
        await create_order(make_order_dto(items=[]))

    orders = await ListUserOrdersUseCase(uow)(BUYER_ID, UserRole.BUYER)
    assert orders == []
    assert await outbox_rows(session_factory) == []


@pytest.mark.asyncio
async def test_missing_fields_are_listed(create_order):
    with pytest.raises(ValidationError) as exc_info:
        await create_order(make_order_dto(seller_id=None, payment_method=None))

    assert "seller_id" in str(exc_info.value)
    assert "payment_method" in str(exc_info.value)


@pytest.mark.asyncio
async def test_non_positive_quantity_rejected(create_order):
    items = [CreateOrderItemDTO(product_id="p-1", quantity=0, unit_price=Decimal("10"))]
    with pytest.raises(ValidationError):
        await create_order(make_order_dto(items=items))


@pytest.mark.asyncio
async def test_item_failure_removes_header(create_order, uow, monkeypatch):
    async def broken_create_many(self, items):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(SQLAlchemyOrderItemRepository, "create_many", broken_create_many)

    with pytest.raises(OrderCreationError, match="Failed to create order items"):
        await create_order(make_order_dto())

    assert await ListUserOrdersUseCase(uow)(BUYER_ID, UserRole.BUYER) == []


@pytest.mark.asyncio
async def test_order_number_failure_is_reported(uow):
    procedures = AsyncMock()
    procedures.generate_order_number.side_effect = RuntimeError("rpc down")
    use_case = CreateOrderUseCase(uow, procedures, NotificationEmitter(uow))

    with pytest.raises(OrderCreationError, match="Failed to generate order number"):
        await use_case(make_order_dto())


@pytest.mark.asyncio
async def test_sub_cent_amounts_rejected(create_order, uow):
    items = [CreateOrderItemDTO(product_id="p-1", quantity=1, unit_price=Decimal("0.005"))]
    with pytest.raises(ValidationError, match="decimal places"):
        await create_order(make_order_dto(items=items, tax_amount=Decimal("0")))
    with pytest.raises(ValidationError, match="decimal places"):
        await create_order(make_order_dto(shipping_fee=Decimal("0.005")))

    assert await ListUserOrdersUseCase(uow)(BUYER_ID, UserRole.BUYER) == []


@pytest.mark.asyncio
async def test_stored_totals_add_up(create_order, uow):
    items = [CreateOrderItemDTO(product_id="p-1", quantity=3, unit_price=Decimal("33.33"))]
    order = await create_order(make_order_dto(items=items, shipping_fee=Decimal("0.01"), tax_amount=Decimal("12.00")))

    [stored] = await ListUserOrdersUseCase(uow)(BUYER_ID, UserRole.BUYER)

    assert stored.total_amount == stored.subtotal + stored.shipping_fee + stored.tax_amount
    assert stored.total_amount == order.total_amount == Decimal("112.00")

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field

from marketplace_orders.domain.models import (
    Order, OrderItem, OrderDetails, OrderStatus, PaymentStatus, PaymentMethod,
    ShippingAddress, ShippingContact, StatusHistoryEntry, NotificationType
)
from marketplace_orders.domain.exceptions import ValidationError, OrderCreationError
from marketplace_orders.application.interfaces import OrderProcedures
from marketplace_orders.application.notifications import NotificationEmitter

logger = logging.getLogger(__name__)


class CreateOrderItemDTO(BaseModel):
    product_id: str
    quantity: int
    unit_price: Decimal
    product_type: str = "product"
    product_name: str = ""
    product_image: Optional[str] = None
    product_specs: dict = Field(default_factory=dict)


class CreateOrderDTO(BaseModel):
    buyer_id: Optional[str] = None
    seller_id: Optional[str] = None
    items: Optional[List[CreateOrderItemDTO]] = None
    shipping_address: Optional[ShippingAddress] = None
    shipping_contact: Optional[ShippingContact] = None
    payment_method: Optional[PaymentMethod] = None
    shipping_fee: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    buyer_notes: str = ""
    seller_notes: str = ""


CENT = Decimal("0.01")


def _whole_cents(amount: Decimal) -> bool:
    # Money columns hold exactly 2 decimal places
    return amount == amount.quantize(CENT)


def calculate_totals(items: List[CreateOrderItemDTO], shipping_fee: Decimal, tax_amount: Decimal):
    """Returns (subtotal, total). Exact Decimal arithmetic, no rounding."""
    subtotal = sum((item.unit_price * item.quantity for item in items), Decimal("0"))
    return subtotal, subtotal + shipping_fee + tax_amount


class CreateOrderUseCase:
    def __init__(
        self,
        unit_of_work,
        procedures: OrderProcedures,
        notifications: NotificationEmitter
    ):
        self._uow = unit_of_work
        self._procedures = procedures
        self._notifications = notifications

    async def __call__(self, order_data: CreateOrderDTO) -> OrderDetails:
        self._validate(order_data)
        logger.info(f"Creating order for buyer {order_data.buyer_id}, seller {order_data.seller_id}")

        # 1. Totals
        subtotal, total = calculate_totals(order_data.items, order_data.shipping_fee, order_data.tax_amount)

        # 2. Order number
        try:
            order_number = await self._procedures.generate_order_number()
        except Exception as e:
            logger.error(f"Order number generation failed: {e}")
            raise OrderCreationError("Failed to generate order number") from e

        # 3. Header
        now = datetime.now(timezone.utc)
        order = Order(
            id=str(uuid.uuid4()),
            order_number=order_number,
            buyer_id=order_data.buyer_id,
            seller_id=order_data.seller_id,
            subtotal=subtotal,
            shipping_fee=order_data.shipping_fee,
            tax_amount=order_data.tax_amount,
            total_amount=total,
            status=OrderStatus.REVIEW,
            payment_status=PaymentStatus.PENDING,
            payment_method=order_data.payment_method,
            shipping_address=order_data.shipping_address,
            shipping_contact=order_data.shipping_contact,
            buyer_notes=order_data.buyer_notes,
            seller_notes=order_data.seller_notes,
            created_at=now,
            updated_at=now,
            status_updated_at=now
        )
        try:
            async with self._uow() as uow:
                await uow.orders.create(order)
                await uow.commit()
        except Exception as e:
            logger.error(f"Order header creation failed: {e}")
            raise OrderCreationError("Failed to create order") from e

        # 4. Items and the initial history entry; the header is removed if this fails
        items = [
            OrderItem(
                id=str(uuid.uuid4()),
                order_id=order.id,
                product_id=item.product_id,
                product_type=item.product_type,
                product_name=item.product_name,
                product_image=item.product_image,
                product_specs=item.product_specs,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.unit_price * item.quantity
            )
            for item in order_data.items
        ]
        try:
            async with self._uow() as uow:
                await uow.items.create_many(items)
                entry = await uow.history.append(StatusHistoryEntry(
                    order_id=order.id,
                    status=OrderStatus.REVIEW,
                    changed_by=order.buyer_id,
                    notes="Order created",
                    changed_at=now
                ))
                await uow.commit()
        except Exception as e:
            logger.error(f"Order items creation failed for {order.id}: {e}")
            await self._delete_header(order.id)
            raise OrderCreationError("Failed to create order items") from e

        logger.info(f"Order created: {order.id} ({order.order_number})")

        # 5. Side effects
        await self._notifications.emit(
            order_id=order.id,
            recipient_id=order.seller_id,
            notification_type=NotificationType.NEW_ORDER_RECEIVED,
            title="New Order Received",
            message=f"You have received a new order #{order.order_number} from {order.shipping_contact.name}",
            data={"order_number": order.order_number, "total_amount": str(order.total_amount)}
        )
        await self._notifications.emit_email(
            recipient_id=order.buyer_id,
            template="order_confirmation",
            params={
                "order_number": order.order_number,
                "order_date": now.date().isoformat(),
                "total_amount": str(order.total_amount),
                "items_count": len(items),
                "delivery_address": f"{order.shipping_address.street}, {order.shipping_address.city}"
            },
            order_id=order.id
        )

        return OrderDetails(**order.model_dump(), items=items, status_history=[entry])

    def _validate(self, order_data: CreateOrderDTO) -> None:
        required = {
            "buyer_id": order_data.buyer_id,
            "seller_id": order_data.seller_id,
            "items": order_data.items,
            "shipping_address": order_data.shipping_address,
            "shipping_contact": order_data.shipping_contact,
            "payment_method": order_data.payment_method,
        }
        missing = [name for name, value in required.items() if value is None or value == ""]
        if missing:
            raise ValidationError(f"Missing required order information: {', '.join(missing)}")
        if len(order_data.items) == 0:
            raise ValidationError("Order must contain at least one item")
        for item in order_data.items:
            if item.quantity <= 0:
                raise ValidationError(f"Quantity for product {item.product_id} must be positive")
            if item.unit_price < 0:
                raise ValidationError(f"Unit price for product {item.product_id} cannot be negative")
            if not _whole_cents(item.unit_price):
                raise ValidationError(f"Unit price for product {item.product_id} has more than 2 decimal places")
        if order_data.shipping_fee < 0 or order_data.tax_amount < 0:
            raise ValidationError("Shipping fee and tax cannot be negative")
        if not _whole_cents(order_data.shipping_fee) or not _whole_cents(order_data.tax_amount):
            raise ValidationError("Shipping fee and tax cannot have more than 2 decimal places")

    async def _delete_header(self, order_id: str) -> None:
        try:
            async with self._uow() as uow:
                await uow.orders.delete(order_id)
                await uow.commit()
            logger.info(f"Removed header of failed order {order_id}")
        except Exception as e:
            logger.error(f"Could not remove header of failed order {order_id}, left orphaned: {e}")

import logging
from typing import Optional
from pydantic import BaseModel

from marketplace_orders.domain.models import Order, PaymentStatus, NotificationType
from marketplace_orders.domain.exceptions import OrderNotFoundError
from marketplace_orders.application.changes import record_change, ORDERS_TABLE
from marketplace_orders.application.notifications import NotificationEmitter

logger = logging.getLogger(__name__)


class UpdatePaymentStatusDTO(BaseModel):
    order_id: str
    payment_status: PaymentStatus
    payment_reference: Optional[str] = None


class UpdatePaymentStatusUseCase:
    def __init__(self, unit_of_work, notifications: NotificationEmitter):
        self._uow = unit_of_work
        self._notifications = notifications

    async def __call__(self, dto: UpdatePaymentStatusDTO) -> Order:
        logger.info(f"Updating payment status of order {dto.order_id} to {dto.payment_status.value}")

        async with self._uow() as uow:
            order = await uow.orders.get_by_id(dto.order_id)
            if not order:
                raise OrderNotFoundError(f"Order {dto.order_id} not found")

            await uow.orders.update_payment_status(dto.order_id, dto.payment_status, dto.payment_reference)
            updated = await uow.orders.get_by_id(dto.order_id)
            await record_change(uow, "UPDATE", ORDERS_TABLE, dto.order_id, old=order, new=updated)
            await uow.commit()

        await self._notifications.emit(
            order_id=updated.id,
            recipient_id=updated.buyer_id,
            notification_type=NotificationType.PAYMENT_UPDATE,
            title="Payment Status Updated",
            message=f"Your payment for order #{updated.order_number} has been marked as {dto.payment_status.value}",
            data={"order_number": updated.order_number, "payment_status": dto.payment_status.value}
        )
        return updated

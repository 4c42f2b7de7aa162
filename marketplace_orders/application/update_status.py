import logging
from typing import Optional
from pydantic import BaseModel

from marketplace_orders.domain.models import OrderStatus, OrderDetails, NotificationType, status_message
from marketplace_orders.domain.exceptions import OrderServiceError
from marketplace_orders.application.interfaces import OrderProcedures, KeyValueStore
from marketplace_orders.application.notifications import NotificationEmitter
from marketplace_orders.application.order_details import load_details

logger = logging.getLogger(__name__)


class UpdateOrderStatusDTO(BaseModel):
    order_id: str
    new_status: OrderStatus
    changed_by: str
    notes: Optional[str] = None


class UpdateOrderStatusUseCase:
    def __init__(
        self,
        unit_of_work,
        procedures: OrderProcedures,
        notifications: NotificationEmitter,
        dedup_store: KeyValueStore,
        dedup_seconds: float = 300
    ):
        self._uow = unit_of_work
        self._procedures = procedures
        self._notifications = notifications
        self._dedup_store = dedup_store
        self._dedup_seconds = dedup_seconds

    async def __call__(self, dto: UpdateOrderStatusDTO) -> OrderDetails:
        logger.info(f"Updating order {dto.order_id} to {dto.new_status.value} by {dto.changed_by}")

        # Rejections from the procedure propagate unchanged
        await self._procedures.update_order_status(
            dto.order_id, dto.new_status, dto.changed_by, dto.notes
        )

        try:
            async with self._uow() as uow:
                fresh = await uow.orders.get_by_id(dto.order_id)
                if not fresh:
                    raise OrderServiceError(f"Order {dto.order_id} disappeared after status update")
                details = (await load_details(uow, [fresh]))[0]
        except OrderServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to fetch order {dto.order_id} after status update: {e}")
            raise OrderServiceError("Status updated but the order could not be reloaded") from e

        await self._notify_counterparty(details, dto)
        return details

    async def _notify_counterparty(self, details: OrderDetails, dto: UpdateOrderStatusDTO) -> None:
        recipient_id = details.counterpart_of(dto.changed_by)
        if recipient_id is None:
            return

        dedup_key = f"status-notification:{recipient_id}:{details.id}:{dto.new_status.value}"
        try:
            first = await self._dedup_store.add(dedup_key, "1", ttl_seconds=self._dedup_seconds)
        except Exception as e:
            logger.error(f"Duplicate check failed for {dedup_key}: {e}")
            first = True
        if not first:
            logger.warning(f"Duplicate status notification suppressed for order {details.id}")
            return

        notification_type = (
            NotificationType.ORDER_CANCELLED
            if dto.new_status == OrderStatus.CANCELLED
            else NotificationType.ORDER_STATUS_UPDATE
        )
        await self._notifications.emit(
            order_id=details.id,
            recipient_id=recipient_id,
            notification_type=notification_type,
            title="Order Status Updated",
            message=f"Order #{details.order_number}: {status_message(dto.new_status)}",
            data={
                "order_number": details.order_number,
                "new_status": dto.new_status.value,
                "changed_by": dto.changed_by
            }
        )

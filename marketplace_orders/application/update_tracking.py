import logging
from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from marketplace_orders.domain.models import Order
from marketplace_orders.domain.exceptions import OrderNotFoundError, AccessDeniedError, ValidationError
from marketplace_orders.application.changes import record_change, ORDERS_TABLE

logger = logging.getLogger(__name__)


class UpdateOrderTrackingDTO(BaseModel):
    order_id: str
    updated_by: str
    tracking_number: Optional[str] = None
    courier_service: Optional[str] = None
    estimated_delivery: Optional[datetime] = None


class UpdateOrderTrackingUseCase:
    """Seller records the courier and tracking number of a shipped order"""

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, dto: UpdateOrderTrackingDTO) -> Order:
        if not (dto.tracking_number or dto.courier_service or dto.estimated_delivery):
            raise ValidationError("Tracking number, courier service or estimated delivery is required")

        async with self._uow() as uow:
            order = await uow.orders.get_by_id(dto.order_id, for_update=True)
            if not order:
                raise OrderNotFoundError(f"Order {dto.order_id} not found")
            if dto.updated_by != order.seller_id:
                raise AccessDeniedError("Only the seller can update tracking information")

            await uow.orders.update_tracking(
                dto.order_id, dto.tracking_number, dto.courier_service, dto.estimated_delivery
            )
            updated = await uow.orders.get_by_id(dto.order_id)
            await record_change(uow, "UPDATE", ORDERS_TABLE, dto.order_id, old=order, new=updated)
            await uow.commit()

        logger.info(f"Tracking for order {updated.order_number} set to {dto.courier_service} {dto.tracking_number}")
        return updated

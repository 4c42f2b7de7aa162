import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel

from marketplace_orders.domain.models import (
    OrderDetails, OrderFilters, OrderStatus, PaymentStatus, UserRole
)
from marketplace_orders.domain.exceptions import ValidationError
from marketplace_orders.application.order_details import load_details

logger = logging.getLogger(__name__)


class ListUserOrdersUseCase:
    def __init__(self, unit_of_work, default_limit: int = 20, max_limit: int = 100):
        self._uow = unit_of_work
        self._default_limit = default_limit
        self._max_limit = max_limit

    async def __call__(self, user_id: str, role: UserRole, filters: Optional[OrderFilters] = None) -> List[OrderDetails]:
        if not user_id:
            raise ValidationError("user_id is required")
        filters = filters or OrderFilters(limit=self._default_limit)
        if filters.offset < 0 or filters.limit <= 0:
            raise ValidationError("offset must be >= 0 and limit must be positive")
        if filters.limit > self._max_limit:
            filters = filters.model_copy(update={"limit": self._max_limit})

        async with self._uow() as uow:
            orders = await uow.orders.list_for_user(user_id, UserRole(role), filters)
            details = await load_details(uow, orders)

        logger.info(f"Found {len(details)} orders for {role} {user_id}")
        return details


class SellerStatistics(BaseModel):
    total_orders: int = 0
    total_revenue: Decimal = Decimal("0")
    monthly_revenue: Decimal = Decimal("0")
    pending_orders: int = 0
    processing_orders: int = 0
    delivering_orders: int = 0
    completed_orders: int = 0
    cancelled_orders: int = 0
    paid_orders: int = 0
    unpaid_orders: int = 0


class GetSellerStatisticsUseCase:
    def __init__(self, unit_of_work, clock=lambda: datetime.now(timezone.utc)):
        self._uow = unit_of_work
        self._clock = clock

    async def __call__(self, seller_id: str) -> SellerStatistics:
        async with self._uow() as uow:
            orders = await uow.orders.list_for_seller(seller_id)

        now = self._clock()
        stats = SellerStatistics(total_orders=len(orders))
        for order in orders:
            stats.total_revenue += order.total_amount
            if order.created_at.year == now.year and order.created_at.month == now.month:
                stats.monthly_revenue += order.total_amount
            if order.status == OrderStatus.REVIEW:
                stats.pending_orders += 1
            elif order.status == OrderStatus.PROCESSING:
                stats.processing_orders += 1
            elif order.status == OrderStatus.DELIVER:
                stats.delivering_orders += 1
            elif order.status in (OrderStatus.RECEIVED, OrderStatus.COMPLETED):
                stats.completed_orders += 1
            elif order.status == OrderStatus.CANCELLED:
                stats.cancelled_orders += 1
            if order.payment_status == PaymentStatus.PAID:
                stats.paid_orders += 1
        stats.unpaid_orders = stats.total_orders - stats.paid_orders
        return stats

import logging
from datetime import datetime, timezone
from typing import Optional, Callable
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_orders.application.changes import record_change, ORDERS_TABLE, STATUS_HISTORY_TABLE
from marketplace_orders.application.interfaces import OrderProcedures
from marketplace_orders.domain.exceptions import (
    OrderNotFoundError, AccessDeniedError, InvalidStatusTransitionError
)
from marketplace_orders.domain.models import Order, OrderStatus, StatusHistoryEntry
from marketplace_orders.infrastructure.db_schema import order_number_counters_tbl
from marketplace_orders.infrastructure.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SQLAlchemyOrderProcedures(OrderProcedures):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        prefix: str = "CHF",
        clock: Callable[[], datetime] = utc_now
    ):
        self._session_factory = session_factory
        self._uow = UnitOfWork(session_factory)
        self._prefix = prefix
        self._clock = clock

    async def generate_order_number(self) -> str:
        day = self._clock().strftime("%Y%m%d")
        # A concurrent first insert for the same day loses the race once, then increments
        for attempt in range(2):
            async with self._session_factory() as session:
                try:
                    value = await self._next_value(session, day)
                    await session.commit()
                    return f"{self._prefix}-{day}-{value:06d}"
                except IntegrityError:
                    await session.rollback()
                    if attempt:
                        raise
                    logger.warning(f"Order number counter for {day} created concurrently, retrying")

    async def _next_value(self, session: AsyncSession, day: str) -> int:
        result = await session.execute(
            select(order_number_counters_tbl.c.last_value)
            .where(order_number_counters_tbl.c.day == day)
            .with_for_update()
        )
        current = result.scalar_one_or_none()
        if current is None:
            await session.execute(insert(order_number_counters_tbl).values(day=day, last_value=1))
            return 1
        await session.execute(
            update(order_number_counters_tbl)
            .where(order_number_counters_tbl.c.day == day)
            .values(last_value=current + 1)
        )
        return current + 1

    async def update_order_status(
        self, order_id: str, new_status: OrderStatus, changed_by: str, notes: Optional[str] = None
    ) -> Order:
        new_status = OrderStatus(new_status)
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id, for_update=True)
            if not order:
                raise OrderNotFoundError(f"Order {order_id} not found")
            if not order.involves(changed_by):
                raise AccessDeniedError(f"User {changed_by} cannot change order {order_id}")
            if not order.can_transition_to(new_status):
                raise InvalidStatusTransitionError(order.status, new_status)

            now = self._clock()
            await uow.orders.update_status(order_id, new_status, now)
            entry = await uow.history.append(StatusHistoryEntry(
                order_id=order_id,
                status=new_status,
                changed_by=changed_by,
                notes=notes,
                changed_at=now
            ))
            updated = order.model_copy(update={
                "status": new_status,
                "status_updated_at": now,
                "updated_at": now
            })
            await record_change(uow, "UPDATE", ORDERS_TABLE, order_id, old=order, new=updated)
            await record_change(uow, "INSERT", STATUS_HISTORY_TABLE, order_id, new=entry)
            await uow.commit()

        logger.info(f"Order {order_id}: {order.status.value} -> {new_status.value} by {changed_by}")
        return updated

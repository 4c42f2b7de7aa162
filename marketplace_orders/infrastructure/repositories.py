import uuid
from typing import Optional, List, Dict, Iterable
from datetime import datetime, timezone
from sqlalchemy import select, insert, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_orders.domain.models import (
    Order, OrderItem, StatusHistoryEntry, UserProfile, Notification,
    OrderFilters, OrderStatus, PaymentStatus, PaymentMethod, UserRole, NotificationType,
    ShippingAddress, ShippingContact
)
from marketplace_orders.infrastructure.db_schema import (
    orders_tbl, order_items_tbl, order_status_history_tbl, user_profiles_tbl,
    notifications_tbl, outbox_events_tbl
)
from marketplace_orders.application.interfaces import (
    OrderRepository, OrderItemRepository, StatusHistoryRepository, ProfileRepository,
    NotificationRepository, OutboxRepository
)


class SQLAlchemyOrderRepository(OrderRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        stmt = select(orders_tbl).where(orders_tbl.c.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        row = result.fetchone()
        return order_from_row(row) if row else None

    async def create(self, order: Order) -> None:
        stmt = insert(orders_tbl).values(**order_to_values(order))
        await self._session.execute(stmt)

    async def delete(self, order_id: str) -> None:
        await self._session.execute(delete(orders_tbl).where(orders_tbl.c.id == order_id))

    async def list_for_user(self, user_id: str, role: UserRole, filters: OrderFilters) -> List[Order]:
        column = orders_tbl.c.buyer_id if role == UserRole.BUYER else orders_tbl.c.seller_id
        stmt = select(orders_tbl).where(column == user_id)

        if filters.status:
            stmt = stmt.where(orders_tbl.c.status == filters.status)
        if filters.payment_status:
            stmt = stmt.where(orders_tbl.c.payment_status == filters.payment_status)
        if filters.payment_method:
            stmt = stmt.where(orders_tbl.c.payment_method == filters.payment_method)
        if filters.date_from:
            stmt = stmt.where(orders_tbl.c.created_at >= filters.date_from)
        if filters.date_to:
            stmt = stmt.where(orders_tbl.c.created_at <= filters.date_to)
        if filters.order_number:
            stmt = stmt.where(orders_tbl.c.order_number.ilike(f"%{filters.order_number}%"))

        stmt = (
            stmt.order_by(orders_tbl.c.created_at.desc(), orders_tbl.c.order_number.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        )
        result = await self._session.execute(stmt)
        return [order_from_row(row) for row in result.fetchall()]

    async def list_for_seller(self, seller_id: str) -> List[Order]:
        result = await self._session.execute(
            select(orders_tbl).where(orders_tbl.c.seller_id == seller_id)
        )
        return [order_from_row(row) for row in result.fetchall()]

    async def update_status(self, order_id: str, status: OrderStatus, changed_at: datetime) -> None:
        stmt = (
            update(orders_tbl)
            .where(orders_tbl.c.id == order_id)
            .values(status=status, status_updated_at=changed_at, updated_at=changed_at)
        )
        await self._session.execute(stmt)

    async def update_payment_status(
        self, order_id: str, payment_status: PaymentStatus, payment_reference: Optional[str]
    ) -> None:
        stmt = (
            update(orders_tbl)
            .where(orders_tbl.c.id == order_id)
            .values(
                payment_status=payment_status,
                payment_reference=payment_reference,
                updated_at=datetime.now(timezone.utc)
            )
        )
        await self._session.execute(stmt)

    async def update_tracking(
        self,
        order_id: str,
        tracking_number: Optional[str],
        courier_service: Optional[str],
        estimated_delivery: Optional[datetime]
    ) -> None:
        stmt = (
            update(orders_tbl)
            .where(orders_tbl.c.id == order_id)
            .values(
                tracking_number=tracking_number,
                courier_service=courier_service,
                estimated_delivery=estimated_delivery,
                updated_at=datetime.now(timezone.utc)
            )
        )
        await self._session.execute(stmt)


class SQLAlchemyOrderItemRepository(OrderItemRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create_many(self, items: List[OrderItem]) -> None:
        if not items:
            return
        await self._session.execute(
            insert(order_items_tbl),
            [item.model_dump() for item in items]
        )

    async def list_for_orders(self, order_ids: List[str]) -> List[OrderItem]:
        if not order_ids:
            return []
        result = await self._session.execute(
            select(order_items_tbl)
            .where(order_items_tbl.c.order_id.in_(order_ids))
            .order_by(order_items_tbl.c.order_id, order_items_tbl.c.product_name)
        )
        return [
            OrderItem(
                id=row.id,
                order_id=row.order_id,
                product_id=row.product_id,
                product_type=row.product_type,
                product_name=row.product_name,
                product_image=row.product_image,
                product_specs=row.product_specs or {},
                quantity=row.quantity,
                unit_price=row.unit_price,
                total_price=row.total_price
            )
            for row in result.fetchall()
        ]


class SQLAlchemyStatusHistoryRepository(StatusHistoryRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def append(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        result = await self._session.execute(
            insert(order_status_history_tbl).values(
                order_id=entry.order_id,
                status=entry.status,
                changed_by=entry.changed_by,
                notes=entry.notes,
                changed_at=entry.changed_at
            )
        )
        return entry.model_copy(update={"id": result.inserted_primary_key[0]})

    async def list_for_orders(self, order_ids: List[str]) -> List[StatusHistoryEntry]:
        if not order_ids:
            return []
        result = await self._session.execute(
            select(order_status_history_tbl)
            .where(order_status_history_tbl.c.order_id.in_(order_ids))
            .order_by(order_status_history_tbl.c.changed_at.asc(), order_status_history_tbl.c.id.asc())
        )
        return [
            StatusHistoryEntry(
                id=row.id,
                order_id=row.order_id,
                status=OrderStatus(row.status),
                changed_by=row.changed_by,
                notes=row.notes,
                changed_at=row.changed_at
            )
            for row in result.fetchall()
        ]


class SQLAlchemyProfileRepository(ProfileRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_many(self, user_ids: Iterable[str]) -> Dict[str, UserProfile]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        result = await self._session.execute(
            select(user_profiles_tbl).where(user_profiles_tbl.c.id.in_(ids))
        )
        return {
            row.id: UserProfile(
                id=row.id,
                display_name=row.display_name,
                business_name=row.business_name,
                profile_image=row.profile_image,
                email=row.email
            )
            for row in result.fetchall()
        }


class SQLAlchemyNotificationRepository(NotificationRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, notification: Notification) -> None:
        await self._session.execute(
            insert(notifications_tbl).values(**notification.model_dump())
        )

    async def get_by_id(self, notification_id: str) -> Optional[Notification]:
        result = await self._session.execute(
            select(notifications_tbl).where(notifications_tbl.c.id == notification_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def list_for_recipient(
        self,
        recipient_id: str,
        unread_only: bool = False,
        notification_type: Optional[NotificationType] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> List[Notification]:
        stmt = select(notifications_tbl).where(notifications_tbl.c.recipient_id == recipient_id)
        if unread_only:
            stmt = stmt.where(notifications_tbl.c.read_at.is_(None))
        if notification_type:
            stmt = stmt.where(notifications_tbl.c.type == notification_type)
        stmt = stmt.order_by(notifications_tbl.c.created_at.desc()).offset(offset).limit(limit)
        result = await self._session.execute(stmt)
        return [self._to_domain(row) for row in result.fetchall()]

    async def count_unread(self, recipient_id: str) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(notifications_tbl)
            .where(
                notifications_tbl.c.recipient_id == recipient_id,
                notifications_tbl.c.read_at.is_(None)
            )
        )
        return result.scalar_one()

    async def mark_as_read(self, notification_id: str, read_at: datetime) -> None:
        await self._session.execute(
            update(notifications_tbl)
            .where(notifications_tbl.c.id == notification_id, notifications_tbl.c.read_at.is_(None))
            .values(read_at=read_at)
        )

    async def mark_all_as_read(self, recipient_id: str, read_at: datetime) -> int:
        result = await self._session.execute(
            update(notifications_tbl)
            .where(
                notifications_tbl.c.recipient_id == recipient_id,
                notifications_tbl.c.read_at.is_(None)
            )
            .values(read_at=read_at)
        )
        return result.rowcount

    async def delete(self, notification_id: str) -> None:
        await self._session.execute(
            delete(notifications_tbl).where(notifications_tbl.c.id == notification_id)
        )

    def _to_domain(self, row) -> Notification:
        return Notification(
            id=row.id,
            recipient_id=row.recipient_id,
            order_id=row.order_id,
            type=NotificationType(row.type),
            title=row.title,
            message=row.message,
            data=row.data or {},
            read_at=row.read_at,
            created_at=row.created_at
        )


class SQLAlchemyOutboxRepository(OutboxRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, event_type: str, event_data: dict, order_id: Optional[str]) -> str:
        event_id = str(uuid.uuid4())
        stmt = insert(outbox_events_tbl).values(
            id=event_id,
            event_type=event_type,
            event_data=event_data,  # JSON column serializes the dict
            order_id=order_id,
            status="pending",
            created_at=datetime.now(timezone.utc)
        )
        await self._session.execute(stmt)
        return event_id

    async def claim_pending(self, limit: int = 10) -> List[dict]:
        """Moves up to `limit` pending events to processing and returns them.

        Rows locked by another worker are skipped, so concurrent workers never
        claim the same event. SQLite ignores the lock clause.
        """
        result = await self._session.execute(pending_events_query(limit))
        rows = result.fetchall()
        if rows:
            await self._session.execute(
                update(outbox_events_tbl)
                .where(outbox_events_tbl.c.id.in_([row.id for row in rows]))
                .values(status="processing")
            )

        return [
            {
                "id": row.id,
                "event_type": row.event_type,
                "event_data": row.event_data,
                "order_id": row.order_id
            }
            for row in rows
        ]

    async def mark_as_published(self, event_id: str) -> None:
        await self._set_status(event_id, "published")

    async def mark_as_failed(self, event_id: str) -> None:
        await self._set_status(event_id, "failed")

    async def _set_status(self, event_id: str, status: str) -> None:
        stmt = (
            update(outbox_events_tbl)
            .where(outbox_events_tbl.c.id == event_id)
            .values(status=status)
        )
        await self._session.execute(stmt)


def pending_events_query(limit: int):
    return (
        select(outbox_events_tbl)
        .where(outbox_events_tbl.c.status == "pending")
        .order_by(outbox_events_tbl.c.created_at.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
    )


def order_to_values(order: Order) -> dict:
    values = order.model_dump(exclude={"shipping_address", "shipping_contact"})
    values["shipping_address"] = order.shipping_address.model_dump(mode="json")
    values["shipping_contact"] = order.shipping_contact.model_dump(mode="json")
    return values


def order_from_row(row) -> Order:
    """DB row → Domain"""
    return Order(
        id=row.id,
        order_number=row.order_number,
        buyer_id=row.buyer_id,
        seller_id=row.seller_id,
        subtotal=row.subtotal,
        shipping_fee=row.shipping_fee,
        tax_amount=row.tax_amount,
        total_amount=row.total_amount,
        status=OrderStatus(row.status),
        payment_status=PaymentStatus(row.payment_status),
        payment_method=PaymentMethod(row.payment_method),
        payment_reference=row.payment_reference,
        shipping_address=ShippingAddress(**row.shipping_address),
        shipping_contact=ShippingContact(**row.shipping_contact),
        buyer_notes=row.buyer_notes or "",
        seller_notes=row.seller_notes or "",
        tracking_number=row.tracking_number,
        courier_service=row.courier_service,
        estimated_delivery=row.estimated_delivery,
        created_at=row.created_at,
        updated_at=row.updated_at,
        status_updated_at=row.status_updated_at
    )

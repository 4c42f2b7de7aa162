from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List, Dict, Callable, Awaitable, Iterable

from marketplace_orders.domain.events import ChangeEvent, ChangeFilter
from marketplace_orders.domain.models import (
    Order, OrderItem, StatusHistoryEntry, UserProfile, Notification,
    OrderFilters, OrderStatus, PaymentStatus, UserRole, NotificationType
)


class OrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        pass

    @abstractmethod
    async def create(self, order: Order) -> None:
        pass

    @abstractmethod
    async def delete(self, order_id: str) -> None:
        pass

    @abstractmethod
    async def list_for_user(self, user_id: str, role: UserRole, filters: OrderFilters) -> List[Order]:
        pass

    @abstractmethod
    async def list_for_seller(self, seller_id: str) -> List[Order]:
        pass

    @abstractmethod
    async def update_status(self, order_id: str, status: OrderStatus, changed_at: datetime) -> None:
        pass

    @abstractmethod
    async def update_payment_status(
        self, order_id: str, payment_status: PaymentStatus, payment_reference: Optional[str]
    ) -> None:
        pass

    @abstractmethod
    async def update_tracking(
        self,
        order_id: str,
        tracking_number: Optional[str],
        courier_service: Optional[str],
        estimated_delivery: Optional[datetime]
    ) -> None:
        pass


class OrderItemRepository(ABC):
    @abstractmethod
    async def create_many(self, items: List[OrderItem]) -> None:
        pass

    @abstractmethod
    async def list_for_orders(self, order_ids: List[str]) -> List[OrderItem]:
        pass


class StatusHistoryRepository(ABC):
    @abstractmethod
    async def append(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        pass

    @abstractmethod
    async def list_for_orders(self, order_ids: List[str]) -> List[StatusHistoryEntry]:
        pass


class ProfileRepository(ABC):
    @abstractmethod
    async def get_many(self, user_ids: Iterable[str]) -> Dict[str, UserProfile]:
        pass


class NotificationRepository(ABC):
    @abstractmethod
    async def create(self, notification: Notification) -> None:
        pass

    @abstractmethod
    async def get_by_id(self, notification_id: str) -> Optional[Notification]:
        pass

    @abstractmethod
    async def list_for_recipient(
        self,
        recipient_id: str,
        unread_only: bool = False,
        notification_type: Optional[NotificationType] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> List[Notification]:
        pass

    @abstractmethod
    async def count_unread(self, recipient_id: str) -> int:
        pass

    @abstractmethod
    async def mark_as_read(self, notification_id: str, read_at: datetime) -> None:
        pass

    @abstractmethod
    async def mark_all_as_read(self, recipient_id: str, read_at: datetime) -> int:
        pass

    @abstractmethod
    async def delete(self, notification_id: str) -> None:
        pass


class OutboxRepository(ABC):
    @abstractmethod
    async def create(self, event_type: str, event_data: dict, order_id: Optional[str]) -> str:
        pass

    @abstractmethod
    async def claim_pending(self, limit: int = 10) -> List[dict]:
        pass

    @abstractmethod
    async def mark_as_published(self, event_id: str) -> None:
        pass

    @abstractmethod
    async def mark_as_failed(self, event_id: str) -> None:
        pass


class UnitOfWork(ABC):
    @property
    @abstractmethod
    def orders(self) -> OrderRepository:
        pass

    @property
    @abstractmethod
    def items(self) -> OrderItemRepository:
        pass

    @property
    @abstractmethod
    def history(self) -> StatusHistoryRepository:
        pass

    @property
    @abstractmethod
    def profiles(self) -> ProfileRepository:
        pass

    @property
    @abstractmethod
    def notifications(self) -> NotificationRepository:
        pass

    @property
    @abstractmethod
    def outbox(self) -> OutboxRepository:
        pass

    @abstractmethod
    async def __call__(self):
        pass

    @abstractmethod
    async def commit(self):
        pass

    @abstractmethod
    async def rollback(self):
        pass


class OrderProcedures(ABC):
    """Server-side operations the workflow treats as single remote calls"""

    @abstractmethod
    async def generate_order_number(self) -> str:
        pass

    @abstractmethod
    async def update_order_status(
        self, order_id: str, new_status: OrderStatus, changed_by: str, notes: Optional[str] = None
    ) -> Order:
        pass


class KeyValueStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None:
        pass

    @abstractmethod
    async def add(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> bool:
        """Store only if the key is absent or expired. Returns True when stored."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass


class Subscription(ABC):
    @property
    @abstractmethod
    def is_active(self) -> bool:
        pass

    @abstractmethod
    async def unsubscribe(self) -> None:
        pass


ChangeCallback = Callable[[ChangeEvent], Awaitable[None]]


class ChangeFeed(ABC):
    @abstractmethod
    async def subscribe(self, filters: List[ChangeFilter], callback: ChangeCallback) -> Subscription:
        pass


class ChangePublisher(ABC):
    @abstractmethod
    async def publish_change(self, change: ChangeEvent) -> bool:
        pass


class EmailSender(ABC):
    @abstractmethod
    async def send_template(self, template_id: str, params: dict) -> bool:
        pass

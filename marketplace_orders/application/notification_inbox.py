from datetime import datetime, timezone
from typing import List, Optional

from marketplace_orders.domain.models import Notification, NotificationType
from marketplace_orders.domain.exceptions import NotificationNotFoundError, ValidationError


class ListNotificationsUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(
        self,
        recipient_id: str,
        unread_only: bool = False,
        notification_type: Optional[NotificationType] = None,
        offset: int = 0,
        limit: int = 20
    ) -> List[Notification]:
        if offset < 0 or limit <= 0:
            raise ValidationError("offset must be >= 0 and limit must be positive")
        async with self._uow() as uow:
            return await uow.notifications.list_for_recipient(
                recipient_id, unread_only, notification_type, offset, limit
            )


class CountUnreadNotificationsUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, recipient_id: str) -> int:
        async with self._uow() as uow:
            return await uow.notifications.count_unread(recipient_id)


class MarkNotificationReadUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, notification_id: str, recipient_id: str) -> Notification:
        """read_at is written once; marking an already read notification keeps the first timestamp"""
        async with self._uow() as uow:
            notification = await uow.notifications.get_by_id(notification_id)
            if not notification or notification.recipient_id != recipient_id:
                raise NotificationNotFoundError(f"Notification {notification_id} not found")
            if notification.is_read:
                return notification

            await uow.notifications.mark_as_read(notification_id, datetime.now(timezone.utc))
            await uow.commit()
            return await uow.notifications.get_by_id(notification_id)


class MarkAllNotificationsReadUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, recipient_id: str) -> int:
        async with self._uow() as uow:
            updated = await uow.notifications.mark_all_as_read(recipient_id, datetime.now(timezone.utc))
            await uow.commit()
            return updated


class DeleteNotificationUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, notification_id: str, recipient_id: str) -> str:
        async with self._uow() as uow:
            notification = await uow.notifications.get_by_id(notification_id)
            if not notification or notification.recipient_id != recipient_id:
                raise NotificationNotFoundError(f"Notification {notification_id} not found")

            await uow.notifications.delete(notification_id)
            await uow.commit()
            return notification_id

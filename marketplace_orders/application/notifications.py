import logging
from typing import Optional

from marketplace_orders.domain.models import NotificationType

logger = logging.getLogger(__name__)

NOTIFICATION_SEND = "notification.send"
EMAIL_SEND = "email.send"


class NotificationEmitter:
    """Queues notifications through the outbox. Never raises to the caller."""

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def emit(
        self,
        order_id: Optional[str],
        recipient_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: Optional[dict] = None
    ) -> bool:
        try:
            async with self._uow() as uow:
                await uow.outbox.create(
                    event_type=NOTIFICATION_SEND,
                    event_data={
                        "recipient_id": recipient_id,
                        "order_id": order_id,
                        "type": NotificationType(notification_type).value,
                        "title": title,
                        "message": message,
                        "data": data or {}
                    },
                    order_id=order_id
                )
                await uow.commit()
            logger.info(f"Queued {NotificationType(notification_type).value} notification for {recipient_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to queue notification for {recipient_id} (order {order_id}): {e}")
            return False

    async def emit_email(self, recipient_id: str, template: str, params: dict,
                         order_id: Optional[str] = None) -> bool:
        try:
            async with self._uow() as uow:
                await uow.outbox.create(
                    event_type=EMAIL_SEND,
                    event_data={"recipient_id": recipient_id, "template": template, "params": params},
                    order_id=order_id
                )
                await uow.commit()
            logger.info(f"Queued {template} email for {recipient_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to queue {template} email for {recipient_id}: {e}")
            return False

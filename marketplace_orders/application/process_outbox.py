import logging
import json
import uuid
from datetime import datetime, timezone

from marketplace_orders.domain.events import ChangeEvent
from marketplace_orders.domain.models import Notification, NotificationType
from marketplace_orders.application.changes import ORDER_CHANGED
from marketplace_orders.application.interfaces import ChangePublisher, EmailSender
from marketplace_orders.application.notifications import NOTIFICATION_SEND, EMAIL_SEND

logger = logging.getLogger(__name__)


class ProcessOutboxEventsUseCase:
    """Delivers pending outbox events once. Failed events are marked failed, never retried."""

    def __init__(
        self,
        unit_of_work,
        change_publisher: ChangePublisher,
        email_sender: EmailSender,
        email_templates: dict,
        app_name: str = ""
    ):
        self._uow = unit_of_work
        self._publisher = change_publisher
        self._email = email_sender
        self._templates = email_templates
        self._app_name = app_name

    async def __call__(self, limit: int = 20) -> int:
        """Processes pending outbox events. Returns how many were handled."""

        async with self._uow() as uow:
            pending = await uow.outbox.claim_pending(limit=limit)
            # Claimed rows leave the pending set before any delivery starts
            await uow.commit()

            for event in pending:
                try:
                    event_data = event["event_data"]
                    if isinstance(event_data, str):
                        event_data = json.loads(event_data)

                    if event["event_type"] == NOTIFICATION_SEND:
                        delivered = await self._store_notification(uow, event_data)
                    elif event["event_type"] == EMAIL_SEND:
                        delivered = await self._send_email(uow, event_data)
                    elif event["event_type"] == ORDER_CHANGED:
                        delivered = await self._publisher.publish_change(ChangeEvent.model_validate(event_data))
                    else:
                        logger.warning(f"Skipping unknown outbox event type {event['event_type']}")
                        delivered = False

                    if delivered:
                        await uow.outbox.mark_as_published(event["id"])
                    else:
                        await uow.outbox.mark_as_failed(event["id"])
                        logger.error(f"Outbox event {event['id']} ({event['event_type']}) not delivered")
                    await uow.commit()
                except Exception as e:
                    logger.error(f"Error processing outbox event {event['id']}: {e}")
                    # Discard this event's partial writes only
                    await uow.rollback()
                    await uow.outbox.mark_as_failed(event["id"])
                    await uow.commit()

        if pending:
            logger.info(f"Processed {len(pending)} outbox events")
        return len(pending)

    async def _store_notification(self, uow, event_data: dict) -> bool:
        notification = Notification(
            id=str(uuid.uuid4()),
            recipient_id=event_data["recipient_id"],
            order_id=event_data.get("order_id"),
            type=NotificationType(event_data["type"]),
            title=event_data["title"],
            message=event_data["message"] or event_data["title"],
            data=event_data.get("data") or {},
            created_at=datetime.now(timezone.utc)
        )
        await uow.notifications.create(notification)
        logger.info(f"Notification {notification.id} stored for {notification.recipient_id}")
        return True

    async def _send_email(self, uow, event_data: dict) -> bool:
        template_id = self._templates.get(event_data["template"])
        if not template_id:
            logger.error(f"No email template configured for {event_data['template']}")
            return False

        profiles = await uow.profiles.get_many([event_data["recipient_id"]])
        profile = profiles.get(event_data["recipient_id"])
        if not profile or not profile.email:
            logger.warning(f"No email address for {event_data['recipient_id']}, email skipped")
            return False

        params = {
            "to_email": profile.email,
            "first_name": profile.display_name or profile.email.split("@")[0],
            "app_name": self._app_name,
            **event_data.get("params", {})
        }
        return await self._email.send_template(template_id, params)

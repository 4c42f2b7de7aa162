import asyncio
import logging

from marketplace_orders.application.interfaces import ChangePublisher, EmailSender
from marketplace_orders.application.process_outbox import ProcessOutboxEventsUseCase
from marketplace_orders.config import settings
from marketplace_orders.database import build_engine, build_session_factory
from marketplace_orders.infrastructure.http_clients import EmailJSClient
from marketplace_orders.infrastructure.kafka_producer import KafkaChangePublisher
from marketplace_orders.infrastructure.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


def build_email_client() -> EmailJSClient:
    return EmailJSClient(settings.EMAIL_API_URL, settings.EMAIL_SERVICE_ID, settings.EMAIL_PUBLIC_KEY)


async def outbox_worker(
    session_factory,
    publisher: ChangePublisher,
    email_sender: EmailSender,
    batch_size: int = settings.OUTBOX_BATCH_SIZE,
    poll_seconds: float = settings.OUTBOX_POLL_SECONDS
):
    """Polls the outbox forever"""
    logger.info("Outbox worker started")

    use_case = ProcessOutboxEventsUseCase(
        unit_of_work=UnitOfWork(session_factory),
        change_publisher=publisher,
        email_sender=email_sender,
        email_templates=settings.email_templates,
        app_name=settings.APP_NAME
    )
    while True:
        try:
            processed = await use_case(limit=batch_size)
            # Keep draining while full batches come back
            if processed < batch_size:
                await asyncio.sleep(poll_seconds)

        except asyncio.CancelledError:
            logger.info("Outbox worker stopped")
            raise
        except Exception as e:
            logger.error(f"Error in outbox worker: {e}", exc_info=True)
            await asyncio.sleep(poll_seconds * 5)


async def main():
    engine = build_engine(settings.DATABASE_URL)
    publisher = KafkaChangePublisher(settings.KAFKA_BOOTSTRAP_SERVERS, settings.ORDER_CHANGES_TOPIC)
    await publisher.start()
    try:
        await outbox_worker(build_session_factory(engine), publisher, build_email_client())
    finally:
        await publisher.stop()
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(main())

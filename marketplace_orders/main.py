import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError

from marketplace_orders.config import settings
from marketplace_orders.database import build_engine, build_session_factory, create_tables
from marketplace_orders.infrastructure.change_feeds import InMemoryChangeFeed, KafkaChangeFeed
from marketplace_orders.infrastructure.kv_store import SQLAlchemyKeyValueStore
from marketplace_orders.application.results import OperationResult
from marketplace_orders.presentation.api import router, envelope
from marketplace_orders.presentation.outbox_worker import outbox_worker, build_email_client

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def create_app(
    database_url: Optional[str] = None,
    realtime_backend: Optional[str] = None,
    run_outbox: bool = True,
    outbox_poll_seconds: Optional[float] = None
) -> FastAPI:
    backend = realtime_backend or settings.REALTIME_BACKEND

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifecycle"""
        engine = build_engine(database_url or settings.DATABASE_URL)
        session_factory = build_session_factory(engine)
        await create_tables(engine)
        logger.info("Tables ready")

        app.state.session_factory = session_factory
        app.state.dedup_store = SQLAlchemyKeyValueStore(session_factory)

        outbox_task = None
        kafka_feed = None
        if backend == "kafka":
            # Changes are published by the standalone outbox worker
            kafka_feed = KafkaChangeFeed(settings.KAFKA_BOOTSTRAP_SERVERS, settings.ORDER_CHANGES_TOPIC)
            await kafka_feed.start()
            app.state.change_feed = kafka_feed
        else:
            feed = InMemoryChangeFeed()
            app.state.change_feed = feed
            if run_outbox:
                outbox_task = asyncio.create_task(outbox_worker(
                    session_factory,
                    feed,
                    build_email_client(),
                    poll_seconds=outbox_poll_seconds or settings.OUTBOX_POLL_SECONDS
                ))
        logger.info(f"Realtime backend: {backend}")

        yield

        logger.info("Application shutting down...")
        if outbox_task:
            outbox_task.cancel()
            with suppress(asyncio.CancelledError):
                await outbox_task
        if kafka_feed:
            await kafka_feed.stop()
        await engine.dispose()

    app = FastAPI(
        title="Marketplace Order Service",
        description="Marketplace orders, status workflow and notifications",
        version="1.0.0",
        lifespan=lifespan
    )
    app.include_router(router, prefix="/api")

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        """Malformed requests get the same envelope as domain validation errors"""
        message = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'][1:])}: {error['msg']}" for error in exc.errors()
        )
        logger.warning(f"Rejected request to {request.url.path}: {message}")
        return envelope(OperationResult.fail(message), status.HTTP_400_BAD_REQUEST)

    @app.get("/")
    async def root():
        return {"message": "Marketplace Order Service is running"}

    @app.get("/health")
    async def health():
        return {"status": "healthy", "realtime": backend}

    return app


app = create_app()

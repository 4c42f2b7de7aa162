import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    # Database
    POSTGRES_CONNECTION_STRING: str = os.getenv("POSTGRES_CONNECTION_STRING", "")

    # Kafka
    KAFKA_BOOTSTRAP_SERVERS: str = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092")
    ORDER_CHANGES_TOPIC: str = os.getenv("ORDER_CHANGES_TOPIC", "marketplace.order-changes")

    # Realtime: "memory" (single process) or "kafka"
    REALTIME_BACKEND: str = os.getenv("REALTIME_BACKEND", "memory")

    # Email (EmailJS REST API)
    EMAIL_API_URL: str = os.getenv("EMAIL_API_URL", "https://api.emailjs.com/api/v1.0/email/send")
    EMAIL_SERVICE_ID: str = os.getenv("EMAIL_SERVICE_ID", "")
    EMAIL_PUBLIC_KEY: str = os.getenv("EMAIL_PUBLIC_KEY", "")
    EMAIL_ORDER_CONFIRMATION_TEMPLATE: str = os.getenv(
        "EMAIL_ORDER_CONFIRMATION_TEMPLATE", "template_order_confirmation"
    )
    EMAIL_NOTIFICATION_TEMPLATE: str = os.getenv("EMAIL_NOTIFICATION_TEMPLATE", "template_notification")
    APP_NAME: str = os.getenv("APP_NAME", "Chifere Cebu")

    # Orders
    ORDER_NUMBER_PREFIX: str = os.getenv("ORDER_NUMBER_PREFIX", "CHF")
    DEFAULT_PAGE_SIZE: int = int(os.getenv("DEFAULT_PAGE_SIZE", "20"))
    MAX_PAGE_SIZE: int = int(os.getenv("MAX_PAGE_SIZE", "100"))

    # Notifications
    NOTIFICATION_DEDUP_SECONDS: int = int(os.getenv("NOTIFICATION_DEDUP_SECONDS", "300"))

    # Outbox worker
    OUTBOX_BATCH_SIZE: int = int(os.getenv("OUTBOX_BATCH_SIZE", "20"))
    OUTBOX_POLL_SECONDS: float = float(os.getenv("OUTBOX_POLL_SECONDS", "2"))

    @property
    def DATABASE_URL(self) -> str:
        """Async URL used by the application"""
        return self.POSTGRES_CONNECTION_STRING.replace("postgres://", "postgresql+asyncpg://")

    @property
    def SYNC_DATABASE_URL(self) -> str:
        """Sync URL used by Alembic"""
        return self.POSTGRES_CONNECTION_STRING.replace("postgres://", "postgresql://")

    @property
    def email_templates(self) -> dict:
        return {
            "order_confirmation": self.EMAIL_ORDER_CONFIRMATION_TEMPLATE,
            "notification": self.EMAIL_NOTIFICATION_TEMPLATE,
        }


settings = Settings()

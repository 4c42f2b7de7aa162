from sqlalchemy import (
    Table, Column, String, Integer, Numeric, Enum, DateTime, JSON, Text, MetaData, ForeignKey, Index
)
from sqlalchemy.sql import func

from marketplace_orders.domain.models import OrderStatus, PaymentStatus, PaymentMethod, NotificationType

metadata = MetaData()


def _enum(enum_cls, name: str) -> Enum:
    # Store the lowercase values the API exposes, not member names
    return Enum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])


MONEY = Numeric(12, 2)


orders_tbl = Table(
    "orders",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_number", String, nullable=False, unique=True, index=True),
    Column("buyer_id", String, nullable=False, index=True),
    Column("seller_id", String, nullable=False, index=True),
    Column("subtotal", MONEY, nullable=False),
    Column("shipping_fee", MONEY, nullable=False, default=0),
    Column("tax_amount", MONEY, nullable=False, default=0),
    Column("total_amount", MONEY, nullable=False),
    Column("status", _enum(OrderStatus, "order_status"), nullable=False, default=OrderStatus.REVIEW),
    Column("payment_status", _enum(PaymentStatus, "payment_status"), nullable=False, default=PaymentStatus.PENDING),
    Column("payment_method", _enum(PaymentMethod, "payment_method"), nullable=False),
    Column("payment_reference", String, nullable=True),
    Column("shipping_address", JSON, nullable=False),
    Column("shipping_contact", JSON, nullable=False),
    Column("buyer_notes", Text, nullable=False, default=""),
    Column("seller_notes", Text, nullable=False, default=""),
    Column("tracking_number", String, nullable=True),
    Column("courier_service", String, nullable=True),
    Column("estimated_delivery", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now(), index=True),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now()),
    Column("status_updated_at", DateTime(timezone=True), nullable=True),
)


order_items_tbl = Table(
    "order_items",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("product_id", String, nullable=False),
    Column("product_type", String, nullable=False, default="product"),
    Column("product_name", String, nullable=False, default=""),
    Column("product_image", String, nullable=True),
    Column("product_specs", JSON, nullable=False, default=dict),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", MONEY, nullable=False),
    Column("total_price", MONEY, nullable=False),
)


order_status_history_tbl = Table(
    "order_status_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("status", _enum(OrderStatus, "order_status"), nullable=False),
    Column("changed_by", String, nullable=False),
    Column("notes", Text, nullable=True),
    Column("changed_at", DateTime(timezone=True), server_default=func.now()),
)


user_profiles_tbl = Table(
    "user_profiles",
    metadata,
    Column("id", String, primary_key=True),
    Column("display_name", String, nullable=True),
    Column("business_name", String, nullable=True),
    Column("profile_image", String, nullable=True),
    Column("email", String, nullable=True),
)


notifications_tbl = Table(
    "notifications",
    metadata,
    Column("id", String, primary_key=True),
    Column("recipient_id", String, nullable=False),
    Column("order_id", String, nullable=True),
    Column("type", _enum(NotificationType, "notification_type"), nullable=False),
    Column("title", String, nullable=False),
    Column("message", Text, nullable=False),
    Column("data", JSON, nullable=False, default=dict),
    Column("read_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Index("ix_notifications_recipient_created", "recipient_id", "created_at"),
)


outbox_events_tbl = Table(
    "outbox_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("event_type", String, nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("order_id", String, nullable=True),
    Column("status", String, default="pending"),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)


kv_entries_tbl = Table(
    "kv_entries",
    metadata,
    Column("key", String, primary_key=True),
    Column("value", Text, nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=True),
)


order_number_counters_tbl = Table(
    "order_number_counters",
    metadata,
    Column("day", String, primary_key=True),
    Column("last_value", Integer, nullable=False, default=0),
)

"""
Shared fixtures: a throwaway SQLite database per test and order helpers.
"""
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import insert, select

from marketplace_orders.database import build_engine, build_session_factory, create_tables
from marketplace_orders.application.create_order import CreateOrderUseCase, CreateOrderDTO, CreateOrderItemDTO
from marketplace_orders.application.notifications import NotificationEmitter
from marketplace_orders.domain.models import PaymentMethod, ShippingAddress, ShippingContact
from marketplace_orders.infrastructure.db_schema import user_profiles_tbl, outbox_events_tbl
from marketplace_orders.infrastructure.procedures import SQLAlchemyOrderProcedures
from marketplace_orders.infrastructure.unit_of_work import UnitOfWork

BUYER_ID = "buyer-1"
SELLER_ID = "seller-1"


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await create_tables(engine)
    factory = build_session_factory(engine)
    async with factory() as session:
        await session.execute(insert(user_profiles_tbl), [
            {"id": BUYER_ID, "display_name": "Juan Dela Cruz", "business_name": None,
             "profile_image": None, "email": "juan@example.com"},
            {"id": SELLER_ID, "display_name": "Maria", "business_name": "Maria's Crafts",
             "profile_image": None, "email": "maria@example.com"},
        ])
        await session.commit()
    yield factory
    await engine.dispose()


@pytest.fixture
def uow(session_factory):
    return UnitOfWork(session_factory)


@pytest.fixture
def procedures(session_factory):
    return SQLAlchemyOrderProcedures(session_factory)


@pytest.fixture
def create_order(uow, procedures):
    return CreateOrderUseCase(uow, procedures, NotificationEmitter(uow))


def make_order_dto(**overrides) -> CreateOrderDTO:
    data = dict(
        buyer_id=BUYER_ID,
        seller_id=SELLER_ID,
        items=[
            CreateOrderItemDTO(product_id="p-1", product_name="Woven bag", quantity=1, unit_price=Decimal("100")),
            CreateOrderItemDTO(product_id="p-2", product_name="Coin purse", quantity=1, unit_price=Decimal("50")),
        ],
        shipping_address=ShippingAddress(
            street="12 Osmena Blvd", barangay="Kamputhaw", city="Cebu City",
            province="Cebu", postal_code="6000"
        ),
        shipping_contact=ShippingContact(name="Juan Dela Cruz", phone="09171234567", email="juan@example.com"),
        payment_method=PaymentMethod.COD,
        shipping_fee=Decimal("50"),
        tax_amount=Decimal("18"),
    )
    data.update(overrides)
    return CreateOrderDTO(**data)


async def outbox_rows(session_factory, event_type=None):
    async with session_factory() as session:
        stmt = select(outbox_events_tbl).order_by(outbox_events_tbl.c.created_at)
        if event_type:
            stmt = stmt.where(outbox_events_tbl.c.event_type == event_type)
        result = await session.execute(stmt)
        return result.fetchall()

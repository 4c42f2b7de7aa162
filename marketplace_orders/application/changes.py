from typing import Optional
from pydantic import BaseModel

from marketplace_orders.domain.events import ChangeEvent

ORDER_CHANGED = "order.changed"

ORDERS_TABLE = "orders"
STATUS_HISTORY_TABLE = "order_status_history"


def row_snapshot(model: Optional[BaseModel]) -> dict:
    return model.model_dump(mode="json") if model is not None else {}


async def record_change(uow, event: str, table: str, order_id: str,
                        old: Optional[BaseModel] = None, new: Optional[BaseModel] = None) -> ChangeEvent:
    """Queue a row change for realtime delivery in the caller's transaction"""
    change = ChangeEvent(event=event, table=table, old=row_snapshot(old), new=row_snapshot(new))
    await uow.outbox.create(
        event_type=ORDER_CHANGED,
        event_data=change.to_payload(),
        order_id=order_id
    )
    return change

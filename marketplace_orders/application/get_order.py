from typing import Optional

from marketplace_orders.domain.models import OrderDetails
from marketplace_orders.domain.exceptions import OrderNotFoundError, AccessDeniedError
from marketplace_orders.application.order_details import load_details


class GetOrderUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: str, user_id: Optional[str] = None) -> OrderDetails:
        """Fetches one order with details. With user_id, only the buyer or seller may read it."""
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            if not order:
                raise OrderNotFoundError(f"Order {order_id} not found")
            if user_id is not None and not order.involves(user_id):
                raise AccessDeniedError("Access denied")
            return (await load_details(uow, [order]))[0]

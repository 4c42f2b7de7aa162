from collections import defaultdict
from typing import List

from marketplace_orders.domain.models import Order, OrderDetails


async def load_details(uow, orders: List[Order]) -> List[OrderDetails]:
    """Joins items, status history and both parties' profiles onto each order"""
    if not orders:
        return []
    order_ids = [order.id for order in orders]

    items = defaultdict(list)
    for item in await uow.items.list_for_orders(order_ids):
        items[item.order_id].append(item)

    history = defaultdict(list)
    for entry in await uow.history.list_for_orders(order_ids):
        history[entry.order_id].append(entry)

    user_ids = {order.buyer_id for order in orders} | {order.seller_id for order in orders}
    profiles = await uow.profiles.get_many(user_ids)

    return [
        OrderDetails(
            **order.model_dump(),
            items=items[order.id],
            status_history=history[order.id],
            buyer_profile=profiles.get(order.buyer_id),
            seller_profile=profiles.get(order.seller_id)
        )
        for order in orders
    ]

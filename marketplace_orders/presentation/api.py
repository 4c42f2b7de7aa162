import logging
from datetime import datetime
from typing import Awaitable, Optional

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse

from marketplace_orders.presentation.schemas import (
    CreateOrderRequest, UpdateStatusRequest, UpdatePaymentRequest, UpdateTrackingRequest, ErrorResponse
)
from marketplace_orders.application.create_order import CreateOrderUseCase, CreateOrderDTO
from marketplace_orders.application.get_order import GetOrderUseCase
from marketplace_orders.application.list_orders import ListUserOrdersUseCase, GetSellerStatisticsUseCase
from marketplace_orders.application.notification_inbox import (
    ListNotificationsUseCase, CountUnreadNotificationsUseCase,
    MarkNotificationReadUseCase, MarkAllNotificationsReadUseCase, DeleteNotificationUseCase
)
from marketplace_orders.application.notifications import NotificationEmitter
from marketplace_orders.application.process_payment import UpdatePaymentStatusUseCase, UpdatePaymentStatusDTO
from marketplace_orders.application.realtime import OrderRealtimeListener
from marketplace_orders.application.results import OperationResult
from marketplace_orders.application.update_status import UpdateOrderStatusUseCase, UpdateOrderStatusDTO
from marketplace_orders.application.update_tracking import UpdateOrderTrackingUseCase, UpdateOrderTrackingDTO
from marketplace_orders.domain.exceptions import (
    DomainException, ValidationError, AccessDeniedError, OrderNotFoundError,
    NotificationNotFoundError, InvalidStatusTransitionError
)
from marketplace_orders.domain.models import (
    OrderFilters, OrderStatus, PaymentStatus, PaymentMethod, UserRole, NotificationType
)
from marketplace_orders.infrastructure.procedures import SQLAlchemyOrderProcedures
from marketplace_orders.infrastructure.unit_of_work import UnitOfWork
from marketplace_orders.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

# Checked in order, most specific first
ERROR_STATUS = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (AccessDeniedError, status.HTTP_403_FORBIDDEN),
    (OrderNotFoundError, status.HTTP_404_NOT_FOUND),
    (NotificationNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStatusTransitionError, status.HTTP_409_CONFLICT),
    (DomainException, status.HTTP_502_BAD_GATEWAY),
]

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


def envelope(result: OperationResult, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


async def respond(operation: Awaitable, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    """Runs a use case and wraps whatever happens into an OperationResult"""
    try:
        data = await operation
    except DomainException as e:
        status_code = next(code for error_type, code in ERROR_STATUS if isinstance(e, error_type))
        logger.warning(f"{type(e).__name__}: {e}")
        return envelope(OperationResult.fail(str(e)), status_code)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return envelope(OperationResult.fail("Internal server error"), status.HTTP_500_INTERNAL_SERVER_ERROR)

    return envelope(OperationResult.ok(data), success_status)


# Use case factories
def get_session_factory(request: Request):
    return request.app.state.session_factory


def get_create_order_use_case(session_factory=Depends(get_session_factory)):
    uow = UnitOfWork(session_factory)
    procedures = SQLAlchemyOrderProcedures(session_factory, settings.ORDER_NUMBER_PREFIX)
    return CreateOrderUseCase(uow, procedures, NotificationEmitter(uow))


def get_update_status_use_case(request: Request, session_factory=Depends(get_session_factory)):
    uow = UnitOfWork(session_factory)
    procedures = SQLAlchemyOrderProcedures(session_factory, settings.ORDER_NUMBER_PREFIX)
    return UpdateOrderStatusUseCase(
        uow, procedures, NotificationEmitter(uow),
        request.app.state.dedup_store, settings.NOTIFICATION_DEDUP_SECONDS
    )


def get_get_order_use_case(session_factory=Depends(get_session_factory)):
    return GetOrderUseCase(UnitOfWork(session_factory))


def get_list_orders_use_case(session_factory=Depends(get_session_factory)):
    return ListUserOrdersUseCase(UnitOfWork(session_factory), settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)


def get_seller_statistics_use_case(session_factory=Depends(get_session_factory)):
    return GetSellerStatisticsUseCase(UnitOfWork(session_factory))


def get_update_payment_use_case(session_factory=Depends(get_session_factory)):
    uow = UnitOfWork(session_factory)
    return UpdatePaymentStatusUseCase(uow, NotificationEmitter(uow))


@router.post("/orders", responses=ERROR_RESPONSES, status_code=status.HTTP_201_CREATED)
async def create_order(
    request: CreateOrderRequest,
    use_case: CreateOrderUseCase = Depends(get_create_order_use_case)
):
    """Create an order with its items"""
    dto = CreateOrderDTO.model_validate(request.model_dump())
    return await respond(use_case(dto), status.HTTP_201_CREATED)


@router.get("/orders", responses=ERROR_RESPONSES)
async def list_orders(
    user_id: str,
    role: UserRole,
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    payment_status: Optional[PaymentStatus] = None,
    payment_method: Optional[PaymentMethod] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    order_number: Optional[str] = None,
    offset: int = 0,
    limit: int = settings.DEFAULT_PAGE_SIZE,
    use_case: ListUserOrdersUseCase = Depends(get_list_orders_use_case)
):
    """Orders where the user is buyer or seller, newest first"""
    filters = OrderFilters(
        status=order_status,
        payment_status=payment_status,
        payment_method=payment_method,
        date_from=date_from,
        date_to=date_to,
        order_number=order_number,
        offset=offset,
        limit=limit
    )
    return await respond(use_case(user_id, role, filters))


@router.get("/orders/{order_id}", responses=ERROR_RESPONSES)
async def get_order(
    order_id: str,
    user_id: Optional[str] = None,
    use_case: GetOrderUseCase = Depends(get_get_order_use_case)
):
    return await respond(use_case(order_id, user_id))


@router.post("/orders/{order_id}/status", responses=ERROR_RESPONSES)
async def update_order_status(
    order_id: str,
    request: UpdateStatusRequest,
    use_case: UpdateOrderStatusUseCase = Depends(get_update_status_use_case)
):
    """Move an order to a new status on behalf of the buyer or seller"""
    dto = UpdateOrderStatusDTO(
        order_id=order_id,
        new_status=request.new_status,
        changed_by=request.changed_by,
        notes=request.notes
    )
    return await respond(use_case(dto))


@router.post("/orders/{order_id}/payment", responses=ERROR_RESPONSES)
async def update_payment_status(
    order_id: str,
    request: UpdatePaymentRequest,
    use_case: UpdatePaymentStatusUseCase = Depends(get_update_payment_use_case)
):
    dto = UpdatePaymentStatusDTO(
        order_id=order_id,
        payment_status=request.payment_status,
        payment_reference=request.payment_reference
    )
    return await respond(use_case(dto))


@router.post("/orders/{order_id}/tracking", responses=ERROR_RESPONSES)
async def update_order_tracking(
    order_id: str,
    request: UpdateTrackingRequest,
    session_factory=Depends(get_session_factory)
):
    use_case = UpdateOrderTrackingUseCase(UnitOfWork(session_factory))
    dto = UpdateOrderTrackingDTO(order_id=order_id, **request.model_dump())
    return await respond(use_case(dto))


@router.get("/sellers/{seller_id}/statistics")
async def seller_statistics(
    seller_id: str,
    use_case: GetSellerStatisticsUseCase = Depends(get_seller_statistics_use_case)
):
    return await respond(use_case(seller_id))


@router.get("/notifications", responses=ERROR_RESPONSES)
async def list_notifications(
    user_id: str,
    unread_only: bool = False,
    notification_type: Optional[NotificationType] = Query(None, alias="type"),
    offset: int = 0,
    limit: int = settings.DEFAULT_PAGE_SIZE,
    session_factory=Depends(get_session_factory)
):
    use_case = ListNotificationsUseCase(UnitOfWork(session_factory))
    return await respond(use_case(user_id, unread_only, notification_type, offset, min(limit, settings.MAX_PAGE_SIZE)))


@router.get("/notifications/unread-count")
async def unread_count(user_id: str, session_factory=Depends(get_session_factory)):
    use_case = CountUnreadNotificationsUseCase(UnitOfWork(session_factory))
    return await respond(use_case(user_id))


@router.post("/notifications/read-all")
async def mark_all_read(user_id: str, session_factory=Depends(get_session_factory)):
    use_case = MarkAllNotificationsReadUseCase(UnitOfWork(session_factory))
    return await respond(use_case(user_id))


@router.post("/notifications/{notification_id}/read", responses=ERROR_RESPONSES)
async def mark_read(notification_id: str, user_id: str, session_factory=Depends(get_session_factory)):
    use_case = MarkNotificationReadUseCase(UnitOfWork(session_factory))
    return await respond(use_case(notification_id, user_id))


@router.delete("/notifications/{notification_id}", responses=ERROR_RESPONSES)
async def delete_notification(notification_id: str, user_id: str, session_factory=Depends(get_session_factory)):
    use_case = DeleteNotificationUseCase(UnitOfWork(session_factory))
    return await respond(use_case(notification_id, user_id))


@router.websocket("/orders/{order_id}/track")
async def track_order(websocket: WebSocket, order_id: str, user_id: Optional[str] = None):
    """Streams order snapshots and status toasts until the client disconnects"""
    await websocket.accept()

    get_order_use_case = GetOrderUseCase(UnitOfWork(websocket.app.state.session_factory))
    try:
        order = await get_order_use_case(order_id, user_id)
    except DomainException as e:
        await websocket.send_json({"type": "error", "message": str(e)})
        await websocket.close(code=1008)
        return

    async def send_toast(message: str):
        await websocket.send_json({"type": "toast", "message": message})

    async def send_order(details):
        await websocket.send_json({"type": "order", "data": details.model_dump(mode="json")})

    listener = OrderRealtimeListener(
        websocket.app.state.change_feed,
        refetch=lambda oid: get_order_use_case(oid, user_id),
        notify=send_toast,
        on_update=send_order
    )
    async with listener.listen(order):
        # Re-read after subscribing so changes committed in between are not lost
        if not await listener.reload():
            await send_order(order)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info(f"Tracking client for order {order_id} disconnected")

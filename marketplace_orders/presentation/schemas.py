from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel
from typing import Optional, List

from marketplace_orders.domain.models import (
    OrderStatus, PaymentStatus, PaymentMethod, ShippingAddress, ShippingContact
)


class OrderItemRequest(BaseModel):
    product_id: str
    quantity: int
    unit_price: Decimal
    product_type: str = "product"
    product_name: str = ""
    product_image: Optional[str] = None
    product_specs: dict = {}


class CreateOrderRequest(BaseModel):
    # Required fields are checked by the use case so that clients get one error shape
    buyer_id: Optional[str] = None
    seller_id: Optional[str] = None
    items: Optional[List[OrderItemRequest]] = None
    shipping_address: Optional[ShippingAddress] = None
    shipping_contact: Optional[ShippingContact] = None
    payment_method: Optional[PaymentMethod] = None
    shipping_fee: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    buyer_notes: str = ""
    seller_notes: str = ""


class UpdateStatusRequest(BaseModel):
    new_status: OrderStatus
    changed_by: str
    notes: Optional[str] = None


class UpdatePaymentRequest(BaseModel):
    payment_status: PaymentStatus
    payment_reference: Optional[str] = None


class UpdateTrackingRequest(BaseModel):
    updated_by: str
    tracking_number: Optional[str] = None
    courier_service: Optional[str] = None
    estimated_delivery: Optional[datetime] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    REVIEW = "review"
    PROCESSING = "processing"
    DELIVER = "deliver"
    RECEIVED = "received"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    COD = "cod"
    CARD = "card"
    GCASH = "gcash"
    MAYA = "maya"
    GRABPAY = "grabpay"
    ONLINE_BANKING = "online_banking"
    QR_PH = "qr_ph"


class UserRole(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"


class NotificationType(str, Enum):
    NEW_ORDER_RECEIVED = "new_order_received"
    ORDER_STATUS_UPDATE = "order_status_update"
    ORDER_CANCELLED = "order_cancelled"
    PAYMENT_UPDATE = "payment_update"
    PAYMENT_RECEIVED = "payment_received"
    NEW_FOLLOWER = "new_follower"
    NEW_REVIEW = "new_review"
    ITEM_SOLD = "item_sold"


TERMINAL_STATUSES = frozenset({OrderStatus.RECEIVED, OrderStatus.COMPLETED, OrderStatus.CANCELLED})

# Forward moves only; cancellation is allowed from every non-terminal state.
ALLOWED_TRANSITIONS = {
    OrderStatus.REVIEW: {OrderStatus.PROCESSING},
    OrderStatus.PROCESSING: {OrderStatus.DELIVER},
    OrderStatus.DELIVER: {OrderStatus.RECEIVED, OrderStatus.COMPLETED},
}

STATUS_MESSAGES = {
    OrderStatus.REVIEW: "Your order is under review",
    OrderStatus.PROCESSING: "Your order is being processed",
    OrderStatus.DELIVER: "Your order is out for delivery",
    OrderStatus.RECEIVED: "Your order has been delivered",
    OrderStatus.COMPLETED: "Your order has been completed",
    OrderStatus.CANCELLED: "Your order has been cancelled",
}


def status_message(status) -> str:
    try:
        return STATUS_MESSAGES[OrderStatus(status)]
    except ValueError:
        return "Status updated"


class ShippingAddress(BaseModel):
    """Value Object - delivery address"""
    street: str
    barangay: Optional[str] = None
    city: str
    province: Optional[str] = None
    postal_code: Optional[str] = None
    country: str = "Philippines"
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class ShippingContact(BaseModel):
    """Value Object - person receiving the parcel"""
    name: str
    phone: str
    email: Optional[str] = None


class Order(BaseModel):
    """Domain Entity - order header"""
    id: str
    order_number: str
    buyer_id: str
    seller_id: str
    subtotal: Decimal
    shipping_fee: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    total_amount: Decimal
    status: OrderStatus = OrderStatus.REVIEW
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: PaymentMethod
    payment_reference: Optional[str] = None
    shipping_address: ShippingAddress
    shipping_contact: ShippingContact
    buyer_notes: str = ""
    seller_notes: str = ""
    tracking_number: Optional[str] = None
    courier_service: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    status_updated_at: Optional[datetime] = None

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition_to(self, new_status: OrderStatus) -> bool:
        """Business rule: terminal orders never move; anything else may be cancelled"""
        if self.is_terminal():
            return False
        if new_status == OrderStatus.CANCELLED:
            return True
        return new_status in ALLOWED_TRANSITIONS.get(self.status, set())

    def counterpart_of(self, user_id: str) -> Optional[str]:
        if user_id == self.buyer_id:
            return self.seller_id
        if user_id == self.seller_id:
            return self.buyer_id
        return None

    def involves(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.seller_id)


class OrderItem(BaseModel):
    """Snapshot of a product at purchase time"""
    id: str
    order_id: str
    product_id: str
    product_type: str = "product"
    product_name: str = ""
    product_image: Optional[str] = None
    product_specs: dict = Field(default_factory=dict)
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class StatusHistoryEntry(BaseModel):
    id: Optional[int] = None
    order_id: str
    status: OrderStatus
    changed_by: str
    notes: Optional[str] = None
    changed_at: datetime


class UserProfile(BaseModel):
    id: str
    display_name: Optional[str] = None
    business_name: Optional[str] = None
    profile_image: Optional[str] = None
    email: Optional[str] = None


class OrderDetails(Order):
    """Order with joined items, history and both parties' profiles"""
    items: List[OrderItem] = Field(default_factory=list)
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    buyer_profile: Optional[UserProfile] = None
    seller_profile: Optional[UserProfile] = None


class Notification(BaseModel):
    id: str
    recipient_id: str
    order_id: Optional[str] = None
    type: NotificationType
    title: str
    message: str
    data: dict = Field(default_factory=dict)
    read_at: Optional[datetime] = None
    created_at: datetime

    @property
    def is_read(self) -> bool:
        return self.read_at is not None


class OrderFilters(BaseModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    payment_method: Optional[PaymentMethod] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    order_number: Optional[str] = None
    offset: int = 0
    limit: int = 20

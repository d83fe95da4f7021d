# marketplace/domain/schemas.py
from datetime import datetime
from decimal import Decimal
from typing import Any, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

T = TypeVar("T")

OrderStatus = Literal["pending", "confirmed", "preparing", "ready", "out_for_delivery", "delivered", "cancelled"]


# envelope
class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None


class Envelope(BaseModel, Generic[T]):
    """{success: true, data} or {success: false, error}"""

    success: bool = True
    data: Optional[T] = None
    error: Optional[ErrorBody] = None


# cart - requests
class AddItemIn(BaseModel):
    meal_id: int = Field(..., gt=0)
    chef_id: int = Field(..., gt=0)
    quantity: int = Field(..., ge=1, le=100)
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    special_instructions: Optional[str] = Field(None, max_length=500)


class UpdateQuantityIn(BaseModel):
    # 0 (or less) removes the line
    quantity: int = Field(..., le=100)


class DeliveryAddressIn(BaseModel):
    """Partial update; omitted fields keep their value."""

    street: Optional[str] = Field(None, min_length=1, max_length=100)
    city: Optional[str] = Field(None, min_length=1, max_length=50)
    state: Optional[str] = Field(None, min_length=1, max_length=50)
    zip_code: Optional[str] = Field(None, pattern=r"^\d{5}(-\d{4})?$")
    coordinates: Optional[List[float]] = Field(None, description="[longitude, latitude]")

    @field_validator("coordinates")
    @classmethod
    def check_coordinates(cls, value):
        if value is None:
            return value
        if len(value) != 2:
            raise ValueError("coordinates must be [longitude, latitude]")
        longitude, latitude = value
        if not -180 <= longitude <= 180 or not -90 <= latitude <= 90:
            raise ValueError("coordinates out of range")
        return value


class DeliveryTypeIn(BaseModel):
    delivery_type: Literal["delivery", "pickup"]


class NotesIn(BaseModel):
    notes: Optional[str] = Field(None, max_length=500)


class PromoCodeIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)


# cart - responses
class CartItemOut(BaseModel):
    meal_id: int
    chef_id: int
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    special_instructions: Optional[str] = None
    added_at: Optional[datetime] = None


class AddressOut(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    coordinates: Optional[List[float]] = None


class CartOut(BaseModel):
    cart_id: int
    customer_id: int
    items: List[CartItemOut]
    delivery_type: str
    delivery_address: AddressOut
    promo_code: Optional[str] = None
    discount: Decimal
    notes: Optional[str] = None
    subtotal: Decimal
    item_count: int
    expires_at: Optional[datetime] = None
    version: int

    model_config = ConfigDict(from_attributes=True)


class ChefFeeOut(BaseModel):
    chef_id: int
    business_name: Optional[str] = None
    fee: Decimal
    withheld: bool


class ChefGroupOut(BaseModel):
    chef_id: int
    items: List[CartItemOut]
    subtotal: Decimal


class CartSummaryOut(BaseModel):
    subtotal: Decimal
    discount: Decimal
    delivery_fee: Decimal
    delivery_fees: List[ChefFeeOut]
    tax: Decimal
    total: Decimal
    item_count: int
    chef_count: int
    groups: List[ChefGroupOut]


class AvailabilityOut(BaseModel):
    meal_id: int
    chef_id: int
    name: Optional[str] = None
    quantity: int
    remaining_quantity: int
    status: str


class CartValidationOut(BaseModel):
    valid: bool
    items: List[AvailabilityOut]
    unavailable_items: List[AvailabilityOut]


# orders
class CheckoutIn(BaseModel):
    payment_intent_id: Optional[str] = Field(None, max_length=255)
    customer_notes: Optional[str] = Field(None, max_length=500)


class UpdateStatusIn(BaseModel):
    status: OrderStatus
    notes: Optional[str] = Field(None, max_length=500)
    estimated_delivery_time: Optional[datetime] = None


class CancelIn(BaseModel):
    reason: Optional[str] = Field(None, max_length=200)


class OrderItemOut(BaseModel):
    meal_id: int
    chef_id: int
    quantity: int
    price: Decimal
    special_instructions: Optional[str] = None


class OrderOut(BaseModel):
    id: int
    checkout_id: str
    customer_id: int
    chef_id: int
    items: List[OrderItemOut]
    total_amount: Decimal
    delivery_fee: Decimal
    tax: Decimal
    discount: Decimal
    final_amount: Decimal
    delivery_type: str
    delivery_address: AddressOut
    status: str
    payment_status: str
    payment_intent_id: Optional[str] = None
    estimated_delivery_time: Optional[datetime] = None
    actual_delivery_time: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    customer_notes: Optional[str] = None
    chef_notes: Optional[str] = None
    refund_amount: Decimal
    refund_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OrderPageOut(BaseModel):
    orders: List[OrderOut]
    total: int
    limit: int
    skip: int


class CheckoutSummaryOut(BaseModel):
    total_orders: int
    total_amount: Decimal
    estimated_delivery_time: Optional[datetime] = None


class CheckoutOut(BaseModel):
    checkout_id: str
    replayed: bool = False
    orders: List[OrderOut]
    summary: CheckoutSummaryOut


class TimelineEntryOut(BaseModel):
    status: str
    at: Optional[datetime] = None


class TrackingOut(BaseModel):
    order_id: int
    status: str
    payment_status: str
    estimated_delivery_time: Optional[datetime] = None
    actual_delivery_time: Optional[datetime] = None
    minutes_remaining: Optional[int] = None
    timeline: List[TimelineEntryOut]


# payments
class CreateIntentIn(BaseModel):
    order_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    currency: str = Field("usd", min_length=3, max_length=3)


class ConfirmIn(BaseModel):
    payment_intent_id: str = Field(..., min_length=1, max_length=255)
    payment_method: Optional[str] = Field(None, max_length=255)


class RefundIn(BaseModel):
    order_id: int = Field(..., gt=0)
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    reason: Optional[str] = Field(None, max_length=200)


class RetryIn(BaseModel):
    order_id: int = Field(..., gt=0)


class IntentOut(BaseModel):
    payment_intent_id: str
    client_secret: Optional[str] = None
    status: str
    amount: Decimal
    currency: str
    order: OrderOut


class ConfirmOut(BaseModel):
    status: str
    orders: List[OrderOut]


class RefundOut(BaseModel):
    refund_id: str
    amount: Decimal
    status: str
    order: OrderOut


class RetryOut(BaseModel):
    status: str
    order: OrderOut


class WebhookAckOut(BaseModel):
    received: bool
    handled: bool
    orders_changed: int = 0

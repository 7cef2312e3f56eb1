# app/schemas/order.py
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel, Field

from app.models.order import (
    DeliveryType,
    OrderLogAction,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
)

AdminStatusTarget = Literal["confirmed", "processing", "cancelled"]


class OrderLineIn(SQLModel):
    """One requested line: product + quantity."""

    model_config = ConfigDict(extra="forbid")

    product_id: uuid.UUID
    quantity: int


class OrderCheckout(SQLModel):
    """
    Payload for placing an order from the current cart.

    User provides:
      - payment method, order / delivery type
      - optional address + contact overrides
      - optional note

    Backend derives:
      - user_id from token
      - status = 'pending', payment_status = 'pending'
      - unit prices from the pricing rules
      - shipping cost from delivery_type
      - missing addresses from the company profile
    """

    model_config = ConfigDict(extra="forbid")

    payment_method: PaymentMethod
    order_type: OrderType = OrderType.CARGO
    delivery_type: DeliveryType = DeliveryType.STANDARD

    shipping_address: str | None = None
    shipping_contact_name: str | None = None
    shipping_contact_phone: str | None = Field(default=None, max_length=20)
    billing_address: str | None = None
    billing_contact_name: str | None = None
    billing_contact_phone: str | None = Field(default=None, max_length=20)
    use_different_shipping: bool = False

    notes: str | None = None

    @field_validator(
        "shipping_address",
        "shipping_contact_name",
        "shipping_contact_phone",
        "billing_address",
        "billing_contact_name",
        "billing_contact_phone",
        "notes",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        return v or None


class OrderCreate(OrderCheckout):
    """Checkout payload with explicit lines instead of the cart."""

    items: list[OrderLineIn]


class OrderItemRead(SQLModel):
    """
    Representation of a single order line item.
    """

    id: uuid.UUID
    order_id: uuid.UUID
    product_id: uuid.UUID
    product_name: str | None
    quantity: int
    unit_price: Decimal
    vat_rate: Decimal
    discount_amount: Decimal
    subtotal: Decimal
    vat_amount: Decimal
    total_price: Decimal


class OrderRead(SQLModel):
    """
    Lightweight representation of an order (without items).
    """

    id: uuid.UUID
    order_number: str
    user_id: uuid.UUID
    order_type: OrderType
    delivery_type: DeliveryType
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    subtotal: Decimal
    vat_total: Decimal
    discount_total: Decimal
    shipping_cost: Decimal
    grand_total: Decimal
    shipping_address: str
    shipping_contact_name: str | None
    shipping_contact_phone: str | None
    billing_address: str
    billing_contact_name: str | None
    billing_contact_phone: str | None
    notes: str | None
    shipped_at: datetime | None
    delivered_at: datetime | None
    created_at: datetime


class OrderWithItemsRead(OrderRead):
    """
    Full order view including items.
    """

    items: list[OrderItemRead]


class OrderAdminRead(OrderWithItemsRead):
    internal_notes: str | None


class OrderLogRead(SQLModel):
    id: int
    order_id: uuid.UUID
    user_id: uuid.UUID | None
    action: OrderLogAction
    description: str
    old_value: dict[str, Any] | None
    new_value: dict[str, Any] | None
    created_at: datetime


class OrderStatusUpdate(SQLModel):
    """
    Admin payload to change order status.
    """

    model_config = ConfigDict(extra="forbid")

    status: AdminStatusTarget
    reason: str | None = None


class OrderCancel(SQLModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(default="Cancelled by customer", max_length=500)


class OrderNoteCreate(SQLModel):
    model_config = ConfigDict(extra="forbid")

    note: str = Field(min_length=1, max_length=1000)


class OrderItemQuantityUpdate(SQLModel):
    model_config = ConfigDict(extra="forbid")

    quantity: int = Field(gt=0)


class SweepResult(SQLModel):
    """Outcome of a background sweep run."""

    processed: int
    affected: list[str]

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field

from app.core.clock import utcnow


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    BANK_TRANSFER = "bank_transfer"
    BALANCE = "balance"


class OrderType(str, Enum):
    WAREHOUSE = "warehouse"
    DROPSHIPPING = "dropshipping"
    CARGO = "cargo"
    PICKUP = "pickup"


class DeliveryType(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    PICKUP = "pickup"


class OrderLogAction(str, Enum):
    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    PAYMENT_STATUS_CHANGED = "payment_status_changed"
    PAYMENT_RECEIVED = "payment_received"
    BANK_RECEIPT_UPLOADED = "bank_receipt_uploaded"
    SHIPPED = "shipped"
    SHIPMENT_STATUS_CHANGED = "shipment_status_changed"
    CANCELLED = "cancelled"
    NOTE_ADDED = "note_added"
    ITEM_UPDATED = "item_updated"


class Order(SQLModel, table=True):
    """
    One purchase by a buyer.

    Totals invariant (kept by OrderService.recalculate_totals):
        grand_total == subtotal + vat_total - discount_total + shipping_cost

    Address/contact fields are snapshots taken at creation time.
    """

    __tablename__ = "orders"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_number: str = Field(
        max_length=50,
        unique=True,
        index=True,
        description="<PREFIX><YYYYMMDD><4-digit daily sequence>",
    )

    user_id: uuid.UUID = Field(
        foreign_key="users.id",
        index=True,
    )

    order_type: OrderType = Field(default=OrderType.CARGO)
    delivery_type: DeliveryType = Field(default=DeliveryType.STANDARD)

    status: OrderStatus = Field(
        default=OrderStatus.PENDING,
        index=True,
        description="Order status lifecycle",
    )

    payment_method: PaymentMethod = Field(index=True)
    payment_status: PaymentStatus = Field(
        default=PaymentStatus.PENDING,
        index=True,
    )

    subtotal: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    vat_total: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    discount_total: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    shipping_cost: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    grand_total: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)

    shipping_address: str
    shipping_contact_name: str | None = None
    shipping_contact_phone: str | None = Field(default=None, max_length=20)
    billing_address: str
    billing_contact_name: str | None = None
    billing_contact_phone: str | None = Field(default=None, max_length=20)
    use_different_shipping: bool = False

    notes: str | None = None
    internal_notes: str | None = None

    shipped_at: datetime | None = None
    delivered_at: datetime | None = None

    created_at: datetime = Field(
        default_factory=utcnow,
        index=True,
        description="Creation timestamp (UTC)",
    )
    updated_at: datetime = Field(default_factory=utcnow)

    def can_be_cancelled(self) -> bool:
        return self.status in (OrderStatus.PENDING, OrderStatus.CONFIRMED)

    def can_be_shipped(self) -> bool:
        return (
            self.status == OrderStatus.PROCESSING
            and self.payment_status == PaymentStatus.PAID
        )

    def is_editable(self) -> bool:
        return self.status == OrderStatus.PENDING


class OrderItem(SQLModel, table=True):
    """
    Line item inside an order.

    unit_price and vat_rate are captured when the order is created and
    do not follow later catalog price changes.
    """

    __tablename__ = "order_items"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_id: uuid.UUID = Field(
        foreign_key="orders.id",
        index=True,
    )

    product_id: uuid.UUID = Field(
        foreign_key="products.id",
        index=True,
    )

    product_name: str | None = None

    quantity: int = Field(
        gt=0,
        description="Quantity ordered (>=1)",
    )

    unit_price: Decimal = Field(
        max_digits=12,
        decimal_places=2,
        description="Unit price at time of order (pre-VAT)",
    )
    vat_rate: Decimal = Field(max_digits=5, decimal_places=2)
    discount_amount: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    total_price: Decimal = Field(
        default=Decimal("0.00"),
        max_digits=12,
        decimal_places=2,
        description="subtotal + VAT",
    )


class OrderLog(SQLModel, table=True):
    """
    Audit trail entry for an order.

    Written explicitly by the services on every status / payment status
    change and on the other actions listed in OrderLogAction.
    """

    __tablename__ = "order_logs"

    id: int | None = Field(default=None, primary_key=True)

    order_id: uuid.UUID = Field(foreign_key="orders.id", index=True)
    user_id: uuid.UUID | None = Field(
        default=None,
        foreign_key="users.id",
        description="Actor; null for system actions",
    )

    action: OrderLogAction = Field(index=True)
    description: str

    old_value: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    new_value: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow)


class OrderNumberCounter(SQLModel, table=True):
    """Last order sequence issued for a calendar day."""

    __tablename__ = "order_number_counters"

    day: date = Field(primary_key=True)
    last_value: int = Field(default=0)

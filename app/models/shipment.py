import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlmodel import SQLModel, Field

from app.core.clock import utcnow


class ShipmentStatus(str, Enum):
    CREATED = "created"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    RETURNED = "returned"
    LOST = "lost"


TERMINAL_SHIPMENT_STATUSES = frozenset(
    {ShipmentStatus.DELIVERED, ShipmentStatus.RETURNED, ShipmentStatus.LOST}
)


class Shipment(SQLModel, table=True):
    """
    Carrier assignment for an order (at most one per order).

    last_update_at throttles the carrier polling sweep.
    """

    __tablename__ = "shipments"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_id: uuid.UUID = Field(foreign_key="orders.id", unique=True, index=True)

    carrier: str = Field(default="aras", max_length=50)
    tracking_number: str | None = Field(
        default=None,
        max_length=100,
        unique=True,
        index=True,
    )

    status: ShipmentStatus = Field(default=ShipmentStatus.CREATED, index=True)
    status_description: str | None = None

    weight: Decimal | None = Field(default=None, max_digits=10, decimal_places=3)
    desi: Decimal | None = Field(
        default=None,
        max_digits=10,
        decimal_places=3,
        description="Volumetric weight",
    )

    label_path: str | None = Field(default=None, description="Label PDF object path")

    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    delivery_signature: str | None = None
    last_update_at: datetime | None = Field(default=None, index=True)

    created_at: datetime = Field(default_factory=utcnow)

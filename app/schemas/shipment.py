# app/schemas/shipment.py
import uuid
from datetime import datetime
from decimal import Decimal

from sqlmodel import SQLModel

from app.models.shipment import ShipmentStatus


class ShipmentRead(SQLModel):
    """
    Shipment view returned to buyers (tracking) and admins.
    """

    id: uuid.UUID
    order_id: uuid.UUID
    carrier: str
    tracking_number: str | None
    status: ShipmentStatus
    status_description: str | None
    weight: Decimal | None
    desi: Decimal | None
    label_path: str | None
    shipped_at: datetime | None
    delivered_at: datetime | None
    delivery_signature: str | None
    last_update_at: datetime | None
    created_at: datetime


class CarrierWebhookAck(SQLModel):
    success: bool
    processed: bool

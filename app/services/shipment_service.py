# app/services/shipment_service.py
import base64
import json
import logging
import time
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.core.carrier_client import CarrierClient, map_carrier_status
from app.core.clock import utcnow
from app.core.config import Settings, get_settings
from app.core.errors import (
    CommerceError,
    ExternalServiceError,
    IllegalTransitionError,
    NotFoundError,
    SignatureError,
    ValidationFailedError,
)
from app.core.storage_utils import label_path, upload_to_storage
from app.database import transaction
from app.models.order import Order, OrderLogAction, OrderStatus
from app.models.shipment import TERMINAL_SHIPMENT_STATUSES, Shipment, ShipmentStatus
from app.models.user import User
from app.repositories.order_repo import OrderRepository
from app.repositories.product_repo import ProductRepository
from app.repositories.shipment_repo import ShipmentRepository
from app.services.order_service import OrderService

logger = logging.getLogger(__name__)

EVENT_STATUS_CHANGED = "shipment.status_changed"
EVENT_DELIVERED = "shipment.delivered"
EVENT_RETURNED = "shipment.returned"
WEBHOOK_EVENTS = {EVENT_STATUS_CHANGED, EVENT_DELIVERED, EVENT_RETURNED}

THREE_PLACES = Decimal("0.001")


class ShipmentTracker:
    """
    Carrier assignment and shipment status ingestion.

    Responsibilities:
      - Create the carrier shipment for a paid, processing order and
        move the order to shipped (with carrier-side compensation if the
        local transaction fails)
      - Map carrier status codes and apply them; a delivered, returned
        or lost shipment never changes again
      - Flip the order to delivered when the carrier says so
      - Accept carrier webhooks and poll active shipments
    """

    def __init__(
        self,
        shipment_repo: ShipmentRepository,
        order_repo: OrderRepository,
        product_repo: ProductRepository,
        order_service: OrderService,
        carrier: CarrierClient,
        upload: Callable[[str, bytes, str], str] = upload_to_storage,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.shipment_repo = shipment_repo
        self.order_repo = order_repo
        self.product_repo = product_repo
        self.order_service = order_service
        self.carrier = carrier
        self.upload = upload
        self.settings = settings or get_settings()
        self.sleep = sleep

    # -------- Creation --------

    def create_shipment(
        self,
        session: Session,
        order_id: uuid.UUID,
        actor_id: uuid.UUID | None = None,
    ) -> Shipment:
        """
        Steps:
          1. Check the order is processing + paid and has no shipment.
          2. Register the shipment with the carrier (no transaction open).
          3. In one transaction: Shipment row, label upload, order -> shipped.
          4. If step 3 fails, cancel the carrier shipment and re-raise.
        """
        # 1) Preconditions
        order = self.order_repo.get_by_id(session, order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        if not order.can_be_shipped():
            raise IllegalTransitionError("order", order.status.value, OrderStatus.SHIPPED.value)
        if self.shipment_repo.get_by_order(session, order_id) is not None:
            raise IllegalTransitionError("order", order.status.value, OrderStatus.SHIPPED.value)

        weight, desi, content = self._parcel(session, order)
        user = session.get(User, order.user_id)

        # 2) Carrier call
        created = self.carrier.create_shipment(
            order_number=order.order_number,
            receiver_name=order.shipping_contact_name or "",
            receiver_phone=order.shipping_contact_phone,
            receiver_address=order.shipping_address,
            email=user.email if user else None,
            weight=weight,
            desi=desi,
            invoice_amount=order.grand_total,
            content=content,
            express=order.delivery_type.value == "express",
        )

        # 3) Local transaction
        try:
            with transaction(session):
                order = self.order_repo.get_for_update(session, order_id)
                now = utcnow()
                shipment = self.shipment_repo.create(
                    session,
                    Shipment(
                        order_id=order.id,
                        carrier=self.carrier.name,
                        tracking_number=created.tracking_number,
                        status=ShipmentStatus.CREATED,
                        weight=weight,
                        desi=desi,
                        shipped_at=now,
                        last_update_at=now,
                    ),
                )
                if created.label_b64:
                    path = label_path(order.order_number)
                    self.upload(path, base64.b64decode(created.label_b64), "application/pdf")
                    shipment.label_path = path
                    self.shipment_repo.update(session, shipment)

                self.order_service.transition(
                    session,
                    order,
                    OrderStatus.SHIPPED,
                    actor_id,
                    f"Shipped with {self.carrier.name} ({created.tracking_number})",
                    action=OrderLogAction.SHIPPED,
                )
        except Exception:
            # 4) Compensation
            logger.exception(
                "Shipment for order %s failed locally; cancelling carrier shipment %s",
                order_id, created.tracking_number,
            )
            try:
                self.carrier.cancel(created.tracking_number, "Local shipment registration failed")
            except ExternalServiceError:
                logger.error(
                    "Carrier cancellation of %s failed; cancel it manually",
                    created.tracking_number,
                )
            raise

        logger.info(
            "Order %s shipped, tracking %s (actor=%s)",
            order.order_number, created.tracking_number, actor_id,
        )
        session.refresh(shipment)
        return shipment

    def _parcel(self, session: Session, order: Order) -> tuple[Decimal, Decimal, str]:
        """Weight (kg, min 1), desi (10x10x10 cm per item, min 1) and content text."""
        items = self.order_repo.list_items_for_order(session, order.id)
        products = self.product_repo.get_many(session, [it.product_id for it in items])

        weight = Decimal("0")
        piece_count = 0
        for it in items:
            piece_count += it.quantity
            product = products.get(it.product_id)
            if product is not None and product.weight:
                weight += product.weight * it.quantity

        weight = max(weight, Decimal("1")).quantize(THREE_PLACES)
        desi = max(Decimal(piece_count * 1000) / 3000, Decimal("1")).quantize(THREE_PLACES)

        names = [f"{it.product_name} ({it.quantity})" for it in items[:3]]
        if len(items) > 3:
            names.append("...")
        return weight, desi, ", ".join(names)

    # -------- Status ingestion --------

    def ingest_status_update(
        self,
        session: Session,
        tracking_number: str,
        carrier_status: str,
        description: str = "",
        receiver_name: str | None = None,
    ) -> Shipment | None:
        """
        Apply a carrier status to a shipment.

        Returns None (after logging) for unknown tracking numbers.
        """
        target = map_carrier_status(carrier_status)
        with transaction(session):
            shipment = self.shipment_repo.get_by_tracking_for_update(session, tracking_number)
            if shipment is None:
                logger.warning("Status update for unknown tracking number %s", tracking_number)
                return None
            self._apply_status(session, shipment, target, description, receiver_name)
        return shipment

    def _apply_status(
        self,
        session: Session,
        shipment: Shipment,
        target: ShipmentStatus,
        description: str,
        receiver_name: str | None,
    ) -> bool:
        now = utcnow()
        current = shipment.status
        shipment.last_update_at = now

        if current == target or current in TERMINAL_SHIPMENT_STATUSES:
            if current != target:
                logger.info(
                    "Ignoring %s for shipment %s already %s",
                    target.value, shipment.tracking_number, current.value,
                )
            self.shipment_repo.update(session, shipment)
            return False

        shipment.status = target
        shipment.status_description = description or None
        if target == ShipmentStatus.DELIVERED:
            shipment.delivered_at = now
            shipment.delivery_signature = receiver_name
        self.shipment_repo.update(session, shipment)

        order = self.order_repo.get_for_update(session, shipment.order_id)
        self.order_service.log_action(
            session,
            order,
            OrderLogAction.SHIPMENT_STATUS_CHANGED,
            f"Shipment status changed from {current.value} to {target.value}",
            None,
            old_value={"shipment_status": current.value},
            new_value={"shipment_status": target.value, "description": description},
        )

        if target == ShipmentStatus.DELIVERED and order.status == OrderStatus.SHIPPED:
            self.order_service.transition(
                session, order, OrderStatus.DELIVERED, None, "Delivered by carrier"
            )
        logger.info(
            "Shipment %s: %s -> %s", shipment.tracking_number, current.value, target.value
        )
        return True

    def handle_webhook(
        self,
        session: Session,
        raw_body: bytes,
        signature: str | None = None,
    ) -> Shipment | None:
        """
        Carrier webhook.

        Body: {"event_type": ..., "trackingNumber": ..., ...}
        Events: shipment.status_changed, shipment.delivered, shipment.returned
        """
        if not self.carrier.verify_signature(raw_body, signature):
            logger.warning("Carrier webhook signature mismatch")
            raise SignatureError("Invalid signature")

        try:
            data = json.loads(raw_body or b"{}")
        except ValueError:
            raise ValidationFailedError("Invalid JSON body")
        if not isinstance(data, dict):
            raise ValidationFailedError("Invalid JSON body")

        event = data.get("event_type")
        if event not in WEBHOOK_EVENTS:
            logger.warning("Carrier webhook with unknown event type %r", event)
            raise ValidationFailedError(f"Unknown event type: {event}")

        tracking_number = data.get("trackingNumber")
        if not tracking_number:
            raise ValidationFailedError("Tracking number not provided")

        receiver_name = None
        if event == EVENT_DELIVERED:
            code = "DELIVERED"
            description = data.get("statusDescription") or "Delivered"
            receiver_name = data.get("receiverName")
        elif event == EVENT_RETURNED:
            code = "RETURNED"
            description = data.get("returnReason") or "Returned"
        else:
            code = data.get("status", "")
            description = data.get("statusDescription", "")

        return self.ingest_status_update(
            session, str(tracking_number), code, description, receiver_name
        )

    # -------- Polling --------

    def refresh_active(self, session: Session, now: datetime | None = None) -> list[str]:
        """
        Poll the carrier for non-terminal shipments not updated within
        SHIPMENT_REFRESH_AFTER_HOURS. One failure does not stop the run.

        Returns the tracking numbers that were refreshed.
        """
        now = now or utcnow()
        cutoff = now - timedelta(hours=self.settings.SHIPMENT_REFRESH_AFTER_HOURS)
        due = [
            s.tracking_number
            for s in self.shipment_repo.list_due_for_refresh(session, self.carrier.name, cutoff)
        ]
        session.commit()

        refreshed: list[str] = []
        for index, tracking_number in enumerate(due):
            if index:
                self.sleep(self.settings.CARRIER_POLL_DELAY_SECONDS)
            try:
                info = self.carrier.track(tracking_number)
                shipment = self.ingest_status_update(
                    session,
                    tracking_number,
                    info.status_code,
                    info.description,
                    info.receiver_name,
                )
                if shipment is not None:
                    refreshed.append(tracking_number)
            except (CommerceError, SQLAlchemyError):
                logger.exception("Shipment refresh failed for %s", tracking_number)

        if due:
            logger.info("Shipment refresh: %d due, %d refreshed", len(due), len(refreshed))
        return refreshed

    # -------- Reads --------

    def get_for_order(
        self,
        session: Session,
        order_id: uuid.UUID,
        owner_id: uuid.UUID | None = None,
    ) -> Shipment:
        order = self.order_repo.get_by_id(session, order_id)
        if order is None or (owner_id is not None and order.user_id != owner_id):
            raise NotFoundError("Order", order_id)
        shipment = self.shipment_repo.get_by_order(session, order_id)
        if shipment is None:
            raise NotFoundError("Shipment", order_id)
        return shipment

import uuid
from datetime import datetime

from sqlalchemy import or_
from sqlmodel import Session, select

from app.models.shipment import TERMINAL_SHIPMENT_STATUSES, Shipment


class ShipmentRepository:
    """Data access for shipments. No commits here."""

    def get_by_order(self, session: Session, order_id: uuid.UUID) -> Shipment | None:
        stmt = select(Shipment).where(Shipment.order_id == order_id)
        return session.exec(stmt).first()

    def get_by_tracking_for_update(
        self,
        session: Session,
        tracking_number: str,
    ) -> Shipment | None:
        stmt = (
            select(Shipment)
            .where(Shipment.tracking_number == tracking_number)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(stmt).first()

    def list_due_for_refresh(
        self,
        session: Session,
        carrier: str,
        updated_before: datetime,
    ) -> list[Shipment]:
        """Non-terminal shipments of `carrier` not refreshed since `updated_before`."""
        stmt = (
            select(Shipment)
            .where(
                Shipment.status.not_in(list(TERMINAL_SHIPMENT_STATUSES)),
                Shipment.carrier == carrier,
                Shipment.tracking_number.is_not(None),
                or_(
                    Shipment.last_update_at.is_(None),
                    Shipment.last_update_at < updated_before,
                ),
            )
            .order_by(Shipment.created_at)
        )
        return list(session.exec(stmt).all())

    def create(self, session: Session, shipment: Shipment) -> Shipment:
        session.add(shipment)
        session.flush()
        return shipment

    def update(self, session: Session, shipment: Shipment) -> Shipment:
        session.add(shipment)
        session.flush()
        return shipment

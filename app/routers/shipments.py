# app/routers/shipments.py
import uuid

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from app.core.auth import require_admin
from app.database import get_session
from app.models.user import User
from app.schemas.shipment import ShipmentRead
from app.services.registry import shipment_tracker as service

router = APIRouter(prefix="/shipments", tags=["Shipments"])


@router.post(
    "/orders/{order_id}",
    response_model=ShipmentRead,
    status_code=status.HTTP_201_CREATED,
)
def create_shipment(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    """
    Register the order with the carrier and mark it shipped (admin only).

    The order must be processing and paid.
    """
    return service.create_shipment(session, order_id, admin.id)


@router.get(
    "/orders/{order_id}",
    response_model=ShipmentRead,
    dependencies=[Depends(require_admin)],
)
def get_shipment(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    return service.get_for_order(session, order_id)

# app/routers/admin_sweeps.py
from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.core.auth import require_admin
from app.database import get_session
from app.schemas.order import SweepResult
from app.services.registry import order_service, shipment_tracker

router = APIRouter(
    prefix="/admin/sweeps",
    tags=["Admin - Sweeps"],
    dependencies=[Depends(require_admin)],
)


@router.post("/payment-timeout", response_model=SweepResult)
def run_payment_timeout_sweep(session: Session = Depends(get_session)):
    """
    Cancel pending orders whose payment did not arrive within
    PAYMENT_TIMEOUT_HOURS. Same job the background loop runs.
    """
    cancelled = order_service.cancel_expired(session)
    numbers = [order.order_number for order in cancelled]
    return SweepResult(processed=len(numbers), affected=numbers)


@router.post("/shipments", response_model=SweepResult)
def run_shipment_refresh(session: Session = Depends(get_session)):
    """
    Poll the carrier for active shipments that are due a refresh.
    """
    refreshed = shipment_tracker.refresh_active(session)
    return SweepResult(processed=len(refreshed), affected=refreshed)

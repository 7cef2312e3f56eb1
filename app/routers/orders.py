# app/routers/orders.py
import uuid

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from app.core.auth import require_admin, require_buyer
from app.database import get_session
from app.models.order import OrderStatus, PaymentStatus
from app.models.user import User
from app.schemas.cart import CartRepeatResult
from app.schemas.order import (
    OrderAdminRead,
    OrderCancel,
    OrderCheckout,
    OrderCreate,
    OrderItemQuantityUpdate,
    OrderLogRead,
    OrderNoteCreate,
    OrderRead,
    OrderStatusUpdate,
    OrderWithItemsRead,
)
from app.schemas.shipment import ShipmentRead
from app.services.registry import cart_service
from app.services.registry import order_service as service
from app.services.registry import shipment_tracker

router = APIRouter(prefix="/orders", tags=["Orders"])


# -------- Buyer endpoints --------


@router.post(
    "/checkout",
    response_model=OrderWithItemsRead,
    status_code=status.HTTP_201_CREATED,
)
def checkout(
    payload: OrderCheckout,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_buyer),
):
    """
    Create an order from the current buyer's cart.

    Auth:
      - Only approved buyers can checkout.
    """
    order = service.create_from_cart(session, current_user.id, payload, current_user.id)
    return service.build_detail(session, order)


@router.post(
    "",
    response_model=OrderWithItemsRead,
    status_code=status.HTTP_201_CREATED,
)
def create_order(
    payload: OrderCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_buyer),
):
    """
    Create an order from explicit lines (quick order), bypassing the cart.
    """
    order = service.create_order(session, current_user.id, payload, current_user.id)
    return service.build_detail(session, order)


@router.get(
    "/me",
    response_model=list[OrderRead],
)
def list_my_orders(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_buyer),
    status: OrderStatus | None = None,
    payment_status: PaymentStatus | None = None,
    skip: int = 0,
    limit: int = 50,
):
    """
    List the authenticated buyer's orders (without items).
    """
    return service.list_user_orders(
        session, current_user.id, skip, limit, status, payment_status
    )


@router.get(
    "/me/{order_number}",
    response_model=OrderWithItemsRead,
)
def get_my_order(
    order_number: str,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_buyer),
):
    """
    Get a single order (with items) belonging to the current buyer.
    """
    order = service.get_user_order(session, current_user.id, order_number)
    return service.build_detail(session, order)


@router.post(
    "/me/{order_number}/cancel",
    response_model=OrderRead,
)
def cancel_my_order(
    order_number: str,
    payload: OrderCancel,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_buyer),
):
    """
    Cancel a pending or confirmed order.

    Stock is released; balance payments are refunded to the balance.
    """
    order = service.get_user_order(session, current_user.id, order_number)
    return service.cancel(
        session, order.id, payload.reason, current_user.id, owner_id=current_user.id
    )


@router.post(
    "/me/{order_number}/repeat",
    response_model=CartRepeatResult,
)
def repeat_my_order(
    order_number: str,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_buyer),
):
    """
    Put the products of a past order back into the cart.

    Products that can no longer be ordered are listed in failed_items;
    400 if none could be added.
    """
    return cart_service.repeat_order(session, current_user.id, order_number)


@router.get(
    "/me/{order_number}/tracking",
    response_model=ShipmentRead,
)
def track_my_order(
    order_number: str,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_buyer),
):
    """
    Shipment status of one of the buyer's orders.
    """
    order = service.get_user_order(session, current_user.id, order_number)
    return shipment_tracker.get_for_order(session, order.id, owner_id=current_user.id)


# -------- Admin endpoints --------


@router.get(
    "",
    response_model=list[OrderRead],
    dependencies=[Depends(require_admin)],
)
def list_all_orders(
    session: Session = Depends(get_session),
    status: OrderStatus | None = None,
    skip: int = 0,
    limit: int = 50,
):
    """
    List all orders (admin only).
    """
    return service.list_all_orders(session, skip, limit, status)


@router.get(
    "/{order_id}",
    response_model=OrderAdminRead,
    dependencies=[Depends(require_admin)],
)
def get_order_admin(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    """
    Get any order with items and internal notes (admin only).
    """
    order = service.get_order(session, order_id)
    return service.build_detail(session, order, admin=True)


@router.get(
    "/{order_id}/logs",
    response_model=list[OrderLogRead],
    dependencies=[Depends(require_admin)],
)
def get_order_logs(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    """
    Audit trail of an order, oldest first.
    """
    return service.list_logs(session, order_id)


@router.patch(
    "/{order_id}/status",
    response_model=OrderRead,
)
def update_order_status(
    order_id: uuid.UUID,
    payload: OrderStatusUpdate,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    """
    Update order status (admin only).

      pending   -> confirmed, cancelled

      confirmed -> processing, cancelled

    shipped / delivered come from the shipment endpoints and carrier.
    """
    return service.update_status(
        session, order_id, OrderStatus(payload.status), admin.id, payload.reason
    )


@router.post(
    "/{order_id}/notes",
    response_model=OrderAdminRead,
)
def add_internal_note(
    order_id: uuid.UUID,
    payload: OrderNoteCreate,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    order = service.add_internal_note(session, order_id, payload.note, admin.id)
    return service.build_detail(session, order, admin=True)


@router.patch(
    "/{order_id}/items/{item_id}",
    response_model=OrderAdminRead,
)
def update_item_quantity(
    order_id: uuid.UUID,
    item_id: uuid.UUID,
    payload: OrderItemQuantityUpdate,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    """
    Change a line quantity on a pending, unpaid order (admin only).
    """
    order = service.update_item_quantity(
        session, order_id, item_id, payload.quantity, admin.id
    )
    return service.build_detail(session, order, admin=True)

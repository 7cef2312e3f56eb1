# app/routers/cart.py
import uuid

from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.core.auth import require_buyer
from app.database import get_session
from app.models.user import User
from app.schemas.cart import CartSummary, CartItemCreate, CartItemUpdate
from app.services.registry import cart_service as service

router = APIRouter(prefix="/cart", tags=["Cart"])


@router.get("", response_model=CartSummary)
def get_my_cart(
    session: Session = Depends(get_session),
    buyer: User = Depends(require_buyer),
):
    """Cart lines priced for this buyer (user, group or tier price, else base)."""
    return service.get_cart_summary(session, buyer.id)


@router.post("", response_model=CartSummary)
def add_to_cart(
    payload: CartItemCreate,
    session: Session = Depends(get_session),
    buyer: User = Depends(require_buyer),
):
    """
    Add a product, merging into an existing line.

    The combined quantity must respect the product's minimum order
    quantity and what is currently on hand, else 400.
    """
    return service.add_to_cart(session, buyer.id, payload)


@router.patch("/{product_id}", response_model=CartSummary)
def update_cart_item(
    product_id: uuid.UUID,
    payload: CartItemUpdate,
    session: Session = Depends(get_session),
    buyer: User = Depends(require_buyer),
):
    return service.update_quantity(
        session=session,
        user_id=buyer.id,
        product_id=product_id,
        payload=payload,
    )


@router.delete("/{product_id}", response_model=CartSummary)
def remove_cart_item(
    product_id: uuid.UUID,
    session: Session = Depends(get_session),
    buyer: User = Depends(require_buyer),
):
    return service.remove_item(session, buyer.id, product_id)


@router.delete("", response_model=CartSummary)
def clear_cart(
    session: Session = Depends(get_session),
    buyer: User = Depends(require_buyer),
):
    """Empty the cart and return an empty summary."""
    return service.clear_cart(session, buyer.id)

# app/schemas/cart.py
import uuid
from datetime import datetime
from decimal import Decimal

from sqlmodel import SQLModel, Field

from app.services.pricing import PriceRule


class CartItemBase(SQLModel):
    """
    Base fields for create/update payloads.
    """

    product_id: uuid.UUID
    quantity: int = Field(gt=0)


class CartItemCreate(CartItemBase):
    """
    Payload for adding to cart.
    """

    pass


class CartItemUpdate(SQLModel):
    """
    Payload for updating quantity of a cart item.
    """

    quantity: int = Field(gt=0)


class CartItemRead(SQLModel):
    """
    Read model for a single cart item, priced for the buyer right now.

    unit_price is pre-VAT; line_total includes VAT.
    """

    id: uuid.UUID
    product_id: uuid.UUID
    product_name: str
    sku: str
    quantity: int
    base_price: Decimal
    unit_price: Decimal
    price_rule: PriceRule
    vat_rate: Decimal
    line_subtotal: Decimal
    line_vat: Decimal
    line_total: Decimal
    created_at: datetime


class CartSummary(SQLModel):
    """
    Full cart response model with totals (before shipping).
    """

    items: list[CartItemRead]
    total_quantity: int
    subtotal: Decimal
    vat_total: Decimal
    total_price: Decimal


class CartRepeatFailure(SQLModel):
    product_id: uuid.UUID
    product_name: str
    reason: str


class CartRepeatResult(SQLModel):
    """
    Outcome of copying a past order into the cart.

    Lines that can no longer be ordered (inactive product, minimum
    quantity, stock) are reported in failed_items; the rest are added.
    """

    added_count: int
    failed_items: list[CartRepeatFailure]
    cart: CartSummary

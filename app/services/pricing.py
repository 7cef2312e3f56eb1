import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from sqlmodel import Session

from app.core.clock import utcnow
from app.core.money import money
from app.models.product import Product
from app.repositories.product_repo import ProductRepository


class PriceRule(str, Enum):
    USER_PRICE = "user_price"
    GROUP_PRICE = "group_price"
    GROUP_DISCOUNT = "group_discount"
    BASE_PRICE = "base_price"


@dataclass(frozen=True)
class PriceQuote:
    unit_price: Decimal
    rule: PriceRule
    base_price: Decimal


class PricingResolver:
    """
    Resolves the unit price (pre-VAT) a buyer pays for a product.

    Precedence, first match wins:
      1. Buyer-specific custom price (highest satisfied min_quantity)
      2. Group custom price over the buyer's active groups (lowest price)
      3. Highest active group discount applied to the base price
      4. Base price

    Read-only; never raises for "no special price".
    """

    def __init__(self, product_repo: ProductRepository):
        self.product_repo = product_repo

    def quote(
        self,
        session: Session,
        user_id: uuid.UUID,
        product: Product,
        quantity: int = 1,
        on_date: date | None = None,
    ) -> PriceQuote:
        on_date = on_date or utcnow().date()
        base = money(product.base_price)

        user_price = self.product_repo.best_user_price(
            session, product.id, user_id, quantity, on_date
        )
        if user_price is not None:
            return PriceQuote(money(user_price.price), PriceRule.USER_PRICE, base)

        group_ids = self.product_repo.active_group_ids(session, user_id)
        group_price = self.product_repo.best_group_price(
            session, product.id, group_ids, quantity, on_date
        )
        if group_price is not None:
            return PriceQuote(money(group_price.price), PriceRule.GROUP_PRICE, base)

        discount = self.product_repo.max_group_discount(session, user_id)
        if discount is not None and Decimal(str(discount)) > 0:
            factor = 1 - Decimal(str(discount)) / 100
            return PriceQuote(money(base * factor), PriceRule.GROUP_DISCOUNT, base)

        return PriceQuote(base, PriceRule.BASE_PRICE, base)

    def resolve_price(
        self,
        session: Session,
        user_id: uuid.UUID,
        product: Product,
        quantity: int = 1,
        on_date: date | None = None,
    ) -> Decimal:
        return self.quote(session, user_id, product, quantity, on_date).unit_price

# app/services/cart_service.py
import uuid

from sqlmodel import Session

from app.core.errors import CommerceError, NotFoundError, ValidationFailedError
from app.core.money import ZERO, money
from app.database import transaction
from app.models.cart import CartItem
from app.models.product import Product
from app.repositories.cart_repo import CartRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.product_repo import ProductRepository
from app.schemas.cart import (
    CartItemCreate,
    CartItemUpdate,
    CartItemRead,
    CartRepeatFailure,
    CartRepeatResult,
    CartSummary,
)
from app.services.pricing import PricingResolver


class CartService:
    """
    A buyer's pre-checkout basket.

    Lines hold only (product, quantity). Prices are resolved for the
    buyer every time the cart is read, so a summary always shows what
    checkout would charge before shipping. Stock is checked but not
    reserved here; reservation happens when the order is placed.
    """

    def __init__(
        self,
        cart_repo: CartRepository,
        product_repo: ProductRepository,
        pricing: PricingResolver,
        order_repo: OrderRepository,
    ):
        self.cart_repo = cart_repo
        self.product_repo = product_repo
        self.pricing = pricing
        self.order_repo = order_repo

    def _orderable_product(self, session: Session, product_id: uuid.UUID) -> Product:
        product = self.product_repo.get_by_id(session, product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        if not product.is_active:
            raise ValidationFailedError("Product is inactive")
        return product

    @staticmethod
    def _check_quantity(product: Product, quantity: int) -> None:
        if quantity < product.min_order_quantity:
            raise ValidationFailedError(
                f"Minimum order quantity is {product.min_order_quantity}"
            )
        if quantity > product.stock_quantity:
            raise ValidationFailedError(
                f"Only {product.stock_quantity} of {product.sku} available"
            )

    def _price_line(
        self, session: Session, user_id: uuid.UUID, item: CartItem, product: Product
    ) -> CartItemRead:
        quote = self.pricing.quote(session, user_id, product, item.quantity)
        line_subtotal = money(quote.unit_price * item.quantity)
        line_vat = money(line_subtotal * product.vat_rate / 100)
        return CartItemRead(
            id=item.id,
            product_id=item.product_id,
            product_name=product.name,
            sku=product.sku,
            quantity=item.quantity,
            base_price=quote.base_price,
            unit_price=quote.unit_price,
            price_rule=quote.rule,
            vat_rate=product.vat_rate,
            line_subtotal=line_subtotal,
            line_vat=line_vat,
            line_total=line_subtotal + line_vat,
            created_at=item.created_at,
        )

    @staticmethod
    def _summarize(lines: list[CartItemRead]) -> CartSummary:
        subtotal = money(sum((line.line_subtotal for line in lines), ZERO))
        vat_total = money(sum((line.line_vat for line in lines), ZERO))
        return CartSummary(
            items=lines,
            total_quantity=sum(line.quantity for line in lines),
            subtotal=subtotal,
            vat_total=vat_total,
            total_price=subtotal + vat_total,
        )

    def _set_quantity(
        self, session: Session, user_id: uuid.UUID, product: Product, quantity: int
    ) -> None:
        self._check_quantity(product, quantity)
        item = self.cart_repo.get_item(session, user_id, product.id)
        if item is None:
            item = CartItem(user_id=user_id, product_id=product.id, quantity=quantity)
        else:
            item.quantity = quantity
        with transaction(session):
            self.cart_repo.save(session, item)

    def get_cart_summary(self, session: Session, user_id: uuid.UUID) -> CartSummary:
        items = self.cart_repo.list_for_user(session, user_id)
        products = self.product_repo.get_many(session, [it.product_id for it in items])

        # Lines whose product has been deleted are hidden rather than failing the whole cart.
        lines = [
            self._price_line(session, user_id, it, products[it.product_id])
            for it in items
            if it.product_id in products
        ]
        return self._summarize(lines)

    def add_to_cart(
        self,
        session: Session,
        user_id: uuid.UUID,
        payload: CartItemCreate,
    ) -> CartSummary:
        """Add to the existing line if there is one; the merged quantity is what gets checked."""
        product = self._orderable_product(session, payload.product_id)
        existing = self.cart_repo.get_item(session, user_id, product.id)
        quantity = payload.quantity + (existing.quantity if existing else 0)

        self._set_quantity(session, user_id, product, quantity)
        return self.get_cart_summary(session, user_id)

    def update_quantity(
        self,
        session: Session,
        user_id: uuid.UUID,
        product_id: uuid.UUID,
        payload: CartItemUpdate,
    ) -> CartSummary:
        product = self._orderable_product(session, product_id)
        if self.cart_repo.get_item(session, user_id, product_id) is None:
            raise NotFoundError("Cart item", product_id)

        self._set_quantity(session, user_id, product, payload.quantity)
        return self.get_cart_summary(session, user_id)

    def remove_item(
        self,
        session: Session,
        user_id: uuid.UUID,
        product_id: uuid.UUID,
    ) -> CartSummary:
        item = self.cart_repo.get_item(session, user_id, product_id)
        if item is None:
            raise NotFoundError("Cart item", product_id)

        with transaction(session):
            self.cart_repo.delete(session, item)
        return self.get_cart_summary(session, user_id)

    def clear_cart(self, session: Session, user_id: uuid.UUID) -> CartSummary:
        with transaction(session):
            self.cart_repo.clear_user_cart(session, user_id)
        return self._summarize([])

    def repeat_order(
        self,
        session: Session,
        user_id: uuid.UUID,
        order_number: str,
    ) -> CartRepeatResult:
        """
        Copy the lines of one of the buyer's past orders into the cart.

        Each line goes through the same checks as add_to_cart and is
        merged with what is already in the cart. Lines that fail are
        collected instead of aborting the rest.

        Raises:
            NotFoundError: unknown order, or one belonging to another buyer.
            ValidationFailedError: not a single line could be added.
        """
        order = self.order_repo.get_by_number(session, order_number)
        if order is None or order.user_id != user_id:
            raise NotFoundError("Order", order_number)

        added = 0
        failed: list[CartRepeatFailure] = []
        for item in self.order_repo.list_items_for_order(session, order.id):
            try:
                product = self._orderable_product(session, item.product_id)
                existing = self.cart_repo.get_item(session, user_id, product.id)
                quantity = item.quantity + (existing.quantity if existing else 0)
                self._set_quantity(session, user_id, product, quantity)
            except CommerceError as exc:
                failed.append(
                    CartRepeatFailure(
                        product_id=item.product_id,
                        product_name=item.product_name,
                        reason=exc.message,
                    )
                )
            else:
                added += 1

        if added == 0:
            raise ValidationFailedError(
                "None of the order's products could be added to the cart",
                items=[
                    {"product_id": str(f.product_id), "product_name": f.product_name, "reason": f.reason}
                    for f in failed
                ],
            )
        return CartRepeatResult(
            added_count=added,
            failed_items=failed,
            cart=self.get_cart_summary(session, user_id),
        )

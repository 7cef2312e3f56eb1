"""Tests for CartService."""

import uuid
from decimal import Decimal

import pytest

from app.core.errors import NotFoundError, ValidationFailedError
from app.models.order import PaymentMethod
from app.schemas.cart import CartItemCreate, CartItemUpdate
from app.schemas.order import OrderCreate, OrderLineIn
from app.services.pricing import PriceRule


def _add(services, session, user, product, quantity):
    return services.cart.add_to_cart(
        session, user.id, CartItemCreate(product_id=product.id, quantity=quantity)
    )


class TestAddToCart:
    def test_lines_merge(self, session, services, buyer, make_product):
        product = make_product(base_price="10.00", vat_rate="10.00")
        _add(services, session, buyer, product, 2)

        summary = _add(services, session, buyer, product, 3)

        [line] = summary.items
        assert line.quantity == 5
        assert summary.subtotal == Decimal("50.00")
        assert summary.vat_total == Decimal("5.00")
        assert summary.total_price == Decimal("55.00")

    def test_group_discount_is_applied(self, session, services, buyer, make_product, make_group):
        make_group(buyer, discount="10.00")
        product = make_product(base_price="200.00")

        [line] = _add(services, session, buyer, product, 1).items

        assert line.base_price == Decimal("200.00")
        assert line.unit_price == Decimal("180.00")
        assert line.price_rule == PriceRule.GROUP_DISCOUNT

    def test_below_minimum_quantity(self, session, services, buyer, make_product):
        product = make_product(min_qty=10)
        with pytest.raises(ValidationFailedError, match="Minimum order quantity is 10"):
            _add(services, session, buyer, product, 9)

    def test_merged_quantity_is_capped_by_stock(self, session, services, buyer, make_product):
        product = make_product(stock=5)
        _add(services, session, buyer, product, 4)

        with pytest.raises(ValidationFailedError):
            _add(services, session, buyer, product, 2)
        assert services.cart.get_cart_summary(session, buyer.id).items[0].quantity == 4

    def test_inactive_product(self, session, services, buyer, make_product):
        product = make_product(active=False)
        with pytest.raises(ValidationFailedError):
            _add(services, session, buyer, product, 1)

    def test_unknown_product(self, session, services, buyer):
        with pytest.raises(NotFoundError):
            services.cart.add_to_cart(
                session, buyer.id, CartItemCreate(product_id=uuid.uuid4(), quantity=1)
            )


class TestEditCart:
    def test_update_quantity(self, session, services, buyer, make_product):
        product = make_product()
        _add(services, session, buyer, product, 1)

        summary = services.cart.update_quantity(
            session, buyer.id, product.id, CartItemUpdate(quantity=7)
        )

        assert summary.total_quantity == 7

    def test_update_missing_line(self, session, services, buyer, make_product):
        product = make_product()
        with pytest.raises(NotFoundError):
            services.cart.update_quantity(session, buyer.id, product.id, CartItemUpdate(quantity=1))

    def test_remove_and_clear(self, session, services, buyer, make_product):
        first, second = make_product(), make_product()
        _add(services, session, buyer, first, 1)
        _add(services, session, buyer, second, 1)

        summary = services.cart.remove_item(session, buyer.id, first.id)
        assert [line.product_id for line in summary.items] == [second.id]

        empty = services.cart.clear_cart(session, buyer.id)
        assert empty.items == []
        assert empty.total_price == Decimal("0.00")
        assert services.cart_repo.list_for_user(session, buyer.id) == []

    def test_carts_are_per_buyer(self, session, services, buyer, make_buyer, make_product):
        other = make_buyer(company_name="Other Co")
        _add(services, session, buyer, make_product(), 1)

        assert services.cart.get_cart_summary(session, other.id).items == []


class TestRepeatOrder:
    def _order(self, services, session, user, lines):
        return services.orders.create_order(
            session,
            user.id,
            OrderCreate(
                payment_method=PaymentMethod.BALANCE,
                items=[OrderLineIn(product_id=p.id, quantity=q) for p, q in lines],
            ),
        )

    def test_lines_are_merged_into_the_cart(self, session, services, buyer, make_product):
        widget, gadget = make_product(stock=20), make_product(stock=20)
        order = self._order(services, session, buyer, [(widget, 2), (gadget, 3)])
        _add(services, session, buyer, widget, 1)

        result = services.cart.repeat_order(session, buyer.id, order.order_number)

        assert result.added_count == 2
        assert result.failed_items == []
        quantities = {line.product_id: line.quantity for line in result.cart.items}
        assert quantities == {widget.id: 3, gadget.id: 3}

    def test_unorderable_lines_are_reported(self, session, services, buyer, make_product):
        widget, retired = make_product(stock=20), make_product(stock=20)
        order = self._order(services, session, buyer, [(widget, 2), (retired, 1)])
        retired.is_active = False
        session.add(retired)
        session.commit()

        result = services.cart.repeat_order(session, buyer.id, order.order_number)

        assert result.added_count == 1
        [failure] = result.failed_items
        assert failure.product_id == retired.id
        assert failure.reason == "Product is inactive"
        assert [line.product_id for line in result.cart.items] == [widget.id]

    def test_nothing_added(self, session, services, buyer, make_product):
        product = make_product(stock=3)
        order = self._order(services, session, buyer, [(product, 3)])

        # The order itself took the last units.
        with pytest.raises(ValidationFailedError) as exc_info:
            services.cart.repeat_order(session, buyer.id, order.order_number)

        assert exc_info.value.items[0]["product_id"] == str(product.id)
        assert services.cart_repo.list_for_user(session, buyer.id) == []

    def test_other_buyers_order(self, session, services, buyer, make_buyer, make_product):
        order = self._order(services, session, buyer, [(make_product(), 1)])
        stranger = make_buyer(company_name="Stranger Co")

        with pytest.raises(NotFoundError):
            services.cart.repeat_order(session, stranger.id, order.order_number)

"""Tests for OrderService: creation, transitions, cancellation, sweep."""

import re
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from app.core.clock import utcnow
from app.core.errors import (
    IllegalTransitionError,
    InsufficientStockError,
    NotFoundError,
    ValidationFailedError,
)
from app.models.cart import CartItem
from app.models.company import Company
from app.models.ledger import LedgerRef, ReferenceKind, StockMovement, StockMovementType
from app.models.order import (
    Order,
    OrderLogAction,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from app.models.payment import PaymentTransactionStatus
from app.schemas.order import OrderCheckout, OrderCreate, OrderLineIn


def _payload(lines, method=PaymentMethod.BALANCE, **kwargs):
    return OrderCreate(
        payment_method=method,
        items=[OrderLineIn(product_id=p.id, quantity=q) for p, q in lines],
        **kwargs,
    )


def _stock(session, product):
    session.refresh(product)
    return product.stock_quantity


def _balance(session, user):
    company = session.exec(select(Company).where(Company.user_id == user.id)).one()
    session.refresh(company)
    return company.balance


class TestCreateOrder:
    def test_totals_and_snapshot(self, session, services, buyer, make_product):
        widget = make_product(base_price="100.00", vat_rate="20.00", stock=10)
        gadget = make_product(base_price="50.00", vat_rate="10.00", stock=10)

        order = services.orders.create_order(
            session, buyer.id, _payload([(widget, 2), (gadget, 1)]), buyer.id
        )

        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert re.fullmatch(r"ORD\d{8}0001", order.order_number)
        assert order.subtotal == Decimal("250.00")
        assert order.vat_total == Decimal("45.00")
        assert order.shipping_cost == Decimal("25.00")
        assert order.grand_total == (
            order.subtotal + order.vat_total - order.discount_total + order.shipping_cost
        )
        assert order.grand_total == Decimal("320.00")
        assert order.shipping_address == "1 Market St\nKadikoy\nIstanbul\n34710"
        assert order.billing_address == order.shipping_address
        assert order.shipping_contact_name == "Acme Ltd"

        assert _stock(session, widget) == 8
        assert _stock(session, gadget) == 9

        logs = services.orders.list_logs(session, order.id)
        assert [log.action for log in logs] == [OrderLogAction.CREATED]

    def test_order_numbers_follow_daily_sequence(self, session, services, buyer, make_product):
        product = make_product(stock=10)
        first = services.orders.create_order(session, buyer.id, _payload([(product, 1)]))
        second = services.orders.create_order(session, buyer.id, _payload([(product, 1)]))

        assert first.order_number[:-4] == second.order_number[:-4]
        assert second.order_number.endswith("0002")

    def test_unit_price_uses_pricing_rules(self, session, services, buyer, make_product, make_group):
        product = make_product(base_price="100.00", vat_rate="0.00")
        make_group(buyer, discount="10.00")

        order = services.orders.create_order(
            session, buyer.id, _payload([(product, 1)], delivery_type="pickup")
        )
        detail = services.orders.build_detail(session, order)
        assert detail.items[0].unit_price == Decimal("90.00")
        assert order.grand_total == Decimal("90.00")

    def test_duplicate_lines_are_merged(self, session, services, buyer, make_product):
        product = make_product(stock=10)
        order = services.orders.create_order(
            session, buyer.id, _payload([(product, 2), (product, 3)])
        )
        items = services.order_repo.list_items_for_order(session, order.id)
        assert len(items) == 1
        assert items[0].quantity == 5

    def test_all_or_nothing_on_stock_shortage(self, session, services, buyer, make_product):
        products = [make_product(stock=10) for _ in range(5)]
        short = products[2]
        short.stock_quantity = 1
        session.add(short)
        session.commit()

        with pytest.raises(InsufficientStockError):
            services.orders.create_order(
                session, buyer.id, _payload([(p, 2) for p in products])
            )

        assert [_stock(session, p) for p in products] == [10, 10, 1, 10, 10]
        assert session.exec(select(Order)).all() == []
        assert session.exec(select(StockMovement)).all() == []

    def test_validation_lists_every_bad_line(self, session, services, buyer, make_product):
        inactive = make_product(active=False)
        bulk = make_product(min_qty=10)

        with pytest.raises(ValidationFailedError) as exc_info:
            services.orders.create_order(
                session, buyer.id, _payload([(inactive, 1), (bulk, 2)])
            )

        reasons = {item["reason"] for item in exc_info.value.items}
        assert reasons == {"Product is inactive", "Minimum order quantity is 10"}

    def test_buyer_without_company(self, session, services, make_user, make_product):
        user = make_user()
        product = make_product()
        with pytest.raises(NotFoundError):
            services.orders.create_order(session, user.id, _payload([(product, 1)]))
        assert _stock(session, product) == 50


class TestCheckoutFromCart:
    def test_cart_is_cleared(self, session, services, buyer, make_product):
        product = make_product(stock=10)
        session.add(CartItem(user_id=buyer.id, product_id=product.id, quantity=3))
        session.commit()

        order = services.orders.create_from_cart(
            session, buyer.id, OrderCheckout(payment_method=PaymentMethod.CREDIT_CARD)
        )

        assert services.cart_repo.list_for_user(session, buyer.id) == []
        items = services.order_repo.list_items_for_order(session, order.id)
        assert [(i.product_id, i.quantity) for i in items] == [(product.id, 3)]

    def test_failed_checkout_keeps_cart(self, session, services, buyer, make_product):
        product = make_product(stock=10)
        session.add(CartItem(user_id=buyer.id, product_id=product.id, quantity=3))
        session.commit()
        product.stock_quantity = 1
        session.add(product)
        session.commit()

        with pytest.raises(InsufficientStockError):
            services.orders.create_from_cart(
                session, buyer.id, OrderCheckout(payment_method=PaymentMethod.BALANCE)
            )
        assert len(services.cart_repo.list_for_user(session, buyer.id)) == 1

    def test_empty_cart(self, session, services, buyer):
        with pytest.raises(ValidationFailedError, match="Cart is empty"):
            services.orders.create_from_cart(
                session, buyer.id, OrderCheckout(payment_method=PaymentMethod.BALANCE)
            )


class TestTransitions:
    def test_happy_path_logs_each_step(self, session, services, buyer, admin, make_product):
        product = make_product()
        order = services.orders.create_order(session, buyer.id, _payload([(product, 1)]))

        services.orders.confirm(session, order.id, admin.id)
        services.orders.mark_processing(session, order.id, admin.id)

        logs = services.orders.list_logs(session, order.id)
        assert [log.action for log in logs] == [
            OrderLogAction.CREATED,
            OrderLogAction.STATUS_CHANGED,
            OrderLogAction.STATUS_CHANGED,
        ]
        assert logs[-1].old_value == {"status": "confirmed"}
        assert logs[-1].new_value == {"status": "processing"}
        assert logs[-1].user_id == admin.id

    def test_skipping_a_step_is_rejected(self, session, services, buyer, make_product):
        product = make_product()
        order = services.orders.create_order(session, buyer.id, _payload([(product, 1)]))

        with pytest.raises(IllegalTransitionError):
            services.orders.mark_processing(session, order.id)

        session.refresh(order)
        assert order.status == OrderStatus.PENDING
        assert len(services.orders.list_logs(session, order.id)) == 1

    def test_unpaid_order_cannot_ship(self, session, services, buyer, make_product):
        product = make_product()
        order = services.orders.create_order(session, buyer.id, _payload([(product, 1)]))
        services.orders.confirm(session, order.id)
        services.orders.mark_processing(session, order.id)

        with pytest.raises(IllegalTransitionError):
            services.orders.transition(session, order, OrderStatus.SHIPPED)
        session.rollback()


class TestCancel:
    def test_cancel_paid_balance_order_refunds(self, session, services, make_buyer, make_product):
        buyer = make_buyer(balance="1000.00")
        product = make_product(base_price="100.00", vat_rate="20.00", stock=10)
        order = services.orders.create_order(session, buyer.id, _payload([(product, 2)]))
        services.payments.process(session, buyer.id, order.id, PaymentMethod.BALANCE)
        assert _balance(session, buyer) == Decimal("1000.00") - order.grand_total

        cancelled = services.orders.cancel(session, order.id, "changed my mind", buyer.id)

        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.payment_status == PaymentStatus.REFUNDED
        assert "changed my mind" in cancelled.internal_notes
        assert _balance(session, buyer) == Decimal("1000.00")
        assert _stock(session, product) == 10
        assert services.balance.verify(session, buyer.id)
        assert services.stock.verify(session, product.id)

        ref = LedgerRef(ReferenceKind.ORDER, order.id)
        assert [m.type for m in services.stock.movements_for(session, ref)] == [
            StockMovementType.RESERVED,
            StockMovementType.CANCELLED,
        ]
        assert services.stock.resolve_reference(session, ref).id == order.id
        actions = [log.action for log in services.orders.list_logs(session, order.id)]
        assert actions[-1] == OrderLogAction.CANCELLED

    def test_cancel_unpaid_order_closes_pending_attempts(self, session, services, buyer, make_product):
        product = make_product()
        order = services.orders.create_order(
            session, buyer.id, _payload([(product, 1)], method=PaymentMethod.CREDIT_CARD)
        )
        services.payments.process(session, buyer.id, order.id, PaymentMethod.CREDIT_CARD)

        services.orders.cancel(session, order.id, "no longer needed")

        [txn] = services.payment_repo.list_for_order(session, order.id)
        assert txn.status == PaymentTransactionStatus.CANCELLED
        session.refresh(order)
        assert order.payment_status == PaymentStatus.PENDING

    @pytest.mark.parametrize("steps", [1, 2])
    def test_confirmed_can_cancel_processing_cannot(self, session, services, buyer, make_product, steps):
        product = make_product(stock=5)
        order = services.orders.create_order(session, buyer.id, _payload([(product, 1)]))
        services.orders.confirm(session, order.id)
        if steps == 1:
            services.orders.cancel(session, order.id, "ok")
            assert _stock(session, product) == 5
            return

        services.orders.mark_processing(session, order.id)
        with pytest.raises(IllegalTransitionError):
            services.orders.cancel(session, order.id, "too late")
        assert _stock(session, product) == 4

    def test_owner_check(self, session, services, buyer, make_buyer, make_product):
        product = make_product()
        order = services.orders.create_order(session, buyer.id, _payload([(product, 1)]))
        stranger = make_buyer(company_name="Stranger Co")

        with pytest.raises(NotFoundError):
            services.orders.cancel(session, order.id, "not mine", stranger.id, owner_id=stranger.id)


class TestEditing:
    def test_quantity_change_reserves_difference(self, session, services, buyer, admin, make_product):
        product = make_product(base_price="10.00", vat_rate="0.00", stock=10)
        order = services.orders.create_order(
            session, buyer.id, _payload([(product, 2)], delivery_type="pickup")
        )
        [item] = services.order_repo.list_items_for_order(session, order.id)

        order = services.orders.update_item_quantity(session, order.id, item.id, 5, admin.id)

        assert order.grand_total == Decimal("50.00")
        assert _stock(session, product) == 5
        assert services.orders.list_logs(session, order.id)[-1].action == OrderLogAction.ITEM_UPDATED

        services.orders.update_item_quantity(session, order.id, item.id, 1, admin.id)
        assert _stock(session, product) == 9

    def test_paid_order_is_not_editable(self, session, services, buyer, admin, make_product):
        product = make_product(stock=10)
        order = services.orders.create_order(session, buyer.id, _payload([(product, 2)]))
        services.payments.process(session, buyer.id, order.id, PaymentMethod.BALANCE)
        [item] = services.order_repo.list_items_for_order(session, order.id)

        with pytest.raises(ValidationFailedError):
            services.orders.update_item_quantity(session, order.id, item.id, 3, admin.id)
        assert _stock(session, product) == 8

    def test_internal_note(self, session, services, buyer, admin, make_product):
        product = make_product()
        order = services.orders.create_order(session, buyer.id, _payload([(product, 1)]))

        order = services.orders.add_internal_note(session, order.id, "call before delivery", admin.id)
        assert order.internal_notes.endswith("call before delivery")
        assert services.orders.build_detail(session, order, admin=True).internal_notes
        assert "internal_notes" not in services.orders.build_detail(session, order).model_dump()


class TestPaymentTimeoutSweep:
    def _age(self, session, order, hours):
        order.created_at = utcnow() - timedelta(hours=hours)
        session.add(order)
        session.commit()

    def test_only_old_unpaid_orders_are_cancelled(self, session, services, make_buyer, make_product):
        buyer = make_buyer(balance="10000.00")
        product = make_product(stock=10)
        old = services.orders.create_order(session, buyer.id, _payload([(product, 1)]))
        young = services.orders.create_order(session, buyer.id, _payload([(product, 1)]))
        old_paid = services.orders.create_order(session, buyer.id, _payload([(product, 1)]))
        services.payments.process(session, buyer.id, old_paid.id, PaymentMethod.BALANCE)
        self._age(session, old, 25)
        self._age(session, young, 23)
        self._age(session, old_paid, 30)

        cancelled = services.orders.cancel_expired(session)

        assert [o.id for o in cancelled] == [old.id]
        session.refresh(old)
        session.refresh(young)
        session.refresh(old_paid)
        assert old.status == OrderStatus.CANCELLED
        assert "payment timeout" in old.internal_notes
        assert young.status == OrderStatus.PENDING
        assert old_paid.status == OrderStatus.PENDING
        assert _stock(session, product) == 8

        [log] = [
            log for log in services.orders.list_logs(session, old.id)
            if log.action == OrderLogAction.CANCELLED
        ]
        assert log.user_id is None

    def test_second_run_is_a_no_op(self, session, services, buyer, make_product):
        product = make_product(stock=10)
        order = services.orders.create_order(session, buyer.id, _payload([(product, 1)]))
        self._age(session, order, 48)

        assert len(services.orders.cancel_expired(session)) == 1
        assert services.orders.cancel_expired(session) == []
        assert _stock(session, product) == 10

    def test_database_error_on_one_order_does_not_stop_the_run(
        self, session, services, buyer, make_product, monkeypatch
    ):
        product = make_product(stock=10)
        stuck = services.orders.create_order(session, buyer.id, _payload([(product, 1)]))
        other = services.orders.create_order(session, buyer.id, _payload([(product, 1)]))
        self._age(session, stuck, 30)
        self._age(session, other, 30)

        release = services.stock.release

        def locked_out(session_, product_id, quantity, ref, *args, **kwargs):
            if ref.id == stuck.id:
                raise OperationalError("UPDATE products", {}, Exception("lock timeout"))
            return release(session_, product_id, quantity, ref, *args, **kwargs)

        monkeypatch.setattr(services.stock, "release", locked_out)

        cancelled = services.orders.cancel_expired(session)

        assert [o.id for o in cancelled] == [other.id]
        session.refresh(stuck)
        assert stuck.status == OrderStatus.PENDING
        assert _stock(session, product) == 9


class TestLockOrdering:
    def test_rows_are_reserved_and_released_in_product_id_order(
        self, session, services, buyer, make_product
    ):
        products = [make_product(stock=10) for _ in range(4)]
        expected = sorted(p.id for p in products)
        lines = [(p, 1) for p in sorted(products, key=lambda p: p.id, reverse=True)]

        order = services.orders.create_order(session, buyer.id, _payload(lines))
        services.orders.cancel(session, order.id, "wrong items")

        ref = LedgerRef(ReferenceKind.ORDER, order.id)
        movements = services.stock.movements_for(session, ref)
        reserved = [m.product_id for m in movements if m.type == StockMovementType.RESERVED]
        released = [m.product_id for m in movements if m.type == StockMovementType.CANCELLED]
        assert reserved == expected
        assert released == expected


def test_unknown_order(session, services):
    with pytest.raises(NotFoundError):
        services.orders.get_order(session, uuid.uuid4())


def test_timestamps_are_naive_utc(session, services, buyer, make_product):
    before = utcnow()
    order = services.orders.create_order(session, buyer.id, _payload([(make_product(), 1)]))
    session.refresh(order)

    assert before.tzinfo is None
    assert order.created_at.tzinfo is None
    assert before <= order.created_at <= utcnow()

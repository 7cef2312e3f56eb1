"""Tests for StockLedger movements and replay."""

import uuid

import pytest

from app.core.errors import InsufficientStockError, NotFoundError, ValidationFailedError
from app.database import transaction
from app.models.ledger import LedgerRef, ReferenceKind, StockMovementType


@pytest.fixture
def order_ref():
    return LedgerRef(ReferenceKind.ORDER, uuid.uuid4())


class TestReserveRelease:
    def test_reserve_decrements_and_records(self, session, services, make_product, order_ref):
        product = make_product(stock=10)
        with transaction(session):
            movement = services.stock.reserve(session, product.id, 3, order_ref)

        session.refresh(product)
        assert product.stock_quantity == 7
        assert movement.type == StockMovementType.RESERVED
        assert movement.quantity == -3
        assert (movement.stock_before, movement.stock_after) == (10, 7)
        assert movement.reference == order_ref

    def test_reserve_more_than_available(self, session, services, make_product, order_ref):
        product = make_product(stock=2)
        with pytest.raises(InsufficientStockError) as exc_info:
            with transaction(session):
                services.stock.reserve(session, product.id, 3, order_ref)

        assert exc_info.value.available == 2
        assert exc_info.value.requested == 3
        session.refresh(product)
        assert product.stock_quantity == 2
        assert services.stock.movements(session, product.id) == []

    def test_release_gives_stock_back(self, session, services, make_product, order_ref):
        product = make_product(stock=10)
        with transaction(session):
            services.stock.reserve(session, product.id, 4, order_ref)
            movement = services.stock.release(session, product.id, 4, order_ref)

        session.refresh(product)
        assert product.stock_quantity == 10
        assert movement.type == StockMovementType.CANCELLED
        assert movement.quantity == 4
        assert [m.id for m in services.stock.movements_for(session, order_ref)] == [
            m.id for m in services.stock.movements(session, product.id)
        ]

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_non_positive_quantity_rejected(self, session, services, make_product, order_ref, quantity):
        product = make_product(stock=10)
        with pytest.raises(ValidationFailedError):
            services.stock.reserve(session, product.id, quantity, order_ref)

    def test_unknown_product(self, session, services, order_ref):
        with pytest.raises(NotFoundError):
            services.stock.reserve(session, uuid.uuid4(), 1, order_ref)


class TestAdminMovements:
    def test_adjust_records_difference(self, session, services, make_product, admin):
        product = make_product(stock=10)
        with transaction(session):
            movement = services.stock.adjust(session, product.id, 6, "stock take", admin.id)

        assert movement.type == StockMovementType.ADJUSTMENT
        assert movement.quantity == -4
        assert movement.created_by == admin.id
        session.refresh(product)
        assert product.stock_quantity == 6

    def test_adjust_rejects_negative_target(self, session, services, make_product):
        product = make_product(stock=10)
        with pytest.raises(ValidationFailedError):
            services.stock.adjust(session, product.id, -1, "typo")

    def test_commit_out_cannot_go_negative(self, session, services, make_product):
        product = make_product(stock=1)
        with pytest.raises(InsufficientStockError):
            services.stock.commit_out(session, product.id, 2, "damaged")

    def test_commit_in(self, session, services, make_product):
        product = make_product(stock=0)
        with transaction(session):
            movement = services.stock.commit_in(session, product.id, 25, "supplier delivery")

        assert movement.type == StockMovementType.IN
        assert movement.stock_after == 25


class TestReplay:
    def test_trail_replays_to_current_stock(self, session, services, make_product, order_ref, admin):
        product = make_product(stock=20)
        with transaction(session):
            services.stock.reserve(session, product.id, 5, order_ref)
            services.stock.commit_in(session, product.id, 10, "delivery", admin.id)
            services.stock.release(session, product.id, 2, order_ref)
            services.stock.commit_out(session, product.id, 3, "damaged", admin.id)
            services.stock.adjust(session, product.id, 30, "stock take", admin.id)

        rows = services.stock.movements(session, product.id)
        assert [r.id for r in rows] == sorted(r.id for r in rows)
        assert rows[0].stock_before == 20
        assert sum(r.quantity for r in rows) == 30 - 20
        assert services.stock.verify(session, product.id) is True

    def test_direct_write_breaks_replay(self, session, services, make_product, order_ref):
        product = make_product(stock=20)
        with transaction(session):
            services.stock.reserve(session, product.id, 5, order_ref)

        product.stock_quantity = 99
        session.add(product)
        session.commit()
        assert services.stock.verify(session, product.id) is False

    def test_no_movements_is_consistent(self, session, services, make_product):
        product = make_product(stock=7)
        assert services.stock.verify(session, product.id) is True

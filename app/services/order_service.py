# app/services/order_service.py
import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.core.clock import utcnow
from app.core.config import Settings, get_settings
from app.core.errors import (
    CommerceError,
    IllegalTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from app.core.money import ZERO, money
from app.database import transaction
from app.models.ledger import BalanceTransactionType, LedgerRef, ReferenceKind
from app.models.order import (
    Order,
    OrderItem,
    OrderLog,
    OrderLogAction,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from app.models.payment import PaymentTransactionStatus
from app.models.product import Product
from app.models.user import User
from app.repositories.cart_repo import CartRepository
from app.repositories.company_repo import CompanyRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.payment_repo import PaymentRepository
from app.repositories.product_repo import ProductRepository
from app.schemas.order import (
    OrderAdminRead,
    OrderCheckout,
    OrderCreate,
    OrderItemRead,
    OrderRead,
    OrderWithItemsRead,
)
from app.services.balance_ledger import BalanceLedger
from app.services.pricing import PricingResolver
from app.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)

# Allowed order status transitions. Cancellation has its own path
# (stock release + refund) but is listed so the table is complete.
ALLOWED_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

PAYMENT_TIMEOUT_REASON = "payment timeout"


def item_subtotal(item: OrderItem) -> Decimal:
    return money(item.unit_price * item.quantity - item.discount_amount)


def item_vat(item: OrderItem) -> Decimal:
    return money(item_subtotal(item) * item.vat_rate / 100)


class OrderService:
    """
    Business logic for the order workflow.

    Responsibilities:
      - Create orders (explicit lines or cart) with priced lines and
        reserved stock, all-or-nothing
      - Issue order numbers from the per-day counter
      - Enforce the status state machine
      - Cancel with stock release and balance refund
      - Auto-cancel unpaid orders after the payment timeout
      - Append an OrderLog row for every status / payment status change

    Public methods that mutate commit their own transaction. The
    `transition`, `mark_paid` and `set_payment_status` helpers do not
    commit; payment and shipment services call them inside theirs.
    """

    def __init__(
        self,
        order_repo: OrderRepository,
        cart_repo: CartRepository,
        product_repo: ProductRepository,
        company_repo: CompanyRepository,
        payment_repo: PaymentRepository,
        pricing: PricingResolver,
        stock_ledger: StockLedger,
        balance_ledger: BalanceLedger,
        settings: Settings | None = None,
    ):
        self.order_repo = order_repo
        self.cart_repo = cart_repo
        self.product_repo = product_repo
        self.company_repo = company_repo
        self.payment_repo = payment_repo
        self.pricing = pricing
        self.stock_ledger = stock_ledger
        self.balance_ledger = balance_ledger
        self.settings = settings or get_settings()

    # -------- Creation --------

    def create_order(
        self,
        session: Session,
        user_id: uuid.UUID,
        payload: OrderCreate,
        actor_id: uuid.UUID | None = None,
    ) -> Order:
        lines = [(line.product_id, line.quantity) for line in payload.items]
        with transaction(session):
            order = self._create(session, user_id, lines, payload, actor_id)
        session.refresh(order)
        return order

    def create_from_cart(
        self,
        session: Session,
        user_id: uuid.UUID,
        payload: OrderCheckout,
        actor_id: uuid.UUID | None = None,
    ) -> Order:
        """
        Convert the current user's cart into an Order.

        The cart is cleared in the same transaction, so a failed
        checkout leaves the cart intact.
        """
        cart_items = self.cart_repo.list_for_user(session, user_id)
        if not cart_items:
            raise ValidationFailedError("Cart is empty")

        lines = [(ci.product_id, ci.quantity) for ci in cart_items]
        with transaction(session):
            order = self._create(session, user_id, lines, payload, actor_id)
            self.cart_repo.clear_user_cart(session, user_id)
        session.refresh(order)
        return order

    def _create(
        self,
        session: Session,
        user_id: uuid.UUID,
        lines: list[tuple[uuid.UUID, int]],
        details: OrderCheckout,
        actor_id: uuid.UUID | None,
    ) -> Order:
        """
        Steps:
          1. Merge and validate lines (product exists, active, quantity).
          2. Snapshot addresses from the payload or the company profile.
          3. Take the next order number and insert the Order.
          4. Price each line, then reserve stock in product id order.
          5. Insert items, compute totals, log `created`.

        Any exception propagates to the caller's transaction, which
        rolls back every reservation made so far.
        """
        # 1) Validate
        merged: dict[uuid.UUID, int] = {}
        for product_id, quantity in lines:
            merged[product_id] = merged.get(product_id, 0) + quantity

        if not merged:
            raise ValidationFailedError("Order must contain at least one item")

        products = self.product_repo.get_many(session, list(merged))
        errors = self._validate_lines(merged, products)
        if errors:
            logger.info("Order validation failed for user %s: %s", user_id, errors)
            raise ValidationFailedError("Order validation failed", items=errors)

        # 2) Address / contact snapshot
        company = self.company_repo.get_by_user(session, user_id)
        if company is None:
            raise NotFoundError("Company", user_id)
        user = session.get(User, user_id)
        phone = user.phone if user else None

        shipping_address = details.shipping_address or company.full_address
        billing_address = details.billing_address or company.full_address
        if not details.use_different_shipping and details.billing_address is None:
            billing_address = shipping_address

        # 3) Order header
        now = utcnow()
        order = Order(
            order_number=self._next_order_number(session, now),
            user_id=user_id,
            order_type=details.order_type,
            delivery_type=details.delivery_type,
            payment_method=details.payment_method,
            shipping_cost=money(self.settings.shipping_cost_for(details.delivery_type.value)),
            shipping_address=shipping_address,
            shipping_contact_name=details.shipping_contact_name or company.company_name,
            shipping_contact_phone=details.shipping_contact_phone or phone,
            billing_address=billing_address,
            billing_contact_name=details.billing_contact_name or company.company_name,
            billing_contact_phone=details.billing_contact_phone or phone,
            use_different_shipping=details.use_different_shipping,
            notes=details.notes,
            created_at=now,
            updated_at=now,
        )
        order = self.order_repo.create_order(session, order)
        ref = LedgerRef(ReferenceKind.ORDER, order.id)

        # 4) Price + reserve each line
        items: list[OrderItem] = []
        for product_id, quantity in merged.items():
            product = products[product_id]
            unit_price = self.pricing.resolve_price(
                session, user_id, product, quantity, now.date()
            )
            item = OrderItem(
                order_id=order.id,
                product_id=product_id,
                product_name=product.name,
                quantity=quantity,
                unit_price=unit_price,
                vat_rate=product.vat_rate,
                discount_amount=ZERO,
            )
            item.total_price = item_subtotal(item) + item_vat(item)
            items.append(item)

        # Product rows are always locked in id order.
        for product_id in sorted(merged):
            self.stock_ledger.reserve(session, product_id, merged[product_id], ref, actor_id)

        # 5) Items, totals, audit
        self.order_repo.create_items(session, items)
        self._apply_totals(order, items)
        self.order_repo.update_order(session, order)

        self.log_action(
            session,
            order,
            OrderLogAction.CREATED,
            f"Order {order.order_number} created",
            actor_id,
            new_value={"status": order.status.value, "grand_total": str(order.grand_total)},
        )
        logger.info(
            "Order %s created for user %s (%d lines, total %s)",
            order.order_number, user_id, len(items), order.grand_total,
        )
        return order

    @staticmethod
    def _validate_lines(
        lines: dict[uuid.UUID, int],
        products: dict[uuid.UUID, Product],
    ) -> list[dict[str, str]]:
        errors: list[dict[str, str]] = []
        for product_id, quantity in lines.items():
            product = products.get(product_id)
            if product is None:
                errors.append({"product_id": str(product_id), "reason": "Product not found"})
                continue
            if not product.is_active:
                errors.append({"product_id": str(product_id), "reason": "Product is inactive"})
                continue
            if quantity <= 0:
                errors.append({"product_id": str(product_id), "reason": "Quantity must be positive"})
                continue
            if quantity < product.min_order_quantity:
                errors.append(
                    {
                        "product_id": str(product_id),
                        "reason": f"Minimum order quantity is {product.min_order_quantity}",
                    }
                )
        return errors

    def _next_order_number(self, session: Session, now: datetime) -> str:
        day = now.date()
        sequence = self.order_repo.next_daily_sequence(session, day)
        return f"{self.settings.ORDER_NUMBER_PREFIX}{day:%Y%m%d}{sequence:04d}"

    # -------- Totals --------

    @staticmethod
    def _apply_totals(order: Order, items: list[OrderItem]) -> None:
        subtotal = sum((money(it.unit_price * it.quantity) for it in items), ZERO)
        vat_total = sum((item_vat(it) for it in items), ZERO)
        discount_total = sum((money(it.discount_amount) for it in items), ZERO)

        order.subtotal = money(subtotal)
        order.vat_total = money(vat_total)
        order.discount_total = money(discount_total)
        order.grand_total = money(
            order.subtotal + order.vat_total - order.discount_total + money(order.shipping_cost)
        )
        order.updated_at = utcnow()

    def recalculate_totals(self, session: Session, order: Order) -> Order:
        """Recompute totals from the stored items. Does not commit."""
        items = self.order_repo.list_items_for_order(session, order.id)
        self._apply_totals(order, items)
        return self.order_repo.update_order(session, order)

    # -------- State machine (no commit) --------

    def transition(
        self,
        session: Session,
        order: Order,
        target: OrderStatus,
        actor_id: uuid.UUID | None = None,
        description: str | None = None,
        action: OrderLogAction = OrderLogAction.STATUS_CHANGED,
    ) -> Order:
        """
        Move `order` to `target` after checking the transition table.

        Raises IllegalTransitionError with no change otherwise.
        """
        current = order.status
        if target not in ALLOWED_TRANSITIONS[current]:
            logger.warning(
                "Rejected order %s transition %s -> %s (actor=%s)",
                order.order_number, current.value, target.value, actor_id,
            )
            raise IllegalTransitionError("order", current.value, target.value)

        if target == OrderStatus.SHIPPED and order.payment_status != PaymentStatus.PAID:
            logger.warning(
                "Rejected shipping of unpaid order %s (actor=%s)", order.order_number, actor_id
            )
            raise IllegalTransitionError("order", current.value, target.value)

        now = utcnow()
        order.status = target
        order.updated_at = now
        if target == OrderStatus.SHIPPED:
            order.shipped_at = now
        elif target == OrderStatus.DELIVERED:
            order.delivered_at = now
        self.order_repo.update_order(session, order)

        self.log_action(
            session,
            order,
            action,
            description or f"Status changed from {current.value} to {target.value}",
            actor_id,
            old_value={"status": current.value},
            new_value={"status": target.value},
        )
        return order

    def set_payment_status(
        self,
        session: Session,
        order: Order,
        target: PaymentStatus,
        actor_id: uuid.UUID | None = None,
        description: str | None = None,
        action: OrderLogAction = OrderLogAction.PAYMENT_STATUS_CHANGED,
    ) -> Order:
        current = order.payment_status
        if current == target:
            return order
        order.payment_status = target
        order.updated_at = utcnow()
        self.order_repo.update_order(session, order)

        self.log_action(
            session,
            order,
            action,
            description or f"Payment status changed from {current.value} to {target.value}",
            actor_id,
            old_value={"payment_status": current.value},
            new_value={"payment_status": target.value},
        )
        return order

    def mark_paid(
        self,
        session: Session,
        order: Order,
        method: PaymentMethod,
        actor_id: uuid.UUID | None = None,
    ) -> Order:
        order.payment_method = method
        return self.set_payment_status(
            session,
            order,
            PaymentStatus.PAID,
            actor_id,
            f"Payment received via {method.value}",
            action=OrderLogAction.PAYMENT_RECEIVED,
        )

    # -------- Transitions (commit) --------

    def update_status(
        self,
        session: Session,
        order_id: uuid.UUID,
        target: OrderStatus,
        actor_id: uuid.UUID | None = None,
        reason: str | None = None,
    ) -> Order:
        """
        Admin-only status update:

          pending   -> confirmed, cancelled
          confirmed -> processing, cancelled

        shipped / delivered are driven by the shipment tracker.
        """
        if target == OrderStatus.CANCELLED:
            return self.cancel(session, order_id, reason or "Cancelled by admin", actor_id)

        with transaction(session):
            order = self._get_locked(session, order_id)
            self.transition(session, order, target, actor_id, reason)
        session.refresh(order)
        return order

    def confirm(
        self,
        session: Session,
        order_id: uuid.UUID,
        actor_id: uuid.UUID | None = None,
    ) -> Order:
        return self.update_status(session, order_id, OrderStatus.CONFIRMED, actor_id)

    def mark_processing(
        self,
        session: Session,
        order_id: uuid.UUID,
        actor_id: uuid.UUID | None = None,
    ) -> Order:
        return self.update_status(session, order_id, OrderStatus.PROCESSING, actor_id)

    # -------- Cancellation --------

    def cancel(
        self,
        session: Session,
        order_id: uuid.UUID,
        reason: str,
        actor_id: uuid.UUID | None = None,
        owner_id: uuid.UUID | None = None,
    ) -> Order:
        """
        Cancel a pending or confirmed order.

        When `owner_id` is given the order must belong to that buyer
        (otherwise it is reported as not found).
        """
        with transaction(session):
            order = self._get_locked(session, order_id)
            if owner_id is not None and order.user_id != owner_id:
                raise NotFoundError("Order", order_id)
            self._cancel_locked(session, order, reason, actor_id)
        session.refresh(order)
        return order

    def _cancel_locked(
        self,
        session: Session,
        order: Order,
        reason: str,
        actor_id: uuid.UUID | None,
    ) -> None:
        """
        Steps (inside the caller's transaction, order row locked):
          1. Check the order can still be cancelled.
          2. Release every line back to stock.
          3. Refund: balance payments are deposited back; every paid
             order ends with payment_status = refunded.
          4. Cancel open payment attempts.
          5. Note the reason and move to cancelled.
        """
        if not order.can_be_cancelled():
            logger.warning(
                "Rejected cancel of order %s in status %s (actor=%s)",
                order.order_number, order.status.value, actor_id,
            )
            raise IllegalTransitionError("order", order.status.value, OrderStatus.CANCELLED.value)

        ref = LedgerRef(ReferenceKind.ORDER, order.id)
        items = self.order_repo.list_items_for_order(session, order.id)
        for item in sorted(items, key=lambda it: it.product_id):
            self.stock_ledger.release(
                session,
                item.product_id,
                item.quantity,
                ref,
                actor_id,
                f"Order {order.order_number} cancelled",
            )

        if order.payment_status == PaymentStatus.PAID:
            if order.payment_method == PaymentMethod.BALANCE:
                self.balance_ledger.deposit(
                    session,
                    order.user_id,
                    order.grand_total,
                    f"Refund for cancelled order {order.order_number}",
                    actor_id,
                    reference=ref,
                    kind=BalanceTransactionType.REFUND,
                )
            self.set_payment_status(session, order, PaymentStatus.REFUNDED, actor_id)

        for txn in self.payment_repo.list_pending_for_order(session, order.id):
            txn.status = PaymentTransactionStatus.CANCELLED
            txn.processed_at = utcnow()
            self.payment_repo.update(session, txn)

        self._append_internal_note(order, f"Cancelled: {reason}")
        self.transition(
            session,
            order,
            OrderStatus.CANCELLED,
            actor_id,
            f"Order cancelled: {reason}",
            action=OrderLogAction.CANCELLED,
        )
        logger.info("Order %s cancelled (%s, actor=%s)", order.order_number, reason, actor_id)

    def cancel_expired(self, session: Session, now: datetime | None = None) -> list[Order]:
        """
        Cancel orders still pending and unpaid after PAYMENT_TIMEOUT_HOURS.

        Each order is cancelled in its own transaction; a failure is
        logged and the sweep moves on.
        """
        now = now or utcnow()
        cutoff = now - timedelta(hours=self.settings.PAYMENT_TIMEOUT_HOURS)
        candidate_ids = [o.id for o in self.order_repo.list_expired_pending(session, cutoff)]
        session.commit()

        cancelled: list[Order] = []
        for order_id in candidate_ids:
            try:
                with transaction(session):
                    order = self.order_repo.get_for_update(session, order_id)
                    # Paid or cancelled since the candidate query
                    if (
                        order is None
                        or order.status != OrderStatus.PENDING
                        or order.payment_status != PaymentStatus.PENDING
                    ):
                        continue
                    self._cancel_locked(session, order, PAYMENT_TIMEOUT_REASON, None)
                cancelled.append(order)
            except (CommerceError, SQLAlchemyError):
                logger.exception("Auto-cancel failed for order %s", order_id)

        if candidate_ids:
            logger.info(
                "Payment timeout sweep: %d candidates, %d cancelled",
                len(candidate_ids), len(cancelled),
            )
        return cancelled

    # -------- Editing --------

    def add_internal_note(
        self,
        session: Session,
        order_id: uuid.UUID,
        note: str,
        actor_id: uuid.UUID | None = None,
    ) -> Order:
        with transaction(session):
            order = self._get_locked(session, order_id)
            self._append_internal_note(order, note)
            order.updated_at = utcnow()
            self.order_repo.update_order(session, order)
            self.log_action(session, order, OrderLogAction.NOTE_ADDED, note, actor_id)
        session.refresh(order)
        return order

    def update_item_quantity(
        self,
        session: Session,
        order_id: uuid.UUID,
        item_id: uuid.UUID,
        quantity: int,
        actor_id: uuid.UUID | None = None,
    ) -> Order:
        """
        Change one line's quantity on a pending, unpaid order.

        The difference is reserved or released and the totals are
        recomputed; the captured unit price is kept.
        """
        with transaction(session):
            order = self._get_locked(session, order_id)
            if not order.is_editable() or order.payment_status != PaymentStatus.PENDING:
                raise ValidationFailedError(
                    f"Order {order.order_number} can no longer be edited"
                )

            item = self.order_repo.get_item(session, item_id)
            if item is None or item.order_id != order.id:
                raise NotFoundError("Order item", item_id)

            product = self.product_repo.get_by_id(session, item.product_id)
            min_quantity = product.min_order_quantity if product else 1
            if quantity <= 0 or quantity < min_quantity:
                raise ValidationFailedError(f"Minimum order quantity is {min_quantity}")

            old_quantity = item.quantity
            if quantity == old_quantity:
                return order

            ref = LedgerRef(ReferenceKind.ORDER, order.id)
            diff = quantity - old_quantity
            if diff > 0:
                self.stock_ledger.reserve(session, item.product_id, diff, ref, actor_id)
            else:
                self.stock_ledger.release(
                    session, item.product_id, -diff, ref, actor_id,
                    f"Quantity reduced on order {order.order_number}",
                )

            item.quantity = quantity
            item.total_price = item_subtotal(item) + item_vat(item)
            self.order_repo.update_item(session, item)
            self.recalculate_totals(session, order)

            self.log_action(
                session,
                order,
                OrderLogAction.ITEM_UPDATED,
                f"Quantity of {item.product_name} changed from {old_quantity} to {quantity}",
                actor_id,
                old_value={"item_id": str(item.id), "quantity": old_quantity},
                new_value={"item_id": str(item.id), "quantity": quantity},
            )
        session.refresh(order)
        return order

    # -------- Reads --------

    def get_order(self, session: Session, order_id: uuid.UUID) -> Order:
        order = self.order_repo.get_by_id(session, order_id)
        if not order:
            raise NotFoundError("Order", order_id)
        return order

    def get_user_order(
        self,
        session: Session,
        user_id: uuid.UUID,
        order_number: str,
    ) -> Order:
        """404 if the order does not exist or does not belong to this user."""
        order = self.order_repo.get_by_number(session, order_number)
        if not order or order.user_id != user_id:
            raise NotFoundError("Order", order_number)
        return order

    def list_user_orders(
        self,
        session: Session,
        user_id: uuid.UUID,
        skip: int = 0,
        limit: int = 50,
        status: OrderStatus | None = None,
        payment_status: PaymentStatus | None = None,
    ) -> list[Order]:
        return self.order_repo.list_for_user(
            session, user_id, skip, limit, status, payment_status
        )

    def list_all_orders(
        self,
        session: Session,
        skip: int = 0,
        limit: int = 50,
        status: OrderStatus | None = None,
    ) -> list[Order]:
        return self.order_repo.list_all(session, skip, limit, status)

    def list_logs(self, session: Session, order_id: uuid.UUID) -> list[OrderLog]:
        self.get_order(session, order_id)
        return self.order_repo.list_logs(session, order_id)

    # -------- Helper DTO builder --------

    def build_detail(self, session: Session, order: Order, admin: bool = False) -> OrderWithItemsRead:
        """
        Compose the order view with items and per-line subtotal / VAT.
        """
        items = self.order_repo.list_items_for_order(session, order.id)
        item_dtos = [
            OrderItemRead(
                id=it.id,
                order_id=it.order_id,
                product_id=it.product_id,
                product_name=it.product_name,
                quantity=it.quantity,
                unit_price=it.unit_price,
                vat_rate=it.vat_rate,
                discount_amount=it.discount_amount,
                subtotal=item_subtotal(it),
                vat_amount=item_vat(it),
                total_price=it.total_price,
            )
            for it in items
        ]
        data = OrderRead.model_validate(order).model_dump()
        data["items"] = item_dtos
        if admin:
            data["internal_notes"] = order.internal_notes
            return OrderAdminRead.model_validate(data)
        return OrderWithItemsRead.model_validate(data)

    # -------- Internals --------

    def _get_locked(self, session: Session, order_id: uuid.UUID) -> Order:
        order = self.order_repo.get_for_update(session, order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    @staticmethod
    def _append_internal_note(order: Order, note: str) -> None:
        line = f"[{utcnow():%Y-%m-%d %H:%M}] {note}"
        order.internal_notes = f"{order.internal_notes}\n{line}" if order.internal_notes else line

    def log_action(
        self,
        session: Session,
        order: Order,
        action: OrderLogAction,
        description: str,
        actor_id: uuid.UUID | None,
        old_value: dict[str, Any] | None = None,
        new_value: dict[str, Any] | None = None,
    ) -> OrderLog:
        log = OrderLog(
            order_id=order.id,
            user_id=actor_id,
            action=action,
            description=description,
            old_value=old_value,
            new_value=new_value,
        )
        return self.order_repo.add_log(session, log)

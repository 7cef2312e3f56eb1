import logging
import uuid

from sqlmodel import Session

from app.core.errors import InsufficientStockError, NotFoundError, ValidationFailedError
from app.models.ledger import LedgerRef, StockMovement, StockMovementType
from app.models.product import Product
from app.repositories.ledger_repo import LedgerRepository
from app.repositories.product_repo import ProductRepository

logger = logging.getLogger(__name__)


class StockLedger:
    """
    Owns every change to Product.stock_quantity.

    Each operation:
      1. Locks the product row (SELECT ... FOR UPDATE)
      2. Validates the change
      3. Writes the new quantity
      4. Appends exactly one StockMovement

    All inside the caller's transaction: nothing is committed here, so
    a failure later in the same transaction undoes the movement too.
    """

    def __init__(self, product_repo: ProductRepository, ledger_repo: LedgerRepository):
        self.product_repo = product_repo
        self.ledger_repo = ledger_repo

    # ---- Operations ----

    def reserve(
        self,
        session: Session,
        product_id: uuid.UUID,
        quantity: int,
        order_ref: LedgerRef,
        actor_id: uuid.UUID | None = None,
    ) -> StockMovement:
        """Take `quantity` units for an order; stock is decremented right away."""
        product = self._lock(session, product_id, quantity)
        if product.stock_quantity < quantity:
            logger.info(
                "Stock reserve refused for product %s: have %s, requested %s (%s %s, actor=%s)",
                product_id, product.stock_quantity, quantity, order_ref.kind.value, order_ref.id, actor_id,
            )
            raise InsufficientStockError(product_id, product.stock_quantity, quantity)
        return self._apply(
            session, product, -quantity, StockMovementType.RESERVED,
            f"Reserved for order {order_ref.id}", order_ref, actor_id,
        )

    def release(
        self,
        session: Session,
        product_id: uuid.UUID,
        quantity: int,
        order_ref: LedgerRef,
        actor_id: uuid.UUID | None = None,
        description: str | None = None,
    ) -> StockMovement:
        """Give back units previously reserved for an order."""
        product = self._lock(session, product_id, quantity)
        return self._apply(
            session, product, quantity, StockMovementType.CANCELLED,
            description or f"Released from order {order_ref.id}", order_ref, actor_id,
        )

    def commit_out(
        self,
        session: Session,
        product_id: uuid.UUID,
        quantity: int,
        reason: str,
        actor_id: uuid.UUID | None = None,
        reference: LedgerRef | None = None,
    ) -> StockMovement:
        product = self._lock(session, product_id, quantity)
        if product.stock_quantity < quantity:
            logger.info(
                "Stock out refused for product %s: have %s, requested %s (actor=%s)",
                product_id, product.stock_quantity, quantity, actor_id,
            )
            raise InsufficientStockError(product_id, product.stock_quantity, quantity)
        return self._apply(
            session, product, -quantity, StockMovementType.OUT, reason, reference, actor_id,
        )

    def commit_in(
        self,
        session: Session,
        product_id: uuid.UUID,
        quantity: int,
        reason: str,
        actor_id: uuid.UUID | None = None,
        reference: LedgerRef | None = None,
    ) -> StockMovement:
        product = self._lock(session, product_id, quantity)
        return self._apply(
            session, product, quantity, StockMovementType.IN, reason, reference, actor_id,
        )

    def adjust(
        self,
        session: Session,
        product_id: uuid.UUID,
        new_quantity: int,
        reason: str,
        actor_id: uuid.UUID | None = None,
    ) -> StockMovement:
        """Set an absolute stock count (stock take). The difference is recorded."""
        if new_quantity < 0:
            raise ValidationFailedError("Stock quantity cannot be negative")
        product = self.product_repo.get_for_update(session, product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        delta = new_quantity - product.stock_quantity
        return self._apply(
            session, product, delta, StockMovementType.ADJUSTMENT, reason, None, actor_id,
        )

    # ---- History ----

    def movements(
        self,
        session: Session,
        product_id: uuid.UUID,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[StockMovement]:
        return self.ledger_repo.list_movements(session, product_id, skip, limit)

    def movements_for(self, session: Session, ref: LedgerRef) -> list[StockMovement]:
        """Every movement written on behalf of one order / payment, oldest first."""
        return self.ledger_repo.list_movements_for_reference(session, ref)

    def resolve_reference(self, session: Session, ref: LedgerRef):
        return self.ledger_repo.resolve_reference(session, ref)

    def verify(self, session: Session, product_id: uuid.UUID) -> bool:
        """
        Replay the movement trail and check it against the stored count.

        True when every row chains onto the previous one and the last
        stock_after equals Product.stock_quantity (or there are no rows).
        """
        product = self.product_repo.get_by_id(session, product_id)
        if product is None:
            raise NotFoundError("Product", product_id)

        rows = self.ledger_repo.list_movements(session, product_id)
        previous_after: int | None = None
        for row in rows:
            if row.stock_after != row.stock_before + row.quantity:
                return False
            if previous_after is not None and row.stock_before != previous_after:
                return False
            previous_after = row.stock_after

        return previous_after is None or previous_after == product.stock_quantity

    # ---- Internals ----

    def _lock(self, session: Session, product_id: uuid.UUID, quantity: int) -> Product:
        if quantity <= 0:
            raise ValidationFailedError("Quantity must be greater than zero")
        product = self.product_repo.get_for_update(session, product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        return product

    def _apply(
        self,
        session: Session,
        product: Product,
        delta: int,
        movement_type: StockMovementType,
        description: str | None,
        reference: LedgerRef | None,
        actor_id: uuid.UUID | None,
    ) -> StockMovement:
        before = product.stock_quantity
        after = before + delta

        product.stock_quantity = after
        self.product_repo.update(session, product)

        movement = StockMovement(
            product_id=product.id,
            type=movement_type,
            quantity=delta,
            stock_before=before,
            stock_after=after,
            reference_type=reference.kind if reference else None,
            reference_id=reference.id if reference else None,
            description=description,
            created_by=actor_id,
        )
        return self.ledger_repo.add_movement(session, movement)

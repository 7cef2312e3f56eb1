import uuid
from datetime import date

from sqlalchemy import func, or_
from sqlmodel import Session, select

from app.models.company import CustomerGroup, UserGroupLink
from app.models.product import CustomPrice, Product


class ProductRepository:
    """
    Data access layer for Product and its pricing data
    (custom prices, customer group membership).

    - Pure DB operations, no business logic.
    - No commits; callers own the transaction.
    """

    # ----- Products -----

    def get_by_id(self, session: Session, product_id: uuid.UUID) -> Product | None:
        return session.get(Product, product_id)

    def get_for_update(self, session: Session, product_id: uuid.UUID) -> Product | None:
        """
        Load a product with a row lock (SELECT ... FOR UPDATE), refreshing
        any stale copy already in the identity map.
        """
        stmt = (
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(stmt).first()

    def get_many(self, session: Session, product_ids: list[uuid.UUID]) -> dict[uuid.UUID, Product]:
        if not product_ids:
            return {}
        stmt = select(Product).where(Product.id.in_(product_ids))
        return {p.id: p for p in session.exec(stmt).all()}

    def update(self, session: Session, product: Product) -> Product:
        session.add(product)
        session.flush()
        return product

    # ----- Pricing -----

    @staticmethod
    def _active_window(stmt, on_date: date, quantity: int):
        return stmt.where(
            CustomPrice.min_quantity <= quantity,
            or_(CustomPrice.start_date.is_(None), CustomPrice.start_date <= on_date),
            or_(CustomPrice.end_date.is_(None), CustomPrice.end_date >= on_date),
        )

    def best_user_price(
        self,
        session: Session,
        product_id: uuid.UUID,
        user_id: uuid.UUID,
        quantity: int,
        on_date: date,
    ) -> CustomPrice | None:
        """Buyer-specific price with the highest satisfied min_quantity."""
        stmt = select(CustomPrice).where(
            CustomPrice.product_id == product_id,
            CustomPrice.user_id == user_id,
        )
        stmt = self._active_window(stmt, on_date, quantity)
        stmt = stmt.order_by(CustomPrice.min_quantity.desc(), CustomPrice.price)
        return session.exec(stmt).first()

    def best_group_price(
        self,
        session: Session,
        product_id: uuid.UUID,
        group_ids: list[uuid.UUID],
        quantity: int,
        on_date: date,
    ) -> CustomPrice | None:
        """Lowest qualifying price across groups, ties by highest min_quantity."""
        if not group_ids:
            return None
        stmt = select(CustomPrice).where(
            CustomPrice.product_id == product_id,
            CustomPrice.group_id.in_(group_ids),
        )
        stmt = self._active_window(stmt, on_date, quantity)
        stmt = stmt.order_by(CustomPrice.price, CustomPrice.min_quantity.desc())
        return session.exec(stmt).first()

    def active_group_ids(self, session: Session, user_id: uuid.UUID) -> list[uuid.UUID]:
        stmt = (
            select(CustomerGroup.id)
            .join(UserGroupLink, UserGroupLink.group_id == CustomerGroup.id)
            .where(UserGroupLink.user_id == user_id, CustomerGroup.is_active == True)
        )
        return list(session.exec(stmt).all())

    def max_group_discount(self, session: Session, user_id: uuid.UUID):
        """Highest discount_percentage among the user's active groups (or None)."""
        stmt = (
            select(func.max(CustomerGroup.discount_percentage))
            .join(UserGroupLink, UserGroupLink.group_id == CustomerGroup.id)
            .where(UserGroupLink.user_id == user_id, CustomerGroup.is_active == True)
        )
        return session.exec(stmt).one()

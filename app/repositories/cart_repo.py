# app/repositories/cart_repo.py
import uuid
from sqlmodel import Session, select
from app.models.cart import CartItem


class CartRepository:
    """
    Data access for cart lines.

    Writes only flush: order creation clears the cart inside its own
    transaction, so the caller decides when to commit.
    """

    # Get items for a user
    def list_for_user(self, session: Session, user_id: uuid.UUID) -> list[CartItem]:
        stmt = (
            select(CartItem)
            .where(CartItem.user_id == user_id)
            .order_by(CartItem.created_at)
        )
        return list(session.exec(stmt).all())

    def get_item(
        self, session: Session, user_id: uuid.UUID, product_id: uuid.UUID
    ) -> CartItem | None:
        stmt = select(CartItem).where(
            CartItem.user_id == user_id, CartItem.product_id == product_id
        )
        return session.exec(stmt).first()

    # CRUD
    def save(self, session: Session, item: CartItem) -> CartItem:
        session.add(item)
        session.flush()
        return item

    def delete(self, session: Session, item: CartItem) -> None:
        session.delete(item)
        session.flush()

    def clear_user_cart(self, session: Session, user_id: uuid.UUID) -> int:
        rows = self.list_for_user(session, user_id)
        for row in rows:
            session.delete(row)
        session.flush()
        return len(rows)

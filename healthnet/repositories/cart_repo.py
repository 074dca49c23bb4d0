# healthnet/repositories/cart_repo.py
import uuid

from sqlmodel import Session, select

from healthnet.models.cart import Cart, CartItem


class CartRepository:
    """
    Data access layer for carts and cart_items.

    Writes only flush; CartService commits once per operation, after the
    totals have been recalculated.
    """

    # ---- Carts ----

    def get_for_user(self, session: Session, user_id: uuid.UUID) -> Cart | None:
        stmt = select(Cart).where(Cart.user_id == user_id)
        return session.exec(stmt).first()

    def get_by_id(self, session: Session, cart_id: uuid.UUID) -> Cart | None:
        return session.get(Cart, cart_id)

    def save_cart(self, session: Session, cart: Cart) -> Cart:
        session.add(cart)
        session.flush()
        return cart

    # ---- Items ----

    def list_items(self, session: Session, cart_id: uuid.UUID) -> list[CartItem]:
        stmt = select(CartItem).where(CartItem.cart_id == cart_id).order_by(CartItem.created_at)
        return list(session.exec(stmt).all())

    def get_item(
        self, session: Session, cart_id: uuid.UUID, drug_id: uuid.UUID
    ) -> CartItem | None:
        stmt = select(CartItem).where(
            CartItem.cart_id == cart_id, CartItem.drug_id == drug_id
        )
        return session.exec(stmt).first()

    def get_item_by_id(self, session: Session, item_id: uuid.UUID) -> CartItem | None:
        return session.get(CartItem, item_id)

    def save_item(self, session: Session, item: CartItem) -> CartItem:
        session.add(item)
        session.flush()
        return item

    def delete_item(self, session: Session, item: CartItem) -> None:
        session.delete(item)
        session.flush()

    def delete_all_items(self, session: Session, cart_id: uuid.UUID) -> None:
        for row in self.list_items(session, cart_id):
            session.delete(row)
        session.flush()

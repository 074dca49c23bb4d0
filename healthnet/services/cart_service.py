# healthnet/services/cart_service.py
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from healthnet.core.config import get_settings
from healthnet.core.exceptions import (
    InsufficientStock,
    NotFound,
    OwnershipViolation,
    Unavailable,
)
from healthnet.core.money import to_money
from healthnet.models.cart import Cart, CartItem
from healthnet.models.drug import Drug
from healthnet.repositories.cart_repo import CartRepository
from healthnet.repositories.drug_repo import DrugRepository
from healthnet.schemas.cart import (
    CartIssue,
    CartItemCreate,
    CartItemRead,
    CartItemUpdate,
    CartRead,
    CartValidation,
)
from healthnet.services.inventory_service import is_available, is_in_stock

logger = logging.getLogger(__name__)
settings = get_settings()


class CartService:
    """
    Business logic for cart operations.

    Responsibilities:
      - exactly one cart per user, created lazily
      - availability and stock checks on every quantity change
      - unit_price snapshot at add time (staleness is reported by
        validate_items, never auto-corrected)
      - totals derived from items by recalculate_totals only
    """

    def __init__(self, cart_repo: CartRepository, drug_repo: DrugRepository):
        self.cart_repo = cart_repo
        self.drug_repo = drug_repo

    # ---- internal helpers ----

    def _commit(self, session: Session, cart: Cart) -> Cart:
        try:
            self.recalculate_totals(session, cart)
            session.commit()
        except Exception:
            session.rollback()
            raise
        session.refresh(cart)
        return cart

    def _owned_item(self, session: Session, user_id: uuid.UUID, item_id: uuid.UUID) -> CartItem:
        item = self.cart_repo.get_item_by_id(session, item_id)
        if item is None:
            raise NotFound("Cart item not found")
        cart = self.cart_repo.get_by_id(session, item.cart_id)
        if cart is None or cart.user_id != user_id:
            raise OwnershipViolation("cart item")
        return item

    # ---- engine ----

    def get_or_create_cart(self, session: Session, user_id: uuid.UUID) -> Cart:
        cart = self.cart_repo.get_for_user(session, user_id)
        if cart is not None:
            return cart

        try:
            cart = self.cart_repo.save_cart(session, Cart(user_id=user_id))
            session.commit()
        except IntegrityError:
            # another request created it first
            session.rollback()
            cart = self.cart_repo.get_for_user(session, user_id)
            if cart is None:
                raise
            return cart

        session.refresh(cart)
        return cart

    def recalculate_totals(self, session: Session, cart: Cart) -> Cart:
        """
        subtotal = sum of line totals, tax = subtotal x TAX_RATE,
        total = subtotal + tax, total_items = sum of quantities.
        Flushes only.
        """
        items = self.cart_repo.list_items(session, cart.id)

        subtotal = to_money(sum((i.total_price for i in items), Decimal("0")))
        tax_amount = to_money(subtotal * settings.TAX_RATE)

        cart.subtotal = subtotal
        cart.tax_amount = tax_amount
        cart.total_amount = to_money(subtotal + tax_amount)
        cart.total_items = sum(i.quantity for i in items)
        cart.updated_at = datetime.now(timezone.utc)
        return self.cart_repo.save_cart(session, cart)

    def add_item(self, session: Session, cart: Cart, drug: Drug, quantity: int) -> Cart:
        """
        Add `quantity` units of `drug`.

        An existing line for the same drug grows instead of duplicating;
        the stock check runs against the combined quantity.
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")
        if not is_available(drug):
            raise Unavailable(
                f"'{drug.name}' is currently unavailable",
                details={"drug_id": str(drug.id), "drug_name": drug.name},
            )

        item = self.cart_repo.get_item(session, cart.id, drug.id)
        requested = quantity + (item.quantity if item else 0)
        if not is_in_stock(drug, requested):
            raise InsufficientStock(drug.name, requested, drug.stock)

        if item is not None:
            item.quantity = requested
            item.total_price = to_money(item.unit_price * requested)
        else:
            unit_price = to_money(drug.price)
            item = CartItem(
                cart_id=cart.id,
                drug_id=drug.id,
                quantity=quantity,
                unit_price=unit_price,
                total_price=to_money(unit_price * quantity),
            )
        try:
            self.cart_repo.save_item(session, item)
        except Exception:
            session.rollback()
            raise

        return self._commit(session, cart)

    def update_item_quantity(self, session: Session, item: CartItem, quantity: int) -> Cart:
        cart = self.cart_repo.get_by_id(session, item.cart_id)
        if quantity <= 0:
            return self.remove_item(session, item)

        drug = self.drug_repo.get_by_id(session, item.drug_id)
        if not is_available(drug):
            raise Unavailable(
                "This drug is no longer available",
                details={"drug_id": str(item.drug_id)},
            )
        if not is_in_stock(drug, quantity):
            raise InsufficientStock(drug.name, quantity, drug.stock)

        item.quantity = quantity
        item.total_price = to_money(item.unit_price * quantity)
        try:
            self.cart_repo.save_item(session, item)
        except Exception:
            session.rollback()
            raise

        return self._commit(session, cart)

    def remove_item(self, session: Session, item: CartItem) -> Cart:
        cart = self.cart_repo.get_by_id(session, item.cart_id)
        try:
            self.cart_repo.delete_item(session, item)
        except Exception:
            session.rollback()
            raise
        return self._commit(session, cart)

    def clear_items(self, session: Session, cart: Cart) -> Cart:
        """Empty the cart inside the caller's transaction."""
        self.cart_repo.delete_all_items(session, cart.id)
        return self.recalculate_totals(session, cart)

    def clear(self, session: Session, cart: Cart) -> Cart:
        """Delete every item and zero the totals; the cart row stays."""
        try:
            self.cart_repo.delete_all_items(session, cart.id)
        except Exception:
            session.rollback()
            raise
        return self._commit(session, cart)

    def validate_items(self, session: Session, cart: Cart) -> list[CartIssue]:
        """
        Diagnostic pass before checkout. Never mutates.
        """
        issues: list[CartIssue] = []

        for item in self.cart_repo.list_items(session, cart.id):
            drug = self.drug_repo.get_by_id(session, item.drug_id)

            if not is_available(drug):
                issues.append(
                    CartIssue(
                        item_id=item.id,
                        drug_id=item.drug_id,
                        drug_name=drug.name if drug else None,
                        type="no_longer_available",
                        message="This drug is no longer available",
                    )
                )
                continue

            if not is_in_stock(drug, item.quantity):
                issues.append(
                    CartIssue(
                        item_id=item.id,
                        drug_id=item.drug_id,
                        drug_name=drug.name,
                        type="insufficient_stock",
                        message=f"Only {drug.stock} units available",
                        requested=item.quantity,
                        available=drug.stock,
                    )
                )

            if to_money(drug.price) != to_money(item.unit_price):
                issues.append(
                    CartIssue(
                        item_id=item.id,
                        drug_id=item.drug_id,
                        drug_name=drug.name,
                        type="price_changed",
                        message="Price has changed since this item was added",
                        old_price=to_money(item.unit_price),
                        new_price=to_money(drug.price),
                    )
                )

        return issues

    # ---- user-facing operations ----

    def get_cart(self, session: Session, user_id: uuid.UUID) -> CartRead:
        cart = self.get_or_create_cart(session, user_id)
        return self._build_cart_dto(session, cart)

    def add_to_cart(
        self,
        session: Session,
        user_id: uuid.UUID,
        payload: CartItemCreate,
    ) -> CartRead:
        drug = self.drug_repo.get_by_id(session, payload.drug_id)
        if drug is None:
            raise NotFound("Drug not found")

        cart = self.get_or_create_cart(session, user_id)
        cart = self.add_item(session, cart, drug, payload.quantity)
        return self._build_cart_dto(session, cart)

    def update_cart_item(
        self,
        session: Session,
        user_id: uuid.UUID,
        item_id: uuid.UUID,
        payload: CartItemUpdate,
    ) -> CartRead:
        item = self._owned_item(session, user_id, item_id)
        cart = self.update_item_quantity(session, item, payload.quantity)
        return self._build_cart_dto(session, cart)

    def remove_cart_item(
        self,
        session: Session,
        user_id: uuid.UUID,
        item_id: uuid.UUID,
    ) -> CartRead:
        item = self._owned_item(session, user_id, item_id)
        cart = self.remove_item(session, item)
        return self._build_cart_dto(session, cart)

    def clear_cart(self, session: Session, user_id: uuid.UUID) -> CartRead:
        cart = self.get_or_create_cart(session, user_id)
        cart = self.clear(session, cart)
        return self._build_cart_dto(session, cart)

    def validate_cart(self, session: Session, user_id: uuid.UUID) -> CartValidation:
        cart = self.get_or_create_cart(session, user_id)
        issues = self.validate_items(session, cart)
        return CartValidation(valid=not issues, issues=issues)

    # ---- DTO builder ----

    def _build_cart_dto(self, session: Session, cart: Cart) -> CartRead:
        item_reads: list[CartItemRead] = []
        for it in self.cart_repo.list_items(session, cart.id):
            drug = self.drug_repo.get_by_id(session, it.drug_id)
            item_reads.append(
                CartItemRead(
                    id=it.id,
                    cart_id=it.cart_id,
                    drug_id=it.drug_id,
                    drug_name=drug.name if drug else None,
                    drug_slug=drug.slug if drug else None,
                    quantity=it.quantity,
                    unit_price=it.unit_price,
                    total_price=it.total_price,
                    created_at=it.created_at,
                )
            )

        return CartRead(
            id=cart.id,
            user_id=cart.user_id,
            items=item_reads,
            subtotal=cart.subtotal,
            tax_amount=cart.tax_amount,
            total_amount=cart.total_amount,
            total_items=cart.total_items,
            updated_at=cart.updated_at,
        )

# healthnet/services/order_service.py
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from fastapi import HTTPException, status
from sqlmodel import Session

from healthnet.core.config import get_settings
from healthnet.core.exceptions import (
    InsufficientStock,
    InvalidTransition,
    NotFound,
    OwnershipViolation,
    Unavailable,
)
from healthnet.core.money import to_money
from healthnet.models.cart import Cart
from healthnet.models.drug import Drug
from healthnet.models.order import (
    STATUS_DESCRIPTIONS,
    STATUS_LABELS,
    Order,
    OrderItem,
    OrderPaymentStatus,
    OrderStatus,
    can_transition_to,
)
from healthnet.models.user import User
from healthnet.repositories.cart_repo import CartRepository
from healthnet.repositories.order_repo import OrderRepository
from healthnet.repositories.stats_repo import StatsRepository
from healthnet.schemas.order import (
    CheckoutCreate,
    DeliveryDetails,
    OrderCreate,
    OrderItemInput,
    OrderItemRead,
    OrderRead,
    OrderStatusUpdate,
    OrderWithItemsRead,
)
from healthnet.schemas.stats import (
    LatestOrderSummary,
    OrderAnalytics,
    OrderStatistics,
    TopSellingDrug,
)
from healthnet.services.cart_service import CartService
from healthnet.services.delivery_service import DeliveryService
from healthnet.services.inventory_service import InventoryService, is_available, is_in_stock

logger = logging.getLogger(__name__)
settings = get_settings()

ORDER_NUMBER_ATTEMPTS = 5

# Orders needing admin follow-up
ATTENTION_PAID_WAITING = timedelta(hours=24)
ATTENTION_DELIVERING_STALLED = timedelta(days=3)


class OrderService:
    """
    Business logic for orders.

    Responsibilities:
      - Create orders from an item list or from the caller's cart
      - Re-validate every drug against live stock and price
      - Compute subtotal, tax and delivery fee server-side
      - Decrement stock in the same transaction as the order insert
      - Drive the status state machine (restock on cancellation)
    """

    def __init__(
        self,
        order_repo: OrderRepository,
        cart_repo: CartRepository,
        stats_repo: StatsRepository,
        inventory: InventoryService,
        cart_service: CartService,
        delivery: DeliveryService,
    ):
        self.order_repo = order_repo
        self.cart_repo = cart_repo
        self.stats_repo = stats_repo
        self.inventory = inventory
        self.cart_service = cart_service
        self.delivery = delivery

    # -------- Order creation --------

    def create_order_from_items(
        self,
        session: Session,
        items: list[OrderItemInput],
        details: DeliveryDetails,
        user: User,
        *,
        cart: Cart | None = None,
    ) -> Order:
        """
        Place an order as one atomic unit.

        Steps:
          1. Merge duplicate drug lines.
          2. Lock and re-validate each drug (availability, stock).
          3. Compute subtotal from live prices, tax, delivery fee.
          4. Insert Order (status='placed', payment_status='pending').
          5. Insert OrderItem snapshots.
          6. Conditionally decrement stock for every line.
          7. Clear the cart when checking out from one.
          8. Commit; any failure rolls everything back.
        """
        lines = self._merge_lines(items)
        if not lines:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Order must contain at least one item",
            )

        try:
            validated = self._validate_items(session, lines)

            subtotal = to_money(
                sum((drug.price * qty for drug, qty in validated), Decimal("0"))
            )
            tax_amount = to_money(subtotal * settings.TAX_RATE)
            delivery_fee = self.delivery.calculate_fee(session, details.delivery_area, subtotal)
            total_amount = to_money(subtotal + tax_amount + delivery_fee)

            order = Order(
                order_number=self._generate_order_number(session),
                user_id=user.id,
                subtotal=subtotal,
                tax_amount=tax_amount,
                delivery_fee=delivery_fee,
                total_amount=total_amount,
                total_items=sum(qty for _, qty in validated),
                status=OrderStatus.PLACED.value,
                payment_status=OrderPaymentStatus.PENDING.value,
                phone_number=details.phone_number,
                delivery_notes=details.delivery_notes,
                delivery_area=details.delivery_area,
                delivery_address=details.delivery_address,
                landmark=details.landmark,
            )
            order = self.order_repo.create_order(session, order)

            order_items = [
                OrderItem(
                    order_id=order.id,
                    drug_id=drug.id,
                    drug_name=drug.name,
                    drug_slug=drug.slug,
                    drug_description=drug.description,
                    quantity=qty,
                    unit_price=to_money(drug.price),
                    total_price=to_money(drug.price * qty),
                )
                for drug, qty in validated
            ]
            self.order_repo.create_items(session, order_items)

            for drug, qty in validated:
                self.inventory.decrement_stock(session, drug, qty)

            if cart is not None:
                self.cart_service.clear_items(session, cart)

            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(order)
        logger.info(
            "Order placed: %s user=%s items=%s total=%s",
            order.order_number,
            user.id,
            order.total_items,
            order.total_amount,
        )
        return order

    def create_order_from_cart(
        self,
        session: Session,
        user: User,
        details: DeliveryDetails,
    ) -> Order:
        cart = self.cart_repo.get_for_user(session, user.id)
        cart_items = self.cart_repo.list_items(session, cart.id) if cart else []
        if not cart_items:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cart is empty",
            )

        items = [OrderItemInput(drug_id=ci.drug_id, quantity=ci.quantity) for ci in cart_items]
        return self.create_order_from_items(session, items, details, user, cart=cart)

    # -------- State machine --------

    def update_status(
        self,
        session: Session,
        order: Order,
        new_status: OrderStatus | str,
        actor: User,
    ) -> Order:
        """
        State machine:

          placed     -> delivering, cancelled
          delivering -> delivered, cancelled
          delivered  -> (terminal)
          cancelled  -> (terminal)

        Cancelling returns every line's quantity to stock in the same
        transaction. Illegal transitions raise InvalidTransition and
        leave the order untouched.
        """
        current = OrderStatus(order.status)
        target = OrderStatus(new_status)

        if not can_transition_to(current, target):
            raise InvalidTransition(current.value, target.value)

        now = datetime.now(timezone.utc)
        values = {"status_updated_at": now, "status_updated_by": actor.id}
        if target == OrderStatus.DELIVERED:
            values["delivered_at"] = now

        try:
            moved = self.order_repo.transition_status(
                session, order.id, current.value, target.value, **values
            )
            if not moved:
                session.refresh(order)
                raise InvalidTransition(order.status, target.value)

            if target == OrderStatus.CANCELLED:
                self._restock(session, order)

            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(order)
        logger.info(
            "Order %s status %s -> %s by %s",
            order.order_number,
            current.value,
            target.value,
            actor.id,
        )
        return order

    def confirm_delivery(self, session: Session, order: Order, user: User) -> Order:
        if order.user_id != user.id:
            raise OwnershipViolation("order")
        if order.status != OrderStatus.DELIVERING.value:
            raise InvalidTransition(
                order.status,
                OrderStatus.DELIVERED.value,
                "Order cannot be confirmed as delivered",
            )
        return self.update_status(session, order, OrderStatus.DELIVERED, user)

    def mark_as_delivering(self, session: Session, order: Order, admin: User) -> Order:
        if (
            order.status != OrderStatus.PLACED.value
            or order.payment_status != OrderPaymentStatus.PAID.value
        ):
            raise InvalidTransition(
                order.status,
                OrderStatus.DELIVERING.value,
                "Only placed and paid orders can be sent out for delivery",
            )
        return self.update_status(session, order, OrderStatus.DELIVERING, admin)

    # -------- User-facing operations --------

    def place_order(self, session: Session, user: User, payload: OrderCreate) -> OrderWithItemsRead:
        order = self.create_order_from_items(session, payload.items, payload, user)
        return self._build_order_with_items_dto(session, order)

    def checkout(self, session: Session, user: User, payload: CheckoutCreate) -> OrderWithItemsRead:
        order = self.create_order_from_cart(session, user, payload)
        return self._build_order_with_items_dto(session, order)

    def list_user_orders(
        self,
        session: Session,
        user_id: uuid.UUID,
        *,
        status: OrderStatus | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        skip: int = 0,
        limit: int = 15,
    ) -> list[OrderRead]:
        orders = self.order_repo.list_for_user(
            session,
            user_id,
            status=status.value if status else None,
            from_date=from_date,
            to_date=to_date,
            skip=skip,
            limit=limit,
        )
        return [OrderRead.model_validate(o) for o in orders]

    def get_user_order(
        self,
        session: Session,
        user_id: uuid.UUID,
        order_id: uuid.UUID,
    ) -> OrderWithItemsRead:
        order = self._get_owned_order(session, user_id, order_id)
        return self._build_order_with_items_dto(session, order)

    def confirm_my_delivery(
        self,
        session: Session,
        user: User,
        order_id: uuid.UUID,
    ) -> OrderWithItemsRead:
        order = self._get_order(session, order_id)
        order = self.confirm_delivery(session, order, user)
        return self._build_order_with_items_dto(session, order)

    # -------- Admin operations --------

    def list_all_orders(
        self,
        session: Session,
        *,
        status: OrderStatus | None = None,
        payment_status: OrderPaymentStatus | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int = 15,
    ) -> list[OrderRead]:
        orders = self.order_repo.list_all(
            session,
            status=status.value if status else None,
            payment_status=payment_status.value if payment_status else None,
            from_date=from_date,
            to_date=to_date,
            search=search,
            skip=skip,
            limit=limit,
        )
        return [OrderRead.model_validate(o) for o in orders]

    def get_order_admin(self, session: Session, order_id: uuid.UUID) -> OrderWithItemsRead:
        order = self._get_order(session, order_id)
        return self._build_order_with_items_dto(session, order)

    def change_status(
        self,
        session: Session,
        order_id: uuid.UUID,
        payload: OrderStatusUpdate,
        admin: User,
    ) -> OrderWithItemsRead:
        order = self._get_order(session, order_id)
        order = self.update_status(session, order, payload.status, admin)
        return self._build_order_with_items_dto(session, order)

    def send_for_delivery(
        self,
        session: Session,
        order_id: uuid.UUID,
        admin: User,
    ) -> OrderWithItemsRead:
        order = self._get_order(session, order_id)
        order = self.mark_as_delivering(session, order, admin)
        return self._build_order_with_items_dto(session, order)

    def get_orders_requiring_attention(self, session: Session, limit: int = 10) -> list[OrderRead]:
        now = datetime.now(timezone.utc)
        orders = self.order_repo.list_requiring_attention(
            session,
            placed_before=now - ATTENTION_PAID_WAITING,
            delivering_since_before=now - ATTENTION_DELIVERING_STALLED,
            limit=limit,
        )
        return [OrderRead.model_validate(o) for o in orders]

    def get_statistics(
        self,
        session: Session,
        user_id: uuid.UUID | None = None,
    ) -> OrderStatistics:
        """
        Counts per status and revenue over paid orders, optionally for one user.
        """
        counts = self.stats_repo.count_orders_by_status(session, user_id=user_id)
        return OrderStatistics(
            total_orders=sum(counts.values()),
            placed=counts.get(OrderStatus.PLACED.value, 0),
            delivering=counts.get(OrderStatus.DELIVERING.value, 0),
            delivered=counts.get(OrderStatus.DELIVERED.value, 0),
            cancelled=counts.get(OrderStatus.CANCELLED.value, 0),
            total_revenue=to_money(self.stats_repo.total_revenue(session, user_id=user_id)),
        )

    def get_analytics(self, session: Session) -> OrderAnalytics:
        since = datetime.now(timezone.utc) - timedelta(days=7)

        top_drugs = [
            TopSellingDrug(
                drug_id=drug_id,
                name=name,
                total_quantity=int(total_quantity or 0),
                total_revenue=to_money(total_revenue),
            )
            for drug_id, name, total_quantity, total_revenue in self.stats_repo.top_selling_drugs(
                session, limit=5
            )
        ]

        latest_orders = [
            LatestOrderSummary(
                id=o.id,
                order_number=o.order_number,
                placed_at=o.placed_at,
                user_id=o.user_id,
                total_amount=o.total_amount,
                status=o.status,
                payment_status=o.payment_status,
            )
            for o in self.stats_repo.latest_orders(session, limit=5)
        ]

        return OrderAnalytics(
            statistics=self.get_statistics(session),
            orders_last_7_days=self.stats_repo.count_orders_since(session, since),
            top_drugs=top_drugs,
            latest_orders=latest_orders,
        )

    # -------- Helpers --------

    @staticmethod
    def _merge_lines(items: list[OrderItemInput]) -> dict[uuid.UUID, int]:
        lines: dict[uuid.UUID, int] = {}
        for item in items:
            lines[item.drug_id] = lines.get(item.drug_id, 0) + item.quantity
        return lines

    def _validate_items(
        self,
        session: Session,
        lines: dict[uuid.UUID, int],
    ) -> list[tuple[Drug, int]]:
        """
        Lock every drug row (sorted by id so concurrent checkouts lock in
        the same order) and check availability and stock.
        """
        validated: list[tuple[Drug, int]] = []
        for drug_id in sorted(lines, key=str):
            qty = lines[drug_id]
            drug = self.inventory.lock_drug(session, drug_id)
            if not is_available(drug):
                name = drug.name if drug else str(drug_id)
                raise Unavailable(
                    f"'{name}' is no longer available",
                    details={"drug_id": str(drug_id), "drug_name": name},
                )
            if not is_in_stock(drug, qty):
                raise InsufficientStock(drug.name, qty, drug.stock)
            validated.append((drug, qty))
        return validated

    def _generate_order_number(self, session: Session) -> str:
        """PREFIX-YYYYMMDD-XXXXXX; retried while the number is taken."""
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            candidate = f"{settings.ORDER_NUMBER_PREFIX}-{today}-{secrets.token_hex(3).upper()}"
            if not self.order_repo.order_number_exists(session, candidate):
                return candidate
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not allocate an order number, please retry",
        )

    def _restock(self, session: Session, order: Order) -> None:
        for item in self.order_repo.list_items_for_order(session, order.id):
            if self.inventory.increment_stock(session, item.drug_id, item.quantity):
                logger.info(
                    "Restocked %s x%s from cancelled order %s",
                    item.drug_name,
                    item.quantity,
                    order.order_number,
                )
            else:
                logger.warning(
                    "Drug %s from order %s no longer exists, not restocked",
                    item.drug_id,
                    order.order_number,
                )

    def _get_order(self, session: Session, order_id: uuid.UUID) -> Order:
        order = self.order_repo.get_by_id(session, order_id)
        if not order:
            raise NotFound("Order not found")
        return order

    def _get_owned_order(self, session: Session, user_id: uuid.UUID, order_id: uuid.UUID) -> Order:
        order = self._get_order(session, order_id)
        if order.user_id != user_id:
            raise OwnershipViolation("order")
        return order

    def _build_order_with_items_dto(self, session: Session, order: Order) -> OrderWithItemsRead:
        items = self.order_repo.list_items_for_order(session, order.id)
        current = OrderStatus(order.status)
        return OrderWithItemsRead(
            **OrderRead.model_validate(order).model_dump(),
            items=[OrderItemRead.model_validate(it) for it in items],
            status_label=STATUS_LABELS[current],
            status_description=STATUS_DESCRIPTIONS[current],
            status_updated_at=order.status_updated_at,
            status_updated_by=order.status_updated_by,
        )

# tests/test_orders.py
import itertools
import re
from decimal import Decimal

import pytest
from fastapi import HTTPException
from sqlalchemy import func
from sqlmodel import Session, select

from healthnet.core.exceptions import (
    InsufficientStock,
    InvalidTransition,
    OwnershipViolation,
    Unavailable,
)
from healthnet.models.cart import CartItem
from healthnet.models.drug import Drug
from healthnet.models.order import Order, OrderItem, OrderStatus
from healthnet.schemas.order import OrderItemInput

ALLOWED = {
    ("placed", "delivering"),
    ("placed", "cancelled"),
    ("delivering", "delivered"),
    ("delivering", "cancelled"),
}
STATUSES = [s.value for s in OrderStatus]


def _count_orders(session) -> int:
    return session.exec(select(func.count()).select_from(Order)).one()


def _force(session, order, **fields):
    for field, value in fields.items():
        setattr(order, field, value)
    session.add(order)
    session.commit()
    session.refresh(order)
    return order


def _stock(session, drug_id):
    session.expire_all()
    return session.get(Drug, drug_id)


# ---------- creation ----------


def test_order_takes_last_units_and_flips_status(session, customer, make_drug, place_order):
    drug_b = make_drug(name="Drug B", price="40.00", stock=3)

    order = place_order(customer, (drug_b, 3))

    assert order.status == "placed"
    assert order.payment_status == "pending"
    assert order.total_items == 3
    assert re.fullmatch(r"HN-\d{8}-[0-9A-F]{6}", order.order_number)

    drug = _stock(session, drug_b.id)
    assert drug.stock == 0
    assert drug.status == "out_of_stock"


def test_totals_are_computed_server_side(session, customer, make_drug, place_order, area):
    drug = make_drug(price="20.00", stock=10)

    order = place_order(customer, (drug, 1))

    assert order.subtotal == Decimal("20.00")
    assert order.tax_amount == Decimal("1.50")
    assert order.delivery_fee == Decimal("15.00")
    assert order.total_amount == Decimal("36.50")
    assert order.delivery_area == "east-legon"


@pytest.mark.parametrize(
    "qty, expected_fee",
    [(2, Decimal("15.00")), (3, Decimal("7.50")), (5, Decimal("0.00"))],
)
def test_delivery_fee_follows_order_value(session, customer, make_drug, place_order, area, qty, expected_fee):
    drug = make_drug(price="20.00", stock=10)

    order = place_order(customer, (drug, qty))

    assert order.delivery_fee == expected_fee
    assert order.total_amount == order.subtotal + order.tax_amount + expected_fee


def test_duplicate_lines_are_merged(session, customer, make_drug, place_order):
    drug = make_drug(stock=5)

    order = place_order(customer, (drug, 1), (drug, 2))

    items = session.exec(select(OrderItem).where(OrderItem.order_id == order.id)).all()
    assert len(items) == 1
    assert items[0].quantity == 3
    assert _stock(session, drug.id).stock == 2


def test_order_items_are_immutable_snapshots(session, customer, make_drug, place_order):
    drug = make_drug(name="Cough Syrup", price="12.00", stock=5)
    order = place_order(customer, (drug, 2))

    live = session.get(Drug, drug.id)
    live.name = "Cough Syrup Plus"
    live.price = Decimal("99.00")
    session.add(live)
    session.commit()

    session.expire_all()
    item = session.exec(select(OrderItem).where(OrderItem.order_id == order.id)).one()
    assert item.drug_name == "Cough Syrup"
    assert item.unit_price == Decimal("12.00")
    assert item.total_price == Decimal("24.00")
    assert session.get(Order, order.id).subtotal == Decimal("24.00")


def test_unavailable_drug_rejects_whole_order(session, customer, make_drug, place_order):
    good = make_drug(name="Good", stock=5)
    inactive = make_drug(name="Shelved", stock=5, status="inactive")

    with pytest.raises(Unavailable):
        place_order(customer, (good, 1), (inactive, 1))

    assert _count_orders(session) == 0
    assert _stock(session, good.id).stock == 5


def test_insufficient_stock_rejects_whole_order(session, customer, make_drug, place_order):
    good = make_drug(name="Good", stock=5)
    scarce = make_drug(name="Scarce", stock=1)

    with pytest.raises(InsufficientStock) as exc_info:
        place_order(customer, (good, 2), (scarce, 2))

    assert exc_info.value.details == {"drug_name": "Scarce", "requested": 2, "available": 1}
    assert _count_orders(session) == 0
    assert _stock(session, good.id).stock == 5


def test_failure_after_insert_rolls_everything_back(
    session, customer, make_drug, orders, carts, details, monkeypatch
):
    drug = make_drug(stock=5)
    cart = carts.add_item(session, carts.get_or_create_cart(session, customer.id), drug, 2)

    def boom(*args, **kwargs):
        raise RuntimeError("cart store offline")

    monkeypatch.setattr(orders.cart_service, "clear_items", boom)

    with pytest.raises(RuntimeError):
        orders.create_order_from_cart(session, customer, details)

    assert _count_orders(session) == 0
    assert session.exec(select(func.count()).select_from(OrderItem)).one() == 0
    assert _stock(session, drug.id).stock == 5
    assert len(session.exec(select(CartItem).where(CartItem.cart_id == cart.id)).all()) == 1


def test_sequential_orders_for_last_unit(session, customer, other_customer, make_drug, place_order):
    drug = make_drug(stock=1)

    place_order(customer, (drug, 1))
    with pytest.raises((Unavailable, InsufficientStock)):
        place_order(other_customer, (drug, 1))

    assert _count_orders(session) == 1
    assert _stock(session, drug.id).stock == 0


def test_concurrent_checkout_cannot_oversell(
    engine, session, customer, other_customer, make_drug, details, orders, monkeypatch
):
    drug = make_drug(stock=1)
    original = orders._validate_items
    raced = []

    def validate_then_lose_race(s, lines):
        validated = original(s, lines)
        if not raced:
            raced.append(True)
            with Session(engine) as rival:
                orders.create_order_from_items(
                    rival,
                    [OrderItemInput(drug_id=drug.id, quantity=1)],
                    details,
                    other_customer,
                )
        return validated

    monkeypatch.setattr(orders, "_validate_items", validate_then_lose_race)

    with pytest.raises(InsufficientStock) as exc_info:
        orders.create_order_from_items(
            session, [OrderItemInput(drug_id=drug.id, quantity=1)], details, customer
        )

    assert exc_info.value.details["available"] == 0
    assert _count_orders(session) == 1
    assert session.exec(select(Order)).one().user_id == other_customer.id
    assert _stock(session, drug.id).stock == 0


# ---------- checkout ----------


def test_checkout_clears_cart(session, customer, make_drug, orders, carts, details):
    a = make_drug(name="A", price="10.00", stock=5)
    b = make_drug(name="B", price="5.00", stock=5)
    cart = carts.get_or_create_cart(session, customer.id)
    carts.add_item(session, cart, a, 2)
    carts.add_item(session, cart, b, 1)

    order = orders.create_order_from_cart(session, customer, details)

    assert order.subtotal == Decimal("25.00")
    assert order.total_items == 3
    session.refresh(cart)
    assert carts.cart_repo.list_items(session, cart.id) == []
    assert cart.total_items == 0
    assert cart.subtotal == Decimal("0.00")


def test_checkout_empty_cart_is_rejected(session, customer, orders, carts, details):
    carts.get_or_create_cart(session, customer.id)

    with pytest.raises(HTTPException) as exc_info:
        orders.create_order_from_cart(session, customer, details)

    assert exc_info.value.status_code == 400


# ---------- state machine ----------


@pytest.mark.parametrize("current, target", list(itertools.product(STATUSES, STATUSES)))
def test_state_machine_closure(session, customer, admin, make_drug, place_order, orders, current, target):
    order = place_order(customer, (make_drug(stock=5), 1))
    order = _force(session, order, status=current)

    if (current, target) in ALLOWED:
        order = orders.update_status(session, order, target, admin)
        assert order.status == target
        assert order.status_updated_by == admin.id
        assert order.status_updated_at is not None
    else:
        with pytest.raises(InvalidTransition):
            orders.update_status(session, order, target, admin)
        session.expire_all()
        assert session.get(Order, order.id).status == current


@pytest.mark.parametrize("from_status", ["placed", "delivering"])
def test_cancel_restocks_every_item(session, customer, admin, make_drug, place_order, orders, from_status):
    a = make_drug(name="A", stock=5)
    b = make_drug(name="B", stock=2)
    order = place_order(customer, (a, 2), (b, 2))
    assert _stock(session, b.id).status == "out_of_stock"
    order = _force(session, order, status=from_status)

    orders.update_status(session, order, OrderStatus.CANCELLED, admin)

    assert _stock(session, a.id).stock == 5
    restocked = _stock(session, b.id)
    assert restocked.stock == 2
    assert restocked.status == "active"


def test_delivered_sets_delivered_at(session, customer, admin, make_drug, place_order, orders):
    order = place_order(customer, (make_drug(), 1))
    order = _force(session, order, status="delivering")

    order = orders.update_status(session, order, "delivered", admin)

    assert order.delivered_at is not None


def test_confirm_delivery_requires_owner(session, customer, other_customer, make_drug, place_order, orders):
    order = place_order(customer, (make_drug(), 1))
    order = _force(session, order, status="delivering")

    with pytest.raises(OwnershipViolation):
        orders.confirm_delivery(session, order, other_customer)

    order = orders.confirm_delivery(session, order, customer)
    assert order.status == "delivered"


def test_confirm_delivery_requires_delivering(session, customer, make_drug, place_order, orders):
    order = place_order(customer, (make_drug(), 1))

    with pytest.raises(InvalidTransition):
        orders.confirm_delivery(session, order, customer)


def test_mark_as_delivering_requires_payment(session, customer, admin, make_drug, place_order, orders):
    order = place_order(customer, (make_drug(), 1))

    with pytest.raises(InvalidTransition):
        orders.mark_as_delivering(session, order, admin)

    order = _force(session, order, payment_status="paid")
    order = orders.mark_as_delivering(session, order, admin)
    assert order.status == "delivering"


def test_reading_another_users_order_is_forbidden(session, customer, other_customer, make_drug, place_order, orders):
    order = place_order(customer, (make_drug(), 1))

    with pytest.raises(OwnershipViolation):
        orders.get_user_order(session, other_customer.id, order.id)

    dto = orders.get_user_order(session, customer.id, order.id)
    assert dto.status_label == "Order Placed"
    assert len(dto.items) == 1


# ---------- statistics ----------


def test_statistics_count_statuses_and_paid_revenue(
    session, customer, other_customer, admin, make_drug, place_order, orders, area
):
    drug = make_drug(price="100.00", stock=20)
    paid = place_order(customer, (drug, 1))
    _force(session, paid, payment_status="paid")
    unpaid = place_order(customer, (drug, 1))
    orders.update_status(session, unpaid, "cancelled", admin)
    place_order(other_customer, (drug, 1))

    overall = orders.get_statistics(session)
    assert overall.total_orders == 3
    assert overall.placed == 2
    assert overall.cancelled == 1
    assert overall.total_revenue == paid.total_amount

    mine = orders.get_statistics(session, user_id=customer.id)
    assert mine.total_orders == 2
    assert mine.placed == 1

    analytics = orders.get_analytics(session)
    assert analytics.orders_last_7_days == 3
    assert [t.name for t in analytics.top_drugs] == [drug.name]
    assert analytics.top_drugs[0].total_quantity == 1
    assert len(analytics.latest_orders) == 3

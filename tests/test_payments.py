# tests/test_payments.py
import json
import logging
from decimal import Decimal

import pytest
from sqlmodel import Session, select

from healthnet.core.exceptions import (
    AlreadyPaid,
    GatewayError,
    GatewayRejected,
    InvalidSignature,
    InvalidTransition,
    OwnershipViolation,
    PaymentNotFound,
)
from healthnet.models.order import Order
from healthnet.models.payment import Payment, PaymentLog
from healthnet.services.payment_service import map_gateway_status


@pytest.fixture
def order(session, customer, make_drug, place_order, area):
    # 20.00 + 1.50 tax + 15.00 delivery
    return place_order(customer, (make_drug(price="20.00", stock=5), 1))


@pytest.fixture
def initialized(session, order, customer, payments, paystack):
    return payments.initialize_payment(session, order.id, customer, paystack.client)


def _payment(session, reference) -> Payment:
    session.expire_all()
    return session.exec(select(Payment).where(Payment.payment_reference == reference)).one()


def _order(session, order_id) -> Order:
    session.expire_all()
    return session.get(Order, order_id)


# ---------- initialize ----------


def test_initialize_creates_pending_payment(session, order, customer, payments, paystack):
    result = payments.initialize_payment(session, order.id, customer, paystack.client)

    assert result.amount == Decimal("36.50")
    assert result.authorization_url == f"https://checkout.paystack.test/{result.payment_reference}"
    assert result.payment_reference.startswith("HN-PAY-")

    sent = json.loads(paystack.requests[0].content)
    assert sent["amount"] == 3650
    assert sent["currency"] == "GHS"
    assert sent["email"] == customer.email
    assert sent["metadata"]["order_id"] == str(order.id)
    assert paystack.requests[0].headers["Authorization"] == "Bearer sk_test_secret"

    payment = _payment(session, result.payment_reference)
    assert payment.status == "pending"
    assert payment.access_code is not None
    assert _order(session, order.id).payment_status == "pending"


@pytest.mark.parametrize("mode", ["timeout", "down"])
def test_unreachable_gateway_leaves_payment_pending(session, order, customer, payments, paystack, mode):
    paystack.initialize_mode = mode

    with pytest.raises(GatewayError) as exc_info:
        payments.initialize_payment(session, order.id, customer, paystack.client)
    assert not isinstance(exc_info.value, GatewayRejected)

    [payment] = payments.payment_repo.list_for_order(session, order.id)
    assert payment.status == "pending"
    logs = payments.payment_repo.list_logs(session, payment.id)
    assert [(log.event_type, log.status) for log in logs] == [("initialize", "error")]


def test_declined_initialization_marks_payment_failed(session, order, customer, payments, paystack):
    paystack.initialize_mode = "declined"

    with pytest.raises(GatewayRejected):
        payments.initialize_payment(session, order.id, customer, paystack.client)

    session.expire_all()
    [payment] = payments.payment_repo.list_for_order(session, order.id)
    assert payment.status == "failed"
    assert payment.failed_at is not None
    assert payment.gateway_response == "Invalid currency"
    assert _order(session, order.id).payment_status == "pending"


def test_cannot_pay_someone_elses_order(session, order, other_customer, payments, paystack):
    with pytest.raises(OwnershipViolation):
        payments.initialize_payment(session, order.id, other_customer, paystack.client)
    assert paystack.requests == []


def test_cannot_pay_cancelled_order(session, order, customer, admin, orders, payments, paystack):
    orders.update_status(session, order, "cancelled", admin)

    with pytest.raises(InvalidTransition):
        payments.initialize_payment(session, order.id, customer, paystack.client)


def test_paid_order_rejects_new_payment(session, order, customer, payments, paystack, initialized):
    paystack.transactions[initialized.payment_reference] = "success"
    payments.verify_payment(session, initialized.payment_reference, customer, paystack.client)
    assert _order(session, order.id).payment_status == "paid"

    with pytest.raises(AlreadyPaid):
        payments.initialize_payment(session, order.id, customer, paystack.client)

    assert len(payments.payment_repo.list_for_order(session, order.id)) == 1


# ---------- reconciliation ----------


@pytest.mark.parametrize(
    "gateway_status, expected",
    [
        ("success", "success"),
        ("SUCCESS", "success"),
        ("failed", "failed"),
        ("abandoned", "failed"),
        ("reversed", "failed"),
        ("ongoing", None),
        ("pending", None),
        ("processing", None),
        ("queued", None),
        ("", None),
    ],
)
def test_map_gateway_status(gateway_status, expected):
    mapped = map_gateway_status(gateway_status)
    assert (mapped.value if mapped else None) == expected


def test_verify_success_is_idempotent(session, order, customer, payments, paystack, initialized):
    reference = initialized.payment_reference
    paystack.transactions[reference] = "success"

    first = payments.verify_payment(session, reference, customer, paystack.client)
    paid_at = _payment(session, reference).paid_at

    second = payments.verify_payment(session, reference, customer, paystack.client)

    assert first.applied is True
    assert first.transaction_successful is True
    assert first.order_payment_status == "paid"
    assert first.payment.last4 == "4081"
    assert first.payment.fees == Decimal("0.84")
    assert second.applied is False
    assert second.transaction_successful is True

    payment = _payment(session, reference)
    assert payment.paid_at == paid_at
    assert payment.authorization_code == "AUTH_abc123"
    assert payment.gateway_metadata == {"source": "test"}
    assert _order(session, order.id).payment_status == "paid"


@pytest.mark.parametrize("gateway_status", ["failed", "abandoned", "reversed"])
def test_failed_outcomes_leave_order_unpaid(session, order, customer, payments, paystack, initialized, gateway_status):
    reference = initialized.payment_reference
    paystack.transactions[reference] = gateway_status

    result = payments.verify_payment(session, reference, customer, paystack.client)

    assert result.applied is True
    assert result.transaction_successful is False
    payment = _payment(session, reference)
    assert payment.status == "failed"
    assert payment.failed_at is not None
    assert _order(session, order.id).payment_status == "pending"


def test_in_flight_status_changes_nothing(session, order, customer, payments, paystack, initialized):
    reference = initialized.payment_reference
    paystack.transactions[reference] = "ongoing"

    result = payments.verify_payment(session, reference, customer, paystack.client)

    assert result.applied is False
    assert _payment(session, reference).status == "pending"
    assert _order(session, order.id).payment_status == "pending"


def test_late_success_overrides_failure(session, order, customer, payments, paystack, initialized):
    reference = initialized.payment_reference
    paystack.transactions[reference] = "failed"
    payments.verify_payment(session, reference, customer, paystack.client)

    paystack.transactions[reference] = "success"
    result = payments.verify_payment(session, reference, customer, paystack.client)

    assert result.applied is True
    assert _payment(session, reference).status == "success"
    assert _order(session, order.id).payment_status == "paid"


def test_failure_after_success_is_ignored(session, order, customer, payments, paystack, initialized):
    reference = initialized.payment_reference
    paystack.transactions[reference] = "success"
    payments.verify_payment(session, reference, customer, paystack.client)

    paystack.transactions[reference] = "reversed"
    result = payments.verify_payment(session, reference, customer, paystack.client)

    assert result.applied is False
    assert _payment(session, reference).status == "success"
    assert _order(session, order.id).payment_status == "paid"


def test_second_successful_attempt_keeps_order_paid(session, order, customer, payments, paystack):
    first = payments.initialize_payment(session, order.id, customer, paystack.client)
    second = payments.initialize_payment(session, order.id, customer, paystack.client)
    paystack.transactions[first.payment_reference] = "success"
    paystack.transactions[second.payment_reference] = "success"

    payments.verify_payment(session, first.payment_reference, customer, paystack.client)
    payments.verify_payment(session, second.payment_reference, customer, paystack.client)

    assert _order(session, order.id).payment_status == "paid"


def test_success_on_cancelled_order_asks_for_refund(
    session, order, customer, admin, orders, payments, paystack, initialized, caplog
):
    orders.update_status(session, order, "cancelled", admin)
    paystack.transactions[initialized.payment_reference] = "success"

    with caplog.at_level(logging.WARNING):
        result = payments.verify_payment(
            session, initialized.payment_reference, customer, paystack.client
        )

    assert result.applied is True
    assert "refund required" in caplog.text
    assert order.order_number in caplog.text
    cancelled = _order(session, order.id)
    assert (cancelled.status, cancelled.payment_status) == ("cancelled", "paid")


def test_concurrent_reconciliations_apply_once(
    engine, session, order, payments, paystack, initialized, monkeypatch
):
    reference = initialized.payment_reference
    paystack.transactions[reference] = "success"
    transaction = paystack.client.fetch_transaction(reference)
    original = payments.payment_repo.mark_success_if_open
    raced = []
    rival_results = []

    def settle_after_rival(s, payment_id, **kwargs):
        if not raced:
            raced.append(True)
            with Session(engine) as rival:
                result = payments.reconcile(rival, transaction, "webhook")
                rival_results.append((result.applied, result.payment.paid_at))
        return original(s, payment_id, **kwargs)

    monkeypatch.setattr(payments.payment_repo, "mark_success_if_open", settle_after_rival)

    result = payments.reconcile(session, transaction, "verify")

    [(rival_applied, rival_paid_at)] = rival_results
    assert (rival_applied, result.applied) == (True, False)
    assert result.status == "success"
    payment = _payment(session, reference)
    assert payment.paid_at == rival_paid_at
    assert _order(session, order.id).payment_status == "paid"


def test_every_gateway_interaction_is_logged(session, order, customer, payments, paystack, initialized):
    reference = initialized.payment_reference
    paystack.transactions[reference] = "success"
    payments.verify_payment(session, reference, customer, paystack.client)

    payment = _payment(session, reference)
    logs = payments.payment_repo.list_logs(session, payment.id)
    assert [log.event_type for log in logs] == ["initialize", "verify"]
    assert logs[1].response_data["status"] == "success"


def test_verify_checks_ownership_and_existence(session, customer, other_customer, payments, paystack, initialized):
    with pytest.raises(OwnershipViolation):
        payments.verify_payment(session, initialized.payment_reference, other_customer, paystack.client)
    with pytest.raises(PaymentNotFound):
        payments.verify_payment(session, "HN-PAY-NOPE", customer, paystack.client)


def test_verify_gateway_timeout_keeps_payment_pending(session, customer, payments, paystack, initialized):
    paystack.verify_mode = "timeout"

    with pytest.raises(GatewayError):
        payments.verify_payment(session, initialized.payment_reference, customer, paystack.client)

    assert _payment(session, initialized.payment_reference).status == "pending"


# ---------- webhook ----------


def test_webhook_with_tampered_body_is_rejected(session, order, payments, paystack, initialized, caplog):
    reference = initialized.payment_reference
    body = paystack.webhook("charge.success", reference, "success")
    signature = paystack.sign(body)
    tampered = body.replace(b'"amount": 2150', b'"amount": 1')

    with caplog.at_level(logging.WARNING):
        with pytest.raises(InvalidSignature):
            payments.handle_webhook(session, tampered, signature, paystack.client)

    assert "InvalidSignature" in caplog.text
    assert _payment(session, reference).status == "pending"
    assert _order(session, order.id).payment_status == "pending"
    assert session.exec(select(PaymentLog).where(PaymentLog.event_type == "webhook")).all() == []


def test_webhook_without_signature_is_rejected(session, payments, paystack, initialized):
    body = paystack.webhook("charge.success", initialized.payment_reference, "success")

    with pytest.raises(InvalidSignature):
        payments.handle_webhook(session, body, None, paystack.client)


def test_signed_webhook_reconciles(session, order, payments, paystack, initialized):
    reference = initialized.payment_reference
    body = paystack.webhook("charge.success", reference, "success")

    result = payments.handle_webhook(session, body, paystack.sign(body), paystack.client)
    duplicate = payments.handle_webhook(session, body, paystack.sign(body), paystack.client)

    assert result.applied is True
    assert duplicate.applied is False
    assert _payment(session, reference).status == "success"
    assert _order(session, order.id).payment_status == "paid"


def test_signed_failed_charge_webhook(session, order, payments, paystack, initialized):
    reference = initialized.payment_reference
    body = paystack.webhook("charge.failed", reference, "failed")

    payments.handle_webhook(session, body, paystack.sign(body), paystack.client)

    assert _payment(session, reference).status == "failed"
    assert _order(session, order.id).payment_status == "pending"


def test_webhook_for_unknown_reference_is_ignored(session, payments, paystack, caplog):
    body = paystack.webhook("charge.success", "HN-PAY-UNKNOWN", "success")

    with caplog.at_level(logging.WARNING):
        result = payments.handle_webhook(session, body, paystack.sign(body), paystack.client)

    assert result is None
    assert "PaymentNotFound" in caplog.text


def test_unhandled_webhook_event_is_ignored(session, payments, paystack, initialized):
    reference = initialized.payment_reference
    body = paystack.webhook("transfer.success", reference, "success")

    assert payments.handle_webhook(session, body, paystack.sign(body), paystack.client) is None
    assert _payment(session, reference).status == "pending"


# ---------- callback ----------


def test_callback_redirects_to_success(session, order, payments, paystack, initialized):
    reference = initialized.payment_reference
    paystack.transactions[reference] = "success"

    url = payments.handle_callback(session, reference, paystack.client)

    assert url == f"http://frontend.test/payment/success?reference={reference}"
    assert _order(session, order.id).payment_status == "paid"


def test_callback_redirects_to_failed(session, payments, paystack, initialized):
    reference = initialized.payment_reference
    paystack.transactions[reference] = "abandoned"

    url = payments.handle_callback(session, reference, paystack.client)

    assert url == f"http://frontend.test/payment/failed?reference={reference}"


def test_callback_without_reference(session, payments, paystack):
    url = payments.handle_callback(session, None, paystack.client)
    assert url == "http://frontend.test/payment/failed?error=No+transaction+reference+provided"


def test_callback_for_unknown_payment(session, payments, paystack):
    paystack.transactions["HN-PAY-GHOST"] = "success"

    url = payments.handle_callback(session, "HN-PAY-GHOST", paystack.client)

    assert url == "http://frontend.test/payment/failed?error=Payment+not+found"


def test_callback_never_raises_on_gateway_failure(session, payments, paystack, initialized):
    paystack.verify_mode = "timeout"

    url = payments.handle_callback(session, initialized.payment_reference, paystack.client)

    assert url.startswith("http://frontend.test/payment/failed")
    assert _payment(session, initialized.payment_reference).status == "pending"


# ---------- read side ----------


def test_history_and_detail(session, order, customer, other_customer, payments, initialized):
    history = payments.get_history(session, customer.id)
    assert [p.payment_reference for p in history] == [initialized.payment_reference]
    assert payments.get_history(session, other_customer.id) == []

    detail = payments.get_payment(session, customer.id, initialized.payment_id)
    assert detail.order_number == order.order_number
    assert detail.order_payment_status == "pending"

    with pytest.raises(OwnershipViolation):
        payments.get_payment(session, other_customer.id, initialized.payment_id)


@pytest.mark.parametrize(
    "amount, fee, total",
    [
        ("100.00", "6.85", "106.85"),
        ("10.00", "0.39", "10.39"),
        ("5.00", "0.20", "5.20"),
    ],
)
def test_calculate_fees(payments, amount, fee, total):
    quote = payments.calculate_fees(Decimal(amount))

    assert quote.fee == Decimal(fee)
    assert quote.total == Decimal(total)
    assert quote.formatted_total == f"GH₵{total}"

# healthnet/services/payment_service.py
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from urllib.parse import urlencode

from sqlmodel import Session

from healthnet.core.config import get_settings
from healthnet.core.exceptions import (
    AlreadyPaid,
    DomainError,
    GatewayError,
    GatewayRejected,
    InvalidSignature,
    InvalidTransition,
    NotFound,
    OwnershipViolation,
    PaymentNotFound,
)
from healthnet.core.money import format_money, from_minor_units, to_minor_units, to_money
from healthnet.core.paystack import GatewayTransaction, PaystackClient
from healthnet.models.order import OrderPaymentStatus, OrderStatus
from healthnet.models.payment import Payment, PaymentLog, PaymentStatus
from healthnet.models.user import User
from healthnet.repositories.order_repo import OrderRepository
from healthnet.repositories.payment_repo import PaymentRepository
from healthnet.schemas.payment import (
    FeeQuote,
    PaymentDetail,
    PaymentInitialized,
    PaymentRead,
    PaymentVerifyResult,
)

logger = logging.getLogger(__name__)
settings = get_settings()

# Gateway transaction status -> local outcome. Anything else is still
# in flight and leaves the payment alone.
GATEWAY_SUCCESS = frozenset({"success"})
GATEWAY_FAILED = frozenset({"failed", "abandoned", "reversed"})

HANDLED_EVENTS = frozenset({"charge.success", "charge.failed"})

FEE_PERCENTAGE = Decimal("0.039")
FEE_FIXED = Decimal("2.95")
FEE_FIXED_ABOVE = Decimal("10")

REFERENCE_ATTEMPTS = 5


@dataclass
class ReconcileResult:
    applied: bool
    status: str
    payment: Payment


def map_gateway_status(gateway_status: str) -> PaymentStatus | None:
    value = (gateway_status or "").lower()
    if value in GATEWAY_SUCCESS:
        return PaymentStatus.SUCCESS
    if value in GATEWAY_FAILED:
        return PaymentStatus.FAILED
    return None


class PaymentService:
    """
    Payment intents and their reconciliation.

    verify, callback and webhook are thin adapters: each one obtains the
    gateway's view of a transaction and hands it to reconcile(), the only
    place that moves a payment to success or failed.
    """

    def __init__(self, payment_repo: PaymentRepository, order_repo: OrderRepository):
        self.payment_repo = payment_repo
        self.order_repo = order_repo

    # -------- Initialize --------

    def initialize_payment(
        self,
        session: Session,
        order_id: uuid.UUID,
        user: User,
        gateway: PaystackClient,
    ) -> PaymentInitialized:
        """
        Create a pending Payment and ask the gateway for a checkout URL.

        Gateway unreachable: the payment stays pending.
        Gateway refused: the payment is marked failed with its message.
        The order is never touched here.
        """
        order = self.order_repo.get_by_id(session, order_id)
        if order is None:
            raise NotFound("Order not found")
        if order.user_id != user.id:
            raise OwnershipViolation("order")
        if order.payment_status == OrderPaymentStatus.PAID.value:
            raise AlreadyPaid(order.order_number)
        if order.status == OrderStatus.CANCELLED.value:
            raise InvalidTransition(
                order.status,
                OrderPaymentStatus.PAID.value,
                "Cancelled orders cannot be paid",
            )

        payment = Payment(
            order_id=order.id,
            user_id=user.id,
            payment_reference=self._unique_reference(session, gateway),
            amount=to_money(order.total_amount),
            currency=settings.PAYMENT_CURRENCY,
            status=PaymentStatus.PENDING.value,
        )
        payment = self.payment_repo.create(session, payment)

        metadata = {
            "order_id": str(order.id),
            "payment_id": str(payment.id),
            "order_number": order.order_number,
            "customer_name": user.name,
        }
        request_data = {
            "email": user.email,
            "amount": to_minor_units(payment.amount),
            "reference": payment.payment_reference,
            "currency": payment.currency,
            "metadata": metadata,
        }

        try:
            authorization = gateway.create_authorization(
                email=user.email,
                amount_minor=to_minor_units(payment.amount),
                reference=payment.payment_reference,
                currency=payment.currency,
                metadata=metadata,
                callback_url=settings.PAYMENT_CALLBACK_URL,
            )
        except GatewayRejected as exc:
            now = datetime.now(timezone.utc)
            self.payment_repo.mark_failed_if_open(
                session,
                payment.id,
                failed_at=now,
                values={"gateway_response": exc.message},
            )
            self._log(session, payment, "initialize", "failed", request_data, error=exc.message)
            session.commit()
            logger.error(
                "Payment initialization rejected: order=%s reference=%s reason=%s",
                order.id,
                payment.payment_reference,
                exc.message,
            )
            raise
        except GatewayError as exc:
            self._log(session, payment, "initialize", "error", request_data, error=exc.message)
            session.commit()
            logger.error(
                "Payment gateway unreachable: order=%s reference=%s error=%s",
                order.id,
                payment.payment_reference,
                exc.message,
            )
            raise

        payment.gateway_reference = authorization.reference
        payment.access_code = authorization.access_code
        payment.authorization_url = authorization.checkout_url
        payment.updated_at = datetime.now(timezone.utc)
        try:
            self.payment_repo.update(session, payment)
            self._log(
                session,
                payment,
                "initialize",
                "success",
                request_data,
                response=authorization.model_dump(),
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        session.refresh(payment)

        logger.info(
            "Payment initialized: order=%s reference=%s amount=%s",
            order.order_number,
            payment.payment_reference,
            payment.amount,
        )

        return PaymentInitialized(
            payment_id=payment.id,
            payment_reference=payment.payment_reference,
            authorization_url=authorization.checkout_url,
            access_code=authorization.access_code,
            amount=payment.amount,
            formatted_amount=format_money(payment.amount, settings.PAYMENT_CURRENCY_SYMBOL),
            currency=payment.currency,
        )

    def checkout_redirect(
        self,
        session: Session,
        order_id: uuid.UUID,
        user: User,
        gateway: PaystackClient,
    ) -> str:
        """
        Browser flavour of initialize_payment: the URL to send the customer to.

        Already paid or refused orders go back to the order page, an
        unreachable gateway to the failed page. Other errors propagate.
        """
        try:
            result = self.initialize_payment(session, order_id, user, gateway)
        except AlreadyPaid:
            return _frontend_page(f"orders/{order_id}", error="already_paid")
        except GatewayRejected:
            return _frontend_page(f"orders/{order_id}", error="payment_failed")
        except GatewayError:
            return self._frontend_url("failed", error="initialization_failed")
        return result.authorization_url

    # -------- Reconcile --------

    def reconcile(
        self,
        session: Session,
        transaction: GatewayTransaction,
        source: str,
    ) -> ReconcileResult:
        """
        Apply a gateway outcome to Payment and Order.

        Idempotent on the payment reference: the conditional UPDATE lets
        exactly one caller move the payment, so duplicates (webhook retry
        racing a verify call) report applied=False and change nothing.
        """
        payment = self.payment_repo.get_by_reference(session, transaction.reference)
        if payment is None:
            raise PaymentNotFound(transaction.reference)

        outcome = map_gateway_status(transaction.status)
        now = datetime.now(timezone.utc)
        applied = False

        try:
            if outcome == PaymentStatus.SUCCESS:
                applied = self.payment_repo.mark_success_if_open(
                    session,
                    payment.id,
                    paid_at=now,
                    values=self._success_values(transaction),
                )
                if applied:
                    if not self.order_repo.mark_paid(session, payment.order_id):
                        logger.warning(
                            "Order %s was already paid; payment %s settled as an extra success",
                            payment.order_id,
                            payment.payment_reference,
                        )
                    order = self.order_repo.get_by_id(session, payment.order_id)
                    session.refresh(order)
                    if order.status == OrderStatus.CANCELLED.value:
                        # money was captured; stock and status stay as cancelled
                        logger.warning(
                            "Payment %s succeeded for cancelled order %s; refund required",
                            payment.payment_reference,
                            order.order_number,
                        )
            elif outcome == PaymentStatus.FAILED:
                applied = self.payment_repo.mark_failed_if_open(
                    session,
                    payment.id,
                    failed_at=now,
                    values={
                        "gateway_response": transaction.gateway_response,
                        "gateway_payload": transaction.raw,
                        "channel": transaction.channel,
                    },
                )

            self._log(
                session,
                payment,
                source,
                transaction.status or "unknown",
                {"reference": transaction.reference},
                response=transaction.raw,
            )
            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(payment)
        logger.info(
            "Payment reconciled via %s: reference=%s gateway_status=%s status=%s applied=%s",
            source,
            payment.payment_reference,
            transaction.status,
            payment.status,
            applied,
        )
        return ReconcileResult(applied=applied, status=payment.status, payment=payment)

    # -------- Entry points --------

    def verify_payment(
        self,
        session: Session,
        reference: str,
        user: User,
        gateway: PaystackClient,
    ) -> PaymentVerifyResult:
        payment = self.payment_repo.get_by_reference(session, reference)
        if payment is None:
            raise PaymentNotFound(reference)
        if payment.user_id != user.id:
            raise OwnershipViolation("payment")

        try:
            transaction = gateway.fetch_transaction(payment.payment_reference)
        except GatewayError as exc:
            logger.error(
                "Payment verification failed: order=%s reference=%s error=%s",
                payment.order_id,
                payment.payment_reference,
                exc.message,
            )
            raise

        result = self.reconcile(session, transaction, "verify")
        order = self.order_repo.get_by_id(session, result.payment.order_id)
        session.refresh(order)

        return PaymentVerifyResult(
            payment=PaymentRead.model_validate(result.payment),
            order_payment_status=order.payment_status,
            applied=result.applied,
            transaction_successful=result.status == PaymentStatus.SUCCESS.value,
        )

    def handle_callback(
        self,
        session: Session,
        reference: str | None,
        gateway: PaystackClient,
    ) -> str:
        """
        Redirect target after the customer returns from the gateway.

        Never raises: any failure sends the customer to the failed page.
        """
        if not reference:
            return self._frontend_url("failed", error="No transaction reference provided")

        try:
            transaction = gateway.fetch_transaction(reference)
            result = self.reconcile(session, transaction, "callback")
        except PaymentNotFound:
            logger.warning("PaymentNotFound on callback: reference=%s", reference)
            return self._frontend_url("failed", error="Payment not found")
        except DomainError as exc:
            logger.error("Payment callback failed: reference=%s error=%s", reference, exc.message)
            return self._frontend_url("failed", reference=reference)
        except Exception:
            logger.exception("Unexpected error handling payment callback: reference=%s", reference)
            return self._frontend_url("failed", reference=reference)

        outcome = "success" if result.status == PaymentStatus.SUCCESS.value else "failed"
        return self._frontend_url(outcome, reference=result.payment.payment_reference)

    def handle_webhook(
        self,
        session: Session,
        raw_body: bytes,
        signature: str | None,
        gateway: PaystackClient,
    ) -> ReconcileResult | None:
        """
        Signed gateway notification.

        Raises InvalidSignature before touching anything. Past the
        signature check nothing propagates: unknown references and
        downstream faults are logged so the gateway sees a delivered hook.
        """
        if settings.PAYMENT_WEBHOOK_VERIFY_SIGNATURE and not gateway.verify_signature(
            raw_body, signature
        ):
            logger.warning("InvalidSignature: webhook rejected, nothing reconciled")
            raise InvalidSignature()

        try:
            event = json.loads(raw_body)
        except ValueError:
            logger.warning("Webhook body is not valid JSON, ignored")
            return None

        event_type = event.get("event") if isinstance(event, dict) else None
        data = event.get("data") if isinstance(event, dict) else None

        if event_type not in HANDLED_EVENTS or not isinstance(data, dict):
            logger.info("Unhandled webhook event: %s", event_type)
            return None

        try:
            transaction = GatewayTransaction.from_payload(data)
            return self.reconcile(session, transaction, "webhook")
        except PaymentNotFound:
            logger.warning("PaymentNotFound for webhook %s: reference=%s", event_type, data.get("reference"))
        except Exception:
            session.rollback()
            logger.exception("Webhook processing failed: event=%s reference=%s", event_type, data.get("reference"))
        return None

    # -------- Read side --------

    def get_history(
        self,
        session: Session,
        user_id: uuid.UUID,
        *,
        status: PaymentStatus | None = None,
        skip: int = 0,
        limit: int = 15,
    ) -> list[PaymentRead]:
        payments = self.payment_repo.list_for_user(
            session,
            user_id,
            status=status.value if status else None,
            skip=skip,
            limit=limit,
        )
        return [PaymentRead.model_validate(p) for p in payments]

    def get_payment(self, session: Session, user_id: uuid.UUID, payment_id: uuid.UUID) -> PaymentDetail:
        payment = self.payment_repo.get_by_id(session, payment_id)
        if payment is None:
            raise PaymentNotFound()
        if payment.user_id != user_id:
            raise OwnershipViolation("payment")

        order = self.order_repo.get_by_id(session, payment.order_id)
        return PaymentDetail(
            **PaymentRead.model_validate(payment).model_dump(),
            order_number=order.order_number,
            order_payment_status=order.payment_status,
        )

    @staticmethod
    def calculate_fees(amount: Decimal) -> FeeQuote:
        """
        Gateway charge estimate: 3.9%, plus a fixed 2.95 above 10.
        """
        amount = to_money(amount)
        fee = amount * FEE_PERCENTAGE
        if amount > FEE_FIXED_ABOVE:
            fee += FEE_FIXED
        fee = to_money(fee)
        total = to_money(amount + fee)
        symbol = settings.PAYMENT_CURRENCY_SYMBOL

        return FeeQuote(
            amount=amount,
            fee=fee,
            total=total,
            formatted_amount=format_money(amount, symbol),
            formatted_fee=format_money(fee, symbol),
            formatted_total=format_money(total, symbol),
        )

    # -------- Helpers --------

    def _unique_reference(self, session: Session, gateway: PaystackClient) -> str:
        for _ in range(REFERENCE_ATTEMPTS):
            reference = gateway.generate_reference(settings.PAYMENT_REFERENCE_PREFIX)
            if not self.payment_repo.reference_exists(session, reference):
                return reference
        raise GatewayError("Could not allocate a payment reference")

    @staticmethod
    def _success_values(transaction: GatewayTransaction) -> dict[str, Any]:
        auth = transaction.authorization
        return {
            "channel": transaction.channel,
            "payment_method": transaction.channel,
            "gateway_response": transaction.gateway_response,
            "gateway_payload": transaction.raw,
            "gateway_metadata": transaction.gateway_metadata,
            "fees": from_minor_units(transaction.fees),
            "authorization_code": auth.authorization_code if auth else None,
            "last4": auth.last4 if auth else None,
            "exp_month": auth.exp_month if auth else None,
            "exp_year": auth.exp_year if auth else None,
            "card_type": auth.card_type if auth else None,
            "bank": auth.bank if auth else None,
        }

    def _log(
        self,
        session: Session,
        payment: Payment,
        event_type: str,
        status: str,
        request: dict[str, Any] | None = None,
        *,
        response: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        self.payment_repo.add_log(
            session,
            PaymentLog(
                payment_id=payment.id,
                event_type=event_type,
                status=status,
                request_data=request,
                response_data=response,
                error_message=error,
            ),
        )

    @staticmethod
    def _frontend_url(outcome: str, **params: str) -> str:
        return _frontend_page(f"payment/{outcome}", **params)


def _frontend_page(path: str, **params: str) -> str:
    base = f"{settings.FRONTEND_URL.rstrip('/')}/{path}"
    return f"{base}?{urlencode(params)}" if params else base

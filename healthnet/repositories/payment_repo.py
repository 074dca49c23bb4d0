# healthnet/repositories/payment_repo.py
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import or_, update
from sqlmodel import Session, select

from healthnet.models.payment import Payment, PaymentLog, PaymentStatus


class PaymentRepository:
    """
    Data access layer for payments and payment_logs.

    The two mark_*_if_open methods are the only status writers after a
    payment is created. Each is a single conditional UPDATE so racing
    reconciliations of the same reference cannot both win.
    """

    SUCCESS_FROM = (
        PaymentStatus.PENDING.value,
        PaymentStatus.PROCESSING.value,
        PaymentStatus.FAILED.value,
    )
    FAILED_FROM = (
        PaymentStatus.PENDING.value,
        PaymentStatus.PROCESSING.value,
    )

    # ----- Reads -----

    def get_by_id(self, session: Session, payment_id: uuid.UUID) -> Payment | None:
        return session.get(Payment, payment_id)

    def get_by_reference(self, session: Session, reference: str) -> Payment | None:
        """Match either our own reference or the gateway's."""
        stmt = select(Payment).where(
            or_(
                Payment.payment_reference == reference,
                Payment.gateway_reference == reference,
            )
        )
        return session.exec(stmt).first()

    def reference_exists(self, session: Session, reference: str) -> bool:
        stmt = select(Payment.id).where(Payment.payment_reference == reference)
        return session.exec(stmt).first() is not None

    def list_for_user(
        self,
        session: Session,
        user_id: uuid.UUID,
        *,
        status: str | None = None,
        skip: int = 0,
        limit: int = 15,
    ) -> list[Payment]:
        stmt = select(Payment).where(Payment.user_id == user_id)
        if status:
            stmt = stmt.where(Payment.status == status)
        stmt = stmt.order_by(Payment.created_at.desc()).offset(skip).limit(limit)
        return list(session.exec(stmt).all())

    def list_for_order(self, session: Session, order_id: uuid.UUID) -> list[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.order_id == order_id)
            .order_by(Payment.created_at.desc())
        )
        return list(session.exec(stmt).all())

    def list_logs(self, session: Session, payment_id: uuid.UUID) -> list[PaymentLog]:
        stmt = (
            select(PaymentLog)
            .where(PaymentLog.payment_id == payment_id)
            .order_by(PaymentLog.created_at.asc())
        )
        return list(session.exec(stmt).all())

    # ----- Writes -----

    def create(self, session: Session, payment: Payment) -> Payment:
        session.add(payment)
        session.commit()
        session.refresh(payment)
        return payment

    def update(self, session: Session, payment: Payment) -> Payment:
        session.add(payment)
        session.flush()
        return payment

    def mark_success_if_open(
        self,
        session: Session,
        payment_id: uuid.UUID,
        *,
        paid_at: datetime,
        values: dict[str, Any],
    ) -> bool:
        stmt = (
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status.in_(self.SUCCESS_FROM),
            )
            .values(
                status=PaymentStatus.SUCCESS.value,
                paid_at=paid_at,
                updated_at=paid_at,
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        return session.exec(stmt).rowcount == 1

    def mark_failed_if_open(
        self,
        session: Session,
        payment_id: uuid.UUID,
        *,
        failed_at: datetime,
        values: dict[str, Any],
    ) -> bool:
        stmt = (
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status.in_(self.FAILED_FROM),
            )
            .values(
                status=PaymentStatus.FAILED.value,
                failed_at=failed_at,
                updated_at=failed_at,
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        return session.exec(stmt).rowcount == 1

    def add_log(self, session: Session, log: PaymentLog) -> PaymentLog:
        session.add(log)
        session.flush()
        return log

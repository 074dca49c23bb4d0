# healthnet/repositories/delivery_repo.py
from sqlalchemy import func
from sqlmodel import Session, select

from healthnet.models.delivery import DeliveryArea
from healthnet.models.order import Order


class DeliveryRepository:
    """
    Data access layer for DeliveryArea plus the per-area order aggregates.
    """

    def get_by_code(self, session: Session, code: str) -> DeliveryArea | None:
        stmt = select(DeliveryArea).where(DeliveryArea.code == code)
        return session.exec(stmt).first()

    def get_active_by_code(self, session: Session, code: str) -> DeliveryArea | None:
        stmt = select(DeliveryArea).where(
            DeliveryArea.code == code,
            DeliveryArea.is_active == True,  # noqa: E712
        )
        return session.exec(stmt).first()

    def list_active(self, session: Session) -> list[DeliveryArea]:
        stmt = (
            select(DeliveryArea)
            .where(DeliveryArea.is_active == True)  # noqa: E712
            .order_by(DeliveryArea.sort_order.asc(), DeliveryArea.name.asc())
        )
        return list(session.exec(stmt).all())

    def create(self, session: Session, area: DeliveryArea) -> DeliveryArea:
        session.add(area)
        session.commit()
        session.refresh(area)
        return area

    def update(self, session: Session, area: DeliveryArea) -> DeliveryArea:
        session.add(area)
        session.commit()
        session.refresh(area)
        return area

    def orders_per_area(self, session: Session) -> list[tuple]:
        """(area_code, order_count) for every area that has orders."""
        stmt = (
            select(Order.delivery_area, func.count(Order.id).label("order_count"))
            .where(Order.delivery_area.is_not(None))
            .group_by(Order.delivery_area)
            .order_by(func.count(Order.id).desc())
        )
        return list(session.exec(stmt).all())

# healthnet/services/delivery_service.py
import logging
from decimal import Decimal

from fastapi import HTTPException, status
from sqlmodel import Session

from healthnet.core.config import get_settings
from healthnet.core.exceptions import NotFound
from healthnet.core.money import format_money, to_money
from healthnet.models.delivery import DeliveryArea
from healthnet.models.order import OrderStatus
from healthnet.repositories.delivery_repo import DeliveryRepository
from healthnet.repositories.order_repo import OrderRepository
from healthnet.repositories.stats_repo import StatsRepository
from healthnet.schemas.delivery import (
    AreaOrderCount,
    DeliveryAreaCreate,
    DeliveryAreaRead,
    DeliveryAreaUpdate,
    DeliveryFeeQuote,
    DeliveryRoute,
    DeliveryStatistics,
)
from healthnet.schemas.order import OrderRead

logger = logging.getLogger(__name__)
settings = get_settings()

DISCOUNT_FACTOR = Decimal("0.5")


class DeliveryService:
    """
    Delivery fee calculator and area registry.

    calculate_fee is read-only; orders keep the area code and the fee
    that was computed when they were placed.
    """

    def __init__(
        self,
        delivery_repo: DeliveryRepository,
        order_repo: OrderRepository,
        stats_repo: StatsRepository,
    ):
        self.delivery_repo = delivery_repo
        self.order_repo = order_repo
        self.stats_repo = stats_repo

    # -------- Pricing --------

    def _base_fee(self, session: Session, area_code: str | None) -> tuple[Decimal, DeliveryArea | None]:
        area = self.delivery_repo.get_active_by_code(session, area_code) if area_code else None
        if area is None:
            return to_money(settings.DELIVERY_DEFAULT_FEE), None
        return to_money(area.base_fee), area

    def calculate_fee(
        self,
        session: Session,
        area_code: str | None,
        order_value: Decimal,
    ) -> Decimal:
        """
        Base fee of the active area (flat default when unknown or inactive),
        free at or above DELIVERY_FREE_THRESHOLD, half price at or above
        DELIVERY_DISCOUNT_THRESHOLD.
        """
        base_fee, _ = self._base_fee(session, area_code)
        return self._apply_thresholds(base_fee, to_money(order_value))

    @staticmethod
    def _apply_thresholds(base_fee: Decimal, order_value: Decimal) -> Decimal:
        if order_value >= settings.DELIVERY_FREE_THRESHOLD:
            return Decimal("0.00")
        if order_value >= settings.DELIVERY_DISCOUNT_THRESHOLD:
            return to_money(base_fee * DISCOUNT_FACTOR)
        return to_money(base_fee)

    def quote(
        self,
        session: Session,
        area_code: str | None,
        order_value: Decimal,
    ) -> DeliveryFeeQuote:
        order_value = to_money(order_value)
        base_fee, area = self._base_fee(session, area_code)
        fee = self._apply_thresholds(base_fee, order_value)

        return DeliveryFeeQuote(
            area_code=area.code if area else area_code,
            area_name=area.name if area else None,
            order_value=order_value,
            base_fee=base_fee,
            delivery_fee=fee,
            free_delivery=fee == 0,
            discount_applied=0 < fee < base_fee,
            formatted_fee=format_money(fee, settings.PAYMENT_CURRENCY_SYMBOL),
            estimated_time=settings.DELIVERY_TIME_ESTIMATE,
        )

    # -------- Area registry --------

    def list_areas(self, session: Session) -> list[DeliveryAreaRead]:
        return [DeliveryAreaRead.model_validate(a) for a in self.delivery_repo.list_active(session)]

    def is_valid_area(self, session: Session, area_code: str) -> bool:
        return self.delivery_repo.get_active_by_code(session, area_code) is not None

    def get_area(self, session: Session, area_code: str) -> DeliveryArea:
        area = self.delivery_repo.get_by_code(session, area_code)
        if area is None:
            raise NotFound("Delivery area not found", details={"code": area_code})
        return area

    def create_area(self, session: Session, payload: DeliveryAreaCreate) -> DeliveryAreaRead:
        if self.delivery_repo.get_by_code(session, payload.code) is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Delivery area code already exists",
            )

        area = DeliveryArea(**payload.model_dump())
        area = self.delivery_repo.create(session, area)
        logger.info("Delivery area created: %s (%s)", area.code, area.base_fee)
        return DeliveryAreaRead.model_validate(area)

    def update_area(
        self,
        session: Session,
        area_code: str,
        payload: DeliveryAreaUpdate,
    ) -> DeliveryAreaRead:
        area = self.get_area(session, area_code)

        for field, value in payload.model_dump(exclude_unset=True).items():
            setattr(area, field, value)

        area = self.delivery_repo.update(session, area)
        logger.info("Delivery area updated: %s", area.code)
        return DeliveryAreaRead.model_validate(area)

    def toggle_area(self, session: Session, area_code: str) -> DeliveryAreaRead:
        area = self.get_area(session, area_code)
        area.is_active = not area.is_active
        area = self.delivery_repo.update(session, area)
        logger.info("Delivery area %s is_active=%s", area.code, area.is_active)
        return DeliveryAreaRead.model_validate(area)

    # -------- Admin views --------

    def get_orders_by_area(self, session: Session, area_code: str) -> list[OrderRead]:
        return [
            OrderRead.model_validate(o)
            for o in self.order_repo.list_open_for_area(session, area_code)
        ]

    def get_statistics(self, session: Session) -> DeliveryStatistics:
        by_status = self.stats_repo.count_orders_by_status(session)
        names = {a.code: a.name for a in self.delivery_repo.list_active(session)}

        return DeliveryStatistics(
            orders_by_status={s.value: by_status.get(s.value, 0) for s in OrderStatus},
            orders_by_area=[
                AreaOrderCount(
                    area_code=code,
                    area_name=names.get(code),
                    order_count=int(count or 0),
                )
                for code, count in self.delivery_repo.orders_per_area(session)
            ],
            active_areas=len(names),
        )

    def get_routes(self, session: Session) -> list[DeliveryRoute]:
        """
        Open orders grouped per active area, busiest area first.
        """
        routes: list[DeliveryRoute] = []
        for area in self.delivery_repo.list_active(session):
            orders = self.order_repo.list_open_for_area(session, area.code)
            if not orders:
                continue
            routes.append(
                DeliveryRoute(
                    area_code=area.code,
                    area_name=area.name,
                    order_count=len(orders),
                    total_value=to_money(sum((o.total_amount for o in orders), Decimal("0"))),
                    orders=[OrderRead.model_validate(o) for o in orders],
                )
            )

        routes.sort(key=lambda r: r.order_count, reverse=True)
        return routes

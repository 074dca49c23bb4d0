# healthnet/services/inventory_service.py
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlmodel import Session

from healthnet.core.config import get_settings
from healthnet.core.exceptions import InsufficientStock, NotFound
from healthnet.core.money import to_money
from healthnet.models.drug import Drug, DrugStatus
from healthnet.models.user import User
from healthnet.repositories.drug_repo import DrugRepository
from healthnet.repositories.stats_repo import StatsRepository
from healthnet.schemas.drug import (
    BulkStockLineError,
    BulkStockLineResult,
    BulkStockUpdate,
    BulkStockUpdateResult,
    DrugInventoryRead,
    InventoryReport,
    StockOperation,
    StockStatusSummary,
    StockUpdate,
    StockUpdateResult,
)
from healthnet.schemas.stats import InventoryStatistics, TopSellingDrug

logger = logging.getLogger(__name__)
settings = get_settings()


def is_available(drug: Drug | None) -> bool:
    """Sellable right now: active and at least one unit on hand."""
    return (
        drug is not None
        and drug.status == DrugStatus.ACTIVE.value
        and drug.stock > 0
    )


def is_in_stock(drug: Drug, quantity: int) -> bool:
    return drug.stock >= quantity


class InventoryService:
    """
    Owns drug stock counts and the stock/status coupling.

    decrement_stock / increment_stock never commit: they run inside the
    caller's transaction (order creation, cancellation). Admin stock
    updates are their own transaction.
    """

    def __init__(self, drug_repo: DrugRepository, stats_repo: StatsRepository):
        self.drug_repo = drug_repo
        self.stats_repo = stats_repo

    # -------- Ledger primitives --------

    def lock_drug(self, session: Session, drug_id: uuid.UUID) -> Drug | None:
        return self.drug_repo.lock(session, drug_id)

    def decrement_stock(self, session: Session, drug: Drug, quantity: int) -> None:
        """
        Take `quantity` units or raise InsufficientStock.

        The conditional UPDATE is what serializes concurrent checkouts;
        the loser sees zero affected rows and stock stays untouched.
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")

        if not self.drug_repo.decrement_stock(session, drug.id, quantity):
            current = self.drug_repo.lock(session, drug.id)
            available = current.stock if current is not None else 0
            raise InsufficientStock(drug.name, quantity, available)

    def increment_stock(self, session: Session, drug_id: uuid.UUID, quantity: int) -> bool:
        if quantity <= 0:
            raise ValueError("quantity must be positive")
        return self.drug_repo.increment_stock(session, drug_id, quantity)

    # -------- Admin operations --------

    def list_inventory(
        self,
        session: Session,
        *,
        status: str | None = None,
        low_stock: bool = False,
        out_of_stock: bool = False,
        search: str | None = None,
        sort_by: str = "stock",
        sort_direction: str = "asc",
        skip: int = 0,
        limit: int = 20,
    ) -> list[DrugInventoryRead]:
        drugs = self.drug_repo.list_drugs(
            session,
            status=status,
            low_stock_threshold=settings.LOW_STOCK_THRESHOLD if low_stock else None,
            out_of_stock=out_of_stock,
            search=search,
            sort_by=sort_by,
            sort_direction=sort_direction,
            skip=skip,
            limit=limit,
        )
        return [DrugInventoryRead.model_validate(d) for d in drugs]

    def update_stock(
        self,
        session: Session,
        drug_id: uuid.UUID,
        payload: StockUpdate,
        admin: User,
    ) -> StockUpdateResult:
        """
        Admin stock change.

          - set:      stock = quantity
          - add:      stock += quantity
          - subtract: stock -= quantity, rejected if it would go negative
        """
        try:
            drug = self.drug_repo.lock(session, drug_id)
            if drug is None:
                raise NotFound("Drug not found")

            old_stock = drug.stock
            new_stock = self._next_stock(drug, payload.operation, payload.quantity)

            self.drug_repo.set_stock(session, drug, new_stock)
            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(drug)
        logger.info(
            "Stock updated: drug=%s %s %s -> %s (op=%s, reason=%s, admin=%s)",
            drug.id,
            drug.name,
            old_stock,
            new_stock,
            payload.operation,
            payload.reason,
            admin.id,
        )

        return StockUpdateResult(
            drug=DrugInventoryRead.model_validate(drug),
            old_stock=old_stock,
            new_stock=new_stock,
            operation=payload.operation,
        )

    def bulk_update_stock(
        self,
        session: Session,
        payload: BulkStockUpdate,
        admin: User,
    ) -> BulkStockUpdateResult:
        """
        Apply several stock changes in one transaction.

        Each line is checked before it is written, so a failing line
        (unknown drug, subtract below zero) is reported and skipped while
        the others still commit.
        """
        results: list[BulkStockLineResult] = []
        errors: list[BulkStockLineError] = []

        try:
            for line in payload.updates:
                drug = self.drug_repo.lock(session, line.drug_id)
                try:
                    if drug is None:
                        raise NotFound("Drug not found")
                    new_stock = self._next_stock(drug, line.operation, line.quantity)
                except (NotFound, InsufficientStock) as exc:
                    errors.append(
                        BulkStockLineError(drug_id=line.drug_id, code=exc.code, error=exc.message)
                    )
                    continue

                old_stock = drug.stock
                self.drug_repo.set_stock(session, drug, new_stock)
                results.append(
                    BulkStockLineResult(
                        drug_id=drug.id,
                        drug_name=drug.name,
                        old_stock=old_stock,
                        new_stock=new_stock,
                        status=drug.status,
                    )
                )
            session.commit()
        except Exception:
            session.rollback()
            raise

        logger.info(
            "Bulk stock update by %s: %s applied, %s failed (reason=%s)",
            admin.id,
            len(results),
            len(errors),
            payload.reason,
        )
        return BulkStockUpdateResult(
            status="partial_success" if errors else "success",
            successful_updates=len(results),
            failed_updates=len(errors),
            results=results,
            errors=errors,
        )

    def inventory_report(
        self,
        session: Session,
        *,
        detailed: bool = False,
        include_inactive: bool = False,
    ) -> InventoryReport:
        drugs = self.drug_repo.list_for_report(session, include_inactive=include_inactive)

        by_status: dict[str, StockStatusSummary] = {}
        for drug in drugs:
            value = to_money(drug.price * drug.stock)
            summary = by_status.get(drug.status)
            if summary is None:
                by_status[drug.status] = StockStatusSummary(
                    count=1, total_quantity=drug.stock, total_value=value
                )
            else:
                summary.count += 1
                summary.total_quantity += drug.stock
                summary.total_value = to_money(summary.total_value + value)

        return InventoryReport(
            generated_at=datetime.now(timezone.utc),
            format="detailed" if detailed else "summary",
            include_inactive=include_inactive,
            total_items=len(drugs),
            total_quantity=sum(d.stock for d in drugs),
            total_stock_value=to_money(sum((s.total_value for s in by_status.values()), Decimal("0"))),
            by_status=by_status,
            items=[DrugInventoryRead.model_validate(d) for d in drugs] if detailed else None,
        )

    def list_low_stock(
        self,
        session: Session,
        threshold: int | None = None,
    ) -> list[DrugInventoryRead]:
        threshold = settings.LOW_STOCK_THRESHOLD if threshold is None else threshold
        return [
            DrugInventoryRead.model_validate(d)
            for d in self.drug_repo.list_low_stock(session, threshold)
        ]

    def get_inventory_statistics(self, session: Session) -> InventoryStatistics:
        threshold = settings.LOW_STOCK_THRESHOLD
        active = Drug.status == DrugStatus.ACTIVE.value

        top_rows = self.stats_repo.top_selling_drugs(session, limit=5)

        return InventoryStatistics(
            total_drugs=self.drug_repo.count(session),
            active_drugs=self.drug_repo.count(session, active),
            in_stock=self.drug_repo.count(session, active, Drug.stock > 0),
            out_of_stock=self.drug_repo.count(session, Drug.stock == 0),
            low_stock=self.drug_repo.count(
                session, active, Drug.stock > 0, Drug.stock <= threshold
            ),
            low_stock_threshold=threshold,
            stock_value=to_money(Decimal(str(self.drug_repo.stock_value(session) or 0))),
            top_selling=[
                TopSellingDrug(
                    drug_id=drug_id,
                    name=name,
                    total_quantity=int(total_quantity or 0),
                    total_revenue=to_money(total_revenue),
                )
                for drug_id, name, total_quantity, total_revenue in top_rows
            ],
        )

    # -------- Helpers --------

    @staticmethod
    def _next_stock(drug: Drug, operation: StockOperation, quantity: int) -> int:
        if operation == "set":
            return quantity
        if operation == "add":
            return drug.stock + quantity
        if quantity > drug.stock:
            raise InsufficientStock(drug.name, quantity, drug.stock)
        return drug.stock - quantity

# healthnet/repositories/drug_repo.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import and_, case, func, update
from sqlmodel import Session, select

from healthnet.models.drug import Drug, DrugStatus


class DrugRepository:
    """
    Data access layer for Drug.

    - Pure DB operations (queries + atomic stock updates).
    - No FastAPI, no commits for stock writes: the caller owns the
      transaction so a checkout can decrement several drugs atomically.
    """

    SORTABLE = {"name", "stock", "price", "created_at"}

    # ----- Reads -----

    def get_by_id(self, session: Session, drug_id: uuid.UUID) -> Drug | None:
        return session.get(Drug, drug_id)

    def lock(self, session: Session, drug_id: uuid.UUID) -> Drug | None:
        """
        SELECT ... FOR UPDATE with fresh attributes.

        Postgres holds the row lock until commit/rollback; SQLite ignores
        FOR UPDATE and relies on the conditional decrement instead.
        """
        stmt = (
            select(Drug)
            .where(Drug.id == drug_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(stmt).first()

    def list_drugs(
        self,
        session: Session,
        *,
        status: str | None = None,
        low_stock_threshold: int | None = None,
        out_of_stock: bool = False,
        search: str | None = None,
        sort_by: str = "stock",
        sort_direction: str = "asc",
        skip: int = 0,
        limit: int = 20,
    ) -> list[Drug]:
        stmt = select(Drug)
        if status:
            stmt = stmt.where(Drug.status == status)
        if low_stock_threshold is not None:
            stmt = stmt.where(Drug.stock <= low_stock_threshold)
        if out_of_stock:
            stmt = stmt.where(Drug.stock == 0)
        if search:
            stmt = stmt.where(Drug.name.ilike(f"%{search}%"))

        if sort_by in self.SORTABLE:
            column = getattr(Drug, sort_by)
            stmt = stmt.order_by(column.desc() if sort_direction == "desc" else column.asc())

        stmt = stmt.offset(skip).limit(limit)
        return list(session.exec(stmt).all())

    def list_for_report(self, session: Session, *, include_inactive: bool = False) -> list[Drug]:
        stmt = select(Drug)
        if not include_inactive:
            stmt = stmt.where(Drug.status != DrugStatus.INACTIVE.value)
        return list(session.exec(stmt.order_by(Drug.name.asc())).all())

    def list_low_stock(self, session: Session, threshold: int) -> list[Drug]:
        stmt = (
            select(Drug)
            .where(
                Drug.status == DrugStatus.ACTIVE.value,
                Drug.stock > 0,
                Drug.stock <= threshold,
            )
            .order_by(Drug.stock.asc())
        )
        return list(session.exec(stmt).all())

    # ----- Writes -----

    def decrement_stock(self, session: Session, drug_id: uuid.UUID, quantity: int) -> bool:
        """
        Atomically take `quantity` units.

        The WHERE clause is the guard: if another transaction got there
        first, zero rows match and stock is left untouched. Status flips
        to out_of_stock in the same statement when the last unit goes.
        """
        stmt = (
            update(Drug)
            .where(Drug.id == drug_id, Drug.stock >= quantity)
            .values(
                stock=Drug.stock - quantity,
                status=case(
                    (Drug.stock == quantity, DrugStatus.OUT_OF_STOCK.value),
                    else_=Drug.status,
                ),
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = session.exec(stmt)
        return result.rowcount == 1

    def increment_stock(self, session: Session, drug_id: uuid.UUID, quantity: int) -> bool:
        """Restock; out_of_stock drugs become active again."""
        stmt = (
            update(Drug)
            .where(Drug.id == drug_id)
            .values(
                stock=Drug.stock + quantity,
                status=case(
                    (
                        and_(
                            Drug.status == DrugStatus.OUT_OF_STOCK.value,
                            Drug.stock + quantity > 0,
                        ),
                        DrugStatus.ACTIVE.value,
                    ),
                    else_=Drug.status,
                ),
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = session.exec(stmt)
        return result.rowcount == 1

    def set_stock(self, session: Session, drug: Drug, new_stock: int) -> Drug:
        """Overwrite stock on a row the caller has locked."""
        drug.stock = new_stock
        if new_stock == 0:
            drug.status = DrugStatus.OUT_OF_STOCK.value
        elif drug.status == DrugStatus.OUT_OF_STOCK.value:
            drug.status = DrugStatus.ACTIVE.value
        drug.updated_at = datetime.now(timezone.utc)
        session.add(drug)
        session.flush()
        return drug

    # ----- Aggregates -----

    def count(self, session: Session, *conditions) -> int:
        stmt = select(func.count()).select_from(Drug)
        if conditions:
            stmt = stmt.where(*conditions)
        return int(session.exec(stmt).one() or 0)

    def stock_value(self, session: Session):
        stmt = select(func.coalesce(func.sum(Drug.stock * Drug.price), 0)).where(
            Drug.status == DrugStatus.ACTIVE.value
        )
        return session.exec(stmt).one()


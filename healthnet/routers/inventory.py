# healthnet/routers/inventory.py
import uuid
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from healthnet.core.auth import require_admin
from healthnet.database import get_session
from healthnet.models.drug import DrugStatus
from healthnet.models.user import User
from healthnet.routers.dependencies import inventory_service as service
from healthnet.schemas.drug import (
    BulkStockUpdate,
    BulkStockUpdateResult,
    DrugInventoryRead,
    InventoryReport,
    StockUpdate,
    StockUpdateResult,
)
from healthnet.schemas.stats import InventoryStatistics

router = APIRouter(prefix="/admin/inventory", tags=["Admin Inventory"])


@router.get(
    "",
    response_model=list[DrugInventoryRead],
    dependencies=[Depends(require_admin)],
)
def list_inventory(
    session: Session = Depends(get_session),
    status: DrugStatus | None = None,
    low_stock: bool = False,
    out_of_stock: bool = False,
    search: str | None = None,
    sort_by: str = "stock",
    sort_direction: str = Query("asc", pattern="^(asc|desc)$"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
):
    """
    Inventory listing (admin only).

    Filters:
      - status: active | inactive | out_of_stock
      - low_stock: stock at or below LOW_STOCK_THRESHOLD
      - out_of_stock: stock == 0
      - search: name contains
    """
    return service.list_inventory(
        session,
        status=status.value if status else None,
        low_stock=low_stock,
        out_of_stock=out_of_stock,
        search=search,
        sort_by=sort_by,
        sort_direction=sort_direction,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/statistics",
    response_model=InventoryStatistics,
    dependencies=[Depends(require_admin)],
)
def inventory_statistics(session: Session = Depends(get_session)):
    return service.get_inventory_statistics(session)


@router.get(
    "/low-stock",
    response_model=list[DrugInventoryRead],
    dependencies=[Depends(require_admin)],
)
def low_stock(
    session: Session = Depends(get_session),
    threshold: int | None = Query(None, ge=0),
):
    return service.list_low_stock(session, threshold)


@router.get(
    "/report",
    response_model=InventoryReport,
    response_model_exclude_none=True,
    dependencies=[Depends(require_admin)],
)
def inventory_report(
    session: Session = Depends(get_session),
    format: Literal["summary", "detailed"] = "summary",
    include_inactive: bool = False,
):
    """
    Stock valuation grouped by status. Inactive drugs are left out unless
    include_inactive; the detailed format lists every drug.
    """
    return service.inventory_report(
        session,
        detailed=format == "detailed",
        include_inactive=include_inactive,
    )


@router.post("/bulk-update", response_model=BulkStockUpdateResult)
def bulk_update_stock(
    payload: BulkStockUpdate,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    """
    Apply several stock changes at once. Lines that fail are listed in
    errors and the status becomes partial_success.
    """
    return service.bulk_update_stock(session, payload, admin)


@router.put("/{drug_id}/stock", response_model=StockUpdateResult)
def update_stock(
    drug_id: uuid.UUID,
    payload: StockUpdate,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    """
    Set, add or subtract stock for one drug (admin only).

    Stock reaching 0 flips the drug to out_of_stock; restocking an
    out_of_stock drug makes it active again.
    """
    return service.update_stock(session, drug_id, payload, admin)

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockledger.api.auth import get_current_user
from stockledger.api.dependencies import get_side_effects, to_http
from stockledger.database import get_db
from stockledger.errors import LedgerError
from stockledger.models.stock_adjustment import AdjustmentStatus
from stockledger.models.user import User
from stockledger.schemas.stock_adjustment import (
    ProjectHoldOut,
    RackHoldOut,
    StockAdjustmentCreate,
    StockAdjustmentList,
    StockAdjustmentOut,
)
from stockledger.services import stock_adjustment_service
from stockledger.services.side_effects import SideEffects

router = APIRouter(tags=["Stock Adjustments"])


@router.post("/stock-adjustment-requests", response_model=StockAdjustmentOut, status_code=201)
def submit_request(
    data: StockAdjustmentCreate,
    user: User = Depends(get_current_user),
    effects: SideEffects = Depends(get_side_effects),
    db: Session = Depends(get_db),
):
    try:
        return stock_adjustment_service.submit_request(db, data, user, effects)
    except LedgerError as e:
        raise to_http(e)


@router.get("/stock-adjustment-requests", response_model=StockAdjustmentList)
def list_requests(
    status: AdjustmentStatus | None = None,
    product_id: str | None = None,
    project_id: str | None = None,
    limit: int = 100,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    # Only admins see everyone's requests
    requested_by = None if user.role == "admin" else user.id
    rows, pending = stock_adjustment_service.list_requests(
        db, status=status, product_id=product_id, project_id=project_id, requested_by=requested_by, limit=limit
    )
    return StockAdjustmentList(
        requests=[StockAdjustmentOut.model_validate(r) for r in rows],
        pending_count=pending,
    )


@router.post("/stock-adjustment-requests/{request_id}/approve", response_model=StockAdjustmentOut)
def approve_request(
    request_id: str,
    user: User = Depends(get_current_user),
    effects: SideEffects = Depends(get_side_effects),
    db: Session = Depends(get_db),
):
    try:
        return stock_adjustment_service.approve_request(db, request_id, user, effects)
    except LedgerError as e:
        raise to_http(e)


@router.post("/stock-adjustment-requests/{request_id}/reject", response_model=StockAdjustmentOut)
def reject_request(
    request_id: str,
    user: User = Depends(get_current_user),
    effects: SideEffects = Depends(get_side_effects),
    db: Session = Depends(get_db),
):
    try:
        return stock_adjustment_service.reject_request(db, request_id, user, effects)
    except LedgerError as e:
        raise to_http(e)


@router.get("/stock-on-hold", response_model=list[ProjectHoldOut])
def project_holds(
    project_id: str | None = None,
    product_id: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return stock_adjustment_service.list_project_holds(db, project_id=project_id, product_id=product_id)


@router.get("/rack-stock-on-hold", response_model=list[RackHoldOut])
def rack_holds(
    rack_id: str | None = None,
    project_id: str | None = None,
    product_id: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return stock_adjustment_service.list_rack_holds(db, rack_id=rack_id, project_id=project_id, product_id=product_id)

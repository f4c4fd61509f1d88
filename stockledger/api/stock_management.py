from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session

from stockledger.api.auth import get_current_user
from stockledger.api.dependencies import get_side_effects, to_http
from stockledger.database import get_db
from stockledger.errors import LedgerError
from stockledger.models.transaction import MovementDirection, TransactionStatus
from stockledger.models.user import User
from stockledger.schemas.transaction import StockMovementCreate, TransactionOut, TransactionPage
from stockledger.services import transaction_service
from stockledger.services.document_service import document_filename, render_delivery_document
from stockledger.services.side_effects import SideEffects

router = APIRouter(prefix="/stock-management", tags=["Stock Management"])


@router.post("", response_model=TransactionOut, status_code=201)
def create_movement(
    data: StockMovementCreate,
    user: User = Depends(get_current_user),
    effects: SideEffects = Depends(get_side_effects),
    db: Session = Depends(get_db),
):
    try:
        return transaction_service.create_movement(db, data, user, effects)
    except LedgerError as e:
        raise to_http(e)


@router.get("", response_model=TransactionPage)
def list_movements(
    direction: MovementDirection | None = None,
    status: TransactionStatus | None = None,
    order_mode: bool | None = None,
    product_id: str | None = None,
    project_id: str | None = None,
    rack_id: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    skip: int = 0,
    limit: int = 50,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows, total = transaction_service.list_transactions(
        db,
        direction=direction,
        status=status,
        order_mode=order_mode,
        product_id=product_id,
        project_id=project_id,
        rack_id=rack_id,
        date_from=date_from,
        date_to=date_to,
        skip=skip,
        limit=limit,
    )
    return TransactionPage(
        transactions=[TransactionOut.model_validate(r) for r in rows],
        total=total,
        limit=limit,
        skip=skip,
        has_more=skip + len(rows) < total,
    )


@router.get("/{txn_id}", response_model=TransactionOut)
def get_movement(txn_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    txn = transaction_service.get_transaction(db, txn_id)
    if not txn:
        raise HTTPException(404, "Transaction not found")
    return txn


@router.get("/{txn_id}/document")
def download_document(txn_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    txn = transaction_service.get_transaction(db, txn_id)
    if not txn:
        raise HTTPException(404, "Transaction not found")
    if txn.status != TransactionStatus.COMPLETED:
        raise HTTPException(400, "Documents are only available for completed transactions")
    pdf = render_delivery_document(txn)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={document_filename(txn)}"},
    )

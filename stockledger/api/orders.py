from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockledger.api.auth import get_current_user
from stockledger.api.dependencies import get_side_effects, to_http
from stockledger.database import get_db
from stockledger.errors import LedgerError
from stockledger.models.user import User
from stockledger.schemas.transaction import OrderCompletionOut, TransactionOut
from stockledger.services import order_service
from stockledger.services.side_effects import SideEffects

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("/{txn_id}/complete", response_model=OrderCompletionOut)
def complete_order(
    txn_id: str,
    user: User = Depends(get_current_user),
    effects: SideEffects = Depends(get_side_effects),
    db: Session = Depends(get_db),
):
    try:
        result = order_service.complete_order(db, txn_id, user, effects)
    except LedgerError as e:
        raise to_http(e)
    txn = result.transaction
    if result.warnings:
        message = f"Order {txn.status.value} with {len(result.warnings)} warnings"
    else:
        message = "Order completed successfully"
    return OrderCompletionOut(
        message=message,
        transaction=TransactionOut.model_validate(txn),
        warnings=result.warnings,
        document_available=result.document is not None,
    )


@router.post("/{txn_id}/cancel", response_model=TransactionOut)
def cancel_order(
    txn_id: str,
    user: User = Depends(get_current_user),
    effects: SideEffects = Depends(get_side_effects),
    db: Session = Depends(get_db),
):
    try:
        return order_service.cancel_order(db, txn_id, user, effects)
    except LedgerError as e:
        raise to_http(e)

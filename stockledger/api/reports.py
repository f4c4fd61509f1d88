from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockledger.api.auth import get_current_user
from stockledger.database import get_db
from stockledger.models.user import User
from stockledger.services import report_service

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/inventory")
def inventory_report(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return report_service.inventory_summary(db)


@router.get("/projects-stock")
def projects_stock_report(
    project_id: str | None = None, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return report_service.project_stock(db, project_id=project_id)


@router.get("/pending-counts")
def pending_counts(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return report_service.pending_counts(db)

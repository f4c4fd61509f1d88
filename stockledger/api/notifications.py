from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockledger.api.auth import get_current_user
from stockledger.database import get_db
from stockledger.models.user import User
from stockledger.schemas.notification import FeedItem, NotificationOut
from stockledger.services import notification_service

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=list[FeedItem])
def activity_feed(limit: int = 50, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return notification_service.build_feed(db, user, limit=limit)


@router.get("/inbox", response_model=list[NotificationOut])
def inbox(limit: int = 50, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return notification_service.list_inbox(db, user, limit=limit)

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from stockledger.api.auth import get_current_user
from stockledger.database import get_db
from stockledger.models.user import User
from stockledger.schemas.catalog import RackOut
from stockledger.services import catalog_service

router = APIRouter(prefix="/racks", tags=["Racks"])


@router.get("/{rack_id}", response_model=RackOut)
def get_rack(rack_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rack = catalog_service.get_rack(db, rack_id)
    if not rack:
        raise HTTPException(404, "Rack not found")
    return catalog_service.rack_view(rack)

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from stockledger.api.auth import get_current_user, require_role
from stockledger.api.dependencies import to_http
from stockledger.database import get_db
from stockledger.errors import LedgerError
from stockledger.models.user import User
from stockledger.schemas.catalog import MemberAdd, ProjectCreate, ProjectOut, RackCreate, RackOut
from stockledger.services import catalog_service

router = APIRouter(prefix="/projects", tags=["Projects"])


@router.post("", response_model=ProjectOut, status_code=201)
def create_project(data: ProjectCreate, user: User = Depends(require_role("admin")), db: Session = Depends(get_db)):
    try:
        return catalog_service.create_project(db, data)
    except LedgerError as e:
        raise to_http(e)


@router.get("", response_model=list[ProjectOut])
def list_projects(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    member_id = None if user.role in ("admin", "keeper") else user.id
    return catalog_service.list_projects(db, member_id=member_id)


@router.get("/{project_id}", response_model=ProjectOut)
def get_project(project_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    project = catalog_service.get_project(db, project_id)
    if not project:
        raise HTTPException(404, "Project not found")
    return project


@router.post("/{project_id}/racks", response_model=RackOut, status_code=201)
def add_rack(
    project_id: str, data: RackCreate, user: User = Depends(require_role("admin")), db: Session = Depends(get_db)
):
    try:
        rack = catalog_service.add_rack(db, project_id, data.rack_number)
    except LedgerError as e:
        raise to_http(e)
    return catalog_service.rack_view(rack)


@router.post("/{project_id}/members", response_model=ProjectOut)
def add_member(
    project_id: str, data: MemberAdd, user: User = Depends(require_role("admin")), db: Session = Depends(get_db)
):
    try:
        return catalog_service.add_member(db, project_id, data.user_id)
    except LedgerError as e:
        raise to_http(e)

import json

from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, Request, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from stockledger.api.dependencies import to_http
from stockledger.config import settings
from stockledger.database import get_db
from stockledger.errors import LedgerError
from stockledger.models.user import User
from stockledger.services import activity_service, auth_service

router = APIRouter(prefix="/auth", tags=["Auth"])


class LoginRequest(BaseModel):
    username: str
    password: str


class UserOut(BaseModel):
    id: str
    username: str
    email: str
    display_name: str
    role: str
    active: bool = True

    model_config = {"from_attributes": True}


class CreateUserRequest(BaseModel):
    username: str
    password: str
    email: str = ""
    display_name: str = ""
    role: str = "staff"


class ActivityLogOut(BaseModel):
    id: str
    category: str
    action: str
    entity_type: str
    entity_id: str
    entity_name: str
    user_id: str | None
    username: str
    project_id: str | None
    project_name: str | None
    changes: dict
    details: dict
    created_at: str


def get_current_user(
    token: str | None = Cookie(default=None, alias="token"),
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    """Dependency: extract user from JWT cookie or bearer header."""
    if not token and authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    if not token:
        raise HTTPException(401, "Not authenticated")
    payload = auth_service.decode_token(token)
    if not payload:
        raise HTTPException(401, "Invalid or expired token")
    user = auth_service.get_user_by_id(db, payload["sub"])
    if not user or not user.active:
        raise HTTPException(401, "User not found or disabled")
    return user


def require_role(*roles: str):
    def checker(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(403, f"Requires role: {', '.join(roles)}")
        return user
    return checker


@router.post("/login")
def login(data: LoginRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    user = auth_service.authenticate(db, data.username, data.password)
    if not user:
        raise HTTPException(401, "Invalid username or password")
    token = auth_service.create_access_token(user.id, user.username, user.role)
    response.set_cookie(
        "token", token, httponly=True, samesite="lax", max_age=3600 * settings.ACCESS_TOKEN_EXPIRE_HOURS
    )
    auth_service.log_activity(db, user, "login", ip=request.client.host if request.client else "")
    return {"token": token, "user": UserOut.model_validate(user)}


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie("token")
    return {"ok": True}


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return user


@router.get("/users", response_model=list[UserOut])
def list_users(role: str | None = None, user: User = Depends(require_role("admin")), db: Session = Depends(get_db)):
    return auth_service.list_users(db, role=role)


@router.post("/users", response_model=UserOut, status_code=201)
def create_user(data: CreateUserRequest, user: User = Depends(require_role("admin")), db: Session = Depends(get_db)):
    try:
        u = auth_service.create_user(db, data.username, data.password, data.display_name, data.role, data.email)
    except LedgerError as e:
        raise to_http(e)
    auth_service.log_activity(db, user, "create_user", detail=f"Created user: {data.username}")
    return u


@router.get("/activity", response_model=list[ActivityLogOut])
def activity_logs(
    limit: int = 100,
    user_id: str | None = None,
    entity_id: str | None = None,
    action: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if user.role != "admin":
        user_id = user.id
    logs = activity_service.get_activity_logs(db, limit=limit, user_id=user_id, entity_id=entity_id, action=action)
    return [
        ActivityLogOut(
            id=l.id,
            category=l.category,
            action=l.action,
            entity_type=l.entity_type,
            entity_id=l.entity_id,
            entity_name=l.entity_name,
            user_id=l.user_id,
            username=l.username,
            project_id=l.project_id,
            project_name=l.project_name,
            changes=json.loads(l.changes or "{}"),
            details=json.loads(l.details or "{}"),
            created_at=l.created_at.isoformat() if l.created_at else "",
        )
        for l in logs
    ]

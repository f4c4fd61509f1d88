import logging
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt
from sqlalchemy.orm import Session

from stockledger.config import settings
from stockledger.errors import ValidationError
from stockledger.models.user import ROLES, User
from stockledger.services.activity_service import record_activity

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode(), hashed.encode())


def create_access_token(user_id: str, username: str, role: str) -> str:
    payload = {
        "sub": user_id,
        "username": username,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.ACCESS_TOKEN_EXPIRE_HOURS),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm="HS256")


def decode_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=["HS256"])
    except (jwt.ExpiredSignatureError, jwt.InvalidTokenError):
        return None


def authenticate(db: Session, username: str, password: str) -> User | None:
    user = db.query(User).filter(User.username == username, User.active == True).first()  # noqa: E712
    if not user or not verify_password(password, user.password_hash):
        return None
    return user


def get_user_by_id(db: Session, user_id: str) -> User | None:
    return db.query(User).filter(User.id == user_id).first()


def create_user(
    db: Session,
    username: str,
    password: str,
    display_name: str = "",
    role: str = "staff",
    email: str = "",
) -> User:
    if role not in ROLES:
        raise ValidationError(f"Unknown role '{role}', expected one of {', '.join(ROLES)}")
    if email and "@" not in email:
        raise ValidationError(f"Invalid email address '{email}'")
    existing = db.query(User).filter(User.username == username).first()
    if existing:
        raise ValidationError(f"Username '{username}' already exists")
    user = User(
        username=username,
        email=email.strip().lower(),
        display_name=display_name or username,
        password_hash=hash_password(password),
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def list_users(db: Session, role: str | None = None) -> list[User]:
    q = db.query(User)
    if role:
        q = q.filter(User.role == role)
    return q.order_by(User.created_at.desc()).all()


def ensure_default_admin(db: Session) -> None:
    """Create default admin user if no users exist."""
    count = db.query(User).count()
    if count == 0:
        create_user(
            db, username="admin", password=settings.DEFAULT_ADMIN_PASSWORD, display_name="Admin", role="admin"
        )
        logger.info("Created default admin user")


def log_activity(db: Session, user: User, action: str, detail: str = "", ip: str = "") -> None:
    record_activity(
        db,
        "auth",
        action,
        entity_type="user",
        entity_id=user.id,
        entity_name=user.username,
        user_id=user.id,
        username=user.label,
        details={"detail": detail, "ip": ip},
    )
    db.commit()

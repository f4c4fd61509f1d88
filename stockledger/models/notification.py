import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    type: Mapped[str] = mapped_column(String, nullable=False, index=True)  # stock_in, order_request, ...
    title: Mapped[str] = mapped_column(String, default="")
    message: Mapped[str] = mapped_column(Text, default="")
    priority: Mapped[str] = mapped_column(String, default="medium")
    category: Mapped[str] = mapped_column(String, default="stock_management")
    target_roles: Mapped[str] = mapped_column(Text, default="[]")  # JSON list
    target_users: Mapped[str] = mapped_column(Text, default="[]")  # JSON list
    payload: Mapped[str] = mapped_column(Text, default="{}")  # JSON
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class EmailEvent(Base):
    """Marker row: a mail of `category` for the entity was already sent."""

    __tablename__ = "email_events"
    __table_args__ = (UniqueConstraint("entity_type", "entity_id", "category", name="uq_email_event"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    entity_type: Mapped[str] = mapped_column(String, nullable=False)
    entity_id: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    recipients: Mapped[str] = mapped_column(Text, default="")
    sent_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

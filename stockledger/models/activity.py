import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.database import Base


class ActivityLog(Base):
    """Audit trail entry for a stock movement, order or adjustment event."""

    __tablename__ = "activity_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    category: Mapped[str] = mapped_column(String, nullable=False, index=True)  # stock_management, stock_adjustment
    action: Mapped[str] = mapped_column(String, nullable=False, index=True)  # e.g. stock_in, order_completed, ...
    entity_type: Mapped[str] = mapped_column(String, default="")
    entity_id: Mapped[str] = mapped_column(String, default="", index=True)
    entity_name: Mapped[str] = mapped_column(String, default="")
    user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    username: Mapped[str] = mapped_column(String, default="System User")
    project_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    project_name: Mapped[str | None] = mapped_column(String, nullable=True)
    changes: Mapped[str] = mapped_column(Text, default="{}")  # JSON
    details: Mapped[str] = mapped_column(Text, default="{}")  # JSON
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

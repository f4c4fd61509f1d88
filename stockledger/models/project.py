import json
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.database import Base


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String, nullable=False)
    color: Mapped[str] = mapped_column(String, default="#6B7280")

    # JSON lists of ids, e.g. '["<rack id>", ...]'
    rack_refs: Mapped[str] = mapped_column(Text, default="[]")
    member_refs: Mapped[str] = mapped_column(Text, default="[]")

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def rack_ids(self) -> list[str]:
        return [str(r) for r in json.loads(self.rack_refs or "[]")]

    @property
    def member_ids(self) -> list[str]:
        return [str(m) for m in json.loads(self.member_refs or "[]")]

    def has_rack(self, rack_id: str) -> bool:
        return str(rack_id) in self.rack_ids

    def has_member(self, user_id: str) -> bool:
        return str(user_id) in self.member_ids


class Rack(Base):
    __tablename__ = "racks"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    rack_number: Mapped[str] = mapped_column(String, unique=True, index=True)

    # Product stock entries, see services.refs for the encoding
    products: Mapped[str] = mapped_column(Text, default="[]")
    # Compare-and-set token, bumped on every stock write
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

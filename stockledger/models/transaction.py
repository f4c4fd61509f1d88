import json
import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockledger.database import Base


class MovementDirection(str, PyEnum):
    IN = "in"
    OUT = "out"


class TransactionStatus(str, PyEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class StockTransaction(Base):
    __tablename__ = "stock_transactions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    transaction_code: Mapped[str] = mapped_column(String, unique=True, index=True)
    direction: Mapped[str] = mapped_column(
        Enum(MovementDirection, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    is_order_mode: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(
        Enum(TransactionStatus, values_callable=lambda x: [e.value for e in x]),
        default=TransactionStatus.COMPLETED,
        index=True,
    )
    date: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    invoice_number: Mapped[str | None] = mapped_column(String, nullable=True)
    supplier_name: Mapped[str | None] = mapped_column(String, nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    completed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    warnings: Mapped[str] = mapped_column(Text, default="[]")  # JSON list of strings

    # Single-item transactions also carry their line item here
    product_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    project_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    rack_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    previous_stock: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_stock: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    items: Mapped[list["TransactionItem"]] = relationship(
        "TransactionItem",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionItem.position",
    )

    @property
    def warning_list(self) -> list[str]:
        return json.loads(self.warnings or "[]")

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)


class TransactionItem(Base):
    __tablename__ = "stock_transaction_items"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    transaction_id: Mapped[str] = mapped_column(String, ForeignKey("stock_transactions.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)

    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False, index=True)
    project_id: Mapped[str] = mapped_column(String, ForeignKey("projects.id"), nullable=False, index=True)
    rack_id: Mapped[str] = mapped_column(String, ForeignKey("racks.id"), nullable=False, index=True)

    product_code: Mapped[str] = mapped_column(String, default="")
    product_name: Mapped[str] = mapped_column(String, default="")
    unit: Mapped[str] = mapped_column(String, default="EA")
    project_name: Mapped[str] = mapped_column(String, default="")
    rack_number: Mapped[str] = mapped_column(String, default="")

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_stock: Mapped[int] = mapped_column(Integer, default=0)
    new_stock: Mapped[int] = mapped_column(Integer, default=0)

    transaction: Mapped["StockTransaction"] = relationship("StockTransaction", back_populates="items")

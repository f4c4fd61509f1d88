import json
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from stockledger.models.transaction import MovementDirection, TransactionStatus


class StockMovementItem(BaseModel):
    product_id: str = Field(alias="productId")
    project_id: str = Field(alias="projectId")
    rack_id: str = Field(alias="rackId")
    quantity: int

    model_config = {"populate_by_name": True}


class StockMovementCreate(BaseModel):
    direction: MovementDirection = Field(alias="type")
    items: list[StockMovementItem]
    order_mode: bool = Field(default=False, alias="orderMode")
    invoice_number: str | None = Field(default=None, alias="invoiceNumber")
    supplier_name: str | None = Field(default=None, alias="supplierName")
    message: str | None = None
    date: datetime | None = None

    model_config = {"populate_by_name": True}

    @field_validator("items")
    @classmethod
    def items_not_empty(cls, v):
        if not v:
            raise ValueError("Type and items are required")
        return v


class TransactionItemOut(BaseModel):
    product_id: str
    project_id: str
    rack_id: str
    product_code: str
    product_name: str
    unit: str
    project_name: str
    rack_number: str
    quantity: int
    previous_stock: int
    new_stock: int

    model_config = {"from_attributes": True}


class TransactionOut(BaseModel):
    id: str
    transaction_code: str
    direction: MovementDirection
    is_order_mode: bool
    status: TransactionStatus
    date: datetime | None = None
    invoice_number: str | None = None
    supplier_name: str | None = None
    message: str | None = None
    created_by: str | None = None
    completed_by: str | None = None
    completed_at: datetime | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    warnings: list[str] = []
    items: list[TransactionItemOut]

    product_id: str | None = None
    project_id: str | None = None
    rack_id: str | None = None
    quantity: int | None = None
    previous_stock: int | None = None
    new_stock: int | None = None

    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("warnings", mode="before")
    @classmethod
    def parse_warnings(cls, v):
        if isinstance(v, str):
            return json.loads(v or "[]")
        return v or []


class TransactionPage(BaseModel):
    transactions: list[TransactionOut]
    total: int
    limit: int
    skip: int
    has_more: bool


class OrderCompletionOut(BaseModel):
    message: str
    transaction: TransactionOut
    warnings: list[str]
    document_available: bool

from datetime import datetime

from pydantic import BaseModel, Field

from stockledger.models.stock_adjustment import AdjustmentStatus


class StockAdjustmentCreate(BaseModel):
    product_id: str = Field(alias="productId")
    project_id: str = Field(alias="projectId")
    rack_id: str = Field(alias="rackId")
    stock_on_hand: int = Field(default=0, alias="stockOnHand")
    stock_on_hold: int = Field(default=0, alias="stockOnHold")
    reason: str = ""

    model_config = {"populate_by_name": True}


class StockAdjustmentOut(BaseModel):
    id: str
    request_code: str
    product_id: str
    project_id: str
    rack_id: str
    project_name: str
    rack_number: str
    stock_on_hand: int
    stock_on_hold: int
    current_rack_stock: int
    reason: str
    status: AdjustmentStatus
    requested_by: str
    requested_by_name: str
    requested_at: datetime | None = None
    approved_by: str | None = None
    approved_by_name: str | None = None
    approved_at: datetime | None = None
    rejected_by: str | None = None
    rejected_by_name: str | None = None
    rejected_at: datetime | None = None
    failure_reason: str | None = None
    failed_at: datetime | None = None

    model_config = {"from_attributes": True}


class StockAdjustmentList(BaseModel):
    requests: list[StockAdjustmentOut]
    pending_count: int


class RackHoldOut(BaseModel):
    rack_id: str
    project_id: str
    product_id: str
    held_quantity: int
    updated_by: str
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class ProjectHoldOut(BaseModel):
    project_id: str
    product_id: str
    held_quantity: int
    updated_by: str
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

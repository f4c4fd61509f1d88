from datetime import datetime

from pydantic import BaseModel, Field


class ProductCreate(BaseModel):
    sku: str
    name: str
    unit: str = "EA"
    price: float = 0.0


class ProductOut(BaseModel):
    id: str
    sku: str
    name: str
    unit: str
    price: float
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ProjectCreate(BaseModel):
    name: str
    color: str = "#6B7280"


class ProjectOut(BaseModel):
    id: str
    name: str
    color: str
    rack_ids: list[str]
    member_ids: list[str]

    model_config = {"from_attributes": True}


class RackCreate(BaseModel):
    rack_number: str = Field(alias="rackNumber")

    model_config = {"populate_by_name": True}


class MemberAdd(BaseModel):
    user_id: str = Field(alias="userId")

    model_config = {"populate_by_name": True}


class RackEntryOut(BaseModel):
    product_id: str
    stock: int


class RackOut(BaseModel):
    id: str
    rack_number: str
    version: int
    products: list[RackEntryOut]
    updated_at: datetime | None = None

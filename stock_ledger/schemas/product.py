from datetime import datetime

from pydantic import BaseModel, Field


class ProductCreate(BaseModel):
    sku: str = Field(min_length=1)
    name: str = Field(min_length=1)
    category: str = ""
    unit: str = "pcs"
    minimum_stock: int | None = Field(None, ge=0)


class ProductOut(BaseModel):
    id: str
    sku: str
    name: str
    category: str
    unit: str
    minimum_stock: int | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class SupplierCreate(BaseModel):
    name: str = Field(min_length=1)


class SupplierOut(BaseModel):
    id: str
    name: str
    created_at: datetime

    model_config = {"from_attributes": True}

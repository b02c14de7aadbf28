from pydantic import BaseModel, Field

from atelier.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid


class CategoryBase(BaseModel):
    """Base category schema."""
    name: str = Field(..., min_length=1, max_length=200)
    slug: Optional[str] = Field(None, max_length=220, description="Generated from the name when omitted")
    description: Optional[str] = None
    parent_id: Optional[uuid.UUID] = None
    image_url: Optional[str] = Field(None, max_length=500)
    sort_order: int = Field(default=0)
    is_active: bool = True


class CategoryCreate(CategoryBase):
    pass


class CategoryUpdate(BaseUpdateSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    slug: Optional[str] = Field(None, min_length=1, max_length=220)
    description: Optional[str] = None
    parent_id: Optional[uuid.UUID] = None
    image_url: Optional[str] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class CategoryResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    slug: str
    description: Optional[str] = None
    parent_id: Optional[uuid.UUID] = None
    image_url: Optional[str] = None
    sort_order: int
    is_active: bool
    created_at: datetime


class ProductCreate(BaseCreateSchema):
    name: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=280)
    sku: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    compare_at_price: Optional[Decimal] = Field(None, ge=0)
    stock: int = Field(default=0, ge=0)
    low_stock_threshold: int = Field(default=5, ge=0)
    category_id: Optional[uuid.UUID] = None
    images: List[str] = []
    is_active: bool = True
    is_featured: bool = False


class ProductUpdate(BaseUpdateSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = Field(None, min_length=1, max_length=280)
    sku: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    compare_at_price: Optional[Decimal] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    category_id: Optional[uuid.UUID] = None
    images: Optional[List[str]] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None


class ProductBrief(BaseResponseSchema):
    id: uuid.UUID
    name: str
    slug: str
    sku: Optional[str] = None
    price: Decimal
    stock: int
    low_stock_threshold: int


class ProductResponse(ProductBrief):
    description: Optional[str] = None
    compare_at_price: Optional[Decimal] = None
    category_id: Optional[uuid.UUID] = None
    category: Optional[CategoryResponse] = None
    images: List[str] = []
    is_active: bool
    is_featured: bool
    created_at: datetime
    updated_at: datetime


class ProductListResponse(BaseModel):
    items: List[ProductResponse]
    total: int
    page: int
    size: int
    pages: int


class StockAdjustRequest(BaseCreateSchema):
    """Signed quantity: positive adds stock, negative removes it."""
    quantity: int
    movement_type: str = Field(default="ADJUSTMENT", description="SALE, RETURN, ADJUSTMENT, RESTOCK")
    reason: Optional[str] = Field(None, max_length=500)
    reference: Optional[str] = Field(None, max_length=100)


class StockMovementResponse(BaseResponseSchema):
    id: uuid.UUID
    product_id: uuid.UUID
    type: str
    quantity: int
    stock_before: int
    stock_after: int
    reference: Optional[str] = None
    reason: Optional[str] = None
    created_by_id: Optional[uuid.UUID] = None
    created_at: datetime


class StockMovementListResponse(BaseModel):
    items: List[StockMovementResponse]
    total: int
    page: int
    size: int
    pages: int


class InventoryAlertsResponse(BaseModel):
    low_stock: List[ProductBrief]
    out_of_stock: List[ProductBrief]

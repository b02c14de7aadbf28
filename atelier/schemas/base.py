"""
Base schema classes.

Response schemas read from ORM objects and must inherit from
BaseResponseSchema; request bodies use BaseCreateSchema / BaseUpdateSchema.
"""
from datetime import datetime
from typing import Generic, List, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class BaseResponseSchema(BaseModel):
    """
    Base class for response schemas built from ORM models.

    Usage:
        class ProductResponse(BaseResponseSchema):
            id: UUID
            name: str
            price: Decimal
    """
    model_config = ConfigDict(
        from_attributes=True,
        json_encoders={
            UUID: str,
            datetime: lambda v: v.isoformat() if v else None,
        },
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """Input schema; unknown fields sent by the frontends are ignored."""
    model_config = ConfigDict(extra="ignore")


class BaseUpdateSchema(BaseModel):
    """
    Partial update schema.

    Endpoints pass model_dump(exclude_unset=True) to the services so that
    omitted fields are left untouched.
    """
    model_config = ConfigDict(extra="ignore")


class PaginatedResponse(BaseModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    size: int
    pages: int


class MessageResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None


OptionalUUID = Optional[UUID]

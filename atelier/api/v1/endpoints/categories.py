from typing import List
import uuid

from fastapi import APIRouter, Depends, Query, Request, status

from atelier.api.deps import DB, require_permissions
from atelier.core.exceptions import AtelierError, http_error
from atelier.schemas.catalog import CategoryCreate, CategoryUpdate, CategoryResponse
from atelier.services.cache_service import get_cache
from atelier.services.catalog_service import CatalogService


router = APIRouter(tags=["Categories"], dependencies=[Depends(require_permissions("categories"))])


@router.get("", response_model=List[CategoryResponse])
async def list_categories(db: DB, active_only: bool = Query(False)):
    categories = await CatalogService(db).list_categories(active_only=active_only)
    return [CategoryResponse.model_validate(c) for c in categories]


@router.get("/{category_id}", response_model=CategoryResponse)
async def get_category(category_id: uuid.UUID, db: DB):
    try:
        category = await CatalogService(db).get_category(category_id)
    except AtelierError as e:
        raise http_error(e)
    return CategoryResponse.model_validate(category)


@router.post("", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
async def create_category(data: CategoryCreate, request: Request, db: DB):
    """Create a category; the slug is derived from the name when omitted."""
    try:
        category = await CatalogService(db).create_category(data.model_dump())
    except AtelierError as e:
        raise http_error(e)

    await get_cache().invalidate_categories(request.state.tenant_id)
    return CategoryResponse.model_validate(category)


@router.put("/{category_id}", response_model=CategoryResponse)
async def update_category(category_id: uuid.UUID, data: CategoryUpdate, request: Request, db: DB):
    try:
        category = await CatalogService(db).update_category(category_id, data.model_dump(exclude_unset=True))
    except AtelierError as e:
        raise http_error(e)

    await get_cache().invalidate_storefront(request.state.tenant_id)
    return CategoryResponse.model_validate(category)


@router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_category(category_id: uuid.UUID, request: Request, db: DB):
    try:
        await CatalogService(db).delete_category(category_id)
    except AtelierError as e:
        raise http_error(e)

    await get_cache().invalidate_storefront(request.state.tenant_id)

"""Team management: back-office accounts and tailors."""
from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, Query, status

from atelier.api.deps import DB, CurrentUser, StaffUser, require_roles
from atelier.core.exceptions import AtelierError, http_error
from atelier.models.user import UserRole
from atelier.schemas.auth import (
    UserResponse,
    TeamMemberCreate,
    TeamMemberUpdate,
    TeamListResponse,
    TailorResponse,
)
from atelier.services.auth_service import AuthService


router = APIRouter(tags=["Team"])

admin_only = [Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))]


@router.get("/team", response_model=TeamListResponse, dependencies=admin_only)
async def list_team(
    db: DB,
    role: Optional[str] = Query(None),
    include_inactive: bool = Query(True),
):
    members = await AuthService(db).list_team(role=role, include_inactive=include_inactive)
    return TeamListResponse(
        items=[UserResponse.model_validate(m) for m in members],
        total=len(members),
    )


@router.post("/team", response_model=UserResponse, status_code=status.HTTP_201_CREATED, dependencies=admin_only)
async def create_team_member(data: TeamMemberCreate, db: DB):
    try:
        user = await AuthService(db).create_team_member(
            name=data.name,
            role=data.role,
            password=data.password,
            email=data.email,
            phone=data.phone,
        )
    except AtelierError as e:
        raise http_error(e)
    return UserResponse.model_validate(user)


@router.get("/team/{user_id}", response_model=UserResponse, dependencies=admin_only)
async def get_team_member(user_id: uuid.UUID, db: DB):
    try:
        user = await AuthService(db).get_team_member(user_id)
    except AtelierError as e:
        raise http_error(e)
    return UserResponse.model_validate(user)


@router.patch("/team/{user_id}", response_model=UserResponse, dependencies=admin_only)
async def update_team_member(user_id: uuid.UUID, data: TeamMemberUpdate, db: DB, current_user: CurrentUser):
    try:
        user = await AuthService(db).update_team_member(
            user_id, data.model_dump(exclude_unset=True), current_user
        )
    except AtelierError as e:
        raise http_error(e)
    return UserResponse.model_validate(user)


@router.delete("/team/{user_id}", response_model=UserResponse, dependencies=admin_only)
async def deactivate_team_member(user_id: uuid.UUID, db: DB, current_user: CurrentUser):
    """Deactivate an account; history stays attached to it."""
    try:
        user = await AuthService(db).deactivate_team_member(user_id, current_user)
    except AtelierError as e:
        raise http_error(e)
    return UserResponse.model_validate(user)


@router.get("/tailors", response_model=List[TailorResponse])
async def list_tailors(db: DB, current_user: StaffUser):
    return await AuthService(db).list_tailors()

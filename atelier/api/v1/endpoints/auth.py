from fastapi import APIRouter, Request, status

from atelier.api.deps import DB, CurrentUser
from atelier.core.exceptions import AtelierError, http_error
from atelier.schemas.auth import (
    LoginRequest,
    RefreshTokenRequest,
    TokenResponse,
    UserResponse,
    CustomerRegisterRequest,
    CustomerRegisterResponse,
)
from atelier.services.auth_service import AuthService


router = APIRouter(tags=["Authentication"])


@router.post("/login", response_model=TokenResponse)
async def login(data: LoginRequest, request: Request, db: DB):
    """
    Login with e-mail or phone number.

    Tokens are bound to the tenant of the request.
    """
    service = AuthService(db, request.state.tenant_id)
    try:
        tokens = await service.login(data.identifier, data.password)
    except AtelierError as e:
        raise http_error(e)
    return TokenResponse(**tokens)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(data: RefreshTokenRequest, request: Request, db: DB):
    service = AuthService(db, request.state.tenant_id)
    try:
        tokens = await service.refresh(data.refresh_token)
    except AtelierError as e:
        raise http_error(e)
    return TokenResponse(**tokens)


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(current_user: CurrentUser):
    return UserResponse.model_validate(current_user)


@router.post("/register", response_model=CustomerRegisterResponse, status_code=status.HTTP_201_CREATED)
async def register_customer(data: CustomerRegisterRequest, request: Request, db: DB):
    """Storefront sign-up."""
    service = AuthService(db, request.state.tenant_id)
    try:
        result = await service.register_customer(
            name=data.name,
            phone=data.phone,
            password=data.password,
            email=data.email,
        )
    except AtelierError as e:
        raise http_error(e)
    return CustomerRegisterResponse(
        user=UserResponse.model_validate(result["user"]),
        tokens=TokenResponse(**result["tokens"]),
    )

from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.database import get_db, get_db_with_tenant
from atelier.core.security import verify_access_token
from atelier.core.permissions import PermissionChecker
from atelier.models.tenant import Tenant
from atelier.models.user import User, UserRole


logger = logging.getLogger(__name__)

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)

TenantDB = Annotated[AsyncSession, Depends(get_db_with_tenant)]


def get_current_tenant(request: Request) -> Tenant:
    tenant = getattr(request.state, "tenant", None)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return tenant


async def _load_user(request: Request, db: AsyncSession, token: str) -> Optional[User]:
    user_id = verify_access_token(token, tenant_id=getattr(request.state, "tenant_id", None))
    if user_id is None:
        logger.warning("Token verification failed - invalid, expired or issued for another tenant")
        return None

    try:
        user_uuid = uuid.UUID(user_id)
    except ValueError:
        logger.warning(f"Invalid user_id in token: {user_id}")
        return None

    result = await db.execute(select(User).where(User.id == user_uuid))
    return result.scalar_one_or_none()


async def get_current_user(
    request: Request,
    db: TenantDB,
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> User:
    """
    Dependency to get the current authenticated user.

    Users live in the tenant schema, so the lookup shares the request's
    tenant session. Tokens carry the tenant_id they were issued for.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    user = await _load_user(request, db, credentials.credentials)
    if user is None:
        raise credentials_exception

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated"
        )
    return user


async def get_optional_user(
    request: Request,
    db: TenantDB,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(optional_security)],
) -> Optional[User]:
    """Storefront routes work anonymously but attach the customer when logged in."""
    if credentials is None:
        return None
    user = await _load_user(request, db, credentials.credentials)
    if user is None or not user.is_active:
        return None
    return user


async def get_permission_checker(
    user: Annotated[User, Depends(get_current_user)],
) -> PermissionChecker:
    return PermissionChecker(user)


def require_permissions(*required_permissions: str):
    """
    Dependency factory to require specific permissions.

    Usage:
        @router.get("/", dependencies=[Depends(require_permissions("products"))])
        async def list_products():
            ...
    """
    async def permission_dependency(
        permission_checker: Annotated[PermissionChecker, Depends(get_permission_checker)]
    ):
        for permission in required_permissions:
            if not permission_checker.has_permission(permission):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Permission denied. Required: {permission}"
                )
        return True

    return permission_dependency


def require_roles(*roles: UserRole):
    """
    Dependency factory to restrict a route to given roles.

    Usage:
        @router.delete("/{id}", dependencies=[Depends(require_roles(UserRole.ADMIN))])
    """
    allowed = {r.value if isinstance(r, UserRole) else r for r in roles}

    async def role_dependency(
        user: Annotated[User, Depends(get_current_user)]
    ):
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient role. Required one of: {', '.join(sorted(allowed))}"
            )
        return True

    return role_dependency


async def get_staff_user(user: Annotated[User, Depends(get_current_user)]) -> User:
    if not user.is_staff:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Back-office access only")
    return user


# Type aliases for cleaner endpoint signatures
CurrentUser = Annotated[User, Depends(get_current_user)]
StaffUser = Annotated[User, Depends(get_staff_user)]
OptionalUser = Annotated[Optional[User], Depends(get_optional_user)]
CurrentTenant = Annotated[Tenant, Depends(get_current_tenant)]
PublicDB = Annotated[AsyncSession, Depends(get_db)]  # Public schema (tenant registry)
DB = TenantDB  # Tenant schema
Permissions = Annotated[PermissionChecker, Depends(get_permission_checker)]

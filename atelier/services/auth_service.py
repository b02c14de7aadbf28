from datetime import datetime, timezone
from typing import Optional, List
import logging
import uuid

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.exceptions import (
    AuthenticationError,
    PermissionDeniedError,
    ConflictError,
    NotFoundError,
    BusinessRuleError,
)
from atelier.core.security import (
    verify_password,
    get_password_hash,
    create_token_pair,
    verify_refresh_token,
)
from atelier.models.notification import NotificationTrigger
from atelier.models.user import User, UserRole, STAFF_ROLES
from atelier.services.production_service import ProductionService
from atelier.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class AuthService:
    """Authentication, customer sign-up and team management for one tenant."""

    def __init__(self, db: AsyncSession, tenant_id: Optional[uuid.UUID] = None):
        self.db = db
        self.tenant_id = tenant_id

    async def _find_by_identifier(self, identifier: str) -> Optional[User]:
        identifier = identifier.strip()
        if "@" in identifier:
            condition = User.email == identifier.lower()
        else:
            condition = User.phone == identifier
        result = await self.db.execute(select(User).where(condition))
        return result.scalar_one_or_none()

    async def login(self, identifier: str, password: str) -> dict:
        """
        Authenticate a user by e-mail or phone.

        Raises:
            AuthenticationError: unknown user or wrong password
            PermissionDeniedError: account deactivated
        """
        user = await self._find_by_identifier(identifier)
        if user is None or not verify_password(password, user.password_hash):
            raise AuthenticationError("Incorrect email/phone or password")
        if not user.is_active:
            raise PermissionDeniedError("User account is deactivated")

        user.last_login_at = datetime.now(timezone.utc)
        await self.db.flush()
        return create_token_pair(user.id, self.tenant_id)

    async def refresh(self, refresh_token: str) -> dict:
        user_id = verify_refresh_token(refresh_token, self.tenant_id)
        if user_id is None:
            raise AuthenticationError("Invalid refresh token")
        try:
            user_uuid = uuid.UUID(user_id)
        except ValueError:
            raise AuthenticationError("Invalid refresh token")

        user = await self.db.get(User, user_uuid)
        if user is None or not user.is_active:
            raise AuthenticationError("Invalid refresh token")
        return create_token_pair(user.id, self.tenant_id)

    async def _check_unique(self, email: Optional[str], phone: Optional[str], exclude_id: Optional[uuid.UUID] = None) -> None:
        conditions = []
        if email:
            conditions.append(User.email == email.lower())
        if phone:
            conditions.append(User.phone == phone)
        if not conditions:
            return
        query = select(User).where(or_(*conditions))
        if exclude_id is not None:
            query = query.where(User.id != exclude_id)
        existing = (await self.db.execute(query.limit(1))).scalar_one_or_none()
        if existing is None:
            return
        if phone and existing.phone == phone:
            raise ConflictError("Phone number already registered")
        raise ConflictError("Email already registered")

    async def register_customer(self, name: str, phone: str, password: str, email: Optional[str] = None) -> dict:
        """Storefront sign-up; returns the user and a token pair."""
        await self._check_unique(email, phone)

        user = User(
            name=name,
            phone=phone,
            email=email.lower() if email else None,
            password_hash=get_password_hash(password),
            role=UserRole.CUSTOMER.value,
            customer_source="WEBSITE",
            is_active=True,
            tags=[],
        )
        self.db.add(user)
        await self.db.flush()
        logger.info(f"Customer {user.id} registered from the storefront")

        notifications = NotificationService(self.db)
        await notifications.send_notification(NotificationTrigger.NEW_ACCOUNT, {"user_id": user.id})
        await notifications.send_notification(NotificationTrigger.NEW_CUSTOMER_ADMIN, {"user_id": user.id})

        return {"user": user, "tokens": create_token_pair(user.id, self.tenant_id)}

    # ==================== Team ====================

    async def list_team(self, role: Optional[str] = None, include_inactive: bool = True) -> List[User]:
        query = select(User).where(User.role != UserRole.CUSTOMER.value).order_by(User.name)
        if role:
            query = query.where(User.role == role.upper())
        if not include_inactive:
            query = query.where(User.is_active == True)  # noqa: E712
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_team_member(self, user_id: uuid.UUID) -> User:
        user = await self.db.get(User, user_id)
        if user is None or user.role == UserRole.CUSTOMER.value:
            raise NotFoundError("Team member not found")
        return user

    async def create_team_member(
        self,
        name: str,
        role: str,
        password: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> User:
        role = role.upper()
        if role not in STAFF_ROLES:
            raise BusinessRuleError(f"Invalid role: {role}")
        if not email and not phone:
            raise BusinessRuleError("Email or phone is required")
        await self._check_unique(email, phone)

        user = User(
            name=name,
            email=email.lower() if email else None,
            phone=phone,
            password_hash=get_password_hash(password),
            role=role,
            is_active=True,
            tags=[],
        )
        self.db.add(user)
        await self.db.flush()
        logger.info(f"Team member {user.id} created with role {role}")
        return user

    async def update_team_member(self, user_id: uuid.UUID, changes: dict, current_user: User) -> User:
        user = await self.get_team_member(user_id)

        if "role" in changes and changes["role"]:
            role = changes.pop("role").upper()
            if role not in STAFF_ROLES:
                raise BusinessRuleError(f"Invalid role: {role}")
            if user.id == current_user.id and role != user.role:
                raise BusinessRuleError("You cannot change your own role")
            user.role = role

        if changes.get("is_active") is False and user.id == current_user.id:
            raise BusinessRuleError("You cannot deactivate your own account")

        password = changes.pop("password", None)
        if password:
            user.password_hash = get_password_hash(password)

        await self._check_unique(changes.get("email"), changes.get("phone"), exclude_id=user.id)
        for field in ("name", "email", "phone", "is_active"):
            if field in changes and changes[field] is not None:
                value = changes[field]
                setattr(user, field, value.lower() if field == "email" else value)

        await self.db.flush()
        return user

    async def deactivate_team_member(self, user_id: uuid.UUID, current_user: User) -> User:
        return await self.update_team_member(user_id, {"is_active": False}, current_user)

    async def list_tailors(self) -> List[dict]:
        return await ProductionService(self.db).tailors_with_workload()

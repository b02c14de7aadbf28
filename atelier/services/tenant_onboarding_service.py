"""Service for shop (tenant) registration and onboarding."""

import logging
import re
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.core.exceptions import BusinessRuleError, ConflictError
from atelier.core.security import get_password_hash, create_token_pair
from atelier.database import create_tenant_schema, get_tenant_session
from atelier.models.tenant import Tenant, TenantStatus
from atelier.models.user import User, UserRole
from atelier.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

SUBDOMAIN_RE = re.compile(r"^[a-z0-9-]{3,50}$")


def schema_for(subdomain: str) -> str:
    return f"tenant_{subdomain.replace('-', '_')}"


class TenantOnboardingService:
    """Service for handling tenant registration and onboarding."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def check_subdomain_available(self, subdomain: str) -> Tuple[bool, Optional[str]]:
        """
        Check if subdomain is valid and available.

        Returns:
            (is_available, message)
        """
        subdomain = (subdomain or "").lower()
        if not SUBDOMAIN_RE.match(subdomain):
            return False, "Subdomain must be 3-50 characters: lowercase letters, digits and '-'"

        result = await self.db.execute(select(Tenant).where(Tenant.subdomain == subdomain))
        if result.scalar_one_or_none() is not None:
            return False, f"Subdomain '{subdomain}' is already taken."
        return True, None

    async def _setup_schema(
        self,
        tenant: Tenant,
        admin_email: str,
        admin_password: str,
        admin_name: str,
        admin_phone: Optional[str],
    ) -> User:
        await create_tenant_schema(tenant.database_schema)

        async with get_tenant_session(tenant.database_schema) as session:
            admin = User(
                name=admin_name,
                email=admin_email.lower(),
                phone=admin_phone,
                password_hash=get_password_hash(admin_password),
                role=UserRole.ADMIN.value,
                is_active=True,
                tags=[],
            )
            session.add(admin)

            notifications = NotificationService(session)
            notif_settings = await notifications.get_settings()
            notif_settings.admin_email = admin_email.lower()
            if admin_phone:
                notif_settings.admin_phones = [admin_phone]
            await notifications.get_follow_up_settings()
            await notifications.seed_default_templates()
            await session.flush()
        return admin

    async def register_tenant(
        self,
        company_name: str,
        subdomain: str,
        admin_email: str,
        admin_password: str,
        admin_name: str,
        admin_phone: Optional[str] = None,
    ) -> Tuple[Tenant, User, dict]:
        """
        Complete shop registration.

        This creates:
        1. Tenant record in the public schema (PENDING)
        2. Tenant database schema and its tables
        3. Admin user
        4. Default notification settings, follow-up settings and templates
        5. JWT tokens for immediate login

        Returns:
            (tenant, admin_user, tokens)
        """
        subdomain = (subdomain or "").lower()
        is_available, message = await self.check_subdomain_available(subdomain)
        if not is_available:
            if SUBDOMAIN_RE.match(subdomain):
                raise ConflictError(message)
            raise BusinessRuleError(message)

        tenant = Tenant(
            name=company_name,
            subdomain=subdomain,
            database_schema=schema_for(subdomain),
            status=TenantStatus.PENDING.value,
            settings={},
        )
        self.db.add(tenant)
        await self.db.commit()

        try:
            admin = await self._setup_schema(tenant, admin_email, admin_password, admin_name, admin_phone)
        except Exception as e:
            logger.error(f"Tenant setup failed for {subdomain}: {e}", exc_info=True)
            tenant.settings = {**(tenant.settings or {}), "setup_error": str(e)}
            await self.db.commit()
            raise BusinessRuleError(f"Tenant setup failed: {e}")

        tenant.status = TenantStatus.ACTIVE.value
        await self.db.commit()
        logger.info(f"Tenant {subdomain} registered with schema {tenant.database_schema}")

        return tenant, admin, create_token_pair(admin.id, tenant.id)

from datetime import datetime, timedelta, timezone
from typing import Optional, Any
import uuid

from jose import JWTError, jwt
from passlib.context import CryptContext

from atelier.config import settings


pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=12,
)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """
    Verify a plain password against a hashed password.

    Accounts created by staff from the CRM have no password yet and never match.
    """
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def _encode(subject: str | uuid.UUID, token_type: str, expire: datetime, tenant_id: Optional[str]) -> str:
    to_encode: dict[str, Any] = {
        "sub": str(subject),
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "jti": str(uuid.uuid4()),
        "type": token_type,
    }
    if tenant_id:
        to_encode["tenant_id"] = str(tenant_id)
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(
    subject: str | uuid.UUID,
    tenant_id: Optional[str | uuid.UUID] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        subject: The user ID
        tenant_id: Tenant the user belongs to; checked against the resolved tenant
        expires_delta: Optional custom expiration time
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return _encode(subject, "access", expire, tenant_id)


def create_refresh_token(
    subject: str | uuid.UUID,
    tenant_id: Optional[str | uuid.UUID] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    )
    return _encode(subject, "refresh", expire, tenant_id)


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """Decode and validate a JWT token, None if invalid or expired."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


def verify_token(token: str, token_type: str, tenant_id: Optional[str | uuid.UUID] = None) -> Optional[str]:
    """
    Verify a token and return its subject (user ID).

    Returns None when the token is invalid, of the wrong type, or was
    issued for another tenant.
    """
    payload = decode_token(token)
    if payload is None or payload.get("type") != token_type:
        return None
    if tenant_id is not None and payload.get("tenant_id") != str(tenant_id):
        return None
    return payload.get("sub")


def verify_access_token(token: str, tenant_id: Optional[str | uuid.UUID] = None) -> Optional[str]:
    return verify_token(token, "access", tenant_id)


def verify_refresh_token(token: str, tenant_id: Optional[str | uuid.UUID] = None) -> Optional[str]:
    return verify_token(token, "refresh", tenant_id)


def create_token_pair(user_id: uuid.UUID, tenant_id: Optional[uuid.UUID]) -> dict:
    return {
        "access_token": create_access_token(user_id, tenant_id),
        "refresh_token": create_refresh_token(user_id, tenant_id),
        "token_type": "bearer",
        "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    }

"""
Domain exceptions raised by the service layer.

Endpoints translate them into HTTPException; see http_error().
"""
from fastapi import HTTPException, status


class AtelierError(Exception):
    """Base error with a human readable message."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class AuthenticationError(AtelierError):
    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(AtelierError):
    status_code = status.HTTP_404_NOT_FOUND


class BusinessRuleError(AtelierError):
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(AtelierError):
    status_code = status.HTTP_409_CONFLICT


class PermissionDeniedError(AtelierError):
    status_code = status.HTTP_403_FORBIDDEN


class PaymentGatewayError(AtelierError):
    status_code = status.HTTP_502_BAD_GATEWAY


class NotificationError(AtelierError):
    """Raised inside the notification layer; never escapes a business flow."""


def http_error(exc: AtelierError | ValueError) -> HTTPException:
    """Map a domain error to the HTTPException an endpoint should raise; ValueError is a 400."""
    if not isinstance(exc, AtelierError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    detail = exc.message
    if exc.errors:
        detail = {"message": exc.message, "errors": exc.errors}
    return HTTPException(status_code=exc.status_code, detail=detail)

"""
Helpers for VARCHAR-backed enum columns.

Values are stored UPPERCASE; API input may be any case.
"""
from enum import Enum
from typing import Any, Optional, Type, TypeVar


T = TypeVar('T', bound=Enum)


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get the string value from an enum or string.

    Examples:
        >>> get_enum_value(OrderStatus.PENDING)
        'PENDING'
        >>> get_enum_value("PENDING")
        'PENDING'
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def to_enum(value: Any, enum_class: Type[T]) -> Optional[T]:
    """Convert a (case-insensitive) string into an enum member, None if unknown."""
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(str(value).upper())
    except (ValueError, KeyError):
        return None


def status_in(db_value: Optional[str], *members: Enum) -> bool:
    if db_value is None:
        return False
    return db_value in {m.value for m in members}

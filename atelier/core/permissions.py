"""
Role based permissions.

Each role maps to a flat list of permission codes; "*" grants everything.
"""
from typing import Iterable, List, Set

from atelier.models.user import User, UserRole


ROLE_PERMISSIONS: dict[str, List[str]] = {
    UserRole.ADMIN.value: ["*"],
    UserRole.MANAGER.value: ["*"],
    UserRole.STAFF.value: [
        "dashboard",
        "customers",
        "customers.create",
        "customers.contact",
        "custom-orders",
        "production",
        "invoices",
        "invoices.create",
        "receipts",
        "payments",
        "sales",
        "orders",
        "orders.create",
        "products",
        "categories",
        "inventory",
        "campaigns",
        "notifications",
    ],
    UserRole.TAILOR.value: [
        "dashboard",
        "custom-orders",
        "production",
    ],
    UserRole.CUSTOMER.value: [],
}


def get_role_permissions(role: str) -> Set[str]:
    return set(ROLE_PERMISSIONS.get(role, []))


class PermissionChecker:
    """Permission checks for a single user."""

    def __init__(self, user: User):
        self.user = user
        self.permissions = get_role_permissions(user.role)

    def is_superuser(self) -> bool:
        return "*" in self.permissions

    def has_permission(self, code: str) -> bool:
        if self.is_superuser():
            return True
        return code in self.permissions

    def has_any_permission(self, codes: Iterable[str]) -> bool:
        if self.is_superuser():
            return True
        return bool(self.permissions & set(codes))

    def has_all_permissions(self, codes: Iterable[str]) -> bool:
        if self.is_superuser():
            return True
        return set(codes).issubset(self.permissions)

    def has_role(self, *roles: str) -> bool:
        return self.user.role in roles

    def is_tailor(self) -> bool:
        return self.user.role == UserRole.TAILOR.value

from fastapi import APIRouter

from atelier.api.v1.endpoints import (
    # Tenant Onboarding (public)
    onboarding,
    # Access Control
    auth,
    users,
    # Product Catalog
    categories,
    products,
    # Storefront
    storefront,
    coupons,
    # Sales
    orders,
    payments,
    invoices,
    receipts,
    # Tailoring
    custom_orders,
    production,
    # CRM & Messaging
    customers,
    notifications,
    campaigns,
    # Reports
    reports,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Tenant Onboarding (Public) ====================
api_router.include_router(
    onboarding.router,
    prefix="/onboarding",
    tags=["Onboarding"]
)

# ==================== Access Control ====================
api_router.include_router(
    auth.router,
    prefix="/auth",
    tags=["Authentication"]
)
api_router.include_router(
    users.router,
    prefix="/users",
    tags=["Users"]
)

# ==================== Product Catalog ====================
api_router.include_router(
    categories.router,
    prefix="/categories",
    tags=["Categories"]
)
api_router.include_router(
    products.router,
    prefix="/products",
    tags=["Products"]
)

# ==================== Storefront ====================
api_router.include_router(
    storefront.router,
    prefix="/storefront",
    tags=["Storefront"]
)
api_router.include_router(
    coupons.router,
    prefix="/coupons",
    tags=["Coupons"]
)

# ==================== Sales ====================
api_router.include_router(
    orders.router,
    prefix="/orders",
    tags=["Orders"]
)
api_router.include_router(
    payments.router,
    prefix="/payments",
    tags=["Payments"]
)
api_router.include_router(
    invoices.router,
    prefix="/invoices",
    tags=["Invoices"]
)
api_router.include_router(
    receipts.router,
    prefix="/receipts",
    tags=["Receipts"]
)

# ==================== Tailoring ====================
api_router.include_router(
    custom_orders.router,
    prefix="/custom-orders",
    tags=["Custom Orders"]
)
api_router.include_router(
    production.router,
    prefix="/production",
    tags=["Production"]
)

# ==================== CRM & Messaging ====================
api_router.include_router(
    customers.router,
    prefix="/customers",
    tags=["Customers"]
)
api_router.include_router(
    notifications.router,
    prefix="/notifications",
    tags=["Notifications"]
)
api_router.include_router(
    campaigns.router,
    prefix="/campaigns",
    tags=["Campaigns"]
)

# ==================== Reports ====================
api_router.include_router(
    reports.router,
    prefix="/reports",
    tags=["Reports"]
)

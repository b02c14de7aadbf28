# Services module
from atelier.services.auth_service import AuthService
from atelier.services.catalog_service import CatalogService
from atelier.services.coupon_service import CouponService
from atelier.services.order_service import OrderService
from atelier.services.invoice_service import InvoiceService
from atelier.services.custom_order_service import CustomOrderService
from atelier.services.production_service import ProductionService
from atelier.services.customer_service import CustomerService
from atelier.services.report_service import ReportService

# Messaging
from atelier.services.messaging_service import SMSingService
from atelier.services.notification_service import NotificationService
from atelier.services.campaign_service import CampaignService

# Payments
from atelier.services.payment_reconciliation_service import PaymentReconciliationService

__all__ = [
    "AuthService",
    "CatalogService",
    "CouponService",
    "OrderService",
    "InvoiceService",
    "CustomOrderService",
    "ProductionService",
    "CustomerService",
    "ReportService",
    # Messaging
    "SMSingService",
    "NotificationService",
    "CampaignService",
    # Payments
    "PaymentReconciliationService",
]

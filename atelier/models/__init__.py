from atelier.models.tenant import Tenant, TenantStatus
from atelier.models.user import User, UserRole, CustomerNote, STAFF_ROLES
from atelier.models.catalog import Category, Product, StockMovement, StockMovementType
from atelier.models.coupon import Coupon, CouponUsage, DiscountType
from atelier.models.order import (
    Order,
    OrderItem,
    OrderNote,
    OrderStatus,
    PaymentStatus,
    PaymentMethod,
    Refund,
    ShippingMethod,
    ShippingCostType,
    NoteType,
)
from atelier.models.payment import Payment, PaymentProvider, StandalonePayment
from atelier.models.invoice import (
    Invoice,
    InvoiceItem,
    InvoicePayment,
    InvoiceStatus,
    InvoicePaymentMethod,
    Receipt,
)
from atelier.models.custom_order import (
    Measurement,
    CustomOrder,
    CustomOrderItem,
    CustomOrderPayment,
    CustomOrderTimeline,
    CustomOrderStatus,
    CustomOrderPriority,
    CustomPaymentType,
    ItemStatus,
)
from atelier.models.notification import (
    NotificationSettings,
    NotificationTemplate,
    NotificationLog,
    ScheduledNotification,
    PaymentFollowUpSettings,
    BirthdayGreetingLog,
    NotificationChannel,
    NotificationTrigger,
    NotificationStatus,
    ScheduledStatus,
    PAYMENT_REMINDER_TRIGGERS,
)
from atelier.models.campaign import Campaign, CampaignLog, CampaignChannel, CampaignStatus, CampaignTarget
from atelier.models.document_sequence import DocumentSequence, DocumentType

__all__ = [
    # Tenancy
    "Tenant",
    "TenantStatus",
    # Users
    "User",
    "UserRole",
    "CustomerNote",
    "STAFF_ROLES",
    # Catalog
    "Category",
    "Product",
    "StockMovement",
    "StockMovementType",
    # Coupons
    "Coupon",
    "CouponUsage",
    "DiscountType",
    # Orders
    "Order",
    "OrderItem",
    "OrderNote",
    "OrderStatus",
    "PaymentStatus",
    "PaymentMethod",
    "Refund",
    "ShippingMethod",
    "ShippingCostType",
    "NoteType",
    # Payments
    "Payment",
    "PaymentProvider",
    "StandalonePayment",
    # Invoicing
    "Invoice",
    "InvoiceItem",
    "InvoicePayment",
    "InvoiceStatus",
    "InvoicePaymentMethod",
    "Receipt",
    # Tailoring
    "Measurement",
    "CustomOrder",
    "CustomOrderItem",
    "CustomOrderPayment",
    "CustomOrderTimeline",
    "CustomOrderStatus",
    "CustomOrderPriority",
    "CustomPaymentType",
    "ItemStatus",
    # Notifications
    "NotificationSettings",
    "NotificationTemplate",
    "NotificationLog",
    "ScheduledNotification",
    "PaymentFollowUpSettings",
    "BirthdayGreetingLog",
    "NotificationChannel",
    "NotificationTrigger",
    "NotificationStatus",
    "ScheduledStatus",
    "PAYMENT_REMINDER_TRIGGERS",
    # Campaigns
    "Campaign",
    "CampaignLog",
    "CampaignChannel",
    "CampaignStatus",
    "CampaignTarget",
    # Numbering
    "DocumentSequence",
    "DocumentType",
]

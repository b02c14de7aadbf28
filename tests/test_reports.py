from datetime import timedelta
from decimal import Decimal

from atelier.core.dates import utc_now
from atelier.models.notification import NotificationChannel, NotificationTrigger
from atelier.models.order import Order, OrderItem, OrderStatus, PaymentStatus
from atelier.services.notification_service import NotificationService
from atelier.services.report_service import ReportService

from tests.test_custom_orders import create_order as create_custom_order
from tests.test_notifications import add_template


async def add_order(session, customer, number, total, status=OrderStatus.PROCESSING,
                    payment_status=PaymentStatus.COMPLETED, created_at=None, items=()):
    order = Order(
        order_number=number,
        user_id=customer.id,
        status=status.value,
        payment_status=payment_status.value,
        payment_method="WAVE",
        subtotal=Decimal(total),
        total=Decimal(total),
        shipping_address={},
        created_at=created_at or utc_now(),
    )
    session.add(order)
    await session.flush()
    for name, quantity in items:
        session.add(OrderItem(
            order_id=order.id,
            product_id=customer.id,
            product_name=name,
            quantity=quantity,
            price=Decimal("1000"),
            total=Decimal(1000 * quantity),
        ))
    await session.flush()
    return order


async def test_dashboard_revenue_counts_orders_and_workshop(db_session, customer, admin_user, product):
    await add_order(db_session, customer, "181026-AAAAA", "30000")
    await add_order(db_session, customer, "181026-BBBBB", "12000", payment_status=PaymentStatus.PENDING,
                    status=OrderStatus.PENDING)
    await add_order(db_session, customer, "150826-CCCCC", "99000", created_at=utc_now() - timedelta(days=70))
    await create_custom_order(db_session, customer, admin_user, deposit=Decimal("15000"))

    product.stock = 2
    await db_session.flush()

    report = await ReportService(db_session).dashboard()

    assert report["revenue"]["today"] == Decimal("45000")
    assert report["revenue"]["month"] >= Decimal("45000")
    assert report["orders_by_status"]["PROCESSING"] == 2
    assert report["orders_by_status"]["PENDING"] == 1
    assert report["orders_by_status"]["SHIPPED"] == 0
    assert report["low_stock_count"] == 1


async def test_daily_sales_report(db_session, customer):
    await add_order(db_session, customer, "181026-AAAAA", "5000", items=[("Robe wax", 2), ("Pagne", 1)])
    await add_order(db_session, customer, "181026-BBBBB", "3000", items=[("Robe wax", 1)],
                    payment_status=PaymentStatus.PENDING, status=OrderStatus.PENDING)
    await add_order(db_session, customer, "171026-CCCCC", "8000", created_at=utc_now() - timedelta(days=1))

    report = await ReportService(db_session).daily_sales_report(utc_now().date())

    assert report["orders_count"] == 2
    assert report["revenue"] == Decimal("5000")
    assert report["new_customers"] == 1
    assert report["pending_orders"] == 1
    assert report["top_product"] == {"name": "Robe wax", "quantity": 3}


async def test_daily_report_is_sent_to_admins(db_session, provider, customer):
    service = NotificationService(db_session)
    await service.update_settings({"admin_phones": ["0707070707"]})
    await add_template(
        db_session, NotificationTrigger.DAILY_REPORT_ADMIN, NotificationChannel.SMS,
        "{daily_orders} commande(s), {daily_revenue}",
    )
    await add_order(db_session, customer, "181026-AAAAA", "5000")

    result = await service.send_daily_report()

    assert result["success"] is True
    assert provider.sent("sms")[0]["text"] == "1 commande(s), 5000 CFA"


async def test_daily_report_disabled(db_session, provider):
    service = NotificationService(db_session)
    await service.update_settings({"daily_report_enabled": False})
    assert await service.send_daily_report() is None
    assert provider.requests == []


async def test_reports_endpoints(client, admin_headers, tailor_headers):
    response = await client.get("/api/v1/reports/dashboard", headers=admin_headers)
    assert response.status_code == 200
    assert set(response.json()) == {"revenue", "orders_by_status", "custom_orders_in_production", "low_stock_count"}

    response = await client.get("/api/v1/reports/daily", params={"day": "2026-10-18"}, headers=admin_headers)
    assert response.json()["date"] == "2026-10-18"
    assert response.json()["top_product"] is None

    response = await client.get("/api/v1/reports/dashboard", headers=tailor_headers)
    assert response.status_code == 200

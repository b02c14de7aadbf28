from datetime import timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from atelier.core.dates import utc_now
from atelier.core.exceptions import BusinessRuleError
from atelier.database import async_session_factory
from atelier.models.catalog import Product, StockMovement
from atelier.models.coupon import Coupon, CouponUsage
from atelier.models.invoice import Invoice, InvoiceStatus
from atelier.models.notification import (
    NotificationChannel,
    NotificationTrigger,
    ScheduledNotification,
    ScheduledStatus,
)
from atelier.models.order import Order, OrderNote, ShippingMethod
from atelier.models.payment import Payment
from atelier.services.order_service import OrderService, build_shipping_address, generate_order_number

from tests.test_notifications import add_template


CHECKOUT_URL = "/api/v1/storefront/checkout"


def checkout_payload(product, quantity=2, **extra) -> dict:
    payload = {
        "items": [{"product_id": str(product.id), "quantity": quantity}],
        "address": {"quartier": "Cocody", "cite": "Riviera 3"},
        "payment_method": "paiementpro",
    }
    payload.update(extra)
    return payload


async def fetch(model, **filters):
    async with async_session_factory() as session:
        result = await session.execute(select(model).filter_by(**filters))
        return list(result.scalars().all())


def test_order_number_format():
    number = generate_order_number()
    day, suffix = number.split("-")
    assert len(day) == 6 and day.isdigit()
    assert len(suffix) == 5 and suffix.isalnum() and suffix.upper() == suffix


def test_shipping_address_defaults_to_abidjan():
    address = build_shipping_address({"quartier": "Yopougon"})
    assert address["city"] == "Abidjan"
    assert address["country"] == "CI"
    assert address["cite"] == ""


async def test_checkout_reserves_stock_and_issues_invoice(client, customer_headers, product):
    response = await client.post(CHECKOUT_URL, json=checkout_payload(product), headers=customer_headers)

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["status"] == "PENDING"
    assert body["payment_status"] == "PENDING"
    assert Decimal(body["total"]) == Decimal("50000")
    assert body["billing_first_name"] == "Fatou"
    assert body["shipping_address"]["phone"] == "0709757296"

    (stored,) = await fetch(Product, id=product.id)
    assert stored.stock == 8
    (movement,) = await fetch(StockMovement, product_id=product.id)
    assert movement.quantity == -2
    assert (movement.stock_before, movement.stock_after) == (10, 8)

    (invoice,) = await fetch(Invoice)
    assert invoice.status == InvoiceStatus.SENT.value
    assert invoice.invoice_number.startswith("FAC-")
    assert Decimal(invoice.total) == Decimal("50000")

    reminders = await fetch(ScheduledNotification)
    assert sorted(r.trigger for r in reminders) == ["PAYMENT_REMINDER_1", "PAYMENT_REMINDER_2", "PAYMENT_REMINDER_3"]


async def test_cash_orders_get_no_payment_reminders(client, customer_headers, product):
    response = await client.post(
        CHECKOUT_URL, json=checkout_payload(product, payment_method="CASH"), headers=customer_headers
    )
    assert response.status_code == 201
    assert await fetch(ScheduledNotification) == []


async def test_checkout_rejects_insufficient_stock(client, customer_headers, product):
    response = await client.post(CHECKOUT_URL, json=checkout_payload(product, quantity=11), headers=customer_headers)

    assert response.status_code == 400
    assert "Insufficient stock" in response.json()["detail"]
    (stored,) = await fetch(Product, id=product.id)
    assert stored.stock == 10
    assert await fetch(Order) == []


async def test_checkout_rejects_unknown_payment_method(client, customer_headers, product):
    response = await client.post(
        CHECKOUT_URL, json=checkout_payload(product, payment_method="BITCOIN"), headers=customer_headers
    )
    assert response.status_code == 400


async def test_checkout_requires_login(client, tenant_headers, product):
    response = await client.post(CHECKOUT_URL, json=checkout_payload(product), headers=tenant_headers)
    assert response.status_code in (401, 403)


async def test_checkout_applies_coupon_and_shipping(client, customer_headers, db_session, product):
    method = ShippingMethod(name="Livraison Abidjan", cost=Decimal("2000"), cost_type="FIXED", is_active=True)
    db_session.add(method)
    db_session.add(Coupon(
        code="TABASKI",
        discount_type="PERCENTAGE",
        discount_value=Decimal("10"),
        usage_count=0,
        is_active=True,
        product_ids=[],
        excluded_product_ids=[],
        category_ids=[],
        excluded_category_ids=[],
    ))
    await db_session.commit()

    response = await client.post(
        CHECKOUT_URL,
        json=checkout_payload(product, coupon_code="tabaski", shipping_method_id=str(method.id)),
        headers=customer_headers,
    )

    assert response.status_code == 201, response.text
    body = response.json()
    assert Decimal(body["discount"]) == Decimal("5000")
    assert Decimal(body["shipping_cost"]) == Decimal("2000")
    assert Decimal(body["total"]) == Decimal("47000")
    assert body["coupon_code"] == "TABASKI"

    (coupon,) = await fetch(Coupon, code="TABASKI")
    assert coupon.usage_count == 1
    assert len(await fetch(CouponUsage)) == 1


async def test_checkout_with_invalid_coupon_is_rejected(client, customer_headers, product):
    response = await client.post(
        CHECKOUT_URL, json=checkout_payload(product, coupon_code="NOPE"), headers=customer_headers
    )
    assert response.status_code == 400
    assert response.json()["detail"]["errors"] == ["Ce code promo n'existe pas ou n'est plus actif"]
    (stored,) = await fetch(Product, id=product.id)
    assert stored.stock == 10


async def test_cancel_restores_stock_and_cancels_reminders(client, customer_headers, admin_headers, product):
    response = await client.post(CHECKOUT_URL, json=checkout_payload(product, quantity=3), headers=customer_headers)
    order_id = response.json()["id"]

    response = await client.patch(
        f"/api/v1/orders/{order_id}",
        json={"status": "cancelled", "send_notification": False},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"
    (stored,) = await fetch(Product, id=product.id)
    assert stored.stock == 10
    reminders = await fetch(ScheduledNotification)
    assert {r.status for r in reminders} == {ScheduledStatus.CANCELLED.value}
    notes = await fetch(OrderNote)
    assert notes[0].content == "Statut de commande changé de PENDING à CANCELLED"

    # Cancelling twice does not put the stock back twice
    await client.patch(f"/api/v1/orders/{order_id}", json={"status": "CANCELLED"}, headers=admin_headers)
    (stored,) = await fetch(Product, id=product.id)
    assert stored.stock == 10


async def test_marking_paid_settles_invoice(client, customer_headers, admin_headers, product):
    response = await client.post(CHECKOUT_URL, json=checkout_payload(product), headers=customer_headers)
    order_id = response.json()["id"]

    response = await client.patch(
        f"/api/v1/orders/{order_id}", json={"payment_status": "COMPLETED"}, headers=admin_headers
    )

    assert response.status_code == 200
    (invoice,) = await fetch(Invoice)
    assert invoice.status == InvoiceStatus.PAID.value
    assert Decimal(invoice.amount_paid) == Decimal("50000")


async def test_customer_cannot_manage_orders(client, customer_headers, product):
    response = await client.get("/api/v1/orders", headers=customer_headers)
    assert response.status_code == 403


async def test_refund_rules(db_session, customer, admin_user, product):
    service = OrderService(db_session)
    order = await service.place_order(
        customer,
        items=[{"product_id": product.id, "quantity": 2}],
        address=None,
        payment_method="CASH",
    )
    assert product.stock == 8

    await service.refund(order.id, Decimal("10000"), reason="Taille", refund_type="PARTIAL", user=admin_user)
    assert order.status == "PENDING"

    with pytest.raises(BusinessRuleError):
        await service.refund(order.id, Decimal("45000"), user=admin_user)
    with pytest.raises(BusinessRuleError):
        await service.refund(order.id, Decimal("0"), user=admin_user)

    await service.refund(order.id, Decimal("40000"), refund_type="FULL", user=admin_user)
    assert order.status == "REFUNDED"
    assert order.payment_status == "REFUNDED"
    assert product.stock == 10
    assert len(await service.list_refunds(order.id)) == 2


async def test_refund_endpoint_over_total_is_400(client, customer_headers, admin_headers, product):
    response = await client.post(CHECKOUT_URL, json=checkout_payload(product, quantity=1), headers=customer_headers)
    order_id = response.json()["id"]

    response = await client.post(
        f"/api/v1/orders/{order_id}/refunds",
        json={"amount": "30000", "reason": "Erreur"},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert "Refund exceeds order total" in response.json()["detail"]


async def test_delivered_order_schedules_review_request(db_session, customer, product):
    service = OrderService(db_session)
    order = await service.place_order(
        customer, items=[{"product_id": product.id, "quantity": 1}], address=None, payment_method="CASH"
    )

    await service.update_order(order.id, status="DELIVERED", send_notification=True)

    result = await db_session.execute(
        select(ScheduledNotification).where(ScheduledNotification.trigger == NotificationTrigger.REVIEW_REQUEST.value)
    )
    (review,) = result.scalars().all()
    assert review.order_id == order.id
    assert review.status == ScheduledStatus.PENDING.value
    delay = review.scheduled_for.replace(tzinfo=timezone.utc) - utc_now()
    assert timedelta(hours=23, minutes=59) < delay <= timedelta(hours=24)


async def test_customer_note_is_sent_to_customer(db_session, provider, customer, product):
    await add_template(
        db_session, NotificationTrigger.CUSTOMER_NOTE, NotificationChannel.SMS, "{order_number} : {note_content}"
    )
    service = OrderService(db_session)
    order = await service.place_order(
        customer, items=[{"product_id": product.id, "quantity": 1}], address=None, payment_method="CASH"
    )

    await service.add_note(order.id, "Retouche prévue jeudi", note_type="private")
    assert provider.requests == []

    note = await service.add_note(order.id, "  Votre robe est prête  ", note_type="customer")

    assert note.content == "Votre robe est prête"
    (sms,) = provider.sent("sms")
    assert sms["to"] == "2250709757296"
    assert sms["text"] == f"{order.order_number} : Votre robe est prête"


async def test_delete_order_removes_invoice_payments_and_schedules(client, admin_headers, db_session, customer, product):
    order = await OrderService(db_session).place_order(
        customer, items=[{"product_id": product.id, "quantity": 1}], address=None, payment_method="PAIEMENTPRO"
    )
    db_session.add(Payment(
        order_id=order.id,
        provider="PAIEMENTPRO",
        reference="ORD-1760781234567-K3F9QZ",
        amount=order.total,
        status="PENDING",
    ))
    await db_session.commit()
    assert await fetch(Invoice, order_id=order.id)
    assert await fetch(ScheduledNotification, order_id=order.id)

    response = await client.delete(f"/api/v1/orders/{order.id}", headers=admin_headers)

    assert response.status_code == 204
    assert await fetch(Order, id=order.id) == []
    assert await fetch(Invoice, order_id=order.id) == []
    assert await fetch(Payment, order_id=order.id) == []
    assert await fetch(ScheduledNotification, order_id=order.id) == []

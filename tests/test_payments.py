import hashlib
import hmac
import json
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select

from atelier.config import settings
from atelier.database import async_session_factory
from atelier.models.catalog import Product
from atelier.models.invoice import Invoice, InvoicePayment, InvoiceStatus, Receipt
from atelier.models.order import Order
from atelier.models.notification import NotificationChannel, NotificationTrigger
from atelier.models.payment import Payment, PaymentProvider, StandalonePayment
from atelier.models.user import UserRole
from atelier.services import payment_reconciliation_service
from atelier.services.invoice_service import InvoiceService
from atelier.services.order_service import OrderService
from atelier.services.payment_service import (
    PaiementProClient,
    RazorpayGateway,
    format_amount,
    format_phone,
    generate_hashcode,
    map_channel,
    verify_hashcode,
)

from tests.conftest import auth_headers, make_user
from tests.test_notifications import add_template


PAIEMENTPRO_URL = "/api/v1/payments/webhook/paiementpro"
RAZORPAY_URL = "/api/v1/payments/webhook/razorpay"


@pytest.fixture
async def pending_order(db_session, tenant, customer, product):
    order = await OrderService(db_session).place_order(
        customer,
        items=[{"product_id": product.id, "quantity": 2}],
        address={"quartier": "Marcory"},
        payment_method="PAIEMENTPRO",
    )
    order.payment_reference = "ORD-20261018-AB12CD"
    db_session.add(Payment(
        order_id=order.id,
        provider=PaymentProvider.PAIEMENTPRO.value,
        reference="ORD-20261018-AB12CD",
        provider_order_id="order_rzp_1",
        amount=order.total,
        status="PENDING",
    ))
    await db_session.commit()
    return order


async def load(model, **filters):
    async with async_session_factory() as session:
        return (await session.execute(select(model).filter_by(**filters))).scalar_one()


def razorpay_signature(body: bytes) -> str:
    return hmac.new(b"whsec_test", body, hashlib.sha256).hexdigest()


def test_hashcode_round_trip():
    data = {"referenceNumber": "ORD-1", "responsecode": "0", "amount": "5000"}
    code = generate_hashcode(data, "s3cret")
    expected = hmac.new(b"s3cret", b"amount=5000&referenceNumber=ORD-1&responsecode=0", hashlib.sha256).hexdigest()
    assert code == expected
    assert verify_hashcode({**data, "hashcode": code}, "s3cret")
    assert not verify_hashcode({**data, "hashcode": code}, "other")
    assert not verify_hashcode(data, "s3cret")


def test_gateway_helpers():
    assert format_phone("0709757296") == "2250709757296"
    assert format_phone("2250709757296") == "2250709757296"
    assert format_amount(Decimal("4999.5")) == 5000
    assert RazorpayGateway.to_minor_units(Decimal("5000"), "XOF") == 5000
    assert RazorpayGateway.to_minor_units(Decimal("50.25"), "INR") == 5025
    assert map_channel(None) == "PAIEMENTPRO"


async def test_paiementpro_success_completes_order(client, pending_order, provider):
    response = await client.post(
        f"{PAIEMENTPRO_URL}?tenant=awa",
        data={"referenceNumber": "ORD-20261018-AB12CD", "responsecode": "0", "channel": "OMCIV2"},
    )

    assert response.status_code == 200, response.text
    assert response.json()["payment_status"] == "COMPLETED"

    order = await load(Order, id=pending_order.id)
    assert order.status == "PROCESSING"
    assert order.payment_status == "COMPLETED"
    payment = await load(Payment, reference="ORD-20261018-AB12CD")
    assert payment.webhook_received is True
    assert payment.transaction_date is not None
    invoice = await load(Invoice, order_id=pending_order.id)
    assert invoice.status == InvoiceStatus.PAID.value

    # Same notification again: acknowledged, nothing changes
    response = await client.post(
        f"{PAIEMENTPRO_URL}?tenant=awa",
        json={"referenceNumber": "ORD-20261018-AB12CD", "responsecode": "1"},
    )
    assert response.json()["duplicate"] is True
    order = await load(Order, id=pending_order.id)
    assert order.payment_status == "COMPLETED"


async def test_paiementpro_failure_restores_stock_once(client, pending_order, product, tenant):
    payload = {"referenceNumber": "ORD-20261018-AB12CD", "responsecode": "-1"}

    for _ in range(2):
        response = await client.post(PAIEMENTPRO_URL, data=payload, headers={"X-Tenant-ID": str(tenant.id)})
        assert response.status_code == 200
        assert response.json()["payment_status"] == "FAILED"

    stored = await load(Product, id=product.id)
    assert stored.stock == 10
    order = await load(Order, id=pending_order.id)
    assert order.payment_status == "FAILED"


async def test_paiementpro_rejects_bad_hashcode(client, pending_order, monkeypatch):
    monkeypatch.setattr(settings, "PAIEMENTPRO_SECRET_KEY", "s3cret")
    payload = {"referenceNumber": "ORD-20261018-AB12CD", "responsecode": "0"}

    response = await client.post(f"{PAIEMENTPRO_URL}?tenant=awa", data={**payload, "hashcode": "forged"})
    assert response.status_code == 403

    signed = {**payload, "hashcode": generate_hashcode(payload, "s3cret")}
    response = await client.post(f"{PAIEMENTPRO_URL}?tenant=awa", data=signed)
    assert response.status_code == 200


async def test_paiementpro_unknown_reference_or_missing_reference(client, tenant):
    response = await client.post(f"{PAIEMENTPRO_URL}?tenant=awa", data={"referenceNumber": "NOPE", "responsecode": "0"})
    assert response.status_code == 404

    response = await client.post(f"{PAIEMENTPRO_URL}?tenant=awa", data={"responsecode": "0"})
    assert response.status_code == 400


async def test_webhook_for_unknown_tenant_is_404(client, tenant):
    response = await client.post(f"{PAIEMENTPRO_URL}?tenant=nobody", data={"referenceNumber": "X"})
    assert response.status_code == 404
    response = await client.post(PAIEMENTPRO_URL, data={"referenceNumber": "X"})
    assert response.status_code == 404


async def test_paiementpro_settles_invoice_payment_link(client, db_session, tenant, admin_user):
    invoice = await InvoiceService(db_session).create_invoice(
        customer_name="Mariam Traoré",
        items=[{"description": "Boubou brodé", "quantity": 1, "unit_price": Decimal("30000")}],
        created_by_id=admin_user.id,
    )
    invoice.payment_reference = "INV_PAY20261018XYZ"
    await db_session.commit()

    payload = {"referenceNumber": "INV_PAY20261018XYZ", "responsecode": "0", "amount": "30000", "channel": "WAVECI"}
    response = await client.post(f"{PAIEMENTPRO_URL}?tenant=awa", data=payload)

    assert response.status_code == 200, response.text
    assert response.json()["invoice_status"] == "PAID"
    payment = await load(InvoicePayment, reference="INV_PAY20261018XYZ")
    assert Decimal(payment.amount) == Decimal("30000")
    receipt = await load(Receipt, invoice_id=invoice.id)
    assert receipt.receipt_number.startswith("REC-")

    response = await client.post(f"{PAIEMENTPRO_URL}?tenant=awa", data=payload)
    assert response.json()["duplicate"] is True


async def test_razorpay_requires_valid_signature(client, pending_order):
    body = json.dumps({"event": "payment.captured"}).encode()

    response = await client.post(f"{RAZORPAY_URL}?tenant=awa", content=body)
    assert response.status_code == 401

    response = await client.post(
        f"{RAZORPAY_URL}?tenant=awa", content=body, headers={"X-Razorpay-Signature": "bad"}
    )
    assert response.status_code == 401


async def test_razorpay_captured_completes_order(client, pending_order):
    event = {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": "pay_1", "order_id": "order_rzp_1", "method": "card"}}},
    }
    body = json.dumps(event).encode()

    response = await client.post(
        f"{RAZORPAY_URL}?tenant=awa",
        content=body,
        headers={"X-Razorpay-Signature": razorpay_signature(body), "Content-Type": "application/json"},
    )

    assert response.status_code == 200, response.text
    payment = await load(Payment, provider_order_id="order_rzp_1")
    assert payment.status == "COMPLETED"
    assert payment.channel == "CARD"


async def test_razorpay_ignores_other_events(client, pending_order):
    body = json.dumps({"event": "refund.created"}).encode()
    response = await client.post(
        f"{RAZORPAY_URL}?tenant=awa", content=body, headers={"X-Razorpay-Signature": razorpay_signature(body)}
    )
    assert response.json() == {"status": "ignored", "event": "refund.created"}


# ==================== Stock after failed payments ====================

FAILED = {"referenceNumber": "ORD-20261018-AB12CD", "responsecode": "-1"}


@pytest.fixture
def gateway(monkeypatch):
    """PaiementPro answering every initialization with a payment page, or with `refusal` when set."""
    calls = []
    state = {"refusal": None}

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content))
        if state["refusal"]:
            return httpx.Response(200, json={"success": False, "message": state["refusal"]})
        return httpx.Response(200, json={"success": True, "url": "https://pay.test/checkout"})

    client = PaiementProClient(
        merchant_id="PP-1",
        notification_url="https://api.test/api/v1/payments/webhook/paiementpro",
        transport=httpx.MockTransport(handler),
    )
    monkeypatch.setattr(payment_reconciliation_service, "get_paiementpro_client", lambda: client)
    return type("Gateway", (), {"calls": calls, "state": state})


async def test_cancel_after_failed_payment_keeps_stock(client, pending_order, product, admin_headers):
    await client.post(f"{PAIEMENTPRO_URL}?tenant=awa", data=FAILED)
    assert (await load(Product, id=product.id)).stock == 10

    response = await client.patch(
        f"/api/v1/orders/{pending_order.id}",
        json={"status": "CANCELLED", "send_notification": False},
        headers=admin_headers,
    )

    assert response.status_code == 200, response.text
    assert (await load(Product, id=product.id)).stock == 10
    order = await load(Order, id=pending_order.id)
    assert order.stock_released is True


async def test_full_refund_after_failed_payment_keeps_stock(client, pending_order, product, admin_headers):
    await client.post(f"{PAIEMENTPRO_URL}?tenant=awa", data=FAILED)

    response = await client.post(
        f"/api/v1/orders/{pending_order.id}/refunds",
        json={"amount": "50000", "refund_type": "FULL"},
        headers=admin_headers,
    )

    assert response.status_code == 201, response.text
    assert (await load(Product, id=product.id)).stock == 10


async def test_reopening_cancelled_order_takes_stock_again(client, pending_order, product, admin_headers):
    url = f"/api/v1/orders/{pending_order.id}"
    await client.patch(url, json={"status": "CANCELLED", "send_notification": False}, headers=admin_headers)
    assert (await load(Product, id=product.id)).stock == 10

    response = await client.patch(url, json={"status": "PROCESSING", "send_notification": False}, headers=admin_headers)

    assert response.status_code == 200, response.text
    assert (await load(Product, id=product.id)).stock == 8
    assert (await load(Order, id=pending_order.id)).stock_released is False


async def test_retried_payment_takes_stock_again(client, pending_order, product, customer_headers, gateway):
    init = {"order_id": str(pending_order.id)}

    for _ in range(2):
        response = await client.post("/api/v1/payments/initialize", json=init, headers=customer_headers)
        assert response.status_code == 200, response.text
        assert (await load(Product, id=product.id)).stock == 8

        reference = response.json()["reference"]
        await client.post(
            f"{PAIEMENTPRO_URL}?tenant=awa", data={"referenceNumber": reference, "responsecode": "-1"}
        )
        assert (await load(Product, id=product.id)).stock == 10

    response = await client.post("/api/v1/payments/initialize", json=init, headers=customer_headers)
    reference = response.json()["reference"]
    assert (await load(Product, id=product.id)).stock == 8

    response = await client.post(f"{PAIEMENTPRO_URL}?tenant=awa", data={"referenceNumber": reference, "responsecode": "0"})

    assert response.json()["payment_status"] == "COMPLETED"
    assert (await load(Product, id=product.id)).stock == 8
    order = await load(Order, id=pending_order.id)
    assert order.status == "PROCESSING"


async def test_retry_without_stock_left_is_rejected(client, pending_order, product, customer_headers, gateway):
    await client.post(f"{PAIEMENTPRO_URL}?tenant=awa", data=FAILED)
    async with async_session_factory() as session:
        stored = await session.get(Product, product.id)
        stored.stock = 1
        await session.commit()

    response = await client.post(
        "/api/v1/payments/initialize", json={"order_id": str(pending_order.id)}, headers=customer_headers
    )

    assert response.status_code == 400
    assert "Insufficient stock" in response.json()["detail"]
    assert (await load(Product, id=product.id)).stock == 1
    assert gateway.calls == []


async def test_failed_webhook_refreshes_cached_storefront(client, pending_order, tenant_headers):
    response = await client.get("/api/v1/storefront/products", headers=tenant_headers)
    assert response.json()["items"][0]["stock"] == 8

    await client.post(f"{PAIEMENTPRO_URL}?tenant=awa", data=FAILED)

    response = await client.get("/api/v1/storefront/products", headers=tenant_headers)
    assert response.json()["items"][0]["stock"] == 10


# ==================== Payment initialization ====================

async def test_initialize_payment_checks_order(client, db_session, tenant, pending_order, customer_headers, gateway):
    url = "/api/v1/payments/initialize"
    response = await client.post(url, json={"order_id": "7f1c8a52-1c1e-4a51-9a55-2f0f2d1b6a10"}, headers=customer_headers)
    assert response.status_code == 404

    other = await make_user(db_session, "Adjoua Yao", UserRole.CUSTOMER, phone="0708080808")
    response = await client.post(url, json={"order_id": str(pending_order.id)}, headers=auth_headers(tenant, other))
    assert response.status_code == 403

    async with async_session_factory() as session:
        order = await session.get(Order, pending_order.id)
        order.payment_status = "COMPLETED"
        await session.commit()
    response = await client.post(url, json={"order_id": str(pending_order.id)}, headers=customer_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Order is already paid"

    async with async_session_factory() as session:
        order = await session.get(Order, pending_order.id)
        order.payment_status = "PENDING"
        order.status = "CANCELLED"
        await session.commit()
    response = await client.post(url, json={"order_id": str(pending_order.id)}, headers=customer_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Order is cancelled"
    assert gateway.calls == []


async def test_initialize_payment_replaces_reference(client, pending_order, customer_headers, gateway):
    response = await client.post(
        "/api/v1/payments/initialize",
        json={"order_id": str(pending_order.id), "channel": "WAVECI"},
        headers=customer_headers,
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["payment_url"] == "https://pay.test/checkout"
    assert body["reference"].startswith("ORD-")
    assert body["reference"] != "ORD-20261018-AB12CD"

    async with async_session_factory() as session:
        payments = (await session.execute(select(Payment).filter_by(order_id=pending_order.id))).scalars().all()
    assert [p.reference for p in payments] == [body["reference"]]
    assert payments[0].status == "PENDING"
    assert payments[0].channel == "WAVECI"
    order = await load(Order, id=pending_order.id)
    assert order.payment_reference == body["reference"]
    assert order.payment_method == "WAVE"
    assert gateway.calls[0]["notificationURL"].endswith("/paiementpro?tenant=awa")


# ==================== Free-amount payment links ====================

PAYER_URL = "/api/v1/payments/payer/initialize"


async def test_standalone_payment_initialization(client, tenant_headers, gateway):
    response = await client.post(
        PAYER_URL,
        json={"amount": "15000", "customer_name": "Aya Koné", "customer_phone": "0707070707", "channel": "OMCIV2"},
        headers=tenant_headers,
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["reference"].startswith("PAY_")
    assert body["payment_url"] == "https://pay.test/checkout"
    stored = await load(StandalonePayment, reference=body["reference"])
    assert stored.status == "PENDING"
    assert stored.customer_phone == "2250707070707"
    assert Decimal(stored.amount) == Decimal("15000")
    assert gateway.calls[0]["customerFirstName"] == "Aya"
    assert gateway.calls[0]["customerLastname"] == "Koné"


async def test_standalone_payment_rejects_bad_input(client, tenant_headers, gateway):
    response = await client.post(
        PAYER_URL,
        json={"amount": "15000", "customer_name": "Aya Koné", "customer_phone": "12-34-56-78"},
        headers=tenant_headers,
    )
    assert response.status_code == 400

    response = await client.post(
        PAYER_URL,
        json={"amount": "0", "customer_name": "Aya Koné", "customer_phone": "0707070707"},
        headers=tenant_headers,
    )
    assert response.status_code == 422

    gateway.state["refusal"] = "Marchand inactif"
    response = await client.post(
        PAYER_URL,
        json={"amount": "15000", "customer_name": "Aya Koné", "customer_phone": "0707070707"},
        headers=tenant_headers,
    )
    assert response.status_code == 502
    async with async_session_factory() as session:
        assert (await session.execute(select(StandalonePayment))).scalars().all() == []


@pytest.fixture
async def standalone(db_session, tenant):
    await add_template(
        db_session, NotificationTrigger.STANDALONE_PAYMENT_RECEIVED, NotificationChannel.SMS,
        "Reçu {amount} réf {reference} de {customer_name}",
    )
    await add_template(
        db_session, NotificationTrigger.STANDALONE_PAYMENT_FAILED, NotificationChannel.SMS,
        "Échec {amount} réf {reference}",
    )
    payment = StandalonePayment(
        reference="PAY_STD1760781234567K3F9QZ",
        amount=Decimal("15000"),
        customer_name="Aya Koné",
        customer_phone="2250707070707",
        status="PENDING",
    )
    db_session.add(payment)
    await db_session.commit()
    return payment


async def test_standalone_payment_completed_by_webhook(client, standalone, provider):
    payload = {"referenceNumber": standalone.reference, "responsecode": "0", "channel": "WAVECI", "payid": "P-889"}

    response = await client.post(f"{PAIEMENTPRO_URL}?tenant=awa", data=payload)

    assert response.status_code == 200, response.text
    assert response.json()["payment_status"] == "COMPLETED"
    stored = await load(StandalonePayment, reference=standalone.reference)
    assert stored.paid_at is not None
    assert stored.provider_payment_id == "P-889"
    assert stored.channel == "WAVECI"
    assert stored.webhook_received is True
    assert stored.notification_sent is True
    (sms,) = provider.sent("sms")
    assert sms["to"] == "2250707070707"
    assert sms["text"] == "Reçu 15000 CFA réf PAY_STD1760781234567K3F9QZ de Aya Koné"

    response = await client.post(f"{PAIEMENTPRO_URL}?tenant=awa", data={**payload, "responsecode": "-1"})
    assert response.json()["duplicate"] is True
    assert (await load(StandalonePayment, reference=standalone.reference)).status == "COMPLETED"
    assert len(provider.sent("sms")) == 1


async def test_standalone_payment_failure_is_notified_once(client, standalone, provider):
    payload = {"referenceNumber": standalone.reference, "responsecode": "-1", "responsemsg": "Solde insuffisant"}

    for _ in range(2):
        response = await client.post(f"{PAIEMENTPRO_URL}?tenant=awa", data=payload)
        assert response.status_code == 200

    stored = await load(StandalonePayment, reference=standalone.reference)
    assert stored.status == "FAILED"
    assert stored.error_message == "Solde insuffisant"
    assert [s["text"] for s in provider.sent("sms")] == ["Échec 15000 CFA réf PAY_STD1760781234567K3F9QZ"]


async def test_standalone_payment_admin_endpoints(client, standalone, provider, admin_headers, customer_headers):
    await client.post(f"{PAIEMENTPRO_URL}?tenant=awa", data={"referenceNumber": standalone.reference, "responsecode": "0"})

    response = await client.get("/api/v1/payments/standalone", headers=customer_headers)
    assert response.status_code == 403

    response = await client.get("/api/v1/payments/standalone?search=Koné", headers=admin_headers)
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["total"] == 1
    assert body["stats"]["completed"] == 1
    assert body["stats"]["pending"] == 0
    assert Decimal(str(body["stats"]["total_amount"])) == Decimal("15000")

    response = await client.get(f"/api/v1/payments/standalone/{standalone.id}", headers=admin_headers)
    assert response.json()["status"] == "COMPLETED"

    response = await client.post(
        f"/api/v1/payments/standalone/{standalone.id}/resend-notification", headers=admin_headers
    )
    assert response.json()["success"] is True
    assert len(provider.sent("sms")) == 2

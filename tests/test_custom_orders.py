from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from atelier.core.exceptions import BusinessRuleError, PermissionDeniedError
from atelier.models.custom_order import CustomOrderStatus, ItemStatus, Measurement
from atelier.models.invoice import Invoice, InvoicePayment, InvoiceStatus, Receipt
from atelier.models.notification import NotificationChannel, NotificationTemplate, NotificationTrigger
from atelier.services.custom_order_service import CustomOrderService, can_transition
from atelier.services.production_service import ProductionService

PICKUP = date.today() + timedelta(days=10)


async def create_order(session, customer, user, tailor=None, **kwargs):
    values = dict(
        items=[
            {"garment_type": "Boubou", "unit_price": Decimal("40000"), "tailor_id": tailor.id if tailor else None},
            {"garment_type": "Pantalon", "unit_price": Decimal("10000"), "quantity": 1},
        ],
        pickup_date=PICKUP,
        user=user,
    )
    values.update(kwargs)
    return await CustomOrderService(session).create_custom_order(customer.id, **values)


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        ("PENDING", "CUTTING", True),
        ("PENDING", "SEWING", False),
        ("CUTTING", "PENDING", True),
        ("SEWING", "FINISHING", True),
        ("FITTING", "ALTERATIONS", True),
        ("ALTERATIONS", "FITTING", True),
        ("FINISHING", "COMPLETED", True),
        ("COMPLETED", "DELIVERED", True),
        ("COMPLETED", "PENDING", False),
        ("DELIVERED", "COMPLETED", False),
        ("SEWING", "SEWING", True),
    ],
)
def test_item_transitions(current, target, allowed):
    assert can_transition(current, target) is allowed


async def test_create_with_deposit_mirrors_invoice(db_session, customer, admin_user):
    order = await create_order(
        db_session,
        customer,
        admin_user,
        deposit=Decimal("20000"),
        deposit_method="wave",
        material_cost=Decimal("5000"),
        measurements={"tour_poitrine": 96, "longueur": 140},
    )

    assert order.order_number.startswith("SM-")
    assert order.status == CustomOrderStatus.PENDING.value
    assert order.total_cost == Decimal("50000")
    assert order.amount_paid == Decimal("20000")
    assert order.balance == Decimal("30000")
    assert order.payments[0].payment_type == "DEPOSIT"
    assert order.measurement_id is not None

    invoice = await db_session.scalar(select(Invoice).where(Invoice.custom_order_id == order.id))
    assert invoice.total == Decimal("55000")
    assert invoice.status == InvoiceStatus.PARTIAL.value
    assert invoice.amount_paid == Decimal("20000")

    mirrored = await db_session.scalar(select(InvoicePayment).where(InvoicePayment.invoice_id == invoice.id))
    assert mirrored.reference == f"CP-{str(order.payments[0].id)[-8:]}"
    assert mirrored.payment_method == "WAVE"
    assert order.payments[0].invoice_payment_id == mirrored.id

    receipts = (await db_session.execute(select(Receipt))).scalars().all()
    assert len(receipts) == 1
    assert receipts[0].custom_order_payment_id == order.payments[0].id
    assert receipts[0].custom_order_id == order.id

    measurement = await db_session.get(Measurement, order.measurement_id)
    assert measurement.data["tour_poitrine"] == 96


async def test_create_requires_items_and_pickup(db_session, customer, admin_user):
    service = CustomOrderService(db_session)
    with pytest.raises(BusinessRuleError):
        await service.create_custom_order(customer.id, items=[], pickup_date=PICKUP)
    with pytest.raises(BusinessRuleError):
        await service.create_custom_order(customer.id, items=[{"garment_type": "Robe"}], pickup_date=None)


async def test_payment_types_follow_balance(db_session, customer, admin_user):
    service = CustomOrderService(db_session)
    order = await create_order(db_session, customer, admin_user)

    first = await service.add_payment(order.id, Decimal("10000"), notify=False)
    second = await service.add_payment(order.id, Decimal("15000"), notify=False)
    last = await service.add_payment(order.id, Decimal("25000"), notify=False)

    assert [first.payment_type, second.payment_type, last.payment_type] == ["DEPOSIT", "INSTALLMENT", "FINAL"]
    invoice = await service.invoices.get_for_custom_order(order.id)
    assert invoice.status == InvoiceStatus.PAID.value

    with pytest.raises(BusinessRuleError):
        await service.add_payment(order.id, Decimal("0"))


async def test_deleting_payment_updates_invoice(db_session, customer, admin_user):
    service = CustomOrderService(db_session)
    order = await create_order(db_session, customer, admin_user, deposit=Decimal("20000"))
    payment_id = order.payments[0].id

    await service.delete_payment(payment_id, user=admin_user)

    assert order.amount_paid == Decimal("0")
    invoice = await service.invoices.get_for_custom_order(order.id)
    assert invoice.status == InvoiceStatus.SENT.value
    assert (await db_session.execute(select(Receipt))).scalars().all() == []


async def test_order_status_follows_items(db_session, provider, customer, admin_user, tailor):
    db_session.add(NotificationTemplate(
        name="Prête",
        trigger=NotificationTrigger.CUSTOM_ORDER_READY.value,
        channel=NotificationChannel.SMS.value,
        content="Bonjour {customer_name}, votre commande {custom_order_number} est prête. Reste : {balance}.",
        enabled=True,
    ))
    service = CustomOrderService(db_session)
    order = await create_order(
        db_session, customer, admin_user,
        items=[{"garment_type": "Boubou", "unit_price": Decimal("40000"), "tailor_id": tailor.id}],
    )
    item = order.items[0]

    await service.update_item(item.id, {"status": "cutting"}, tailor)
    assert order.status == CustomOrderStatus.IN_PRODUCTION.value
    assert item.started_at is not None

    with pytest.raises(BusinessRuleError):
        await service.update_item(item.id, {"status": "COMPLETED"}, tailor)

    for status in ("SEWING", "FINISHING", "COMPLETED"):
        await service.update_item(item.id, {"status": status}, tailor)

    assert order.status == CustomOrderStatus.READY.value
    assert item.completed_at is not None
    (sms,) = provider.sent("sms")
    assert sms["text"] == f"Bonjour Fatou Bamba, votre commande {order.order_number} est prête. Reste : 40000 CFA."

    timeline = [entry.event for entry in await service.list_timeline(order.id)]
    assert "Statut : Prête" in timeline
    assert "Boubou: Coupe" in timeline


async def test_tailor_restrictions(db_session, customer, admin_user, tailor):
    service = CustomOrderService(db_session)
    order = await create_order(db_session, customer, admin_user, tailor=tailor)
    own, other = order.items

    with pytest.raises(PermissionDeniedError):
        await service.update_item(other.id, {"status": "CUTTING"}, tailor)
    with pytest.raises(PermissionDeniedError):
        await service.update_item(own.id, {"unit_price": Decimal("1")}, tailor)

    await service.update_item(own.id, {"actual_hours": Decimal("3.5"), "notes": "Broderie finie"}, tailor)
    assert own.notes == "Broderie finie"

    await service.update_item(other.id, {"unit_price": Decimal("15000")}, admin_user)
    assert order.total_cost == Decimal("55000")


async def test_production_board_for_tailor(db_session, customer, admin_user, tailor):
    await create_order(db_session, customer, admin_user, tailor=tailor, priority="vip")
    service = ProductionService(db_session)

    board = await service.production_board(tailor)
    assert board["stats"]["total"] == 1
    pending = board["columns"][0]
    assert pending["status"] == "PENDING"
    assert pending["cards"][0]["garment_type"] == "Boubou"
    assert pending["cards"][0]["order"]["priority"] == "VIP"

    board = await service.production_board(admin_user)
    assert board["stats"]["total"] == 2
    assert board["stats"]["unassigned"] == 1

    (workload,) = await service.tailors_with_workload()
    assert workload["active_items"] == 1


async def test_custom_order_api(client, admin_headers, tailor_headers, customer, tailor):
    payload = {
        "customer_id": str(customer.id),
        "items": [{"garment_type": "Robe", "unit_price": "35000", "tailor_id": str(tailor.id)}],
        "pickup_date": PICKUP.isoformat(),
        "deposit": "10000",
    }

    response = await client.post("/api/v1/custom-orders", json=payload, headers=tailor_headers)
    assert response.status_code == 403

    response = await client.post("/api/v1/custom-orders", json=payload, headers=admin_headers)
    assert response.status_code == 201, response.text
    body = response.json()
    assert Decimal(body["balance"]) == Decimal("25000")
    item_id = body["items"][0]["id"]

    response = await client.post(
        f"/api/v1/production/cards/{item_id}/move", json={"status": "CUTTING"}, headers=tailor_headers
    )
    assert response.status_code == 200
    assert response.json()["status"] == "CUTTING"

    response = await client.patch(
        f"/api/v1/custom-orders/items/{item_id}", json={"status": "FINISHING"}, headers=tailor_headers
    )
    assert response.status_code == 400

    response = await client.get(f"/api/v1/custom-orders/{body['id']}", headers=tailor_headers)
    assert response.json()["status"] == "IN_PRODUCTION"

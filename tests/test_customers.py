from decimal import Decimal

import pytest

from atelier.core.exceptions import BusinessRuleError, ConflictError, NotFoundError
from atelier.services.customer_service import CustomerService

from tests.test_custom_orders import create_order as create_custom_order


async def test_create_customer_rules(db_session, customer):
    service = CustomerService(db_session)

    created = await service.create_customer(
        {"name": "Adjoua N'Guessan", "phone": "0506060606", "email": "Adjoua@Mail.ci", "customer_source": "walk_in"}
    )
    assert created.email == "adjoua@mail.ci"
    assert created.customer_source == "WALK_IN"
    assert created.password_hash is None

    with pytest.raises(ConflictError):
        await service.create_customer({"name": "Doublon", "phone": "0709757296"})
    with pytest.raises(BusinessRuleError):
        await service.create_customer({"name": "Sans téléphone"})


async def test_total_spent_includes_custom_order_payments(db_session, customer, admin_user):
    await create_custom_order(db_session, customer, admin_user, deposit=Decimal("12500"))

    detail = await CustomerService(db_session).customer_detail(customer.id)

    assert detail["total_spent"] == Decimal("12500")
    assert detail["custom_orders_count"] == 1
    assert detail["orders_count"] == 0


async def test_staff_are_not_customers(db_session, admin_user):
    with pytest.raises(NotFoundError):
        await CustomerService(db_session).get_customer(admin_user.id)


async def test_notes_require_content(db_session, customer, admin_user):
    service = CustomerService(db_session)
    with pytest.raises(BusinessRuleError):
        await service.add_note(customer.id, "   ", user=admin_user)

    note = await service.add_note(customer.id, " Préfère le bazin riche ", user=admin_user)
    assert note.content == "Préfère le bazin riche"
    assert note.author_name == "Awa Admin"


async def test_customer_api(client, admin_headers, customer, provider):
    response = await client.post(
        "/api/v1/customers",
        json={"name": "Aïcha Diallo", "phone": "0101020304", "tags": ["vip"]},
        headers=admin_headers,
    )
    assert response.status_code == 201
    customer_id = response.json()["id"]

    response = await client.get("/api/v1/customers", params={"tag": "vip"}, headers=admin_headers)
    assert [c["name"] for c in response.json()["items"]] == ["Aïcha Diallo"]

    response = await client.get("/api/v1/customers", params={"search": "fatou"}, headers=admin_headers)
    assert response.json()["total"] == 1

    response = await client.post(
        f"/api/v1/customers/{customer_id}/measurements",
        json={"data": {"tour_taille": 72, "longueur": 110}, "name": "Robe de mariage"},
        headers=admin_headers,
    )
    assert response.status_code == 201

    response = await client.get(f"/api/v1/customers/{customer_id}/measurements/latest", headers=admin_headers)
    assert response.json()["data"] == {"tour_taille": 72, "longueur": 110}

    response = await client.post(
        f"/api/v1/customers/{customer_id}/message",
        json={"channel": "SMS", "message": "Votre robe est prête"},
        headers=admin_headers,
    )
    assert response.json()["success"] is True
    assert provider.sent("sms")[0]["to"] == "2250101020304"

    response = await client.delete(f"/api/v1/customers/{customer_id}", headers=admin_headers)
    assert response.status_code == 204

    response = await client.get(f"/api/v1/customers/{customer_id}", headers=admin_headers)
    assert response.json()["customer"]["is_active"] is False

    response = await client.get("/api/v1/customers/stats", headers=admin_headers)
    assert response.json()["total"] == 2


async def test_customer_without_measurements_is_404(client, admin_headers, customer):
    response = await client.get(f"/api/v1/customers/{customer.id}/measurements/latest", headers=admin_headers)
    assert response.status_code == 404

import pytest
from sqlalchemy import select

from atelier.core.exceptions import BusinessRuleError
from atelier.database import async_session_factory
from atelier.models.campaign import Campaign, CampaignLog
from atelier.models.user import UserRole
from atelier.services.campaign_service import CampaignService, parse_numbers

from tests.conftest import make_user


def test_parse_numbers_cleans_and_dedups():
    raw = "07 09 75 72 96, 0101010101;\n+225-0505050505,0709757296\n\n"
    assert parse_numbers(raw) == ["0709757296", "0101010101", "+2250505050505"]
    assert parse_numbers(["07-01", "0701", ""]) == ["0701"]
    assert parse_numbers(None) == []


async def test_campaign_to_all_customers(db_session, provider, customer, admin_user):
    await make_user(db_session, "Aya Kouassi", UserRole.CUSTOMER, phone="0102030405")
    await make_user(db_session, "Sans Téléphone", UserRole.CUSTOMER, email="no@phone.ci")
    service = CampaignService(db_session)

    campaign = await service.create_campaign(
        "Soldes Tabaski", "sms", "Bonjour {customer_name}, -20% chez {store_name} !", user=admin_user
    )
    assert campaign.status == "SENDING"
    assert campaign.total_recipients == 2
    assert [r["name"] for r in campaign.recipients] == ["Aya Kouassi", "Fatou Bamba"]

    await service.dispatch(campaign.id)

    assert campaign.status == "SENT"
    assert (campaign.sent_count, campaign.failed_count) == (2, 0)
    texts = sorted(p["text"] for p in provider.sent("sms"))
    assert texts[0].startswith("Bonjour Aya Kouassi, -20%")
    assert texts[1].startswith("Bonjour Fatou Bamba, -20%")


async def test_custom_numbers_campaign_counts_failures(db_session, provider, customer):
    provider.fail_types = {"whatsapp"}
    service = CampaignService(db_session)

    campaign = await service.create_campaign(
        "Nouvelle collection",
        "WHATSAPP",
        "Bonjour {customer_name}",
        target="custom",
        custom_numbers="0709757296, 0708080808",
    )
    assert campaign.recipients[0]["name"] == "Fatou Bamba"
    assert campaign.recipients[1]["name"] is None

    await service.dispatch(campaign.id)

    assert campaign.status == "FAILED"
    assert (campaign.sent_count, campaign.failed_count) == (0, 2)
    logs = (await db_session.execute(select(CampaignLog))).scalars().all()
    assert {log.content for log in logs} == {"Bonjour Fatou Bamba", "Bonjour Client"}
    assert all(log.error == "whatsapp rejected" for log in logs)


async def test_campaign_validation(db_session, tenant):
    service = CampaignService(db_session)
    with pytest.raises(BusinessRuleError):
        await service.create_campaign("Vide", "SMS", "Bonjour")
    with pytest.raises(BusinessRuleError):
        await service.create_campaign("Pigeon", "PIGEON", "Bonjour", target="CUSTOM", custom_numbers="0102")
    with pytest.raises(BusinessRuleError):
        await service.create_campaign("", "SMS", "Bonjour")


async def test_campaign_api_dispatches_in_background(client, admin_headers, provider, customer):
    response = await client.post(
        "/api/v1/campaigns",
        json={"name": "Fête des mères", "channel": "SMS", "message": "Bonjour {customer_name}"},
        headers=admin_headers,
    )

    assert response.status_code == 202, response.text
    assert response.json()["status"] == "SENDING"
    campaign_id = response.json()["id"]

    async with async_session_factory() as session:
        campaign = await session.get(Campaign, campaign_id)
        assert campaign.status == "SENT"
        assert campaign.sent_count == 1

    response = await client.get(f"/api/v1/campaigns/{campaign_id}", headers=admin_headers)
    assert [log["recipient_phone"] for log in response.json()["logs"]] == ["0709757296"]

    response = await client.get("/api/v1/campaigns/stats", headers=admin_headers)
    assert response.json()["messages_sent"] == 1


async def test_campaign_api_without_recipients_is_400(client, admin_headers):
    response = await client.post(
        "/api/v1/campaigns",
        json={"name": "Personne", "channel": "SMS", "message": "Bonjour"},
        headers=admin_headers,
    )
    assert response.status_code == 400

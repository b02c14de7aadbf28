from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import select

from atelier.core.dates import utc_now
from atelier.core.exceptions import BusinessRuleError, ConflictError
from atelier.models.notification import (
    BirthdayGreetingLog,
    NotificationChannel,
    NotificationLog,
    NotificationTemplate,
    NotificationTrigger,
    ScheduledNotification,
    ScheduledStatus,
)
from atelier.models.order import Order, OrderStatus, PaymentStatus
from atelier.models.user import UserRole
from atelier.services.email_service import EmailService
from atelier.services.notification_service import NotificationService, format_cfa

from tests.conftest import make_user


async def add_template(session, trigger, channel, content, enabled=True):
    session.add(NotificationTemplate(
        name=f"{trigger.value} {channel.value}",
        trigger=trigger.value,
        channel=channel.value,
        content=content,
        enabled=enabled,
    ))
    await session.flush()


async def logs(session):
    result = await session.execute(select(NotificationLog).order_by(NotificationLog.created_at))
    return list(result.scalars().all())


def test_render_template_keeps_unknown_placeholders():
    content = "Bonjour {customer_name}, total {order_total} {unknown}"
    rendered = NotificationService.render_template(
        content, {"customer_name": "Awa", "order_total": "25000 CFA"}
    )
    assert rendered == "Bonjour Awa, total 25000 CFA {unknown}"


def test_render_template_none_is_empty():
    assert NotificationService.render_template("Suivi : {tracking_number}", {"tracking_number": None}) == "Suivi : "


def test_format_cfa_rounds_to_whole_francs():
    assert format_cfa(Decimal("4500.50")) == "4501 CFA"
    assert format_cfa(None) == "0 CFA"


async def test_failover_falls_back_to_sms(db_session, provider, customer):
    provider.fail_types = {"whatsapp"}
    await add_template(db_session, NotificationTrigger.NEW_ACCOUNT, NotificationChannel.WHATSAPP, "WA {customer_name}")
    await add_template(db_session, NotificationTrigger.NEW_ACCOUNT, NotificationChannel.SMS, "SMS {customer_name}")

    result = await NotificationService(db_session).send_notification(
        NotificationTrigger.NEW_ACCOUNT, {"user_id": customer.id}
    )

    assert result["success"] is True
    assert result["channel"] == "SMS"
    assert [p["type"] for p in provider.sent()] == ["whatsapp", "sms"]
    assert provider.sent("sms")[0]["text"] == "SMS Fatou Bamba"

    rows = await logs(db_session)
    assert sorted((r.channel, r.status) for r in rows) == [("SMS", "SENT"), ("WHATSAPP", "FAILED")]


async def test_failover_skips_channel_without_template(db_session, provider, customer):
    await add_template(db_session, NotificationTrigger.NEW_ACCOUNT, NotificationChannel.SMS, "Bienvenue")

    result = await NotificationService(db_session).send_notification(
        NotificationTrigger.NEW_ACCOUNT, {"user_id": customer.id}
    )

    assert result == {"success": True, "channel": "SMS", "message_id": "grp-1"}
    assert len(provider.requests) == 1


async def test_all_channels_failing_is_logged(db_session, provider, customer):
    provider.fail_types = {"whatsapp", "sms"}
    await add_template(db_session, NotificationTrigger.NEW_ACCOUNT, NotificationChannel.WHATSAPP, "WA")
    await add_template(db_session, NotificationTrigger.NEW_ACCOUNT, NotificationChannel.SMS, "SMS")

    result = await NotificationService(db_session).send_notification(
        NotificationTrigger.NEW_ACCOUNT, {"user_id": customer.id}
    )

    assert result == {"success": False, "error": "All channels failed"}
    statuses = [r.status for r in await logs(db_session)]
    assert statuses == ["FAILED", "FAILED", "FAILED"]


async def test_dual_mode_sends_both_channels(db_session, provider, customer):
    service = NotificationService(db_session)
    await service.update_settings({"send_both": True})
    await add_template(db_session, NotificationTrigger.NEW_ACCOUNT, NotificationChannel.WHATSAPP, "WA")
    await add_template(db_session, NotificationTrigger.NEW_ACCOUNT, NotificationChannel.SMS, "SMS")

    result = await service.send_notification(NotificationTrigger.NEW_ACCOUNT, {"user_id": customer.id})

    assert result == {"success": True, "channels": {"SMS": True, "WHATSAPP": True}}
    assert sorted(p["type"] for p in provider.sent()) == ["sms", "whatsapp"]


async def test_missing_recipient_never_raises(db_session, provider):
    await add_template(db_session, NotificationTrigger.NEW_ORDER_ADMIN, NotificationChannel.SMS, "Nouvelle commande")

    result = await NotificationService(db_session).send_notification(NotificationTrigger.NEW_ORDER_ADMIN, {})

    assert result == {"success": False, "error": "No recipient phone number"}
    assert provider.requests == []
    (row,) = await logs(db_session)
    assert row.status == "FAILED"
    assert row.error_message == "No recipient phone number"


async def test_test_mode_redirects_to_test_phone(db_session, provider, customer):
    service = NotificationService(db_session)
    await service.update_settings({"test_mode": True, "test_phone_number": "0101010101"})
    await add_template(db_session, NotificationTrigger.NEW_ACCOUNT, NotificationChannel.SMS, "Bienvenue")

    await service.send_notification(NotificationTrigger.NEW_ACCOUNT, {"user_id": customer.id})

    assert provider.sent("sms")[0]["to"] == "2250101010101"


async def test_admin_trigger_goes_to_admin_phone(db_session, provider):
    service = NotificationService(db_session)
    await service.update_settings({"admin_phones": ["0707070707"]})
    await add_template(
        db_session, NotificationTrigger.DAILY_REPORT_ADMIN, NotificationChannel.SMS,
        "Rapport {report_date}: {daily_orders} commandes",
    )

    result = await service.send_notification(
        NotificationTrigger.DAILY_REPORT_ADMIN, {"report_date": "18/10/2026", "daily_orders": 4}
    )

    assert result["success"]
    sent = provider.sent("sms")[0]
    assert sent["to"] == "2250707070707"
    assert sent["text"] == "Rapport 18/10/2026: 4 commandes"


async def test_disabled_template_is_not_sent(db_session, provider, customer):
    await add_template(db_session, NotificationTrigger.NEW_ACCOUNT, NotificationChannel.SMS, "Bienvenue", enabled=False)

    result = await NotificationService(db_session).send_notification(
        NotificationTrigger.NEW_ACCOUNT, {"user_id": customer.id}
    )

    assert result == {"success": False, "error": "No active template"}
    assert provider.requests == []


async def test_manual_send_validates_input(db_session, provider):
    service = NotificationService(db_session)
    with pytest.raises(BusinessRuleError):
        await service.send_manual("EMAIL", "0709757296", "Bonjour")
    with pytest.raises(BusinessRuleError):
        await service.send_manual("SMS", "not-a-phone", "Bonjour")
    with pytest.raises(BusinessRuleError):
        await service.send_manual("SMS", "0709757296", "   ")

    result = await service.send_manual("whatsapp", "07 09 75 72 96", "Votre robe est prête")
    assert result["success"] is True
    (row,) = await logs(db_session)
    assert row.trigger == NotificationTrigger.CUSTOMER_MESSAGE.value
    assert row.recipient_phone == "0709757296"


async def test_seed_default_templates_is_idempotent(db_session):
    service = NotificationService(db_session)
    created = await service.seed_default_templates()
    assert created > 0
    assert await service.seed_default_templates() == 0


async def test_duplicate_template_conflicts(db_session):
    service = NotificationService(db_session)
    data = {"name": "A", "trigger": "ORDER_PLACED", "channel": "SMS", "content": "x"}
    await service.create_template(data)
    with pytest.raises(ConflictError):
        await service.create_template(dict(data, name="B"))


async def make_order(session, customer, payment_status=PaymentStatus.PENDING) -> Order:
    order = Order(
        order_number=f"181026-{payment_status.value[:5]}",
        user_id=customer.id,
        status=OrderStatus.PROCESSING.value,
        payment_status=payment_status.value,
        payment_method="PAIEMENTPRO",
        subtotal=Decimal("10000"),
        shipping_cost=Decimal("0"),
        discount=Decimal("0"),
        tax=Decimal("0"),
        total=Decimal("10000"),
        shipping_address={},
    )
    session.add(order)
    await session.flush()
    return order


async def test_scheduled_reminder_cancelled_once_order_paid(db_session, provider, customer):
    order = await make_order(db_session, customer, PaymentStatus.COMPLETED)

    service = NotificationService(db_session)
    await service.schedule(NotificationTrigger.PAYMENT_REMINDER_1, utc_now() - timedelta(minutes=1), order_id=order.id)
    await service.schedule(NotificationTrigger.PAYMENT_REMINDER_2, utc_now() + timedelta(hours=5), order_id=order.id)

    stats = await service.process_scheduled_notifications()

    assert stats == {"processed": 1, "sent": 0, "failed": 0, "cancelled": 1}
    rows = (await db_session.execute(select(ScheduledNotification))).scalars().all()
    assert sorted(r.status for r in rows) == [ScheduledStatus.CANCELLED.value, ScheduledStatus.PENDING.value]
    assert provider.requests == []


async def test_scheduled_notification_fails_after_two_attempts(db_session, provider, customer):
    provider.fail_types = {"sms", "whatsapp"}
    await add_template(db_session, NotificationTrigger.NEW_ACCOUNT, NotificationChannel.SMS, "Bienvenue")
    service = NotificationService(db_session)
    row = await service.schedule(NotificationTrigger.NEW_ACCOUNT, utc_now() - timedelta(minutes=1), user_id=customer.id)

    await service.process_scheduled_notifications()
    assert row.status == ScheduledStatus.PENDING.value
    assert row.attempts == 1

    await service.process_scheduled_notifications()
    assert row.status == ScheduledStatus.FAILED.value
    assert row.last_error == "All channels failed"


async def test_payment_reminders_follow_settings(db_session, customer):
    service = NotificationService(db_session)
    await service.update_follow_up_settings({"reminder3_enabled": False})

    order = await make_order(db_session, customer)

    scheduled = await service.schedule_payment_reminders(order.id)

    assert [s.trigger for s in scheduled] == ["PAYMENT_REMINDER_1", "PAYMENT_REMINDER_2"]
    assert await service.cancel_payment_reminders(order.id) == 2


async def test_notification_endpoints(client, admin_headers, provider):
    response = await client.get("/api/v1/notifications/settings", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["failover_order"] == ["WHATSAPP", "SMS"]

    response = await client.put(
        "/api/v1/notifications/settings",
        json={"failover_order": ["sms", "whatsapp"]},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["failover_order"] == ["SMS", "WHATSAPP"]

    response = await client.put(
        "/api/v1/notifications/settings",
        json={"failover_order": ["PIGEON"]},
        headers=admin_headers,
    )
    assert response.status_code == 400

    response = await client.post(
        "/api/v1/notifications/send",
        json={"channel": "SMS", "phone": "0709757296", "message": "Bonjour"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["success"] is True

    response = await client.get("/api/v1/notifications/stats", headers=admin_headers)
    assert response.json()["sent"] == 1


async def test_email_channel_runs_alongside_phone(db_session, provider, customer):
    service = NotificationService(
        db_session,
        email=EmailService(smtp_user="boutique@awa.ci", smtp_password="pw", from_name="Maison Awa"),
    )
    await service.update_settings({"email_enabled": True})
    await add_template(db_session, NotificationTrigger.NEW_ACCOUNT, NotificationChannel.SMS, "Bienvenue")
    db_session.add(NotificationTemplate(
        name="Bienvenue e-mail",
        trigger=NotificationTrigger.NEW_ACCOUNT.value,
        channel=NotificationChannel.EMAIL.value,
        subject="Bienvenue {customer_name}",
        content="Bonjour {customer_name},\nMerci pour votre inscription.",
        enabled=True,
    ))
    await db_session.flush()

    with patch("atelier.services.email_service.smtplib.SMTP") as smtp:
        result = await service.send_notification(NotificationTrigger.NEW_ACCOUNT, {"user_id": customer.id})

    assert result["success"] is True
    assert result["email"] is True
    server = smtp.return_value.__enter__.return_value
    server.login.assert_called_once_with("boutique@awa.ci", "pw")
    sender, recipient, message = server.sendmail.call_args.args
    assert recipient == "fatou@mail.ci"
    assert "Bienvenue Fatou Bamba" in message
    email_log = [r for r in await logs(db_session) if r.channel == "EMAIL"]
    assert email_log[0].status == "SENT"


def test_unconfigured_email_is_not_sent():
    with patch("atelier.services.email_service.smtplib.SMTP") as smtp:
        assert EmailService().send_email("a@b.ci", "Sujet", "<p>x</p>") is False
    smtp.assert_not_called()


# ==================== Birthdays ====================

def test_birthday_matching_handles_leap_day():
    assert NotificationService.is_birthday(date(1990, 10, 18), date(2026, 10, 18))
    assert not NotificationService.is_birthday(date(1990, 10, 18), date(2026, 10, 19))
    assert NotificationService.is_birthday(date(2000, 2, 29), date(2027, 2, 28))
    assert not NotificationService.is_birthday(date(2000, 2, 29), date(2028, 2, 28))
    assert NotificationService.is_birthday(date(2000, 2, 29), date(2028, 2, 29))
    assert NotificationService.next_birthday(date(2000, 2, 29), date(2026, 10, 18)) == date(2027, 2, 28)
    assert NotificationService.next_birthday(date(1990, 1, 5), date(2026, 10, 18)) == date(2027, 1, 5)


async def test_birthday_greeting_sent_once_a_year(db_session, provider, customer, tailor):
    await add_template(
        db_session, NotificationTrigger.BIRTHDAY_GREETING, NotificationChannel.SMS,
        "Joyeux anniversaire {customer_first_name} !",
    )
    customer.date_of_birth = date(1992, 10, 18)
    tailor.date_of_birth = date(1985, 10, 18)
    await db_session.flush()
    service = NotificationService(db_session)

    stats = await service.send_birthday_greetings(today=date(2026, 10, 18))

    assert stats == {"checked": 1, "sent": 1, "skipped": 0, "failed": 0}
    (sms,) = provider.sent("sms")
    assert sms["to"] == "2250709757296"
    assert sms["text"] == "Joyeux anniversaire Fatou !"
    (entry,) = (await db_session.execute(select(BirthdayGreetingLog))).scalars().all()
    assert (entry.year, entry.status, entry.channels) == (2026, "SENT", ["SMS"])

    stats = await service.send_birthday_greetings(today=date(2026, 10, 18))
    assert stats["skipped"] == 1
    assert len(provider.sent("sms")) == 1

    assert (await service.send_birthday_greetings(today=date(2026, 10, 19)))["sent"] == 0


async def test_failed_birthday_greeting_is_retried(db_session, provider, customer):
    customer.date_of_birth = date(2000, 2, 29)
    await db_session.flush()
    service = NotificationService(db_session)

    stats = await service.send_birthday_greetings(today=date(2027, 2, 28))
    assert stats["failed"] == 1

    await add_template(db_session, NotificationTrigger.BIRTHDAY_GREETING, NotificationChannel.SMS, "Bonne fête")
    stats = await service.send_birthday_greetings(today=date(2027, 2, 28))

    assert stats["sent"] == 1
    (entry,) = (await db_session.execute(select(BirthdayGreetingLog))).scalars().all()
    assert entry.status == "SENT"


async def test_upcoming_birthdays(db_session, customer):
    customer.date_of_birth = date(1992, 10, 25)
    later = await make_user(db_session, "Aya Koné", UserRole.CUSTOMER, phone="0707070707")
    later.date_of_birth = date(1980, 12, 30)
    await db_session.flush()

    rows = await NotificationService(db_session).upcoming_birthdays(days=30, today=date(2026, 10, 18))

    assert [r["name"] for r in rows] == ["Fatou Bamba"]
    assert (rows[0]["days_until"], rows[0]["age"], rows[0]["greeting_status"]) == (7, 34, None)

    rows = await NotificationService(db_session).upcoming_birthdays(days=90, today=date(2026, 10, 18))
    assert [r["name"] for r in rows] == ["Fatou Bamba", "Aya Koné"]

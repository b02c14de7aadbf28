import httpx
import pytest

from atelier.services.messaging_service import SMSingService, format_phone, sms_segments


def make_client(handler) -> SMSingService:
    return SMSingService(
        api_key="key",
        api_token="token",
        sender_id="ATELIER",
        base_url="https://sms.test/smsAPI",
        logo_url="https://cdn.test/logo.png",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("0709757296", "2250709757296"),
        ("+225 07 09 75 72 96", "2250709757296"),
        ("2250709757296", "2250709757296"),
    ],
)
def test_format_phone(raw, expected):
    assert format_phone(raw) == expected


def test_sms_segments():
    assert sms_segments("") == 1
    assert sms_segments("a" * 160) == 1
    assert sms_segments("a" * 161) == 2


async def test_send_sms_builds_provider_query():
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"status": "queued", "group_id": "g-42"})

    result = await make_client(handler).send_sms("0709757296", "Bonjour Awa, votre robe est prête")

    assert result.success
    assert result.message_id == "g-42"
    assert result.cost == 1
    params = captured[0].url.params
    assert "sendsms" in params
    assert params["type"] == "sms"
    assert params["to"] == "2250709757296"
    assert params["from"] == "ATELIER"
    assert params["text"] == "Bonjour Awa, votre robe est prête"


async def test_whatsapp_attaches_store_logo():
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"success": True, "id": "wa-1"})

    result = await make_client(handler).send_whatsapp("0709757296", "Bonjour")

    assert result.success
    assert result.message_id == "wa-1"
    assert captured[0].url.params["file"] == "https://cdn.test/logo.png"


async def test_provider_rejection_is_returned_not_raised():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "error", "message": "Solde insuffisant"})

    result = await make_client(handler).send_sms("0709757296", "Bonjour")

    assert not result.success
    assert result.error == "Solde insuffisant"


async def test_http_error_is_returned_not_raised():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    result = await make_client(handler).send_whatsapp("0709757296", "Bonjour")

    assert not result.success
    assert result.error


@pytest.mark.parametrize("body", [["queued"], "OK", 42])
async def test_non_object_response_is_returned_not_raised(body):
    client = make_client(lambda r: httpx.Response(200, json=body))

    sms = await client.send_sms("0709757296", "Bonjour")
    whatsapp = await client.send_whatsapp("0709757296", "Bonjour")
    status = await client.check_message_status("g-1")

    assert not sms.success
    assert "Unexpected provider response" in sms.error
    assert not whatsapp.success
    assert status["success"] is False


async def test_unconfigured_client_sends_nothing():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no HTTP call expected")

    client = SMSingService(api_key="", api_token="", transport=httpx.MockTransport(handler))
    client.api_key = client.api_token = ""

    result = await client.send_sms("0709757296", "Bonjour")
    assert not result.success
    assert result.error == "SMSing not configured"


async def test_send_dual_succeeds_when_one_channel_works():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["type"] == "sms":
            return httpx.Response(200, json={"status": "error", "message": "blocked"})
        return httpx.Response(200, json={"status": "queued", "group_id": "wa"})

    result = await make_client(handler).send_dual("0709757296", "Bonjour")

    assert result["success"] is True
    assert result["channels"]["sms"]["success"] is False
    assert result["channels"]["whatsapp"]["success"] is True
    assert result["error"] is None


async def test_whatsapp_cloud_template_text():
    client = make_client(lambda r: httpx.Response(200, json={"status": "queued"}))
    text = client.whatsapp_cloud_text("123456", language="fr", official=True)
    assert text == "content:official_otp_code_template|lang=fr|body=123456|button=123456"

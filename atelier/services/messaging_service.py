"""
SMSing provider client: SMS, WhatsApp Business and WhatsApp Cloud.

Every call goes through a single GET endpoint:

    {SMSING_API_URL}?sendsms&apikey=..&apitoken=..&type=sms|whatsapp&from=..&to=..&text=..

Provider errors, HTTP errors and timeouts are returned as
``MessageResult(success=False, error=...)``; nothing is raised to callers.
"""
import asyncio
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Optional, Any

import httpx

from atelier.config import settings

logger = logging.getLogger(__name__)

SMS_SEGMENT_LENGTH = 160
SUCCESS_STATUSES = {"queued", "success"}


@dataclass
class MessageResult:
    success: bool
    message_id: Optional[str] = None
    group_id: Optional[str] = None
    error: Optional[str] = None
    cost: Optional[int] = None
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message_id": self.message_id,
            "group_id": self.group_id,
            "error": self.error,
            "cost": self.cost,
        }


def format_phone(phone: str) -> str:
    """E.164 without the plus sign: 0709757296 -> 2250709757296."""
    cleaned = re.sub(r"\D", "", phone or "")
    if cleaned.startswith("225"):
        return cleaned
    return f"225{cleaned}"


def sms_segments(text: str) -> int:
    return max(1, math.ceil(len(text or "") / SMS_SEGMENT_LENGTH))


class SMSingService:
    """Thin async client over the SMSing HTTP API."""

    def __init__(
        self,
        api_key: str = "",
        api_token: str = "",
        sender_id: str = "",
        base_url: str = "",
        logo_url: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or settings.SMSING_API_KEY
        self.api_token = api_token or settings.SMSING_API_TOKEN
        self.sender_id = sender_id or settings.SMSING_SENDER_ID
        self.base_url = base_url or settings.SMSING_API_URL
        self.logo_url = logo_url or settings.STORE_LOGO_URL
        self.timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_token)

    def _params(self, message_type: str, to: str, text: str) -> dict:
        # "sendsms" is a bare flag; httpx renders it as "sendsms="
        return {
            "sendsms": "",
            "apikey": self.api_key,
            "apitoken": self.api_token,
            "type": message_type,
            "from": self.sender_id,
            "to": format_phone(to),
            "text": text,
        }

    async def _get(self, params: dict, timeout: Optional[float] = None) -> dict:
        async with httpx.AsyncClient(timeout=timeout or self.timeout, transport=self._transport) as client:
            response = await client.get(self.base_url, params=params)
            response.raise_for_status()
            data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected provider response: {data!r}")
        return data

    @staticmethod
    def _error_text(data: dict, default: str) -> str:
        return data.get("message") or data.get("error") or data.get("status") or default

    async def send_sms(self, to: str, message: str) -> MessageResult:
        """Send a plain SMS. Unicode (French accents) is kept as-is."""
        if not self.is_configured:
            logger.warning("SMSing not configured, SMS not sent")
            return MessageResult(success=False, error="SMSing not configured")
        try:
            data = await self._get(self._params("sms", to, message))
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"SMSing SMS error to {to}: {e}")
            return MessageResult(success=False, error=str(e) or "Failed to send SMS")

        if data.get("status") in SUCCESS_STATUSES:
            logger.info(f"SMS sent to {format_phone(to)}")
            return MessageResult(
                success=True,
                message_id=data.get("group_id") or data.get("id"),
                group_id=data.get("group_id"),
                cost=sms_segments(message),
                raw=data,
            )
        logger.error(f"SMS to {format_phone(to)} rejected: {data}")
        return MessageResult(success=False, error=self._error_text(data, "Failed to send SMS"), raw=data)

    async def send_whatsapp(self, to: str, message: str, media_url: Optional[str] = None) -> MessageResult:
        """Send a WhatsApp Business message; the store logo is attached when no media is given."""
        if not self.is_configured:
            logger.warning("SMSing not configured, WhatsApp not sent")
            return MessageResult(success=False, error="SMSing not configured")
        params = self._params("whatsapp", to, message)
        file_url = media_url or self.logo_url
        if file_url:
            params["file"] = file_url

        try:
            data = await self._get(params)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"SMSing WhatsApp error to {to}: {e}")
            return MessageResult(success=False, error=str(e) or "Failed to send WhatsApp Business message")

        if (
            data.get("status") in SUCCESS_STATUSES
            or data.get("success") is True
            or data.get("code") in (0, 200)
        ):
            logger.info(f"WhatsApp sent to {format_phone(to)}")
            return MessageResult(
                success=True,
                message_id=data.get("group_id") or data.get("id") or data.get("message_id"),
                group_id=data.get("group_id"),
                raw=data,
            )
        logger.error(f"WhatsApp to {format_phone(to)} rejected: {data}")
        return MessageResult(
            success=False,
            error=self._error_text(data, "Failed to send WhatsApp Business message"),
            raw=data,
        )

    def whatsapp_cloud_text(self, code: str, language: Optional[str] = None, official: bool = False) -> str:
        lang = language or settings.SMSING_WHATSAPP_LANG
        if official:
            return f"content:official_otp_code_template|lang={lang}|body={code}|button={code}"
        return f"content:{settings.SMSING_WHATSAPP_TEMPLATE}|lang={lang}|body={code}|header=image:{self.logo_url}"

    async def send_whatsapp_cloud(
        self,
        to: str,
        code: str,
        language: Optional[str] = None,
        official: bool = False,
    ) -> MessageResult:
        """Send an approved WhatsApp Cloud template carrying a code."""
        if not self.is_configured:
            return MessageResult(success=False, error="SMSing not configured")
        text = self.whatsapp_cloud_text(code, language, official)
        try:
            data = await self._get(self._params("whatsapp", to, text))
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"SMSing WhatsApp Cloud error to {to}: {e}")
            return MessageResult(success=False, error=str(e) or "Failed to send WhatsApp Cloud message")

        if data.get("status") in SUCCESS_STATUSES:
            return MessageResult(
                success=True,
                message_id=data.get("group_id") or data.get("id"),
                group_id=data.get("group_id"),
                raw=data,
            )
        return MessageResult(
            success=False,
            error=self._error_text(data, "Failed to send WhatsApp Cloud message"),
            raw=data,
        )

    async def send_dual(self, to: str, message: str, media_url: Optional[str] = None) -> dict:
        """SMS and WhatsApp at the same time; success when at least one goes through."""
        sms_result, whatsapp_result = await asyncio.gather(
            self.send_sms(to, message),
            self.send_whatsapp(to, message, media_url),
        )
        success = sms_result.success or whatsapp_result.success
        return {
            "success": success,
            "channels": {
                "sms": sms_result.to_dict(),
                "whatsapp": whatsapp_result.to_dict(),
            },
            "error": None if success else "Both SMS and WhatsApp Business failed",
        }

    async def check_message_status(self, group_id: str) -> dict:
        params = {
            "groupstatus": "",
            "apikey": self.api_key,
            "apitoken": self.api_token,
            "groupid": group_id,
        }
        try:
            data = await self._get(params, timeout=10.0)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"SMSing status check failed for {group_id}: {e}")
            return {"success": False, "error": str(e) or "Failed to check message status"}

        if data.get("status") == "success":
            return {
                "success": True,
                "status": data.get("group_status"),
                "recipients": data.get("recipients"),
            }
        return {"success": False, "error": data.get("message") or "Failed to check message status"}


_messaging_service: Optional[SMSingService] = None


def get_messaging_service() -> SMSingService:
    global _messaging_service
    if _messaging_service is None:
        _messaging_service = SMSingService(timeout=float(settings.SMSING_TIMEOUT))
    return _messaging_service

"""
Payment gateways.

PaiementPro (default, West African mobile money and cards) is reached
over its JSON API with httpx. Razorpay is kept as an alternative
gateway, selected with PAYMENT_GATEWAY=razorpay.

Reconciliation of gateway notifications against orders and invoices
lives in payment_reconciliation_service.
"""
import hashlib
import hmac
import logging
import random
import re
import string
import time
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Dict, Any

import httpx
import razorpay
from pydantic import BaseModel

from atelier.config import settings

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase

CHANNEL_NAMES = {
    "OMCIV2": "Orange Money CI",
    "MOMOCI": "MTN Mobile Money CI",
    "FLOOZ": "Moov Money CI",
    "WAVECI": "Wave CI",
    "OMBF": "Orange Money BF",
    "OMML": "Orange Money Mali",
    "MOMOBJ": "MTN Mobile Money Benin",
    "FLOOZBJ": "Moov Money Benin",
    "OMSN": "Orange Money Senegal",
    "WAVESN": "Wave Senegal",
    "OMCM": "Orange Money Cameroun",
    "MOMOCM": "MTN Mobile Money Cameroun",
    "CARD": "Visa/Mastercard",
    "PAYPAL": "PayPal",
}

CHANNEL_METHODS = {
    "OMCIV2": "ORANGE_MONEY",
    "MOMOCI": "MTN_MOBILE_MONEY",
    "FLOOZ": "MTN_MOBILE_MONEY",
    "WAVECI": "WAVE",
    "WAVESN": "WAVE",
    "CARD": "STRIPE",
}


# ==================== Helpers ====================

def generate_reference(prefix: str = "TXN") -> str:
    """PREFIX-<epoch ms>-<6 base36 chars>, e.g. ORD-1760781234567-K3F9QZ."""
    suffix = "".join(random.choices(_BASE36, k=6))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


def generate_hashcode(data: Dict[str, Any], secret: str) -> str:
    """HMAC-SHA256 of the sorted key=value pairs, hashcode itself excluded."""
    payload = "&".join(
        f"{key}={data[key]}" for key in sorted(data) if key != "hashcode"
    )
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


def verify_hashcode(data: Dict[str, Any], secret: str) -> bool:
    received = data.get("hashcode")
    if not received:
        return False
    return hmac.compare_digest(generate_hashcode(data, secret), str(received))


def format_phone(phone: Optional[str]) -> str:
    """Local Ivorian numbers (10 digits, leading 0) get the 225 prefix; the 0 is kept."""
    cleaned = re.sub(r"\D", "", phone or "")
    if cleaned.startswith("0") and len(cleaned) == 10:
        return f"225{cleaned}"
    return cleaned


def format_amount(amount: Decimal | float | int) -> int:
    """XOF has no subunit."""
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def map_channel(channel: Optional[str]) -> str:
    """Gateway channel code -> our payment method."""
    return CHANNEL_METHODS.get((channel or "").upper(), "PAIEMENTPRO")


def channel_display_name(channel: Optional[str]) -> str:
    if not channel:
        return ""
    return CHANNEL_NAMES.get(channel.upper(), channel)


# ==================== PaiementPro ====================

class PaiementProInitRequest(BaseModel):
    amount: Decimal
    reference: str
    description: str = "Paiement en ligne"
    channel: str = ""
    customer_email: Optional[str] = None
    customer_first_name: str = ""
    customer_last_name: str = ""
    customer_phone: str = ""
    return_context: Optional[Dict[str, str]] = None
    tenant: Optional[str] = None


class PaiementProClient:
    """Async client for the PaiementPro online payment API."""

    def __init__(
        self,
        merchant_id: str = "",
        secret_key: Optional[str] = None,
        currency_code: str = "",
        notification_url: str = "",
        return_url: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.merchant_id = merchant_id or settings.PAIEMENTPRO_MERCHANT_ID
        self.secret_key = secret_key if secret_key is not None else settings.PAIEMENTPRO_SECRET_KEY
        self.currency_code = currency_code or settings.PAIEMENTPRO_COUNTRY_CURRENCY_CODE
        self.notification_url = notification_url or settings.PAIEMENTPRO_NOTIFICATION_URL
        self.return_url = return_url or settings.PAIEMENTPRO_RETURN_URL
        self.init_url = settings.PAIEMENTPRO_INIT_URL
        self.status_url = settings.PAIEMENTPRO_STATUS_URL
        self._transport = transport

    def build_payload(self, request: PaiementProInitRequest) -> dict:
        context = request.return_context or {}
        notification_url = self.notification_url
        if request.tenant and notification_url:
            separator = "&" if "?" in notification_url else "?"
            notification_url = f"{notification_url}{separator}tenant={request.tenant}"
        return {
            "merchantId": self.merchant_id,
            "amount": format_amount(request.amount),
            "description": request.description,
            "channel": request.channel,
            "countryCurrencyCode": self.currency_code,
            "referenceNumber": request.reference,
            "customerEmail": request.customer_email or "",
            "customerFirstName": request.customer_first_name,
            # Lowercase "n" is what the gateway expects
            "customerLastname": request.customer_last_name,
            "customerPhoneNumber": format_phone(request.customer_phone),
            "notificationURL": notification_url,
            "returnURL": self.return_url,
            "returnContext": "&".join(f"{k}={v}" for k, v in context.items()),
        }

    async def initialize(self, request: PaiementProInitRequest) -> dict:
        """
        Initialize a transaction.

        Returns:
            {"success": True, "url": ..., "reference": ...} or
            {"success": False, "error": ..., "reference": ...}
        """
        payload = self.build_payload(request)
        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.post(
                    self.init_url,
                    json=payload,
                    headers={"Accept": "application/json"},
                )
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"PaiementPro initialization error for {request.reference}: {e}")
            return {"success": False, "error": str(e) or "Initialization failed", "reference": request.reference}

        if not isinstance(data, dict):
            logger.error(f"PaiementPro returned an unexpected body for {request.reference}: {data!r}")
            return {"success": False, "error": "Unexpected gateway response", "reference": request.reference}
        if data.get("success") is True and data.get("url"):
            logger.info(f"PaiementPro payment initialized: {request.reference}")
            return {"success": True, "url": data["url"], "reference": request.reference}

        error = data.get("message") or data.get("error") or "Initialization failed"
        logger.error(f"PaiementPro rejected {request.reference}: {error}")
        return {"success": False, "error": error, "reference": request.reference}

    async def check_status(self, reference: str) -> dict:
        try:
            async with httpx.AsyncClient(timeout=15.0, transport=self._transport) as client:
                response = await client.get(f"{self.status_url}/{reference}")
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"PaiementPro status check failed for {reference}: {e}")
            return {"success": False, "error": str(e) or "Status check failed"}
        return {"success": True, "status": data}


# ==================== Razorpay ====================

class RazorpayGateway:
    """
    Razorpay checkout.

    Amounts are sent in the smallest unit; XOF has none, so the amount
    is passed through unchanged when the currency is XOF.
    """

    def __init__(self):
        self.client = razorpay.Client(
            auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
        )
        self.key_id = settings.RAZORPAY_KEY_ID
        self.key_secret = settings.RAZORPAY_KEY_SECRET

    @staticmethod
    def to_minor_units(amount: Decimal, currency: str) -> int:
        if currency.upper() == "XOF":
            return format_amount(amount)
        return int(Decimal(str(amount)) * 100)

    def create_order(self, order_id: uuid.UUID, reference: str, amount: Decimal, currency: str = "XOF") -> dict:
        try:
            razorpay_order = self.client.order.create(data={
                "amount": self.to_minor_units(amount, currency),
                "currency": currency,
                "receipt": reference,
                "notes": {"order_id": str(order_id), "reference": reference},
            })
        except razorpay.errors.BadRequestError as e:
            logger.error(f"Failed to create Razorpay order for {reference}: {e}")
            raise
        logger.info(f"Created Razorpay order {razorpay_order['id']} for {reference}")
        return razorpay_order

    def verify_payment_signature(self, razorpay_order_id: str, razorpay_payment_id: str, signature: str) -> bool:
        payload = f"{razorpay_order_id}|{razorpay_payment_id}"
        expected = hmac.new(self.key_secret.encode(), payload.encode(), hashlib.sha256).hexdigest()
        is_valid = hmac.compare_digest(expected, signature or "")
        if not is_valid:
            logger.warning(f"Invalid payment signature for Razorpay order {razorpay_order_id}")
        return is_valid

    @staticmethod
    def verify_webhook_signature(body: bytes, signature: str) -> bool:
        webhook_secret = settings.RAZORPAY_WEBHOOK_SECRET
        if not webhook_secret:
            logger.warning("Webhook secret not configured")
            return False
        expected = hmac.new(webhook_secret.encode(), body, hashlib.sha256).hexdigest()
        is_valid = hmac.compare_digest(expected, signature or "")
        if not is_valid:
            logger.warning("Invalid webhook signature")
        return is_valid


class WebhookEvent:
    """Razorpay webhook event types."""
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    ORDER_PAID = "order.paid"


def get_paiementpro_client() -> PaiementProClient:
    return PaiementProClient()


def get_razorpay_gateway() -> RazorpayGateway:
    return RazorpayGateway()

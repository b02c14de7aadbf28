from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # JWT Settings
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # App Settings
    APP_NAME: str = "Atelier Commerce"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Email/SMTP Settings
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = ""
    SMTP_FROM_NAME: str = "Atelier Commerce"

    # Store identity (used in notification templates)
    STORE_NAME: str = "Atelier"
    STORE_URL: str = "https://atelier.ci"
    STORE_PHONE: str = ""
    STORE_WHATSAPP: str = ""
    STORE_ADDRESS: str = "Abidjan, Côte d'Ivoire"
    STORE_LOGO_URL: str = ""
    CURRENCY_LABEL: str = "CFA"

    # Redis Cache Settings
    REDIS_URL: Optional[str] = None  # e.g., "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    PRODUCT_CACHE_TTL: int = 300
    CATEGORY_CACHE_TTL: int = 1800

    # SMSing (SMS + WhatsApp provider)
    SMSING_API_URL: str = "https://panel.smsing.app/smsAPI"
    SMSING_API_KEY: str = ""
    SMSING_API_TOKEN: str = ""
    SMSING_SENDER_ID: str = "ATELIER"
    SMSING_WHATSAPP_TEMPLATE: str = "otp_code_template"
    SMSING_WHATSAPP_LANG: str = "fr"
    SMSING_TIMEOUT: int = 30

    # Payment gateway selection: "paiementpro" or "razorpay"
    PAYMENT_GATEWAY: str = "paiementpro"

    # PaiementPro
    PAIEMENTPRO_INIT_URL: str = (
        "https://www.paiementpro.net/webservice/onlinepayment/js/initialize/initialize.php"
    )
    PAIEMENTPRO_STATUS_URL: str = "https://api.paiementpro.net/status"
    PAIEMENTPRO_MERCHANT_ID: str = ""
    PAIEMENTPRO_SECRET_KEY: Optional[str] = None  # For webhook hashcode verification
    PAIEMENTPRO_COUNTRY_CURRENCY_CODE: str = "952"
    PAIEMENTPRO_NOTIFICATION_URL: str = ""
    PAIEMENTPRO_RETURN_URL: str = ""

    # Razorpay Payment Gateway
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_WEBHOOK_SECRET: Optional[str] = None

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "Africa/Abidjan"
    SCHEDULED_NOTIFICATIONS_INTERVAL_MINUTES: int = 5
    DAILY_REPORT_HOUR: int = 20
    BIRTHDAY_GREETING_HOUR: int = 8

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return list(self.CORS_ORIGINS)

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()

import os
from typing import List, Optional

from pydantic import BaseModel, Field


def _csv(value: Optional[str], default: str = "") -> List[str]:
    raw = value if value is not None else default
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseModel):
    """
    Runtime configuration, read from environment variables.
    """
    database_url: Optional[str] = None
    database_name: Optional[str] = None

    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    currency: str = "usd"
    shipping_countries: List[str] = Field(default_factory=lambda: ["US"])

    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])

    admin_jwt_secret: Optional[str] = None
    admin_emails: List[str] = Field(default_factory=list)

    download_token_secret: str = "dev-download-secret-change"
    download_link_ttl_hours: int = 24
    public_base_url: str = "http://localhost:8000"

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    mail_from_name: str = "Ethereal Balance"

    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_from_number: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME"),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY"),
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET"),
            currency=os.getenv("CHECKOUT_CURRENCY", "usd"),
            shipping_countries=_csv(os.getenv("SHIPPING_COUNTRIES"), "US"),
            allowed_origins=_csv(os.getenv("ALLOWED_ORIGINS"), "*"),
            admin_jwt_secret=os.getenv("ADMIN_JWT_SECRET"),
            admin_emails=[e.lower() for e in _csv(os.getenv("ADMIN_EMAILS"))],
            download_token_secret=os.getenv("DOWNLOAD_TOKEN_SECRET", "dev-download-secret-change"),
            download_link_ttl_hours=int(os.getenv("DOWNLOAD_LINK_TTL_HOURS", "24")),
            public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/"),
            smtp_host=os.getenv("SMTP_HOST"),
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            smtp_user=os.getenv("SMTP_USER"),
            smtp_password=os.getenv("SMTP_PASSWORD"),
            mail_from_name=os.getenv("MAIL_FROM_NAME", "Ethereal Balance"),
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
            twilio_from_number=os.getenv("TWILIO_FROM_NUMBER"),
        )

    @property
    def mail_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user)

    @property
    def sms_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number)

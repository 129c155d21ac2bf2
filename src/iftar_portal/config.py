"""Runtime configuration read from environment variables."""

import os
from dataclasses import dataclass, field
from typing import Dict


DEFAULT_SITE_ID = "105889251"
DEFAULT_PAYMENT_AMOUNT = 1000
MAX_PROOF_SIZE_BYTES = 5 * 1024 * 1024


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass(frozen=True)
class EmailTemplates:
    """Template ids understood by the email-send API."""
    participant_initial: str = "template_participant_initial"
    admin_notification: str = "template_admin_notification"
    confirmation: str = "template_confirmation"
    rejection: str = "template_rejection"
    membership_request: str = "template_membership_request"
    membership_decision: str = "template_membership_decision"
    broadcast: str = "template_broadcast"

    @classmethod
    def from_env(cls) -> "EmailTemplates":
        return cls(
            participant_initial=os.getenv("EMAIL_TEMPLATE_PARTICIPANT_INITIAL", cls.participant_initial),
            admin_notification=os.getenv("EMAIL_TEMPLATE_ADMIN_NOTIFICATION", cls.admin_notification),
            confirmation=os.getenv("EMAIL_TEMPLATE_CONFIRMATION", cls.confirmation),
            rejection=os.getenv("EMAIL_TEMPLATE_REJECTION", cls.rejection),
            membership_request=os.getenv("EMAIL_TEMPLATE_MEMBERSHIP_REQUEST", cls.membership_request),
            membership_decision=os.getenv("EMAIL_TEMPLATE_MEMBERSHIP_DECISION", cls.membership_decision),
            broadcast=os.getenv("EMAIL_TEMPLATE_BROADCAST", cls.broadcast),
        )


@dataclass(frozen=True)
class PortalConfig:
    """
    Settings shared by the services and the HTTP application.

    Credentials may be empty: senders then report failure and the
    gateway connector refuses to initiate payments.
    """
    cinetpay_api_key: str = ""
    cinetpay_site_id: str = DEFAULT_SITE_ID
    cinetpay_api_url: str = "https://api-checkout.cinetpay.com/v2/payment"
    cinetpay_check_url: str = "https://api-checkout.cinetpay.com/v2/payment/check"
    payment_currency: str = "XOF"
    payment_amount: int = DEFAULT_PAYMENT_AMOUNT
    public_base_url: str = "http://localhost:8000"

    email_api_url: str = "https://api.emailjs.com/api/v1.0/email/send"
    email_service_id: str = ""
    email_public_key: str = ""
    email_templates: EmailTemplates = field(default_factory=EmailTemplates)
    admin_email: str = ""

    sms_api_url: str = ""
    sms_api_token: str = ""
    sms_sender: str = "IFTAR"

    upload_dir: str = "./uploads"
    upload_base_url: str = "http://localhost:8000/uploads"

    admin_token_secret: str = "change-me"
    admin_token_expire_minutes: int = 480
    self_check_in_code: str = ""

    @classmethod
    def from_env(cls) -> "PortalConfig":
        """Build a configuration from the process environment."""
        public_base_url = os.getenv("PUBLIC_BASE_URL", cls.public_base_url).rstrip("/")
        return cls(
            cinetpay_api_key=os.getenv("CINETPAY_API_KEY", ""),
            cinetpay_site_id=os.getenv("CINETPAY_SITE_ID", DEFAULT_SITE_ID),
            cinetpay_api_url=os.getenv("CINETPAY_API_URL", cls.cinetpay_api_url),
            cinetpay_check_url=os.getenv("CINETPAY_CHECK_URL", cls.cinetpay_check_url),
            payment_currency=os.getenv("PAYMENT_CURRENCY", "XOF"),
            payment_amount=_env_int("PAYMENT_AMOUNT", DEFAULT_PAYMENT_AMOUNT),
            public_base_url=public_base_url,
            email_api_url=os.getenv("EMAIL_API_URL", cls.email_api_url),
            email_service_id=os.getenv("EMAIL_SERVICE_ID", ""),
            email_public_key=os.getenv("EMAIL_PUBLIC_KEY", ""),
            email_templates=EmailTemplates.from_env(),
            admin_email=os.getenv("ADMIN_EMAIL", ""),
            sms_api_url=os.getenv("SMS_API_URL", ""),
            sms_api_token=os.getenv("SMS_API_TOKEN", ""),
            sms_sender=os.getenv("SMS_SENDER", "IFTAR"),
            upload_dir=os.getenv("UPLOAD_DIR", "./uploads"),
            upload_base_url=os.getenv("UPLOAD_BASE_URL", f"{public_base_url}/uploads"),
            admin_token_secret=os.getenv("ADMIN_TOKEN_SECRET", "change-me"),
            admin_token_expire_minutes=_env_int("ADMIN_TOKEN_EXPIRE_MINUTES", 480),
            self_check_in_code=os.getenv("SELF_CHECK_IN_CODE", ""),
        )

    @property
    def notify_url(self) -> str:
        return f"{self.public_base_url}/webhooks/cinetpay"

    def return_url(self, participant_id: str) -> str:
        return f"{self.public_base_url}/confirmation/{participant_id}"

    def validation_url(self, manual_payment_id: str) -> str:
        return f"{self.public_base_url}/admin/manual-payments/{manual_payment_id}"

    def summary(self) -> Dict[str, str]:
        """Non-secret settings, for start-up logging."""
        return {
            "site_id": self.cinetpay_site_id,
            "currency": self.payment_currency,
            "payment_amount": str(self.payment_amount),
            "public_base_url": self.public_base_url,
            "gateway_configured": str(bool(self.cinetpay_api_key)),
            "email_configured": str(bool(self.email_service_id)),
            "sms_configured": str(bool(self.sms_api_url)),
        }

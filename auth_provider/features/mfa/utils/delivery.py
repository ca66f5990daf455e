from datetime import datetime
from urllib.parse import urlencode

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Email, Mail, To
from starlette.concurrency import run_in_threadpool

from auth_provider.features.mail.templates import (
    DEFAULT_SUBJECTS,
    EmailVerificationData,
    TemplateId,
    render,
)
from auth_provider.platform.config import Settings
from auth_provider.platform.logger import get_logger

logger = get_logger("mfa.delivery")

VERIFY_ROUTE = "/login/email/verify"


class VerificationEmailError(Exception):
    """SendGrid refused or failed to accept a verification email."""


def build_magic_link(base_url: str, email: str, code: str, callback_url: str) -> str:
    query = urlencode({"email": email, "code": code, "callbackUrl": callback_url})
    return f"{base_url}{VERIFY_ROUTE}?{query}"


class VerificationEmailSender:
    """Sends verification codes through SendGrid."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def configured(self) -> bool:
        return bool(self.settings.SENDGRID_API_KEY)

    def build_message(self, email: str, code: str, magic_link: str, expires_at: datetime) -> Mail:
        ttl = self.settings.CODE_TTL_MINUTES
        from_email = Email(self.settings.verification_sender)

        if self.settings.SENDGRID_TEMPLATE_ID:
            message = Mail(from_email=from_email, to_emails=To(email))
            message.template_id = self.settings.SENDGRID_TEMPLATE_ID
            message.dynamic_template_data = {
                "code": code,
                "magic_link": magic_link,
                "expires_at": expires_at.isoformat() + "Z",
                "expires_in_minutes": ttl,
            }
            return message

        html_content = render(
            TemplateId.EMAIL_VERIFICATION,
            EmailVerificationData(code=code, magic_link=magic_link, expires_in_minutes=ttl),
        )
        return Mail(
            from_email=from_email,
            to_emails=To(email),
            subject=DEFAULT_SUBJECTS[TemplateId.EMAIL_VERIFICATION],
            html_content=html_content,
        )

    async def send(self, email: str, code: str, magic_link: str, expires_at: datetime) -> None:
        if not self.configured:
            logger.warning(
                "SendGrid credentials missing (SENDGRID_API_KEY); skipping email delivery."
            )
            logger.info(f"Verification code (not sent) for {email}: {code} {magic_link}")
            return

        message = self.build_message(email, code, magic_link, expires_at)
        sg = SendGridAPIClient(self.settings.SENDGRID_API_KEY)

        try:
            response = await run_in_threadpool(sg.send, message)
        except Exception as e:
            # python_http_client raises on 4xx/5xx, 429 rate limiting included
            status_code = getattr(e, "status_code", None)
            body = getattr(e, "body", None)
            logger.error(f"SendGrid email send failed: status={status_code} body={body}")
            raise VerificationEmailError("Failed to send verification email") from e

        if not 200 <= response.status_code < 300:
            logger.error(f"SendGrid email send failed: status={response.status_code}")
            raise VerificationEmailError("Failed to send verification email")

        logger.info(f"Verification email sent to {email}")

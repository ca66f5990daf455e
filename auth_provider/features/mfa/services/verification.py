import re
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from auth_provider.features.mfa.exceptions import (
    CodeAlreadyConsumed,
    CodeExpired,
    CodeNotFound,
    InvalidCode,
    TooManyAttempts,
)
from auth_provider.features.mfa.models.email_mfa_code import EmailMfaCode
from auth_provider.features.mfa.services.code_store import EmailMfaCodeStore
from auth_provider.features.mfa.utils.codes import codes_match, generate_code, hash_code
from auth_provider.features.mfa.utils.delivery import (
    VerificationEmailSender,
    build_magic_link,
)
from auth_provider.platform.config import Settings
from auth_provider.platform.db.base import utcnow
from auth_provider.platform.exceptions import (
    DeliverySendFailed,
    EmailRequired,
    InvalidEmailFormat,
    ServerMisconfigured,
)
from auth_provider.platform.logger import get_logger

logger = get_logger("mfa.verification")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DEFAULT_CALLBACK_URL = "/"


def ensure_configured(settings: Settings) -> None:
    """
    Refuse to issue codes that could never be stored or delivered.
    Runs before any input validation.
    """
    if not settings.DATABASE_URL:
        logger.error("DATABASE_URL environment variable is not set")
        raise ServerMisconfigured()
    if not settings.SENDGRID_API_KEY and not settings.is_local:
        logger.error(f"SENDGRID_API_KEY is not set in {settings.ENVIRONMENT}")
        raise ServerMisconfigured()


def validate_email(email: Any) -> str:
    if not email or not isinstance(email, str):
        raise EmailRequired()
    if not EMAIL_PATTERN.match(email):
        raise InvalidEmailFormat()
    return email


class EmailVerificationService:
    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        sender: Optional[VerificationEmailSender] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.clock = clock
        self.store = EmailMfaCodeStore(db, clock=clock)
        self.sender = sender or VerificationEmailSender(settings)

    async def send_verification(self, email: str, callback_url: Optional[str] = None) -> EmailMfaCode:
        """Issue a fresh code for `email` and mail it out."""
        callback_url = callback_url or DEFAULT_CALLBACK_URL
        code = generate_code()

        purged = await self.store.delete_expired()
        if purged:
            logger.info(f"Purged {purged} expired verification codes")

        record = await self.store.issue(email, hash_code(code), self.settings.CODE_TTL_MINUTES)
        magic_link = build_magic_link(self.settings.resolved_base_url, email, code, callback_url)

        try:
            await self.sender.send(email, code, magic_link, record.expires_at)
        except Exception as e:
            logger.error(f"Error dispatching verification email to {email}", exc_info=True)
            raise DeliverySendFailed() from e

        if self.settings.ENVIRONMENT != "production":
            logger.info(
                f"Email verification generated (development) for {email}: "
                f"code={code} link={magic_link} expires_at={record.expires_at.isoformat()}"
            )
        return record

    async def verify_code(self, email: str, code: str, consume: bool = True) -> EmailMfaCode:
        """
        Check `code` against the active code for `email`.

        Raises a `VerificationFailed` subclass on any rejection. With
        `consume=False` a correct code stays usable for one more check.
        """
        record = await self.store.find_active(email)
        if record is None:
            raise CodeNotFound()

        if self.clock() > record.expires_at:
            raise CodeExpired()

        if record.attempt_count >= self.settings.MAX_VERIFICATION_ATTEMPTS:
            raise TooManyAttempts()

        if not codes_match(hash_code(code), record.code_hash):
            await self.store.record_failed_attempt(record.id)
            raise InvalidCode()

        if consume:
            try:
                await self.store.consume(record.id)
            except CodeAlreadyConsumed:
                logger.warning(f"Verification code {record.id} consumed concurrently")
                raise CodeNotFound()

        return record

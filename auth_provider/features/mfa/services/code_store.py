from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth_provider.features.mfa.exceptions import CodeAlreadyConsumed
from auth_provider.features.mfa.models.email_mfa_code import EmailMfaCode
from auth_provider.platform.db.base import utcnow
from auth_provider.platform.logger import get_logger

logger = get_logger("mfa.code_store")

ISSUE_RETRIES = 1


class EmailMfaCodeStore:
    """Persistence for email verification codes. Every method commits."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def issue(self, email: str, code_hash: str, ttl_minutes: int) -> EmailMfaCode:
        """
        Replace any unconsumed code for `email` with a fresh one.

        Delete and insert share a transaction. If a concurrent issue for the
        same email commits first, the partial unique index rejects our insert
        and we redo the replace on top of theirs, so the last writer wins.
        """
        for attempt in range(ISSUE_RETRIES + 1):
            now = self.clock()
            record = EmailMfaCode(
                email=email,
                code_hash=code_hash,
                expires_at=now + timedelta(minutes=ttl_minutes),
                consumed_at=None,
                attempt_count=0,
                created_at=now,
            )
            try:
                await self.db.execute(
                    delete(EmailMfaCode).where(
                        EmailMfaCode.email == email,
                        EmailMfaCode.consumed_at.is_(None),
                    )
                )
                self.db.add(record)
                await self.db.commit()
                return record
            except IntegrityError:
                await self.db.rollback()
                if attempt == ISSUE_RETRIES:
                    raise
                logger.warning(f"Concurrent code issue for {email}, retrying")

    async def find_active(self, email: str) -> Optional[EmailMfaCode]:
        result = await self.db.execute(
            select(EmailMfaCode)
            .where(EmailMfaCode.email == email, EmailMfaCode.consumed_at.is_(None))
            .order_by(EmailMfaCode.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def record_failed_attempt(self, code_id: str) -> None:
        await self.db.execute(
            update(EmailMfaCode)
            .where(EmailMfaCode.id == code_id)
            .values(attempt_count=EmailMfaCode.attempt_count + 1)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def consume(self, code_id: str) -> None:
        result = await self.db.execute(
            update(EmailMfaCode)
            .where(EmailMfaCode.id == code_id, EmailMfaCode.consumed_at.is_(None))
            .values(consumed_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount == 0:
            raise CodeAlreadyConsumed(code_id)

    async def delete_expired(self) -> int:
        result = await self.db.execute(
            delete(EmailMfaCode).where(EmailMfaCode.expires_at < self.clock())
        )
        await self.db.commit()
        return result.rowcount or 0

from sqlalchemy import Column, DateTime, Index, Integer, String
from uuid6 import uuid7

from auth_provider.platform.db.base import Base, utcnow


class EmailMfaCode(Base):
    __tablename__ = "email_mfa_codes"

    id = Column(String, primary_key=True, default=lambda: str(uuid7()), index=True)
    email = Column(String(320), index=True, nullable=False)
    code_hash = Column(String(64), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    consumed_at = Column(DateTime, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        # One unconsumed code per email
        Index(
            "uq_email_mfa_codes_active_email",
            "email",
            unique=True,
            postgresql_where=consumed_at.is_(None),
            sqlite_where=consumed_at.is_(None),
        ),
    )

    def __repr__(self):
        return f"<EmailMfaCode(id={self.id}, email={self.email}, attempts={self.attempt_count})>"

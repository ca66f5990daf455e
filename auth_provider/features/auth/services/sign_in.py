from datetime import datetime
from typing import Callable, Tuple

from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth_provider.features.auth.models.user import User, UserProfile
from auth_provider.features.auth.utils.security import create_access_token
from auth_provider.platform.config import Settings
from auth_provider.platform.db.base import utcnow
from auth_provider.platform.logger import get_logger

logger = get_logger("auth.sign_in")

TOKEN_TYPE = "Bearer"


def default_f3_name(email: str) -> str:
    return email.split("@", 1)[0]


class SignInService:
    """Turns a verified email address into a user and a session token."""

    def __init__(self, db: AsyncSession, settings: Settings, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.settings = settings
        self.clock = clock

    async def get_user_by_email(self, email: str):
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def sign_in_verified_email(self, email: str) -> Tuple[User, bool, str]:
        """
        Find or create the user for `email` and mark the address verified.

        Returns the user, whether it was created, and a session JWT. New users
        start with the local part of the address as their F3 name and an
        unfinished onboarding profile.
        """
        now = self.clock()
        user = await self.get_user_by_email(email)
        created = user is None

        if created:
            user = User(
                email=email,
                f3_name=default_f3_name(email),
                status="active",
                email_verified=now,
                created=now,
                updated=now,
            )
            self.db.add(user)
            await self.db.flush()
            self.db.add(UserProfile(user_id=user.id, onboarding_completed=False))
        else:
            user.email_verified = now
            user.updated = now

        await self.db.commit()
        logger.info(f"{'Created' if created else 'Signed in'} user {user.id} for {email}")

        token = create_access_token(self.settings, user_id=user.id, email=user.email, roles=[])
        return user, created, token

    def set_session_cookie(self, response: JSONResponse, token: str) -> None:
        response.set_cookie(
            key=self.settings.SESSION_COOKIE_NAME,
            value=token,
            max_age=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            httponly=True,
            secure=not self.settings.is_local,
            samesite="lax",
        )

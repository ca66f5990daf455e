from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth_provider.features.auth.models.user import User, UserProfile
from auth_provider.features.auth.utils.security import SessionIdentity
from auth_provider.platform.db.base import utcnow
from auth_provider.platform.exceptions import F3NameRequired, HospitalNameRequired, Unauthorized
from auth_provider.platform.logger import get_logger

logger = get_logger("onboarding")


def split_hospital_name(hospital_name: str) -> Tuple[str, str]:
    """'Jane Q Public' -> ('Jane Q', 'Public'). The last word is the last name."""
    words = hospital_name.split()
    last_name = words.pop() if words else ""
    return " ".join(words), last_name


def _required_text(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


class OnboardingService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: int) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_profile(self, user_id: int) -> Optional[UserProfile]:
        result = await self.db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
        return result.scalar_one_or_none()

    async def complete(self, session: SessionIdentity, f3_name: Any, hospital_name: Any) -> User:
        f3_name = _required_text(f3_name)
        if f3_name is None:
            raise F3NameRequired()
        hospital_name = _required_text(hospital_name)
        if hospital_name is None:
            raise HospitalNameRequired()

        user = await self.get_user(session.user_id)
        if user is None:
            # Token outlived its user
            raise Unauthorized()

        first_name, last_name = split_hospital_name(hospital_name)
        user.f3_name = f3_name
        user.first_name = first_name
        user.last_name = last_name
        user.updated = utcnow()

        profile = await self.get_profile(user.id)
        if profile is None:
            profile = UserProfile(user_id=user.id)
            self.db.add(profile)
        profile.hospital_name = hospital_name
        profile.onboarding_completed = True
        profile.updated_at = utcnow()

        await self.db.commit()
        logger.info(f"Onboarding completed for user {user.id}")
        return user

    async def describe_session(self, session: SessionIdentity) -> Dict[str, Any]:
        """The session as JSON, enriched with profile data when the user exists."""
        user_data: Dict[str, Any] = {
            "id": session.user_id,
            "email": session.email,
            "roles": list(session.roles),
        }
        user = await self.get_user(session.user_id)
        if user is not None:
            profile = await self.get_profile(user.id)
            user_data.update(
                {
                    "onboardingCompleted": bool(profile and profile.onboarding_completed),
                    "f3Name": user.f3_name,
                    "hospitalName": profile.hospital_name if profile else None,
                }
            )
        return {"user": user_data}

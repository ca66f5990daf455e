from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auth_provider.features.auth.utils.security import SessionIdentity, decode_access_token
from auth_provider.platform.config import Settings, get_settings
from auth_provider.platform.exceptions import Forbidden, Unauthorized
from auth_provider.platform.logger import get_logger

logger = get_logger("auth")

NATION_ADMIN_ROLE = "nation_admin"

security = HTTPBearer(auto_error=False)


async def get_optional_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
) -> Optional[SessionIdentity]:
    """
    The caller's session from a Bearer header, or from the session cookie set
    at sign-in for browser redirects such as the OAuth authorize step.
    """
    token = credentials.credentials if credentials else request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not token:
        return None
    try:
        return decode_access_token(settings, token)
    except ValueError as e:
        logger.info(f"Rejected session token: {e}")
        return None


async def get_current_session(
    session: Optional[SessionIdentity] = Depends(get_optional_session),
) -> SessionIdentity:
    """
    Dependency to get the current authenticated session.
    """
    if session is None:
        raise Unauthorized()
    return session


async def require_nation_admin(
    session: SessionIdentity = Depends(get_current_session),
) -> SessionIdentity:
    if not session.has_role(NATION_ADMIN_ROLE):
        raise Forbidden()
    return session

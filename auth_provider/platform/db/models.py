"""Every ORM model, imported so Base.metadata knows about all tables."""

from auth_provider.features.auth.models.user import User, UserProfile
from auth_provider.features.mfa.models.email_mfa_code import EmailMfaCode
from auth_provider.features.oauth.models.oauth import (
    OAuthAccessToken,
    OAuthAuthorizationCode,
    OAuthClient,
    OAuthRefreshToken,
)

__all__ = [
    "EmailMfaCode",
    "OAuthAccessToken",
    "OAuthAuthorizationCode",
    "OAuthClient",
    "OAuthRefreshToken",
    "User",
    "UserProfile",
]

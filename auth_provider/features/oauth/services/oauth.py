import base64
import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from auth_provider.features.auth.models.user import User, UserProfile
from auth_provider.features.oauth.models.oauth import (
    OAuthAccessToken,
    OAuthAuthorizationCode,
    OAuthClient,
    OAuthRefreshToken,
)
from auth_provider.platform.config import Settings
from auth_provider.platform.db.base import utcnow
from auth_provider.platform.logger import get_logger

logger = get_logger("oauth")

DEFAULT_SCOPES = ["openid", "profile", "email"]
PKCE_METHODS = ("S256", "plain")


def generate_secure_token(nbytes: int = 32) -> str:
    return secrets.token_urlsafe(nbytes)


def pkce_challenge(code_verifier: str, method: str) -> Optional[str]:
    """The challenge a verifier answers, or None for an unknown method."""
    if method == "S256":
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    if method == "plain":
        return code_verifier
    return None


@dataclass
class TokenGrant:
    user_id: int
    client_id: str
    scopes: List[str]


@dataclass
class IssuedTokens:
    access_token: str
    refresh_token: str
    expires_in: int
    scopes: List[str]

    def to_response(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "token_type": "Bearer",
            "expires_in": self.expires_in,
            "refresh_token": self.refresh_token,
            "scope": " ".join(self.scopes),
        }


class OAuthService:
    """Authorization codes, opaque access/refresh tokens and userinfo for OAuth clients."""

    def __init__(self, db: AsyncSession, settings: Settings, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.settings = settings
        self.clock = clock

    # ── Clients ─────────────────────────────────

    async def get_client(self, client_id: str, client_secret: Optional[str] = None) -> Optional[OAuthClient]:
        """
        The active client with this id. A secret is only checked when given,
        so public clients using PKCE can omit it.
        """
        result = await self.db.execute(
            select(OAuthClient).where(OAuthClient.id == client_id, OAuthClient.is_active.is_(True))
        )
        client = result.scalar_one_or_none()
        if client is None:
            return None
        if client_secret and not hmac.compare_digest(client.client_secret, client_secret):
            logger.warning(f"Client secret mismatch for OAuth client {client_id}")
            return None
        return client

    async def register_client(
        self,
        name: str,
        redirect_uris: List[str],
        allowed_origin: str,
        scopes: Optional[List[str]] = None,
    ) -> Tuple[OAuthClient, str]:
        """Store a new client. Returns it with its plaintext secret."""
        client_secret = generate_secure_token(32)
        client = OAuthClient(
            id=generate_secure_token(16),
            name=name,
            client_secret=client_secret,
            redirect_uris=json.dumps(redirect_uris),
            scopes=" ".join(scopes or DEFAULT_SCOPES),
            allowed_origin=allowed_origin,
            is_active=True,
            created_at=self.clock(),
        )
        self.db.add(client)
        await self.db.commit()
        logger.info(f"Registered OAuth client {client.id} ({name})")
        return client, client_secret

    # ── Authorization codes ─────────────────────

    async def create_authorization_code(
        self,
        client_id: str,
        user_id: int,
        redirect_uri: str,
        scopes: List[str],
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None,
    ) -> str:
        code = generate_secure_token()
        self.db.add(
            OAuthAuthorizationCode(
                code=code,
                client_id=client_id,
                user_id=user_id,
                redirect_uri=redirect_uri,
                scopes=" ".join(scopes),
                code_challenge=code_challenge,
                code_challenge_method=code_challenge_method if code_challenge else None,
                expires=self.clock() + timedelta(minutes=self.settings.OAUTH_AUTHORIZATION_CODE_TTL_MINUTES),
            )
        )
        await self.db.commit()
        return code

    async def exchange_authorization_code(
        self,
        code: str,
        client_id: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> Optional[TokenGrant]:
        """
        Spend an authorization code. Returns None when the code is unknown,
        expired, bound to another client or redirect URI, fails PKCE, or was
        already spent by a concurrent exchange.
        """
        result = await self.db.execute(
            select(OAuthAuthorizationCode).where(
                OAuthAuthorizationCode.code == code,
                OAuthAuthorizationCode.client_id == client_id,
                OAuthAuthorizationCode.redirect_uri == redirect_uri,
                OAuthAuthorizationCode.expires > self.clock(),
            )
        )
        auth_code = result.scalar_one_or_none()
        if auth_code is None:
            return None

        if auth_code.code_challenge:
            if not code_verifier:
                return None
            expected = pkce_challenge(code_verifier, auth_code.code_challenge_method or "plain")
            if expected is None or not hmac.compare_digest(expected, auth_code.code_challenge):
                logger.info(f"PKCE verification failed for client {client_id}")
                return None

        grant = TokenGrant(user_id=auth_code.user_id, client_id=client_id, scopes=auth_code.scopes.split())

        deleted = await self.db.execute(
            delete(OAuthAuthorizationCode)
            .where(OAuthAuthorizationCode.code == code)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if deleted.rowcount == 0:
            return None
        return grant

    # ── Tokens ──────────────────────────────────

    async def create_tokens(self, client_id: str, user_id: int, scopes: List[str]) -> IssuedTokens:
        now = self.clock()
        expires_in = self.settings.OAUTH_ACCESS_TOKEN_TTL_SECONDS
        tokens = IssuedTokens(
            access_token=generate_secure_token(),
            refresh_token=generate_secure_token(),
            expires_in=expires_in,
            scopes=list(scopes),
        )
        self.db.add(
            OAuthAccessToken(
                token=tokens.access_token,
                client_id=client_id,
                user_id=user_id,
                scopes=" ".join(scopes),
                expires=now + timedelta(seconds=expires_in),
                created_at=now,
            )
        )
        self.db.add(
            OAuthRefreshToken(
                token=tokens.refresh_token,
                access_token=tokens.access_token,
                client_id=client_id,
                user_id=user_id,
                expires=now + timedelta(days=self.settings.OAUTH_REFRESH_TOKEN_TTL_DAYS),
                created_at=now,
            )
        )
        await self.db.commit()
        return tokens

    async def validate_access_token(self, token: str) -> Optional[TokenGrant]:
        result = await self.db.execute(
            select(OAuthAccessToken).where(
                OAuthAccessToken.token == token, OAuthAccessToken.expires > self.clock()
            )
        )
        access = result.scalar_one_or_none()
        if access is None:
            return None
        return TokenGrant(user_id=access.user_id, client_id=access.client_id, scopes=access.scopes.split())

    async def refresh(self, refresh_token: str, client_id: str) -> Optional[IssuedTokens]:
        """
        Rotate a refresh token. The old access and refresh tokens are deleted
        and a new pair carries the old scopes. A refresh token works once.
        """
        result = await self.db.execute(
            select(OAuthRefreshToken).where(
                OAuthRefreshToken.token == refresh_token,
                OAuthRefreshToken.client_id == client_id,
                OAuthRefreshToken.expires > self.clock(),
            )
        )
        refresh = result.scalar_one_or_none()
        if refresh is None:
            return None

        result = await self.db.execute(
            select(OAuthAccessToken).where(OAuthAccessToken.token == refresh.access_token)
        )
        old_access = result.scalar_one_or_none()
        if old_access is None:
            return None
        scopes = old_access.scopes.split()
        user_id = refresh.user_id

        await self.db.execute(
            delete(OAuthAccessToken)
            .where(OAuthAccessToken.token == refresh.access_token)
            .execution_options(synchronize_session=False)
        )
        deleted = await self.db.execute(
            delete(OAuthRefreshToken)
            .where(OAuthRefreshToken.token == refresh_token)
            .execution_options(synchronize_session=False)
        )
        if deleted.rowcount == 0:
            await self.db.rollback()
            return None

        return await self.create_tokens(client_id, user_id, scopes)

    # ── Users ───────────────────────────────────

    async def is_onboarded(self, user_id: int) -> bool:
        result = await self.db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
        profile = result.scalar_one_or_none()
        return bool(profile and profile.onboarding_completed)

    async def get_user_info(self, user_id: int, scopes: List[str]) -> Optional[Dict[str, Any]]:
        """OpenID-style claims for `user_id`, limited to what `scopes` grant."""
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            return None

        user_info: Dict[str, Any] = {"sub": str(user.id)}
        if "profile" in scopes:
            user_info["name"] = user.f3_name
            user_info["picture"] = user.avatar_url
        if "email" in scopes:
            user_info["email"] = user.email
            user_info["email_verified"] = user.email_verified is not None
        return user_info

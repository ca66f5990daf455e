import json
from typing import Iterable, List

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from auth_provider.platform.db.base import Base, utcnow


class OAuthClient(Base):
    """A relying party allowed to send users through /api/oauth/authorize."""

    __tablename__ = "oauth_clients"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    client_secret = Column(String(128), nullable=False)
    redirect_uris = Column(Text, nullable=False)  # JSON array
    scopes = Column(String(255), nullable=False, default="openid profile email")
    allowed_origin = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def redirect_uri_list(self) -> List[str]:
        return json.loads(self.redirect_uris)

    @property
    def scope_list(self) -> List[str]:
        return self.scopes.split()

    def allows_redirect_uri(self, redirect_uri: str) -> bool:
        # Exact match only
        return redirect_uri in self.redirect_uri_list

    def allows_scopes(self, requested: Iterable[str]) -> bool:
        allowed = set(self.scope_list)
        return all(scope in allowed for scope in requested)

    def __repr__(self):
        return f"<OAuthClient(id={self.id}, name={self.name}, active={self.is_active})>"


class OAuthAuthorizationCode(Base):
    __tablename__ = "oauth_authorization_codes"

    code = Column(String(128), primary_key=True)
    client_id = Column(String(64), ForeignKey("oauth_clients.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    redirect_uri = Column(Text, nullable=False)
    scopes = Column(String(255), nullable=False)
    code_challenge = Column(String(128), nullable=True)
    code_challenge_method = Column(String(10), nullable=True)
    expires = Column(DateTime, nullable=False)

    user = relationship("User")


class OAuthAccessToken(Base):
    __tablename__ = "oauth_access_tokens"

    token = Column(String(128), primary_key=True)
    client_id = Column(String(64), ForeignKey("oauth_clients.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    scopes = Column(String(255), nullable=False)
    expires = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class OAuthRefreshToken(Base):
    __tablename__ = "oauth_refresh_tokens"

    token = Column(String(128), primary_key=True)
    access_token = Column(String(128), nullable=False, index=True)
    client_id = Column(String(64), ForeignKey("oauth_clients.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

from typing import List, Literal

from fastapi import Request
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ── App ─────────────────────────────────────
    APP_NAME: str = "F3 Nation Auth Provider"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    DEBUG: bool = False
    BASE_URL: str = "http://localhost:3000"
    MAP_URL: str = ""

    # ── Database ────────────────────────────────
    DATABASE_URL: str = ""
    DATABASE_AUTO_CREATE: bool = True

    # ── Verification codes ──────────────────────
    CODE_TTL_MINUTES: int = 10
    MAX_VERIFICATION_ATTEMPTS: int = 5

    # ── SendGrid (verification delivery) ────────
    SENDGRID_API_KEY: str = ""
    SENDGRID_TEMPLATE_ID: str = ""
    EMAIL_VERIFICATION_SENDER: str = ""

    # ── SMTP (template mail) ────────────────────
    EMAIL_FROM: str = "no-reply@f3nation-auth.local"
    EMAIL_ADMIN_DESTINATIONS: str = ""
    MAIL_HOST: str = "smtp.sendgrid.net"
    MAIL_PORT: int = 587
    MAIL_USERNAME: str = "apikey"
    MAIL_PASSWORD: str = ""
    MAIL_ENCRYPTION: str = "tls"

    # ── JWT / Auth ──────────────────────────────
    JWT_SECRET_KEY: str = "change-this-in-production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    SESSION_COOKIE_NAME: str = "auth_provider_session"

    # ── OAuth 2 authorization server ────────────
    OAUTH_AUTHORIZATION_CODE_TTL_MINUTES: int = 10
    OAUTH_ACCESS_TOKEN_TTL_SECONDS: int = 3600
    OAUTH_REFRESH_TOKEN_TTL_DAYS: int = 30

    LOG_DIR: str = "logs"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_local(self) -> bool:
        return self.ENVIRONMENT == "local"

    @property
    def resolved_base_url(self) -> str:
        return self.BASE_URL[:-1] if self.BASE_URL.endswith("/") else self.BASE_URL

    @property
    def verification_sender(self) -> str:
        return self.EMAIL_VERIFICATION_SENDER or self.EMAIL_FROM

    @property
    def admin_destinations(self) -> List[str]:
        return [a.strip() for a in self.EMAIL_ADMIN_DESTINATIONS.split(",") if a.strip()]


def get_settings(request: Request) -> Settings:
    """FastAPI dependency returning the settings the app was built with."""
    return request.app.state.settings

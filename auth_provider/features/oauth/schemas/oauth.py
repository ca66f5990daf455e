from typing import Optional

from pydantic import BaseModel


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str
    scope: str


class UserInfoResponse(BaseModel):
    sub: str
    name: Optional[str] = None
    picture: Optional[str] = None
    email: Optional[str] = None
    email_verified: Optional[bool] = None


class OAuthErrorResponse(BaseModel):
    error: str
    error_description: str


OAUTH_ERROR_RESPONSES = {
    400: {"model": OAuthErrorResponse},
    401: {"model": OAuthErrorResponse},
}

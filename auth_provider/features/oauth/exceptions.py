from typing import Optional

from fastapi import status

from auth_provider.platform.exceptions import AppError


class OAuthError(AppError):
    """
    An RFC 6749 error. `message` is the error code, rendered as `error`, and
    `description` goes out as `error_description`.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    message = "invalid_request"
    description = "Invalid request"

    def __init__(self, description: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__()
        if description is not None:
            self.description = description
        if status_code is not None:
            self.status_code = status_code

    def extra_content(self) -> dict:
        return {"error_description": self.description}


class InvalidOAuthRequest(OAuthError):
    message = "invalid_request"
    description = "Missing required parameters"


class UnsupportedResponseType(OAuthError):
    message = "unsupported_response_type"
    description = "Only authorization code flow is supported"


class UnsupportedGrantType(OAuthError):
    message = "unsupported_grant_type"
    description = "Only authorization_code and refresh_token grants are supported"


class InvalidClient(OAuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "invalid_client"
    description = "Invalid client credentials"


class InvalidGrant(OAuthError):
    message = "invalid_grant"
    description = "Invalid or expired authorization grant"


class InvalidToken(OAuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "invalid_token"
    description = "Invalid or expired access token"

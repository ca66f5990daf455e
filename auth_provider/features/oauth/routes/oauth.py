from typing import Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth_provider.features.auth.dependencies import get_optional_session
from auth_provider.features.auth.utils.security import SessionIdentity
from auth_provider.features.oauth.exceptions import (
    InvalidClient,
    InvalidGrant,
    InvalidOAuthRequest,
    InvalidToken,
    UnsupportedGrantType,
    UnsupportedResponseType,
)
from auth_provider.features.oauth.schemas.oauth import (
    OAUTH_ERROR_RESPONSES,
    TokenResponse,
    UserInfoResponse,
)
from auth_provider.features.oauth.services.oauth import DEFAULT_SCOPES, PKCE_METHODS, OAuthService
from auth_provider.platform.config import Settings, get_settings
from auth_provider.platform.db.session import get_db
from auth_provider.platform.logger import get_logger

logger = get_logger("oauth.routes")

router = APIRouter(prefix="/oauth", tags=["OAuth"])

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def with_query(url: str, params: Dict[str, Optional[str]]) -> str:
    """`url` with `params` appended to whatever query it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v is not None)
    return urlunsplit(parts._replace(query=urlencode(query)))


async def get_oauth_service(
    db: AsyncSession = Depends(get_db), settings: Settings = Depends(get_settings)
) -> OAuthService:
    return OAuthService(db, settings)


@router.get(
    "/authorize",
    status_code=status.HTTP_307_TEMPORARY_REDIRECT,
    responses=OAUTH_ERROR_RESPONSES,
)
async def authorize(
    request: Request,
    response_type: Optional[str] = None,
    client_id: Optional[str] = None,
    redirect_uri: Optional[str] = None,
    scope: Optional[str] = None,
    state: Optional[str] = None,
    code_challenge: Optional[str] = None,
    code_challenge_method: Optional[str] = None,
    session: Optional[SessionIdentity] = Depends(get_optional_session),
    service: OAuthService = Depends(get_oauth_service),
    settings: Settings = Depends(get_settings),
):
    """
    Authorization code endpoint.

    Problems with the client or redirect URI are answered here as JSON. Once
    the redirect URI is trusted, scope errors go back to the client instead.
    Users without a session or without onboarding are sent to the matching
    page and come back to this URL afterwards.
    """
    if not response_type or not client_id or not redirect_uri:
        raise InvalidOAuthRequest()
    if response_type != "code":
        raise UnsupportedResponseType()

    client = await service.get_client(client_id)
    if client is None:
        raise InvalidClient("Invalid client_id", status_code=status.HTTP_400_BAD_REQUEST)
    if not client.allows_redirect_uri(redirect_uri):
        raise InvalidOAuthRequest("Invalid redirect_uri")

    if code_challenge and (code_challenge_method or "plain") not in PKCE_METHODS:
        raise InvalidOAuthRequest("Unsupported code_challenge_method")

    return_to = {"callbackUrl": str(request.url)}
    if session is None:
        return RedirectResponse(with_query(f"{settings.resolved_base_url}/login", return_to))
    if not await service.is_onboarded(session.user_id):
        return RedirectResponse(with_query(f"{settings.resolved_base_url}/onboarding", return_to))

    scopes = scope.split() if scope else list(DEFAULT_SCOPES)
    if not client.allows_scopes(scopes):
        logger.info(f"OAuth client {client_id} asked for scopes outside its grant: {scopes}")
        return RedirectResponse(
            with_query(
                redirect_uri,
                {
                    "error": "invalid_scope",
                    "error_description": "Requested scope is not allowed",
                    "state": state,
                },
            )
        )

    code = await service.create_authorization_code(
        client_id,
        session.user_id,
        redirect_uri,
        scopes,
        code_challenge=code_challenge,
        code_challenge_method=(code_challenge_method or "plain") if code_challenge else None,
    )
    logger.info(f"Issued authorization code to client {client_id} for user {session.user_id}")
    return RedirectResponse(with_query(redirect_uri, {"code": code, "state": state}))


@router.post("/token", response_model=TokenResponse, responses=OAUTH_ERROR_RESPONSES)
async def token(
    grant_type: Optional[str] = Form(None),
    client_id: Optional[str] = Form(None),
    client_secret: Optional[str] = Form(None),
    code: Optional[str] = Form(None),
    redirect_uri: Optional[str] = Form(None),
    code_verifier: Optional[str] = Form(None),
    refresh_token: Optional[str] = Form(None),
    service: OAuthService = Depends(get_oauth_service),
):
    """Token endpoint for the `authorization_code` and `refresh_token` grants."""
    if not grant_type or not client_id:
        raise InvalidOAuthRequest()
    if grant_type not in ("authorization_code", "refresh_token"):
        raise UnsupportedGrantType()

    client = await service.get_client(client_id, client_secret)
    if client is None:
        raise InvalidClient()

    if grant_type == "authorization_code":
        if not code or not redirect_uri:
            raise InvalidOAuthRequest("Missing code or redirect_uri")
        grant = await service.exchange_authorization_code(code, client_id, redirect_uri, code_verifier)
        if grant is None:
            raise InvalidGrant("Invalid or expired authorization code")
        tokens = await service.create_tokens(client_id, grant.user_id, grant.scopes)
    else:
        if not refresh_token:
            raise InvalidOAuthRequest("Missing refresh_token")
        tokens = await service.refresh(refresh_token, client_id)
        if tokens is None:
            raise InvalidGrant("Invalid or expired refresh token")

    logger.info(f"Issued {grant_type} tokens to client {client_id}")
    return JSONResponse(content=tokens.to_response(), headers=NO_STORE_HEADERS)


@router.api_route(
    "/userinfo",
    methods=["GET", "POST"],
    response_model=UserInfoResponse,
    response_model_exclude_none=True,
    responses=OAUTH_ERROR_RESPONSES,
)
async def userinfo(request: Request, service: OAuthService = Depends(get_oauth_service)):
    authorization = request.headers.get("Authorization", "")
    scheme, _, access_token = authorization.partition(" ")
    if scheme != "Bearer" or not access_token.strip():
        raise InvalidOAuthRequest(
            "Missing or invalid Authorization header", status_code=status.HTTP_401_UNAUTHORIZED
        )

    grant = await service.validate_access_token(access_token.strip())
    if grant is None:
        raise InvalidToken()

    user_info = await service.get_user_info(grant.user_id, grant.scopes)
    if user_info is None:
        # Token outlived its user
        raise InvalidToken()

    return JSONResponse(content=user_info)

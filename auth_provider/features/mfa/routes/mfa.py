from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from auth_provider.features.auth.services.sign_in import TOKEN_TYPE, SignInService
from auth_provider.features.mfa.exceptions import VerificationFailed
from auth_provider.features.mfa.schemas.mfa import (
    ERROR_RESPONSES,
    SendVerificationRequest,
    SuccessResponse,
    VerifyEmailRequest,
    VerifyEmailResponse,
)
from auth_provider.features.mfa.services.verification import (
    EmailVerificationService,
    ensure_configured,
    validate_email,
)
from auth_provider.platform.config import Settings, get_settings
from auth_provider.platform.db.session import get_database, get_db
from auth_provider.platform.exceptions import VerificationFieldsRequired
from auth_provider.platform.logger import get_logger
from auth_provider.platform.request import read_json_object
from auth_provider.platform.response import success_response

logger = get_logger("mfa.routes")

router = APIRouter(tags=["Email Verification"])


def _json_body(model) -> dict:
    return {
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": model.model_json_schema(by_alias=True)}},
        }
    }


async def get_issuing_service(
    request: Request, settings: Settings = Depends(get_settings)
) -> AsyncIterator[EmailVerificationService]:
    # Configuration errors win over anything wrong with the request body
    ensure_configured(settings)
    async with get_database(request).session() as db:
        yield EmailVerificationService(db, settings)


async def get_verifying_service(
    db: AsyncSession = Depends(get_db), settings: Settings = Depends(get_settings)
) -> EmailVerificationService:
    return EmailVerificationService(db, settings)


async def get_sign_in_service(
    db: AsyncSession = Depends(get_db), settings: Settings = Depends(get_settings)
) -> SignInService:
    return SignInService(db, settings)


@router.post(
    "/send-verification",
    response_model=SuccessResponse,
    responses=ERROR_RESPONSES,
    openapi_extra=_json_body(SendVerificationRequest),
)
async def send_verification(
    request: Request, service: EmailVerificationService = Depends(get_issuing_service)
):
    payload = await read_json_object(request)
    email = validate_email(payload.get("email"))
    callback_url = payload.get("callbackUrl")
    if not isinstance(callback_url, str):
        callback_url = None

    logger.info(f"Sending verification email to: {email}")
    await service.send_verification(email, callback_url)
    logger.info(f"Verification email sent successfully to: {email}")

    return success_response()


@router.post(
    "/verify-email",
    response_model=VerifyEmailResponse,
    responses=ERROR_RESPONSES,
    openapi_extra=_json_body(VerifyEmailRequest),
)
async def verify_email(
    request: Request,
    service: EmailVerificationService = Depends(get_verifying_service),
    sign_in: SignInService = Depends(get_sign_in_service),
):
    """
    Spend a verification code and sign the address in. The session token is
    returned in the body and also set as an HttpOnly cookie.
    """
    payload = await read_json_object(request)
    email = payload.get("email")
    code = payload.get("code")
    if not email or not code or not isinstance(email, str) or not isinstance(code, str):
        raise VerificationFieldsRequired()

    try:
        record = await service.verify_code(email.strip(), code.strip())
    except VerificationFailed as e:
        logger.info(f"Verification rejected for {email}: {e.reason}")
        raise

    user, created, token = await sign_in.sign_in_verified_email(record.email)
    response = success_response(
        accessToken=token,
        tokenType=TOKEN_TYPE,
        isNewUser=created,
        user={"id": user.id, "email": user.email, "f3Name": user.f3_name},
    )
    sign_in.set_session_cookie(response, token)
    return response

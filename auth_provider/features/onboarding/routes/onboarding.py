from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth_provider.features.auth.dependencies import get_current_session, get_optional_session
from auth_provider.features.auth.utils.security import SessionIdentity
from auth_provider.features.onboarding.services.onboarding import OnboardingService
from auth_provider.platform.db.session import get_db
from auth_provider.platform.logger import get_logger
from auth_provider.platform.request import read_json_object
from auth_provider.platform.response import success_response

logger = get_logger("onboarding.routes")

router = APIRouter(tags=["Onboarding"])


@router.post("/onboarding")
async def complete_onboarding(
    request: Request,
    session: SessionIdentity = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    payload = await read_json_object(request)
    await OnboardingService(db).complete(
        session, payload.get("f3Name"), payload.get("hospitalName")
    )
    return success_response()


@router.get("/session")
async def read_session(
    request: Request,
    session: Optional[SessionIdentity] = Depends(get_optional_session),
):
    if session is None:
        return JSONResponse(content=None)

    fallback = {"user": {"id": session.user_id, "email": session.email, "roles": list(session.roles)}}
    database = getattr(request.app.state, "database", None)
    if database is None:
        return JSONResponse(content=fallback)

    try:
        async with database.session() as db:
            return JSONResponse(content=await OnboardingService(db).describe_session(session))
    except Exception:
        logger.exception("Error fetching user data for session")
        return JSONResponse(content=fallback)

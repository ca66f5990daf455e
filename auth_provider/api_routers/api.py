from fastapi import APIRouter

from auth_provider.features.mail.routes.mail import router as mail_router
from auth_provider.features.mfa.routes.mfa import router as mfa_router
from auth_provider.features.oauth.routes.oauth import router as oauth_router
from auth_provider.features.onboarding.routes.onboarding import router as onboarding_router

api_router = APIRouter()

# Register all feature routes
api_router.include_router(mfa_router)
api_router.include_router(onboarding_router)
api_router.include_router(mail_router)
api_router.include_router(oauth_router)

from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field, ValidationError

from auth_provider.features.auth.dependencies import require_nation_admin
from auth_provider.features.mail.services.mail_service import (
    MailConfigurationError,
    MailService,
    TemplateMessage,
)
from auth_provider.features.mail.templates import TemplateId, list_templates
from auth_provider.platform.config import Settings, get_settings
from auth_provider.platform.exceptions import BadRequest
from auth_provider.platform.logger import get_logger

logger = get_logger("mail.routes")

router = APIRouter(
    prefix="/mail",
    tags=["Mail"],
    dependencies=[Depends(require_nation_admin)],
)


class PreviewRequest(BaseModel):
    template: TemplateId
    data: Dict[str, Any] = Field(default_factory=dict)


class SendTestRequest(PreviewRequest):
    to: EmailStr


def get_mail_service(settings: Settings = Depends(get_settings)) -> MailService:
    return MailService(settings)


def with_test_defaults(template: TemplateId, data: Dict[str, Any], settings: Settings) -> Dict[str, Any]:
    """Fill whatever the admin left out with sample values."""
    if template == TemplateId.FEEDBACK_FORM:
        defaults = {
            "type": "Test Type",
            "email": "test@example.com",
            "subject": "Test Subject",
            "description": "Test Description",
        }
    elif template == TemplateId.MAP_CHANGE_REQUEST:
        map_url = settings.MAP_URL[:-1] if settings.MAP_URL.endswith("/") else settings.MAP_URL
        defaults = {
            "regionName": "Test Region",
            "workoutName": "Test Workout",
            "requestType": "Update",
            "submittedBy": "Test User",
            "requestsUrl": f"{map_url}/admin/requests",
            "noAdminsNotice": False,
        }
    else:
        defaults = {
            "code": "123456",
            "magicLink": f"{settings.resolved_base_url}/login/email/verify",
            "expiresInMinutes": settings.CODE_TTL_MINUTES,
        }
    merged = dict(defaults)
    merged.update({k: v for k, v in data.items() if v is not None})
    return merged


@router.get("/templates")
async def get_templates():
    return {"templates": list_templates()}


@router.post("/preview")
async def preview_template(
    payload: PreviewRequest,
    settings: Settings = Depends(get_settings),
    mail: MailService = Depends(get_mail_service),
):
    data = with_test_defaults(payload.template, payload.data, settings)
    try:
        html = mail.get_template(payload.template, data)
    except ValidationError:
        raise BadRequest("Invalid template data")
    return {"html": html}


@router.post("/send-test")
async def send_test_email(
    payload: SendTestRequest,
    settings: Settings = Depends(get_settings),
    mail: MailService = Depends(get_mail_service),
):
    data = with_test_defaults(payload.template, payload.data, settings)
    try:
        results = await mail.send_template_messages(
            payload.template, TemplateMessage(data=data, to=str(payload.to))
        )
    except (MailConfigurationError, ValidationError) as e:
        logger.error(f"Failed to send test email: template={payload.template.value} to={payload.to}: {e}")
        return {"success": False, "message": "Failed to send email"}

    failed = [r for r in results if not r.ok]
    if failed:
        return {"success": False, "message": "Failed to send email"}
    return {"success": True, "message": f"Test email sent to {payload.to}"}

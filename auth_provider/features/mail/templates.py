"""
Email templates.

Every template is one variant: a template id, a pydantic model describing the
data it needs, and a pure function turning that model into HTML. Dispatch goes
through ``TEMPLATE_RENDERERS`` only.

Jinja2 renders with autoescape on, which escapes ``& < > " '`` in every
interpolated value.
"""

import os
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Type, Union

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

current_dir = os.path.dirname(os.path.abspath(__file__))
template_dir = os.path.join(current_dir, "template")

env = Environment(
    loader=FileSystemLoader(template_dir),
    autoescape=select_autoescape(["html"]),
    undefined=StrictUndefined,
)


class TemplateId(str, Enum):
    FEEDBACK_FORM = "feedback-form"
    MAP_CHANGE_REQUEST = "map-change-request"
    EMAIL_VERIFICATION = "email-verification"


class UnknownTemplateError(LookupError):
    pass


class TemplateModel(BaseModel):
    """Template data accepts camelCase keys from the API and snake_case from Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FeedbackFormData(TemplateModel):
    """Email sent when a user submits feedback"""

    type: str
    email: str
    subject: str
    description: str


class MapChangeRequestData(TemplateModel):
    """Email sent when a map change request is submitted"""

    region_name: str
    workout_name: str
    request_type: str
    submitted_by: str
    requests_url: str
    no_admins_notice: bool = False
    recipient_role: Optional[str] = None
    recipient_org: Optional[str] = None


class EmailVerificationData(TemplateModel):
    """Email carrying a sign-in verification code and magic link"""

    code: str
    magic_link: str
    expires_in_minutes: int


TemplateData = Union[FeedbackFormData, MapChangeRequestData, EmailVerificationData]


def render_feedback_form(data: FeedbackFormData) -> str:
    return env.get_template("feedback_form.html").render(
        type=data.type,
        email=data.email,
        subject=data.subject,
        description=data.description,
    )


def render_map_change_request(data: MapChangeRequestData) -> str:
    return env.get_template("map_change_request.html").render(
        region_name=data.region_name,
        workout_name=data.workout_name,
        request_type=data.request_type,
        submitted_by=data.submitted_by,
        requests_url=data.requests_url,
        no_admins_notice=data.no_admins_notice,
        recipient_role=data.recipient_role,
        recipient_org=data.recipient_org,
    )


def render_email_verification(data: EmailVerificationData) -> str:
    return env.get_template("email_verification.html").render(
        code=data.code,
        magic_link=data.magic_link,
        expires_in_minutes=data.expires_in_minutes,
    )


TEMPLATE_DATA: Dict[TemplateId, Type[TemplateModel]] = {
    TemplateId.FEEDBACK_FORM: FeedbackFormData,
    TemplateId.MAP_CHANGE_REQUEST: MapChangeRequestData,
    TemplateId.EMAIL_VERIFICATION: EmailVerificationData,
}

TEMPLATE_RENDERERS: Dict[TemplateId, Callable[[Any], str]] = {
    TemplateId.FEEDBACK_FORM: render_feedback_form,
    TemplateId.MAP_CHANGE_REQUEST: render_map_change_request,
    TemplateId.EMAIL_VERIFICATION: render_email_verification,
}

TEMPLATE_NAMES: Dict[TemplateId, str] = {
    TemplateId.FEEDBACK_FORM: "Feedback Form",
    TemplateId.MAP_CHANGE_REQUEST: "Map Change Request",
    TemplateId.EMAIL_VERIFICATION: "Email Verification",
}

DEFAULT_SUBJECTS: Dict[TemplateId, str] = {
    TemplateId.FEEDBACK_FORM: "Feedback Form",
    TemplateId.MAP_CHANGE_REQUEST: "F3 Map Change Request",
    TemplateId.EMAIL_VERIFICATION: "Your verification code",
}


def resolve_template(template_id: Union[TemplateId, str]) -> TemplateId:
    try:
        return TemplateId(template_id)
    except ValueError:
        raise UnknownTemplateError(f"Unknown email template: {template_id!r}") from None


def build_template_data(
    template_id: Union[TemplateId, str], data: Union[BaseModel, Mapping[str, Any]]
) -> TemplateData:
    """Coerce a raw mapping into the data model of `template_id`."""
    model = TEMPLATE_DATA[resolve_template(template_id)]
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        raise TypeError(f"{type(data).__name__} is not data for template {template_id!r}")
    return model.model_validate(dict(data))


def render(template_id: Union[TemplateId, str], data: Union[BaseModel, Mapping[str, Any]]) -> str:
    """Render `template_id` with `data` into a complete HTML document."""
    tid = resolve_template(template_id)
    return TEMPLATE_RENDERERS[tid](build_template_data(tid, data))


def list_templates() -> List[Dict[str, Any]]:
    """Template catalogue for the admin mail tools."""
    catalogue = []
    for tid in TemplateId:
        model = TEMPLATE_DATA[tid]
        fields = [
            {
                "name": field.alias or name,
                "type": _field_type(field.annotation),
                "required": field.is_required(),
            }
            for name, field in model.model_fields.items()
        ]
        catalogue.append(
            {
                "id": tid.value,
                "name": TEMPLATE_NAMES[tid],
                "description": model.__doc__,
                "fields": fields,
            }
        )
    return catalogue


def _field_type(annotation) -> str:
    if annotation is bool:
        return "boolean"
    if annotation is int:
        return "number"
    return "string"

import asyncio
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from auth_provider.features.mail.templates import (
    DEFAULT_SUBJECTS,
    TemplateId,
    render,
    resolve_template,
)
from auth_provider.platform.config import Settings
from auth_provider.platform.logger import get_logger
from auth_provider.platform.services.email import (
    SENDGRID_TRACKING_HEADERS,
    SMTPTransport,
    build_message,
)

logger = get_logger("mail_service")

BATCH_SIZE = 100


class MailConfigurationError(ValueError):
    pass


@dataclass
class TemplateMessage:
    """One outgoing template email. Unset fields fall back to the template defaults."""

    data: Union[BaseModel, Mapping[str, Any]]
    to: Union[str, List[str], None] = None
    subject: Optional[str] = None
    from_address: Optional[str] = None


@dataclass
class SendResult:
    to: List[str]
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class MailService:
    def __init__(self, settings: Settings, transport: Optional[SMTPTransport] = None):
        self.settings = settings
        self.transport = transport or SMTPTransport(settings)

    def default_recipients(self, template_id: TemplateId) -> List[str]:
        if template_id == TemplateId.FEEDBACK_FORM:
            return self.settings.admin_destinations
        return []

    def get_template(self, template_id: Union[TemplateId, str], data) -> str:
        return render(template_id, data)

    async def send_template_messages(
        self,
        template_id: Union[TemplateId, str],
        messages: Union[TemplateMessage, Sequence[TemplateMessage]],
    ) -> List[SendResult]:
        """
        Render and send one or many messages built from the same template.

        Missing recipients or subjects (with no template default) fail before
        anything is sent. A single failed delivery is logged and reported in
        the result list without stopping the rest.
        """
        tid = resolve_template(template_id)
        batch = [messages] if isinstance(messages, TemplateMessage) else list(messages)

        default_to = self.default_recipients(tid)
        if not default_to and not all(m.to for m in batch):
            raise MailConfigurationError("Missing to and no default to set")
        if tid not in DEFAULT_SUBJECTS and not all(m.subject for m in batch):
            raise MailConfigurationError("Missing subject and no default subject set")

        results: List[SendResult] = []
        for start in range(0, len(batch), BATCH_SIZE):
            chunk = batch[start : start + BATCH_SIZE]
            results.extend(
                await asyncio.gather(*(self._send_one(tid, m, default_to) for m in chunk))
            )
        return results

    async def _send_one(
        self, tid: TemplateId, message: TemplateMessage, default_to: List[str]
    ) -> SendResult:
        to = message.to or default_to
        recipients = [to] if isinstance(to, str) else list(to)
        from_address = message.from_address or self.settings.EMAIL_FROM
        subject = message.subject or DEFAULT_SUBJECTS[tid]

        msg = build_message(
            from_address,
            recipients,
            subject,
            render(tid, message.data),
            headers=SENDGRID_TRACKING_HEADERS,
        )
        try:
            await run_in_threadpool(self.transport.send, msg, from_address, recipients)
        except Exception as e:
            logger.error(f"Error sending {tid.value} email to {recipients}: {e}")
            return SendResult(to=recipients, error=e)
        return SendResult(to=recipients)

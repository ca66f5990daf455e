import json
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, List, Optional

from auth_provider.platform.config import Settings
from auth_provider.platform.logger import get_logger

logger = get_logger("email_service")

# SendGrid rewrites links for click/open tracking, which makes them look like phishing
SENDGRID_TRACKING_HEADERS = {
    "X-SMTPAPI": json.dumps(
        {
            "filters": {
                "clicktrack": {"settings": {"enable": 0}},
                "opentrack": {"settings": {"enable": 0}},
            }
        }
    )
}


def build_message(
    from_address: str,
    to: List[str],
    subject: str,
    html: str,
    headers: Optional[Dict[str, str]] = None,
) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = from_address
    msg["To"] = ", ".join(to)
    for name, value in (headers or {}).items():
        msg[name] = value
    msg.attach(MIMEText(html, "html"))
    return msg


class SMTPTransport:
    """Sends prepared MIME messages through the configured SMTP server."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _connect(self) -> smtplib.SMTP:
        port = self.settings.MAIL_PORT
        if port == 465:
            context = ssl.create_default_context()
            return smtplib.SMTP_SSL(self.settings.MAIL_HOST, port, context=context)

        server = smtplib.SMTP(self.settings.MAIL_HOST, port)
        server.ehlo()
        if str(self.settings.MAIL_ENCRYPTION).upper() in ["TLS", "TRUE"]:
            server.starttls()
            server.ehlo()
        return server

    def send(self, msg: MIMEMultipart, from_address: str, to: List[str]) -> None:
        with self._connect() as server:
            if self.settings.MAIL_PASSWORD:
                server.login(self.settings.MAIL_USERNAME, self.settings.MAIL_PASSWORD)
            server.sendmail(from_address, to, msg.as_string())
        logger.info(f"Email '{msg['Subject']}' sent to {', '.join(to)}")

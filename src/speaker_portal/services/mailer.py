"""Email delivery for notification fallbacks.

Templates live in ``templates/email`` and are rendered with Jinja2. The
Resend SDK is synchronous, so sends run in a worker thread.
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict

import resend
import structlog
from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape

logger = structlog.get_logger()

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"
DEFAULT_TEMPLATE = "general-notification"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


def render_email(template_kind: str, data: Dict[str, Any]) -> str:
    try:
        template = _env.get_template(f"{template_kind}.html")
    except TemplateNotFound:
        logger.warning("email_template_missing", template=template_kind)
        template = _env.get_template(f"{DEFAULT_TEMPLATE}.html")
    return template.render(**data)


class Mailer(ABC):
    @abstractmethod
    async def send(self, to: str, subject: str, template_kind: str, template_data: Dict[str, Any]) -> None:
        """Send one email; raises on provider failure."""
        pass


class ConsoleMailer(Mailer):
    """Used when no provider is configured: renders and logs instead of sending."""

    def __init__(self) -> None:
        self.outbox = []

    async def send(self, to: str, subject: str, template_kind: str, template_data: Dict[str, Any]) -> None:
        html = render_email(template_kind, template_data)
        self.outbox.append({"to": to, "subject": subject, "template": template_kind, "html": html})
        logger.info("email_not_sent_console_mode", to=to, subject=subject, template=template_kind)


class ResendMailer(Mailer):
    def __init__(self, api_key: str, sender: str) -> None:
        resend.api_key = api_key
        self.sender = sender

    async def send(self, to: str, subject: str, template_kind: str, template_data: Dict[str, Any]) -> None:
        html = render_email(template_kind, template_data)
        params = {"from": self.sender, "to": [to], "subject": subject, "html": html}
        result = await asyncio.to_thread(resend.Emails.send, params)
        logger.info("email_sent", to=to, template=template_kind, email_id=result.get("id"))

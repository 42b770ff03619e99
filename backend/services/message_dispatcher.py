"""
Invoice mail dispatch.

HttpMailDispatcher posts the message (HTML body + invoice attachment) to a
transactional mail API. LoggingMailDispatcher only logs, for development and
demo deployments. Delivery is advisory: dispatchers report a DispatchResult
and never raise for delivery failures.
"""
import base64
import logging
from dataclasses import dataclass

import httpx

from config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    media_type: str = "text/html"


@dataclass(frozen=True)
class MailMessage:
    to: str
    subject: str
    html: str
    cc: list[str] | None = None
    attachments: list[Attachment] | None = None


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    message: str


class HttpMailDispatcher:
    """JSON mail API client (bearer token auth)."""

    def __init__(self, api_url: str | None = None, api_key: str | None = None, sender: str | None = None):
        self.api_url = api_url or settings.mail_api_url
        self.api_key = api_key or settings.mail_api_key
        self.sender = sender or settings.mail_from

    def _payload(self, message: MailMessage) -> dict:
        return {
            "from": self.sender,
            "to": [message.to],
            "cc": message.cc or [],
            "subject": message.subject,
            "html": message.html,
            "attachments": [
                {
                    "filename": a.filename,
                    "content_type": a.media_type,
                    "content": base64.b64encode(a.content).decode("ascii"),
                }
                for a in message.attachments or []
            ],
        }

    async def send(self, message: MailMessage) -> DispatchResult:
        if not self.api_url:
            return DispatchResult(False, "MAIL_API_URL not configured")
        try:
            async with httpx.AsyncClient(timeout=settings.mail_timeout_seconds) as client:
                response = await client.post(
                    self.api_url,
                    json=self._payload(message),
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as e:
            logger.error(f"Mail API unreachable for {message.to}: {e.__class__.__name__}: {e}")
            return DispatchResult(False, f"mail API unreachable: {e.__class__.__name__}")

        if response.status_code >= 400:
            logger.error(f"Mail API rejected message to {message.to}: HTTP {response.status_code}")
            return DispatchResult(False, f"mail API returned HTTP {response.status_code}")

        logger.info(f"  ✉️  Invoice mail sent to {message.to}")
        return DispatchResult(True, "sent")


class LoggingMailDispatcher:
    """Simulated delivery: logs the message instead of sending it."""

    async def send(self, message: MailMessage) -> DispatchResult:
        attachments = ", ".join(a.filename for a in message.attachments or []) or "none"
        logger.info(
            f"=== MAIL SIMULATION === to={message.to} cc={message.cc or []} "
            f"subject='{message.subject}' attachments={attachments}"
        )
        return DispatchResult(True, "sent (simulated)")


def get_dispatcher() -> HttpMailDispatcher | LoggingMailDispatcher:
    """Dispatcher selected by MAIL_SIMULATION_MODE."""
    if settings.mail_simulation_mode:
        return LoggingMailDispatcher()
    return HttpMailDispatcher()

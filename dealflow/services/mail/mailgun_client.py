"""A client for sending email through the Mailgun messages API."""

from functools import lru_cache
from typing import Optional

import httpx

from dealflow.core.config import settings
from dealflow.core.logging import get_logger
from dealflow.services.mail.transport import (
    DisabledTransport,
    EmailTransport,
    TransportError,
    TransportResult,
)

logger = get_logger(__name__)


class MailgunClient:
    """Sends HTML email via ``POST /v3/{domain}/messages``."""

    def __init__(
        self,
        api_key: str,
        domain: str,
        from_email: Optional[str] = None,
        from_name: str = "Clinic",
        base_url: str = "https://api.mailgun.net",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.domain = domain
        self.auth = ("api", api_key)
        self.sender = f"{from_name} <{from_email or f'no-reply@{domain}'}>"
        self.timeout = timeout
        self.transport = transport

    def reply_alias(self, token: str) -> str:
        """Reply-To address routing replies back to a recorded dispatch."""
        return f"reply+{token}@{self.domain}"

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        reply_to: Optional[str] = None,
    ) -> TransportResult:
        """Send one message.

        Args:
            to (str): Recipient address.
            subject (str): Rendered subject.
            html (str): Rendered HTML body.
            reply_to (Optional[str]): Token for the Reply-To alias.

        Raises:
            TransportError: On a non-2xx response or a network failure.
        """
        url = f"{self.base_url}/v3/{self.domain}/messages"
        data = {
            "from": self.sender,
            "to": to,
            "subject": subject,
            "html": html,
        }
        if reply_to:
            data["h:Reply-To"] = self.reply_alias(reply_to)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(url, auth=self.auth, data=data)
        except httpx.HTTPError as e:
            raise TransportError(f"Mailgun request failed: {e}") from e

        if response.is_error:
            logger.error(
                "Mailgun rejected message to %s: %s %s",
                to,
                response.status_code,
                response.text,
            )
            raise TransportError(
                f"Mailgun responded {response.status_code}: {response.text}"
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        return TransportResult(message_id=payload.get("id"))


@lru_cache(maxsize=1)
def get_email_transport() -> EmailTransport:
    """Build the configured transport (Mailgun, or disabled when unconfigured)."""
    if settings.MAILGUN_API_KEY and settings.MAILGUN_DOMAIN:
        return MailgunClient(
            api_key=settings.MAILGUN_API_KEY,
            domain=settings.MAILGUN_DOMAIN,
            from_email=settings.MAILGUN_FROM_EMAIL,
            from_name=settings.MAILGUN_FROM_NAME,
            base_url=settings.MAILGUN_API_BASE_URL,
        )
    logger.warning("MAILGUN_API_KEY/MAILGUN_DOMAIN not set; email delivery disabled")
    return DisabledTransport()

"""
Outbound email transport interface.

The workflow engine only needs ``send(to, subject, html)``; retry and backoff
are the provider's concern.
"""

from dataclasses import dataclass
from typing import Optional, Protocol

from dealflow.core.logging import get_logger

logger = get_logger(__name__)


class TransportError(Exception):
    """The provider rejected the message or could not be reached."""


@dataclass
class TransportResult:
    """Provider acknowledgement."""

    message_id: Optional[str] = None


class EmailTransport(Protocol):
    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        reply_to: Optional[str] = None,
    ) -> TransportResult: ...


class DisabledTransport:
    """
    Transport used when no provider is configured.

    Messages are recorded by the dispatcher but not delivered.
    """

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        reply_to: Optional[str] = None,
    ) -> TransportResult:
        logger.warning(
            "Email provider not configured; not delivering '%s' to %s", subject, to
        )
        return TransportResult()

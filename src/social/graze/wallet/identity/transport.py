"""OTP delivery transports.

Transports hand a rendered OTP message to whatever actually reaches the user (a mail or
SMS relay). They never see the challenge itself, only the principal and the rendered
text. Any failure is raised as ``DeliveryError``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from aiohttp import ClientError, ClientSession, ClientTimeout

from social.graze.wallet.identity.errors import DeliveryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    body: str
    html_body: Optional[str] = None


class OTPDeliveryTransport(ABC):
    @abstractmethod
    async def deliver(self, principal: str, message: RenderedMessage) -> None:
        """Deliver a rendered message to a principal.

        Raises:
            DeliveryError: If the message cannot be accepted for delivery
        """


class LoggingTransport(OTPDeliveryTransport):
    """Development transport that writes messages to the log instead of sending them."""

    async def deliver(self, principal: str, message: RenderedMessage) -> None:
        logger.info("OTP message for %s: %s / %s", principal, message.subject, message.body)


class WebhookTransport(OTPDeliveryTransport):
    """Posts rendered messages as JSON to a mail/SMS relay endpoint."""

    def __init__(
        self, http_session: ClientSession, webhook_url: str, timeout: float = 10.0
    ) -> None:
        self.http_session = http_session
        self.webhook_url = webhook_url
        self.timeout = ClientTimeout(total=timeout)

    async def deliver(self, principal: str, message: RenderedMessage) -> None:
        payload = {
            "to": principal,
            "subject": message.subject,
            "body": message.body,
        }
        if message.html_body is not None:
            payload["html_body"] = message.html_body

        try:
            async with self.http_session.post(
                self.webhook_url, json=payload, timeout=self.timeout
            ) as response:
                if response.status >= 300:
                    raise DeliveryError(
                        f"Delivery relay rejected message: {response.status}"
                    )
        except ClientError as e:
            logger.exception("Error delivering OTP message")
            raise DeliveryError(f"Delivery relay unreachable: {type(e).__name__}") from e

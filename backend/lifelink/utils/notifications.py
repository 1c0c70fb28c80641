from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from loguru import logger
from twilio.rest import Client

from ..database import Settings, settings as default_settings
from ..errors import TransportError, UndeliverableMessage


@dataclass
class OutboundMessage:
    recipient_id: str
    to: str | None
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)


class DonorTransport(Protocol):
    async def dispatch(self, message: OutboundMessage) -> None:
        """Hand one message to the delivery channel or raise TransportError."""


def normalize_phone_number(phone: str, default_country_code: str = "91") -> str:
    """
    Normalize a phone number to E.164 for Twilio.

    Examples:
        "+1-555-0199" -> "+15550199"
        "98765 43210" -> "+919876543210" (bare 10-digit mobile numbers get the default country code)
    """
    if not phone:
        return phone

    if phone.startswith("+"):
        normalized = "+" + re.sub(r"\D", "", phone[1:])
    else:
        digits = re.sub(r"\D", "", phone)
        if len(digits) == 10:
            digits = default_country_code + digits
        normalized = "+" + digits

    logger.debug("Normalized phone number: {} -> {}", phone, normalized)
    return normalized


class SmsTransport:
    def __init__(self, config: Settings | None = None) -> None:
        config = config or default_settings
        if not config.twilio_sid or not config.twilio_token:
            logger.warning("Twilio credentials missing; SMS notifications will be mocked.")
            self.client: Optional[Client] = None
        else:
            self.client = Client(config.twilio_sid, config.twilio_token)
        self.sender_phone = config.twilio_phone or "+1234567890"

    async def dispatch(self, message: OutboundMessage) -> None:
        if not message.to:
            raise UndeliverableMessage("Recipient has no phone number on file", recipient_id=message.recipient_id)
        normalized_phone = normalize_phone_number(message.to)

        if self.client is None:
            logger.info("Mock SMS: {} -> {}", normalized_phone, message.body)
            return
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None,
                lambda: self.client.messages.create(
                    to=normalized_phone,
                    from_=self.sender_phone,
                    body=f"{message.title}\n{message.body}",
                ),
            )
            logger.info("SMS sent to {} (normalized from {})", normalized_phone, message.to)
        except Exception as exc:
            # twilio surfaces transport-level failures from its HTTP client untyped
            raise TransportError(
                f"SMS delivery failed: {exc}", recipient_id=message.recipient_id, phone=normalized_phone
            ) from exc

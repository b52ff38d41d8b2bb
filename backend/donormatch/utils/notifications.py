from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set

from loguru import logger
from twilio.rest import Client

from ..database import settings
from .logging import log_delivery_failure


@dataclass
class SmsNotification:
    to: str
    body: str


@dataclass(frozen=True)
class NotificationEvent:
    recipient_kind: str  # donor | hospital | coordinators
    recipient_id: str
    kind: str
    subject: str
    message: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "recipient_kind": self.recipient_kind,
            "recipient_id": self.recipient_id,
            "kind": self.kind,
            "subject": self.subject,
            "message": self.message,
            "payload": self.payload,
        }


class EventSink(Protocol):
    def emit(self, event: NotificationEvent) -> None: ...


class LiveChannel(Protocol):
    async def notify(self, event: str, payload: Dict[str, Any]) -> None: ...


PhoneLookup = Callable[[NotificationEvent], Awaitable[Optional[str]]]


def normalize_phone_number(phone: str) -> str:
    """
    Normalize phone number to E.164 format for Twilio.

    Examples:
        "+1-555-0199" -> "+15550199"
        "+1 (555) 123-4567" -> "+15551234567"
    """
    if not phone:
        return phone
    if phone.startswith("+"):
        normalized = "+" + re.sub(r"\D", "", phone[1:])
    else:
        normalized = "+" + re.sub(r"\D", "", phone)
    logger.debug("Normalized phone number: {} -> {}", phone, normalized)
    return normalized


class NotificationService:
    def __init__(self) -> None:
        if not settings.twilio_sid or not settings.twilio_token:
            logger.warning("Twilio credentials missing; SMS notifications will be mocked.")
            self.client: Optional[Client] = None
        else:
            self.client = Client(settings.twilio_sid, settings.twilio_token)
        self.sender_phone = settings.twilio_phone or "+1234567890"

    async def send_sms(self, message: SmsNotification) -> None:
        normalized_phone = normalize_phone_number(message.to)
        if self.client is None:
            logger.info("Mock SMS: {} -> {}", normalized_phone, message.body)
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: self.client.messages.create(
                to=normalized_phone,
                from_=self.sender_phone,
                body=message.body,
            ),
        )
        logger.info("SMS sent to {} (normalized from {})", normalized_phone, message.to)


class NotificationRouter:
    """Fans lifecycle events out to the live channel and SMS.

    ``emit`` schedules delivery on the running loop and returns at once;
    delivery errors are logged per channel and never reach the caller.
    """

    def __init__(
        self,
        sms: NotificationService | None = None,
        live: LiveChannel | None = None,
        phone_lookup: PhoneLookup | None = None,
    ) -> None:
        self.sms = sms
        self.live = live
        self.phone_lookup = phone_lookup
        self.pending: Set[asyncio.Task] = set()

    def emit(self, event: NotificationEvent) -> None:
        task = asyncio.get_running_loop().create_task(self.deliver(event))
        self.pending.add(task)
        task.add_done_callback(self.pending.discard)

    async def deliver(self, event: NotificationEvent) -> None:
        if self.live is not None:
            try:
                await self.live.notify(event.kind, event.as_dict())
            except Exception as exc:
                log_delivery_failure("Live", event, exc)
        if self.sms is None or self.phone_lookup is None:
            return
        try:
            phone = await self.phone_lookup(event)
            if phone:
                await self.sms.send_sms(SmsNotification(to=phone, body=f"{event.subject}: {event.message}"))
        except Exception as exc:
            log_delivery_failure("SMS", event, exc)

    async def drain(self) -> None:
        if self.pending:
            await asyncio.gather(*list(self.pending), return_exceptions=True)

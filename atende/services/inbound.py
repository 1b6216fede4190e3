"""Normalize Cloud API webhook envelopes into inbound events."""

from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from atende.logging_config import get_logger
from atende.schemas.webhook import WhatsAppMessage, WhatsAppWebhookPayload
from atende.services.conversation_flow import InboundEvent
from atende.services.message_log import ContentType
from atende.services.phone import digits_only

logger = get_logger("inbound")

_MEDIA_FIELDS = {
    "image": ContentType.IMAGE,
    "audio": ContentType.AUDIO,
    "video": ContentType.VIDEO,
    "document": ContentType.DOCUMENT,
}


@dataclass(frozen=True)
class InboundMessage:
    phone_number_id: Optional[str]
    provider_message_id: Optional[str]
    contact_name: Optional[str]
    event: InboundEvent

    @property
    def from_number(self) -> str:
        return self.event.sender_number


def to_event(message: WhatsAppMessage) -> InboundEvent:
    sender = digits_only(message.from_number)
    kind = (message.type or "text").lower()

    if kind == "text":
        return InboundEvent(sender, ContentType.TEXT, message.text.body if message.text else None)

    if kind in _MEDIA_FIELDS:
        media = getattr(message, kind)
        if media is None:
            return InboundEvent(sender, _MEDIA_FIELDS[kind])
        return InboundEvent(
            sender,
            _MEDIA_FIELDS[kind],
            text=media.caption,
            media_id=media.id,
            mime_type=media.mime_type,
            file_name=media.filename,
        )

    if kind == "interactive" and message.interactive:
        reply = message.interactive.button_reply or message.interactive.list_reply
        text = (reply.title or reply.id) if reply else None
        return InboundEvent(sender, ContentType.TEXT, text)

    if kind == "button" and message.button:
        return InboundEvent(sender, ContentType.TEXT, message.button.text or message.button.payload)

    return InboundEvent(sender, ContentType.OTHER)


def parse_payload(raw: dict) -> list[InboundMessage]:
    """Flatten every message of the envelope; status callbacks are skipped."""
    try:
        payload = WhatsAppWebhookPayload.model_validate(raw)
    except ValidationError as e:
        logger.warning("Unparseable webhook payload", extra={"context": {"error": str(e)[:500]}})
        return []

    result = []
    for entry in payload.entry:
        for change in entry.changes:
            value = change.value
            phone_number_id = value.metadata.phone_number_id if value.metadata else None
            names = {
                digits_only(contact.wa_id): contact.profile.name
                for contact in value.contacts
                if contact.wa_id and contact.profile
            }
            if value.statuses:
                logger.debug(
                    "Ignoring status callbacks",
                    extra={"context": {"count": len(value.statuses), "phone_number_id": phone_number_id}},
                )
            for message in value.messages:
                event = to_event(message)
                result.append(
                    InboundMessage(
                        phone_number_id=phone_number_id,
                        provider_message_id=message.id,
                        contact_name=names.get(event.sender_number),
                        event=event,
                    )
                )
    return result

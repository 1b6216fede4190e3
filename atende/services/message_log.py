"""Append-only log of every inbound and outbound content unit of a case."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from atende.models import Message
from atende.services.case_repository import utcnow
from atende.services.phone import digits_only


class Direction(str, Enum):
    CITIZEN = "CITIZEN"
    AGENT = "AGENT"
    SYSTEM = "SYSTEM"


class ContentType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    AUDIO = "AUDIO"
    VIDEO = "VIDEO"
    DOCUMENT = "DOCUMENT"
    OTHER = "OTHER"


@dataclass(frozen=True)
class ProviderIds:
    message_id: Optional[str] = None
    media_id: Optional[str] = None
    mime_type: Optional[str] = None
    file_name: Optional[str] = None


def append(
    db: Session,
    case_id: UUID,
    tenant_id: int,
    direction: Direction,
    content_type: ContentType,
    text: Optional[str],
    sender_number: Optional[str],
    provider: Optional[ProviderIds] = None,
) -> Message:
    provider = provider or ProviderIds()
    message = Message(
        case_id=case_id,
        tenant_id=tenant_id,
        direction=direction.value,
        content_type=content_type.value,
        body=text,
        sender_number=digits_only(sender_number) or None,
        provider_message_id=provider.message_id,
        provider_media_id=provider.media_id,
        mime_type=provider.mime_type,
        file_name=provider.file_name,
        created_at=utcnow(),
    )
    db.add(message)
    db.flush()
    return message


def list_by_case_ascending(db: Session, case_id: UUID) -> list[Message]:
    return (
        db.query(Message)
        .filter(Message.case_id == case_id)
        .order_by(Message.created_at.asc())
        .all()
    )


def exists_provider_message(db: Session, tenant_id: int, provider_message_id: Optional[str]) -> bool:
    if not provider_message_id:
        return False
    return (
        db.query(Message.id)
        .filter(
            Message.tenant_id == tenant_id,
            Message.provider_message_id == provider_message_id,
        )
        .first()
        is not None
    )

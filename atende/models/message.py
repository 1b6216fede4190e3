import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from atende.database import Base


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (UniqueConstraint("tenant_id", "provider_message_id", name="uq_messages_provider_id"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id = Column(Uuid, ForeignKey("cases.id"), nullable=False, index=True)
    tenant_id = Column(Integer, nullable=False)
    direction = Column(Text, nullable=False)  # CITIZEN, AGENT, SYSTEM
    content_type = Column(Text, nullable=False)  # TEXT, IMAGE, AUDIO, VIDEO, DOCUMENT, OTHER
    body = Column(Text)
    sender_number = Column(Text)
    provider_message_id = Column(Text)
    provider_media_id = Column(Text)
    mime_type = Column(Text)
    file_name = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False)

    case = relationship("Case", back_populates="messages")

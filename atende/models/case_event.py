from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from atende.database import Base


class CaseEvent(Base):
    __tablename__ = "case_events"

    id = Column(Integer, primary_key=True, autoincrement=True)  # insertion order
    case_id = Column(Uuid, ForeignKey("cases.id"), nullable=False, index=True)
    event_type = Column(Text, nullable=False)  # created, status_changed, protocol_issued, survey_answer
    from_status = Column(Text)
    to_status = Column(Text)
    detail = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)

    case = relationship("Case", back_populates="events")

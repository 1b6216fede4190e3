import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from atende.database import Base


class Case(Base):
    __tablename__ = "cases"
    __table_args__ = (
        Index("ix_cases_tenant_citizen", "tenant_id", "citizen_number"),
        Index("ix_cases_tenant_agent", "tenant_id", "agent_key"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False)
    citizen_number = Column(Text, nullable=False)
    citizen_name = Column(Text)
    department_id = Column(Integer, ForeignKey("departments.id"))
    agent_name = Column(Text)
    agent_number = Column(Text)
    agent_key = Column(Text)  # trailing digits of agent_number
    status = Column(Text, nullable=False, default="ASK_NAME")
    protocol = Column(Text, unique=True)
    resolved = Column(Boolean)
    satisfaction_rating = Column(Integer)
    survey_step = Column(Text)  # resolved, rating, another_department
    first_response_seconds = Column(Integer)
    reminder_count = Column(Integer, nullable=False, default=0)
    routed_at = Column(DateTime(timezone=True))
    last_reminder_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    closed_at = Column(DateTime(timezone=True))

    department = relationship("Department")
    messages = relationship("Message", back_populates="case", order_by="Message.created_at")
    events = relationship("CaseEvent", back_populates="case", order_by="CaseEvent.id")

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text, func

from atende.database import Base


class BusinessHoursRule(Base):
    __tablename__ = "business_hours"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    department_id = Column(Integer, ForeignKey("departments.id"))  # NULL = general rule
    weekdays = Column(Text, nullable=False)  # "SEG,TER,QUA"
    start_time = Column(Text, nullable=False)  # "08:00"
    end_time = Column(Text, nullable=False)  # "18:00"
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

from sqlalchemy import Boolean, Column, DateTime, Integer, Text, func
from sqlalchemy.orm import relationship

from atende.database import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    whatsapp_phone_number_id = Column(Text, unique=True)
    whatsapp_access_token = Column(Text)
    whatsapp_verify_token = Column(Text)
    timezone = Column(Text)  # IANA name, falls back to settings.default_timezone
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    departments = relationship("Department", back_populates="tenant")
    staff = relationship("StaffMember", back_populates="tenant")

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint, func
from sqlalchemy.orm import relationship

from atende.database import Base


class StaffMember(Base):
    __tablename__ = "staff_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    whatsapp_number = Column(Text)  # digits only
    role = Column(Text, nullable=False, default="AGENT")  # ADMIN, MANAGER, AGENT
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    tenant = relationship("Tenant", back_populates="staff")
    department_links = relationship("AgentDepartment", back_populates="staff_member")


class AgentDepartment(Base):
    __tablename__ = "agent_departments"
    __table_args__ = (UniqueConstraint("staff_member_id", "department_id", name="uq_agent_department"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    staff_member_id = Column(Integer, ForeignKey("staff_members.id"), nullable=False)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=False)
    is_principal = Column(Boolean, nullable=False, default=False)

    staff_member = relationship("StaffMember", back_populates="department_links")
    department = relationship("Department", back_populates="agent_links")

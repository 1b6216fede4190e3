from atende.models.business_hours import BusinessHoursRule
from atende.models.case import Case
from atende.models.case_event import CaseEvent
from atende.models.department import Department
from atende.models.message import Message
from atende.models.staff import AgentDepartment, StaffMember
from atende.models.tenant import Tenant

__all__ = [
    "Tenant",
    "Department",
    "StaffMember",
    "AgentDepartment",
    "BusinessHoursRule",
    "Case",
    "CaseEvent",
    "Message",
]

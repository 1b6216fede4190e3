"""Department lookup, numbered menus and agent identity resolution for a tenant."""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from atende.logging_config import get_logger
from atende.models import AgentDepartment, Department, StaffMember
from atende.services.phone import agent_key, digits_only

logger = get_logger("department_directory")

MENU_HEADER = "Selecione o número do Departamento / Setor que deseja falar:"
MENU_FOOTER = "Digite apenas o número desejado."


@dataclass(frozen=True)
class DepartmentOption:
    """Snapshot of an active department as shown in the menu."""

    index: int
    id: int
    name: str
    responsible_name: Optional[str]
    responsible_number: Optional[str]


@dataclass(frozen=True)
class AgentIdentity:
    name: Optional[str]
    number: str
    department_ids: tuple[int, ...] = ()


def list_active(db: Session, tenant_id: int) -> list[Department]:
    """Active departments of the tenant in stable ascending id order."""
    return (
        db.query(Department)
        .filter(Department.tenant_id == tenant_id, Department.is_active.is_(True))
        .order_by(Department.id.asc())
        .all()
    )


def get_by_index(db: Session, tenant_id: int, index: int) -> Optional[Department]:
    """Resolve a 1-based menu index against the current active list."""
    departments = list_active(db, tenant_id)
    if index < 1 or index > len(departments):
        return None
    return departments[index - 1]


def resolve_responsible(db: Session, department: Department) -> tuple[Optional[str], Optional[str]]:
    """Return (name, number) of whoever answers for the department.

    The department's own responsible number wins; otherwise the principal linked
    staff member, then any active linked staff member.
    """
    number = digits_only(department.responsible_number)
    if number:
        return department.responsible_name, number

    links = (
        db.query(AgentDepartment, StaffMember)
        .join(StaffMember, StaffMember.id == AgentDepartment.staff_member_id)
        .filter(
            AgentDepartment.department_id == department.id,
            StaffMember.is_active.is_(True),
        )
        .order_by(AgentDepartment.is_principal.desc(), StaffMember.id.asc())
        .all()
    )
    for _link, staff in links:
        staff_number = digits_only(staff.whatsapp_number)
        if staff_number:
            return staff.name, staff_number
    return department.responsible_name, None


def list_options(db: Session, tenant_id: int) -> list[DepartmentOption]:
    options = []
    for position, department in enumerate(list_active(db, tenant_id), start=1):
        name, number = resolve_responsible(db, department)
        options.append(
            DepartmentOption(
                index=position,
                id=department.id,
                name=department.name,
                responsible_name=name,
                responsible_number=number,
            )
        )
    return options


def render_menu(options: list[DepartmentOption]) -> str:
    if not options:
        return "No momento não há setores disponíveis para atendimento. Tente novamente mais tarde."
    lines = [f"{option.index}. {option.name}" for option in options]
    return f"{MENU_HEADER}\n\n" + "\n".join(lines) + f"\n\n{MENU_FOOTER}"


def build_menu_text(db: Session, tenant_id: int) -> str:
    return render_menu(list_options(db, tenant_id))


def find_agent(db: Session, tenant_id: int, number: str) -> Optional[AgentIdentity]:
    """Classify a sender as agent when a tenant's department or staff number matches its suffix."""
    key = agent_key(number)
    if not key:
        return None

    matched = False
    department_ids = []
    name = None
    for department in list_active(db, tenant_id):
        if agent_key(department.responsible_number) == key:
            matched = True
            department_ids.append(department.id)
            name = name or department.responsible_name

    staff_rows = (
        db.query(StaffMember)
        .filter(StaffMember.tenant_id == tenant_id, StaffMember.is_active.is_(True))
        .all()
    )
    for staff in staff_rows:
        if agent_key(staff.whatsapp_number) != key:
            continue
        matched = True
        name = name or staff.name
        for link in staff.department_links:
            if link.department_id not in department_ids:
                department_ids.append(link.department_id)

    if not matched:
        return None

    logger.debug(
        "Sender classified as agent",
        extra={"context": {"tenant_id": tenant_id, "agent_key": key}},
    )
    return AgentIdentity(name=name, number=digits_only(number), department_ids=tuple(department_ids))


def is_agent(db: Session, tenant_id: int, number: str) -> bool:
    return find_agent(db, tenant_id, number) is not None

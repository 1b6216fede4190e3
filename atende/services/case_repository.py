"""Durable case records: creation, lookup, partial updates and status changes."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from atende.logging_config import get_logger
from atende.models import Case, CaseEvent
from atende.services.phone import agent_key as make_agent_key
from atende.services.phone import digits_only
from atende.services.state_machine import AGENT_BOUND_STATUSES, CaseStatus, transition

logger = get_logger("case_repository")

UPDATABLE_FIELDS = {
    "citizen_name",
    "department_id",
    "agent_name",
    "agent_number",
    "resolved",
    "satisfaction_rating",
    "survey_step",
    "first_response_seconds",
    "reminder_count",
    "routed_at",
    "last_reminder_at",
}

# Only the satisfaction survey may touch a finished case.
FINISHED_MUTABLE_FIELDS = {"resolved", "satisfaction_rating", "survey_step"}


class CaseNotFoundError(Exception):
    def __init__(self, case_id):
        self.case_id = case_id
        super().__init__(f"Case {case_id} not found")


class ClosedCaseError(Exception):
    def __init__(self, case_id, fields):
        self.case_id = case_id
        super().__init__(f"Case {case_id} is finished, cannot update {sorted(fields)}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_timezone(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def record_event(
    db: Session,
    case: Case,
    event_type: str,
    *,
    from_status: Optional[str] = None,
    to_status: Optional[str] = None,
    detail: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> CaseEvent:
    event = CaseEvent(
        case_id=case.id,
        event_type=event_type,
        from_status=from_status,
        to_status=to_status,
        detail=detail or {},
        created_at=now or utcnow(),
    )
    db.add(event)
    return event


def create_case(db: Session, tenant_id: int, citizen_number: str, now: Optional[datetime] = None) -> Case:
    now = now or utcnow()
    case = Case(
        tenant_id=tenant_id,
        citizen_number=digits_only(citizen_number),
        status=CaseStatus.ASK_NAME.value,
        reminder_count=0,
        created_at=now,
        updated_at=now,
    )
    db.add(case)
    db.flush()
    record_event(db, case, "created", to_status=CaseStatus.ASK_NAME.value, now=now)
    logger.info(
        "Case created",
        extra={"context": {"tenant_id": tenant_id, "case_id": str(case.id)}},
    )
    return case


def find_by_id(db: Session, case_id: UUID) -> Optional[Case]:
    return db.query(Case).filter(Case.id == case_id).first()


def find_open_case_for_citizen(db: Session, tenant_id: int, citizen_number: str) -> Optional[Case]:
    return (
        db.query(Case)
        .filter(
            Case.tenant_id == tenant_id,
            Case.citizen_number == digits_only(citizen_number),
            Case.status != CaseStatus.FINISHED.value,
        )
        .order_by(Case.created_at.desc())
        .first()
    )


def find_survey_case(db: Session, tenant_id: int, citizen_number: str, since: datetime) -> Optional[Case]:
    """Most recent finished case still waiting for survey answers."""
    case = (
        db.query(Case)
        .filter(
            Case.tenant_id == tenant_id,
            Case.citizen_number == digits_only(citizen_number),
            Case.status == CaseStatus.FINISHED.value,
            Case.survey_step.isnot(None),
        )
        .order_by(Case.closed_at.desc())
        .first()
    )
    if case is None or not closed_since(case, since):
        return None
    return case


def closed_since(case: Case, since: datetime) -> bool:
    closed_at = ensure_timezone(case.closed_at)
    return closed_at is not None and closed_at >= since


def find_by_protocol(db: Session, code: str, tenant_id: Optional[int] = None) -> Optional[Case]:
    query = db.query(Case).filter(Case.protocol == code.upper())
    if tenant_id is not None:
        query = query.filter(Case.tenant_id == tenant_id)
    return query.first()


def set_status(
    db: Session,
    case: Case,
    new_status: CaseStatus,
    now: Optional[datetime] = None,
    detail: Optional[dict] = None,
) -> Case:
    """Move the case along the status graph. Raises InvalidTransitionError."""
    old_status = CaseStatus(case.status)
    transition(old_status, new_status)
    now = now or utcnow()
    case.status = new_status.value
    case.updated_at = now
    if new_status == CaseStatus.FINISHED:
        case.closed_at = now
    record_event(
        db,
        case,
        "status_changed",
        from_status=old_status.value,
        to_status=new_status.value,
        detail=detail,
        now=now,
    )
    logger.info(
        "Case status changed",
        extra={
            "context": {
                "tenant_id": case.tenant_id,
                "case_id": str(case.id),
                "from": old_status.value,
                "to": new_status.value,
            }
        },
    )
    return case


def apply_fields(case: Case, fields: dict, now: Optional[datetime] = None) -> Case:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not updatable: {sorted(unknown)}")
    if case.status == CaseStatus.FINISHED.value and set(fields) - FINISHED_MUTABLE_FIELDS:
        raise ClosedCaseError(case.id, set(fields) - FINISHED_MUTABLE_FIELDS)

    for name, value in fields.items():
        setattr(case, name, value)
    if "agent_number" in fields:
        case.agent_number = digits_only(fields["agent_number"]) or None
        case.agent_key = make_agent_key(case.agent_number) or None
    case.updated_at = now or utcnow()
    return case


def update_case(db: Session, case_id: UUID, fields: dict, now: Optional[datetime] = None) -> None:
    """Last-write-wins partial update; `status` goes through the transition graph."""
    case = find_by_id(db, case_id)
    if case is None:
        raise CaseNotFoundError(case_id)
    fields = dict(fields)
    new_status = fields.pop("status", None)
    if fields:
        apply_fields(case, fields, now)
    if new_status is not None and CaseStatus(new_status).value != case.status:
        set_status(db, case, CaseStatus(new_status), now)
    db.flush()


def find_agent_cases(
    db: Session,
    tenant_id: int,
    agent_key: str,
    statuses: Optional[list[CaseStatus]] = None,
) -> list[Case]:
    statuses = statuses or AGENT_BOUND_STATUSES
    return (
        db.query(Case)
        .filter(
            Case.tenant_id == tenant_id,
            Case.agent_key == agent_key,
            Case.status.in_([status.value for status in statuses]),
        )
        .order_by(Case.created_at.asc())
        .all()
    )


def is_agent_busy(db: Session, tenant_id: int, agent_key: str, exclude_case_id: Optional[UUID] = None) -> bool:
    for case in find_agent_cases(db, tenant_id, agent_key):
        if case.id != exclude_case_id:
            return True
    return False


def next_in_queue(db: Session, tenant_id: int, agent_key: str) -> Optional[Case]:
    cases = find_agent_cases(db, tenant_id, agent_key, [CaseStatus.IN_QUEUE])
    return cases[0] if cases else None


def queue_position(db: Session, case: Case) -> int:
    """1-based position of an IN_QUEUE case among its agent's queue."""
    queued = find_agent_cases(db, case.tenant_id, case.agent_key, [CaseStatus.IN_QUEUE])
    for position, queued_case in enumerate(queued, start=1):
        if queued_case.id == case.id:
            return position
    return len(queued) + 1


def list_cases(
    db: Session,
    tenant_id: Optional[int] = None,
    status: Optional[CaseStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Case]:
    query = db.query(Case)
    if tenant_id is not None:
        query = query.filter(Case.tenant_id == tenant_id)
    if status is not None:
        query = query.filter(Case.status == status.value)
    return query.order_by(Case.created_at.desc()).offset(offset).limit(limit).all()


def list_by_status(db: Session, statuses: list[CaseStatus]) -> list[Case]:
    return (
        db.query(Case)
        .filter(Case.status.in_([status.value for status in statuses]))
        .order_by(Case.created_at.asc())
        .all()
    )


def status_history(db: Session, case_id: UUID) -> list[str]:
    events = (
        db.query(CaseEvent)
        .filter(CaseEvent.case_id == case_id, CaseEvent.to_status.isnot(None))
        .order_by(CaseEvent.id.asc())
        .all()
    )
    return [event.to_status for event in events]

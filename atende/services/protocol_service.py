"""Protocol codes: generation, idempotent issuing, close-out and lookup summaries."""

import re
from datetime import datetime, tzinfo
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from atende.logging_config import get_logger
from atende.models import Case
from atende.services import case_repository
from atende.services.case_repository import CaseNotFoundError, ensure_timezone, utcnow
from atende.services.state_machine import CaseStatus

logger = get_logger("protocol_service")

PROTOCOL_PREFIX = "ATD"
SUFFIX_LENGTH = 8
PROTOCOL_PATTERN = re.compile(r"\bATD-\d{8}-[A-Z0-9]{6,12}\b", re.IGNORECASE)

STATUS_DESCRIPTIONS = {
    CaseStatus.ASK_NAME: "Aguardando identificação do cidadão",
    CaseStatus.ASK_DEPARTMENT: "Aguardando escolha do setor",
    CaseStatus.WAITING_AGENT_CONFIRMATION: "Aguardando confirmação do atendente",
    CaseStatus.ACTIVE: "Em atendimento",
    CaseStatus.IN_QUEUE: "Na fila de atendimento",
    CaseStatus.ASK_ANOTHER_DEPARTMENT: "Setor sem atendente disponível",
    CaseStatus.LEAVE_MESSAGE_DECISION: "Fora do horário de atendimento",
    CaseStatus.LEAVE_MESSAGE: "Recado registrado, aguardando análise",
    CaseStatus.FINISHED: "Atendimento encerrado",
}


def generate_protocol(case_id: UUID, at: datetime, tz: Optional[tzinfo] = None) -> str:
    """ATD-YYYYMMDD-XXXXXXXX, suffix taken from the case UUID."""
    local = at.astimezone(tz) if tz else at
    suffix = case_id.hex[:SUFFIX_LENGTH].upper()
    return f"{PROTOCOL_PREFIX}-{local:%Y%m%d}-{suffix}"


def is_protocol(value: str) -> bool:
    return bool(PROTOCOL_PATTERN.fullmatch((value or "").strip()))


def extract_protocol_code(text: Optional[str]) -> Optional[str]:
    match = PROTOCOL_PATTERN.search(text or "")
    return match.group(0).upper() if match else None


def _issue(db: Session, case: Case, now: datetime, tz: Optional[tzinfo]) -> str:
    if case.protocol:
        return case.protocol
    case.protocol = generate_protocol(case.id, now, tz)
    case.updated_at = now
    case_repository.record_event(db, case, "protocol_issued", detail={"protocol": case.protocol}, now=now)
    logger.info(
        "Protocol issued",
        extra={"context": {"case_id": str(case.id), "protocol": case.protocol}},
    )
    return case.protocol


def ensure_protocol(db: Session, case_id: UUID, now: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> str:
    """Return the case's protocol, generating and persisting it on first call."""
    case = case_repository.find_by_id(db, case_id)
    if case is None:
        raise CaseNotFoundError(case_id)
    code = _issue(db, case, now or utcnow(), tz)
    db.flush()
    return code


def close_case(
    db: Session,
    case_id: UUID,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
    survey_step: Optional[str] = None,
) -> str:
    """Ensure a protocol and finish the case in one flush. Closing twice returns the same code."""
    case = case_repository.find_by_id(db, case_id)
    if case is None:
        raise CaseNotFoundError(case_id)
    now = now or utcnow()
    code = _issue(db, case, now, tz)
    if case.status != CaseStatus.FINISHED.value:
        case_repository.set_status(db, case, CaseStatus.FINISHED, now, detail={"protocol": code})
        case.survey_step = survey_step
    db.flush()
    return code


def describe_status(status: str) -> str:
    try:
        return STATUS_DESCRIPTIONS[CaseStatus(status)]
    except ValueError:
        return status


def _fmt(dt: Optional[datetime], tz: Optional[tzinfo]) -> str:
    dt = ensure_timezone(dt)
    if dt is None:
        return "-"
    if tz:
        dt = dt.astimezone(tz)
    return dt.strftime("%d/%m/%Y %H:%M")


def build_status_summary(case: Case, department_name: Optional[str], tz: Optional[tzinfo] = None) -> str:
    lines = [
        f"📄 *Andamento do protocolo {case.protocol}*",
        "",
        f"• Setor responsável: *{department_name or 'não definido'}*",
        f"• Situação: {describe_status(case.status)}",
        f"• Abertura: {_fmt(case.created_at, tz)}",
        f"• Última movimentação: {_fmt(case.updated_at, tz)}",
    ]
    if case.closed_at:
        lines.append(f"• Encerrado em: {_fmt(case.closed_at, tz)}")
    if case.satisfaction_rating:
        lines.append(f"• Nota de satisfação registrada: *{case.satisfaction_rating}/5*.")
    return "\n".join(lines)

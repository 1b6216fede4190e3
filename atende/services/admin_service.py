from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from atende.logging_config import get_logger
from atende.models import BusinessHoursRule, Case, Department, Tenant
from atende.schemas.admin import BusinessHoursIn, DepartmentIn, DepartmentUpdate
from atende.services import case_repository
from atende.services.business_hours import (
    BusinessHoursConflictError,
    HoursWindow,
    InvalidBusinessHoursError,
    business_hours,
    validate_rule,
)
from atende.services.phone import digits_only
from atende.services.result import Result

logger = get_logger("admin_service")


def get_case(db: Session, case_id: UUID) -> Result[Case]:
    case = case_repository.find_by_id(db, case_id)
    if case is None:
        return Result.not_found(f"Case {case_id}")
    return Result.success(case)


def get_case_by_protocol(db: Session, code: str) -> Result[Case]:
    case = case_repository.find_by_protocol(db, code)
    if case is None:
        return Result.not_found(f"Protocol {code}")
    return Result.success(case)


def _check_tenant(db: Session, tenant_id: int) -> bool:
    return db.query(Tenant.id).filter(Tenant.id == tenant_id).first() is not None


def create_department(db: Session, payload: DepartmentIn) -> Result[Department]:
    if not _check_tenant(db, payload.tenant_id):
        return Result.not_found(f"Tenant {payload.tenant_id}")
    department = Department(
        tenant_id=payload.tenant_id,
        name=payload.name.strip(),
        responsible_name=payload.responsible_name,
        responsible_number=digits_only(payload.responsible_number) or None,
        is_active=payload.is_active,
    )
    db.add(department)
    db.flush()
    logger.info(
        "Department created",
        extra={"context": {"tenant_id": payload.tenant_id, "department_id": department.id}},
    )
    return Result.success(department)


def update_department(db: Session, department_id: int, payload: DepartmentUpdate) -> Result[Department]:
    department = db.query(Department).filter(Department.id == department_id).first()
    if department is None:
        return Result.not_found(f"Department {department_id}")
    changes = payload.model_dump(exclude_unset=True)
    if "responsible_number" in changes:
        changes["responsible_number"] = digits_only(changes["responsible_number"]) or None
    for name, value in changes.items():
        setattr(department, name, value)
    db.flush()
    return Result.success(department)


def create_business_hours(db: Session, payload: BusinessHoursIn) -> Result[BusinessHoursRule]:
    if not _check_tenant(db, payload.tenant_id):
        return Result.not_found(f"Tenant {payload.tenant_id}")
    if payload.department_id is not None:
        department = (
            db.query(Department)
            .filter(Department.id == payload.department_id, Department.tenant_id == payload.tenant_id)
            .first()
        )
        if department is None:
            return Result.not_found(f"Department {payload.department_id}")

    weekdays = ",".join(code.strip().upper() for code in payload.weekdays.split(",") if code.strip())
    try:
        if payload.is_active:
            validate_rule(db, payload.tenant_id, payload.department_id, weekdays, payload.start_time, payload.end_time)
        else:
            # inactive rules never overlap, only their shape is checked
            HoursWindow.from_values(weekdays, payload.start_time, payload.end_time)
    except InvalidBusinessHoursError as e:
        return Result.failure(str(e), "invalid")
    except BusinessHoursConflictError as e:
        return Result.failure(str(e), "conflict")

    rule = BusinessHoursRule(
        tenant_id=payload.tenant_id,
        department_id=payload.department_id,
        weekdays=weekdays,
        start_time=payload.start_time.strip(),
        end_time=payload.end_time.strip(),
        is_active=payload.is_active,
    )
    db.add(rule)
    db.flush()
    business_hours.invalidate(payload.tenant_id)
    return Result.success(rule)


def delete_business_hours(db: Session, rule_id: int) -> Result[int]:
    rule = db.query(BusinessHoursRule).filter(BusinessHoursRule.id == rule_id).first()
    if rule is None:
        return Result.not_found(f"Business hours rule {rule_id}")
    tenant_id = rule.tenant_id
    db.delete(rule)
    db.flush()
    business_hours.invalidate(tenant_id)
    return Result.success(rule_id)


def list_business_hours(db: Session, tenant_id: Optional[int] = None) -> list[BusinessHoursRule]:
    query = db.query(BusinessHoursRule)
    if tenant_id is not None:
        query = query.filter(BusinessHoursRule.tenant_id == tenant_id)
    return query.order_by(BusinessHoursRule.id.asc()).all()

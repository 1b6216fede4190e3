"""Admin API: case history, departments and business hours."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from atende.config import settings
from atende.database import get_db
from atende.models import Department
from atende.schemas.admin import (
    BusinessHoursIn,
    BusinessHoursOut,
    CaseDetailResponse,
    CaseListResponse,
    CaseOut,
    DepartmentIn,
    DepartmentOut,
    DepartmentUpdate,
    MessageOut,
    ProtocolLookupResponse,
)
from atende.services import admin_service, case_repository, message_log
from atende.services.protocol_service import describe_status
from atende.services.result import Result
from atende.services.state_machine import CaseStatus

ERROR_STATUS = {"not_found": 404, "conflict": 409, "invalid": 422}


def require_admin_token(x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token")) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not x_admin_token or x_admin_token != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin_token)])


def _unwrap(result: Result):
    if not result.ok:
        raise HTTPException(status_code=ERROR_STATUS.get(result.error_code, 400), detail=result.error)
    return result.value


# === CASES ===


@router.get("/cases", response_model=CaseListResponse)
def list_cases(
    tenant_id: Optional[int] = None,
    status: Optional[CaseStatus] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    cases = case_repository.list_cases(db, tenant_id=tenant_id, status=status, limit=min(limit, 200), offset=offset)
    return CaseListResponse(count=len(cases), cases=[CaseOut.model_validate(case) for case in cases])


@router.get("/cases/{case_id}", response_model=CaseDetailResponse)
def get_case(case_id: UUID, db: Session = Depends(get_db)):
    case = _unwrap(admin_service.get_case(db, case_id))
    return CaseDetailResponse(
        case=CaseOut.model_validate(case),
        status_history=case_repository.status_history(db, case.id),
    )


@router.get("/cases/{case_id}/messages", response_model=list[MessageOut])
def get_case_messages(case_id: UUID, db: Session = Depends(get_db)):
    case = _unwrap(admin_service.get_case(db, case_id))
    return [MessageOut.model_validate(message) for message in message_log.list_by_case_ascending(db, case.id)]


@router.get("/protocols/{code}", response_model=ProtocolLookupResponse)
def get_protocol(code: str, db: Session = Depends(get_db)):
    case = _unwrap(admin_service.get_case_by_protocol(db, code))
    return ProtocolLookupResponse(
        protocol=case.protocol,
        case_id=case.id,
        status=case.status,
        status_description=describe_status(case.status),
    )


# === DEPARTMENTS ===


@router.get("/departments", response_model=list[DepartmentOut])
def list_departments(tenant_id: int, db: Session = Depends(get_db)):
    rows = db.query(Department).filter(Department.tenant_id == tenant_id).order_by(Department.id.asc()).all()
    return [DepartmentOut.model_validate(row) for row in rows]


@router.post("/departments", response_model=DepartmentOut, status_code=201)
def create_department(payload: DepartmentIn, db: Session = Depends(get_db)):
    department = _unwrap(admin_service.create_department(db, payload))
    db.commit()
    return DepartmentOut.model_validate(department)


@router.patch("/departments/{department_id}", response_model=DepartmentOut)
def update_department(department_id: int, payload: DepartmentUpdate, db: Session = Depends(get_db)):
    department = _unwrap(admin_service.update_department(db, department_id, payload))
    db.commit()
    return DepartmentOut.model_validate(department)


# === BUSINESS HOURS ===


@router.get("/business-hours", response_model=list[BusinessHoursOut])
def list_business_hours(tenant_id: Optional[int] = None, db: Session = Depends(get_db)):
    return [BusinessHoursOut.model_validate(rule) for rule in admin_service.list_business_hours(db, tenant_id)]


@router.post("/business-hours", response_model=BusinessHoursOut, status_code=201)
def create_business_hours(payload: BusinessHoursIn, db: Session = Depends(get_db)):
    rule = _unwrap(admin_service.create_business_hours(db, payload))
    db.commit()
    return BusinessHoursOut.model_validate(rule)


@router.delete("/business-hours/{rule_id}")
def delete_business_hours(rule_id: int, db: Session = Depends(get_db)):
    _unwrap(admin_service.delete_business_hours(db, rule_id))
    db.commit()
    return {"success": True, "id": rule_id}

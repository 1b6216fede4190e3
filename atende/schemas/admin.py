from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CaseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: int
    citizen_number: str
    citizen_name: Optional[str] = None
    department_id: Optional[int] = None
    agent_name: Optional[str] = None
    agent_number: Optional[str] = None
    status: str
    protocol: Optional[str] = None
    resolved: Optional[bool] = None
    satisfaction_rating: Optional[int] = None
    first_response_seconds: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    closed_at: Optional[datetime] = None


class CaseListResponse(BaseModel):
    count: int
    cases: list[CaseOut]


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    direction: str
    content_type: str
    body: Optional[str] = None
    sender_number: Optional[str] = None
    provider_message_id: Optional[str] = None
    provider_media_id: Optional[str] = None
    mime_type: Optional[str] = None
    file_name: Optional[str] = None
    created_at: datetime


class CaseDetailResponse(BaseModel):
    case: CaseOut
    status_history: list[str]


class ProtocolLookupResponse(BaseModel):
    protocol: str
    case_id: UUID
    status: str
    status_description: str


class DepartmentIn(BaseModel):
    tenant_id: int
    name: str = Field(min_length=1)
    responsible_name: Optional[str] = None
    responsible_number: Optional[str] = None
    is_active: bool = True


class DepartmentUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    responsible_name: Optional[str] = None
    responsible_number: Optional[str] = None
    is_active: Optional[bool] = None


class DepartmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    name: str
    responsible_name: Optional[str] = None
    responsible_number: Optional[str] = None
    is_active: bool


class BusinessHoursIn(BaseModel):
    tenant_id: int
    department_id: Optional[int] = None
    weekdays: str = Field(examples=["SEG,TER,QUA,QUI,SEX"])
    start_time: str = Field(examples=["08:00"])
    end_time: str = Field(examples=["17:00"])
    is_active: bool = True


class BusinessHoursOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    department_id: Optional[int] = None
    weekdays: str
    start_time: str
    end_time: str
    is_active: bool

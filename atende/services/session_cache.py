"""Process-local working copies of open cases, keyed by citizen and by agent."""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from atende.models import Case
from atende.services.case_repository import ensure_timezone
from atende.services.state_machine import CaseStatus

CitizenKey = tuple[int, str]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class Session:
    case_id: UUID
    tenant_id: int
    citizen_number: str
    status: CaseStatus
    citizen_name: Optional[str] = None
    department_id: Optional[int] = None
    agent_name: Optional[str] = None
    agent_number: Optional[str] = None
    agent_key: Optional[str] = None
    protocol: Optional[str] = None
    survey_step: Optional[str] = None
    reminder_count: int = 0
    routed_at: Optional[datetime] = None
    last_reminder_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    # transient, never persisted
    leave_message_ack_sent: bool = field(default=False, compare=False)

    @classmethod
    def from_case(cls, case: Case) -> "Session":
        return cls(
            case_id=case.id,
            tenant_id=case.tenant_id,
            citizen_number=case.citizen_number,
            status=CaseStatus(case.status),
            citizen_name=case.citizen_name,
            department_id=case.department_id,
            agent_name=case.agent_name,
            agent_number=case.agent_number,
            agent_key=case.agent_key,
            protocol=case.protocol,
            survey_step=case.survey_step,
            reminder_count=case.reminder_count or 0,
            routed_at=ensure_timezone(case.routed_at),
            last_reminder_at=ensure_timezone(case.last_reminder_at),
            created_at=ensure_timezone(case.created_at),
        )

    @property
    def key(self) -> CitizenKey:
        return (self.tenant_id, self.citizen_number)

    def copy(self) -> "Session":
        return replace(self)


class SessionCache:
    """Read-through/write-through cache over cases plus per-citizen locks.

    Entries are never authoritative: callers reload from storage on a miss and
    drop the entry whenever a write fails.
    """

    def __init__(self):
        self._by_citizen: dict[CitizenKey, Session] = {}
        self._by_agent: dict[tuple[int, str], set[CitizenKey]] = {}
        # key -> (lock, holders plus waiters)
        self._locks: dict[CitizenKey, tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def lock(self, key: CitizenKey):
        """Serialize work on one citizen. The entry is dropped once nobody holds or awaits it."""
        lock, users = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users <= 1:
                self._locks.pop(key, None)
            else:
                self._locks[key] = (lock, users - 1)

    def lock_count(self) -> int:
        return len(self._locks)

    def get(self, key: CitizenKey) -> Optional[Session]:
        session = self._by_citizen.get(key)
        return session.copy() if session else None

    def put(self, session: Session) -> None:
        previous = self._by_citizen.get(session.key)
        if previous and previous.case_id == session.case_id:
            session.leave_message_ack_sent = session.leave_message_ack_sent or previous.leave_message_ack_sent
        self._unindex(session.key)

        if session.status == CaseStatus.FINISHED and not session.survey_step:
            self._by_citizen.pop(session.key, None)
            return

        self._by_citizen[session.key] = session.copy()
        if session.agent_key and session.status != CaseStatus.FINISHED:
            self._by_agent.setdefault((session.tenant_id, session.agent_key), set()).add(session.key)

    def invalidate(self, key: CitizenKey) -> None:
        self._unindex(key)
        self._by_citizen.pop(key, None)

    def find_for_agent(self, tenant_id: int, agent_key: str) -> list[Session]:
        keys = self._by_agent.get((tenant_id, agent_key), set())
        sessions = [self._by_citizen[key].copy() for key in keys if key in self._by_citizen]
        return sorted(sessions, key=lambda s: s.created_at or _EPOCH)

    def clear(self) -> None:
        self._by_citizen.clear()
        self._by_agent.clear()

    def __len__(self) -> int:
        return len(self._by_citizen)

    def _unindex(self, key: CitizenKey) -> None:
        previous = self._by_citizen.get(key)
        if previous is None or not previous.agent_key:
            return
        agent_index = (previous.tenant_id, previous.agent_key)
        keys = self._by_agent.get(agent_index)
        if keys is None:
            return
        keys.discard(key)
        if not keys:
            self._by_agent.pop(agent_index, None)

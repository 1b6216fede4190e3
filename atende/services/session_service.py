"""Applies conversation decisions: locking, persistence, delivery and message logging."""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session as DbSession

from atende.config import settings
from atende.database import SessionLocal
from atende.logging_config import get_logger
from atende.models import Case, Department, Tenant
from atende.services import case_repository, conversation_flow, department_directory, message_log, protocol_service
from atende.services.alert_service import alert_error
from atende.services.business_hours import BusinessHoursEvaluator, business_hours, greeting_for, tenant_timezone
from atende.services.conversation_flow import Decision, FlowContext, InboundEvent, Outbound
from atende.services.dedup import MessageDeduplicator
from atende.services.department_directory import AgentIdentity
from atende.services.inbound import InboundMessage
from atende.services.message_log import ContentType, Direction, ProviderIds
from atende.services.phone import agent_key as make_agent_key
from atende.services.replies import AGENT_NO_CASE
from atende.services.session_cache import CitizenKey, Session, SessionCache
from atende.services.state_machine import AGENT_BOUND_STATUSES, CaseStatus
from atende.services.whatsapp_gateway import WhatsAppGateway

logger = get_logger("session_service")

IDLE_CLOSE_STATUSES = [
    CaseStatus.ASK_DEPARTMENT,
    CaseStatus.ASK_ANOTHER_DEPARTMENT,
    CaseStatus.LEAVE_MESSAGE_DECISION,
    CaseStatus.LEAVE_MESSAGE,
]


def resolve_tenant(db: DbSession, phone_number_id: Optional[str]) -> Optional[Tenant]:
    """Tenant owning the receiving number, else the first active tenant."""
    if phone_number_id:
        tenant = (
            db.query(Tenant)
            .filter(Tenant.whatsapp_phone_number_id == phone_number_id, Tenant.is_active.is_(True))
            .first()
        )
        if tenant:
            return tenant

    tenant = db.query(Tenant).filter(Tenant.is_active.is_(True)).order_by(Tenant.id.asc()).first()
    if tenant:
        logger.warning(
            "No tenant for phone_number_id, using first active tenant",
            extra={"context": {"phone_number_id": phone_number_id, "tenant_id": tenant.id}},
        )
    return tenant


class SessionService:
    def __init__(
        self,
        session_factory: Callable[[], DbSession] = SessionLocal,
        cache: Optional[SessionCache] = None,
        gateway: Optional[WhatsAppGateway] = None,
        dedup: Optional[MessageDeduplicator] = None,
        hours: Optional[BusinessHoursEvaluator] = None,
        clock: Callable[[], datetime] = case_repository.utcnow,
    ):
        self.session_factory = session_factory
        self.cache = cache or SessionCache()
        self.gateway = gateway or WhatsAppGateway()
        self.dedup = dedup or MessageDeduplicator()
        self.hours = hours or business_hours
        self.clock = clock
        self._tasks: set[asyncio.Task] = set()

    # Entry points

    def dispatch(self, messages: list[InboundMessage]) -> Optional[asyncio.Task]:
        """Process a webhook's messages in order on a background task."""
        if not messages:
            return None
        task = asyncio.create_task(self.handle_batch(messages))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def handle_batch(self, messages: Iterable[InboundMessage]) -> None:
        for message in messages:
            await self.handle_inbound(message)

    async def handle_inbound(self, inbound: InboundMessage) -> None:
        """Handle one inbound message end to end. Never raises."""
        db = self.session_factory()
        tenant_id = None
        try:
            tenant = resolve_tenant(db, inbound.phone_number_id)
            if tenant is None:
                logger.error(
                    "No active tenant configured, dropping message",
                    extra={"context": {"phone_number_id": inbound.phone_number_id}},
                )
                return
            tenant_id = tenant.id

            if await self.dedup.is_duplicate(db, tenant.id, inbound.provider_message_id):
                return

            agent = department_directory.find_agent(db, tenant.id, inbound.from_number)
            if agent is not None:
                promote = await self._handle_agent(db, tenant, agent, inbound)
            else:
                promote = await self._handle_citizen(db, tenant, inbound)
            if promote:
                await self.promote_queue(db, tenant, promote)
        except Exception as e:
            db.rollback()
            if tenant_id is not None:
                await self.dedup.forget(tenant_id, inbound.provider_message_id)
            logger.error(
                "Inbound processing failed",
                extra={
                    "context": {
                        "tenant_id": tenant_id,
                        "from": inbound.from_number,
                        "message_id": inbound.provider_message_id,
                        "error": str(e),
                    }
                },
                exc_info=True,
            )
            await alert_error("Inbound processing failed", {"tenant_id": tenant_id, "error": str(e)})
        finally:
            db.close()

    # Citizen side

    async def _handle_citizen(self, db: DbSession, tenant: Tenant, inbound: InboundMessage) -> Optional[str]:
        key = (tenant.id, inbound.from_number)
        async with self.cache.lock(key):
            try:
                return await self._process_citizen(db, tenant, inbound, key)
            except Exception:
                self.cache.invalidate(key)
                raise

    def _load_case(self, db: DbSession, tenant: Tenant, key: CitizenKey, now: datetime) -> Optional[Case]:
        cached = self.cache.get(key)
        since = now - timedelta(minutes=settings.survey_window_minutes)
        if cached is not None:
            case = case_repository.find_by_id(db, cached.case_id)
            if case is not None and case.status != CaseStatus.FINISHED.value:
                return case
            if case is not None and case.survey_step and case_repository.closed_since(case, since):
                return case
            self.cache.invalidate(key)

        case = case_repository.find_open_case_for_citizen(db, tenant.id, key[1])
        if case is None:
            case = case_repository.find_survey_case(db, tenant.id, key[1], since)
        return case

    def _session_for(self, case: Case) -> Session:
        """Fresh snapshot from the stored row, keeping transient flags of the cached copy."""
        session = Session.from_case(case)
        cached = self.cache.get(session.key)
        if cached is not None and cached.case_id == session.case_id:
            session.leave_message_ack_sent = cached.leave_message_ack_sent
        return session

    async def _process_citizen(
        self, db: DbSession, tenant: Tenant, inbound: InboundMessage, key: CitizenKey
    ) -> Optional[str]:
        now = self.clock()
        case = self._load_case(db, tenant, key, now)
        if case is None:
            return await self._open_case(db, tenant, inbound, now)

        session = self._session_for(case)
        ctx = self._context(db, tenant, now, exclude_case_id=case.id)
        decision = conversation_flow.decide_citizen(session, inbound.event, ctx)

        if decision.new_case:
            if decision.updates:
                case_repository.apply_fields(case, decision.updates, now)
                db.commit()
            self.cache.invalidate(key)
            return await self._open_case(db, tenant, inbound, now, known_name=decision.new_case_name)

        self._log_inbound(db, case, inbound, Direction.CITIZEN)
        return await self._apply(db, tenant, case, session, decision, now)

    async def _open_case(
        self,
        db: DbSession,
        tenant: Tenant,
        inbound: InboundMessage,
        now: datetime,
        known_name: Optional[str] = None,
    ) -> Optional[str]:
        case = case_repository.create_case(db, tenant.id, inbound.from_number, now)
        self._log_inbound(db, case, inbound, Direction.CITIZEN)
        session = Session.from_case(case)
        ctx = self._context(db, tenant, now, exclude_case_id=case.id)
        decision = conversation_flow.start_case(session, inbound.event, ctx, known_name=known_name)
        return await self._apply(db, tenant, case, session, decision, now)

    # Agent side

    def _agent_case_id(self, db: DbSession, tenant_id: int, key: str) -> Optional[UUID]:
        candidates = [
            (s.status, s.created_at, s.case_id)
            for s in self.cache.find_for_agent(tenant_id, key)
            if s.status in AGENT_BOUND_STATUSES
        ]
        if not candidates:
            candidates = [
                (CaseStatus(c.status), c.created_at, c.id) for c in case_repository.find_agent_cases(db, tenant_id, key)
            ]
        if not candidates:
            return None
        active = [c for c in candidates if c[0] == CaseStatus.ACTIVE]
        return (active or candidates)[0][2]

    async def _handle_agent(
        self, db: DbSession, tenant: Tenant, agent: AgentIdentity, inbound: InboundMessage
    ) -> Optional[str]:
        key = make_agent_key(agent.number)
        case_id = self._agent_case_id(db, tenant.id, key)
        if case_id is None:
            await self._reply_no_case(tenant, agent)
            return None

        case = case_repository.find_by_id(db, case_id)
        if case is None:
            await self._reply_no_case(tenant, agent)
            return None
        citizen_key = (tenant.id, case.citizen_number)
        async with self.cache.lock(citizen_key):
            try:
                db.refresh(case)
                if CaseStatus(case.status) not in AGENT_BOUND_STATUSES or case.agent_key != key:
                    self.cache.invalidate(citizen_key)
                    await self._reply_no_case(tenant, agent)
                    return None

                now = self.clock()
                session = self._session_for(case)
                ctx = self._context(db, tenant, now, exclude_case_id=case.id)
                self._log_inbound(db, case, inbound, Direction.AGENT)
                decision = conversation_flow.decide_agent(session, inbound.event, ctx, agent_name=agent.name)
                return await self._apply(db, tenant, case, session, decision, now)
            except Exception:
                self.cache.invalidate(citizen_key)
                raise

    async def _reply_no_case(self, tenant: Tenant, agent: AgentIdentity) -> None:
        logger.info(
            "Agent message without bound case",
            extra={"context": {"tenant_id": tenant.id, "agent": agent.number}},
        )
        await self.gateway.send(tenant, agent.number, AGENT_NO_CASE)

    # Decision application

    def _context(self, db: DbSession, tenant: Tenant, now: datetime, exclude_case_id: Optional[UUID]) -> FlowContext:
        local_now = now.astimezone(tenant_timezone(tenant))

        def queue_size(key: str) -> int:
            return len(case_repository.find_agent_cases(db, tenant.id, key, [CaseStatus.IN_QUEUE]))

        return FlowContext(
            now=now,
            tenant_name=tenant.name,
            salutation=greeting_for(local_now),
            departments=department_directory.list_options(db, tenant.id),
            is_open=lambda department_id: self.hours.is_within_business_hours(db, tenant, department_id, now),
            hours_text=lambda department_id: self.hours.describe(db, tenant.id, department_id),
            agent_busy=lambda key: case_repository.is_agent_busy(db, tenant.id, key, exclude_case_id),
            queue_size=queue_size,
            lookup_protocol=lambda code: self._protocol_summary(db, tenant, code),
        )

    def _protocol_summary(self, db: DbSession, tenant: Tenant, code: str) -> Optional[str]:
        case = case_repository.find_by_protocol(db, code, tenant_id=tenant.id)
        if case is None:
            return None
        department = db.query(Department).filter(Department.id == case.department_id).first()
        return protocol_service.build_status_summary(
            case, department.name if department else None, tenant_timezone(tenant)
        )

    def _log_inbound(self, db: DbSession, case: Case, inbound: InboundMessage, direction: Direction) -> None:
        event = inbound.event
        message_log.append(
            db,
            case.id,
            case.tenant_id,
            direction,
            event.content_type,
            event.text,
            event.sender_number,
            ProviderIds(
                message_id=inbound.provider_message_id,
                media_id=event.media_id,
                mime_type=event.mime_type,
                file_name=event.file_name,
            ),
        )

    async def _apply(
        self,
        db: DbSession,
        tenant: Tenant,
        case: Case,
        session: Session,
        decision: Decision,
        now: datetime,
    ) -> Optional[str]:
        """Persist the decision, refresh the cache, then send. Returns the agent key whose queue may advance."""
        tz = tenant_timezone(tenant)
        if decision.updates:
            case_repository.apply_fields(case, decision.updates, now)
            answers = {k: v for k, v in decision.updates.items() if k in ("resolved", "satisfaction_rating")}
            if answers:
                case_repository.record_event(db, case, "survey_answer", detail=answers, now=now)

        protocol = case.protocol
        if decision.close:
            protocol = protocol_service.close_case(db, case.id, now, tz, survey_step=decision.survey_step)
        else:
            if decision.status is not None and decision.status.value != case.status:
                case_repository.set_status(db, case, decision.status, now, detail={"reason": decision.reason})
            if decision.needs_protocol:
                protocol = protocol_service.ensure_protocol(db, case.id, now, tz)
        db.commit()

        fresh = Session.from_case(case)
        fresh.leave_message_ack_sent = session.leave_message_ack_sent or decision.mark_ack_sent
        self.cache.put(fresh)

        await self._deliver(db, tenant, case, decision.outbound, protocol)
        return decision.promote_queue_for

    async def _deliver(
        self,
        db: DbSession,
        tenant: Tenant,
        case: Case,
        outbound: list[Outbound],
        protocol: Optional[str],
    ) -> None:
        for item in outbound:
            body = item.body(protocol)
            if item.media_id:
                result = await self.gateway.send_media(tenant, item.to, item.content_type, item.media_id, body)
            elif body:
                result = await self.gateway.send(tenant, item.to, body)
            else:
                continue

            if not result.ok:
                logger.warning(
                    "Outbound message not delivered",
                    extra={"context": {"case_id": str(case.id), "to": item.to, "error": result.error}},
                )
                continue

            message_log.append(
                db,
                case.id,
                case.tenant_id,
                Direction.SYSTEM,
                item.content_type if item.media_id else ContentType.TEXT,
                body,
                None,
                ProviderIds(message_id=result.provider_message_id, media_id=item.media_id),
            )
            db.commit()

    async def promote_queue(self, db: DbSession, tenant: Tenant, agent_key: str) -> bool:
        """Move the oldest queued case of a now-free agent to confirmation."""
        if case_repository.is_agent_busy(db, tenant.id, agent_key):
            return False
        queued = case_repository.next_in_queue(db, tenant.id, agent_key)
        if queued is None:
            return False

        key = (tenant.id, queued.citizen_number)
        async with self.cache.lock(key):
            try:
                db.refresh(queued)
                if queued.status != CaseStatus.IN_QUEUE.value or case_repository.is_agent_busy(
                    db, tenant.id, agent_key
                ):
                    return False
                now = self.clock()
                session = self._session_for(queued)
                decision = conversation_flow.decide_promotion(session, self._context(db, tenant, now, queued.id))
                await self._apply(db, tenant, queued, session, decision, now)
                return True
            except Exception:
                self.cache.invalidate(key)
                raise

    # Timed sweep

    async def run_sweep(self) -> dict:
        """Agent reminders for unconfirmed cases and optional idle close-out."""
        db = self.session_factory()
        stats = {"reminded": 0, "moved_to_messages": 0, "idle_closed": 0, "errors": 0}
        try:
            now = self.clock()
            interval = timedelta(seconds=settings.reminder_interval_seconds)
            for case in case_repository.list_by_status(db, [CaseStatus.WAITING_AGENT_CONFIRMATION]):
                last = case_repository.ensure_timezone(case.last_reminder_at or case.routed_at or case.updated_at)
                if now - last < interval:
                    continue
                outcome = await self._sweep_case(db, case.id, "reminder")
                if outcome == "reminded":
                    stats["reminded"] += 1
                elif outcome == "moved":
                    stats["moved_to_messages"] += 1
                elif outcome == "error":
                    stats["errors"] += 1

            if settings.idle_close_minutes > 0:
                cutoff = now - timedelta(minutes=settings.idle_close_minutes)
                for case in case_repository.list_by_status(db, IDLE_CLOSE_STATUSES):
                    if case_repository.ensure_timezone(case.updated_at) >= cutoff:
                        continue
                    outcome = await self._sweep_case(db, case.id, "idle")
                    if outcome == "closed":
                        stats["idle_closed"] += 1
                    elif outcome == "error":
                        stats["errors"] += 1
        finally:
            db.close()
        return stats

    async def _sweep_case(self, db: DbSession, case_id: UUID, kind: str) -> Optional[str]:
        case = case_repository.find_by_id(db, case_id)
        tenant = db.query(Tenant).filter(Tenant.id == case.tenant_id).first()
        key = (case.tenant_id, case.citizen_number)
        async with self.cache.lock(key):
            try:
                db.refresh(case)
                now = self.clock()
                session = self._session_for(case)
                if kind == "reminder":
                    if case.status != CaseStatus.WAITING_AGENT_CONFIRMATION.value:
                        return None
                    ctx = self._context(db, tenant, now, case.id)
                    decision = conversation_flow.decide_reminder(session, ctx, settings.reminder_max_count)
                    outcome = "moved" if decision.status else "reminded"
                else:
                    if CaseStatus(case.status) not in IDLE_CLOSE_STATUSES:
                        return None
                    decision = conversation_flow.decide_idle_close(session)
                    outcome = "closed"
                promote = await self._apply(db, tenant, case, session, decision, now)
            except Exception as e:
                db.rollback()
                self.cache.invalidate(key)
                logger.error(
                    "Sweep failed for case",
                    extra={"context": {"case_id": str(case_id), "kind": kind, "error": str(e)}},
                    exc_info=True,
                )
                return "error"
        if promote:
            await self.promote_queue(db, tenant, promote)
        return outcome


session_service = SessionService()


def get_session_service() -> SessionService:
    return session_service

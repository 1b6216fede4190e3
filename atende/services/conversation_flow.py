"""Transition function of the citizen/agent conversation.

`decide_*` functions take the current session snapshot, an inbound event and a
read-only context, and return a Decision: the next status, the case fields to
write and the messages to send. They do no I/O, so every transition can be
exercised in isolation; `session_service` applies the decision.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from atende.services import replies
from atende.services.department_directory import DepartmentOption, render_menu
from atende.services.message_log import ContentType
from atende.services.phone import agent_key
from atende.services.protocol_service import extract_protocol_code
from atende.services.session_cache import Session
from atende.services.state_machine import CaseStatus

CLOSE_WORDS = {"encerrar", "finalizar", "sair"}
AGENT_CLOSE_WORDS = {"3", "encerrar", "finalizar"}
MENU_WORDS = {"menu", "voltar", "setores"}
AGENT_HELP_WORDS = {"ajuda", "menu"}
TRANSFER_RE = re.compile(r"^(?:transferir|setor)\s+(\d+)$", re.IGNORECASE)

SURVEY_RESOLVED = "resolved"
SURVEY_RATING = "rating"
SURVEY_ANOTHER = "another_department"

MEDIA_TYPES = {ContentType.IMAGE, ContentType.AUDIO, ContentType.VIDEO, ContentType.DOCUMENT}


@dataclass(frozen=True)
class InboundEvent:
    sender_number: str
    content_type: ContentType = ContentType.TEXT
    text: Optional[str] = None
    media_id: Optional[str] = None
    mime_type: Optional[str] = None
    file_name: Optional[str] = None

    @property
    def clean_text(self) -> str:
        return (self.text or "").strip()

    @property
    def word(self) -> str:
        return self.clean_text.lower()

    @property
    def has_media(self) -> bool:
        return self.content_type in MEDIA_TYPES and bool(self.media_id)


@dataclass
class Outbound:
    to: str
    text: Optional[str] = None
    # Builds the text once the case protocol is known.
    render: Optional[Callable[[str], str]] = None
    content_type: ContentType = ContentType.TEXT
    media_id: Optional[str] = None

    def body(self, protocol: Optional[str]) -> Optional[str]:
        if self.render is not None:
            return self.render(protocol or "")
        return self.text


@dataclass
class Decision:
    status: Optional[CaseStatus] = None
    updates: dict = field(default_factory=dict)
    outbound: list[Outbound] = field(default_factory=list)
    close: bool = False
    survey_step: Optional[str] = None
    issue_protocol: bool = False
    new_case: bool = False
    new_case_name: Optional[str] = None
    promote_queue_for: Optional[str] = None
    mark_ack_sent: bool = False
    reason: Optional[str] = None

    def say(self, to: str, text: str, **kwargs) -> "Decision":
        self.outbound.append(Outbound(to=to, text=text, **kwargs))
        return self

    def say_with_protocol(self, to: str, render: Callable[[str], str]) -> "Decision":
        self.outbound.append(Outbound(to=to, render=render))
        return self

    @property
    def needs_protocol(self) -> bool:
        return self.close or self.issue_protocol or any(o.render is not None for o in self.outbound)


@dataclass
class FlowContext:
    now: datetime
    tenant_name: str
    salutation: str
    departments: list[DepartmentOption]
    is_open: Callable[[Optional[int]], bool]
    hours_text: Callable[[Optional[int]], str]
    agent_busy: Callable[[str], bool]
    queue_size: Callable[[str], int]
    lookup_protocol: Callable[[str], Optional[str]]

    @property
    def menu(self) -> str:
        return render_menu(self.departments)

    def option(self, index: int) -> Optional[DepartmentOption]:
        if 1 <= index <= len(self.departments):
            return self.departments[index - 1]
        return None

    def department_name(self, department_id: Optional[int]) -> str:
        for option in self.departments:
            if option.id == department_id:
                return option.name
        return "atendimento"


def _as_index(text: str) -> Optional[int]:
    return int(text) if text.isascii() and text.isdigit() else None


def start_case(session: Session, event: InboundEvent, ctx: FlowContext, known_name: Optional[str] = None) -> Decision:
    """Reply to the first message of a brand-new case."""
    citizen = session.citizen_number
    if known_name:
        return Decision(
            status=CaseStatus.ASK_DEPARTMENT,
            updates={"citizen_name": known_name},
            reason="new_case_known_name",
        ).say(citizen, replies.welcome_back(ctx.salutation, known_name, ctx.menu))

    decision = Decision(reason="new_case")
    code = extract_protocol_code(event.text)
    if code:
        decision.say(citizen, ctx.lookup_protocol(code) or replies.protocol_not_found(code))
    return decision.say(citizen, replies.greeting(ctx.salutation, ctx.tenant_name))


def route_to_department(session: Session, option: DepartmentOption, ctx: FlowContext, decision: Decision) -> Decision:
    """Bind the case to a department and pick the branch from hours, agent and queue."""
    citizen = session.citizen_number
    decision.updates.update(
        {
            "department_id": option.id,
            "agent_name": option.responsible_name,
            "agent_number": option.responsible_number,
            "routed_at": ctx.now,
            "reminder_count": 0,
            "last_reminder_at": None,
        }
    )

    if not ctx.is_open(option.id):
        decision.status = CaseStatus.LEAVE_MESSAGE_DECISION
        decision.reason = "off_hours"
        return decision.say(citizen, replies.off_hours(option.name, ctx.hours_text(option.id)))

    if not option.responsible_number:
        decision.status = CaseStatus.ASK_ANOTHER_DEPARTMENT
        decision.reason = "no_agent"
        return decision.say(citizen, replies.no_agent(option.name))

    key = agent_key(option.responsible_number)
    if ctx.agent_busy(key):
        decision.status = CaseStatus.IN_QUEUE
        decision.reason = "agent_busy"
        return decision.say(citizen, replies.in_queue(option.name, ctx.queue_size(key) + 1))

    decision.status = CaseStatus.WAITING_AGENT_CONFIRMATION
    decision.reason = "routed"
    decision.say(citizen, replies.waiting_agent(option.name))
    return decision.say(
        option.responsible_number,
        replies.agent_confirmation_prompt(session.citizen_name, citizen, option.name),
    )


def _close(session: Session, decision: Decision, with_survey: bool = False) -> Decision:
    decision.status = CaseStatus.FINISHED
    decision.close = True
    decision.reason = decision.reason or "closed"
    if with_survey:
        decision.survey_step = SURVEY_RESOLVED
        decision.say_with_protocol(session.citizen_number, replies.closed_with_survey)
    else:
        decision.say_with_protocol(session.citizen_number, replies.closed)
    return decision


# Citizen handlers


def _on_ask_name(session: Session, event: InboundEvent, ctx: FlowContext) -> Decision:
    name = event.clean_text
    if event.content_type != ContentType.TEXT or not name:
        return Decision().say(session.citizen_number, replies.ASK_NAME_AGAIN)
    name = name[:80]
    return Decision(
        status=CaseStatus.ASK_DEPARTMENT,
        updates={"citizen_name": name},
        reason="name_collected",
    ).say(session.citizen_number, replies.name_received(name, ctx.menu))


def _on_ask_department(session: Session, event: InboundEvent, ctx: FlowContext) -> Decision:
    if event.word in CLOSE_WORDS:
        return _close(session, Decision(reason="citizen_closed"))
    index = _as_index(event.clean_text)
    option = ctx.option(index) if index is not None else None
    if option is None:
        return Decision().say(session.citizen_number, replies.invalid_option(ctx.menu))
    return route_to_department(session, option, ctx, Decision())


def _on_waiting_agent(session: Session, event: InboundEvent, ctx: FlowContext) -> Decision:
    if event.word in CLOSE_WORDS:
        decision = _close(session, Decision(reason="citizen_cancelled"), with_survey=False)
        if session.agent_number:
            decision.say_with_protocol(
                session.agent_number,
                lambda code: replies.citizen_closed_to_agent(session.citizen_name, code),
            )
        decision.promote_queue_for = session.agent_key
        return decision
    return Decision().say(session.citizen_number, replies.STILL_WAITING)


def _on_in_queue(session: Session, event: InboundEvent, ctx: FlowContext) -> Decision:
    if event.word in CLOSE_WORDS:
        return _close(session, Decision(reason="citizen_left_queue"))
    return Decision().say(session.citizen_number, replies.STILL_IN_QUEUE)


def _relay(event: InboundEvent, to: str, fmt: Callable[[str], str]) -> Outbound:
    if event.has_media:
        return Outbound(
            to=to,
            text=fmt(event.clean_text or "📎"),
            content_type=event.content_type,
            media_id=event.media_id,
        )
    text = event.clean_text or f"[{event.content_type.value.lower()}]"
    return Outbound(to=to, text=fmt(text))


def _on_active_citizen(session: Session, event: InboundEvent, ctx: FlowContext) -> Decision:
    if event.word in CLOSE_WORDS or event.word == "3":
        decision = _close(session, Decision(reason="citizen_closed"), with_survey=True)
        if session.agent_number:
            decision.say_with_protocol(
                session.agent_number,
                lambda code: replies.citizen_closed_to_agent(session.citizen_name, code),
            )
        decision.promote_queue_for = session.agent_key
        return decision

    if not session.agent_number:
        return Decision()
    name = session.citizen_name
    decision = Decision()
    decision.outbound.append(
        _relay(event, session.agent_number, lambda text: replies.relay_from_citizen(name, text))
    )
    return decision


def _on_ask_another_department(session: Session, event: InboundEvent, ctx: FlowContext) -> Decision:
    word = event.word
    if word == "1" or word in MENU_WORDS:
        return Decision(status=CaseStatus.ASK_DEPARTMENT, reason="back_to_menu").say(session.citizen_number, ctx.menu)
    if word == "2":
        return Decision(status=CaseStatus.LEAVE_MESSAGE, reason="leave_message").say(
            session.citizen_number, replies.LEAVE_MESSAGE_PROMPT
        )
    if word == "3" or word in CLOSE_WORDS:
        return _close(session, Decision(reason="citizen_closed"))
    return Decision().say(session.citizen_number, replies.invalid_choice(replies.ANOTHER_DEPARTMENT_OPTIONS))


def _on_leave_message_decision(session: Session, event: InboundEvent, ctx: FlowContext) -> Decision:
    word = event.word
    if word == "1":
        return Decision(status=CaseStatus.LEAVE_MESSAGE, reason="leave_message").say(
            session.citizen_number, replies.LEAVE_MESSAGE_PROMPT
        )
    if word == "2" or word in MENU_WORDS:
        return Decision(status=CaseStatus.ASK_DEPARTMENT, reason="back_to_menu").say(session.citizen_number, ctx.menu)
    if word == "3" or word in CLOSE_WORDS:
        return _close(session, Decision(reason="citizen_closed"))
    return Decision().say(session.citizen_number, replies.invalid_choice(replies.LEAVE_MESSAGE_OPTIONS))


def _on_leave_message(session: Session, event: InboundEvent, ctx: FlowContext) -> Decision:
    if event.word in CLOSE_WORDS:
        return _close(session, Decision(reason="leave_message_done"))

    decision = Decision(issue_protocol=True, reason="leave_message_recorded")
    if session.agent_number:
        department = ctx.department_name(session.department_id)
        text = event.clean_text or None
        decision.say_with_protocol(
            session.agent_number,
            lambda code: replies.leave_message_to_agent(department, session.citizen_name, code, text),
        )
        if event.has_media:
            decision.outbound.append(
                Outbound(
                    to=session.agent_number,
                    content_type=event.content_type,
                    media_id=event.media_id,
                )
            )
    if not session.leave_message_ack_sent:
        decision.mark_ack_sent = True
        decision.say_with_protocol(session.citizen_number, replies.leave_message_ack)
    return decision


def _on_finished(session: Session, event: InboundEvent, ctx: FlowContext) -> Decision:
    if not session.survey_step:
        return Decision(new_case=True, reason="after_finished")

    answer = event.clean_text
    if event.content_type != ContentType.TEXT or _as_index(answer) is None:
        return Decision(updates={"survey_step": None}, new_case=True, reason="survey_abandoned")

    citizen = session.citizen_number
    value = _as_index(answer)
    if session.survey_step == SURVEY_RESOLVED:
        if value not in (1, 2):
            return Decision().say(citizen, replies.survey_invalid(replies.SURVEY_RESOLVED))
        return Decision(
            updates={"resolved": value == 1, "survey_step": SURVEY_RATING},
            reason="survey_resolved",
        ).say(citizen, replies.SURVEY_RATING)

    if session.survey_step == SURVEY_RATING:
        if not 1 <= value <= 5:
            return Decision().say(citizen, replies.survey_invalid(replies.SURVEY_RATING))
        return Decision(
            updates={"satisfaction_rating": value, "survey_step": SURVEY_ANOTHER},
            reason="survey_rating",
        ).say(citizen, replies.SURVEY_ANOTHER)

    if value == 1:
        return Decision(
            updates={"survey_step": None},
            new_case=True,
            new_case_name=session.citizen_name,
            reason="survey_another_department",
        )
    if value == 2:
        return Decision(updates={"survey_step": None}, reason="survey_done").say(citizen, replies.SURVEY_THANKS)
    return Decision().say(citizen, replies.survey_invalid(replies.SURVEY_ANOTHER))


_CITIZEN_HANDLERS = {
    CaseStatus.ASK_NAME: _on_ask_name,
    CaseStatus.ASK_DEPARTMENT: _on_ask_department,
    CaseStatus.WAITING_AGENT_CONFIRMATION: _on_waiting_agent,
    CaseStatus.IN_QUEUE: _on_in_queue,
    CaseStatus.ACTIVE: _on_active_citizen,
    CaseStatus.ASK_ANOTHER_DEPARTMENT: _on_ask_another_department,
    CaseStatus.LEAVE_MESSAGE_DECISION: _on_leave_message_decision,
    CaseStatus.LEAVE_MESSAGE: _on_leave_message,
    CaseStatus.FINISHED: _on_finished,
}


def decide_citizen(session: Session, event: InboundEvent, ctx: FlowContext) -> Decision:
    """Next step for a message sent by the citizen owning `session`."""
    if session.status not in (CaseStatus.ACTIVE, CaseStatus.ASK_NAME, CaseStatus.FINISHED):
        code = extract_protocol_code(event.text)
        if code:
            summary = ctx.lookup_protocol(code)
            return Decision(reason="protocol_lookup").say(
                session.citizen_number, summary or replies.protocol_not_found(code)
            )
    return _CITIZEN_HANDLERS[session.status](session, event, ctx)


# Agent handlers


def _on_agent_waiting(session: Session, event: InboundEvent, ctx: FlowContext, agent_name: Optional[str]) -> Decision:
    agent = event.sender_number
    if event.word == "1":
        updates = {}
        if session.routed_at is not None:
            updates["first_response_seconds"] = max(int((ctx.now - session.routed_at).total_seconds()), 0)
        name = session.agent_name or agent_name
        if name and not session.agent_name:
            updates["agent_name"] = name
        return (
            Decision(status=CaseStatus.ACTIVE, updates=updates, reason="agent_accepted")
            .say(session.citizen_number, replies.agent_accepted_citizen(name))
            .say(agent, replies.agent_accepted_agent(session.citizen_name))
        )
    if event.word == "2":
        return (
            Decision(updates={"last_reminder_at": ctx.now}, reason="agent_deferred")
            .say(session.citizen_number, replies.AGENT_DEFERRED_CITIZEN)
            .say(agent, replies.AGENT_DEFERRED_AGENT)
        )
    return Decision().say(agent, replies.agent_waiting_help(session.citizen_name))


def _on_agent_active(session: Session, event: InboundEvent, ctx: FlowContext, agent_name: Optional[str]) -> Decision:
    agent = event.sender_number
    if event.word in AGENT_CLOSE_WORDS:
        decision = _close(session, Decision(reason="agent_closed"), with_survey=True)
        decision.say_with_protocol(agent, lambda code: replies.agent_closed(session.citizen_name, code))
        decision.promote_queue_for = session.agent_key
        return decision

    if event.word in AGENT_HELP_WORDS:
        return Decision().say(agent, replies.agent_active_help(session.citizen_name, ctx.menu))

    transfer = TRANSFER_RE.match(event.clean_text)
    if transfer:
        option = ctx.option(int(transfer.group(1)))
        if option is None:
            return Decision().say(agent, replies.invalid_transfer(ctx.menu))
        decision = Decision()
        decision.say(session.citizen_number, replies.transferred_citizen(option.name))
        decision = route_to_department(session, option, ctx, decision)
        decision.reason = f"transfer_{decision.reason}"
        decision.say(agent, replies.transferred_agent(session.citizen_name, option.name))
        if agent_key(option.responsible_number) != session.agent_key:
            decision.promote_queue_for = session.agent_key
        return decision

    name = session.agent_name or agent_name
    decision = Decision()
    decision.outbound.append(
        _relay(event, session.citizen_number, lambda text: replies.relay_from_agent(name, text))
    )
    return decision


def decide_agent(session: Session, event: InboundEvent, ctx: FlowContext, agent_name: Optional[str] = None) -> Decision:
    """Next step for a message sent by the agent bound to `session`."""
    if session.status == CaseStatus.WAITING_AGENT_CONFIRMATION:
        return _on_agent_waiting(session, event, ctx, agent_name)
    if session.status == CaseStatus.ACTIVE:
        return _on_agent_active(session, event, ctx, agent_name)
    return Decision().say(event.sender_number, replies.AGENT_NO_CASE)


# Timed decisions


def decide_reminder(session: Session, ctx: FlowContext, max_reminders: int) -> Decision:
    """Remind the agent of a waiting case, or give up and offer the citizen a recado."""
    department = ctx.department_name(session.department_id)
    if session.reminder_count < max_reminders:
        count = session.reminder_count + 1
        decision = Decision(
            updates={"reminder_count": count, "last_reminder_at": ctx.now},
            reason="agent_reminder",
        )
        if session.agent_number:
            decision.say(session.agent_number, replies.agent_reminder(session.citizen_name, department, count))
        return decision

    decision = Decision(status=CaseStatus.LEAVE_MESSAGE_DECISION, reason="agent_unresponsive")
    decision.say(session.citizen_number, replies.agent_unavailable(department))
    if session.agent_number:
        decision.say(session.agent_number, replies.agent_moved_to_messages(session.citizen_name))
    decision.promote_queue_for = session.agent_key
    return decision


def decide_promotion(session: Session, ctx: FlowContext) -> Decision:
    """Move the head of an agent's queue to confirmation."""
    department = ctx.department_name(session.department_id)
    decision = Decision(
        status=CaseStatus.WAITING_AGENT_CONFIRMATION,
        updates={"routed_at": ctx.now, "reminder_count": 0, "last_reminder_at": None},
        reason="queue_promoted",
    )
    decision.say(session.citizen_number, replies.queue_turn(department))
    if session.agent_number:
        decision.say(
            session.agent_number,
            replies.agent_confirmation_prompt(session.citizen_name, session.citizen_number, department),
        )
    return decision


def decide_idle_close(session: Session) -> Decision:
    decision = Decision(status=CaseStatus.FINISHED, close=True, reason="idle_timeout")
    return decision.say_with_protocol(session.citizen_number, replies.idle_closed)

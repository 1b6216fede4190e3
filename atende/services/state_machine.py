from enum import Enum


class CaseStatus(str, Enum):
    ASK_NAME = "ASK_NAME"
    ASK_DEPARTMENT = "ASK_DEPARTMENT"
    WAITING_AGENT_CONFIRMATION = "WAITING_AGENT_CONFIRMATION"
    ACTIVE = "ACTIVE"
    IN_QUEUE = "IN_QUEUE"
    ASK_ANOTHER_DEPARTMENT = "ASK_ANOTHER_DEPARTMENT"
    LEAVE_MESSAGE_DECISION = "LEAVE_MESSAGE_DECISION"
    LEAVE_MESSAGE = "LEAVE_MESSAGE"
    FINISHED = "FINISHED"


# Outcomes of routing a case to a department.
_ROUTED = [
    CaseStatus.WAITING_AGENT_CONFIRMATION,
    CaseStatus.IN_QUEUE,
    CaseStatus.ASK_ANOTHER_DEPARTMENT,
    CaseStatus.LEAVE_MESSAGE_DECISION,
]

VALID_TRANSITIONS = {
    CaseStatus.ASK_NAME: [CaseStatus.ASK_DEPARTMENT],
    CaseStatus.ASK_DEPARTMENT: [*_ROUTED, CaseStatus.FINISHED],
    CaseStatus.WAITING_AGENT_CONFIRMATION: [
        CaseStatus.ACTIVE,
        CaseStatus.LEAVE_MESSAGE_DECISION,
        CaseStatus.FINISHED,
    ],
    CaseStatus.IN_QUEUE: [CaseStatus.WAITING_AGENT_CONFIRMATION, CaseStatus.FINISHED],
    CaseStatus.ACTIVE: [*_ROUTED, CaseStatus.FINISHED],
    CaseStatus.ASK_ANOTHER_DEPARTMENT: [
        CaseStatus.ASK_DEPARTMENT,
        CaseStatus.LEAVE_MESSAGE,
        CaseStatus.FINISHED,
    ],
    CaseStatus.LEAVE_MESSAGE_DECISION: [
        CaseStatus.LEAVE_MESSAGE,
        CaseStatus.ASK_DEPARTMENT,
        CaseStatus.FINISHED,
    ],
    CaseStatus.LEAVE_MESSAGE: [CaseStatus.FINISHED],
    CaseStatus.FINISHED: [],
}

OPEN_STATUSES = [status for status in CaseStatus if status != CaseStatus.FINISHED]
AGENT_BOUND_STATUSES = [CaseStatus.ACTIVE, CaseStatus.WAITING_AGENT_CONFIRMATION]


class InvalidTransitionError(Exception):
    def __init__(self, from_state: CaseStatus, to_state: CaseStatus):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: CaseStatus, to_state: CaseStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: CaseStatus, to_state: CaseStatus) -> CaseStatus:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def is_terminal(state: CaseStatus) -> bool:
    return state == CaseStatus.FINISHED


def is_valid_path(states: list[CaseStatus]) -> bool:
    """Check that a status sequence starts at ASK_NAME and follows the graph."""
    if not states or states[0] != CaseStatus.ASK_NAME:
        return False
    return all(can_transition(prev, nxt) for prev, nxt in zip(states, states[1:]))

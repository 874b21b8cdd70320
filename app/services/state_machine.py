from enum import Enum


class SessionStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    CLOSED = "closed"


class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


# closed is terminal: no reopen
VALID_TRANSITIONS = {
    SessionStatus.UNINITIALIZED: [SessionStatus.ACTIVE],
    SessionStatus.ACTIVE: [SessionStatus.CLOSED],
    SessionStatus.CLOSED: [],
}

# delivery status only moves forward
VALID_MESSAGE_TRANSITIONS = {
    MessageStatus.SENT: [MessageStatus.DELIVERED, MessageStatus.READ],
    MessageStatus.DELIVERED: [MessageStatus.READ],
    MessageStatus.READ: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: Enum, to_state: Enum):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: SessionStatus, to_state: SessionStatus) -> bool:
    """Check if session transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: SessionStatus, to_state: SessionStatus) -> SessionStatus:
    """Perform session transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def activate(current_state: SessionStatus) -> SessionStatus:
    """First visitor contact: the session becomes active."""
    return transition(current_state, SessionStatus.ACTIVE)


def close(current_state: SessionStatus) -> SessionStatus:
    """Administrator closes the session."""
    return transition(current_state, SessionStatus.CLOSED)


def can_advance_message(from_status: MessageStatus, to_status: MessageStatus) -> bool:
    return to_status in VALID_MESSAGE_TRANSITIONS.get(from_status, [])

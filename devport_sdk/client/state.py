"""Session state store.

:class:`SessionState` is the single source of truth for everything a
collaborator displays: connection state, the active session and its
messages, the generating flag, pending prompts and the error slot.
Collaborators read it; only the client mutates it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from devport_sdk.errors import DevportError
from devport_sdk.models import Message, PermissionRequest, SessionInfo, UserQuestion


class ConnectionState(str, Enum):
    """Connection state machine.

    States:
        DISCONNECTED: No socket. Initial and terminal state.
        CONNECTING: Socket open in progress.
        CONNECTED: Socket open, ``auth`` call in flight.
        AUTHENTICATED: Ready for session calls.

    Transitions:
        DISCONNECTED -> CONNECTING -> CONNECTED -> AUTHENTICATED
        any -> DISCONNECTED (close or failure)
    """
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"


@dataclass
class SessionState:
    """Observable client state.

    Attributes:
        connection_state: Current connection state.
        error: Last surfaced error, cleared by ``clear_error()``.
        endpoint: WebSocket URL of the current connection.
        session_id: Active session, if any.
        sessions: Sessions known from ``session.list`` / ``session.create``.
        messages: Ordered conversation of the active session.
        generating: True while the agent produces output for the session.
        last_message_id: Last message known to the client, the gap
            recovery cursor.
        pending_permission: Unanswered permission prompt.
        pending_question: Unanswered question prompt.
        in_flight: The assistant message currently being streamed.
    """
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    error: Optional[DevportError] = None
    endpoint: Optional[str] = None
    session_id: Optional[str] = None
    sessions: List[SessionInfo] = field(default_factory=list)
    messages: List[Message] = field(default_factory=list)
    generating: bool = False
    last_message_id: Optional[str] = None
    pending_permission: Optional[PermissionRequest] = None
    pending_question: Optional[UserQuestion] = None
    in_flight: Optional[Message] = field(default=None, repr=False)

    @property
    def is_authenticated(self) -> bool:
        return self.connection_state is ConnectionState.AUTHENTICATED

    def find_message(self, message_id: str) -> Optional[Message]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def drop_prompts(self) -> None:
        """Discard unanswered prompts without answering them."""
        self.pending_permission = None
        self.pending_question = None

    def reset_conversation(self) -> None:
        """Forget the active session's conversation."""
        self.messages = []
        self.in_flight = None
        self.generating = False
        self.last_message_id = None
        self.drop_prompts()


__all__ = ["ConnectionState", "SessionState"]

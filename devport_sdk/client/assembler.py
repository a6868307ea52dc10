"""Stream assembly.

Builds the in-flight assistant message from streamed chat events. A turn
opens on its first text or tool-call event and closes on ``chat.done``
or ``chat.interrupted``; at most one turn is open per session.
"""

import logging
from typing import Any, Optional

from devport_sdk.client.state import SessionState
from devport_sdk.models import Message, ToolCall, ToolCallStatus

logger = logging.getLogger(__name__)


def open_turn(state: SessionState, message_id: Optional[str] = None) -> Message:
    """Return the in-flight message, creating and appending it if needed."""
    if state.in_flight is None:
        message = Message.assistant(message_id)
        state.messages.append(message)
        state.in_flight = message
        logger.debug("Opened assistant turn %s", message.id)
    state.generating = True
    return state.in_flight


def append_text(state: SessionState, fragment: str, message_id: Optional[str] = None) -> None:
    """Append a text fragment in arrival order."""
    message = open_turn(state, message_id)
    message.content += fragment


def add_tool_call(
    state: SessionState,
    tool_use_id: str,
    name: str,
    tool_input: Any = None,
    message_id: Optional[str] = None,
) -> ToolCall:
    """Record a new pending tool call on the in-flight message."""
    message = open_turn(state, message_id)
    tool_call = ToolCall(id=tool_use_id, name=name, input=tool_input)
    message.tool_calls.append(tool_call)
    return tool_call


def complete_tool_call(
    state: SessionState,
    tool_use_id: str,
    output: Optional[str],
    is_error: bool = False,
) -> bool:
    """Attach a result to a pending tool call of the in-flight message.

    Returns:
        True if a tool call changed. Unknown ids, a closed turn and
        already-finished calls leave everything untouched.
    """
    if state.in_flight is None:
        logger.debug("Tool result %s outside an open turn, ignored", tool_use_id)
        return False

    tool_call = state.in_flight.find_tool_call(tool_use_id)
    if tool_call is None:
        logger.debug("Tool result for unknown tool call %s, ignored", tool_use_id)
        return False
    if tool_call.status.is_terminal:
        return False

    tool_call.output = output
    tool_call.status = ToolCallStatus.ERROR if is_error else ToolCallStatus.COMPLETED
    return True


def close_turn(state: SessionState) -> Optional[str]:
    """Finish the open turn and advance the gap-recovery cursor.

    Returns:
        The finished message id, or None if no turn was open.
    """
    message = state.in_flight
    state.in_flight = None
    state.generating = False
    if message is None:
        return None
    state.last_message_id = message.id
    return message.id


def abort_turn(state: SessionState) -> None:
    """Stop streaming into the open turn; partial content stays."""
    state.in_flight = None
    state.generating = False


__all__ = [
    "abort_turn",
    "add_tool_call",
    "append_text",
    "close_turn",
    "complete_tool_call",
    "open_turn",
]

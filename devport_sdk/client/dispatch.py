"""Notification dispatch.

Server push frames are routed by method name through
:data:`NOTIFICATION_HANDLERS`, a table of plain functions that take the
state and the notification params. Notifications for any session other
than the active one never reach a handler.
"""

import logging
from typing import Any, Callable, Dict

from devport_sdk.client import assembler
from devport_sdk.client.state import SessionState
from devport_sdk.errors import RemoteError
from devport_sdk.models import Message, PermissionRequest, UserQuestion
from devport_sdk.protocol import NotificationMethod, is_notification

logger = logging.getLogger(__name__)


Handler = Callable[[SessionState, Dict[str, Any]], bool]


def _on_text(state: SessionState, params: Dict[str, Any]) -> bool:
    content = params.get("content") or ""
    assembler.append_text(state, str(content), params.get("message_id"))
    return True


def _on_tool_call(state: SessionState, params: Dict[str, Any]) -> bool:
    assembler.add_tool_call(
        state,
        tool_use_id=str(params.get("tool_use_id", "")),
        name=params.get("tool_name", ""),
        tool_input=params.get("input"),
        message_id=params.get("message_id"),
    )
    return True


def _on_tool_result(state: SessionState, params: Dict[str, Any]) -> bool:
    return assembler.complete_tool_call(
        state,
        tool_use_id=str(params.get("tool_use_id", "")),
        output=params.get("output"),
        is_error=bool(params.get("is_error", False)),
    )


def _on_permission_request(state: SessionState, params: Dict[str, Any]) -> bool:
    state.pending_permission = PermissionRequest.from_params(params)
    return True


def _on_ask_user_question(state: SessionState, params: Dict[str, Any]) -> bool:
    state.pending_question = UserQuestion.from_params(params)
    return True


def _on_done(state: SessionState, params: Dict[str, Any]) -> bool:
    assembler.close_turn(state)
    return True


def _on_error(state: SessionState, params: Dict[str, Any]) -> bool:
    state.generating = False
    state.error = RemoteError(params.get("error") or "Unknown error")
    return True


def _on_interrupted(state: SessionState, params: Dict[str, Any]) -> bool:
    assembler.abort_turn(state)
    return True


def _on_system(state: SessionState, params: Dict[str, Any]) -> bool:
    state.messages.append(Message.system(params.get("message") or ""))
    return True


NOTIFICATION_HANDLERS: Dict[str, Handler] = {
    NotificationMethod.TEXT.value: _on_text,
    NotificationMethod.TOOL_CALL.value: _on_tool_call,
    NotificationMethod.TOOL_RESULT.value: _on_tool_result,
    NotificationMethod.PERMISSION_REQUEST.value: _on_permission_request,
    NotificationMethod.ASK_USER_QUESTION.value: _on_ask_user_question,
    NotificationMethod.DONE.value: _on_done,
    NotificationMethod.ERROR.value: _on_error,
    NotificationMethod.INTERRUPTED.value: _on_interrupted,
    NotificationMethod.SYSTEM.value: _on_system,
}


def dispatch_notification(state: SessionState, frame: Dict[str, Any]) -> bool:
    """Apply one notification frame to the state.

    Returns:
        True if the state changed.
    """
    if not is_notification(frame):
        logger.debug("Ignoring frame that is not a notification: %r", frame.get("method"))
        return False

    method = frame["method"]
    params = frame.get("params")
    if not isinstance(params, dict):
        params = {}

    session_id = params.get("session_id")
    if state.session_id is None or session_id != state.session_id:
        logger.debug("Dropping %s for inactive session %s", method, session_id)
        return False

    handler = NOTIFICATION_HANDLERS.get(method)
    if handler is None:
        logger.debug("Ignoring unknown notification %s", method)
        return False

    return handler(state, params)


__all__ = ["NOTIFICATION_HANDLERS", "dispatch_notification"]

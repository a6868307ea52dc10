"""Wire Protocol for the Devport agent server.

This module defines the JSON-RPC 2.0 vocabulary spoken over the
WebSocket connection.

Frame Flow:
    Client -> Server: Requests ``{jsonrpc, method, params, id}``
    Server -> Client: Responses ``{id, result}`` / ``{id, error}``
    Server -> Client: Notifications ``{method, params}`` (no ``id``)

Protocol Version: 2.0
"""

import json
from enum import Enum
from typing import Any, Dict, Optional


JSONRPC_VERSION = "2.0"


# =============================================================================
# Methods
# =============================================================================

class RPCMethod(str, Enum):
    """Client -> Server request methods."""

    AUTH = "auth"

    # Session management
    SESSION_CREATE = "session.create"
    SESSION_LIST = "session.list"

    # Chat
    CHAT_ATTACH = "chat.attach"
    CHAT_MESSAGE = "chat.message"
    CHAT_INTERRUPT = "chat.interrupt"

    # Interactive prompts
    PERMISSION_RESPONSE = "chat.permission_response"
    QUESTION_RESPONSE = "chat.question_response"


class NotificationMethod(str, Enum):
    """Server -> Client push notifications."""

    # Streaming output
    TEXT = "chat.text"
    TOOL_CALL = "chat.tool_call"
    TOOL_RESULT = "chat.tool_result"

    # Interactive prompts
    PERMISSION_REQUEST = "chat.permission_request"
    ASK_USER_QUESTION = "chat.ask_user_question"

    # Turn lifecycle
    DONE = "chat.done"
    ERROR = "chat.error"
    INTERRUPTED = "chat.interrupted"

    # System messages
    SYSTEM = "chat.system"


# =============================================================================
# Error Codes
# =============================================================================

class ErrorCode(int, Enum):
    """JSON-RPC error codes returned by the server."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL = -32603
    AUTH_FAILED = -32001
    UNAUTHORIZED = -32002
    SESSION_NOT_FOUND = -32003


# =============================================================================
# Frame Helpers
# =============================================================================

def build_request(method: str, params: Optional[Dict[str, Any]], request_id: int) -> Dict[str, Any]:
    """Build a request frame."""
    if isinstance(method, Enum):
        method = method.value
    return {
        "jsonrpc": JSONRPC_VERSION,
        "method": method,
        "params": params if params is not None else {},
        "id": request_id,
    }


def is_response(frame: Dict[str, Any]) -> bool:
    """True for frames answering one of our requests."""
    return frame.get("id") is not None and "method" not in frame


def is_notification(frame: Dict[str, Any]) -> bool:
    """True for server push frames (a method and no id)."""
    return frame.get("id") is None and isinstance(frame.get("method"), str)


def encode_frame(frame: Dict[str, Any]) -> str:
    """Serialize a frame to its wire form."""
    return json.dumps(frame, separators=(",", ":"))


def decode_frame(raw: Any) -> Dict[str, Any]:
    """Parse a wire frame.

    Raises:
        ValueError: If the payload is not a JSON object.
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    frame = json.loads(raw)
    if not isinstance(frame, dict):
        raise ValueError(f"Expected a JSON object, got {type(frame).__name__}")
    return frame


__all__ = [
    "ErrorCode",
    "JSONRPC_VERSION",
    "NotificationMethod",
    "RPCMethod",
    "build_request",
    "decode_frame",
    "encode_frame",
    "is_notification",
    "is_response",
]

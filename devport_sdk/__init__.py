"""Devport SDK - Realtime client for the Devport coding agent server.

Usage:
    from devport_sdk.client import DevportClient
    from devport_sdk.models import Message, ToolCallStatus
"""

from devport_sdk.client import (
    DevportClient,
    ConnectionState,
    SessionState,
    RecoveryConfig,
)
from devport_sdk.errors import (
    DevportError,
    NotConnected,
    ConnectionLost,
    AuthenticationFailed,
    ReconnectExhausted,
    RemoteError,
)
from devport_sdk.models import (
    Message,
    Role,
    SessionInfo,
    ToolCall,
    ToolCallStatus,
)
from devport_sdk.trace import (
    trace,
    trace_write,
    resolve_trace_path,
)

__version__ = "0.1.0"

__all__ = [
    # Client
    "DevportClient",
    "ConnectionState",
    "SessionState",
    "RecoveryConfig",
    # Errors
    "DevportError",
    "NotConnected",
    "ConnectionLost",
    "AuthenticationFailed",
    "ReconnectExhausted",
    "RemoteError",
    # Models
    "Message",
    "Role",
    "SessionInfo",
    "ToolCall",
    "ToolCallStatus",
    # Trace
    "trace",
    "trace_write",
    "resolve_trace_path",
]

"""Devport SDK client implementations."""

from devport_sdk.client.core import DevportClient
from devport_sdk.client.state import ConnectionState, SessionState
from devport_sdk.client.recovery import ConnectionStatus, ReconnectionSupervisor
from devport_sdk.client.transport import Transport, WebSocketTransport
from devport_sdk.client.config import (
    ClientConfig,
    FallbackConfig,
    RecoveryConfig,
    load_client_config,
    get_recovery_config,
)

__all__ = [
    "DevportClient",
    "ConnectionState",
    "SessionState",
    "ConnectionStatus",
    "ReconnectionSupervisor",
    "Transport",
    "WebSocketTransport",
    "ClientConfig",
    "FallbackConfig",
    "RecoveryConfig",
    "load_client_config",
    "get_recovery_config",
]

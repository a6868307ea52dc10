"""Exception taxonomy for the Devport client.

Every error raised by the SDK derives from :class:`DevportError`, so
collaborators can catch one type and show ``str(error)`` in their error
slot. The subclasses mirror the failure modes of the realtime session:

- :class:`NotConnected`: a call was attempted without an open socket.
- :class:`ConnectionLost`: a pending call was rejected because the socket closed.
- :class:`AuthenticationFailed`: the server rejected the credential (terminal).
- :class:`ReconnectExhausted`: automatic reconnection gave up (terminal).
- :class:`RemoteError`: the server answered a request with an error object.
- :class:`SyncFailed`: gap recovery failed (logged, never surfaced).
- :class:`HttpStatusError`: the HTTP surface returned a non-2xx status.
"""

from typing import Any, Optional


class DevportError(Exception):
    """Base exception for all Devport client errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotConnected(DevportError):
    """Raised when sending without an open connection."""

    def __init__(self, message: str = "Not connected") -> None:
        super().__init__(message)


class ConnectionLost(DevportError):
    """Raised for pending requests when the connection closes under them."""

    def __init__(self, message: str = "Connection lost") -> None:
        super().__init__(message)


class AuthenticationFailed(DevportError):
    """Raised when the ``auth`` call is rejected. Never retried."""

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message)


class ReconnectExhausted(DevportError):
    """Raised (and surfaced) when the reconnection budget is spent."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Failed to reconnect after {attempts} attempts")
        self.attempts = attempts


class RemoteError(DevportError):
    """An error object returned by the server, message kept verbatim."""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


class SyncFailed(DevportError):
    """Gap recovery could not fetch missed messages."""


class HttpStatusError(DevportError):
    """The HTTP surface answered with an error status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


__all__ = [
    "AuthenticationFailed",
    "ConnectionLost",
    "DevportError",
    "HttpStatusError",
    "NotConnected",
    "ReconnectExhausted",
    "RemoteError",
    "SyncFailed",
]

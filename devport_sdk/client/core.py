"""Realtime client for the Devport agent server.

Maintains one authenticated WebSocket session with the server, keeps the
conversation of the active session in a :class:`SessionState`, and
recovers the session automatically after an unexpected disconnect.

Usage:
    from devport_sdk.client import DevportClient

    client = DevportClient()
    client.subscribe(lambda state: render(state))

    await client.connect("ws://localhost:8080/ws", token)
    session = await client.create_session("Refactor parser")
    await client.attach_session(session.id)
    await client.send_message("Hello!")

    # state.messages fills in as the agent streams its answer
    ...
    await client.disconnect()
"""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx

from devport_sdk.client import assembler
from devport_sdk.client.config import ClientConfig, load_client_config
from devport_sdk.client.dispatch import dispatch_notification
from devport_sdk.client.fallback import HttpDelivery, HttpFallback, SocketDelivery, http_base_url
from devport_sdk.client.recovery import ConnectionStatus, ReconnectionSupervisor, SleepFn, StatusCallback
from devport_sdk.client.rpc import RPCCorrelator
from devport_sdk.client.state import ConnectionState, SessionState
from devport_sdk.client.transport import Transport, WebSocketTransport
from devport_sdk.errors import (
    AuthenticationFailed,
    ConnectionLost,
    DevportError,
    NotConnected,
    RemoteError,
    SyncFailed,
)
from devport_sdk.models import Message, SessionInfo
from devport_sdk.protocol import RPCMethod, decode_frame
from devport_sdk.trace import trace

logger = logging.getLogger(__name__)


DEFAULT_SESSION_TITLE = "New Chat"

StateListener = Callable[[SessionState], None]
TransportFactory = Callable[[], Transport]


class DevportClient:
    """Client for a Devport agent server.

    All connection state lives on the instance, so independent clients
    can run side by side. Collaborators read :attr:`state` and call the
    action methods; nothing else writes to the state.

    Attributes:
        state: Observable session state.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        workspace_path: Optional[Path] = None,
        transport_factory: Optional[TransportFactory] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        on_status_change: Optional[StatusCallback] = None,
        sleep: Optional[SleepFn] = None,
    ):
        """Initialize the client.

        Args:
            config: Client configuration. If None, loads from config files
                and environment variables.
            workspace_path: Workspace for project-level config lookup.
            transport_factory: Builds a fresh transport per connection
                attempt. Defaults to :class:`WebSocketTransport`.
            http_transport: Optional httpx transport for the HTTP surface.
            on_status_change: Receives reconnection progress updates.
            sleep: Awaitable used for reconnection backoff.
        """
        if config is None:
            config = load_client_config(workspace_path)
        self._config = config
        self._transport_factory = transport_factory or WebSocketTransport
        self._http_transport = http_transport

        self.state = SessionState()
        self._listeners: List[StateListener] = []

        # Connection
        self._transport: Optional[Transport] = None
        self._rpc = RPCCorrelator()
        self._endpoint: Optional[str] = None
        self._credential: Optional[str] = None
        self._closed_by_user = False
        self._http: Optional[HttpFallback] = None

        self._supervisor = ReconnectionSupervisor(
            config.recovery,
            reconnect=self._reconnect,
            on_exhausted=self._on_recovery_failed,
            on_status_change=on_status_change,
            get_state=lambda: self.state.connection_state,
            get_session_id=lambda: self.state.session_id,
            sleep=sleep,
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def supervisor(self) -> ReconnectionSupervisor:
        return self._supervisor

    @property
    def connection_state(self) -> ConnectionState:
        return self.state.connection_state

    @property
    def is_connected(self) -> bool:
        return self.state.is_authenticated

    @property
    def session_id(self) -> Optional[str]:
        return self.state.session_id

    @property
    def messages(self) -> List[Message]:
        return self.state.messages

    def get_status(self) -> ConnectionStatus:
        """Current connection and reconnection status."""
        return self._supervisor.get_status()

    # =========================================================================
    # Observation
    # =========================================================================

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener(state)`` after every state change.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception as e:
                logger.warning("Error in state listener: %s", e)

    def _surface(self, error: DevportError) -> None:
        logger.warning("%s: %s", type(error).__name__, error)
        self.state.error = error

    def clear_error(self) -> None:
        self.state.error = None
        self._emit()

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def connect(self, endpoint: str, credential: str) -> None:
        """Open the socket and authenticate.

        Cancels any scheduled reconnection first.

        Raises:
            NotConnected: The socket could not be opened.
            AuthenticationFailed: The server rejected the credential.
            ConnectionLost: The socket closed during authentication.
        """
        await self._supervisor.cancel()
        self._supervisor.reset()
        self._closed_by_user = False

        if (endpoint, credential) != (self._endpoint, self._credential):
            await self._close_http()
        self._endpoint = endpoint
        self._credential = credential
        self.state.endpoint = endpoint
        self.state.error = None

        try:
            await self._open_and_authenticate()
        except DevportError as e:
            self._surface(e)
            self._emit()
            raise

    async def disconnect(self) -> None:
        """Close the connection for good.

        Cancels any scheduled reconnection and clears the active session.
        """
        self._closed_by_user = True
        await self._supervisor.cancel()
        await self._drop_transport("Disconnected")
        await self._close_http()

        self._endpoint = None
        self._credential = None
        self.state.connection_state = ConnectionState.DISCONNECTED
        self.state.endpoint = None
        self.state.session_id = None
        self.state.reset_conversation()
        logger.info("Disconnected")
        self._emit()

    async def __aenter__(self) -> "DevportClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    def _set_connection_state(self, new_state: ConnectionState) -> None:
        old_state = self.state.connection_state
        if old_state is new_state:
            return
        self.state.connection_state = new_state
        logger.debug("Connection state: %s -> %s", old_state.value, new_state.value)
        self._emit()

    async def _open_and_authenticate(self) -> None:
        """Run connect steps: open the socket, then ``auth``."""
        await self._drop_transport("Reconnecting")
        self._set_connection_state(ConnectionState.CONNECTING)

        transport = self._transport_factory()
        transport.on_frame(self._handle_frame)
        transport.on_close(lambda reason: self._handle_close(transport, reason))

        try:
            await transport.open(self._endpoint, timeout=self._config.recovery.connection_timeout)
        except Exception as e:
            self._set_connection_state(ConnectionState.DISCONNECTED)
            raise NotConnected(f"Connection failed: {e}") from e

        self._transport = transport
        self._set_connection_state(ConnectionState.CONNECTED)

        try:
            await self._rpc.call(transport, RPCMethod.AUTH.value, {"token": self._credential})
        except RemoteError as e:
            await self._drop_transport("Authentication failed")
            self._set_connection_state(ConnectionState.DISCONNECTED)
            raise AuthenticationFailed(f"Authentication failed: {e.message}") from e
        except DevportError:
            await self._drop_transport("Authentication interrupted")
            self._set_connection_state(ConnectionState.DISCONNECTED)
            raise

        self._set_connection_state(ConnectionState.AUTHENTICATED)
        logger.info("Authenticated with %s", self._endpoint)
        trace("client", f"authenticated with {self._endpoint}")

    async def _drop_transport(self, reason: str) -> None:
        transport = self._transport
        self._transport = None
        if transport is not None:
            await transport.close()
        self._rpc.reject_all(reason)

    async def _close_http(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    # =========================================================================
    # Inbound Frames
    # =========================================================================

    def _handle_frame(self, raw: str) -> None:
        """Route one inbound frame: responses first, then notifications."""
        try:
            frame = decode_frame(raw)
        except ValueError as e:
            logger.warning("Dropping malformed frame: %s", e)
            return

        if self._rpc.handle_response(frame):
            return

        if dispatch_notification(self.state, frame):
            self._emit()

    def _handle_close(self, transport: Transport, reason: Optional[str]) -> None:
        """React to the socket closing without an explicit disconnect."""
        if transport is not self._transport:
            return

        was_authenticated = self.state.is_authenticated
        self._transport = None
        logger.info("Connection closed: %s", reason or "no reason given")
        trace("client", f"closed: {reason or 'no reason given'}")

        self.state.connection_state = ConnectionState.DISCONNECTED
        self._rpc.reject_all(f"Connection lost: {reason}" if reason else "Connection lost")
        assembler.abort_turn(self.state)

        if was_authenticated and not self._closed_by_user:
            if not self._supervisor.schedule() and not self._supervisor.is_running:
                self._surface(ConnectionLost(f"Connection lost: {reason}" if reason else "Connection lost"))
        self._emit()

    # =========================================================================
    # Recovery
    # =========================================================================

    async def _reconnect(self) -> None:
        """One reconnection attempt: connect, re-attach, then gap recovery."""
        session_id = self.state.session_id
        await self._open_and_authenticate()

        try:
            if session_id and self._config.recovery.reattach_session:
                logger.info("Reattaching to session %s", session_id)
                try:
                    result = await self._call(RPCMethod.CHAT_ATTACH.value, {"session_id": session_id})
                    self._apply_attach(session_id, result)
                except RemoteError as e:
                    self._surface(e)
                    self._emit()
                else:
                    self._emit()
                    await self.sync_messages()

            if not self.state.is_authenticated:
                raise ConnectionLost("Connection lost during session recovery")
        except Exception:
            await self._drop_transport("Recovery attempt failed")
            self._set_connection_state(ConnectionState.DISCONNECTED)
            raise

    async def _on_recovery_failed(self, error: DevportError) -> None:
        """Tear the connection down after recovery gives up for good."""
        self._surface(error)
        await self._drop_transport(str(error))
        self._set_connection_state(ConnectionState.DISCONNECTED)
        await self._close_http()
        self._endpoint = None
        self._credential = None
        self._emit()

    # =========================================================================
    # Session Management
    # =========================================================================

    async def _call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._rpc.call(self._transport, method, params)

    async def create_session(self, title: Optional[str] = None) -> SessionInfo:
        """Create a session on the server.

        Raises:
            DevportError: If the call fails.
        """
        result = await self._call(RPCMethod.SESSION_CREATE.value, {
            "title": title or DEFAULT_SESSION_TITLE,
        })
        data = result.get("session") if isinstance(result, dict) else None
        if not isinstance(data, dict):
            raise RemoteError("Malformed session.create response")

        session = SessionInfo.from_dict(data)
        self.state.sessions.append(session)
        self._emit()
        return session

    async def load_sessions(self) -> List[SessionInfo]:
        """Refresh :attr:`SessionState.sessions` from the server."""
        try:
            result = await self._call(RPCMethod.SESSION_LIST.value, {})
        except DevportError as e:
            self._surface(e)
            self._emit()
            return self.state.sessions

        sessions = result.get("sessions") if isinstance(result, dict) else None
        self.state.sessions = [SessionInfo.from_dict(s) for s in (sessions or []) if isinstance(s, dict)]
        self._emit()
        return self.state.sessions

    async def attach_session(self, session_id: str) -> bool:
        """Make ``session_id`` the active session.

        Returns:
            True on success. Failures are surfaced in the error slot.
        """
        try:
            result = await self._call(RPCMethod.CHAT_ATTACH.value, {"session_id": session_id})
            self._apply_attach(session_id, result)
        except DevportError as e:
            self._surface(e)
            self._emit()
            return False

        self._emit()
        return True

    def _apply_attach(self, session_id: str, result: Any) -> None:
        """Install the attach response as the active conversation.

        Prompts and the in-flight message of the previous state are
        dropped. History, when present, replaces the message list; without
        history a re-attach to the same session keeps its messages.
        """
        state = self.state
        switching = state.session_id != session_id
        history = result.get("history") if isinstance(result, dict) else None

        messages = None
        if isinstance(history, list):
            try:
                messages = [Message.from_dict(h) for h in history if isinstance(h, dict)]
            except (TypeError, ValueError, AttributeError) as e:
                raise RemoteError(f"Malformed chat.attach history: {e}") from e

        state.in_flight = None
        state.drop_prompts()
        if switching:
            state.generating = False

        if messages is not None:
            state.messages = messages
            state.last_message_id = messages[-1].id if messages else None
        elif switching:
            state.messages = []
            state.last_message_id = None

        state.session_id = session_id
        logger.debug("Attached to session %s (%d messages)", session_id, len(state.messages))

    async def sync_messages(self) -> int:
        """Fetch messages created after :attr:`SessionState.last_message_id`.

        Best effort: failures are logged and swallowed.

        Returns:
            Number of messages appended.
        """
        session_id = self.state.session_id
        if not session_id or self._endpoint is None:
            return 0

        try:
            entries = await self._get_http().fetch_messages(
                session_id, after=self.state.last_message_id,
            )
            fetched = [Message.from_dict(entry) for entry in entries]
        except Exception as e:
            logger.warning("%s", SyncFailed(f"Message sync failed: {e}"))
            trace("client", f"sync failed for {session_id}: {e}")
            return 0

        if self.state.session_id != session_id:
            return 0

        appended = 0
        for message in fetched:
            if self.state.find_message(message.id) is not None:
                continue
            self.state.messages.append(message)
            self.state.last_message_id = message.id
            appended += 1

        if appended:
            logger.info("Recovered %d message(s) for session %s", appended, session_id)
            self._emit()
        return appended

    # =========================================================================
    # Actions
    # =========================================================================

    def _get_http(self) -> HttpFallback:
        if self._http is None:
            if self._endpoint is None:
                raise NotConnected("No endpoint configured")
            self._http = HttpFallback(
                http_base_url(self._endpoint),
                self._credential or "",
                timeout=self._config.fallback.timeout,
                transport=self._http_transport,
            )
        return self._http

    def _delivery(self):
        """Pick socket or HTTP delivery for an action."""
        if (
            self.state.is_authenticated
            or not self._config.fallback.enabled
            or self._endpoint is None
        ):
            return SocketDelivery(self._call)
        logger.debug("Socket unavailable, delivering over HTTP")
        return HttpDelivery(self._get_http())

    async def send_message(self, content: str) -> bool:
        """Send a user message to the active session.

        The user message is appended before the server acknowledges it and
        is kept even if delivery fails.

        Returns:
            True if the server accepted the message.
        """
        session_id = self.state.session_id
        if not session_id:
            logger.warning("send_message called without an active session")
            return False

        self.state.messages.append(Message.user(content))
        self.state.generating = True
        self._emit()

        try:
            await self._delivery().send_message(session_id, content)
        except DevportError as e:
            self.state.generating = False
            self._surface(e)
            self._emit()
            return False
        return True

    async def interrupt(self) -> bool:
        """Ask the agent to stop the current turn.

        ``generating`` is cleared by the ``chat.interrupted`` notification,
        not by this call.
        """
        session_id = self.state.session_id
        if not session_id:
            return False

        try:
            await self._delivery().interrupt(session_id)
        except DevportError as e:
            self._surface(e)
            self._emit()
            return False
        return True

    async def respond_to_permission(self, allowed: bool) -> bool:
        """Answer the pending permission prompt.

        No-op when nothing is pending. On failure the prompt stays so the
        UI can retry.
        """
        session_id = self.state.session_id
        pending = self.state.pending_permission
        if not session_id or pending is None:
            return False

        try:
            await self._delivery().respond_to_permission(session_id, pending.permission_id, allowed)
        except DevportError as e:
            self._surface(e)
            self._emit()
            return False

        if self.state.pending_permission is pending:
            self.state.pending_permission = None
        self._emit()
        return True

    async def respond_to_question(self, answer: str) -> bool:
        """Answer the pending question prompt.

        No-op when nothing is pending. On failure the prompt stays so the
        UI can retry.
        """
        session_id = self.state.session_id
        pending = self.state.pending_question
        if not session_id or pending is None:
            return False

        try:
            await self._delivery().respond_to_question(session_id, pending.question_id, answer)
        except DevportError as e:
            self._surface(e)
            self._emit()
            return False

        if self.state.pending_question is pending:
            self.state.pending_question = None
        self._emit()
        return True


__all__ = ["DEFAULT_SESSION_TITLE", "DevportClient", "StateListener", "TransportFactory"]

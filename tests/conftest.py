"""Shared fixtures: an in-memory server speaking the Devport wire protocol."""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import httpx
import pytest

from devport_sdk.client import DevportClient
from devport_sdk.client.config import ClientConfig, FallbackConfig, RecoveryConfig
from devport_sdk.client.transport import Transport
from devport_sdk.errors import NotConnected

URL = "ws://devport.test:8080/ws"
TOKEN = "secret"


class FakeRPCError(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class FakeTransport(Transport):
    """Transport whose peer is a :class:`FakeServer` in the same process."""

    def __init__(self, server: "FakeServer"):
        super().__init__()
        self.server = server
        self.endpoint: Optional[str] = None
        self.sent: List[Dict[str, Any]] = []
        self.closed_by_client = False
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self, endpoint: str, timeout: Optional[float] = None) -> None:
        self.endpoint = endpoint
        if self.server.refuse_connections:
            raise OSError("Connection refused")
        self._open = True

    async def send(self, frame: str) -> None:
        if not self._open:
            raise NotConnected()
        message = json.loads(frame)
        self.sent.append(message)
        self.server.handle(self, message)

    async def close(self) -> None:
        self._open = False
        self.closed_by_client = True

    def deliver(self, frame: Dict[str, Any]) -> None:
        """Push a frame from the server side."""
        self._emit_frame(json.dumps(frame))

    def drop(self, reason: str = "going away") -> None:
        """Close from the server side."""
        self._open = False
        self._emit_close(reason)


class FakeServer:
    """Answers requests synchronously and can push notifications.

    Calling the server builds a new transport, so an instance doubles as
    the client's transport factory.
    """

    def __init__(self, token: str = TOKEN):
        self.token = token
        self.transports: List[FakeTransport] = []
        self.requests: List[Tuple[str, Dict[str, Any]]] = []
        self.refuse_connections = False
        self.hold: Set[str] = set()
        self.handlers: Dict[str, Callable[[Dict[str, Any]], Any]] = {}
        self.history: Dict[str, List[Dict[str, Any]]] = {}
        self.sessions: List[Dict[str, Any]] = []
        self.missing_sessions: Set[str] = set()

    def __call__(self) -> FakeTransport:
        transport = FakeTransport(self)
        self.transports.append(transport)
        return transport

    @property
    def current(self) -> FakeTransport:
        return self.transports[-1]

    def methods(self) -> List[str]:
        return [method for method, _ in self.requests]

    def handle(self, transport: FakeTransport, message: Dict[str, Any]) -> None:
        method = message["method"]
        params = message.get("params") or {}
        self.requests.append((method, params))
        if method in self.hold:
            return

        handler = self.handlers.get(method) or getattr(self, "_" + method.replace(".", "_"), None)
        try:
            result = handler(params) if handler else {"status": "ok"}
        except FakeRPCError as e:
            transport.deliver({
                "jsonrpc": "2.0",
                "id": message["id"],
                "error": {"code": e.code, "message": e.message},
            })
            return
        transport.deliver({"jsonrpc": "2.0", "id": message["id"], "result": result})

    def notify(self, method: str, **params: Any) -> None:
        self.current.deliver({"jsonrpc": "2.0", "method": method, "params": params})

    def _auth(self, params):
        if params.get("token") != self.token:
            raise FakeRPCError(-32001, "invalid token")
        return {"status": "authenticated"}

    def _chat_attach(self, params):
        session_id = params["session_id"]
        if session_id in self.missing_sessions:
            raise FakeRPCError(-32003, "session not found")
        result = {"session_id": session_id, "status": "attached"}
        if session_id in self.history:
            result["history"] = self.history[session_id]
        return result

    def _session_create(self, params):
        session = {"id": f"s{len(self.sessions) + 1}", "title": params.get("title", "")}
        self.sessions.append(session)
        return {"session": session}

    def _session_list(self, params):
        return {"sessions": self.sessions}


class FakeSleep:
    """Records backoff delays instead of waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def history_entry(message_id: str, role: str = "assistant", content: str = "", **extra) -> Dict[str, Any]:
    entry = {
        "id": message_id,
        "role": role,
        "content": content or f"content of {message_id}",
        "timestamp": "2026-01-02T03:04:05.123456789Z",
    }
    entry.update(extra)
    return entry


def empty_history(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"session_id": "", "messages": []})


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def sleeper() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def make_client(server, sleeper):
    """Build a client wired to the fake server.

    Keyword arguments go to :class:`RecoveryConfig`, except ``fallback``
    (a FallbackConfig) and ``http_handler`` (an httpx.MockTransport handler).
    """
    def factory(fallback: Optional[FallbackConfig] = None, http_handler=None, **recovery) -> DevportClient:
        config = ClientConfig(
            recovery=RecoveryConfig(**recovery),
            fallback=fallback or FallbackConfig(),
        )
        return DevportClient(
            config,
            transport_factory=server,
            http_transport=httpx.MockTransport(http_handler or empty_history),
            sleep=sleeper,
        )

    return factory

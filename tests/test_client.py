"""Tests for DevportClient against the in-memory server."""

import asyncio
import json

import httpx
import pytest

from devport_sdk.client import ConnectionState
from devport_sdk.client.config import FallbackConfig
from devport_sdk.errors import (
    AuthenticationFailed,
    ConnectionLost,
    NotConnected,
    ReconnectExhausted,
    RemoteError,
)
from devport_sdk.models import Message, Role, ToolCallStatus

from conftest import TOKEN, URL, FakeRPCError, history_entry


async def connected(client, session_id=None):
    await client.connect(URL, TOKEN)
    if session_id:
        assert await client.attach_session(session_id)
    return client


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

class TestConnect:
    """connect() walks the state machine and authenticates."""

    @pytest.mark.asyncio
    async def test_connect_authenticates(self, server, make_client):
        client = make_client()
        seen = []
        client.subscribe(lambda state: seen.append(state.connection_state))

        await client.connect(URL, TOKEN)

        assert client.connection_state is ConnectionState.AUTHENTICATED
        assert client.is_connected
        assert client.state.endpoint == URL
        assert seen == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.AUTHENTICATED,
        ]
        assert server.requests == [("auth", {"token": TOKEN})]
        assert server.current.sent[0]["jsonrpc"] == "2.0"
        assert server.current.sent[0]["id"] == 1

    @pytest.mark.asyncio
    async def test_open_failure_raises_not_connected(self, server, make_client):
        server.refuse_connections = True
        client = make_client()

        with pytest.raises(NotConnected):
            await client.connect(URL, TOKEN)

        assert client.connection_state is ConnectionState.DISCONNECTED
        assert isinstance(client.state.error, NotConnected)

    @pytest.mark.asyncio
    async def test_rejected_credential_is_terminal(self, server, make_client):
        client = make_client()

        with pytest.raises(AuthenticationFailed) as exc_info:
            await client.connect(URL, "wrong")

        assert "invalid token" in str(exc_info.value)
        assert client.connection_state is ConnectionState.DISCONNECTED
        assert isinstance(client.state.error, AuthenticationFailed)
        assert server.current.closed_by_client
        assert not client.supervisor.is_running

    @pytest.mark.asyncio
    async def test_connect_again_replaces_transport(self, server, make_client):
        client = await connected(make_client())
        first = server.current

        await client.connect(URL, TOKEN)

        assert first.closed_by_client
        assert len(server.transports) == 2
        assert client.is_connected


class TestDisconnect:
    """disconnect() is terminal and clears the active session."""

    @pytest.mark.asyncio
    async def test_disconnect_resets_state(self, server, make_client):
        server.history["s1"] = [history_entry("m1")]
        client = await connected(make_client(), "s1")

        await client.disconnect()

        assert client.connection_state is ConnectionState.DISCONNECTED
        assert client.session_id is None
        assert client.messages == []
        assert client.state.endpoint is None
        assert server.current.closed_by_client

    @pytest.mark.asyncio
    async def test_disconnect_rejects_pending_requests(self, server, make_client):
        client = await connected(make_client(), "s1")
        server.hold.add("chat.interrupt")

        task = asyncio.create_task(client.interrupt())
        await asyncio.sleep(0)
        await client.disconnect()

        assert await task is False
        assert client._rpc.pending_count == 0

    @pytest.mark.asyncio
    async def test_context_manager_disconnects(self, server, make_client):
        async with make_client() as client:
            await client.connect(URL, TOKEN)
        assert client.connection_state is ConnectionState.DISCONNECTED


class TestUnsolicitedClose:
    """Losing the socket rejects requests and stops the turn."""

    @pytest.mark.asyncio
    async def test_pending_request_rejected_on_close(self, server, make_client):
        client = await connected(make_client(enabled=False), "s1")
        server.hold.add("chat.message")

        task = asyncio.create_task(client.send_message("hi"))
        await asyncio.sleep(0)
        server.current.drop("server restart")

        assert await task is False
        assert isinstance(client.state.error, ConnectionLost)
        assert client.connection_state is ConnectionState.DISCONNECTED
        assert not client.state.generating
        assert [m.role for m in client.messages] == [Role.USER]

    @pytest.mark.asyncio
    async def test_close_keeps_partial_content(self, server, make_client):
        client = await connected(make_client(enabled=False), "s1")
        server.notify("chat.text", session_id="s1", content="partial")

        server.current.drop()

        assert client.state.in_flight is None
        assert not client.state.generating
        assert client.messages[-1].content == "partial"

    @pytest.mark.asyncio
    async def test_stale_transport_close_is_ignored(self, server, make_client):
        client = await connected(make_client())
        stale = server.current
        await client.connect(URL, TOKEN)

        stale._emit_close("late")

        assert client.is_connected
        assert not client.supervisor.is_running


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

class TestStreaming:
    """Notifications build the conversation of the active session."""

    @pytest.mark.asyncio
    async def test_text_fragments_concatenate(self, server, make_client):
        client = await connected(make_client(), "s1")

        assert await client.send_message("hi")
        assert client.state.generating
        server.notify("chat.text", session_id="s1", content="Hel")
        server.notify("chat.text", session_id="s1", content="lo")
        server.notify("chat.done", session_id="s1")

        user, assistant = client.messages
        assert user.role is Role.USER
        assert user.content == "hi"
        assert assistant.role is Role.ASSISTANT
        assert assistant.content == "Hello"
        assert not client.state.generating
        assert client.state.last_message_id == assistant.id
        assert server.requests[-1] == ("chat.message", {"session_id": "s1", "content": "hi"})

    @pytest.mark.asyncio
    async def test_tool_call_lifecycle(self, server, make_client):
        client = await connected(make_client(), "s1")

        server.notify("chat.tool_call", session_id="s1", tool_use_id="t1", tool_name="Bash", input={"command": "ls"})
        server.notify("chat.tool_result", session_id="s1", tool_use_id="t1", output="README.md")

        tool_call = client.messages[-1].tool_calls[0]
        assert tool_call.name == "Bash"
        assert tool_call.input == {"command": "ls"}
        assert tool_call.output == "README.md"
        assert tool_call.status is ToolCallStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_foreign_session_does_not_notify(self, server, make_client):
        client = await connected(make_client(), "s1")
        calls = []
        client.subscribe(lambda state: calls.append(state))

        server.notify("chat.text", session_id="s2", content="not for us")

        assert client.messages == []
        assert calls == []

    @pytest.mark.asyncio
    async def test_chat_error_surfaces_message(self, server, make_client):
        client = await connected(make_client(), "s1")
        server.notify("chat.text", session_id="s1", content="working")

        server.notify("chat.error", session_id="s1", error="model overloaded")

        assert isinstance(client.state.error, RemoteError)
        assert client.state.error.message == "model overloaded"
        assert not client.state.generating
        client.clear_error()
        assert client.state.error is None

    @pytest.mark.asyncio
    async def test_malformed_frame_is_dropped(self, server, make_client):
        client = await connected(make_client(), "s1")

        server.current._emit_frame("{not json")
        server.current._emit_frame("[1, 2]")

        assert client.is_connected
        assert client.messages == []

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_break_dispatch(self, server, make_client):
        client = await connected(make_client(), "s1")

        def broken(state):
            raise RuntimeError("listener bug")

        client.subscribe(broken)
        server.notify("chat.system", session_id="s1", message="Compacted")

        assert client.messages[-1].role is Role.SYSTEM
        assert client.messages[-1].content == "Compacted"

    @pytest.mark.asyncio
    async def test_unsubscribe(self, server, make_client):
        client = await connected(make_client(), "s1")
        calls = []
        unsubscribe = client.subscribe(lambda state: calls.append(1))

        unsubscribe()
        server.notify("chat.system", session_id="s1", message="hello")

        assert calls == []


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

class TestSessions:

    @pytest.mark.asyncio
    async def test_create_session_uses_default_title(self, server, make_client):
        client = await connected(make_client())

        session = await client.create_session()

        assert session.id == "s1"
        assert session.title == "New Chat"
        assert client.state.sessions == [session]

    @pytest.mark.asyncio
    async def test_create_session_raises_on_failure(self, server, make_client):
        client = await connected(make_client())

        def fail(params):
            raise FakeRPCError(-32603, "disk full")

        server.handlers["session.create"] = fail
        with pytest.raises(RemoteError, match="disk full"):
            await client.create_session("x")

    @pytest.mark.asyncio
    async def test_load_sessions(self, server, make_client):
        server.sessions = [
            {"id": "a", "title": "First", "workDir": "/src"},
            {"id": "b", "title": "Second", "work_dir": "/tmp"},
        ]
        client = await connected(make_client())

        sessions = await client.load_sessions()

        assert [s.id for s in sessions] == ["a", "b"]
        assert sessions[0].work_dir == "/src"
        assert sessions[1].work_dir == "/tmp"

    @pytest.mark.asyncio
    async def test_load_sessions_when_offline_surfaces_error(self, server, make_client):
        client = make_client()

        assert await client.load_sessions() == []
        assert isinstance(client.state.error, NotConnected)

    @pytest.mark.asyncio
    async def test_attach_replaces_messages_with_history(self, server, make_client):
        server.history["s1"] = [
            history_entry("m1", role="user", content="run it"),
            history_entry("m2", tool_calls=[
                {"id": "t1", "name": "Bash", "status": "running"},
                {"id": "t2", "name": "Read", "status": "completed", "output": "ok"},
            ]),
        ]
        client = await connected(make_client())

        assert await client.attach_session("s1")

        assert client.session_id == "s1"
        assert [m.id for m in client.messages] == ["m1", "m2"]
        assert client.state.last_message_id == "m2"
        statuses = [tc.status for tc in client.messages[1].tool_calls]
        assert statuses == [ToolCallStatus.PENDING, ToolCallStatus.COMPLETED]
        assert server.requests[-1] == ("chat.attach", {"session_id": "s1"})

    @pytest.mark.asyncio
    async def test_attach_skips_malformed_tool_calls(self, server, make_client):
        server.history["s1"] = [history_entry("m1", tool_calls=[None, {"id": "t1", "name": "Read"}])]
        client = await connected(make_client())

        assert await client.attach_session("s1")

        assert [tc.id for tc in client.messages[0].tool_calls] == ["t1"]

    @pytest.mark.asyncio
    async def test_unparseable_history_fails_attach(self, server, make_client, monkeypatch):
        client = await connected(make_client(), "s1")
        server.notify("chat.system", session_id="s1", message="note")
        server.history["s2"] = [history_entry("m1")]

        def broken(cls, data):
            raise AttributeError("bad entry")

        monkeypatch.setattr(Message, "from_dict", classmethod(broken))

        assert not await client.attach_session("s2")

        assert client.session_id == "s1"
        assert [m.content for m in client.messages] == ["note"]
        assert isinstance(client.state.error, RemoteError)
        assert "bad entry" in str(client.state.error)

    @pytest.mark.asyncio
    async def test_switching_sessions_drops_prompts(self, server, make_client):
        client = await connected(make_client(), "s1")
        server.notify("chat.text", session_id="s1", content="partial")
        server.notify("chat.permission_request", session_id="s1", permission_id="p1", tool_name="Bash")
        server.notify("chat.ask_user_question", session_id="s1", question_id="q1", question="Which?")

        assert await client.attach_session("s2")

        assert client.session_id == "s2"
        assert client.messages == []
        assert client.state.pending_permission is None
        assert client.state.pending_question is None
        assert client.state.in_flight is None
        assert not client.state.generating
        assert "chat.permission_response" not in server.methods()

    @pytest.mark.asyncio
    async def test_reattach_same_session_without_history_keeps_messages(self, server, make_client):
        client = await connected(make_client(), "s1")
        server.notify("chat.system", session_id="s1", message="note")

        assert await client.attach_session("s1")

        assert [m.content for m in client.messages] == ["note"]

    @pytest.mark.asyncio
    async def test_attach_unknown_session_fails(self, server, make_client):
        server.missing_sessions.add("gone")
        client = await connected(make_client(), "s1")

        assert not await client.attach_session("gone")

        assert client.session_id == "s1"
        assert isinstance(client.state.error, RemoteError)
        assert client.state.error.code == -32003


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class TestActions:

    @pytest.mark.asyncio
    async def test_send_without_session_is_noop(self, server, make_client):
        client = await connected(make_client())

        assert not await client.send_message("hello?")

        assert client.messages == []
        assert server.methods() == ["auth"]

    @pytest.mark.asyncio
    async def test_send_failure_keeps_user_message(self, server, make_client):
        client = await connected(make_client(), "s1")

        def fail(params):
            raise FakeRPCError(-32602, "empty content")

        server.handlers["chat.message"] = fail
        assert not await client.send_message("hi")

        assert [m.content for m in client.messages] == ["hi"]
        assert not client.state.generating
        assert client.state.error.message == "empty content"

    @pytest.mark.asyncio
    async def test_interrupt(self, server, make_client):
        client = await connected(make_client(), "s1")
        await client.send_message("long task")
        server.notify("chat.text", session_id="s1", content="partial")

        assert await client.interrupt()
        assert client.state.generating
        server.notify("chat.interrupted", session_id="s1")

        assert server.requests[-1] == ("chat.interrupt", {"session_id": "s1"})
        assert not client.state.generating
        assert client.messages[-1].content == "partial"

    @pytest.mark.asyncio
    async def test_interrupt_without_session_is_noop(self, server, make_client):
        client = await connected(make_client())
        assert not await client.interrupt()
        assert server.methods() == ["auth"]

    @pytest.mark.asyncio
    async def test_respond_without_pending_permission_is_noop(self, server, make_client):
        client = await connected(make_client(), "s1")
        before = server.methods()

        assert not await client.respond_to_permission(True)

        assert server.methods() == before
        assert client.state.pending_permission is None
        assert client.state.error is None

    @pytest.mark.asyncio
    async def test_respond_to_permission(self, server, make_client):
        client = await connected(make_client(), "s1")
        server.notify("chat.permission_request", session_id="s1", permission_id="p1", tool_name="Bash", description="rm -rf build")

        assert client.state.pending_permission.description == "rm -rf build"
        assert await client.respond_to_permission(False)

        assert server.requests[-1] == ("chat.permission_response", {
            "session_id": "s1",
            "permission_id": "p1",
            "allowed": False,
        })
        assert client.state.pending_permission is None

    @pytest.mark.asyncio
    async def test_failed_response_keeps_prompt(self, server, make_client):
        client = await connected(make_client(), "s1")
        server.notify("chat.permission_request", session_id="s1", permission_id="p1", tool_name="Bash")

        def fail(params):
            raise FakeRPCError(-32603, "agent gone")

        server.handlers["chat.permission_response"] = fail
        assert not await client.respond_to_permission(True)

        assert client.state.pending_permission.permission_id == "p1"
        assert isinstance(client.state.error, RemoteError)

    @pytest.mark.asyncio
    async def test_newer_prompt_survives_answer_to_older(self, server, make_client):
        client = await connected(make_client(), "s1")
        server.notify("chat.permission_request", session_id="s1", permission_id="p1")

        def answer_and_ask_again(params):
            server.notify("chat.permission_request", session_id="s1", permission_id="p2")
            return {"status": "ok"}

        server.handlers["chat.permission_response"] = answer_and_ask_again
        assert await client.respond_to_permission(True)

        assert client.state.pending_permission.permission_id == "p2"

    @pytest.mark.asyncio
    async def test_respond_to_question(self, server, make_client):
        client = await connected(make_client(), "s1")
        server.notify(
            "chat.ask_user_question",
            session_id="s1",
            question_id="q1",
            question="Which database?",
            options=[{"label": "Postgres", "description": "recommended"}, {"label": "SQLite"}],
        )

        question = client.state.pending_question
        assert [o.label for o in question.options] == ["Postgres", "SQLite"]
        assert await client.respond_to_question("Postgres")

        assert server.requests[-1] == ("chat.question_response", {
            "session_id": "s1",
            "question_id": "q1",
            "answer": "Postgres",
        })
        assert client.state.pending_question is None


# ---------------------------------------------------------------------------
# Reconnection and gap recovery
# ---------------------------------------------------------------------------

class TestReconnection:

    @pytest.mark.asyncio
    async def test_reconnects_and_recovers_missed_messages(self, server, make_client):
        requests = []

        def http_handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={
                "session_id": "s1",
                "messages": [history_entry("m6"), history_entry("m7")],
            })

        server.history["s1"] = [history_entry(f"m{i}") for i in range(1, 6)]
        client = await connected(make_client(http_handler=http_handler), "s1")
        server.history.pop("s1")

        server.current.drop()
        assert client.supervisor.is_running
        await client.supervisor.wait()

        assert client.is_connected
        assert [m.id for m in client.messages] == ["m1", "m2", "m3", "m4", "m5", "m6", "m7"]
        assert client.state.last_message_id == "m7"
        assert client.supervisor.attempt == 0

        request = requests[0]
        assert request.url.path == "/api/sessions/s1/messages"
        assert request.url.params["after"] == "m5"
        assert request.headers["Authorization"] == f"Bearer {TOKEN}"
        assert server.methods()[-2:] == ["auth", "chat.attach"]

    @pytest.mark.asyncio
    async def test_sync_skips_known_messages(self, server, make_client):
        def http_handler(request):
            return httpx.Response(200, json={"messages": [history_entry("m2"), history_entry("m3")]})

        server.history["s1"] = [history_entry("m1"), history_entry("m2")]
        client = await connected(make_client(http_handler=http_handler), "s1")

        assert await client.sync_messages() == 1
        assert [m.id for m in client.messages] == ["m1", "m2", "m3"]

    @pytest.mark.asyncio
    async def test_sync_failure_is_swallowed(self, server, make_client):
        def http_handler(request):
            return httpx.Response(500, text="boom")

        server.history["s1"] = [history_entry("m1")]
        client = await connected(make_client(http_handler=http_handler), "s1")

        server.current.drop()
        await client.supervisor.wait()

        assert client.is_connected
        assert client.state.error is None
        assert [m.id for m in client.messages] == ["m1"]

    @pytest.mark.asyncio
    async def test_malformed_sync_entries_do_not_block_reconnection(self, server, sleeper, make_client):
        def http_handler(request):
            return httpx.Response(200, json={
                "session_id": "s1",
                "messages": [history_entry("m2", tool_calls=[None])],
            })

        server.history["s1"] = [history_entry("m1")]
        client = await connected(make_client(max_attempts=3, http_handler=http_handler), "s1")
        server.history.pop("s1")

        server.current.drop()
        await client.supervisor.wait()

        assert sleeper.delays == [1.0]
        assert client.is_connected
        assert client.state.error is None
        assert [m.id for m in client.messages] == ["m1", "m2"]
        assert client.messages[1].tool_calls == []

    @pytest.mark.asyncio
    async def test_unparseable_sync_entries_are_swallowed(self, server, sleeper, make_client, monkeypatch):
        def http_handler(request):
            return httpx.Response(200, json={"session_id": "s1", "messages": [history_entry("m2")]})

        server.history["s1"] = [history_entry("m1")]
        client = await connected(make_client(max_attempts=3, http_handler=http_handler), "s1")
        server.history.pop("s1")

        def broken(cls, data):
            raise AttributeError("bad entry")

        monkeypatch.setattr(Message, "from_dict", classmethod(broken))
        server.current.drop()
        await client.supervisor.wait()

        assert sleeper.delays == [1.0]
        assert len(server.transports) == 2
        assert client.is_connected
        assert client.state.error is None
        assert [m.id for m in client.messages] == ["m1"]

    @pytest.mark.asyncio
    async def test_failed_attempt_after_auth_closes_socket(self, server, sleeper, make_client):
        client = await connected(make_client(max_attempts=2), "s1")

        def explode(params):
            raise RuntimeError("attach handler crashed")

        server.handlers["chat.attach"] = explode
        server.current.drop()
        await client.supervisor.wait()

        assert isinstance(client.state.error, ReconnectExhausted)
        assert client.connection_state is ConnectionState.DISCONNECTED
        assert all(not t.is_open for t in server.transports)

    @pytest.mark.asyncio
    async def test_exhaustion_releases_connection(self, server, sleeper, make_client):
        client = await connected(make_client(max_attempts=1), "s1")
        assert await client.sync_messages() == 0
        http = client._http
        server.refuse_connections = True

        server.current.drop()
        await client.supervisor.wait()

        assert isinstance(client.state.error, ReconnectExhausted)
        assert client._endpoint is None
        assert client._credential is None
        assert client._http is None
        assert http._client.is_closed
        assert await client.sync_messages() == 0

    @pytest.mark.asyncio
    async def test_backoff_then_exhausted(self, server, sleeper, make_client):
        statuses = []
        client = await connected(make_client(max_attempts=5, base_delay=1.0, max_delay=4.0))
        client.supervisor._on_status_change = statuses.append
        server.refuse_connections = True

        server.current.drop()
        await client.supervisor.wait()

        assert sleeper.delays == [1.0, 2.0, 4.0, 4.0, 4.0]
        assert isinstance(client.state.error, ReconnectExhausted)
        assert client.state.error.attempts == 5
        assert str(client.state.error) == "Failed to reconnect after 5 attempts"
        assert len(server.transports) == 6
        assert client.connection_state is ConnectionState.DISCONNECTED
        assert [s.next_retry_in for s in statuses[:5]] == [1.0, 2.0, 4.0, 4.0, 4.0]
        assert statuses[-1].reconnecting is False

        await asyncio.sleep(0)
        assert len(server.transports) == 6

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, server, sleeper, make_client):
        client = await connected(make_client(), "s1")
        server.refuse_connections = True

        attempts = []

        async def recover_on_third(delay):
            attempts.append(delay)
            if len(attempts) == 3:
                server.refuse_connections = False
            await asyncio.sleep(0)

        client.supervisor._sleep = recover_on_third
        server.current.drop()
        await client.supervisor.wait()

        assert attempts == [1.0, 2.0, 4.0]
        assert client.is_connected
        assert client.session_id == "s1"
        assert client.supervisor.attempt == 0

    @pytest.mark.asyncio
    async def test_auth_failure_stops_reconnection(self, server, sleeper, make_client):
        client = await connected(make_client())
        server.token = "rotated"

        server.current.drop()
        await client.supervisor.wait()

        assert sleeper.delays == [1.0]
        assert isinstance(client.state.error, AuthenticationFailed)
        assert client.connection_state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_cancels_reconnection(self, server, make_client):
        client = await connected(make_client())
        blocked = asyncio.Event()

        async def wait_forever(delay):
            blocked.set()
            await asyncio.Event().wait()

        client.supervisor._sleep = wait_forever
        server.current.drop()
        await blocked.wait()

        await client.disconnect()

        assert not client.supervisor.is_running
        assert len(server.transports) == 1
        assert client.connection_state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disabled_recovery_surfaces_connection_lost(self, server, make_client):
        client = await connected(make_client(enabled=False))

        server.current.drop("bye")

        assert not client.supervisor.is_running
        assert isinstance(client.state.error, ConnectionLost)

    @pytest.mark.asyncio
    async def test_close_during_reattach_fails_attempt(self, server, sleeper, make_client):
        client = await connected(make_client(), "s1")
        drops = []

        def attach_then_drop(params):
            if not drops:
                drops.append(params)
                server.current.drop("flaky")
                raise FakeRPCError(-32603, "unreachable")
            return {"session_id": params["session_id"], "status": "attached"}

        server.handlers["chat.attach"] = attach_then_drop
        server.current.drop()
        await client.supervisor.wait()

        assert sleeper.delays == [1.0, 2.0]
        assert client.is_connected
        assert len(server.transports) == 3


# ---------------------------------------------------------------------------
# HTTP delivery
# ---------------------------------------------------------------------------

class TestHttpDelivery:

    @pytest.mark.asyncio
    async def test_actions_use_http_while_socket_down(self, server, make_client):
        requests = []

        def http_handler(request):
            requests.append(request)
            return httpx.Response(202, json={"status": "accepted"})

        client = await connected(
            make_client(enabled=False, fallback=FallbackConfig(enabled=True), http_handler=http_handler),
            "s1",
        )
        server.notify("chat.permission_request", session_id="s1", permission_id="p1")
        server.current.drop()

        assert await client.send_message("still there?")
        assert await client.respond_to_permission(True)

        assert [r.url.path for r in requests] == [
            "/api/sessions/s1/messages",
            "/api/permissions/p1",
        ]
        assert json.loads(requests[0].content) == {"content": "still there?"}
        assert json.loads(requests[1].content) == {"session_id": "s1", "allowed": True}
        assert requests[0].url.host == "devport.test"
        assert requests[0].url.scheme == "http"

    @pytest.mark.asyncio
    async def test_socket_only_when_fallback_disabled(self, server, make_client):
        client = await connected(make_client(enabled=False), "s1")
        server.current.drop()

        assert not await client.send_message("anyone?")
        assert isinstance(client.state.error, NotConnected)

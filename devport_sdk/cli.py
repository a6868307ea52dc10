#!/usr/bin/env python3
"""Terminal chat client for a Devport agent server.

Connects, creates or attaches a session, and streams the agent's answer
as it arrives. Permission and question prompts are answered from stdin.

Usage:
    # Interactive chat in a new session
    devport --url ws://localhost:8080/ws --token $DEVPORT_TOKEN

    # Attach an existing session and send one message
    python -m devport_sdk --session 1f2e... --message "Run the tests"

    # List sessions
    devport --list
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv

from devport_sdk.client import ConnectionState, ConnectionStatus, DevportClient, SessionState
from devport_sdk.errors import DevportError
from devport_sdk.models import Message, Role, SessionInfo, ToolCall, ToolCallStatus

DEFAULT_URL = "ws://localhost:8080/ws"


# ANSI color codes
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"


def colorize(text: str, color: str) -> str:
    """Apply ANSI color to text."""
    return f"{color}{text}{Colors.RESET}"


def format_tool_input(tool_input, limit: int = 80) -> str:
    if tool_input is None:
        return ""
    text = json.dumps(tool_input, default=str)
    if len(text) > limit:
        text = text[:limit - 3] + "..."
    return text


def format_tool_call(tool_call: ToolCall) -> str:
    """One-line display of a tool call in its current status."""
    if tool_call.status is ToolCallStatus.PENDING:
        line = colorize(f"→ {tool_call.name}", Colors.MAGENTA)
        if tool_call.input is not None:
            line += " " + colorize(format_tool_input(tool_call.input), Colors.DIM)
        return line
    success = tool_call.status is ToolCallStatus.COMPLETED
    icon = "✓" if success else "✗"
    color = Colors.GREEN if success else Colors.RED
    return colorize(f"{icon} {tool_call.name}", color)


def format_message(message: Message) -> str:
    """Format a history message for display."""
    time_str = message.timestamp.astimezone().strftime("%H:%M:%S")
    prefix = colorize(f"[{time_str}]", Colors.DIM)

    if message.role is Role.USER:
        return f"{prefix} {colorize('[you]', Colors.GREEN)} {message.content}"
    elif message.role is Role.SYSTEM:
        return f"{prefix} {colorize(f'ℹ {message.content}', Colors.CYAN)}"

    lines = [f"{prefix} {colorize('[agent]', Colors.CYAN)} {message.content}"]
    for tool_call in message.tool_calls:
        lines.append(f"    {format_tool_call(tool_call)}")
    return "\n".join(lines)


def format_session(session: SessionInfo) -> str:
    title = session.title or colorize("(untitled)", Colors.DIM)
    updated = colorize(session.updated_at or "", Colors.DIM)
    return f"{colorize(session.id, Colors.BOLD)}  {title}  {updated}".rstrip()


def format_status(status: ConnectionStatus) -> Optional[str]:
    """Format a reconnection progress update, None if nothing to show."""
    if status.reconnecting and status.next_retry_in is not None:
        return colorize(
            f"⟳ Connection lost, retrying in {status.next_retry_in:.1f}s "
            f"(attempt {status.attempt + 1}/{status.max_attempts})",
            Colors.YELLOW,
        )
    if not status.reconnecting and status.state is ConnectionState.AUTHENTICATED:
        return colorize("✓ Reconnected", Colors.GREEN)
    return None


class StreamPrinter:
    """State listener that prints what changed since the last call.

    Assistant text is printed as a running delta per message; tool calls
    get one line when they start and one when they finish. When the
    message list is replaced (session attach) everything in it is treated
    as already shown.
    """

    def __init__(self) -> None:
        self.changed = asyncio.Event()
        self._messages: Optional[List[Message]] = None
        self._printed: Dict[str, int] = {}
        self._tools: Dict[Tuple[str, str], ToolCallStatus] = {}
        self._open_line = False
        self._shown_permission = None
        self._shown_question = None
        self._shown_error = None

    def prime(self, state: SessionState) -> None:
        """Mark everything currently in ``state`` as already shown."""
        self._messages = state.messages
        for message in state.messages:
            self._printed[message.id] = len(message.content)
            for tool_call in message.tool_calls:
                self._tools[(message.id, tool_call.id)] = tool_call.status
        self._shown_permission = state.pending_permission
        self._shown_question = state.pending_question
        self._shown_error = state.error

    def __call__(self, state: SessionState) -> None:
        if state.messages is not self._messages:
            self._end_line()
            self.prime(state)

        for message in state.messages:
            if message.role is Role.ASSISTANT:
                self._render_assistant(message)
            elif message.id not in self._printed:
                self._printed[message.id] = len(message.content)
                if message.role is Role.SYSTEM:
                    self._line(colorize(f"ℹ {message.content}", Colors.CYAN))

        if not state.generating:
            self._end_line()
        self._render_prompts(state)
        self._render_error(state)
        self.changed.set()

    def _line(self, text: str) -> None:
        self._end_line()
        print(text, flush=True)

    def _end_line(self) -> None:
        if self._open_line:
            print(flush=True)
            self._open_line = False

    def _render_assistant(self, message: Message) -> None:
        printed = self._printed.get(message.id)
        if printed is None:
            printed = 0
            self._end_line()
            print(colorize("[agent] ", Colors.CYAN), end="", flush=True)
            self._open_line = True

        delta = message.content[printed:]
        if delta:
            if not self._open_line:
                print("        ", end="")
            print(delta, end="", flush=True)
            self._open_line = True
        self._printed[message.id] = len(message.content)

        for tool_call in message.tool_calls:
            key = (message.id, tool_call.id)
            shown = self._tools.get(key)
            if shown is None or (tool_call.status is not shown and tool_call.status.is_terminal):
                self._line(f"    {format_tool_call(tool_call)}")
            self._tools[key] = tool_call.status

    def _render_prompts(self, state: SessionState) -> None:
        permission = state.pending_permission
        if permission is not None and permission is not self._shown_permission:
            self._line(f"{colorize('⚠ Permission required:', Colors.YELLOW)} {permission.tool_name}")
            if permission.description:
                self._line(f"    {permission.description}")
        self._shown_permission = permission

        question = state.pending_question
        if question is not None and question is not self._shown_question:
            self._line(f"{colorize('? ', Colors.YELLOW)}{question.question}")
            for index, option in enumerate(question.options, 1):
                detail = f" {colorize(option.description, Colors.DIM)}" if option.description else ""
                self._line(f"    [{index}] {option.label}{detail}")
        self._shown_question = question

    def _render_error(self, state: SessionState) -> None:
        if state.error is not None and state.error is not self._shown_error:
            self._line(colorize(f"✗ Error: {state.error}", Colors.RED))
        self._shown_error = state.error


async def ainput(prompt: str) -> str:
    """Read a line from stdin without blocking the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: input(prompt))


async def answer_permission(client: DevportClient, auto_allow: bool) -> bool:
    if auto_allow:
        print(colorize("    (auto-allowed)", Colors.DIM))
        return await client.respond_to_permission(True)
    try:
        answer = await ainput(colorize("Allow? [y/N] ", Colors.YELLOW))
    except EOFError:
        answer = ""
    return await client.respond_to_permission(answer.strip().lower() in ("y", "yes"))


async def answer_question(client: DevportClient) -> bool:
    question = client.state.pending_question
    try:
        answer = await ainput(colorize("Answer: ", Colors.YELLOW))
    except EOFError:
        answer = ""
    answer = answer.strip()
    if question is not None and answer.isdigit():
        index = int(answer) - 1
        if 0 <= index < len(question.options):
            answer = question.options[index].label
    return await client.respond_to_question(answer)


async def wait_for_turn(client: DevportClient, printer: StreamPrinter, auto_allow: bool = False) -> bool:
    """Wait until the agent stops generating, answering prompts on the way.

    Returns:
        False if the turn could not be followed to its end.
    """
    while True:
        state = client.state
        if state.pending_permission is not None:
            if not await answer_permission(client, auto_allow):
                return False
            continue
        if state.pending_question is not None:
            if not await answer_question(client):
                return False
            continue
        if not state.generating:
            return state.error is None
        if state.connection_state is ConnectionState.DISCONNECTED and not client.supervisor.is_running:
            return False

        printer.changed.clear()
        await printer.changed.wait()


async def interactive_loop(client: DevportClient, printer: StreamPrinter, auto_allow: bool) -> None:
    """Read user input and send messages until the user quits."""
    print(colorize("\nType a message and press Enter. /stop interrupts, /sessions lists, 'quit' exits.\n", Colors.DIM))

    while True:
        try:
            user_input = await ainput(colorize("> ", Colors.GREEN))
        except EOFError:
            break

        if user_input.lower() in ("quit", "exit", "q"):
            break
        if not user_input.strip():
            continue

        if user_input.strip() == "/stop":
            await client.interrupt()
            continue
        if user_input.strip() == "/sessions":
            for session in await client.load_sessions():
                print(format_session(session))
            continue

        if await client.send_message(user_input):
            await wait_for_turn(client, printer, auto_allow)


async def run_client(
    url: str,
    token: str,
    session_id: Optional[str] = None,
    title: Optional[str] = None,
    list_only: bool = False,
    message: Optional[str] = None,
    auto_allow: bool = False,
) -> int:
    """Run the chat client.

    Args:
        url: WebSocket endpoint.
        token: Credential for the ``auth`` call.
        session_id: Session to attach; a new one is created if None.
        title: Title for a newly created session.
        list_only: Print the session list and exit.
        message: Send a single message and exit after the answer.
        auto_allow: Grant every permission request without asking.

    Returns:
        Process exit code.
    """
    def show_status(status: ConnectionStatus) -> None:
        text = format_status(status)
        if text:
            print(text, flush=True)

    client = DevportClient(workspace_path=Path.cwd(), on_status_change=show_status)
    print(colorize(f"Connecting to {url}...", Colors.DIM))

    try:
        await client.connect(url, token)
    except DevportError as e:
        print(colorize(f"Error: {e}", Colors.RED))
        return 1

    printer = StreamPrinter()
    printer.prime(client.state)
    client.subscribe(printer)

    try:
        if list_only:
            sessions = await client.load_sessions()
            if not sessions:
                print(colorize("No sessions", Colors.DIM))
            for session in sessions:
                print(format_session(session))
            return 0 if client.state.error is None else 1

        if session_id is None:
            session = await client.create_session(title)
            session_id = session.id
            print(colorize(f"✓ Created session {session.id}", Colors.GREEN))

        if not await client.attach_session(session_id):
            return 1
        for entry in client.state.messages:
            print(format_message(entry))

        if message:
            if not await client.send_message(message):
                return 1
            return 0 if await wait_for_turn(client, printer, auto_allow) else 1

        await interactive_loop(client, printer, auto_allow)
        return 0

    except DevportError as e:
        print(colorize(f"Error: {e}", Colors.RED))
        return 1
    finally:
        await client.disconnect()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devport",
        description="Terminal chat client for a Devport agent server",
    )
    parser.add_argument(
        "--url",
        help=f"WebSocket endpoint (default: $DEVPORT_URL or {DEFAULT_URL})",
    )
    parser.add_argument(
        "--token",
        help="Authentication token (default: $DEVPORT_TOKEN)",
    )
    parser.add_argument(
        "--session", "-s",
        help="Attach to an existing session instead of creating one",
    )
    parser.add_argument(
        "--title",
        help="Title for a newly created session",
    )
    parser.add_argument(
        "--list", "-l",
        action="store_true",
        help="List sessions and exit",
    )
    parser.add_argument(
        "--message", "-m",
        type=str,
        help="Send a single message and exit",
    )
    parser.add_argument(
        "--auto-allow",
        action="store_true",
        help="Grant every permission request without asking",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to .env file (default: .env)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv(args.env_file)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    url = args.url or os.environ.get("DEVPORT_URL") or DEFAULT_URL
    token = args.token or os.environ.get("DEVPORT_TOKEN")
    if not token:
        print(colorize("Error: no token given (use --token or set DEVPORT_TOKEN)", Colors.RED))
        return 1

    try:
        return asyncio.run(run_client(
            url=url,
            token=token,
            session_id=args.session,
            title=args.title,
            list_only=args.list,
            message=args.message,
            auto_allow=args.auto_allow,
        ))
    except KeyboardInterrupt:
        print(colorize("\nGoodbye!", Colors.DIM))
        return 0


if __name__ == "__main__":
    sys.exit(main())

"""Conversation data types shared by the client and its collaborators."""

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Author of a message."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ToolCallStatus(str, Enum):
    """Lifecycle of a tool invocation: pending -> completed | error."""
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"

    @classmethod
    def from_wire(cls, value: Any) -> "ToolCallStatus":
        """Map a history status string onto the enum.

        Unknown strings map to PENDING so an unfinished call is never
        reported as completed.
        """
        try:
            return cls(value)
        except ValueError:
            logger.debug("Unknown tool call status %r, treating as pending", value)
            return cls.PENDING

    @property
    def is_terminal(self) -> bool:
        return self is not ToolCallStatus.PENDING


# Go emits up to nine fractional digits; datetime accepts six.
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp, falling back to now."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        text = _FRACTION_RE.sub(r"\1", value.strip())
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
        except ValueError:
            logger.debug("Unparseable timestamp %r", value)
    return datetime.now(timezone.utc)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def new_message_id() -> str:
    """Generate a client-side message identifier."""
    return str(uuid.uuid4())


@dataclass
class ToolCall:
    """A tool invocation made by the agent during an assistant turn."""
    id: str
    name: str
    input: Any = None
    output: Optional[str] = None
    status: ToolCallStatus = ToolCallStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
        }
        if self.input is not None:
            d["input"] = self.input
        if self.output is not None:
            d["output"] = self.output
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ToolCall":
        return cls(
            id=str(d.get("id", "")),
            name=str(d.get("name") or ""),
            input=d.get("input"),
            output=d.get("output"),
            status=ToolCallStatus.from_wire(d.get("status")),
        )


@dataclass
class Message:
    """One entry in a session's conversation.

    Assistant content only grows while the message is in flight; the
    identifier never changes once the message is in the list.
    """
    id: str
    role: Role
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(id=new_message_id(), role=Role.USER, content=content)

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(id=new_message_id(), role=Role.SYSTEM, content=content)

    @classmethod
    def assistant(cls, message_id: Optional[str] = None) -> "Message":
        return cls(id=message_id or new_message_id(), role=Role.ASSISTANT)

    def find_tool_call(self, tool_use_id: str) -> Optional[ToolCall]:
        for tool_call in self.tool_calls:
            if tool_call.id == tool_use_id:
                return tool_call
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Message":
        """Build a message from a server history entry."""
        try:
            role = Role(d.get("role", Role.ASSISTANT.value))
        except ValueError:
            logger.debug("Unknown message role %r, treating as system", d.get("role"))
            role = Role.SYSTEM
        tool_calls = d.get("tool_calls")
        if not isinstance(tool_calls, list):
            tool_calls = []
        return cls(
            id=str(d.get("id") or new_message_id()),
            role=role,
            content=_as_text(d.get("content")),
            tool_calls=[ToolCall.from_dict(tc) for tc in tool_calls if isinstance(tc, dict)],
            timestamp=parse_timestamp(d.get("timestamp")),
        )


@dataclass
class SessionInfo:
    """Summary of a server-side session, as listed by ``session.list``."""
    id: str
    title: str = ""
    work_dir: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SessionInfo":
        return cls(
            id=str(d.get("id", "")),
            title=d.get("title", ""),
            work_dir=d.get("work_dir", d.get("workDir")),
            created_at=d.get("created_at", d.get("createdAt")),
            updated_at=d.get("updated_at", d.get("updatedAt")),
        )


@dataclass
class PermissionRequest:
    """The agent asks before running a tool."""
    permission_id: str
    tool_name: str = ""
    description: str = ""

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "PermissionRequest":
        return cls(
            permission_id=str(params.get("permission_id", "")),
            tool_name=params.get("tool_name", ""),
            description=params.get("description", ""),
        )


@dataclass
class QuestionOption:
    """A selectable answer for a :class:`UserQuestion`."""
    label: str
    description: Optional[str] = None


@dataclass
class UserQuestion:
    """The agent asks the user a question mid-turn."""
    question_id: str
    question: str = ""
    options: List[QuestionOption] = field(default_factory=list)

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "UserQuestion":
        options = []
        for option in params.get("options") or []:
            if isinstance(option, dict):
                options.append(QuestionOption(
                    label=option.get("label", ""),
                    description=option.get("description"),
                ))
            else:
                options.append(QuestionOption(label=str(option)))
        return cls(
            question_id=str(params.get("question_id", "")),
            question=params.get("question", ""),
            options=options,
        )


__all__ = [
    "Message",
    "PermissionRequest",
    "QuestionOption",
    "Role",
    "SessionInfo",
    "ToolCall",
    "ToolCallStatus",
    "UserQuestion",
    "new_message_id",
    "parse_timestamp",
]

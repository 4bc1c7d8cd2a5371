"""Conversation model shared by the reasoning loop and the stream publisher.

Message content is a tagged variant: ``Text`` for a single string or ``Parts``
for an ordered list of ``TextPart`` / ``DataPart`` items. Raw provider payloads
are classified once, in ``Content.from_raw``; everything downstream matches on
the variant instead of inspecting runtime types.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class DataPart:
    """Any non-text content part (image reference, structured payload, ...)."""
    data: Any


Part = Union[TextPart, DataPart]


class Content:
    """Base of the ``Text | Parts`` content variant."""

    __slots__ = ()

    @staticmethod
    def from_raw(raw: Any) -> "Content":
        if raw is None:
            return Text("")
        if isinstance(raw, Content):
            return raw
        if isinstance(raw, str):
            return Text(raw)
        if isinstance(raw, (list, tuple)):
            return Parts(tuple(_part_from_raw(item) for item in raw))
        return Text(str(raw))


@dataclass(frozen=True)
class Text(Content):
    value: str = ""


@dataclass(frozen=True)
class Parts(Content):
    parts: Tuple[Part, ...] = ()


def _part_from_raw(item: Any) -> Part:
    if isinstance(item, str):
        return TextPart(item)
    if isinstance(item, Mapping) and isinstance(item.get("text"), str):
        return TextPart(item["text"])
    return DataPart(item)


def content_payload(content: Content) -> Union[str, List[Any]]:
    """Render content back into the OpenAI chat format."""
    if isinstance(content, Parts):
        return [
            {"type": "text", "text": p.text} if isinstance(p, TextPart) else p.data
            for p in content.parts
        ]
    if isinstance(content, Text):
        return content.value
    return str(content)


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool invocation requested by the model.

    ``arguments`` is kept exactly as the provider sent it (mapping or JSON
    string); consumers normalise it when they need a mapping.
    """
    id: str
    name: str
    arguments: Any = None

    def to_llm(self) -> Dict[str, Any]:
        args = self.arguments
        if not isinstance(args, str):
            args = json.dumps(args if args is not None else {}, default=str)
        return {"id": self.id, "type": "function", "function": {"name": self.name, "arguments": args}}


@dataclass(frozen=True)
class ToolResult:
    tool_call_id: str
    name: str
    content: str
    is_error: bool = False


@dataclass(frozen=True)
class Message:
    role: Role
    content: Content = field(default_factory=Text)
    tool_calls: Tuple[ToolCallRequest, ...] = ()
    tool_results: Tuple[ToolResult, ...] = ()

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(Role.SYSTEM, Text(text))

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(Role.USER, Text(text))

    @classmethod
    def assistant(cls, content: Any = None, tool_calls: Iterable[ToolCallRequest] = ()) -> "Message":
        return cls(Role.ASSISTANT, Content.from_raw(content), tuple(tool_calls))

    @classmethod
    def tool(cls, results: Iterable[ToolResult]) -> "Message":
        """Combined tool-result message: one entry per invocation, text joined by newlines."""
        results = tuple(results)
        return cls(Role.TOOL, Text("\n".join(r.content for r in results)), tool_results=results)

    @property
    def has_tool_calls(self) -> bool:
        return self.role is Role.ASSISTANT and len(self.tool_calls) > 0

    def to_llm_messages(self) -> List[Dict[str, Any]]:
        """Serialise for the provider. A combined tool message expands into one entry per result."""
        if self.role is Role.TOOL:
            if not self.tool_results:
                return [{"role": Role.USER.value, "content": content_payload(self.content)}]
            return [
                {"role": Role.TOOL.value, "tool_call_id": r.tool_call_id, "name": r.name, "content": r.content}
                for r in self.tool_results
            ]

        payload: Dict[str, Any] = {"role": self.role.value, "content": content_payload(self.content)}
        if self.tool_calls:
            payload["tool_calls"] = [tc.to_llm() for tc in self.tool_calls]
            if payload["content"] == "":
                payload["content"] = None
        return [payload]


@dataclass(frozen=True)
class ConversationState:
    """Append-only snapshot of a conversation. ``append`` returns a new snapshot."""

    messages: Tuple[Message, ...] = ()

    def append(self, *messages: Message) -> "ConversationState":
        return ConversationState(self.messages + tuple(messages))

    @property
    def last(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None

    def last_tool_request(self) -> Optional[Message]:
        for msg in reversed(self.messages):
            if msg.has_tool_calls:
                return msg
        return None

    def to_llm_messages(self) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for msg in self.messages:
            out.extend(msg.to_llm_messages())
        return out

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)


_HISTORY_ROLES = {Role.USER.value: Message.user, Role.ASSISTANT.value: Message.assistant}


def messages_from_history(history: Iterable[Mapping[str, Any]] | None, message: str) -> List[Message]:
    """Build the initial messages for a request.

    Only ``user`` and ``assistant`` entries whose content is a string are kept;
    anything else in the client-supplied history is dropped.
    """
    messages: List[Message] = []
    for entry in history or ():
        if not isinstance(entry, Mapping):
            continue
        build = _HISTORY_ROLES.get(entry.get("role"))
        content = entry.get("content")
        if build is not None and isinstance(content, str):
            messages.append(build(content))
    messages.append(Message.user(message))
    return messages

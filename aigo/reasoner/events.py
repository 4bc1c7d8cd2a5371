from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from aigo.reasoner.messages import ConversationState, Message

THOUGHT_NODE = "thought"
TOOLS_NODE = "tools"


class EventKind(str, Enum):
    NODE_START = "node_start"
    NODE_END = "node_end"
    MODEL_TOKEN = "model_token"


@dataclass(frozen=True)
class ExecutionEvent:
    """One notification from the reasoning loop's execution feed.

    ``input`` is the conversation snapshot the node started from. ``output`` is
    the message the node produced (assistant reply for ``thought``, combined
    tool-result message for ``tools``) and is only set on ``NODE_END``.
    ``chunk`` carries the text fragment of a ``MODEL_TOKEN`` event.
    """

    kind: EventKind
    node: str
    turn: int = 0
    input: Optional[ConversationState] = None
    output: Optional[Message] = None
    chunk: str = ""

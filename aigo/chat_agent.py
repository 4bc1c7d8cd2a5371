"""
ChatAgent

Lightweight façade that wires the LLM and the tool registry into a ReAct
loop and exposes the two ways a chat request is served: a single-shot answer
(``solve``) or a live NDJSON progress stream (``stream``).
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional
from uuid import uuid4

from aigo.llm.base_llm import BaseLLM
from aigo.reasoner.messages import ConversationState, Role, messages_from_history
from aigo.reasoner.normalize import extract_text
from aigo.reasoner.react import ReACTLoop
from aigo.streaming.publisher import StreamPublisher
from aigo.streaming.reconciler import EventReconciler
from aigo.tools.registry import ToolRegistry
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ChatResult:
    content: str
    messages: List[Dict[str, str]] = field(default_factory=list)
    completed: bool = True
    iterations: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content, "messages": self.messages}


def flatten_transcript(state: ConversationState) -> List[Dict[str, str]]:
    """Role/content pairs for the client. System messages are left out."""
    return [
        {"role": msg.role.value, "content": extract_text(msg)}
        for msg in state.messages
        if msg.role is not Role.SYSTEM
    ]


class ChatAgent:
    """Top-level object serving chat requests."""

    def __init__(
        self,
        *,
        llm: BaseLLM,
        tools: ToolRegistry,
        max_iterations: int = ReACTLoop.DEFAULT_MAX_ITERATIONS,
        system_prompt: Optional[str] = None,
    ):
        """Initializes the agent.

        Args:
            llm: The language model instance.
            tools: Registry of tools bound to every model call.
            max_iterations: Maximum number of act cycles per request.
            system_prompt: Overrides the default ReAct instruction.
        """
        self.llm = llm
        self.tools = tools
        self.loop = ReACTLoop(llm=llm, tools=tools, max_iterations=max_iterations, system_prompt=system_prompt)

    async def solve(self, message: str, history: Optional[Iterable[Mapping[str, Any]]] = None) -> ChatResult:
        """Run the loop to completion and return the final answer with the transcript."""
        run_id = uuid4().hex
        logger.info("solve_started", run_id=run_id, message_preview=message[:200])
        outcome = await self.loop.execute(messages_from_history(history, message))
        logger.info("solve_finished", run_id=run_id, iterations=outcome.iterations, truncated=outcome.truncated)
        return ChatResult(
            content=outcome.final_answer,
            messages=flatten_transcript(outcome.state),
            completed=outcome.completed,
            iterations=outcome.iterations,
        )

    def stream(
        self,
        message: str,
        history: Optional[Iterable[Mapping[str, Any]]] = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> StreamPublisher:
        """Prepare a streaming run; iterate ``publish()`` on the result to drive it."""
        return StreamPublisher(
            self.loop,
            messages_from_history(history, message),
            cancel_event=cancel_event,
            reconciler=EventReconciler(run_id=uuid4().hex[:12]),
        )

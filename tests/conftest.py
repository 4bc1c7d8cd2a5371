import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from aigo.llm.base_llm import BaseLLM, LLMDelta, LLMResponse
from aigo.reasoner.events import ExecutionEvent
from aigo.reasoner.messages import ConversationState, Message, Text, ToolCallRequest
from aigo.reasoner.react import ReACTLoop
from aigo.tools.base import ToolBase
from aigo.tools.calculator import CalculatorTool
from aigo.tools.registry import ToolRegistry


def call(name: str, args: Any, id: str) -> ToolCallRequest:
    """Tool request with JSON-string arguments, the way providers send them."""
    raw = args if isinstance(args, str) else json.dumps(args)
    return ToolCallRequest(id=id, name=name, arguments=raw)


def reply(text: str = "", *calls: ToolCallRequest) -> LLMResponse:
    return LLMResponse(text=Text(text), tool_calls=list(calls))


class DummyLLM(BaseLLM):
    """Scripted model: returns queued responses in order.

    ``fail_on`` makes the n-th call (0-based) raise. With ``token_split`` the
    streamed text is delivered word by word.
    """

    def __init__(
        self,
        responses: Optional[Sequence[LLMResponse]] = None,
        *,
        fail_on: Optional[int] = None,
        token_split: bool = False,
    ):
        # Intentionally do not call super().__init__ to avoid model env requirement
        self.model = "dummy"
        self.temperature = None
        self.responses = list(responses or [])
        self.fail_on = fail_on
        self.token_split = token_split
        self.calls: List[Dict[str, Any]] = []

    async def acompletion(self, messages, *, tools=None, **kwargs) -> LLMResponse:  # type: ignore[override]
        self.calls.append({"messages": messages, "tools": tools})
        if self.fail_on is not None and len(self.calls) - 1 == self.fail_on:
            raise RuntimeError("model unavailable")
        if not self.responses:
            return reply("")
        return self.responses.pop(0)

    async def astream(self, messages, *, tools=None, **kwargs):  # type: ignore[override]
        response = await self.acompletion(messages, tools=tools, **kwargs)
        text = response.text_value
        if self.token_split:
            words = text.split(" ")
            for i, word in enumerate(words):
                yield LLMDelta(word if i == len(words) - 1 else word + " ")
        elif text:
            yield LLMDelta(text)
        yield response


class RecordingTool(ToolBase):
    """Tool that records its invocations and returns (or raises) scripted values."""

    def __init__(self, name: str, result: Any = "ok", error: Optional[Exception] = None, log: Optional[List[str]] = None):
        self.name = name
        self.description = f"{name} test tool"
        self.parameters = {"type": "object", "properties": {}}
        self.result = result
        self.error = error
        self.invocations: List[Dict[str, Any]] = []
        self.log = log if log is not None else []

    def invoke(self, arguments):
        self.invocations.append(dict(arguments))
        self.log.append(self.name)
        if self.error is not None:
            raise self.error
        return self.result


class ScriptedExecution:
    """Stand-in for a live execution feed built from a fixed event list.

    ``hang`` keeps the feed open after the last event until it is closed or
    cancelled. The terminal state only becomes visible once the feed is
    exhausted, unless ``expose_terminal`` is False.
    """

    def __init__(self, events: Sequence[ExecutionEvent], terminal: Optional[ConversationState], *, hang: bool, expose_terminal: bool):
        self._events = list(events)
        self._terminal = terminal
        self._hang = hang
        self._expose = expose_terminal
        self._exhausted = False
        self.pulled = 0
        self.closed = False

    @property
    def terminal_state(self) -> Optional[ConversationState]:
        return self._terminal if (self._exhausted and self._expose) else None

    def __aiter__(self):
        return self

    async def __anext__(self) -> ExecutionEvent:
        if self.pulled < len(self._events):
            event = self._events[self.pulled]
            self.pulled += 1
            await asyncio.sleep(0)
            return event
        if self._hang:
            await asyncio.Event().wait()
        self._exhausted = True
        raise StopAsyncIteration

    async def aclose(self) -> None:
        self.closed = True


class ScriptedEngine:
    """Execution engine double that replays a recorded run."""

    def __init__(
        self,
        events: Sequence[ExecutionEvent],
        terminal: Optional[ConversationState],
        *,
        hang: bool = False,
        expose_terminal: bool = True,
    ):
        self.events = list(events)
        self.terminal = terminal
        self.hang = hang
        self.expose_terminal = expose_terminal
        self.run_calls = 0
        self.executions: List[ScriptedExecution] = []

    def stream(self, messages) -> ScriptedExecution:
        execution = ScriptedExecution(self.events, self.terminal, hang=self.hang, expose_terminal=self.expose_terminal)
        self.executions.append(execution)
        return execution

    async def run(self, messages) -> ConversationState:
        self.run_calls += 1
        return self.terminal


async def record_run(loop: ReACTLoop, messages: Sequence[Message]) -> Tuple[List[ExecutionEvent], ConversationState]:
    execution = loop.stream(messages)
    events = [event async for event in execution]
    return events, execution.terminal_state


def calculator_script() -> List[LLMResponse]:
    """Model turns for "what is 10+20?" with the calculator bound."""
    return [
        reply("I will add 10 and 20.", call("calculator", {"a": 10, "b": 20, "operation": "add"}, "call_1")),
        reply("The result is 30."),
    ]


@pytest.fixture
def calculator_registry() -> ToolRegistry:
    return ToolRegistry([CalculatorTool()])


@pytest.fixture
def user_message() -> List[Message]:
    return [Message.user("what is 10+20?")]

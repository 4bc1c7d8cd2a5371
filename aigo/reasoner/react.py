from __future__ import annotations

import json
from contextlib import aclosing
from dataclasses import dataclass
from textwrap import dedent
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Protocol

from aigo.llm.base_llm import BaseLLM, LLMDelta, LLMResponse
from aigo.reasoner.events import THOUGHT_NODE, TOOLS_NODE, EventKind, ExecutionEvent
from aigo.reasoner.exceptions import LoopInvocationError
from aigo.reasoner.messages import ConversationState, Message, Role, ToolCallRequest, ToolResult
from aigo.reasoner.normalize import extract_text, normalize_arguments
from aigo.tools.exceptions import ToolNotFoundError
from aigo.tools.registry import ToolRegistry
from utils.logger import get_logger
from utils.observability import observe, record_result, span_for

logger = get_logger(__name__)


# ----------------------------- Prompts ---------------------------------

DEFAULT_SYSTEM_PROMPT = dedent(
    """
    You are a helpful AI assistant using the ReAct (Reasoning and Acting) framework.
    You think step by step, then act, then observe, then think again.

    CRITICAL RULES:
    1. ALWAYS explain your reasoning in the message content BEFORE calling any tools.
    2. When you determine that you need a tool, call it. Do not try to complete the task without it.
    3. If a question requires several operations, call the tool once for EACH operation and wait for
       its result before the next call. Do not combine operations into a single tool call.
    4. After each tool result, think about it and decide whether more tool calls are needed.
    5. Only give the final answer after all necessary tool calls are complete.
    """
).strip()


# ----------------------------- Results ---------------------------------

@dataclass(frozen=True)
class LoopOutcome:
    state: ConversationState
    iterations: int
    truncated: bool = False
    total_tokens: int = 0

    @property
    def final_answer(self) -> str:
        """Text of the last assistant message that has any, or an empty string."""
        for msg in reversed(self.state.messages):
            if msg.role is Role.ASSISTANT:
                text = extract_text(msg).strip()
                if text:
                    return text
        return ""

    @property
    def completed(self) -> bool:
        last = self.state.last
        return not self.truncated and last is not None and last.role is Role.ASSISTANT and not last.has_tool_calls


class LoopExecution:
    """Live execution feed of one loop run.

    Iterate it to receive ``ExecutionEvent``s. Once the feed is exhausted,
    ``terminal_state`` holds the final conversation; it stays ``None`` if the
    feed was closed early or failed.
    """

    def __init__(self) -> None:
        self.outcome: Optional[LoopOutcome] = None
        self._events: Optional[AsyncIterator[ExecutionEvent]] = None

    @property
    def terminal_state(self) -> Optional[ConversationState]:
        return self.outcome.state if self.outcome else None

    def __aiter__(self) -> "LoopExecution":
        return self

    async def __anext__(self) -> ExecutionEvent:
        return await self._events.__anext__()

    async def aclose(self) -> None:
        if self._events is not None:
            await self._events.aclose()


class ExecutionEngine(Protocol):
    """What the stream publisher needs from a reasoning loop."""

    async def run(self, messages: Iterable[Message]) -> ConversationState: ...

    def stream(self, messages: Iterable[Message]) -> LoopExecution: ...


def should_continue(state: ConversationState) -> bool:
    """Route to tool execution iff the last message requests tools."""
    last = state.last
    return last is not None and last.has_tool_calls


# ----------------------------- Loop ---------------------------------

class ReACTLoop:
    """Think -> act -> observe loop over a language model with bound tools.

    ``max_iterations`` caps the number of act cycles. The model is therefore
    called at most ``max_iterations + 1`` times; tool requests in the last
    allowed response are not executed and the outcome is marked truncated.
    """

    DEFAULT_MAX_ITERATIONS = 10

    def __init__(
        self,
        *,
        llm: BaseLLM,
        tools: ToolRegistry,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        system_prompt: Optional[str] = None,
    ) -> None:
        if max_iterations < 0:
            raise ValueError("max_iterations must be >= 0")
        self.llm = llm
        self.tools = tools
        self.max_iterations = max_iterations
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT

    async def run(self, messages: Iterable[Message]) -> ConversationState:
        return (await self.execute(messages)).state

    @observe(root=True)
    async def execute(self, messages: Iterable[Message]) -> LoopOutcome:
        """Run to completion without token streaming."""
        execution = LoopExecution()
        execution._events = self._drive(ConversationState(tuple(messages)), execution, stream_tokens=False)
        async for _ in execution:
            pass
        return execution.outcome

    def stream(self, messages: Iterable[Message]) -> LoopExecution:
        """Start a run whose events (model tokens included) are pulled by the caller."""
        execution = LoopExecution()
        execution._events = self._traced_drive(ConversationState(tuple(messages)), execution)
        return execution

    async def _traced_drive(self, state: ConversationState, execution: LoopExecution) -> AsyncIterator[ExecutionEvent]:
        with span_for(f"{__name__}.{type(self).__qualname__}.stream", message_count=len(state)) as span:
            async with aclosing(self._drive(state, execution, stream_tokens=True)) as events:
                async for event in events:
                    yield event
            record_result(span, execution.outcome)

    async def _drive(
        self,
        state: ConversationState,
        execution: LoopExecution,
        *,
        stream_tokens: bool,
    ) -> AsyncIterator[ExecutionEvent]:
        logger.info("react_loop_started", max_iterations=self.max_iterations, message_count=len(state))
        iterations = 0
        turn = 0
        truncated = False
        total_tokens = 0

        while True:
            yield ExecutionEvent(EventKind.NODE_START, THOUGHT_NODE, turn, input=state)

            response: Optional[LLMResponse] = None
            payload = self._payload(state)
            schemas = [tool.to_schema() for tool in self.tools.all()] or None
            try:
                if stream_tokens:
                    async for item in self.llm.astream(payload, tools=schemas):
                        if isinstance(item, LLMDelta):
                            yield ExecutionEvent(EventKind.MODEL_TOKEN, THOUGHT_NODE, turn, chunk=item.text)
                        else:
                            response = item
                else:
                    response = await self.llm.acompletion(payload, tools=schemas)
            except Exception as exc:
                logger.error("model_invocation_failed", turn=turn, error=str(exc), exc_info=True)
                raise LoopInvocationError(str(exc), turn) from exc
            if response is None:
                raise LoopInvocationError("model produced no response", turn)

            if isinstance(response.total_tokens, int):
                total_tokens += response.total_tokens
            message = response.to_message()
            before = state
            state = state.append(message)
            preview = response.text_value
            logger.info(
                "thought_generated",
                turn=turn,
                thought=preview[:200] + ("..." if len(preview) > 200 else ""),
                tool_calls=[tc.name for tc in message.tool_calls],
            )
            yield ExecutionEvent(EventKind.NODE_END, THOUGHT_NODE, turn, input=before, output=message)

            if not should_continue(state):
                logger.info("reasoning_complete", reason="final_answer", turns=turn + 1, iterations=iterations)
                break
            if iterations >= self.max_iterations:
                truncated = True
                logger.warning("max_iterations_reached", max_iterations=self.max_iterations, turns=turn + 1)
                break

            yield ExecutionEvent(EventKind.NODE_START, TOOLS_NODE, turn, input=state)
            results: List[ToolResult] = []
            for call in message.tool_calls:
                results.append(await self._invoke_tool(call, turn))
            tool_message = Message.tool(results)
            before = state
            state = state.append(tool_message)
            iterations += 1
            yield ExecutionEvent(EventKind.NODE_END, TOOLS_NODE, turn, input=before, output=tool_message)
            turn += 1

        execution.outcome = LoopOutcome(
            state=state, iterations=iterations, truncated=truncated, total_tokens=total_tokens
        )

    def _payload(self, state: ConversationState) -> List[Dict[str, Any]]:
        payload = state.to_llm_messages()
        first = state.messages[0] if state.messages else None
        if first is None or first.role is not Role.SYSTEM:
            payload.insert(0, {"role": Role.SYSTEM.value, "content": self.system_prompt})
        return payload

    async def _invoke_tool(self, call: ToolCallRequest, turn: int) -> ToolResult:
        try:
            tool = self.tools.require(call.name)
        except ToolNotFoundError as exc:
            logger.warning("tool_not_found", tool_name=call.name, turn=turn)
            return ToolResult(call.id, call.name, exc.message, is_error=True)

        arguments = normalize_arguments(call.arguments)
        try:
            result = await tool.ainvoke(arguments)
        except Exception as exc:
            logger.warning("tool_execution_failed", tool_name=call.name, turn=turn, error=str(exc))
            return ToolResult(call.id, call.name, f"Error: {exc}", is_error=True)

        content = result if isinstance(result, str) else json.dumps(result, ensure_ascii=False, default=str)
        obs_preview = content if len(content) <= 200 else content[:200] + "..."
        logger.info("tool_executed", tool_name=call.name, turn=turn, params=dict(arguments), observation_preview=obs_preview)
        return ToolResult(call.id, call.name, content)

from __future__ import annotations

import time
import uuid
from typing import Callable, Dict, List, Optional, Tuple, Union

from aigo.reasoner.events import THOUGHT_NODE, TOOLS_NODE, EventKind, ExecutionEvent
from aigo.reasoner.normalize import extract_text
from aigo.streaming.steps import (
    Clock,
    ContentRecord,
    ReactStepRecord,
    Step,
    StepKind,
    ToolStatus,
    observation_step,
    tool_call_step,
)
from utils.logger import get_logger

logger = get_logger(__name__)

Record = Union[ReactStepRecord, ContentRecord]


class EventReconciler:
    """Turns execution events into progress Steps.

    Holds one piece of cross-event state, the pending thought id: it is
    reserved when a ``thought`` node starts and consumed when that node ends
    with real content. No Step is emitted for a thought until tokens or the
    finished message give it content.

    Ids are derived from ``run_id``, the thought ordinal and tool invocation
    identities, so replaying the same events after ``reset`` yields the same
    Steps.
    """

    def __init__(self, run_id: Optional[str] = None, clock: Clock = time.time) -> None:
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.clock = clock
        self._handlers: Dict[Tuple[EventKind, str], Callable[[ExecutionEvent], List[Record]]] = {
            (EventKind.NODE_START, THOUGHT_NODE): self._on_thought_start,
            (EventKind.NODE_END, THOUGHT_NODE): self._on_thought_end,
            (EventKind.MODEL_TOKEN, THOUGHT_NODE): self._on_token,
            (EventKind.NODE_START, TOOLS_NODE): self._on_tools_start,
            (EventKind.NODE_END, TOOLS_NODE): self._on_tools_end,
        }
        self.reset()

    def reset(self) -> None:
        self._pending_thought_id = ""
        self._thought_ordinal = 0
        self._token_buffer = ""
        self._in_flight: Dict[str, Step] = {}

    def process(self, event: ExecutionEvent) -> List[Record]:
        handler = self._handlers.get((event.kind, event.node))
        if handler is None:
            return []
        try:
            return handler(event)
        except Exception as exc:
            logger.warning(
                "event_reconcile_failed",
                event_kind=event.kind.value,
                node=event.node,
                turn=event.turn,
                error=str(exc),
                exc_info=True,
            )
            return []

    # ----------------------------- thought ---------------------------------

    def _reserve_thought_id(self) -> str:
        if not self._pending_thought_id:
            self._pending_thought_id = f"thought-{self.run_id}-{self._thought_ordinal}"
            self._thought_ordinal += 1
        return self._pending_thought_id

    def _on_thought_start(self, event: ExecutionEvent) -> List[Record]:
        self._reserve_thought_id()
        self._token_buffer = ""
        return []

    def _on_token(self, event: ExecutionEvent) -> List[Record]:
        if not event.chunk:
            return []
        self._token_buffer += event.chunk
        step = Step(
            id=self._reserve_thought_id(),
            kind=StepKind.THOUGHT,
            content=self._token_buffer,
            timestamp=self._now(),
            turn=event.turn,
        )
        return [ReactStepRecord(step=step), ContentRecord(content=event.chunk)]

    def _on_thought_end(self, event: ExecutionEvent) -> List[Record]:
        message = event.output
        self._token_buffer = ""
        if message is None:
            return []

        content = extract_text(message)
        if not content.strip():
            content = ""
        if not content and message.has_tool_calls:
            names = ", ".join(call.name or "a tool" for call in message.tool_calls)
            content = f"I need to use {names} to complete this task."
        if not content:
            self._pending_thought_id = ""
            return []

        step_id = self._reserve_thought_id()
        self._pending_thought_id = ""
        step = Step(
            id=step_id,
            kind=StepKind.THOUGHT if message.has_tool_calls else StepKind.FINAL_ANSWER,
            content=content,
            timestamp=self._now(),
            turn=event.turn,
        )
        return [ReactStepRecord(step=step)]

    # ----------------------------- tools ---------------------------------

    def _on_tools_start(self, event: ExecutionEvent) -> List[Record]:
        request = event.input.last_tool_request() if event.input is not None else None
        if request is None:
            return []

        records: List[Record] = []
        for index, call in enumerate(request.tool_calls):
            step = tool_call_step(call, turn=event.turn, index=index, clock=self.clock)
            if step.id in self._in_flight:
                continue
            self._in_flight[step.id] = step
            records.append(ReactStepRecord(step=step))
        return records

    def _on_tools_end(self, event: ExecutionEvent) -> List[Record]:
        request = event.input.last_tool_request() if event.input is not None else None
        if request is None or event.output is None:
            return []

        records: List[Record] = []
        results = {r.tool_call_id: r for r in event.output.tool_results}
        for index, call in enumerate(request.tool_calls):
            result = results.get(call.id)
            status = ToolStatus.ERROR if result is not None and result.is_error else ToolStatus.COMPLETED
            step = tool_call_step(call, turn=event.turn, index=index, status=status, clock=self.clock)
            if self._in_flight.pop(step.id, None) is None:
                # start event was missed; report the call before its observation
                records.append(ReactStepRecord(step=step))

        observation = observation_step(request.tool_calls, event.output, turn=event.turn, clock=self.clock)
        records.append(ReactStepRecord(step=observation))
        return records

    def _now(self) -> int:
        return int(self.clock() * 1000)

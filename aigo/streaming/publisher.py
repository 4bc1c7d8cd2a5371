from __future__ import annotations

import asyncio
import contextlib
from typing import AsyncIterator, Dict, Iterable, List, Optional, Set, Tuple, Any

from aigo.reasoner.events import ExecutionEvent
from aigo.reasoner.exceptions import LoopInvocationError
from aigo.reasoner.messages import ConversationState, Message
from aigo.reasoner.react import ExecutionEngine, LoopExecution
from aigo.streaming.fallback import backfill_steps
from aigo.streaming.reconciler import EventReconciler, Record
from aigo.streaming.steps import (
    TERMINATOR,
    ContentRecord,
    ErrorRecord,
    ReactStepRecord,
    Step,
    StepKind,
)
from utils.logger import get_logger

logger = get_logger(__name__)

AGENT_INVOCATION_ERROR = "AGENT_INVOCATION_ERROR"
STREAM_ERROR = "STREAM_ERROR"


class StepLedger:
    """What one stream has already sent: step ids, tool keys and thought content."""

    def __init__(self) -> None:
        self.steps: Dict[str, Step] = {}
        self.keys: Set[Tuple[Any, ...]] = set()
        self.last_step_id: Optional[str] = None
        self.last_thought: Optional[str] = None

    def admit(self, step: Step) -> bool:
        """Record ``step`` if it may be sent; False means drop it.

        A thought may be re-sent with new content under the same id only
        while it is still the most recent Step on the wire.
        """
        if step.id in self.steps:
            if not (step.is_thought and step.id == self.last_step_id):
                return False
        elif self.keys & step.dedup_keys():
            return False

        self.steps[step.id] = step
        self.keys |= step.dedup_keys()
        self.last_step_id = step.id
        if step.is_thought and step.content.strip():
            self.last_thought = step.content
        return True

    def has(self, kind: StepKind) -> bool:
        return any(s.kind is kind for s in self.steps.values())

    def has_final_answer(self) -> bool:
        return any(s.kind is StepKind.FINAL_ANSWER and s.content.strip() for s in self.steps.values())

    @property
    def complete(self) -> bool:
        return self.has(StepKind.TOOL_CALL) and self.has(StepKind.OBSERVATION) and self.has_final_answer()


class StreamPublisher:
    """Drives one streaming run and serialises it as NDJSON bytes.

    Live Steps are written as the reconciler produces them. When the feed
    ends, the terminal conversation is consulted once and any Step the live
    feed missed is backfilled. The stream ends with ``[DONE]`` or, on failure,
    with a single error record.

    Setting ``cancel_event`` stops pulling events, closes the execution feed
    and finishes the stream normally with ``incomplete`` set; the loop is
    never re-run after cancellation.
    """

    def __init__(
        self,
        engine: ExecutionEngine,
        messages: Iterable[Message],
        *,
        cancel_event: Optional[asyncio.Event] = None,
        reconciler: Optional[EventReconciler] = None,
    ) -> None:
        self.engine = engine
        self.messages: List[Message] = list(messages)
        self.cancel_event = cancel_event
        self.reconciler = reconciler or EventReconciler()
        self.ledger = StepLedger()
        self.terminal_state: Optional[ConversationState] = None
        self.incomplete = False
        self.cancelled = False
        self.error: Optional[str] = None

    async def publish(self) -> AsyncIterator[bytes]:
        self.reconciler.reset()
        run_id = self.reconciler.run_id
        logger.info("stream_started", run_id=run_id, message_count=len(self.messages))
        try:
            execution = self.engine.stream(self.messages)
            try:
                async for record in self._live(execution):
                    yield record.to_line()
            finally:
                await execution.aclose()

            if self.cancelled:
                self.incomplete = True
                logger.info("stream_cancelled", run_id=run_id, steps_sent=len(self.ledger.steps))
                yield TERMINATOR
                return

            state = execution.terminal_state
            if state is None:
                logger.warning("terminal_state_missing", run_id=run_id)
                state = await self.engine.run(self.messages)
            self.terminal_state = state

            for step in self._backfill(state, run_id):
                yield ReactStepRecord(step=step).to_line()

            logger.info("stream_completed", run_id=run_id, steps_sent=len(self.ledger.steps))
            yield TERMINATOR
        except LoopInvocationError as exc:
            self.incomplete = True
            self.error = str(exc)
            logger.error("stream_agent_failed", run_id=run_id, error=str(exc))
            yield ErrorRecord(error=str(exc), code=AGENT_INVOCATION_ERROR).to_line()
        except Exception as exc:
            self.incomplete = True
            self.error = str(exc)
            logger.error("stream_failed", run_id=run_id, error=str(exc), exc_info=True)
            yield ErrorRecord(error=str(exc), code=STREAM_ERROR).to_line()

    async def _live(self, execution: LoopExecution) -> AsyncIterator[Record]:
        while True:
            event = await self._next_event(execution)
            if event is None:
                return
            for record in self.reconciler.process(event):
                if isinstance(record, ContentRecord) or self.ledger.admit(record.step):
                    yield record

    async def _next_event(self, execution: LoopExecution) -> Optional[ExecutionEvent]:
        """Next event, or None when the feed is exhausted or the stream was cancelled."""
        if self.cancel_event is None:
            try:
                return await execution.__anext__()
            except StopAsyncIteration:
                return None

        if self.cancel_event.is_set():
            self.cancelled = True
            return None

        pull = asyncio.ensure_future(execution.__anext__())
        stop = asyncio.ensure_future(self.cancel_event.wait())
        done, _ = await asyncio.wait({pull, stop}, return_when=asyncio.FIRST_COMPLETED)
        if pull in done:
            stop.cancel()
            try:
                return pull.result()
            except StopAsyncIteration:
                return None

        pull.cancel()
        with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
            await pull
        self.cancelled = True
        return None

    def _backfill(self, state: ConversationState, run_id: str) -> List[Step]:
        if self.ledger.complete:
            return []

        emitted: List[Step] = []
        for step in backfill_steps(state, run_id=run_id, clock=self.reconciler.clock):
            if step.kind is StepKind.FINAL_ANSWER:
                last = self.ledger.last_thought
                if self.ledger.has_final_answer() and last is not None and last.strip() == step.content.strip():
                    continue
            if self.ledger.admit(step):
                emitted.append(step)

        if emitted:
            logger.info("fallback_backfill", run_id=run_id, step_count=len(emitted), kinds=[s.kind.value for s in emitted])
        return emitted

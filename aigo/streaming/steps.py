"""Step and wire-record models for the NDJSON progress stream.

Steps are serialised with camelCase keys. Ids are derived deterministically
from the tool invocation identity so a Step built from live events and the
same Step rebuilt from the terminal conversation compare equal.
"""
from __future__ import annotations

import time
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from aigo.reasoner.messages import Message, Role, ToolCallRequest
from aigo.reasoner.normalize import extract_text, normalize_arguments

__all__ = [
    "StepKind",
    "ToolStatus",
    "ToolInvocation",
    "Step",
    "ReactStepRecord",
    "ContentRecord",
    "ErrorRecord",
    "TERMINATOR",
    "tool_call_step",
    "observation_step",
    "final_answer_step",
    "turn_index",
]

TERMINATOR = b"[DONE]\n"

Clock = Callable[[], float]


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StepKind(str, Enum):
    THOUGHT = "thought"
    TOOL_CALL = "tool_call"
    OBSERVATION = "observation"
    FINAL_ANSWER = "final_answer"


class ToolStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class ToolInvocation(_WireModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    identity: Optional[str] = None
    status: ToolStatus = ToolStatus.RUNNING
    result: Optional[Any] = None
    error: Optional[str] = None


class Step(_WireModel):
    id: str
    kind: StepKind
    content: str = ""
    timestamp: int = 0
    tool_invocation: Optional[ToolInvocation] = None
    # identities merged into a unified observation
    tool_invocation_ids: Optional[List[str]] = None
    turn: Optional[int] = Field(default=None, exclude=True)

    @property
    def is_thought(self) -> bool:
        return self.kind in (StepKind.THOUGHT, StepKind.FINAL_ANSWER)

    def dedup_keys(self) -> FrozenSet[Tuple[Any, ...]]:
        """Structured keys identifying the tool invocation(s) this Step reports on.

        Keyed by identity; when the engine supplied none, by tool name and turn.
        Thought-family steps have no keys and are de-duplicated by id only.
        """
        if self.kind not in (StepKind.TOOL_CALL, StepKind.OBSERVATION) or self.tool_invocation is None:
            return frozenset()
        identities = self.tool_invocation_ids or ([self.tool_invocation.identity] if self.tool_invocation.identity else [])
        if identities:
            return frozenset((self.kind.value, identity) for identity in identities)
        return frozenset({(self.kind.value, self.tool_invocation.name, self.turn)})


class _Record(_WireModel):
    def to_line(self) -> bytes:
        return (self.model_dump_json(by_alias=True, exclude_none=True) + "\n").encode("utf-8")


class ReactStepRecord(_Record):
    type: Literal["react_step"] = "react_step"
    step: Step


class ContentRecord(_Record):
    type: Literal["content"] = "content"
    content: str


class ErrorRecord(_Record):
    type: Literal["error"] = "error"
    error: str
    code: Optional[str] = None


# ----------------------------- Builders ---------------------------------

def _now_ms(clock: Clock) -> int:
    return int(clock() * 1000)


def _call_key(call: ToolCallRequest, turn: int, index: int) -> str:
    return call.id or f"t{turn}-{index}"


def tool_call_step(
    call: ToolCallRequest,
    *,
    turn: int,
    index: int,
    status: ToolStatus = ToolStatus.RUNNING,
    clock: Clock = time.time,
) -> Step:
    name = call.name or "unknown"
    return Step(
        id=f"tool_call-{name}-{_call_key(call, turn, index)}",
        kind=StepKind.TOOL_CALL,
        content=f"Calling tool: {name}",
        timestamp=_now_ms(clock),
        tool_invocation=ToolInvocation(
            name=name,
            arguments=dict(normalize_arguments(call.arguments)),
            identity=call.id or None,
            status=status,
        ),
        turn=turn,
    )


def observation_step(
    calls: Sequence[ToolCallRequest],
    result_message: Message,
    *,
    turn: int,
    clock: Clock = time.time,
) -> Step:
    """One unified observation for every tool that ran in a turn.

    Status is ``error`` only when every tool failed; individual failures are
    listed in ``error`` either way.
    """
    names = [call.name or "unknown" for call in calls]
    label = names[0] if len(names) == 1 else f"{len(names)} tools"
    text = extract_text(result_message)
    failures = [r for r in result_message.tool_results if r.is_error]
    if result_message.tool_results and len(failures) == len(result_message.tool_results):
        status = ToolStatus.ERROR
    else:
        status = ToolStatus.COMPLETED

    identities = [call.id for call in calls if call.id]
    suffix = "+".join(identities) if identities else f"t{turn}"
    return Step(
        id=f"observation-{suffix}",
        kind=StepKind.OBSERVATION,
        content=text,
        timestamp=_now_ms(clock),
        tool_invocation=ToolInvocation(
            name=label,
            arguments=dict(normalize_arguments(calls[0].arguments)) if len(calls) == 1 else {},
            identity=identities[0] if len(identities) == 1 else None,
            status=status,
            result=text,
            error="\n".join(f"{r.name}: {r.content}" for r in failures) or None,
        ),
        tool_invocation_ids=identities or None,
        turn=turn,
    )


def final_answer_step(step_id: str, content: str, *, turn: int, clock: Clock = time.time) -> Step:
    return Step(id=step_id, kind=StepKind.FINAL_ANSWER, content=content, timestamp=_now_ms(clock), turn=turn)


def turn_index(messages: Sequence[Message], position: int) -> int:
    """Turn of the assistant message at ``position``: assistant replies since the last user message, minus one."""
    turn = -1
    for msg in messages[: position + 1]:
        if msg.role is Role.USER:
            turn = -1
        elif msg.role is Role.ASSISTANT:
            turn += 1
    return max(turn, 0)

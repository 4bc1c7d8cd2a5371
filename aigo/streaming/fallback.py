from __future__ import annotations

import time
from typing import List, Sequence

from aigo.reasoner.messages import ConversationState, Message, Role
from aigo.reasoner.normalize import extract_text
from aigo.streaming.steps import (
    Clock,
    Step,
    ToolStatus,
    final_answer_step,
    observation_step,
    tool_call_step,
    turn_index,
)


def backfill_steps(state: ConversationState, *, run_id: str, clock: Clock = time.time) -> List[Step]:
    """Rebuild the Steps of the current run from a terminal conversation.

    Only messages after the last user message belong to the run. Steps come
    out in conversation order and carry the same ids and keys the live
    reconciler would have produced, so the publisher can filter what was
    already sent.

    A run cut short by the iteration cap ends on a tool request that was
    never executed. Its calls are not reported; the run's latest assistant
    text becomes the final answer instead.
    """
    messages = state.messages
    start = 0
    for position, msg in enumerate(messages):
        if msg.role is Role.USER:
            start = position + 1

    steps: List[Step] = []
    for position in range(start, len(messages)):
        msg = messages[position]
        if msg.role is not Role.ASSISTANT or not msg.has_tool_calls:
            continue

        following = messages[position + 1] if position + 1 < len(messages) else None
        if following is None:
            continue
        turn = turn_index(messages, position)
        result_message = following if following.role is Role.TOOL else None
        results = {r.tool_call_id: r for r in result_message.tool_results} if result_message else {}

        for index, call in enumerate(msg.tool_calls):
            result = results.get(call.id)
            if result_message is None:
                status = ToolStatus.RUNNING
            elif result is not None and result.is_error:
                status = ToolStatus.ERROR
            else:
                status = ToolStatus.COMPLETED
            steps.append(tool_call_step(call, turn=turn, index=index, status=status, clock=clock))

        if result_message is not None:
            steps.append(observation_step(msg.tool_calls, result_message, turn=turn, clock=clock))

    last = state.last
    if last is not None and last.role is Role.ASSISTANT:
        content = _latest_text(messages[start:])
        if content:
            turn = turn_index(messages, len(messages) - 1)
            steps.append(final_answer_step(f"final-{run_id}-{turn}", content, turn=turn, clock=clock))
    return steps


def _latest_text(messages: Sequence[Message]) -> str:
    for msg in reversed(messages):
        if msg.role is Role.ASSISTANT:
            content = extract_text(msg)
            if content.strip():
                return content
    return ""

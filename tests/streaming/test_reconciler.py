import pytest

from aigo.reasoner.events import THOUGHT_NODE, TOOLS_NODE, EventKind, ExecutionEvent
from aigo.reasoner.messages import ConversationState, Message, ToolResult
from aigo.reasoner.react import ReACTLoop
from aigo.streaming.reconciler import EventReconciler
from aigo.streaming.steps import ContentRecord, ReactStepRecord, StepKind, ToolStatus
from tests.conftest import DummyLLM, calculator_script, call, record_run


def fixed_clock():
    return 1700000000.0


@pytest.fixture
def reconciler():
    return EventReconciler(run_id="r1", clock=fixed_clock)


def steps_of(records):
    return [r.step for r in records if isinstance(r, ReactStepRecord)]


def tool_turn(*calls_and_results):
    """Events for one tools node: (ToolCallRequest, ToolResult) pairs."""
    calls = [c for c, _ in calls_and_results]
    request = Message.assistant("", calls)
    state = ConversationState((Message.user("q"), request))
    output = Message.tool([r for _, r in calls_and_results])
    start = ExecutionEvent(EventKind.NODE_START, TOOLS_NODE, 0, input=state)
    end = ExecutionEvent(EventKind.NODE_END, TOOLS_NODE, 0, input=state, output=output)
    return start, end


def test_thought_start_emits_nothing_until_content(reconciler):
    start = ExecutionEvent(EventKind.NODE_START, THOUGHT_NODE, 0, input=ConversationState())
    assert reconciler.process(start) == []

    token = ExecutionEvent(EventKind.MODEL_TOKEN, THOUGHT_NODE, 0, chunk="Hel")
    records = reconciler.process(token)
    [step] = steps_of(records)
    assert step.id == "thought-r1-0"
    assert step.kind is StepKind.THOUGHT
    assert step.content == "Hel"
    assert records[1] == ContentRecord(content="Hel")


def test_tokens_accumulate_under_one_id(reconciler):
    reconciler.process(ExecutionEvent(EventKind.NODE_START, THOUGHT_NODE, 0))
    reconciler.process(ExecutionEvent(EventKind.MODEL_TOKEN, THOUGHT_NODE, 0, chunk="The result "))
    records = reconciler.process(ExecutionEvent(EventKind.MODEL_TOKEN, THOUGHT_NODE, 0, chunk="is 30."))
    [step] = steps_of(records)
    assert step.content == "The result is 30."

    end = ExecutionEvent(EventKind.NODE_END, THOUGHT_NODE, 0, output=Message.assistant("The result is 30."))
    [final] = steps_of(reconciler.process(end))
    assert final.id == step.id
    assert final.kind is StepKind.FINAL_ANSWER


def test_empty_reply_with_tool_calls_gets_synthesised_thought(reconciler):
    reconciler.process(ExecutionEvent(EventKind.NODE_START, THOUGHT_NODE, 0))
    message = Message.assistant("  ", [call("calculator", {"a": 1, "b": 2, "operation": "add"}, "c1")])
    [step] = steps_of(reconciler.process(ExecutionEvent(EventKind.NODE_END, THOUGHT_NODE, 0, output=message)))
    assert step.kind is StepKind.THOUGHT
    assert step.content == "I need to use calculator to complete this task."


def test_empty_reply_without_tool_calls_emits_nothing(reconciler):
    reconciler.process(ExecutionEvent(EventKind.NODE_START, THOUGHT_NODE, 0))
    end = ExecutionEvent(EventKind.NODE_END, THOUGHT_NODE, 0, output=Message.assistant(""))
    assert reconciler.process(end) == []

    # the next thought gets a fresh id
    reconciler.process(ExecutionEvent(EventKind.NODE_START, THOUGHT_NODE, 1))
    [step] = steps_of(reconciler.process(ExecutionEvent(EventKind.NODE_END, THOUGHT_NODE, 1, output=Message.assistant("ok"))))
    assert step.id != "thought-r1-0"


def test_tools_node_reports_calls_then_observation(reconciler):
    start, end = tool_turn(
        (call("calculator", {"a": 10, "b": 20, "operation": "add"}, "call_1"), ToolResult("call_1", "calculator", "10 + 20 = 30")),
    )
    [running] = steps_of(reconciler.process(start))
    assert running.id == "tool_call-calculator-call_1"
    assert running.content == "Calling tool: calculator"
    assert running.tool_invocation.status is ToolStatus.RUNNING
    assert running.tool_invocation.arguments == {"a": 10, "b": 20, "operation": "add"}

    [observation] = steps_of(reconciler.process(end))
    assert observation.kind is StepKind.OBSERVATION
    assert observation.content == "10 + 20 = 30"
    assert observation.tool_invocation.name == "calculator"
    assert observation.tool_invocation.status is ToolStatus.COMPLETED


def test_several_tools_merge_into_one_observation(reconciler):
    start, end = tool_turn(
        (call("calculator", {"a": 1, "b": 0, "operation": "divide"}, "c1"), ToolResult("c1", "calculator", "Error: division by zero", is_error=True)),
        (call("weather", {"city": "Paris"}, "c2"), ToolResult("c2", "weather", "sunny")),
    )
    assert len(steps_of(reconciler.process(start))) == 2
    [observation] = steps_of(reconciler.process(end))

    assert observation.id == "observation-c1+c2"
    assert observation.tool_invocation.name == "2 tools"
    assert observation.tool_invocation_ids == ["c1", "c2"]
    assert observation.content == "Error: division by zero\nsunny"
    # one success keeps the merged status at completed
    assert observation.tool_invocation.status is ToolStatus.COMPLETED
    assert observation.tool_invocation.error == "calculator: Error: division by zero"


def test_all_tools_failing_marks_observation_error(reconciler):
    _, end = tool_turn(
        (call("weather", {}, "c1"), ToolResult("c1", "weather", "Tool weather not found", is_error=True)),
    )
    observation = steps_of(reconciler.process(end))[-1]
    assert observation.tool_invocation.status is ToolStatus.ERROR


def test_missed_tools_start_still_reports_call(reconciler):
    _, end = tool_turn(
        (call("calculator", {"a": 1, "b": 1, "operation": "add"}, "c1"), ToolResult("c1", "calculator", "1 + 1 = 2")),
    )
    steps = steps_of(reconciler.process(end))
    assert [s.kind for s in steps] == [StepKind.TOOL_CALL, StepKind.OBSERVATION]
    assert steps[0].tool_invocation.status is ToolStatus.COMPLETED


def test_handler_failure_is_contained(reconciler):
    broken = ExecutionEvent(EventKind.NODE_END, TOOLS_NODE, 0, input="not a state", output=Message.tool([]))  # type: ignore[arg-type]
    assert reconciler.process(broken) == []


@pytest.mark.asyncio
async def test_replay_after_reset_is_identical(calculator_registry, user_message):
    loop = ReACTLoop(llm=DummyLLM(calculator_script()), tools=calculator_registry)
    events, _ = await record_run(loop, user_message)

    replay = EventReconciler(run_id="r1", clock=fixed_clock)
    once = [r for e in events for r in replay.process(e)]
    replay.reset()
    twice = [r for e in events for r in replay.process(e)]

    assert once
    assert once == twice

import pytest

from aigo.reasoner.events import THOUGHT_NODE, TOOLS_NODE, EventKind
from aigo.reasoner.exceptions import LoopInvocationError
from aigo.reasoner.messages import ConversationState, Message, Role, Text
from aigo.reasoner.react import DEFAULT_SYSTEM_PROMPT, ReACTLoop, should_continue
from aigo.tools.exceptions import ToolExecutionError
from aigo.tools.registry import ToolRegistry
from tests.conftest import DummyLLM, RecordingTool, calculator_script, call, record_run, reply


def _tool_messages(state: ConversationState):
    return [m for m in state.messages if m.role is Role.TOOL]


@pytest.mark.asyncio
async def test_calculator_scenario(calculator_registry, user_message):
    llm = DummyLLM(calculator_script())
    loop = ReACTLoop(llm=llm, tools=calculator_registry)

    outcome = await loop.execute(user_message)

    assert [m.role for m in outcome.state.messages] == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
    assert _tool_messages(outcome.state)[0].content == Text("10 + 20 = 30")
    assert outcome.final_answer == "The result is 30."
    assert outcome.iterations == 1
    assert outcome.completed and not outcome.truncated


@pytest.mark.asyncio
async def test_run_returns_terminal_state(calculator_registry, user_message):
    loop = ReACTLoop(llm=DummyLLM(calculator_script()), tools=calculator_registry)
    state = await loop.run(user_message)
    assert isinstance(state, ConversationState)
    assert state.last.content == Text("The result is 30.")


@pytest.mark.asyncio
async def test_no_tool_needed_stops_after_one_call(calculator_registry):
    llm = DummyLLM([reply("Hello! How can I help you today?")])
    loop = ReACTLoop(llm=llm, tools=calculator_registry)

    outcome = await loop.execute([Message.user("hello")])

    assert len(llm.calls) == 1
    assert outcome.final_answer == "Hello! How can I help you today?"
    assert not _tool_messages(outcome.state)


@pytest.mark.asyncio
async def test_system_prompt_prepended_and_tools_bound(calculator_registry, user_message):
    llm = DummyLLM([reply("done")])
    loop = ReACTLoop(llm=llm, tools=calculator_registry)

    outcome = await loop.execute(user_message)

    payload = llm.calls[0]["messages"]
    assert payload[0] == {"role": "system", "content": DEFAULT_SYSTEM_PROMPT}
    assert payload[1] == {"role": "user", "content": "what is 10+20?"}
    assert llm.calls[0]["tools"][0]["function"]["name"] == "calculator"
    # instruction is not stored in the conversation
    assert outcome.state.messages[0].role is Role.USER


@pytest.mark.asyncio
async def test_existing_system_message_not_duplicated(calculator_registry):
    llm = DummyLLM([reply("ok")])
    loop = ReACTLoop(llm=llm, tools=calculator_registry)

    await loop.execute([Message.system("Be terse."), Message.user("hi")])

    payload = llm.calls[0]["messages"]
    assert [p["role"] for p in payload] == ["system", "user"]
    assert payload[0]["content"] == "Be terse."


@pytest.mark.asyncio
async def test_division_by_zero_is_observed_not_raised(calculator_registry):
    llm = DummyLLM([
        reply("Dividing.", call("calculator", {"a": 1, "b": 0, "operation": "divide"}, "call_1")),
        reply("You cannot divide by zero."),
    ])
    loop = ReACTLoop(llm=llm, tools=calculator_registry)

    outcome = await loop.execute([Message.user("what is 1/0?")])

    [tool_message] = _tool_messages(outcome.state)
    assert tool_message.content == Text("Error: division by zero")
    assert tool_message.tool_results[0].is_error
    assert outcome.final_answer == "You cannot divide by zero."
    # the model saw the error as a tool result
    assert llm.calls[1]["messages"][-1] == {
        "role": "tool", "tool_call_id": "call_1", "name": "calculator", "content": "Error: division by zero",
    }


@pytest.mark.asyncio
async def test_unknown_tool_reported_to_model():
    llm = DummyLLM([reply("", call("weather", {}, "call_1")), reply("No weather tool.")])
    loop = ReACTLoop(llm=llm, tools=ToolRegistry())

    outcome = await loop.execute([Message.user("weather?")])

    assert _tool_messages(outcome.state)[0].content == Text("Tool weather not found")
    assert outcome.final_answer == "No weather tool."


@pytest.mark.asyncio
async def test_tools_run_sequentially_in_requested_order():
    log = []
    registry = ToolRegistry([
        RecordingTool("first", result="1", log=log),
        RecordingTool("second", result={"value": 2}, log=log),
        RecordingTool("third", error=ToolExecutionError("boom", "third"), log=log),
    ])
    llm = DummyLLM([
        reply("Running three tools.", call("second", {}, "c2"), call("first", {}, "c1"), call("third", {}, "c3")),
        reply("done"),
    ])
    loop = ReACTLoop(llm=llm, tools=registry)

    outcome = await loop.execute([Message.user("go")])

    assert log == ["second", "first", "third"]
    [tool_message] = _tool_messages(outcome.state)
    assert tool_message.content == Text('{"value": 2}\n1\nError: boom')
    assert [r.tool_call_id for r in tool_message.tool_results] == ["c2", "c1", "c3"]


@pytest.mark.asyncio
async def test_arguments_are_normalised_before_invocation():
    tool = RecordingTool("echo")
    registry = ToolRegistry([tool])
    double_encoded = '"{\\"city\\": \\"Paris\\"}"'
    llm = DummyLLM([reply("", call("echo", double_encoded, "c1")), reply("done")])

    await ReACTLoop(llm=llm, tools=registry).execute([Message.user("go")])

    assert tool.invocations == [{"city": "Paris"}]


@pytest.mark.asyncio
async def test_iteration_cap_one_never_makes_third_model_call(calculator_registry):
    llm = DummyLLM([
        reply("First add.", call("calculator", {"a": 10, "b": 20, "operation": "add"}, "c1")),
        reply("Now subtract.", call("calculator", {"a": 30, "b": 5, "operation": "subtract"}, "c2")),
        reply("should never be requested"),
    ])
    loop = ReACTLoop(llm=llm, tools=calculator_registry, max_iterations=1)

    outcome = await loop.execute([Message.user("(10+20)-5?")])

    assert len(llm.calls) == 2
    assert outcome.truncated
    assert not outcome.completed
    assert outcome.iterations == 1
    # the second request was not executed
    assert len(_tool_messages(outcome.state)) == 1
    assert outcome.final_answer == "Now subtract."


@pytest.mark.asyncio
async def test_iteration_cap_bounds_a_model_that_never_stops(calculator_registry):
    responses = [
        reply("again", call("calculator", {"a": i, "b": 1, "operation": "add"}, f"c{i}"))
        for i in range(50)
    ]
    llm = DummyLLM(responses)
    loop = ReACTLoop(llm=llm, tools=calculator_registry, max_iterations=3)

    outcome = await loop.execute([Message.user("loop forever")])

    assert len(llm.calls) == 4
    assert outcome.iterations == 3
    assert outcome.truncated


@pytest.mark.asyncio
async def test_model_failure_raises_loop_invocation_error(calculator_registry, user_message):
    llm = DummyLLM(calculator_script(), fail_on=1)
    loop = ReACTLoop(llm=llm, tools=calculator_registry)

    with pytest.raises(LoopInvocationError) as excinfo:
        await loop.execute(user_message)
    assert excinfo.value.turn == 1
    assert "model unavailable" in str(excinfo.value)


def test_negative_cap_rejected(calculator_registry):
    with pytest.raises(ValueError):
        ReACTLoop(llm=DummyLLM(), tools=calculator_registry, max_iterations=-1)


def test_should_continue_is_pure_function_of_last_message():
    no_tools = ConversationState((Message.user("q"), Message.assistant("a")))
    with_tools = no_tools.append(Message.assistant("", [call("calculator", {}, "c1")]))
    assert not should_continue(no_tools)
    assert should_continue(with_tools)
    assert not should_continue(ConversationState())


@pytest.mark.asyncio
async def test_stream_emits_events_in_node_order(calculator_registry, user_message):
    loop = ReACTLoop(llm=DummyLLM(calculator_script()), tools=calculator_registry)

    events, terminal = await record_run(loop, user_message)

    shape = [(e.kind, e.node) for e in events]
    assert shape == [
        (EventKind.NODE_START, THOUGHT_NODE),
        (EventKind.MODEL_TOKEN, THOUGHT_NODE),
        (EventKind.NODE_END, THOUGHT_NODE),
        (EventKind.NODE_START, TOOLS_NODE),
        (EventKind.NODE_END, TOOLS_NODE),
        (EventKind.NODE_START, THOUGHT_NODE),
        (EventKind.MODEL_TOKEN, THOUGHT_NODE),
        (EventKind.NODE_END, THOUGHT_NODE),
    ]
    assert [e.turn for e in events] == [0, 0, 0, 0, 0, 1, 1, 1]
    tools_end = events[4]
    assert tools_end.input.last.has_tool_calls
    assert tools_end.output.role is Role.TOOL
    assert terminal is not None and len(terminal) == 4


@pytest.mark.asyncio
async def test_stream_terminal_state_unset_when_closed_early(calculator_registry, user_message):
    loop = ReACTLoop(llm=DummyLLM(calculator_script()), tools=calculator_registry)
    execution = loop.stream(user_message)

    await execution.__anext__()
    await execution.aclose()

    assert execution.terminal_state is None

import threading

from conftest import LoopingModel, ScriptedModel, tool_calls
from pydantic import BaseModel, Field

from chat_agent.agent.dispatcher import (
    MODEL_FAILURE_MESSAGE,
    CancellationToken,
    ToolDispatcher,
)
from chat_agent.agent.registry import ToolRegistry, ToolSpec, Toolset
from chat_agent.config import AgentConfig
from chat_agent.errors import ModelCallError, ToolExecutionFault
from chat_agent.types import (
    CapabilitySettings,
    ConversationTurn,
    SessionContext,
    TextAnswer,
    ToolCallBatch,
    ToolCallRequest,
    ToolError,
    ToolResult,
    TurnState,
)

SETTINGS = CapabilitySettings(data_analysis=True)
CONTEXT = SessionContext(session_id=None, settings=SETTINGS)
QUESTION = (ConversationTurn(role="user", content="hello"),)


class ValueInput(BaseModel):
    value: int = Field(ge=1)


def _toolset(**handlers) -> Toolset:
    registry = ToolRegistry()
    for name, handler in handlers.items():
        registry.register(
            ToolSpec(
                name=name,
                description=f"{name} tool",
                capability="data_analysis",
                args_schema=ValueInput,
                handler=handler,
            )
        )
    return registry.enabled(SETTINGS, session_id=None)


def _echo(data: ValueInput, context: SessionContext) -> ToolResult:
    return ToolResult(content=f"value={data.value}")


def _run(model, toolset: Toolset, *, config: AgentConfig | None = None, token=None, conversation=QUESTION):
    return ToolDispatcher(model, config).run(
        conversation,
        system_prompt="system",
        toolset=toolset,
        context=CONTEXT,
        cancel_token=token,
    )


def test_text_answer_ends_turn_immediately() -> None:
    model = ScriptedModel([TextAnswer("hi there")])

    outcome = _run(model, _toolset(echo=_echo))

    assert outcome.state is TurnState.ANSWERED
    assert outcome.success is True
    assert outcome.final_message == "hi there"
    assert outcome.records == ()
    assert outcome.rounds == 1
    assert outcome.conversation[-1] == ConversationTurn(role="assistant", content="hi there")
    assert model.calls[0]["tools"] == ["echo"]


def test_tool_result_is_fed_back_to_model() -> None:
    model = ScriptedModel([tool_calls(("echo", {"value": 7})), TextAnswer("done")])

    outcome = _run(model, _toolset(echo=_echo))

    assert outcome.final_message == "done"
    assert outcome.rounds == 2
    (record,) = outcome.records
    assert record.success is True
    assert record.result_summary == "value=7"
    second_conversation = model.calls[1]["conversation"]
    assert second_conversation[-2].role == "assistant"
    assert second_conversation[-2].tool_calls[0].name == "echo"
    assert second_conversation[-1] == ConversationTurn(
        role="tool", content="value=7", tool_call_id="call-0", name="echo"
    )


def test_call_to_disabled_tool_is_rejected_without_invocation() -> None:
    model = ScriptedModel([tool_calls(("web_search", {"query": "weather"})), TextAnswer("ok")])

    outcome = _run(model, _toolset(echo=_echo))

    (record,) = outcome.records
    assert record.tool_name == "web_search"
    assert record.success is False
    assert record.error.startswith("policy violation")
    tool_turn = model.calls[1]["conversation"][-1]
    assert "disabled" in tool_turn.content
    assert model.calls[1]["tools"] == ["echo"]
    assert outcome.state is TurnState.ANSWERED


def test_invalid_arguments_never_reach_handler() -> None:
    invoked: list[int] = []

    def _handler(data: ValueInput, context: SessionContext) -> ToolResult:
        invoked.append(data.value)
        return ToolResult(content="unreachable")

    model = ScriptedModel([tool_calls(("echo", {"value": 0})), TextAnswer("ok")])

    outcome = _run(model, _toolset(echo=_handler))

    (record,) = outcome.records
    assert record.success is False
    assert record.error.startswith("invalid arguments: value")
    assert invoked == []
    assert model.calls[1]["conversation"][-1].content.startswith("ERROR: invalid arguments")


def test_unparseable_arguments_are_reported() -> None:
    batch = ToolCallBatch(
        calls=(ToolCallRequest("echo", {}, "call-x", parse_error="Expecting value"),)
    )
    model = ScriptedModel([batch, TextAnswer("ok")])

    outcome = _run(model, _toolset(echo=_echo))

    assert outcome.records[0].error == "invalid arguments: Expecting value"


def test_handler_failures_become_failure_records() -> None:
    def _fault(data, context):
        raise ToolExecutionFault("backend down")

    def _crash(data, context):
        raise RuntimeError("kaboom")

    def _handled(data, context):
        return ToolError("rate limited")

    model = ScriptedModel(
        [
            tool_calls(("fault", {"value": 1}), ("crash", {"value": 1}), ("handled", {"value": 1})),
            TextAnswer("sorry"),
        ]
    )

    outcome = _run(model, _toolset(fault=_fault, crash=_crash, handled=_handled))

    assert [record.success for record in outcome.records] == [False, False, False]
    assert [record.error for record in outcome.records] == [
        "backend down",
        "RuntimeError: kaboom",
        "rate limited",
    ]
    assert outcome.state is TurnState.ANSWERED
    assert outcome.final_message == "sorry"


def test_round_bound_stops_looping_model() -> None:
    model = LoopingModel("echo", {"value": 1})

    outcome = _run(model, _toolset(echo=_echo), config=AgentConfig(max_rounds=3))

    assert model.call_count == 3
    assert outcome.state is TurnState.BOUND_EXCEEDED
    assert outcome.success is False
    assert len(outcome.records) == 3
    assert outcome.final_message.startswith("I couldn't reach a final answer within 3 tool rounds.")
    assert "- echo: value=1" in outcome.final_message


def test_model_failure_aborts_turn() -> None:
    model = ScriptedModel([tool_calls(("echo", {"value": 2})), ModelCallError("timeout")])

    outcome = _run(model, _toolset(echo=_echo))

    assert outcome.state is TurnState.ABORTED
    assert outcome.success is False
    assert outcome.final_message == MODEL_FAILURE_MESSAGE
    assert len(outcome.records) == 1


def test_unexpected_model_exception_aborts_turn() -> None:
    outcome = _run(ScriptedModel([RuntimeError("socket closed")]), _toolset(echo=_echo))

    assert outcome.state is TurnState.ABORTED
    assert outcome.final_message == MODEL_FAILURE_MESSAGE


def test_calls_in_one_round_run_concurrently_and_keep_order() -> None:
    barrier = threading.Barrier(3, timeout=5)

    def _wait(data: ValueInput, context: SessionContext) -> ToolResult:
        barrier.wait()
        return ToolResult(content=f"value={data.value}")

    model = ScriptedModel(
        [
            tool_calls(("wait", {"value": 3}), ("wait", {"value": 1}), ("wait", {"value": 2})),
            TextAnswer("ok"),
        ]
    )

    outcome = _run(model, _toolset(wait=_wait))

    assert [record.success for record in outcome.records] == [True, True, True]
    assert [record.arguments["value"] for record in outcome.records] == [3, 1, 2]
    tool_turns = model.calls[1]["conversation"][-3:]
    assert [turn.tool_call_id for turn in tool_turns] == ["call-0", "call-1", "call-2"]


def test_attachments_and_truncation_in_tool_turn() -> None:
    def _big(data, context):
        return ToolResult(content="x" * 500, attachments=("img://cat.png",))

    model = ScriptedModel([tool_calls(("big", {"value": 1})), TextAnswer("ok")])

    outcome = _run(model, _toolset(big=_big), config=AgentConfig(max_tool_result_chars=100))

    content = model.calls[1]["conversation"][-1].content
    assert content.startswith("x" * 97 + "...")
    assert content.endswith("Attachments:\nimg://cat.png")
    assert outcome.records[0].attachments == ("img://cat.png",)


def test_cancelled_before_start_never_calls_model() -> None:
    token = CancellationToken()
    token.cancel()
    model = ScriptedModel([TextAnswer("never")])

    outcome = _run(model, _toolset(echo=_echo), token=token)

    assert outcome.state is TurnState.ABORTED
    assert model.calls == []


def test_cancellation_during_model_call_discards_response() -> None:
    token = CancellationToken()
    invoked: list[int] = []

    class _CancellingModel:
        def complete(self, conversation, system_prompt, tool_schemas):
            token.cancel()
            return tool_calls(("echo", {"value": 1}))

    def _handler(data, context):
        invoked.append(data.value)
        return ToolResult(content="unreachable")

    outcome = _run(_CancellingModel(), _toolset(echo=_handler), token=token)

    assert outcome.state is TurnState.ABORTED
    assert outcome.records == ()
    assert invoked == []


def test_input_conversation_is_not_mutated() -> None:
    conversation = [ConversationTurn(role="user", content="hello")]
    model = ScriptedModel([tool_calls(("echo", {"value": 1})), TextAnswer("ok")])

    outcome = _run(model, _toolset(echo=_echo), conversation=conversation)

    assert len(conversation) == 1
    assert len(outcome.conversation) == 4

import logging

import pytest
from pydantic import ValidationError

from chat_agent.config import AgentConfig, Settings
from chat_agent.obs.log import setup_logging
from chat_agent.types import AgentTurnResult, CapabilitySettings, ToolCallRecord, TurnState


def test_capability_settings_default_to_off() -> None:
    settings = CapabilitySettings()

    assert settings.model_dump() == {
        "web_search": False,
        "image_generation": False,
        "data_analysis": False,
        "think": False,
    }


def test_capability_settings_reject_unknown_keys() -> None:
    with pytest.raises(ValidationError):
        CapabilitySettings.model_validate({"web_search": True, "code_execution": True})


def test_capability_settings_are_strict_booleans() -> None:
    with pytest.raises(ValidationError):
        CapabilitySettings.model_validate({"web_search": "yes"})


def test_capability_settings_are_immutable() -> None:
    settings = CapabilitySettings(think=True)

    with pytest.raises(ValidationError):
        settings.think = False


def test_terminal_states() -> None:
    assert {state for state in TurnState if state.terminal} == {
        TurnState.ANSWERED,
        TurnState.BOUND_EXCEEDED,
        TurnState.ABORTED,
    }


def test_turn_result_payload_shape() -> None:
    result = AgentTurnResult(
        final_message="done",
        tool_call_log=(
            ToolCallRecord(
                tool_name="image_generation",
                arguments={"prompt": "cat"},
                success=True,
                attachments=("img://cat.png",),
            ),
        ),
        generated_image_refs=("img://cat.png",),
        metadata={"state": "answered"},
    )

    payload = result.to_payload()

    assert payload["images"] == ["img://cat.png"]
    assert payload["tool_calls"][0]["tool_name"] == "image_generation"
    assert payload["metadata"] == {"state": "answered"}


def test_settings_read_prefixed_and_nested_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("CHAT_AGENT_OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("CHAT_AGENT_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("CHAT_AGENT_AGENT__MAX_ROUNDS", "7")
    monkeypatch.setenv("CHAT_AGENT_CHUNKING__CHUNK_SIZE", "300")

    settings = Settings(_env_file=None)

    assert settings.log_level == "DEBUG"
    assert settings.agent.max_rounds == 7
    assert settings.chunking.chunk_size == 300
    assert settings.openai_api_key == ""


def test_openai_key_falls_back_to_unprefixed_variable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CHAT_AGENT_OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    assert Settings(_env_file=None).openai_api_key == "sk-test"


def test_agent_config_rejects_zero_rounds() -> None:
    with pytest.raises(ValidationError):
        AgentConfig(max_rounds=0)


def test_setup_logging_configures_package_logger(tmp_path) -> None:
    log_file = tmp_path / "logs" / "agent.log"

    logger = setup_logging(Settings(_env_file=None, log_level="WARNING", log_file=log_file))
    logging.getLogger("chat_agent.agent.dispatcher").warning("tool round failed")
    for handler in logger.handlers:
        handler.flush()

    assert logger.level == logging.WARNING
    assert logger.propagate is False
    assert "tool round failed" in log_file.read_text()
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_turn_result_is_read_only_after_return() -> None:
    arguments = {"query": "grass"}
    metadata = {"state": "answered", "rounds": 1}
    record = ToolCallRecord(tool_name="rag_retrieve", arguments=arguments, success=True)
    result = AgentTurnResult(
        final_message="Grass is green.",
        tool_call_log=[record],
        generated_image_refs=[],
        metadata=metadata,
    )

    arguments["query"] = "sky"
    metadata["state"] = "aborted"

    assert record.arguments["query"] == "grass"
    assert result.metadata["state"] == "answered"
    with pytest.raises(TypeError):
        result.metadata["state"] = "aborted"  # type: ignore[index]
    with pytest.raises(TypeError):
        record.arguments["query"] = "sky"  # type: ignore[index]
    assert result.tool_call_log == (record,)
    assert result.to_payload()["tool_calls"][0]["arguments"] == {"query": "grass"}


def test_tool_result_budget_must_hold_every_retrieved_chunk(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CHAT_AGENT_AGENT__MAX_TOOL_RESULT_CHARS", raising=False)

    assert Settings(_env_file=None).agent.max_tool_result_chars >= 4 * 1200
    with pytest.raises(ValidationError, match="max_tool_result_chars"):
        Settings(_env_file=None, agent=AgentConfig(max_tool_result_chars=1000))

"""Bounded model/tool loop with an explicit enabled-tool guard."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from time import perf_counter

from pydantic import ValidationError

from chat_agent.agent.llm import LanguageModel
from chat_agent.agent.registry import Toolset
from chat_agent.config import AgentConfig
from chat_agent.errors import ModelCallError, PolicyViolation, ToolExecutionFault
from chat_agent.types import (
    ConversationTurn,
    SessionContext,
    TextAnswer,
    ToolCallBatch,
    ToolCallRecord,
    ToolCallRequest,
    ToolError,
    TurnState,
)

logger = logging.getLogger(__name__)

_SUMMARY_CHARS = 320

MODEL_FAILURE_MESSAGE = (
    "Sorry, I couldn't reach the language model to finish this answer. Please try again."
)
CANCELLED_MESSAGE = "The request was cancelled before an answer was produced."


class CancellationToken:
    """Thread-safe cancellation flag checked at every network boundary."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True, slots=True)
class DispatchOutcome:
    state: TurnState
    final_message: str
    records: tuple[ToolCallRecord, ...]
    conversation: tuple[ConversationTurn, ...]
    rounds: int
    success: bool


class ToolDispatcher:
    """Runs the agent loop for one turn.

    Each round sends the conversation, the system prompt and the advertised
    tool schemas to the model. A text answer ends the turn; tool calls are
    validated, executed (concurrently within a round) and appended in the
    order they were requested. The loop never makes more than
    `config.max_rounds` model calls.
    """

    def __init__(self, model: LanguageModel, config: AgentConfig | None = None) -> None:
        self.model = model
        self.config = config or AgentConfig()

    def run(
        self,
        conversation: Sequence[ConversationTurn],
        *,
        system_prompt: str,
        toolset: Toolset,
        context: SessionContext,
        cancel_token: CancellationToken | None = None,
    ) -> DispatchOutcome:
        turns: list[ConversationTurn] = list(conversation)
        records: list[ToolCallRecord] = []
        schemas = toolset.schemas()
        state = TurnState.AWAITING_MODEL

        for round_number in range(1, self.config.max_rounds + 1):
            if _is_cancelled(cancel_token):
                return self._aborted(CANCELLED_MESSAGE, records, turns, round_number - 1)

            logger.debug("Round %d: %s, %d turns", round_number, state.value, len(turns))
            try:
                response = self.model.complete(tuple(turns), system_prompt, schemas)
            except ModelCallError as exc:
                logger.error("Model call failed in round %d: %s", round_number, exc)
                return self._aborted(MODEL_FAILURE_MESSAGE, records, turns, round_number)
            except Exception:
                logger.exception("Language model raised unexpectedly in round %d", round_number)
                return self._aborted(MODEL_FAILURE_MESSAGE, records, turns, round_number)

            if _is_cancelled(cancel_token):
                return self._aborted(CANCELLED_MESSAGE, records, turns, round_number)

            if isinstance(response, TextAnswer) or not response.calls:
                text = response.text
                turns.append(ConversationTurn(role="assistant", content=text))
                logger.info(
                    "Answered after %d round(s) with %d tool call(s)", round_number, len(records)
                )
                return DispatchOutcome(
                    state=TurnState.ANSWERED,
                    final_message=text,
                    records=tuple(records),
                    conversation=tuple(turns),
                    rounds=round_number,
                    success=True,
                )

            state = TurnState.EXECUTING_TOOLS
            turns.append(
                ConversationTurn(role="assistant", content=response.text, tool_calls=response.calls)
            )
            for record, tool_turn in self._execute_round(response, toolset, context):
                records.append(record)
                turns.append(tool_turn)
            state = TurnState.AWAITING_MODEL

        logger.warning(
            "Round bound of %d reached without a final answer (%d tool calls)",
            self.config.max_rounds,
            len(records),
        )
        return DispatchOutcome(
            state=TurnState.BOUND_EXCEEDED,
            final_message=_progress_summary(records, self.config.max_rounds),
            records=tuple(records),
            conversation=tuple(turns),
            rounds=self.config.max_rounds,
            success=False,
        )

    def _execute_round(
        self,
        batch: ToolCallBatch,
        toolset: Toolset,
        context: SessionContext,
    ) -> list[tuple[ToolCallRecord, ConversationTurn]]:
        calls = list(batch.calls)
        if len(calls) == 1 or self.config.max_parallel_tools == 1:
            return [self._execute_call(call, toolset, context) for call in calls]
        workers = min(len(calls), self.config.max_parallel_tools)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tool") as pool:
            # map() yields in submission order, which keeps the log deterministic.
            return list(pool.map(lambda call: self._execute_call(call, toolset, context), calls))

    def _execute_call(
        self,
        call: ToolCallRequest,
        toolset: Toolset,
        context: SessionContext,
    ) -> tuple[ToolCallRecord, ConversationTurn]:
        spec = toolset.get(call.name)
        if spec is None:
            violation = PolicyViolation(call.name)
            logger.warning("Rejected call to disabled tool %r", call.name)
            return self._failure(
                call,
                str(violation),
                f"ERROR: the '{call.name}' capability is disabled for this conversation. "
                "Do not request it again; answer without it.",
            )

        if call.parse_error is not None:
            return self._failure(call, f"invalid arguments: {call.parse_error}")

        try:
            arguments = spec.validate_arguments(call.arguments)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or 'arguments'}: {err['msg']}"
                for err in exc.errors()
            )
            return self._failure(call, f"invalid arguments: {problems}")

        start = perf_counter()
        try:
            result = spec.run(arguments, context)
        except ToolExecutionFault as exc:
            logger.warning("Tool %s failed: %s", call.name, exc)
            return self._failure(call, exc.message, latency_ms=_elapsed_ms(start))
        except Exception as exc:
            logger.exception("Tool %s raised unexpectedly", call.name)
            return self._failure(
                call, f"{type(exc).__name__}: {exc}", latency_ms=_elapsed_ms(start)
            )
        latency_ms = _elapsed_ms(start)

        if isinstance(result, ToolError):
            return self._failure(call, result.message, latency_ms=latency_ms)

        content = _truncate(result.content, self.config.max_tool_result_chars)
        if result.attachments:
            content += "\nAttachments:\n" + "\n".join(result.attachments)
        record = ToolCallRecord(
            tool_name=call.name,
            arguments=dict(call.arguments),
            success=True,
            result_summary=_truncate(result.content, _SUMMARY_CHARS),
            call_id=call.call_id,
            attachments=result.attachments,
            latency_ms=latency_ms,
        )
        return record, _tool_turn(call, content)

    @staticmethod
    def _failure(
        call: ToolCallRequest,
        error: str,
        message: str | None = None,
        *,
        latency_ms: float = 0.0,
    ) -> tuple[ToolCallRecord, ConversationTurn]:
        record = ToolCallRecord(
            tool_name=call.name,
            arguments=dict(call.arguments),
            success=False,
            error=error,
            call_id=call.call_id,
            latency_ms=latency_ms,
        )
        return record, _tool_turn(call, message or f"ERROR: {error}")

    @staticmethod
    def _aborted(
        message: str,
        records: list[ToolCallRecord],
        turns: list[ConversationTurn],
        rounds: int,
    ) -> DispatchOutcome:
        return DispatchOutcome(
            state=TurnState.ABORTED,
            final_message=message,
            records=tuple(records),
            conversation=tuple(turns),
            rounds=rounds,
            success=False,
        )


def _tool_turn(call: ToolCallRequest, content: str) -> ConversationTurn:
    return ConversationTurn(role="tool", content=content, tool_call_id=call.call_id, name=call.name)


def _progress_summary(records: list[ToolCallRecord], max_rounds: int) -> str:
    if not records:
        return f"I couldn't reach a final answer within {max_rounds} tool rounds."
    lines = [
        f"I couldn't reach a final answer within {max_rounds} tool rounds. Progress so far:"
    ]
    for record in records:
        if record.success:
            lines.append(f"- {record.tool_name}: {_truncate(record.result_summary, 120)}")
        else:
            lines.append(f"- {record.tool_name}: failed ({record.error})")
    return "\n".join(lines)


def _is_cancelled(token: CancellationToken | None) -> bool:
    return token is not None and token.cancelled


def _elapsed_ms(start: float) -> float:
    return (perf_counter() - start) * 1000.0


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."

"""Top-level entry point for one chat turn."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from chat_agent.agent.dispatcher import CancellationToken, ToolDispatcher
from chat_agent.agent.llm import LanguageModel
from chat_agent.agent.prompts import build_system_prompt
from chat_agent.agent.registry import ToolRegistry
from chat_agent.config import AgentConfig
from chat_agent.ingest.document_store import DocumentStore
from chat_agent.obs.tracing import Timer, TraceStore, estimate_token_count
from chat_agent.retrieval.vector_store import VectorIndex
from chat_agent.types import (
    AgentTurnResult,
    CapabilitySettings,
    ConversationTurn,
    SessionContext,
)

logger = logging.getLogger(__name__)


class AgentOrchestrator:
    """Composes prompt builder, capability registry and dispatcher.

    Settings travel as a value object through every layer: the registry
    filter decides what is advertised, the prompt names the same set, and
    the dispatcher guard rejects anything outside it.
    """

    def __init__(
        self,
        *,
        model: LanguageModel,
        tool_registry: ToolRegistry,
        vector_index: VectorIndex,
        document_store: DocumentStore,
        trace_store: TraceStore | None = None,
        config: AgentConfig | None = None,
    ) -> None:
        self.tool_registry = tool_registry
        self.vector_index = vector_index
        self.document_store = document_store
        self.trace_store = trace_store or TraceStore()
        self.config = config or AgentConfig()
        self.dispatcher = ToolDispatcher(model, self.config)

    def run_turn(
        self,
        conversation: Sequence[ConversationTurn],
        settings: CapabilitySettings,
        session_id: str | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> AgentTurnResult:
        """Run one full agent turn and persist its trace.

        Returns:
            An `AgentTurnResult` with the final message, the ordered tool-call
            log, any generated image references, and metadata carrying the
            terminal state, round count, trace id, latency and success flag.
        """

        if not conversation:
            raise ValueError("conversation must contain at least one turn")

        if session_id is not None:
            self.document_store.ensure_session(session_id)
        has_documents = session_id is not None and self.vector_index.count(session_id) > 0

        toolset = self.tool_registry.enabled(settings, session_id=session_id)
        system_prompt = build_system_prompt(
            toolset.names,
            think=settings.think,
            has_documents=has_documents,
        )
        context = SessionContext(session_id=session_id, settings=settings)

        with Timer() as timer:
            outcome = self.dispatcher.run(
                conversation,
                system_prompt=system_prompt,
                toolset=toolset,
                context=context,
                cancel_token=cancel_token,
            )

        images = tuple(
            ref for record in outcome.records if record.success for ref in record.attachments
        )
        question = _last_user_message(conversation)
        record = self.trace_store.create_record(
            session_id=session_id,
            question=question,
            answer=outcome.final_message,
            state=outcome.state.value,
            rounds=outcome.rounds,
            tool_calls=list(outcome.records),
            input_tokens=sum(estimate_token_count(turn.content) for turn in outcome.conversation)
            + estimate_token_count(system_prompt),
            output_tokens=estimate_token_count(outcome.final_message),
            latency_ms=timer.elapsed_ms,
        )
        logger.info(
            "Turn %s finished: state=%s rounds=%d tool_calls=%d",
            record.trace_id,
            outcome.state.value,
            outcome.rounds,
            len(outcome.records),
        )

        return AgentTurnResult(
            final_message=outcome.final_message,
            tool_call_log=outcome.records,
            generated_image_refs=images,
            metadata={
                "state": outcome.state.value,
                "success": outcome.success,
                "rounds": outcome.rounds,
                "trace_id": record.trace_id,
                "latency_ms": record.latency_ms,
                "latency_target_met": record.latency_ms
                <= (self.config.target_latency_seconds * 1000.0),
                "session_id": session_id,
                "enabled_tools": tuple(sorted(toolset.names)),
                "think": settings.think,
            },
        )


def _last_user_message(conversation: Sequence[ConversationTurn]) -> str:
    for turn in reversed(conversation):
        if turn.role == "user":
            return turn.content
    return ""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from chat_agent.agent.capabilities import CapabilityBackends
from chat_agent.agent.orchestrator import AgentOrchestrator
from chat_agent.agent.registry import ToolRegistry
from chat_agent.agent.tools import register_builtin_tools
from chat_agent.config import AgentConfig, ChunkingConfig
from chat_agent.ingest.chunker import TextChunker
from chat_agent.ingest.document_store import DocumentStore
from chat_agent.ingest.embedder import HashingEmbedder
from chat_agent.ingest.pipeline import IngestPipeline
from chat_agent.obs.tracing import TraceStore
from chat_agent.retrieval.retriever import SessionRetriever
from chat_agent.retrieval.vector_store import InMemoryVectorIndex
from chat_agent.types import ModelResponse, ToolCallBatch, ToolCallRequest


class ScriptedModel:
    """Replays fixed responses in order and records what it was sent."""

    def __init__(self, responses: list[ModelResponse | Exception]) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def complete(self, conversation, system_prompt, tool_schemas):
        self.calls.append(
            {
                "conversation": list(conversation),
                "system_prompt": system_prompt,
                "tools": [schema["function"]["name"] for schema in tool_schemas],
            }
        )
        if not self._responses:
            raise AssertionError("ScriptedModel ran out of responses")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class LoopingModel:
    """Always asks for the same tool call, never answers."""

    def __init__(self, name: str, arguments: dict[str, Any]) -> None:
        self.name = name
        self.arguments = arguments
        self.call_count = 0

    def complete(self, conversation, system_prompt, tool_schemas):
        self.call_count += 1
        return ToolCallBatch(
            calls=(ToolCallRequest(self.name, dict(self.arguments), f"loop-{self.call_count}"),)
        )


def tool_calls(*calls: tuple[str, dict[str, Any]]) -> ToolCallBatch:
    return ToolCallBatch(
        calls=tuple(
            ToolCallRequest(name=name, arguments=arguments, call_id=f"call-{i}")
            for i, (name, arguments) in enumerate(calls)
        )
    )


@dataclass
class AgentStack:
    document_store: DocumentStore
    vector_index: InMemoryVectorIndex
    embedder: HashingEmbedder
    pipeline: IngestPipeline
    retriever: SessionRetriever
    trace_store: TraceStore

    def orchestrator(
        self,
        model: Any,
        *,
        backends: CapabilityBackends | None = None,
        config: AgentConfig | None = None,
    ) -> AgentOrchestrator:
        registry = ToolRegistry()
        register_builtin_tools(registry, self.retriever, backends=backends)
        return AgentOrchestrator(
            model=model,
            tool_registry=registry,
            vector_index=self.vector_index,
            document_store=self.document_store,
            trace_store=self.trace_store,
            config=config,
        )


def build_stack(chunking: ChunkingConfig | None = None) -> AgentStack:
    document_store = DocumentStore()
    vector_index = InMemoryVectorIndex()
    embedder = HashingEmbedder()
    pipeline = IngestPipeline(document_store, TextChunker(chunking), embedder, vector_index)
    return AgentStack(
        document_store=document_store,
        vector_index=vector_index,
        embedder=embedder,
        pipeline=pipeline,
        retriever=SessionRetriever(vector_index, embedder),
        trace_store=TraceStore(),
    )


@pytest.fixture
def stack() -> AgentStack:
    return build_stack(ChunkingConfig(chunk_size=20, overlap=0))

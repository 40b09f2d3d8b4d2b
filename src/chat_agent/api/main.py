"""FastAPI entrypoint for ingest/chat/trace endpoints."""

from __future__ import annotations

from dataclasses import fields
from typing import Any, Literal

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from chat_agent.agent.capabilities import (
    CapabilityBackends,
    duckduckgo_search,
    openai_image_generation,
)
from chat_agent.agent.fallback import DeterministicModel
from chat_agent.agent.llm import LangChainChatModel, LanguageModel
from chat_agent.agent.orchestrator import AgentOrchestrator
from chat_agent.agent.registry import ToolRegistry
from chat_agent.agent.tools import register_builtin_tools
from chat_agent.config import Settings, get_settings
from chat_agent.errors import EmbeddingError, IngestionError
from chat_agent.ingest.chunker import TextChunker
from chat_agent.ingest.document_store import DocumentStore
from chat_agent.ingest.embedder import Embedder, HashingEmbedder, LangChainEmbedder
from chat_agent.ingest.pipeline import IngestPipeline
from chat_agent.obs.log import setup_logging
from chat_agent.obs.tracing import TraceRecord, TraceStore
from chat_agent.retrieval.retriever import SessionRetriever
from chat_agent.retrieval.vector_store import InMemoryVectorIndex
from chat_agent.types import CapabilitySettings, ConversationTurn


def _create_model(settings: Settings) -> LanguageModel:
    if not settings.openai_api_key:
        return DeterministicModel()

    from langchain_openai import ChatOpenAI

    return LangChainChatModel(
        ChatOpenAI(
            model=settings.chat_model,
            temperature=0,
            api_key=settings.openai_api_key,
            timeout=settings.agent.model_timeout_seconds,
        )
    )


def _create_backends(settings: Settings) -> CapabilityBackends:
    backends = CapabilityBackends()
    if settings.web_search_backend == "duckduckgo":
        backends.web_search = duckduckgo_search()
    if settings.openai_api_key:
        from openai import OpenAI

        backends.image_generation = openai_image_generation(
            OpenAI(api_key=settings.openai_api_key, timeout=settings.agent.model_timeout_seconds),
            model=settings.image_model,
        )
    return backends


def _create_embedder(settings: Settings) -> Embedder:
    if settings.embedder == "hashing":
        return HashingEmbedder(settings.hashing_dimension)

    from langchain_openai import OpenAIEmbeddings

    return LangChainEmbedder(
        OpenAIEmbeddings(model=settings.embedding_model, api_key=settings.openai_api_key)
    )


class IngestRequest(BaseModel):
    filename: str = Field(min_length=1)
    text: str


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(min_length=1)
    settings: CapabilitySettings = Field(default_factory=CapabilitySettings)
    session_id: str | None = Field(default=None, min_length=1)


app = FastAPI(title="Chat Agent", version="0.1.0")

_settings = get_settings()
setup_logging(_settings)

_document_store = DocumentStore()
_vector_index = InMemoryVectorIndex()
_embedder = _create_embedder(_settings)
_ingest_pipeline = IngestPipeline(
    _document_store, TextChunker(_settings.chunking), _embedder, _vector_index
)

_retriever = SessionRetriever(_vector_index, _embedder, _settings.retrieval)
_registry = ToolRegistry()
register_builtin_tools(_registry, _retriever, backends=_create_backends(_settings))

_trace_store = TraceStore()
_model = _create_model(_settings)
_orchestrator = AgentOrchestrator(
    model=_model,
    tool_registry=_registry,
    vector_index=_vector_index,
    document_store=_document_store,
    trace_store=_trace_store,
    config=_settings.agent,
)


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": not isinstance(_model, DeterministicModel),
        "model_mode": "deterministic" if isinstance(_model, DeterministicModel) else "langchain",
        "embedder": _settings.embedder,
        "trace_count": len(_trace_store.list_recent(limit=1000)),
    }


@app.post("/sessions/{session_id}/documents")
def ingest(session_id: str, request: IngestRequest) -> dict[str, Any]:
    try:
        count = _ingest_pipeline.ingest_text(session_id, request.filename, request.text)
    except IngestionError as exc:
        status = 502 if isinstance(exc.__cause__, EmbeddingError) else 400
        raise HTTPException(status_code=status, detail=exc.message) from exc

    return {
        "session_id": session_id,
        "filename": request.filename,
        "chunks_ingested": count,
    }


@app.delete("/sessions/{session_id}")
def discard_session(session_id: str) -> dict[str, Any]:
    if not _ingest_pipeline.discard_session(session_id):
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return {"session_id": session_id, "discarded": True}


@app.post("/chat")
def chat(request: ChatRequest) -> dict[str, Any]:
    conversation = [
        ConversationTurn(role=message.role, content=message.content)
        for message in request.messages
    ]
    try:
        result = _orchestrator.run_turn(conversation, request.settings, request.session_id)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return result.to_payload()


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    records = [_trace_payload(record) for record in _trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _trace_payload(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()


def _trace_payload(record: TraceRecord) -> dict[str, Any]:
    payload = {item.name: getattr(record, item.name) for item in fields(record)}
    payload["tool_calls"] = [call.to_payload() for call in record.tool_calls]
    return payload

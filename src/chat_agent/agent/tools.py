"""Built-in tool declarations for the chat agent."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from chat_agent.agent.capabilities import CapabilityBackends, CapabilityHandler
from chat_agent.agent.registry import ToolRegistry, ToolSpec
from chat_agent.config import RetrievalConfig
from chat_agent.errors import EmbeddingError, ToolExecutionFault
from chat_agent.retrieval.retriever import SessionRetriever
from chat_agent.types import SessionContext, ToolError, ToolResult

NO_DOCUMENTS_MESSAGE = (
    "NO_DOCUMENTS: no documents have been uploaded to this session. "
    "Do not cite or quote any document."
)


class RagRetrieveInput(BaseModel):
    query: str = Field(min_length=1)


class WebSearchInput(BaseModel):
    query: str = Field(min_length=1)
    max_results: int = Field(default=5, ge=1, le=10)


class ImageGenerationInput(BaseModel):
    prompt: str = Field(min_length=1)
    size: Literal["256x256", "512x512", "1024x1024"] = "1024x1024"


class DataAnalysisInput(BaseModel):
    task: str = Field(min_length=1)
    data: list[float] = Field(default_factory=list)


def register_builtin_tools(
    registry: ToolRegistry,
    retriever: SessionRetriever,
    *,
    backends: CapabilityBackends | None = None,
    config: RetrievalConfig | None = None,
) -> None:
    """Register the four gated tools.

    Tools:
    - `rag_retrieve`: session-scoped document retrieval with provenance.
    - `web_search`: delegated to `backends.web_search`.
    - `image_generation`: delegated to `backends.image_generation`.
    - `data_analysis`: delegated to `backends.data_analysis`.
    """

    backends = backends or CapabilityBackends()
    config = config or retriever.config

    def _rag_retrieve(input_data: RagRetrieveInput, context: SessionContext) -> ToolResult:
        if context.session_id is None:
            return ToolResult(content=NO_DOCUMENTS_MESSAGE)
        try:
            hits = retriever.retrieve(context.session_id, input_data.query, top_k=config.top_k)
        except EmbeddingError as exc:
            raise ToolExecutionFault(f"retrieval unavailable: {exc.message}") from exc
        if not hits:
            return ToolResult(content=NO_DOCUMENTS_MESSAGE)

        # One line per hit carrying the whole chunk; whitespace runs are folded.
        lines = [
            f"[{hit.chunk.source_filename}#{hit.chunk.ordinal}] score={hit.score:.4f} "
            + " ".join(hit.chunk.text.split())
            for hit in hits
        ]
        return ToolResult(content="\n".join(lines))

    registry.register(
        ToolSpec(
            name="rag_retrieve",
            description=(
                "Search the documents uploaded to this conversation and return the most "
                "relevant passages with their source filename."
            ),
            capability="documents",
            args_schema=RagRetrieveInput,
            handler=_rag_retrieve,
            tags=["retrieval", "rag"],
        )
    )
    registry.register(
        ToolSpec(
            name="web_search",
            description="Search the public web for current information.",
            capability="web_search",
            args_schema=WebSearchInput,
            handler=_delegate(backends.web_search),
            tags=["web"],
        )
    )
    registry.register(
        ToolSpec(
            name="image_generation",
            description="Generate an image from a text prompt and return its reference.",
            capability="image_generation",
            args_schema=ImageGenerationInput,
            handler=_delegate(backends.image_generation),
            tags=["image"],
        )
    )
    registry.register(
        ToolSpec(
            name="data_analysis",
            description="Analyse a numeric data series (count, sum, mean, median, spread).",
            capability="data_analysis",
            args_schema=DataAnalysisInput,
            handler=_delegate(backends.data_analysis),
            tags=["analysis"],
        )
    )


def _delegate(backend: CapabilityHandler):
    def _handler(input_data: BaseModel, context: SessionContext) -> ToolResult | ToolError:
        return backend(input_data.model_dump(), context)

    return _handler

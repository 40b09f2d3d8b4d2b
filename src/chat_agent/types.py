"""Shared domain models."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

Role = Literal["user", "assistant", "system", "tool"]


@dataclass(frozen=True, slots=True)
class DocumentChunk:
    """An immutable, embedded slice of one uploaded document."""

    chunk_id: str
    session_id: str
    source_filename: str
    text: str
    ordinal: int
    embedding: tuple[float, ...]
    metadata: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


@dataclass(frozen=True, slots=True)
class ScoredChunk:
    """A retrieval result with similarity score and 1-based rank."""

    chunk: DocumentChunk
    score: float
    rank: int = 0


class CapabilitySettings(BaseModel):
    """Per-request capability flags. Exactly four booleans, nothing else."""

    model_config = ConfigDict(extra="forbid", frozen=True, strict=True)

    web_search: bool = False
    image_generation: bool = False
    data_analysis: bool = False
    think: bool = False


@dataclass(frozen=True, slots=True)
class ToolCallRequest:
    """One tool invocation requested by the language model."""

    name: str
    arguments: dict[str, Any]
    call_id: str
    parse_error: str | None = None


@dataclass(frozen=True, slots=True)
class TextAnswer:
    """Model response variant: a final textual answer."""

    text: str


@dataclass(frozen=True, slots=True)
class ToolCallBatch:
    """Model response variant: one or more tool calls, in requested order."""

    calls: tuple[ToolCallRequest, ...]
    text: str = ""


ModelResponse = TextAnswer | ToolCallBatch


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    """A single message of the conversation sent to the model."""

    role: Role
    content: str
    tool_calls: tuple[ToolCallRequest, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Successful capability output."""

    content: str
    attachments: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ToolError:
    """Capability output signalling a handled failure."""

    message: str


@dataclass(frozen=True, slots=True)
class SessionContext:
    """Request-scoped context handed to every tool handler."""

    session_id: str | None
    settings: CapabilitySettings


@dataclass(frozen=True, slots=True)
class ToolCallRecord:
    """Log entry for one executed (or rejected) tool invocation.

    `arguments` is a read-only copy of what the caller passed in.
    """

    tool_name: str
    arguments: Mapping[str, Any]
    success: bool
    error: str | None = None
    result_summary: str = ""
    call_id: str = ""
    attachments: tuple[str, ...] = ()
    latency_ms: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "arguments", MappingProxyType(dict(self.arguments)))

    def to_payload(self) -> dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "arguments": dict(self.arguments),
            "success": self.success,
            "error": self.error,
            "result_summary": self.result_summary,
            "attachments": list(self.attachments),
            "latency_ms": self.latency_ms,
        }


class TurnState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    ANSWERED = "answered"
    BOUND_EXCEEDED = "bound_exceeded"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in {TurnState.ANSWERED, TurnState.BOUND_EXCEEDED, TurnState.ABORTED}


@dataclass(frozen=True, slots=True)
class AgentTurnResult:
    """Outcome of one orchestrator invocation; immutable once returned."""

    final_message: str
    tool_call_log: tuple[ToolCallRecord, ...]
    generated_image_refs: tuple[str, ...]
    metadata: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tool_call_log", tuple(self.tool_call_log))
        object.__setattr__(self, "generated_image_refs", tuple(self.generated_image_refs))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_payload(self) -> dict[str, Any]:
        return {
            "final_message": self.final_message,
            "tool_calls": [record.to_payload() for record in self.tool_call_log],
            "images": list(self.generated_image_refs),
            "metadata": dict(self.metadata),
        }

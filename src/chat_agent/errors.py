"""Error taxonomy shared by ingestion, retrieval and the agent loop.

Tool faults, policy violations and model failures are caught at the
dispatcher boundary and turned into tool-call records or an apologetic final
message. Configuration, embedding and ingestion errors reach the caller.
"""

from __future__ import annotations


class AgentError(Exception):
    """Base class for every error raised by this package."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(AgentError, ValueError):
    """Invalid chunking or tool registration configuration."""


class EmbeddingError(AgentError):
    """The embedding backend failed or returned malformed vectors."""


class IngestionError(AgentError):
    """A document could not be ingested into its session."""


class ToolExecutionFault(AgentError):
    """A capability handler failed while executing a tool call."""


class PolicyViolation(AgentError):
    """The model asked for a tool that is not enabled for this turn."""

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"policy violation: tool '{tool_name}' is disabled for this turn")


class ModelCallError(AgentError):
    """The language-model call failed."""

"""Chat agent package."""

from .config import AgentConfig, ChunkingConfig, RetrievalConfig
from .types import AgentTurnResult, CapabilitySettings, ConversationTurn

__all__ = [
    "AgentConfig",
    "AgentTurnResult",
    "CapabilitySettings",
    "ChunkingConfig",
    "ConversationTurn",
    "RetrievalConfig",
]

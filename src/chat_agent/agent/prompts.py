"""System prompt construction from capability state."""

from __future__ import annotations

from collections.abc import Iterable

_CAPABILITY_LINES: tuple[tuple[str, str], ...] = (
    ("rag_retrieve", "Document retrieval over the user's uploaded files"),
    ("web_search", "Web search"),
    ("image_generation", "Image generation"),
    ("data_analysis", "Data analysis"),
)

_PREAMBLE = """
You are a helpful assistant. You may answer directly or call one of the tools
listed as ENABLED below.
""".strip()

_POLICY = """
Rules:
1) Never request a tool marked DISABLED, even if the user asks for it.
2) If a request needs a disabled capability, say that it is turned off for this
   conversation. Never claim to have searched, generated or analysed anything
   you did not actually do with a tool.
3) If a tool returns an error, explain the failure briefly instead of retrying
   it indefinitely.
""".strip()

_DOCUMENTS_PRESENT = """
Documents: the user has uploaded documents to this conversation. Call
`rag_retrieve` before answering questions about them and cite passages as
[filename#n] using the provenance returned by the tool.
""".strip()

_DOCUMENTS_ABSENT = """
Documents: no documents are available in this conversation. Do not cite or
quote documents.
""".strip()

_THINK_ON = """
Reasoning mode: EXTENDED. Think step by step. Write your reasoning under a
"Reasoning:" heading, working through the problem in numbered steps, then give
the final answer under an "Answer:" heading.
""".strip()

_THINK_OFF = """
Reasoning mode: DIRECT. Answer concisely and directly without showing
intermediate reasoning.
""".strip()


def build_system_prompt(
    enabled_tools: Iterable[str],
    *,
    think: bool,
    has_documents: bool,
) -> str:
    """Render the system prompt for one turn.

    Pure: no I/O and no shared state, so identical inputs always produce an
    identical prompt.
    """

    enabled = frozenset(enabled_tools)
    capability_lines = [
        f"- {label} (`{name}`): {'ENABLED' if name in enabled else 'DISABLED'}"
        for name, label in _CAPABILITY_LINES
    ]
    sections = [
        _PREAMBLE,
        "Capabilities for this conversation:\n" + "\n".join(capability_lines),
        _POLICY,
        _DOCUMENTS_PRESENT if has_documents else _DOCUMENTS_ABSENT,
        _THINK_ON if think else _THINK_OFF,
    ]
    return "\n\n".join(sections)

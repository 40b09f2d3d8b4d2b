"""Deterministic language model used when no external LLM is configured."""

from __future__ import annotations

import re
import uuid
from collections.abc import Sequence
from typing import Any

from chat_agent.types import (
    ConversationTurn,
    ModelResponse,
    TextAnswer,
    ToolCallBatch,
    ToolCallRequest,
)

_WORD = re.compile(r"\w+", flags=re.UNICODE)
_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?。！？])\s+")
_SEARCH_LINE = re.compile(r"^\[(?P<cid>[^\]]+)\]\s+score=-?[0-9.]+\s+(?P<body>.+)$")

_IMAGE_WORDS = ("draw", "image", "picture", "paint", "sketch", "illustrat")
_WEB_WORDS = ("search the web", "web search", "google", "online", "news", "latest", "today")
_ANALYSIS_WORDS = ("average", "mean", "median", "sum", "total", "statistic", "analy")
_STOPWORDS = frozenset(
    "a an and are be do does for how i in is it me of on or the this to was what when where "
    "which who why with you".split()
)


class DeterministicModel:
    """Keyword-routing model with the same contract as `LangChainChatModel`.

    Useful for local/offline environments where `OPENAI_API_KEY` is not
    configured. It only ever requests tools present in `tool_schemas`, and it
    answers document questions strictly from retrieved evidence.
    """

    def complete(
        self,
        conversation: Sequence[ConversationTurn],
        system_prompt: str,
        tool_schemas: list[dict[str, Any]],
    ) -> ModelResponse:
        del system_prompt  # routing is keyword based.
        question, tool_turns = _split_latest_exchange(conversation)
        if tool_turns:
            return TextAnswer(text=_compose_answer(question, tool_turns))

        available = {_schema_name(schema) for schema in tool_schemas}
        call = _route(question, available)
        if call is not None:
            return ToolCallBatch(calls=(call,))
        return TextAnswer(text=_answer_without_tools(question))


def _split_latest_exchange(
    conversation: Sequence[ConversationTurn],
) -> tuple[str, list[ConversationTurn]]:
    tool_turns: list[ConversationTurn] = []
    for turn in reversed(conversation):
        if turn.role == "tool":
            tool_turns.append(turn)
        elif turn.role == "user":
            return turn.content, list(reversed(tool_turns))
    return "", list(reversed(tool_turns))


def _route(question: str, available: set[str]) -> ToolCallRequest | None:
    lowered = question.lower()
    if "image_generation" in available and any(word in lowered for word in _IMAGE_WORDS):
        return _call("image_generation", {"prompt": question})
    if "web_search" in available and any(word in lowered for word in _WEB_WORDS):
        return _call("web_search", {"query": question})
    numbers = [float(value) for value in _NUMBER.findall(question)]
    if (
        "data_analysis" in available
        and numbers
        and any(word in lowered for word in _ANALYSIS_WORDS)
    ):
        return _call("data_analysis", {"task": question, "data": numbers})
    if "rag_retrieve" in available and question.strip():
        return _call("rag_retrieve", {"query": question})
    return None


def _compose_answer(question: str, tool_turns: list[ConversationTurn]) -> str:
    parts: list[str] = []
    for turn in tool_turns:
        content = turn.content
        if content.startswith("ERROR:"):
            parts.append(f"The {turn.name} tool could not complete: {content[6:].strip()}")
        elif turn.name == "rag_retrieve":
            parts.append(_answer_from_passages(question, content))
        elif turn.name == "image_generation":
            parts.append("Here is the generated image.")
        elif turn.name == "data_analysis":
            parts.append("Analysis results:\n" + content)
        else:
            parts.append(content.splitlines()[0] if content else "The tool returned no content.")
    return "\n".join(parts)


def _answer_from_passages(question: str, content: str) -> str:
    if content.startswith("NO_DOCUMENTS"):
        return "No documents are available in this conversation, so I can't answer from your files."

    query_terms = _terms(question)
    best: tuple[int, int, str, str] | None = None
    position = 0
    for line in content.splitlines():
        match = _SEARCH_LINE.match(line.strip())
        if not match:
            continue
        for sentence in _SENTENCE_SPLIT.split(match.group("body")):
            sentence = sentence.strip()
            if not sentence:
                continue
            overlap = len(query_terms & _terms(sentence))
            # Earlier passages win ties because they ranked higher.
            candidate = (overlap, -position, sentence, match.group("cid"))
            if best is None or candidate[:2] > best[:2]:
                best = candidate
            position += 1

    if best is None or best[0] == 0:
        return "I couldn't find verifiable evidence for that in the uploaded documents."
    return f"{best[2]} [{best[3]}]"


def _answer_without_tools(question: str) -> str:
    lowered = question.lower()
    if any(word in lowered for word in _WEB_WORDS):
        return (
            "Web search is turned off for this conversation, so I can't look that up. "
            "Enable web search and ask again."
        )
    if any(word in lowered for word in _IMAGE_WORDS):
        return "Image generation is turned off for this conversation, so I can't create images."
    return "I can't verify an answer to that without an enabled tool or uploaded documents."


def _terms(text: str) -> set[str]:
    return {token.lower() for token in _WORD.findall(text)} - _STOPWORDS


def _schema_name(schema: dict[str, Any]) -> str:
    function = schema.get("function")
    if isinstance(function, dict):
        return str(function.get("name", ""))
    return str(schema.get("name", ""))


def _call(name: str, arguments: dict[str, Any]) -> ToolCallRequest:
    return ToolCallRequest(name=name, arguments=arguments, call_id=f"call_{uuid.uuid4().hex[:12]}")

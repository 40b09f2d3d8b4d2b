"""Language-model boundary: protocol and LangChain chat-model adapter."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from typing import Any, Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder

from chat_agent.errors import ModelCallError
from chat_agent.types import (
    ConversationTurn,
    ModelResponse,
    TextAnswer,
    ToolCallBatch,
    ToolCallRequest,
)

logger = logging.getLogger(__name__)

_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", "{system_prompt}"),
        MessagesPlaceholder(variable_name="conversation"),
    ]
)


class LanguageModel(Protocol):
    """Opaque model capability with a two-shape response contract."""

    def complete(
        self,
        conversation: Sequence[ConversationTurn],
        system_prompt: str,
        tool_schemas: list[dict[str, Any]],
    ) -> ModelResponse:
        """Return either a final text answer or a batch of tool calls."""


class LangChainChatModel:
    """Adapts a LangChain chat model (e.g. `ChatOpenAI`) to `LanguageModel`."""

    def __init__(self, llm: Any) -> None:
        self.llm = llm

    def complete(
        self,
        conversation: Sequence[ConversationTurn],
        system_prompt: str,
        tool_schemas: list[dict[str, Any]],
    ) -> ModelResponse:
        messages = _PROMPT.invoke(
            {
                "system_prompt": system_prompt,
                "conversation": to_langchain_messages(conversation),
            }
        ).to_messages()
        try:
            runnable = self.llm.bind_tools(tool_schemas) if tool_schemas else self.llm
            message = runnable.invoke(messages)
        except Exception as exc:
            logger.error("Language model call failed: %s", exc)
            raise ModelCallError(f"language model call failed: {exc}") from exc
        return parse_ai_message(message)


def to_langchain_messages(conversation: Sequence[ConversationTurn]) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    for turn in conversation:
        if turn.role == "user":
            messages.append(HumanMessage(content=turn.content))
        elif turn.role == "system":
            messages.append(SystemMessage(content=turn.content))
        elif turn.role == "assistant":
            messages.append(
                AIMessage(
                    content=turn.content,
                    tool_calls=[
                        {"name": call.name, "args": call.arguments, "id": call.call_id}
                        for call in turn.tool_calls
                    ],
                )
            )
        else:
            messages.append(
                ToolMessage(
                    content=turn.content,
                    tool_call_id=turn.tool_call_id or "",
                    name=turn.name,
                )
            )
    return messages


def parse_ai_message(message: Any) -> ModelResponse:
    """Convert a LangChain `AIMessage` into the tagged response union."""

    text = _content_text(getattr(message, "content", message))
    calls: list[ToolCallRequest] = []
    for call in getattr(message, "tool_calls", None) or []:
        calls.append(
            ToolCallRequest(
                name=str(call.get("name", "")),
                arguments=dict(call.get("args") or {}),
                call_id=str(call.get("id") or _new_call_id()),
            )
        )
    for call in getattr(message, "invalid_tool_calls", None) or []:
        calls.append(
            ToolCallRequest(
                name=str(call.get("name") or ""),
                arguments={},
                call_id=str(call.get("id") or _new_call_id()),
                parse_error=str(call.get("error") or f"unparseable arguments: {call.get('args')!r}"),
            )
        )
    if calls:
        return ToolCallBatch(calls=tuple(calls), text=text)
    return TextAnswer(text=text)


def _content_text(content: Any) -> str:
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                if item.get("type", "text") == "text" and "text" in item:
                    parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content)


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"

"""Pluggable capability backends behind the gated tools.

Every backend has the same shape: `handler(arguments, session_context)`
returning a `ToolResult`, a `{"content": ..., "attachments": [...]}` mapping
or a `ToolError`, or raising `ToolExecutionFault`.
"""

from __future__ import annotations

import logging
import statistics
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ddgs import DDGS

from chat_agent.errors import ToolExecutionFault
from chat_agent.types import SessionContext, ToolResult

logger = logging.getLogger(__name__)

CapabilityHandler = Callable[[Mapping[str, Any], SessionContext], Any]


def unconfigured(capability: str) -> CapabilityHandler:
    """Backend placeholder that fails every call with a clear message."""

    def _handler(arguments: Mapping[str, Any], context: SessionContext) -> Any:
        raise ToolExecutionFault(f"{capability} backend is not configured")

    return _handler


def duckduckgo_search(client_factory: Callable[[], Any] = DDGS) -> CapabilityHandler:
    """Web search through DuckDuckGo; one numbered entry per hit."""

    def _handler(arguments: Mapping[str, Any], context: SessionContext) -> ToolResult:
        query = str(arguments.get("query") or "").strip()
        max_results = int(arguments.get("max_results") or 5)
        logger.info("web_search query=%r max_results=%d", query, max_results)
        try:
            with client_factory() as client:
                hits = list(client.text(query, max_results=max_results))
        except Exception as exc:
            logger.warning("web_search failed: %s", exc)
            raise ToolExecutionFault(f"web search failed: {exc}") from exc
        if not hits:
            return ToolResult(content="No results found.")

        entries = []
        for i, hit in enumerate(hits[:max_results], 1):
            title = (hit.get("title") or "").strip()
            body = (hit.get("body") or "").strip()
            href = (hit.get("href") or "").strip()
            entries.append(f"{i}. {title}\n{body}\nURL: {href}")
        return ToolResult(content="\n\n".join(entries))

    return _handler


def openai_image_generation(client: Any, *, model: str = "dall-e-3") -> CapabilityHandler:
    """Image generation through an `openai.OpenAI` client; the image URL is the attachment."""

    def _handler(arguments: Mapping[str, Any], context: SessionContext) -> ToolResult:
        prompt = str(arguments.get("prompt") or "")
        try:
            response = client.images.generate(
                model=model,
                prompt=prompt,
                size=arguments.get("size") or "1024x1024",
                n=1,
            )
        except Exception as exc:
            logger.warning("image_generation failed: %s", exc)
            raise ToolExecutionFault(f"image generation failed: {exc}") from exc

        images = [image for image in response.data or [] if getattr(image, "url", None)]
        if not images:
            raise ToolExecutionFault("image generation returned no image")
        revised = getattr(images[0], "revised_prompt", None) or prompt
        return ToolResult(
            content=f"Generated image for: {revised}",
            attachments=tuple(image.url for image in images),
        )

    return _handler


def describe_series(arguments: Mapping[str, Any], context: SessionContext) -> ToolResult:
    """In-process data analysis: descriptive statistics of a numeric series."""

    data = [float(value) for value in arguments.get("data") or []]
    if not data:
        raise ToolExecutionFault("data_analysis needs a non-empty numeric series in `data`")

    stats: dict[str, float] = {
        "count": float(len(data)),
        "sum": sum(data),
        "mean": statistics.fmean(data),
        "median": statistics.median(data),
        "min": min(data),
        "max": max(data),
    }
    if len(data) > 1:
        stats["stdev"] = statistics.stdev(data)

    lines = [f"task: {arguments.get('task', '')}".rstrip()]
    lines.extend(f"{name}={_format_number(value)}" for name, value in stats.items())
    return ToolResult(content="\n".join(lines))


@dataclass(slots=True)
class CapabilityBackends:
    """Concrete handlers for the three externally implemented capabilities."""

    web_search: CapabilityHandler = field(default_factory=lambda: unconfigured("web_search"))
    image_generation: CapabilityHandler = field(
        default_factory=lambda: unconfigured("image_generation")
    )
    data_analysis: CapabilityHandler = field(default=describe_series)


def _format_number(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    return f"{value:.4f}"

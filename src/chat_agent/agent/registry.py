"""Capability registry built on Pydantic v2 models."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from typing import Any

from langchain_core.tools import StructuredTool
from langchain_core.utils.function_calling import convert_to_openai_tool
from pydantic import BaseModel, ConfigDict, Field

from chat_agent.errors import ConfigurationError, ToolExecutionFault
from chat_agent.types import CapabilitySettings, SessionContext, ToolError, ToolResult

CAPABILITIES: tuple[str, ...] = ("documents", "web_search", "image_generation", "data_analysis")

ToolHandler = Callable[[BaseModel, SessionContext], ToolResult | ToolError | Mapping[str, Any]]


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation.

    `capability` names the gate: `documents` is open whenever the turn has a
    session, every other value is the `CapabilitySettings` flag of that name.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    capability: str
    args_schema: type[BaseModel]
    handler: ToolHandler
    tags: list[str] = Field(default_factory=list)

    def validate_arguments(self, payload: Mapping[str, Any]) -> BaseModel:
        return self.args_schema.model_validate(dict(payload))

    def run(self, arguments: BaseModel, context: SessionContext) -> ToolResult | ToolError:
        return _normalize_output(self.name, self.handler(arguments, context))

    def invoke(self, payload: Mapping[str, Any], context: SessionContext) -> ToolResult | ToolError:
        return self.run(self.validate_arguments(payload), context)

    def is_enabled(self, settings: CapabilitySettings, session_id: str | None) -> bool:
        if self.capability == "documents":
            return session_id is not None
        return bool(getattr(settings, self.capability))


class Toolset:
    """The filtered, per-turn subset of tools that may be advertised and invoked."""

    def __init__(self, specs: list[ToolSpec]) -> None:
        self._specs = {spec.name: spec for spec in specs}

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._specs)

    def get(self, name: str) -> ToolSpec | None:
        return self._specs.get(name)

    def as_langchain_tools(self) -> list[StructuredTool]:
        return [
            StructuredTool.from_function(
                name=spec.name,
                description=spec.description,
                args_schema=spec.args_schema,
                func=_unbound(spec.name),
            )
            for spec in self._specs.values()
        ]

    def schemas(self) -> list[dict[str, Any]]:
        """OpenAI-style function schemas for the advertised tools."""
        return [convert_to_openai_tool(tool) for tool in self.as_langchain_tools()]


class ToolRegistry:
    """Stores tool specs and filters them by per-request capability settings."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ConfigurationError(f"Tool already registered: {spec.name}")
        if spec.capability not in CAPABILITIES:
            raise ConfigurationError(
                f"Tool {spec.name} uses unknown capability {spec.capability!r}"
            )
        self._tools[spec.name] = spec

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def enabled(self, settings: CapabilitySettings, *, session_id: str | None) -> Toolset:
        return Toolset(
            [spec for spec in self._tools.values() if spec.is_enabled(settings, session_id)]
        )

    def execute(
        self,
        name: str,
        payload: Mapping[str, Any],
        context: SessionContext,
    ) -> ToolResult | ToolError:
        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        return spec.invoke(payload, context)


def _normalize_output(name: str, output: Any) -> ToolResult | ToolError:
    if isinstance(output, (ToolResult, ToolError)):
        return output
    if isinstance(output, Mapping):
        content = output.get("content")
        if not isinstance(content, str):
            raise ToolExecutionFault(f"tool {name} returned a payload without string content")
        attachments = output.get("attachments") or ()
        return ToolResult(content=content, attachments=tuple(str(item) for item in attachments))
    if isinstance(output, str):
        return ToolResult(content=output)
    raise ToolExecutionFault(f"tool {name} returned unsupported type {type(output).__name__}")


def _unbound(name: str) -> Callable[..., str]:
    # Schema-only export: execution always goes through the dispatcher.
    def _callable(**kwargs: Any) -> str:
        raise ToolExecutionFault(f"tool {name} must be executed by the dispatcher")

    return _callable

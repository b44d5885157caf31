"""Tool descriptors discovered from external services, and tool selection."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from reader_agent.errors import ToolNotFoundError

logger = logging.getLogger(__name__)


class ToolDescriptor(BaseModel):
    """One tool as advertised by a service; unknown fields are kept."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str | None = None
    id: str | None = None
    description: str | None = None
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")

    @property
    def label(self) -> str:
        return self.name or self.id or ""


def parse_tools(raw_tools: Iterable[Any]) -> list[ToolDescriptor]:
    """Validate raw tool entries, skipping ones that carry no usable name."""

    tools: list[ToolDescriptor] = []
    for item in raw_tools:
        if isinstance(item, str):
            tools.append(ToolDescriptor(name=item))
            continue
        if not isinstance(item, dict):
            continue
        try:
            tool = ToolDescriptor.model_validate(item)
        except ValidationError as exc:
            logger.warning(f"[TOOLS] Skipping malformed tool entry {item!r}: {exc}")
            continue
        if tool.label:
            tools.append(tool)
    return tools


def select_search_tool(
    tools: Sequence[ToolDescriptor],
    keywords: Sequence[str] = ("search", "bing"),
    *,
    service_id: str | None = None,
) -> ToolDescriptor:
    """Pick the first tool whose name or id mentions one of `keywords`."""

    lowered = [keyword.lower() for keyword in keywords]
    for tool in tools:
        haystacks = [value.lower() for value in (tool.name, tool.id) if value]
        if any(keyword in haystack for keyword in lowered for haystack in haystacks):
            return tool

    available = ", ".join(tool.label for tool in tools) or "none"
    raise ToolNotFoundError(
        f"No search tool found. Available tools: {available}",
        service_id=service_id,
    )

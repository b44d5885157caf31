"""Ordered extraction strategies for loosely-shaped tool-service payloads.

Tool services disagree on where they put session ids, tool lists and answer
text. Each lookup below is a tuple of small pure functions tried in order;
the first one that returns a value wins.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from typing import Any

SessionIdExtractor = Callable[[Any, Mapping[str, str]], str | None]
ToolListExtractor = Callable[[Any], list[Any] | None]
TextExtractor = Callable[[Any], str | None]


def _get(payload: Any, key: str) -> Any:
    return payload.get(key) if isinstance(payload, dict) else None


def _as_list(value: Any) -> list[Any] | None:
    return value if isinstance(value, list) else None


def _as_text(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


# Session ids ---------------------------------------------------------------


def _result_session_id(payload: Any, headers: Mapping[str, str]) -> str | None:
    return _as_text(_get(_get(payload, "result"), "sessionId"))


def _top_level_session_id(payload: Any, headers: Mapping[str, str]) -> str | None:
    return _as_text(_get(payload, "sessionId"))


def _mcp_session_header(payload: Any, headers: Mapping[str, str]) -> str | None:
    return _as_text(headers.get("mcp-session-id"))


def _session_header(payload: Any, headers: Mapping[str, str]) -> str | None:
    return _as_text(headers.get("session-id"))


SESSION_ID_EXTRACTORS: tuple[SessionIdExtractor, ...] = (
    _result_session_id,
    _top_level_session_id,
    _mcp_session_header,
    _session_header,
)


def extract_session_id(payload: Any, headers: Mapping[str, str]) -> str | None:
    for extractor in SESSION_ID_EXTRACTORS:
        session_id = extractor(payload, headers)
        if session_id:
            return session_id
    return None


# Tool lists ----------------------------------------------------------------


def _result_tools(payload: Any) -> list[Any] | None:
    return _as_list(_get(_get(payload, "result"), "tools"))


def _result_capability_tools(payload: Any) -> list[Any] | None:
    return _as_list(_get(_get(_get(payload, "result"), "capabilities"), "tools"))


def _top_level_tools(payload: Any) -> list[Any] | None:
    return _as_list(_get(payload, "tools"))


def _result_as_list(payload: Any) -> list[Any] | None:
    return _as_list(_get(payload, "result"))


def _payload_as_list(payload: Any) -> list[Any] | None:
    return _as_list(payload)


TOOL_LIST_EXTRACTORS: tuple[ToolListExtractor, ...] = (
    _result_tools,
    _result_capability_tools,
    _top_level_tools,
    _result_as_list,
    _payload_as_list,
)

INITIALIZE_TOOL_EXTRACTORS: tuple[ToolListExtractor, ...] = (
    _result_capability_tools,
    _result_tools,
)


def extract_tool_list(
    payload: Any,
    extractors: tuple[ToolListExtractor, ...] = TOOL_LIST_EXTRACTORS,
) -> list[Any] | None:
    for extractor in extractors:
        tools = extractor(payload)
        if tools is not None:
            return tools
    return None


# Response text -------------------------------------------------------------


def _plain_string(payload: Any) -> str | None:
    return payload if isinstance(payload, str) else None


def _content_parts(payload: Any) -> str | None:
    if not isinstance(payload, list):
        return None
    parts = [extract_text(item) for item in payload]
    return "\n".join(part for part in parts if part)


def _response_field(payload: Any) -> str | None:
    value = _get(payload, "response")
    return extract_text(value) if value else None


def _content_field(payload: Any) -> str | None:
    value = _get(payload, "content")
    return extract_text(value) if value else None


def _messages_field(payload: Any) -> str | None:
    messages = _as_list(_get(payload, "messages"))
    if not messages:
        return None
    chosen = next(
        (message for message in messages if _get(message, "role") == "assistant"),
        messages[-1],
    )
    if isinstance(chosen, str):
        return chosen
    content = _get(chosen, "content")
    if isinstance(content, list):
        return "\n".join(str(item) if isinstance(item, str) else extract_text(item) for item in content)
    return extract_text(content) if content else None


def _outputs_field(payload: Any) -> str | None:
    outputs = _as_list(_get(payload, "outputs"))
    if outputs is None:
        return None
    return "\n".join(
        item if isinstance(item, str) else json.dumps(item, ensure_ascii=False)
        for item in outputs
    )


def _result_field(payload: Any) -> str | None:
    value = _get(payload, "result")
    return extract_text(value) if value else None


def _text_field(payload: Any) -> str | None:
    # MCP content part: {"type": "text", "text": "..."}
    return _as_text(_get(payload, "text"))


def _json_dump(payload: Any) -> str | None:
    try:
        return json.dumps(payload, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(payload)


TEXT_EXTRACTORS: tuple[TextExtractor, ...] = (
    _plain_string,
    _content_parts,
    _response_field,
    _content_field,
    _messages_field,
    _outputs_field,
    _result_field,
    _text_field,
    _json_dump,
)


def extract_text(payload: Any) -> str:
    """Best-effort human-readable text from a tool response payload."""
    if payload is None:
        return ""
    for extractor in TEXT_EXTRACTORS:
        text = extractor(payload)
        if text is not None:
            return text
    return ""

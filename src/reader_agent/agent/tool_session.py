"""Session-aware client for external tool services speaking JSON-RPC over HTTP.

A service moves through Uninitialized -> Active -> Expired -> Active: the
first call performs the `initialize` handshake and caches the session id for
a fixed TTL, after which the next call handshakes again. A call rejected for
session reasons gets exactly one invalidate / re-initialize / retry cycle.
"""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from reader_agent.agent.extraction import (
    INITIALIZE_TOOL_EXTRACTORS,
    extract_session_id,
    extract_text,
    extract_tool_list,
)
from reader_agent.agent.registry import ToolDescriptor, parse_tools, select_search_tool
from reader_agent.config import ToolServiceConfig, ToolSessionConfig
from reader_agent.errors import (
    ToolError,
    ToolInvocationError,
    ToolServiceError,
    ToolSessionError,
)

logger = logging.getLogger(__name__)

_SESSION_PATTERN = re.compile(r"session", re.IGNORECASE)
PROTOCOL_VERSION = "2025-03-26"


@dataclass(slots=True)
class ToolSession:
    service_id: str
    session_id: str
    expires_at: float


@dataclass(slots=True)
class CachedTools:
    tools: list[ToolDescriptor]
    expires_at: float


class SessionManager:
    """Session ids and discovered tool lists per service, both with a TTL.

    Tool lists are kept apart from sessions: invalidating a session leaves its
    tools in place, and a stale tool list still serves as a fallback when
    discovery fails.
    """

    def __init__(
        self,
        ttl_seconds: float = 10 * 60,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, ToolSession] = {}
        self._tools: dict[str, CachedTools] = {}

    def get(self, service_id: str) -> ToolSession | None:
        session = self._sessions.get(service_id)
        if session is None:
            return None
        if session.expires_at <= self._clock():
            logger.info(f"[TOOLS] Session expired for {service_id}")
            del self._sessions[service_id]
            return None
        return session

    def store(self, service_id: str, session_id: str) -> ToolSession:
        session = ToolSession(
            service_id=service_id,
            session_id=session_id,
            expires_at=self._clock() + self.ttl_seconds,
        )
        self._sessions[service_id] = session
        return session

    def invalidate(self, service_id: str) -> None:
        self._sessions.pop(service_id, None)

    def tools(self, service_id: str, *, allow_stale: bool = False) -> list[ToolDescriptor] | None:
        cached = self._tools.get(service_id)
        if cached is None:
            return None
        if not allow_stale and cached.expires_at <= self._clock():
            return None
        return list(cached.tools)

    def store_tools(
        self,
        service_id: str,
        tools: list[ToolDescriptor],
        *,
        only_if_absent: bool = False,
    ) -> None:
        if only_if_absent and service_id in self._tools:
            return
        self._tools[service_id] = CachedTools(
            tools=list(tools),
            expires_at=self._clock() + self.ttl_seconds,
        )


class _SessionRejected(ToolError):
    """Internal signal that a call failed because of its session."""


class ToolSessionClient:
    """JSON-RPC client for `initialize`, `tools/list` and `tools/call`.

    Pass an `httpx.AsyncClient` to reuse connections (or to mount a mock
    transport in tests); otherwise a short-lived client is opened per request.
    """

    def __init__(
        self,
        sessions: SessionManager | None = None,
        config: ToolSessionConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or ToolSessionConfig()
        self.sessions = sessions or SessionManager(self.config.session_ttl_seconds)
        self._http_client = http_client

    async def initialize(self, service: ToolServiceConfig) -> str:
        logger.info(f"[TOOLS] Initializing session for {service.id}")
        response = await self._post(
            service,
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {
                    "name": self.config.client_name,
                    "version": self.config.client_version,
                },
            },
        )
        if response.is_error:
            logger.error(
                f"[TOOLS] Initialize failed for {service.id}: {response.status_code} {response.text}"
            )
            raise ToolServiceError(
                f"Tool service initialize failed: {response.status_code} {response.text}",
                service_id=service.id,
                status_code=response.status_code,
            )

        payload = _read_payload(response)
        error = _get_error(payload)
        if error:
            raise ToolServiceError(
                f"Tool service initialize failed: {error}",
                service_id=service.id,
                status_code=response.status_code,
            )

        session_id = extract_session_id(payload, response.headers)
        if not session_id:
            session_id = str(uuid.uuid4())
            logger.warning(
                f"[TOOLS] {service.id} did not return a session id, using generated {session_id}"
            )
        self.sessions.store(service.id, session_id)

        advertised = extract_tool_list(payload, INITIALIZE_TOOL_EXTRACTORS)
        if advertised:
            self.sessions.store_tools(service.id, parse_tools(advertised), only_if_absent=True)
        return session_id

    async def ensure_session(self, service: ToolServiceConfig) -> str:
        session = self.sessions.get(service.id)
        if session is not None:
            return session.session_id
        return await self.initialize(service)

    async def discover_tools(
        self,
        service: ToolServiceConfig,
        session_id: str,
    ) -> list[ToolDescriptor]:
        cached = self.sessions.tools(service.id)
        if cached is not None:
            logger.debug(f"[TOOLS] Using {len(cached)} cached tools for {service.id}")
            return cached

        try:
            response = await self._post(service, "tools/list", {}, session_id)
            if response.is_error:
                raise ToolServiceError(
                    f"Tool service tools/list failed: {response.status_code} {response.text}",
                    service_id=service.id,
                    status_code=response.status_code,
                )
        except ToolServiceError as exc:
            stale = self.sessions.tools(service.id, allow_stale=True)
            if stale is not None:
                logger.warning(
                    f"[TOOLS] tools/list failed for {service.id}, using cached tools: {exc}"
                )
                return stale
            raise

        raw_tools = extract_tool_list(_read_payload(response)) or []
        tools = parse_tools(raw_tools)
        if tools:
            self.sessions.store_tools(service.id, tools)
        logger.info(f"[TOOLS] {service.id} offers {[tool.label for tool in tools]}")
        return tools

    async def call_tool(
        self,
        service: ToolServiceConfig,
        tool_name: str,
        arguments: dict[str, Any],
        *,
        session_id: str | None = None,
    ) -> str:
        session_id = session_id or await self.ensure_session(service)
        try:
            return await self._call_once(service, session_id, tool_name, arguments)
        except _SessionRejected as exc:
            logger.info(
                f"[TOOLS] Session rejected by {service.id} ({exc}), re-initializing and retrying"
            )
            self.sessions.invalidate(service.id)

        fresh_session_id = await self.ensure_session(service)
        await self.discover_tools(service, fresh_session_id)
        try:
            return await self._call_once(service, fresh_session_id, tool_name, arguments)
        except _SessionRejected as exc:
            raise ToolSessionError(
                f"Tool service rejected the session after re-initializing: {exc}",
                service_id=service.id,
            ) from exc

    async def invoke_search(self, service: ToolServiceConfig, query: str) -> str:
        """Find the service's search tool and run `query` through it."""
        session_id = await self.ensure_session(service)
        tools = await self.discover_tools(service, session_id)
        tool = select_search_tool(tools, self.config.search_keywords, service_id=service.id)
        logger.info(f"[TOOLS] Selected tool {tool.label} for {service.id}")
        return await self.call_tool(service, tool.label, {"query": query}, session_id=session_id)

    async def _call_once(
        self,
        service: ToolServiceConfig,
        session_id: str,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> str:
        response = await self._post(
            service,
            "tools/call",
            {"name": tool_name, "arguments": arguments},
            session_id,
        )
        if response.is_error:
            detail = f"{response.status_code} {response.text}"
            logger.warning(f"[TOOLS] tools/call {tool_name} failed for {service.id}: {detail}")
            if is_session_error(response.status_code, response.text):
                raise _SessionRejected(detail, service_id=service.id)
            raise ToolInvocationError(
                f"Tool call {tool_name} failed: {detail}",
                service_id=service.id,
            )

        payload = _read_payload(response)
        error = _get_error(payload)
        if error:
            if is_session_error(response.status_code, error):
                raise _SessionRejected(error, service_id=service.id)
            raise ToolInvocationError(f"Tool call {tool_name} failed: {error}", service_id=service.id)
        return extract_text(payload)

    async def _post(
        self,
        service: ToolServiceConfig,
        method: str,
        params: dict[str, Any],
        session_id: str | None = None,
    ) -> httpx.Response:
        body = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": method,
            "params": params,
        }
        headers = _build_headers(service, session_id)
        try:
            if self._http_client is not None:
                return await self._http_client.post(service.server_url, json=body, headers=headers)
            async with httpx.AsyncClient(timeout=self.config.request_timeout_seconds) as client:
                return await client.post(service.server_url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.error(f"[TOOLS] {method} request to {service.id} failed: {exc}")
            raise ToolServiceError(
                f"Tool service {method} request failed: {exc}",
                service_id=service.id,
            ) from exc


def is_session_error(status_code: int | None, text: str) -> bool:
    if status_code == 401:
        return True
    return bool(_SESSION_PATTERN.search(text or ""))


def _build_headers(service: ToolServiceConfig, session_id: str | None) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "Accept": "application/json, text/event-stream",
    }
    if session_id:
        headers["mcp-session-id"] = session_id
    if service.api_key:
        headers["Authorization"] = f"Bearer {service.api_key}"
    return headers


def _read_payload(response: httpx.Response) -> Any:
    text = response.text
    if "text/event-stream" in response.headers.get("content-type", ""):
        return _parse_event_stream(text)
    try:
        return json.loads(text)
    except ValueError:
        return text


def _parse_event_stream(text: str) -> Any:
    """Use the last `data:` line that holds JSON; fall back to the raw text."""
    payload: Any = None
    for line in text.splitlines():
        if not line.startswith("data:"):
            continue
        try:
            payload = json.loads(line[len("data:"):].strip())
        except ValueError:
            continue
    return text if payload is None else payload


def _get_error(payload: Any) -> str | None:
    error = payload.get("error") if isinstance(payload, dict) else None
    if not error:
        return None
    if isinstance(error, dict):
        return str(error.get("message") or json.dumps(error, ensure_ascii=False))
    return str(error)

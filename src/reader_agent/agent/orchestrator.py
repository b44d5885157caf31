"""Turn orchestration: query rewrite, retrieval, tool services, answer synthesis."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from pydantic import BaseModel, Field

from reader_agent.agent import nodes, prompts
from reader_agent.agent.nodes import NoteRequest, NoteResult, PolishRequest, TranslateRequest
from reader_agent.agent.tool_session import ToolSessionClient
from reader_agent.cache import CacheStats, LRUCache
from reader_agent.config import CacheConfig, LLMConfig, ModelType, OrchestratorConfig, Settings
from reader_agent.errors import ConfigurationError, ToolError
from reader_agent.llm.client import ChatImage, ChatMessage, LangChainLLMClient, LLMClient, supports_streaming
from reader_agent.llm.resolution import ClientFactory, create_client_for, resolve_chat_choice
from reader_agent.obs.tracing import Timer, Trace
from reader_agent.retrieval.retriever import RetrievalEngine
from reader_agent.types import RetrievalOutput, ToolResponse

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    user_input: str = Field(min_length=1)
    history: list[ChatMessage] = Field(default_factory=list)
    model_type: ModelType = "llm"
    images: list[ChatImage] = Field(default_factory=list)
    context: list[str] = Field(default_factory=list)
    rag_enabled: bool = True
    tools_enabled: bool = True
    tool_services: list[str] = Field(default_factory=list)
    llm_config: LLMConfig | None = None
    top_k: int | None = Field(default=None, ge=1)


@dataclass(slots=True)
class ChatResult:
    answer: str
    trace: Trace


@dataclass(slots=True)
class StreamChunk:
    """One piece of a streamed answer; `error` set means the stream ended in failure."""

    content: str = ""
    done: bool = False
    trace: Trace | None = None
    error: str | None = None


class Orchestrator:
    """Single entry point for chat and the writing-assistant tasks.

    A turn runs rewrite -> retrieve -> tool services -> respond in that order.
    Retrieval problems never fail a turn; tool problems are recorded per
    service in the trace. Only an unresolvable chat model or endpoint, or a
    failing final model call, surfaces to the caller.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        retrieval: RetrievalEngine | None = None,
        tool_client: ToolSessionClient | None = None,
        config: OrchestratorConfig | None = None,
        cache_config: CacheConfig | None = None,
        client_factory: ClientFactory = LangChainLLMClient,
    ) -> None:
        self.settings = settings
        self.retrieval = retrieval
        self.tool_client = tool_client or ToolSessionClient()
        self.config = config or OrchestratorConfig()
        self._client_factory = client_factory

        cache_config = cache_config or CacheConfig()
        self.translate_cache: LRUCache[str, str] = LRUCache(
            max_size=cache_config.max_size, ttl=cache_config.ttl_seconds
        )
        self.polish_cache: LRUCache[str, str] = LRUCache(
            max_size=cache_config.max_size, ttl=cache_config.ttl_seconds
        )

    async def chat(self, request: ChatRequest) -> ChatResult:
        client, model = self._chat_target(request.llm_config)
        trace = Trace()
        context = list(request.context)

        if request.rag_enabled and self.retrieval is not None:
            try:
                await self._gather_retrieval(request, trace, context)
            except Exception as exc:
                logger.warning(f"[ORCHESTRATOR] Retrieval failed, continuing without it: {exc}")

        if request.tools_enabled and request.tool_services:
            await self._run_tool_services(request, trace, context)

        if context:
            answer = await self._synthesize(client, model, request, context, trace)
        else:
            messages = nodes.build_chat_messages(
                request.user_input, request.history, request.model_type, request.images
            )
            answer = await client.chat(model, messages)

        logger.info(
            f"[ORCHESTRATOR] Turn finished: {len(trace.retrieved_chunks)} chunks, "
            f"{len(trace.tool_responses)} tool responses, synthesized={trace.synthesis_prompt is not None}"
        )
        return ChatResult(answer=answer, trace=trace)

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamChunk]:
        """Stream a turn; failures arrive as a final chunk with `error` set."""

        trace = Trace()
        try:
            client, model = self._chat_target(request.llm_config)
            context = list(request.context)

            if request.rag_enabled and self.retrieval is not None:
                await self._gather_retrieval_within_timeout(request, trace, context)

            if request.tools_enabled and request.tool_services:
                await self._run_tool_services(request, trace, context)

            if context:
                answer = await self._synthesize(client, model, request, context, trace)
                yield StreamChunk(content=answer, done=True, trace=trace)
                return

            messages = nodes.build_chat_messages(
                request.user_input, request.history, request.model_type, request.images
            )
            if not supports_streaming(client):
                answer = await client.chat(model, messages)
                yield StreamChunk(content=answer, done=True, trace=trace)
                return

            async for piece in client.chat_stream(model, messages):
                yield StreamChunk(content=piece, trace=trace)
            yield StreamChunk(done=True, trace=trace)
        except Exception as exc:
            logger.error(f"[ORCHESTRATOR] Streaming turn failed: {exc}")
            yield StreamChunk(done=True, trace=trace, error=str(exc))

    async def retrieve(
        self,
        query: str,
        *,
        top_k: int | None = None,
        collections: list[str] | None = None,
        tags: list[str] | None = None,
        llm_config: LLMConfig | None = None,
    ) -> RetrievalOutput:
        if self.retrieval is None:
            logger.warning("[ORCHESTRATOR] No retrieval engine attached")
            return RetrievalOutput(chunks=[])
        return await self.retrieval.retrieve(
            query,
            top_k=top_k,
            collections=collections,
            tags=tags,
            llm_config=llm_config,
        )

    async def query_transform(
        self,
        user_input: str,
        history: list[ChatMessage] | None = None,
        llm_config: LLMConfig | None = None,
    ) -> str:
        try:
            client, model = self._chat_target(llm_config)
        except ConfigurationError as exc:
            logger.warning(f"[ORCHESTRATOR] No chat model for query rewrite, using input: {exc}")
            return user_input
        return await nodes.transform_query(client, model, user_input, history or [])

    async def translate(self, request: TranslateRequest) -> str:
        client, model = self._chat_target(request.llm_config)
        return await nodes.translate(client, model, request, self.translate_cache)

    async def polish(self, request: PolishRequest) -> str:
        client, model = self._chat_target(request.llm_config)
        return await nodes.polish(client, model, request, self.polish_cache)

    async def generate_note(self, request: NoteRequest) -> NoteResult:
        client, model = self._chat_target(request.llm_config)
        context = list(request.context)

        if request.rag_enabled and self.retrieval is not None:
            try:
                transformed = await self.query_transform(
                    request.selected_text, llm_config=request.llm_config
                )
                output = await self.retrieve(
                    transformed,
                    llm_config=request.llm_config,
                )
                context.extend(chunk.text for chunk in output.chunks if chunk.text)
            except Exception as exc:
                logger.warning(f"[ORCHESTRATOR] Note enrichment failed, generating directly: {exc}")

        return await nodes.generate_note(
            client, model, request.selected_text, request.source_url, context
        )

    async def ask_with_context(
        self,
        text: str,
        source_url: str | None = None,
        *,
        llm_config: LLMConfig | None = None,
    ) -> ChatResult:
        user_input = prompts.ASK_WITH_CONTEXT_PROMPT.format(text=text, source_url=source_url or "")
        return await self.chat(
            ChatRequest(user_input=user_input, tools_enabled=False, llm_config=llm_config)
        )

    def cache_stats(self) -> dict[str, CacheStats]:
        return {
            "translate": self.translate_cache.stats(),
            "polish": self.polish_cache.stats(),
        }

    def _chat_target(self, llm_config: LLMConfig | None) -> tuple[LLMClient, str]:
        choice = resolve_chat_choice(self.settings, llm_config)
        client = create_client_for(self.settings, choice, llm_config, factory=self._client_factory)
        return client, choice.model

    async def _gather_retrieval(
        self,
        request: ChatRequest,
        trace: Trace,
        context: list[str],
    ) -> None:
        transformed = await self.query_transform(
            request.user_input, request.history, request.llm_config
        )
        trace.transformed_query = transformed

        output = await self.retrieve(
            transformed,
            top_k=request.top_k,
            llm_config=request.llm_config,
        )
        trace.retrieved_chunks = output.chunks
        context.extend(chunk.text for chunk in output.chunks if chunk.text)

    async def _gather_retrieval_within_timeout(
        self,
        request: ChatRequest,
        trace: Trace,
        context: list[str],
    ) -> None:
        task = asyncio.create_task(self._gather_retrieval(request, trace, context))
        done, _ = await asyncio.wait({task}, timeout=self.config.retrieval_timeout_seconds)
        if task not in done:
            task.cancel()
            logger.warning(
                f"[ORCHESTRATOR] Retrieval exceeded {self.config.retrieval_timeout_seconds}s, "
                "continuing without it"
            )
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"[ORCHESTRATOR] Retrieval failed, continuing without it: {exc}")

    async def _run_tool_services(
        self,
        request: ChatRequest,
        trace: Trace,
        context: list[str],
    ) -> None:
        for service in self.settings.enabled_tool_services(request.tool_services):
            failure: str | None = None
            text = ""
            with Timer() as timer:
                try:
                    text = await self.tool_client.invoke_search(service, request.user_input)
                except ToolError as exc:
                    failure = str(exc)

            if failure is not None:
                logger.error(f"[TOOLS] {service.id} failed: {failure}")
                content, ok = f"Failed: {failure}", False
            elif text:
                context.append(f"Service: {service.display_name}\n{text}")
                content, ok = text, True
            else:
                content, ok = "Empty response", True

            trace.tool_responses.append(
                ToolResponse(
                    service_id=service.id,
                    service_name=service.display_name,
                    content=content,
                    ok=ok,
                    latency_ms=timer.elapsed_ms,
                )
            )

    async def _synthesize(
        self,
        client: LLMClient,
        model: str,
        request: ChatRequest,
        context: list[str],
        trace: Trace,
    ) -> str:
        prompt = nodes.build_synthesis_prompt(request.user_input, context)
        trace.synthesis_prompt = prompt
        logger.info(f"[ORCHESTRATOR] Synthesizing from {len(context)} context fragments")
        return await nodes.synthesize(client, model, prompt, request.history)

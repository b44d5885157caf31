"""FastAPI entrypoint for chat, retrieval, writing tasks and knowledge indexing."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from reader_agent.agent.nodes import NoteRequest, PolishRequest, TranslateRequest
from reader_agent.agent.orchestrator import ChatRequest, Orchestrator, StreamChunk
from reader_agent.config import LLMConfig, RetrievalConfig, Settings
from reader_agent.errors import ConfigurationError, NotFoundError, ReaderAgentError
from reader_agent.ingest.pipeline import KnowledgeIndexer
from reader_agent.llm.resolution import resolve_chat_model
from reader_agent.retrieval.retriever import RetrievalEngine
from reader_agent.retrieval.vector_store import EmbeddingStore, SQLiteRecordBackend
from reader_agent.types import FAQItem, Note

logger = logging.getLogger(__name__)


class RetrieveRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: int | None = Field(default=None, ge=1, le=50)
    collections: list[str] | None = None
    tags: list[str] | None = None
    llm_config: LLMConfig | None = None


class NotePayload(BaseModel):
    title: str = ""
    content: str = ""
    tags: list[str] = Field(default_factory=list)
    source_url: str | None = None
    role: str = "note"


class FAQPayload(BaseModel):
    question: str = ""
    answer: str = ""
    tags: list[str] = Field(default_factory=list)


def _load_settings() -> Settings:
    path = os.getenv("READER_AGENT_SETTINGS")
    if path:
        return Settings.load(path)
    return Settings.from_env()


def _build_stores(config: RetrievalConfig) -> dict[str, EmbeddingStore]:
    db_path = os.getenv("READER_AGENT_DB_PATH")
    return {
        name: EmbeddingStore(
            name,
            SQLiteRecordBackend(db_path, name) if db_path else None,
            candidate_multiplier=config.candidate_multiplier,
        )
        for name in config.collections
    }


def _http_error(exc: ReaderAgentError) -> HTTPException:
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


def _chunk_line(chunk: StreamChunk) -> str:
    return json.dumps(asdict(chunk), ensure_ascii=False) + "\n"


def create_app(
    orchestrator: Orchestrator | None = None,
    indexer: KnowledgeIndexer | None = None,
) -> FastAPI:
    """Build the API around the given components, or around env-configured defaults."""

    if orchestrator is None:
        settings = _load_settings()
        config = RetrievalConfig()
        retrieval = RetrievalEngine(_build_stores(config), settings, config=config)
        orchestrator = Orchestrator(settings, retrieval=retrieval)
    if indexer is None and orchestrator.retrieval is not None:
        indexer = KnowledgeIndexer(orchestrator.retrieval)

    app = FastAPI(title="Reader Agent", version="0.1.0")

    def _require_indexer() -> KnowledgeIndexer:
        if indexer is None:
            raise HTTPException(status_code=503, detail="Knowledge indexing is not configured")
        return indexer

    @app.get("/health")
    def health() -> dict[str, Any]:
        try:
            chat_model: str | None = resolve_chat_model(orchestrator.settings)
        except ConfigurationError:
            chat_model = None
        stores = orchestrator.retrieval.stores if orchestrator.retrieval is not None else {}
        return {
            "status": "ok",
            "chat_model": chat_model,
            "collections": {name: store.count() for name, store in stores.items()},
            "tool_services": len(orchestrator.settings.tool_services),
        }

    @app.post("/chat")
    async def chat(request: ChatRequest) -> dict[str, Any]:
        try:
            result = await orchestrator.chat(request)
        except ReaderAgentError as exc:
            raise _http_error(exc) from exc
        return {"answer": result.answer, "trace": result.trace.to_dict()}

    @app.post("/chat/stream")
    async def chat_stream(request: ChatRequest) -> StreamingResponse:
        async def _lines() -> AsyncIterator[str]:
            async for chunk in orchestrator.chat_stream(request):
                yield _chunk_line(chunk)

        return StreamingResponse(_lines(), media_type="application/x-ndjson")

    @app.post("/retrieve")
    async def retrieve(request: RetrieveRequest) -> dict[str, Any]:
        try:
            output = await orchestrator.retrieve(
                request.query,
                top_k=request.top_k,
                collections=request.collections,
                tags=request.tags,
                llm_config=request.llm_config,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except ReaderAgentError as exc:
            raise _http_error(exc) from exc
        return {"chunks": [asdict(chunk) for chunk in output.chunks]}

    @app.post("/translate")
    async def translate(request: TranslateRequest) -> dict[str, str]:
        try:
            return {"text": await orchestrator.translate(request)}
        except ReaderAgentError as exc:
            raise _http_error(exc) from exc

    @app.post("/polish")
    async def polish(request: PolishRequest) -> dict[str, str]:
        try:
            return {"text": await orchestrator.polish(request)}
        except ReaderAgentError as exc:
            raise _http_error(exc) from exc

    @app.post("/notes/generate")
    async def generate_note(request: NoteRequest) -> dict[str, Any]:
        try:
            result = await orchestrator.generate_note(request)
        except ReaderAgentError as exc:
            raise _http_error(exc) from exc
        return result.model_dump()

    @app.put("/notes/{note_id}")
    async def put_note(note_id: str, payload: NotePayload) -> dict[str, Any]:
        note = Note(id=note_id, **payload.model_dump())
        try:
            record = await _require_indexer().index_note(note)
        except ReaderAgentError as exc:
            raise _http_error(exc) from exc
        return {"id": note_id, "indexed": record is not None}

    @app.delete("/notes/{note_id}")
    def delete_note(note_id: str) -> dict[str, Any]:
        _require_indexer().delete_note(note_id)
        return {"id": note_id, "deleted": True}

    @app.put("/faqs/{faq_id}")
    async def put_faq(faq_id: str, payload: FAQPayload) -> dict[str, Any]:
        faq = FAQItem(id=faq_id, **payload.model_dump())
        try:
            record = await _require_indexer().index_faq(faq)
        except ReaderAgentError as exc:
            raise _http_error(exc) from exc
        return {"id": faq_id, "indexed": record is not None}

    @app.delete("/faqs/{faq_id}")
    def delete_faq(faq_id: str) -> dict[str, Any]:
        _require_indexer().delete_faq(faq_id)
        return {"id": faq_id, "deleted": True}

    @app.get("/cache/stats")
    def cache_stats() -> dict[str, Any]:
        return {name: asdict(stats) for name, stats in orchestrator.cache_stats().items()}

    return app


logging.basicConfig(
    level=os.getenv("READER_AGENT_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = create_app()

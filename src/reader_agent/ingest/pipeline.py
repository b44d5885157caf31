"""Keeps the embedding collections in sync with saved notes and FAQs."""

from __future__ import annotations

import logging
from typing import Any

from reader_agent.config import LLMConfig
from reader_agent.errors import EmbeddingError
from reader_agent.llm.resolution import resolve_embedding_model
from reader_agent.retrieval.retriever import RetrievalEngine
from reader_agent.retrieval.vector_store import EmbeddingStore
from reader_agent.types import EmbeddingRecord, FAQItem, Note

logger = logging.getLogger(__name__)


class KnowledgeIndexer:
    """Embeds notes and FAQs and writes them into their collections.

    Indexing is separate from query-time retrieval so it can run when a note is
    saved, in a batch re-index, or at start-up. Every entity is stored as
    `title\\ncontent` (`question\\nanswer` for FAQs) under its own id, so
    re-indexing replaces the previous vector in place.
    """

    def __init__(
        self,
        retrieval: RetrievalEngine,
        *,
        notes_collection: str = "notes",
        faqs_collection: str = "faqs",
    ) -> None:
        self._retrieval = retrieval
        self._notes_collection = notes_collection
        self._faqs_collection = faqs_collection

    @property
    def notes(self) -> EmbeddingStore:
        return self._retrieval.stores[self._notes_collection]

    @property
    def faqs(self) -> EmbeddingStore:
        return self._retrieval.stores[self._faqs_collection]

    async def index_note(self, note: Note, llm_config: LLMConfig | None = None) -> EmbeddingRecord | None:
        """Embed and upsert a note; `None` when it has nothing to index."""
        self._require_embedding_model(llm_config)
        text = _note_text(note)
        if not text:
            logger.warning(f"[INDEXER] Note {note.id} has no content to index")
            return None

        vector = await self._embed_or_raise(text, f"note {note.id}", llm_config)
        record = self.notes.upsert(note.id, text, vector, _note_metadata(note))
        logger.info(f"[INDEXER] Indexed note {note.id} ({len(vector)} dims)")
        return record

    async def update_note(self, note: Note, llm_config: LLMConfig | None = None) -> EmbeddingRecord | None:
        self._require_embedding_model(llm_config)
        text = _note_text(note)
        vector = await self._retrieval.embed(text, llm_config)
        if not any(vector):
            logger.warning(f"[INDEXER] No embedding generated for note update {note.id}, skipping")
            return None
        return self.notes.update(note.id, text, vector, _note_metadata(note))

    def delete_note(self, note_id: str) -> None:
        self.notes.delete(note_id)
        logger.info(f"[INDEXER] Deleted note {note_id}")

    async def index_faq(self, faq: FAQItem, llm_config: LLMConfig | None = None) -> EmbeddingRecord | None:
        self._require_embedding_model(llm_config)
        text = _faq_text(faq)
        if not text:
            logger.warning(f"[INDEXER] FAQ {faq.id} has no content to index")
            return None

        vector = await self._embed_or_raise(text, f"FAQ {faq.id}", llm_config)
        record = self.faqs.upsert(faq.id, text, vector, _faq_metadata(faq))
        logger.info(f"[INDEXER] Indexed FAQ {faq.id}")
        return record

    async def update_faq(self, faq: FAQItem, llm_config: LLMConfig | None = None) -> EmbeddingRecord | None:
        self._require_embedding_model(llm_config)
        text = _faq_text(faq)
        vector = await self._retrieval.embed(text, llm_config)
        if not any(vector):
            logger.warning(f"[INDEXER] No embedding generated for FAQ update {faq.id}, skipping")
            return None
        return self.faqs.update(faq.id, text, vector, _faq_metadata(faq))

    def delete_faq(self, faq_id: str) -> None:
        self.faqs.delete(faq_id)
        logger.info(f"[INDEXER] Deleted FAQ {faq_id}")

    def _require_embedding_model(self, llm_config: LLMConfig | None) -> None:
        resolve_embedding_model(self._retrieval.settings, llm_config)

    async def _embed_or_raise(self, text: str, label: str, llm_config: LLMConfig | None) -> list[float]:
        vector = await self._retrieval.embed(text, llm_config)
        if not any(vector):
            raise EmbeddingError(f"No embedding vector generated for {label}")
        return vector


def _note_text(note: Note) -> str:
    return f"{note.title or ''}\n{note.content or ''}".strip()


def _faq_text(faq: FAQItem) -> str:
    return f"{faq.question or ''}\n{faq.answer or ''}".strip()


def _note_metadata(note: Note) -> dict[str, Any]:
    return {
        "note_id": note.id,
        "tags": list(note.tags),
        "source_url": note.source_url,
        "role": note.role,
    }


def _faq_metadata(faq: FAQItem) -> dict[str, Any]:
    return {"faq_id": faq.id, "tags": list(faq.tags)}

"""Multi-collection retrieval: embed the query, search, merge, format."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from reader_agent.config import LLMConfig, RetrievalConfig, Settings
from reader_agent.llm.client import LangChainLLMClient, LLMClient
from reader_agent.llm.resolution import ClientFactory, create_client_for, resolve_embedding_choice
from reader_agent.retrieval.fusion import merge_results
from reader_agent.retrieval.vector_store import EmbeddingStore
from reader_agent.types import ContextChunk, RetrievalOutput, RetrievalResult

logger = logging.getLogger(__name__)


class RetrievalEngine:
    """Turns a query into ranked, model-readable context chunks.

    Each requested collection is asked for `top_k` hits; the union is then
    merged by score and cut back to `top_k`, so one collection can fill every
    slot.
    """

    def __init__(
        self,
        stores: Mapping[str, EmbeddingStore],
        settings: Settings,
        *,
        embedding_client: LLMClient | None = None,
        client_factory: ClientFactory = LangChainLLMClient,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.stores = dict(stores)
        self.settings = settings
        self.config = config or RetrievalConfig()
        self._embedding_client = embedding_client
        self._client_factory = client_factory

    async def embed(self, text: str, llm_config: LLMConfig | None = None) -> list[float]:
        """Embed one text with the resolved embedding model; `[]` if nothing came back."""
        choice = resolve_embedding_choice(self.settings, llm_config)
        client = self._embedding_client or create_client_for(
            self.settings, choice, llm_config, factory=self._client_factory
        )
        vectors = await client.embed(choice.model, [text])
        return list(vectors[0]) if vectors else []

    async def retrieve(
        self,
        query: str,
        *,
        top_k: int | None = None,
        collections: list[str] | None = None,
        tags: list[str] | None = None,
        llm_config: LLMConfig | None = None,
    ) -> RetrievalOutput:
        limit = self.config.top_k if top_k is None else top_k
        names = collections or [name for name in self.config.collections if name in self.stores]
        unknown = [name for name in names if name not in self.stores]
        if unknown:
            raise ValueError(f"Unknown collection(s): {', '.join(unknown)}")

        logger.info(
            f"[RETRIEVER] Retrieving top {limit} from {names} for query: {query[:100]!r}"
        )
        vector = await self.embed(query, llm_config)
        if not vector or not any(vector):
            logger.warning("[RETRIEVER] Query embedding is empty, nothing to search")
            return RetrievalOutput(chunks=[])

        per_collection = []
        for name in names:
            results = self.stores[name].query(vector, limit, tags)
            logger.debug(f"[RETRIEVER] {name}: {len(results)} hits")
            per_collection.append(results)

        merged = merge_results(per_collection, limit)
        logger.info(
            f"[RETRIEVER] Returning {len(merged)} chunks, scores: "
            f"{[round(item.score, 4) for item in merged]}"
        )
        return RetrievalOutput(chunks=[format_chunk(item) for item in merged])


def format_chunk(result: RetrievalResult) -> ContextChunk:
    """Render a stored `title\\ncontent` record as a labelled context block."""

    lines = result.text.split("\n")
    title = lines[0].strip()
    content = "\n".join(lines[1:]).strip()

    if title and content:
        text = f"Topic: {title}\nContent: {content}"
    elif title:
        text = f"Topic: {title}"
    elif content:
        text = content
    else:
        text = result.text

    metadata = result.metadata
    source_url = metadata.get("source_url")
    if source_url:
        text += f"\nSource: {source_url}"

    note_id = metadata.get("note_id")
    return ContextChunk(
        text=text,
        score=result.score,
        origin_type="note" if note_id else "faq",
        origin_id=note_id or metadata.get("faq_id"),
        collection=metadata.get("collection"),
        source_url=source_url,
        tags=list(metadata.get("tags") or []),
        title=title,
        content=content,
    )

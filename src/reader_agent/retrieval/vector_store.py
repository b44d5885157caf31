"""Embedding store: per-collection records with pluggable nearest-neighbour search."""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from math import sqrt
from pathlib import Path
from typing import Any, Protocol

from reader_agent.errors import DimensionMismatchError, NotFoundError
from reader_agent.types import EmbeddingRecord, RetrievalResult

logger = logging.getLogger(__name__)

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class RecordBackend(Protocol):
    """Keyed persistence for one collection."""

    def get(self, record_id: str) -> EmbeddingRecord | None:
        """Point lookup by id."""

    def put(self, record: EmbeddingRecord) -> None:
        """Insert or overwrite a record, keeping its original scan position."""

    def delete(self, record_id: str) -> bool:
        """Remove a record; return whether it existed."""

    def scan(self) -> list[EmbeddingRecord]:
        """All records in insertion order."""


class InMemoryRecordBackend:
    """Dict-backed records used for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._records: dict[str, EmbeddingRecord] = {}

    def get(self, record_id: str) -> EmbeddingRecord | None:
        return self._records.get(record_id)

    def put(self, record: EmbeddingRecord) -> None:
        self._records[record.id] = record

    def delete(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None

    def scan(self) -> list[EmbeddingRecord]:
        return list(self._records.values())


class SQLiteRecordBackend:
    """One SQLite table per collection; vectors and metadata stored as JSON."""

    def __init__(self, db_path: str | Path, collection: str) -> None:
        if not _TABLE_NAME.match(collection):
            raise ValueError(f"Invalid collection name: {collection!r}")
        self._db_path = Path(db_path)
        self._table = f"vectors_{collection}"
        self._ensure_table()

    def get(self, record_id: str) -> EmbeddingRecord | None:
        with sqlite3.connect(self._db_path) as conn:
            row = conn.execute(
                f"SELECT id, text, vector, metadata, updated_at FROM {self._table} WHERE id = ?",
                (record_id,),
            ).fetchone()
        return _row_to_record(row) if row else None

    def put(self, record: EmbeddingRecord) -> None:
        with sqlite3.connect(self._db_path) as conn:
            conn.execute(
                f"INSERT INTO {self._table}(id, text, vector, metadata, updated_at) "
                "VALUES(?, ?, ?, ?, ?) ON CONFLICT(id) DO UPDATE SET "
                "text=excluded.text, vector=excluded.vector, "
                "metadata=excluded.metadata, updated_at=excluded.updated_at",
                (
                    record.id,
                    record.text,
                    json.dumps(record.vector),
                    json.dumps(record.metadata, ensure_ascii=False),
                    record.updated_at,
                ),
            )
            conn.commit()

    def delete(self, record_id: str) -> bool:
        with sqlite3.connect(self._db_path) as conn:
            cur = conn.execute(f"DELETE FROM {self._table} WHERE id = ?", (record_id,))
            conn.commit()
        return cur.rowcount > 0

    def scan(self) -> list[EmbeddingRecord]:
        with sqlite3.connect(self._db_path) as conn:
            rows = conn.execute(
                f"SELECT id, text, vector, metadata, updated_at FROM {self._table} ORDER BY rowid"
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def _ensure_table(self) -> None:
        with sqlite3.connect(self._db_path) as conn:
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {self._table} ("
                "id TEXT PRIMARY KEY, text TEXT NOT NULL, vector TEXT NOT NULL, "
                "metadata TEXT NOT NULL, updated_at REAL NOT NULL)"
            )
            conn.commit()


class NeighborSearch(ABC):
    """Nearest-neighbour capability behind the embedding store."""

    name: str = ""

    @abstractmethod
    def search(self, vector: list[float], k: int) -> list[tuple[str, float]]:
        """Return up to `k` (record id, cosine score) pairs, best first."""

    def add(self, record: EmbeddingRecord) -> None:
        """Reflect an upserted record."""

    def remove(self, record_id: str) -> None:
        """Reflect a deleted record."""


class BruteForceNeighborSearch(NeighborSearch):
    """Exact cosine scan over every persisted record."""

    name = "brute_force"

    def __init__(self, backend: RecordBackend) -> None:
        self._backend = backend

    def search(self, vector: list[float], k: int) -> list[tuple[str, float]]:
        scored = [
            (record.id, _cosine_similarity(vector, record.vector))
            for record in self._backend.scan()
        ]
        # sorted() is stable, so equal scores keep scan order.
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:k]


class FaissNeighborSearch(NeighborSearch):
    """In-memory FAISS index via the LangChain community integration.

    Vectors are L2-normalised before they enter the index so that the inner
    product it ranks by equals cosine similarity.
    """

    name = "faiss"

    def __init__(self, records: list[EmbeddingRecord]) -> None:
        try:
            from langchain_community.vectorstores import FAISS
            from langchain_community.vectorstores.utils import DistanceStrategy
            from langchain_core.embeddings import Embeddings
        except Exception as exc:  # pragma: no cover - import path is environment-dependent
            raise RuntimeError(
                "FAISS dependencies are not available. Install langchain-community/faiss-cpu."
            ) from exc

        if not records:
            raise ValueError("Cannot build an index without records")

        class _PrecomputedEmbeddings(Embeddings):
            def embed_documents(self, texts: list[str]) -> list[list[float]]:
                raise NotImplementedError("Vectors are supplied by the embedding store")

            def embed_query(self, text: str) -> list[float]:
                raise NotImplementedError("Vectors are supplied by the embedding store")

        self._index: Any = FAISS.from_embeddings(
            text_embeddings=[(record.text, _normalize(record.vector)) for record in records],
            embedding=_PrecomputedEmbeddings(),
            metadatas=[{"record_id": record.id} for record in records],
            ids=[record.id for record in records],
            distance_strategy=DistanceStrategy.MAX_INNER_PRODUCT,
        )
        self._ids: set[str] = {record.id for record in records}

    def search(self, vector: list[float], k: int) -> list[tuple[str, float]]:
        docs_and_scores = self._index.similarity_search_with_score_by_vector(
            _normalize(vector), k=k
        )
        return [(str(doc.metadata["record_id"]), float(score)) for doc, score in docs_and_scores]

    def add(self, record: EmbeddingRecord) -> None:
        self.remove(record.id)
        self._index.add_embeddings(
            text_embeddings=[(record.text, _normalize(record.vector))],
            metadatas=[{"record_id": record.id}],
            ids=[record.id],
        )
        self._ids.add(record.id)

    def remove(self, record_id: str) -> None:
        if record_id in self._ids:
            self._index.delete([record_id])
            self._ids.discard(record_id)


IndexFactory = Callable[[list[EmbeddingRecord]], NeighborSearch]


class EmbeddingStore:
    """Vector records for one collection ("notes", "faqs", ...).

    Search goes through an approximate index built lazily on the first query
    from all persisted records. If building or using the index fails for any
    reason the store switches to the brute-force scan for the rest of its
    lifetime; results are the same either way, only latency differs.
    """

    def __init__(
        self,
        collection: str,
        backend: RecordBackend | None = None,
        *,
        dimension: int | None = None,
        use_index: bool = True,
        index_factory: IndexFactory = FaissNeighborSearch,
        candidate_multiplier: int = 2,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.collection = collection
        self._backend: RecordBackend = backend or InMemoryRecordBackend()
        self._configured_dimension = dimension
        self._dimension = dimension
        self._use_index = use_index
        self._index_factory = index_factory
        self._candidate_multiplier = candidate_multiplier
        self._clock = clock
        self._brute_force = BruteForceNeighborSearch(self._backend)
        self._index: NeighborSearch | None = None
        self._index_failed = False

    @property
    def dimension(self) -> int | None:
        if self._dimension is None:
            records = self._backend.scan()
            if records:
                self._dimension = len(records[0].vector)
        return self._dimension

    @property
    def search_strategy(self) -> str:
        """Name of the strategy the next query would use."""
        if self._index is not None:
            return self._index.name
        return self._brute_force.name

    def get(self, record_id: str) -> EmbeddingRecord | None:
        return self._backend.get(record_id)

    def count(self) -> int:
        return len(self._backend.scan())

    def upsert(
        self,
        record_id: str,
        text: str,
        vector: list[float],
        metadata: dict[str, Any] | None = None,
    ) -> EmbeddingRecord:
        self._check_dimension(vector)
        record = EmbeddingRecord(
            id=record_id,
            text=text,
            vector=[float(value) for value in vector],
            metadata={**(metadata or {}), "collection": self.collection},
            updated_at=self._clock(),
        )
        self._backend.put(record)
        if self._dimension is None:
            self._dimension = len(record.vector)

        if self._index is not None:
            try:
                self._index.add(record)
            except Exception as exc:
                self._disable_index(exc)
        return record

    def update(
        self,
        record_id: str,
        text: str | None = None,
        vector: list[float] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> EmbeddingRecord:
        existing = self._backend.get(record_id)
        if existing is None:
            raise NotFoundError(f"Vector {record_id} not found in collection '{self.collection}'")

        merged_metadata = {**existing.metadata, **metadata} if metadata is not None else existing.metadata
        return self.upsert(
            record_id,
            text if text is not None else existing.text,
            vector if vector is not None else existing.vector,
            merged_metadata,
        )

    def delete(self, record_id: str) -> None:
        self._backend.delete(record_id)
        if self._configured_dimension is None and self.count() == 0:
            # an emptied collection accepts a new dimension
            self._dimension = None
            self._index = None
            return
        if self._index is not None:
            try:
                self._index.remove(record_id)
            except Exception as exc:
                self._disable_index(exc)

    def query(
        self,
        vector: list[float],
        top_k: int,
        tags: list[str] | None = None,
    ) -> list[RetrievalResult]:
        if top_k <= 0:
            return []
        if self.dimension is None or self.count() == 0:
            return []
        self._check_dimension(vector)

        candidates = self._search(vector, top_k * self._candidate_multiplier)
        wanted_tags = set(tags or [])

        results: list[RetrievalResult] = []
        for record_id, score in candidates:
            record = self._backend.get(record_id)
            if record is None:
                continue
            if wanted_tags and not wanted_tags & set(record.metadata.get("tags") or []):
                continue
            results.append(
                RetrievalResult(
                    id=record.id,
                    text=record.text,
                    metadata=dict(record.metadata),
                    score=score,
                )
            )

        results.sort(key=lambda item: item.score, reverse=True)
        logger.debug(
            f"[VECTOR_STORE:{self.collection}] {self.search_strategy} query returned "
            f"{len(results[:top_k])} of {len(candidates)} candidates"
        )
        return results[:top_k]

    def _search(self, vector: list[float], k: int) -> list[tuple[str, float]]:
        strategy = self._active_strategy()
        if strategy is self._brute_force:
            return strategy.search(vector, k)
        try:
            return strategy.search(vector, k)
        except Exception as exc:
            self._disable_index(exc)
            return self._brute_force.search(vector, k)

    def _active_strategy(self) -> NeighborSearch:
        if self._index is not None:
            return self._index
        if not self._use_index or self._index_failed:
            return self._brute_force

        records = self._backend.scan()
        if not records:
            return self._brute_force
        try:
            self._index = self._index_factory(records)
        except Exception as exc:
            self._disable_index(exc)
            return self._brute_force
        logger.info(
            f"[VECTOR_STORE:{self.collection}] Built {self._index.name} index over {len(records)} records"
        )
        return self._index

    def _disable_index(self, exc: Exception) -> None:
        logger.warning(
            f"[VECTOR_STORE:{self.collection}] Approximate index unavailable, "
            f"falling back to brute force search: {exc}"
        )
        self._index = None
        self._index_failed = True

    def _check_dimension(self, vector: list[float]) -> None:
        expected = self.dimension
        if expected is not None and len(vector) != expected:
            raise DimensionMismatchError(self.collection, expected, len(vector))


def _row_to_record(row: tuple[Any, ...]) -> EmbeddingRecord:
    record_id, text, vector, metadata, updated_at = row
    return EmbeddingRecord(
        id=record_id,
        text=text,
        vector=json.loads(vector),
        metadata=json.loads(metadata),
        updated_at=updated_at,
    )


def _normalize(vector: list[float]) -> list[float]:
    norm = sqrt(sum(value * value for value in vector))
    if norm == 0:
        return list(vector)
    return [value / norm for value in vector]


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)

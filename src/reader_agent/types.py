"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class EmbeddingRecord:
    """A persisted vector with the text it represents."""

    id: str
    text: str
    vector: list[float]
    metadata: dict[str, Any]
    updated_at: float


@dataclass(slots=True)
class RetrievalResult:
    """A nearest-neighbour hit from one collection."""

    id: str
    text: str
    metadata: dict[str, Any]
    score: float


@dataclass(slots=True)
class ContextChunk:
    """Model-readable context derived from a retrieval hit."""

    text: str
    score: float
    origin_type: str
    origin_id: str | None
    collection: str | None = None
    source_url: str | None = None
    tags: list[str] = field(default_factory=list)
    title: str = ""
    content: str = ""


@dataclass(slots=True)
class RetrievalOutput:
    chunks: list[ContextChunk]


@dataclass(slots=True)
class ToolResponse:
    """Outcome of invoking one external tool service during a turn."""

    service_id: str
    service_name: str
    content: str
    ok: bool
    latency_ms: float = 0.0


@dataclass(slots=True)
class Note:
    id: str
    title: str
    content: str
    tags: list[str] = field(default_factory=list)
    source_url: str | None = None
    role: str = "note"


@dataclass(slots=True)
class FAQItem:
    id: str
    question: str
    answer: str
    tags: list[str] = field(default_factory=list)

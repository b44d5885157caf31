"""Per-turn trace of intermediate decisions, and a latency timer."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any

from reader_agent.types import ContextChunk, ToolResponse


@dataclass(slots=True)
class Trace:
    """What one chat turn did on the way to its answer.

    Returned alongside the answer and never persisted.
    """

    transformed_query: str | None = None
    retrieved_chunks: list[ContextChunk] = field(default_factory=list)
    tool_responses: list[ToolResponse] = field(default_factory=list)
    synthesis_prompt: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Timer:
    """Simple context timer used around tool service calls."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0

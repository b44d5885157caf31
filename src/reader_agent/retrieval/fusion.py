"""Merging of per-collection retrieval results."""

from __future__ import annotations

from collections.abc import Iterable

from reader_agent.types import RetrievalResult


def merge_results(
    collection_results: Iterable[list[RetrievalResult]],
    top_k: int,
) -> list[RetrievalResult]:
    """Concatenate per-collection hits and keep the global best `top_k`.

    Scores from every collection are cosine similarities, so they are directly
    comparable. The sort is stable: on equal scores, earlier collections and
    earlier hits within a collection win.
    """

    merged: list[RetrievalResult] = []
    for results in collection_results:
        merged.extend(results)
    merged.sort(key=lambda item: item.score, reverse=True)
    return merged[: max(0, top_k)]

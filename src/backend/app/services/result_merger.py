"""Composition of per-window result pages into one reading sequence."""

from typing import Iterable, TypeVar

T = TypeVar("T")


def merge_pages(pages: Iterable[list[T]]) -> list[T]:
    """Concatenate pages given in window order (oldest shard first).

    Each page keeps the backend's descending timestamp order, so a result
    spanning several shards is ordered oldest shard first but newest first
    inside each shard. Consumers must not assume a global ordering across
    shard boundaries.
    """
    merged: list[T] = []
    for page in pages:
        merged.extend(page)
    return merged

"""Bounded status history and message helpers."""

from __future__ import annotations

from typing import TypeVar

T = TypeVar("T")


def prepend_bounded(history: list[T], entry: T, limit: int) -> list[T]:
    """Return a new list with ``entry`` first, trimmed to ``limit`` items."""
    return [entry, *history][:limit]


def shorten(text: str, limit: int) -> str:
    """Truncate ``text`` to at most ``limit`` characters, marking the cut."""
    text = text.strip()
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]
    return text[: limit - 3] + "..."

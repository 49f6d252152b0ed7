from __future__ import annotations

from typing import TypeVar

T = TypeVar("T")


def _mark(obj: T, level: str) -> T:
    try:
        obj.__stability__ = level
    except (AttributeError, TypeError):
        # Built-ins and some C types reject attribute assignment
        pass
    return obj


def stable_api(obj: T) -> T:
    """Mark a public retrieval API object as stable."""
    return _mark(obj, "stable")


def provisional_api(obj: T) -> T:
    """Mark an API whose behavior may still change between minor releases."""
    return _mark(obj, "provisional")


def api_stability(obj: object) -> str | None:
    """Return the stability level recorded on ``obj``, if any."""
    return getattr(obj, "__stability__", None)

"""Input checks shared by the services."""

from __future__ import annotations

from typing import Any

from achievement_points.errors import InvalidRequest


def require_text(field: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequest(field, "must be a non-empty string")
    return value


def require_positive(field: str, value: Any) -> int:
    # bool is an int subclass; True points are almost certainly a bug.
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidRequest(field, "must be a positive integer")
    return value


__all__ = ["require_positive", "require_text"]

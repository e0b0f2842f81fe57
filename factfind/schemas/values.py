"""Helpers for comparing answer values."""

from typing import Any


def as_answer_text(value: Any) -> str:
    """
    Canonical string form of an answer or dependency value.

    Booleans become "Yes"/"No" so a dependency configured as ``True`` matches
    a yes/no answer of "Yes".
    """
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if value is None:
        return ""
    return str(value)

"""Wildcard command patterns.

A pattern is literal text where ``*`` stands for any run of characters.
There are no other wildcards: everything else, regex metacharacters
included, matches itself.
"""

from __future__ import annotations

import re
from functools import lru_cache


@lru_cache(maxsize=1024)
def _compile(pattern: str) -> re.Pattern[str]:
    body = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.compile(f"^{body}$", re.IGNORECASE)


def matches(text: str, pattern: str) -> bool:
    """Return True if the whole trimmed ``text`` matches ``pattern``, ignoring case."""
    return _compile(pattern).match(text.strip()) is not None


def matches_any(text: str, patterns: list[str] | None) -> str | None:
    """Return the first pattern that matches ``text``, or None."""
    for pattern in patterns or ():
        if matches(text, pattern):
            return pattern
    return None

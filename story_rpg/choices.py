"""Choice extraction from free-form model output."""

from __future__ import annotations

import re

# Leading run of digits, "-", "*" or ".": "1. xxx", "- xxx", "* xxx", "1.2 xxx".
_MARKER_RE = re.compile(r"^[\d\-*.]+\s*(.*)$")

# Substituted by the engine when parsing yields nothing usable.
DEFAULT_CHOICES: tuple[str, ...] = ("繼續前進", "環顧四周", "與人交談")


def parse_choices(raw_text: str, max_count: int) -> list[str]:
    """Return up to ``max_count`` enumerated choices, in line order.

    Lines without a leading enumeration marker, and markers with nothing
    after them, are discarded. An empty result is not an error.
    """
    if max_count < 1:
        raise ValueError(f"max_count must be positive, got {max_count}")

    choices: list[str] = []
    for line in raw_text.splitlines():
        match = _MARKER_RE.match(line.strip())
        if not match:
            continue
        text = match.group(1).strip()
        if text:
            choices.append(text)
    return choices[:max_count]

"""Tiered retention of tool output and heuristic error classification."""

from __future__ import annotations

import json
from typing import Any

from .config import MAX_OUTPUT_SIZE, SUMMARY_LENGTH
from .models import TieredOutput

# Evaluated top to bottom; the first rule with a matching phrase wins.
ERROR_RULES: list[tuple[tuple[str, ...], str]] = [
    (("permission denied", "access denied"), "permission"),
    (("not found", "no such file"), "not_found"),
    (("timeout", "timed out"), "timeout"),
    (("connection", "network"), "network"),
    (("syntax error", "parse error"), "syntax"),
    (("validation", "invalid"), "validation"),
]


def stringify_output(output: Any) -> str:
    if output is None:
        return ""
    if isinstance(output, str):
        return output
    return json.dumps(output, ensure_ascii=False)


def tier_output(output: Any, is_error: bool = False) -> TieredOutput:
    """Keep a bounded summary always and the full payload when small or erroring."""
    if output is None:
        return TieredOutput()

    text = stringify_output(output)
    size = len(text.encode("utf-8"))
    summary = text[:SUMMARY_LENGTH]

    if is_error or size <= MAX_OUTPUT_SIZE:
        return TieredOutput(summary=summary, full=text, size=size)

    return TieredOutput(summary=summary, size=size, truncated=True)


def classify_error(output: Any, error_message: str | None = None) -> str:
    text = (stringify_output(output) + (error_message or "")).lower()
    for phrases, category in ERROR_RULES:
        if any(phrase in text for phrase in phrases):
            return category
    return "unknown"

"""Recover a JSON object from raw model output.

Model output is frequently wrapped in prose or markdown fences, and long
completions get cut off at the output-token limit. This module turns that text
into a parsed object without spending another model call, or raises
MalformedResponseError with enough context to see where it broke.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from loguru import logger

from plangen.errors import MalformedResponseError
from plangen.llm.json_scanner import find_balanced_span, find_safe_truncation_point, repair, scan

FALLBACK_WINDOW = 200_000
CONTEXT_RADIUS = 80

_FENCE_START_RE = re.compile(r"^\s*```[A-Za-z0-9_-]*[ \t]*\n?")
_FENCE_END_RE = re.compile(r"\n?[ \t]*```\s*$")
_POSITION_RE = re.compile(r"(?:position|char)\s+(\d+)", re.IGNORECASE)
_LINE_COLUMN_RE = re.compile(r"line\s+(\d+)\s+column\s+(\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class RecoveredJson:
    """JSON text recovered from model output.

    Attributes:
        text: Exact JSON text that parsed
        data: Parsed object
        strategy: Which strategy produced it (balanced, direct, repaired, prefix)
        discarded_chars: Characters of the candidate that were dropped by repair
    """

    text: str
    data: dict[str, Any]
    strategy: str
    discarded_chars: int = 0


def strip_code_fences(raw: str) -> str:
    """Remove a leading ```json / ``` fence and a trailing ``` fence."""
    text = _FENCE_START_RE.sub("", raw, count=1)
    return _FENCE_END_RE.sub("", text, count=1)


def line_column_to_offset(text: str, line: int, column: int) -> int:
    """Convert a 1-based line/column pair into an absolute offset in `text`."""
    lines = text.split("\n")
    line = max(1, min(line, len(lines)))
    offset = sum(len(previous) + 1 for previous in lines[: line - 1])
    return min(offset + max(column - 1, 0), len(text))


def error_offset(error: Exception | str, text: str) -> int | None:
    """Extract the character offset a JSON syntax error points at.

    Understands `json.JSONDecodeError` directly, and otherwise looks for
    "position N", "(char N)" or "line L column C" in the message.

    Args:
        error: Exception or error message
        text: Text that failed to parse (needed for line/column conversion)

    Returns:
        Offset into `text`, or None if the message carries no location
    """
    if isinstance(error, json.JSONDecodeError):
        return min(error.pos, len(text))

    message = str(error)
    match = _POSITION_RE.search(message)
    if match:
        return min(int(match.group(1)), len(text))

    match = _LINE_COLUMN_RE.search(message)
    if match:
        return line_column_to_offset(text, int(match.group(1)), int(match.group(2)))

    return None


def _load_object(text: str) -> dict[str, Any]:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise json.JSONDecodeError("Expected a JSON object", text, 0)
    return data


def _diagnostic(cleaned: str, base: int, candidate: str, offset: int, reason: str) -> MalformedResponseError:
    state = scan(candidate, 0, offset)
    absolute = base + offset
    context = cleaned[max(0, absolute - CONTEXT_RADIUS) : absolute + CONTEXT_RADIUS]
    return MalformedResponseError(
        f"Could not recover JSON from model output: {reason}",
        offset=absolute,
        context=context,
        path=state.path,
        depth=state.depth,
    )


def _recover_truncated(candidate: str) -> tuple[RecoveredJson | None, int, str]:
    """Direct parse, then cut at a safe point and repair.

    Returns:
        (result or None, failing offset, failure reason)
    """
    try:
        return RecoveredJson(text=candidate, data=_load_object(candidate), strategy="direct"), 0, ""
    except json.JSONDecodeError as e:
        offset = error_offset(e, candidate)
        reason = e.msg

    if offset is None:
        offset = len(candidate)

    cut = find_safe_truncation_point(candidate, offset)
    if cut is None:
        return None, offset, reason

    repaired = repair(candidate[:cut])
    try:
        data = _load_object(repaired)
    except json.JSONDecodeError as e:
        logger.debug("Repaired fragment still failed to parse", error=e.msg, cut=cut)
        return None, offset, reason

    return RecoveredJson(text=repaired, data=data, strategy="repaired", discarded_chars=len(candidate) - cut), offset, reason


def recover_json(raw: str) -> RecoveredJson:
    """Recover the first JSON object in model output.

    Strategies, in order: the first top-level balanced span that parses, direct
    parse of an unterminated remainder, safe truncation plus repair, longest
    complete prefix within a bounded window.

    Args:
        raw: Raw completion text

    Returns:
        RecoveredJson with the parsed object

    Raises:
        MalformedResponseError: If no strategy yields a JSON object
    """
    cleaned = strip_code_fences(raw)
    start = cleaned.find("{")
    if start == -1:
        raise MalformedResponseError(
            "No JSON object found in model output",
            offset=0,
            context=cleaned[: CONTEXT_RADIUS * 2],
            path="$",
            depth=0,
        )

    # Prose may contain its own braces, so every top-level span is tried before
    # any repair. An unterminated span ends the search.
    candidates: list[tuple[int, str]] = []
    position = start
    while position != -1:
        span = find_balanced_span(cleaned, position)
        if span is None:
            candidates.append((position, cleaned[position:]))
            break
        text = cleaned[span[0] : span[1]]
        try:
            data = _load_object(text)
        except json.JSONDecodeError:
            logger.debug("Balanced span is not valid JSON", span_start=span[0], length=len(text))
            candidates.append((span[0], text))
            position = cleaned.find("{", span[1])
            continue
        if candidates:
            logger.warning("Skipped brace spans that are not JSON", skipped=len(candidates), span_start=span[0])
        return RecoveredJson(text=text, data=data, strategy="balanced")

    failure: tuple[int, str, int, str] | None = None
    for base, candidate in candidates:
        result, offset, reason = _recover_truncated(candidate)
        if result is not None:
            if result.strategy != "direct":
                logger.warning(
                    "Recovered JSON from malformed model output",
                    strategy=result.strategy,
                    discarded_chars=result.discarded_chars,
                    error_offset=base + offset,
                )
            return result
        if failure is None:
            failure = (base, candidate, offset, reason)

    assert failure is not None
    base, candidate, offset, reason = failure

    prefix_span = find_balanced_span(cleaned, start, FALLBACK_WINDOW, string_aware=False)
    if prefix_span is not None:
        prefix = cleaned[prefix_span[0] : prefix_span[1]]
        try:
            data = _load_object(prefix)
        except json.JSONDecodeError:
            logger.debug("Longest complete prefix is not valid JSON", length=len(prefix))
        else:
            logger.warning(
                "Recovered JSON from malformed model output",
                strategy="prefix",
                discarded_chars=len(cleaned) - prefix_span[1],
                error_offset=base + offset,
            )
            return RecoveredJson(
                text=prefix,
                data=data,
                strategy="prefix",
                discarded_chars=len(cleaned) - prefix_span[1],
            )

    raise _diagnostic(cleaned, base, candidate, offset, reason)


def extract_json_object(raw: str) -> dict[str, Any]:
    """Return the JSON object contained in raw model output.

    Raises:
        MalformedResponseError: If nothing parseable can be recovered
    """
    return recover_json(raw).data

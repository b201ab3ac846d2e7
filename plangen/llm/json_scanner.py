"""String-aware JSON tokenizer used to recover model output.

One forward scan tracks string state, the bracket stack and the nesting path.
Three pure operations are built on it:

- find_balanced_span: the exact `{...}` span where brace depth returns to zero
- find_safe_truncation_point: where a truncated/invalid document can be cut
- repair: close a cut fragment into parseable JSON

None of these functions call json.loads; the response parser decides whether the
result is acceptable.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_PARTIAL_LITERAL_RE = re.compile(r"[A-Za-z0-9.+\-]+$")
_COMPLETE_LITERAL_RE = re.compile(r"^(?:true|false|null|-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?)$")


@dataclass
class Frame:
    """One open container on the bracket stack."""

    kind: str  # "{" or "["
    key: str | None = None
    index: int = 0
    expect_key: bool = False
    after_key: bool = False


@dataclass
class ScanState:
    """Result of scanning text up to a stop position.

    Attributes:
        start: Offset the scan started at
        position: Offset the scan stopped at (exclusive)
        stack: Open containers, outermost first
        in_string: Whether the stop position is inside a string literal
        escape_pending: Whether the last character read was a backslash inside a string
        last_closed_object_end: Offset just past the last `}` that closed an object
        last_closed_object_depth: Depth after that `}` was popped
        boundaries: Safe cut offsets outside strings as (offset, depth) pairs;
            after `}`/`]` the offset is past the bracket, for `,` it is the comma itself
        balanced_end: Offset just past the `}` where depth first returned to zero
    """

    start: int
    position: int
    stack: list[Frame] = field(default_factory=list)
    in_string: bool = False
    escape_pending: bool = False
    last_closed_object_end: int | None = None
    last_closed_object_depth: int | None = None
    boundaries: list[tuple[int, int]] = field(default_factory=list)
    balanced_end: int | None = None

    @property
    def depth(self) -> int:
        return len(self.stack)

    @property
    def path(self) -> str:
        """JSONPath-like location of the stop position, e.g. `$.workouts[2].workout_data`."""
        parts = ["$"]
        for frame in self.stack:
            if frame.kind == "{":
                if frame.key is not None:
                    parts.append(f".{frame.key}")
            else:
                parts.append(f"[{frame.index}]")
        return "".join(parts)

    @property
    def last_boundary(self) -> int | None:
        return self.boundaries[-1][0] if self.boundaries else None


def scan(
    text: str,
    start: int = 0,
    end: int | None = None,
    *,
    stop_at_balance: bool = False,
    string_aware: bool = True,
) -> ScanState:
    """Scan `text[start:end]` tracking strings, brackets and the nesting path.

    Args:
        text: Text to scan
        start: Offset to start at (normally the first `{`)
        end: Offset to stop at (exclusive); defaults to the end of text
        stop_at_balance: Stop as soon as depth returns to zero after the first open bracket
        string_aware: When False, quotes are ignored and every bracket counts

    Returns:
        ScanState describing the position where scanning stopped
    """
    stop = len(text) if end is None else min(end, len(text))
    state = ScanState(start=start, position=start)
    key_start: int | None = None
    opened = False

    i = start
    while i < stop:
        ch = text[i]

        if state.in_string:
            if state.escape_pending:
                state.escape_pending = False
            elif ch == "\\":
                state.escape_pending = True
            elif ch == '"':
                state.in_string = False
                if key_start is not None and state.stack:
                    top = state.stack[-1]
                    top.key = text[key_start + 1 : i]
                    top.expect_key = False
                    top.after_key = True
                key_start = None
            i += 1
            continue

        if ch == '"' and string_aware:
            state.in_string = True
            top = state.stack[-1] if state.stack else None
            if top is not None and top.kind == "{" and top.expect_key:
                key_start = i
        elif ch in "{[":
            state.stack.append(Frame(kind=ch, expect_key=ch == "{"))
            opened = True
        elif ch in "}]":
            if state.stack:
                frame = state.stack.pop()
                if frame.kind == "{":
                    state.last_closed_object_end = i + 1
                    state.last_closed_object_depth = len(state.stack)
                state.boundaries.append((i + 1, len(state.stack)))
                if opened and not state.stack and state.balanced_end is None:
                    state.balanced_end = i + 1
                    if stop_at_balance:
                        state.position = i + 1
                        return state
        elif ch == ",":
            state.boundaries.append((i, len(state.stack)))
            if state.stack:
                top = state.stack[-1]
                if top.kind == "{":
                    top.expect_key = True
                    top.after_key = False
                    top.key = None
                else:
                    top.index += 1
        elif ch == ":":
            if state.stack and state.stack[-1].kind == "{":
                state.stack[-1].after_key = False

        i += 1

    state.position = stop
    return state


def find_balanced_span(
    text: str,
    start: int = 0,
    max_length: int | None = None,
    *,
    string_aware: bool = True,
) -> tuple[int, int] | None:
    """Find the first complete top-level `{...}` at or after `start`.

    Args:
        text: Text to search
        start: Offset to start searching for `{`
        max_length: Optional lookahead window measured from the opening brace
        string_aware: Whether braces inside string literals are ignored

    Returns:
        (begin, end) offsets of the balanced span, or None if depth never returns to zero
    """
    begin = text.find("{", start)
    if begin == -1:
        return None
    end = None if max_length is None else begin + max_length
    state = scan(text, begin, end, stop_at_balance=True, string_aware=string_aware)
    if state.balanced_end is None:
        return None
    return begin, state.balanced_end


def find_safe_truncation_point(text: str, offset: int) -> int | None:
    """Find the last offset before `offset` where the document can be cut safely.

    The cut prefers the end of the last fully-closed `{...}` object. It moves
    forward to a later `}`, `]` or `,` boundary only when that boundary sits no
    deeper than the closed object's container, so a later sibling is kept but a
    half-written object is not. Without any closed object (or when the offset is
    inside an unterminated string that follows no closed object) the nearest
    preceding boundary outside strings is used.

    Args:
        text: Text starting at or before the first `{`
        offset: Offset of the parse failure

    Returns:
        Cut offset (exclusive), or None when nothing before `offset` can be kept
    """
    begin = text.find("{")
    if begin == -1 or offset <= begin:
        return None

    state = scan(text, begin, offset)

    if state.last_closed_object_end is not None:
        container_depth = state.last_closed_object_depth or 0
        cut = state.last_closed_object_end
        for boundary, depth in state.boundaries:
            if boundary > cut and depth <= container_depth and depth > 0:
                cut = boundary
        return cut

    # Nothing closed yet: back up to the nearest structural boundary outside strings
    candidates = [boundary for boundary, depth in state.boundaries if depth > 0]
    if not candidates:
        return None
    return candidates[-1]


def strip_trailing_commas(text: str) -> str:
    """Remove commas that are followed only by whitespace and a closing bracket or end of text.

    Commas inside string literals are left untouched.
    """
    out: list[str] = []
    in_string = False
    escape = False
    i = 0
    length = len(text)
    while i < length:
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            out.append(ch)
            i += 1
            continue

        if ch == '"':
            in_string = True
        elif ch == ",":
            j = i + 1
            while j < length and text[j] in " \t\r\n":
                j += 1
            if j >= length or text[j] in "}]":
                i += 1
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def _string_start_before(text: str, closing_quote: int) -> int | None:
    """Return the offset of the quote opening the string that ends at `closing_quote`."""
    i = closing_quote - 1
    while i >= 0:
        if text[i] == '"':
            backslashes = 0
            j = i - 1
            while j >= 0 and text[j] == "\\":
                backslashes += 1
                j -= 1
            if backslashes % 2 == 0:
                return i
        i -= 1
    return None


def _drop_dangling_tail(text: str) -> str:
    """Drop trailing tokens that cannot end a value: commas, colons, bare keys, partial literals."""
    while True:
        stripped = text.rstrip()
        if not stripped:
            return stripped
        state = scan(stripped)
        if not state.stack:
            return stripped
        top = state.stack[-1]
        last = stripped[-1]

        if last == ",":
            text = stripped[:-1]
            continue

        if last == ":":
            text = stripped[:-1]
            continue

        if last == '"' and top.kind == "{" and top.after_key:
            opening = _string_start_before(stripped, len(stripped) - 1)
            if opening is None:
                return stripped
            text = stripped[:opening]
            continue

        literal = _PARTIAL_LITERAL_RE.search(stripped)
        if literal and not _COMPLETE_LITERAL_RE.match(literal.group(0)):
            text = stripped[: literal.start()]
            continue

        return stripped


def repair(fragment: str) -> str:
    """Close a cut JSON fragment so it can be parsed.

    Steps: close an open string, drop dangling commas/keys/colons and partial
    literals, strip trailing commas before closing brackets, then close open
    arrays and objects innermost first. A fragment that is already complete is
    returned unchanged.

    Args:
        fragment: Text starting at `{`

    Returns:
        Repaired JSON text (not validated here)
    """
    state = scan(fragment)
    if not state.stack and not state.in_string:
        return strip_trailing_commas(fragment)

    text = fragment
    if state.in_string:
        if state.escape_pending:
            text = text[:-1]
        text += '"'

    text = _drop_dangling_tail(text)
    text = strip_trailing_commas(text)

    state = scan(text)
    closers = "".join("}" if frame.kind == "{" else "]" for frame in reversed(state.stack))
    return text + closers

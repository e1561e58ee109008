"""Best-effort recovery of a JSON object from LLM output.

Generation responses are nominally a single JSON object, but in practice
they arrive wrapped in markdown fences or prose, or cut off mid-stream when
the model hits its output budget.  ``repair_and_parse`` handles exactly two
kinds of damage, in this order:

  1. Unterminated string literals (closed with a spliced quote).
  2. Unbalanced closing brackets (the missing closers are appended,
     innermost first).

It is a deterministic single-pass heuristic, not a general JSON fixer: after
one repair retry it gives up with ``UnrecoverableFormat``.  Already-valid
input is returned exactly as ``json.loads`` would return it.
"""

from __future__ import annotations

import json
import logging
import re

from casegen.config import REPAIR_DIAGNOSTIC_TAIL
from casegen.pipeline.errors import UnrecoverableFormat

logger = logging.getLogger(__name__)

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)
_THINK_ALT_RE = re.compile(r"<\|start_thinking\|>.*?<\|end_thinking\|>", re.DOTALL)
_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL)
_OPEN_FENCE_RE = re.compile(r"```(?:json)?\s*\n?")

_STRUCTURAL = ",}]"
_CLOSERS = {"{": "}", "[": "]"}


def repair_and_parse(raw: str) -> dict:
    """Parse *raw* into a dict, repairing truncation damage if needed.

    Raises:
        UnrecoverableFormat: no JSON object can be produced.  ``tail`` holds
            the last characters of the repaired candidate for diagnostics.
    """
    if raw is None or not raw.strip():
        raise UnrecoverableFormat("Empty response from generation service")

    text = raw.strip()
    parsed = _loads_object(text)
    if parsed is not None:
        return parsed

    text = _strip_wrappers(text)
    if not text:
        raise UnrecoverableFormat(
            "No JSON object found in response",
            tail=raw.strip()[-REPAIR_DIAGNOSTIC_TAIL:],
        )

    parsed = _loads_object(text)
    if parsed is not None:
        return parsed

    candidate = _repair(text)
    parsed = _loads_object(candidate)
    if parsed is None:
        # One retry: a second quote-balance pass over the repaired text
        candidate = close_unterminated_string(candidate)
        parsed = _loads_object(candidate)

    if parsed is None:
        tail = candidate[-REPAIR_DIAGNOSTIC_TAIL:]
        logger.error(
            f"[repair] Unrecoverable JSON ({len(candidate):,} chars). Last {len(tail)} chars: {tail!r}"
        )
        raise UnrecoverableFormat(
            f"Model returned invalid JSON that could not be repaired ({len(candidate):,} chars)",
            tail=tail,
        )

    logger.info(f"[repair] Recovered JSON object from damaged response ({len(raw):,} chars)")
    return parsed


def _loads_object(text: str) -> dict | None:
    """json.loads that returns None on a decode error.

    Valid JSON that is not an object is not a guess we are allowed to
    repair into one, so it is rejected outright.
    """
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    if not isinstance(value, dict):
        raise UnrecoverableFormat(
            f"Expected a JSON object, got {type(value).__name__}",
            tail=text[-REPAIR_DIAGNOSTIC_TAIL:],
        )
    return value


def _strip_wrappers(text: str) -> str:
    """Remove think blocks, markdown fences and leading prose.

    Returns the text starting at the first ``{``, or "" if there is none.
    """
    text = _THINK_RE.sub("", text)
    text = _THINK_ALT_RE.sub("", text).strip()

    fenced = _FENCE_RE.search(text)
    if fenced and "{" in fenced.group(1):
        text = fenced.group(1).strip()
    else:
        # Opening fence whose closing fence was truncated away
        opening = _OPEN_FENCE_RE.search(text)
        if opening:
            text = text[opening.end():]

    start = text.find("{")
    if start < 0:
        return ""
    return text[start:].strip()


def _repair(text: str) -> str:
    if not text.endswith("}"):
        logger.warning("[repair] Response does not end with '}', treating as truncated")
        last_brace = text.rfind("}")
        if last_brace >= 0:
            head = text[: last_brace + 1]
            if count_unescaped_quotes(head) % 2 == 0:
                text = head
            else:
                text = close_unterminated_string(head)
        else:
            text = close_unterminated_string(text)

    if count_unescaped_quotes(text) % 2 != 0:
        logger.warning("[repair] Unbalanced quotes detected, closing dangling string")
        text = close_unterminated_string(text)

    return balance_brackets(text)


def is_escaped(text: str, index: int) -> bool:
    """True if the character at *index* is preceded by an odd backslash run."""
    backslashes = 0
    pos = index - 1
    while pos >= 0 and text[pos] == "\\":
        backslashes += 1
        pos -= 1
    return backslashes % 2 == 1


def count_unescaped_quotes(text: str) -> int:
    return sum(1 for i, ch in enumerate(text) if ch == '"' and not is_escaped(text, i))


def close_unterminated_string(text: str) -> str:
    """Quote-balance scan.

    Walks the text toggling an in-string flag on every unescaped quote.  If
    the walk ends inside a string, a closing quote is spliced in front of
    the first unescaped ``,`` ``}`` or ``]`` after the last opening quote,
    or appended when no such character follows.
    """
    in_string = False
    open_pos = -1
    for i, ch in enumerate(text):
        if ch == '"' and not is_escaped(text, i):
            in_string = not in_string
            if in_string:
                open_pos = i

    if not in_string:
        return text

    for i in range(open_pos + 1, len(text)):
        if text[i] in _STRUCTURAL and not is_escaped(text, i):
            return text[:i] + '"' + text[i:]
    return text + '"'


def balance_brackets(text: str) -> str:
    """Append the closers needed for every still-open ``{`` / ``[``.

    Brackets inside string literals are ignored.  A dangling trailing comma
    (the last structurally valid position is just before it) is dropped
    before the closers are appended.
    """
    stack: list[str] = []
    in_string = False
    for i, ch in enumerate(text):
        if ch == '"' and not is_escaped(text, i):
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch in _CLOSERS:
            stack.append(ch)
        elif ch in "}]" and stack and _CLOSERS[stack[-1]] == ch:
            stack.pop()

    if not stack:
        return text

    body = text.rstrip()
    while body.endswith(","):
        body = body[:-1].rstrip()
    closing = "".join(_CLOSERS[opener] for opener in reversed(stack))
    logger.info(f"[repair] Appending {closing!r} to balance open structures")
    return body + closing

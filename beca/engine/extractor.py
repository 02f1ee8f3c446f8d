"""Turn free-text assistant replies into structured UI artifacts.

The backend's output is not contractually structured, so every function
here is a best-effort heuristic over plain text. All functions are pure:
identical input yields identical output, and malformed input degrades to
an empty result instead of raising.
"""
from __future__ import annotations

import re

from .models import CodeBlock, CompletionCandidate, Diagnostic, Severity

# "Line 12: message" anywhere in the reply, one finding per line.
_LINE_PATTERN = re.compile(r"line\s+(\d+):[ \t]*(.+?)[ \t]*(?:\n|$)", re.IGNORECASE)

# Fenced code: ```lang\n ... ```
_FENCE_PATTERN = re.compile(r"```([\w+#.-]*)[ \t]*\n([\s\S]+?)```")

_BULLET_MARKERS = ("•", "-", "*")

MAX_LABEL_LENGTH = 50
_ELLIPSIS = "..."
_FALLBACK_LINE_LENGTH = 100

FULL_REVIEW_HINT = (
    "Code quality suggestions available. "
    "Run a full file review for details."
)


def _classify(message: str) -> Severity:
    lower = message.lower()
    if "error" in lower or "bug" in lower:
        return Severity.ERROR
    if "info" in lower or "suggestion" in lower:
        return Severity.INFORMATION
    return Severity.WARNING


def _truncate_label(text: str) -> str:
    if len(text) <= MAX_LABEL_LENGTH:
        return text
    return text[:MAX_LABEL_LENGTH - len(_ELLIPSIS)] + _ELLIPSIS


def extract_diagnostics(response_text: str, line_count: int) -> list[Diagnostic]:
    """Extract line-anchored diagnostics from an assistant reply.

    Matches ``line <N>: <message>`` (case-insensitive), converts the
    1-based line number to zero-based and drops any index outside
    ``[0, line_count)``. Severity comes from keywords in the message:
    ``error``/``bug`` -> Error, ``info``/``suggestion`` -> Information,
    anything else -> Warning.

    When nothing matches but the reply mentions "improve", a single Hint
    at line 0 points the user at a full review instead.

    Args:
        response_text: Raw assistant reply.
        line_count: Number of lines in the analyzed document snapshot.

    Returns:
        Diagnostics in order of appearance; empty when nothing applies.
    """
    if not isinstance(response_text, str) or not response_text:
        return []
    if not isinstance(line_count, int) or line_count <= 0:
        return []

    diagnostics: list[Diagnostic] = []
    for match in _LINE_PATTERN.finditer(response_text):
        line = int(match.group(1)) - 1
        if line < 0 or line >= line_count:
            continue
        message = match.group(2).strip()
        diagnostics.append(
            Diagnostic(line=line, message=message, severity=_classify(message))
        )

    if not diagnostics and "improve" in response_text.lower():
        diagnostics.append(
            Diagnostic(line=0, message=FULL_REVIEW_HINT, severity=Severity.HINT)
        )
    return diagnostics


def extract_completions(response_text: str, max_count: int) -> list[CompletionCandidate]:
    """Extract up to *max_count* completion candidates.

    Each fenced code segment becomes one candidate: the label is its
    first line (cut to 50 characters with an ellipsis), the insert text
    is the whole segment. Without any fences, a single candidate is
    built from the first non-blank line, or the first 100 characters
    when every line is blank, documented with the full reply.
    """
    if not isinstance(response_text, str) or not response_text:
        return []
    if not isinstance(max_count, int) or max_count <= 0:
        return []

    candidates: list[CompletionCandidate] = []
    for match in _FENCE_PATTERN.finditer(response_text):
        if len(candidates) >= max_count:
            break
        code = match.group(2).strip()
        if not code:
            continue
        candidates.append(CompletionCandidate(
            label=_truncate_label(code.split("\n", 1)[0]),
            insert_text=code,
            documentation="Assistant suggested code snippet",
        ))

    if candidates:
        return candidates

    lines = [line for line in response_text.split("\n") if line.strip()]
    first_line = lines[0] if lines else response_text[:_FALLBACK_LINE_LENGTH]
    return [CompletionCandidate(
        label=_truncate_label(first_line),
        insert_text=first_line,
        documentation=response_text,
    )]


def extract_key_points(response_text: str, max_count: int) -> list[str]:
    """Collect bullet lines (``•``, ``-``, ``*``) in order, capped at *max_count*.

    The marker may be glued to the text (``-item``). A doubled marker
    is skipped, so emphasis (``**bold**``) and rules (``---``) are not
    mistaken for bullets.
    """
    if not isinstance(response_text, str) or not response_text:
        return []
    if not isinstance(max_count, int) or max_count <= 0:
        return []

    points: list[str] = []
    for line in response_text.split("\n"):
        trimmed = line.strip()
        if not trimmed.startswith(_BULLET_MARKERS):
            continue
        if len(trimmed) > 1 and trimmed[1] in _BULLET_MARKERS:
            continue
        point = trimmed[1:].strip()
        if not point:
            continue
        points.append(point)
        if len(points) >= max_count:
            break
    return points


def extract_code_blocks(response_text: str) -> list[CodeBlock]:
    """Return every fenced code block with its language tag (may be empty)."""
    if not isinstance(response_text, str) or not response_text:
        return []
    return [
        CodeBlock(language=match.group(1), code=match.group(2).rstrip("\n"))
        for match in _FENCE_PATTERN.finditer(response_text)
    ]

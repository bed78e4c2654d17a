"""Apply suggested edits back onto CV text.

Each change names a verbatim ``original`` snippet from the CV and the
``suggested`` replacement. Changes are applied one after another against
the text as it evolves; only the first match of each snippet is replaced.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

SKIP_REASON_EMPTY_ORIGINAL = "empty_original"
SKIP_REASON_NOT_FOUND = "not_found"


@dataclass
class SuggestedChange:
    id: str
    original: str
    suggested: str
    section: str = ""
    reason: str = ""


@dataclass
class SkippedChange:
    id: str
    reason: str


@dataclass
class PatchResult:
    text: str
    applied: list[str] = field(default_factory=list)
    skipped: list[SkippedChange] = field(default_factory=list)


def coerce_changes(raw: object) -> list[SuggestedChange]:
    """Build changes from loosely-shaped model output, numbering missing ids."""
    if not isinstance(raw, list):
        return []

    result: list[SuggestedChange] = []
    for idx, item in enumerate(raw, start=1):
        if not isinstance(item, dict):
            continue
        original = item.get("original")
        suggested = item.get("suggested")
        if not isinstance(original, str) or not isinstance(suggested, str):
            continue
        change_id = str(item.get("id") or "").strip() or f"chg_{idx}"
        result.append(
            SuggestedChange(
                id=change_id,
                original=original,
                suggested=suggested,
                section=str(item.get("section") or "").strip(),
                reason=str(item.get("reason") or "").strip(),
            )
        )
    return result


def _whitespace_pattern(snippet: str) -> re.Pattern[str] | None:
    parts = snippet.split()
    if not parts:
        return None
    return re.compile(r"\s+".join(re.escape(part) for part in parts))


def locate_snippet(text: str, snippet: str, *, start: int = 0) -> tuple[int, int] | None:
    if not snippet.strip():
        return None

    start = max(0, min(start, len(text)))
    for offset in (start, 0):
        idx = text.find(snippet, offset)
        if idx >= 0:
            return idx, idx + len(snippet)

    pattern = _whitespace_pattern(snippet)
    if pattern is None:
        return None
    for offset in (start, 0):
        match = pattern.search(text, offset)
        if match:
            return match.start(), match.end()
    return None


def apply_changes(text: str, changes: Iterable[SuggestedChange]) -> PatchResult:
    current = text
    cursor = 0
    result = PatchResult(text=text)

    for change in changes:
        if not change.original.strip():
            result.skipped.append(SkippedChange(id=change.id, reason=SKIP_REASON_EMPTY_ORIGINAL))
            continue

        span = locate_snippet(current, change.original, start=cursor)
        if span is None:
            result.skipped.append(SkippedChange(id=change.id, reason=SKIP_REASON_NOT_FOUND))
            continue

        begin, end = span
        current = current[:begin] + change.suggested + current[end:]
        cursor = begin + len(change.suggested)
        result.applied.append(change.id)

    result.text = current
    return result


def find_change_offsets(text: str, changes: Iterable[SuggestedChange]) -> dict[str, tuple[int, int] | None]:
    return {change.id: locate_snippet(text, change.original) for change in changes}


def skipped_to_dicts(skipped: list[SkippedChange]) -> list[dict[str, Any]]:
    return [{"id": item.id, "reason": item.reason} for item in skipped]

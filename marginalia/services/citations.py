"""Citation marker checks and plain-text reference formatting."""
from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from marginalia.models.notes import Reference

CITATION_MARKER = re.compile(r"\[(\d{1,3})\](?!\()")


def cited_numbers(text: str) -> list[int]:
    """Citation numbers in order of first appearance."""
    seen: list[int] = []
    for match in CITATION_MARKER.finditer(text or ""):
        number = int(match.group(1))
        if number not in seen:
            seen.append(number)
    return seen


def strip_dangling_citations(text: str, source_count: int) -> tuple[str, list[int]]:
    """Remove ``[n]`` markers that do not point at one of ``source_count`` sources.

    Markdown links (``[1](https://...)``) are left alone. Returns the cleaned
    text and the sorted list of numbers that were removed.
    """
    removed: set[int] = set()

    def _replace(match: re.Match[str]) -> str:
        number = int(match.group(1))
        if 1 <= number <= source_count:
            return match.group(0)
        removed.add(number)
        return ""

    cleaned = CITATION_MARKER.sub(_replace, text or "")
    if removed:
        # Tidy the gaps left behind ("word [9]." -> "word.").
        cleaned = re.sub(r"[ \t]+([.,;:!?])", r"\1", cleaned)
        cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
    return cleaned, sorted(removed)


def format_references(references: Sequence[Reference] | Iterable[Reference], style: str = "numbered") -> str:
    """Render references as a copy-friendly list in ``numbered``, ``apa`` or ``mla`` style."""
    refs = list(references)
    if not refs:
        return "No references available."

    style = (style or "numbered").lower().strip()
    if style == "apa":
        return "\n\n".join(f"{ref.title}. Retrieved from {ref.url}" for ref in refs)
    if style == "mla":
        return "\n\n".join(f'"{ref.title}." Web. <{ref.url}>' for ref in refs)
    return "\n\n".join(
        f"[{ref.rank}] {ref.title}\n    {ref.url}\n    {ref.snippet or ''}" for ref in refs
    )

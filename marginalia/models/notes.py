from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

NoteKind = Literal["text", "image"]


@dataclass(slots=True)
class Reference:
    rank: int
    title: str
    url: str
    snippet: str = ""
    id: str | None = None
    note_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"rank": self.rank, "title": self.title, "url": self.url, "snippet": self.snippet}


@dataclass(slots=True)
class Note:
    id: str
    chapter_id: str
    title: str
    kind: NoteKind = "text"
    body_md: str | None = None
    image_url: str | None = None
    image_caption: str | None = None
    elaboration_json: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    references: list[Reference] = field(default_factory=list)


@dataclass(slots=True)
class Chapter:
    id: str
    user_id: str
    title: str
    description: str | None = None
    position: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class SearchResult:
    """Normalized web search hit. Never persisted directly."""

    title: str
    url: str
    snippet: str
    source: str
    retrieved_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class QueryPlan:
    queries: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)


@dataclass(slots=True)
class RankingDecision:
    ranked_indices: list[int] = field(default_factory=list)
    reasoning: str = ""


@dataclass(slots=True)
class NoteSummary:
    summary: str = ""
    key_points: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ImageCaption:
    caption: str = ""
    description: str = ""
    tags: list[str] = field(default_factory=list)

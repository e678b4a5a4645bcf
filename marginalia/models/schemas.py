from __future__ import annotations

from datetime import datetime

from pydantic import Field

from marginalia.models.elaboration import CamelModel
from marginalia.models.notes import Chapter, Note, NoteKind


# --- Requests ---


class ChapterCreate(CamelModel):
    user_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str | None = None
    position: int | None = None


class ChapterUpdate(CamelModel):
    title: str | None = None
    description: str | None = None
    position: int | None = None


class NoteCreate(CamelModel):
    chapter_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    body_md: str = ""


class NoteUpdate(CamelModel):
    title: str | None = None
    body_md: str | None = None
    image_caption: str | None = None


class ElaborateRequest(CamelModel):
    force: bool = False


class SummarizeRequest(CamelModel):
    max_length: int = Field(default=200, ge=20, le=2000)


# --- Responses ---


class ReferenceResponse(CamelModel):
    id: str | None = None
    rank: int
    title: str
    url: str
    snippet: str = ""


class NoteResponse(CamelModel):
    id: str
    chapter_id: str
    kind: NoteKind
    title: str
    body_md: str | None = None
    image_url: str | None = None
    image_caption: str | None = None
    elaboration_json: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    references: list[ReferenceResponse] = Field(default_factory=list)

    @classmethod
    def from_note(cls, note: Note) -> "NoteResponse":
        return cls(
            id=note.id,
            chapter_id=note.chapter_id,
            kind=note.kind,
            title=note.title,
            body_md=note.body_md,
            image_url=note.image_url,
            image_caption=note.image_caption,
            elaboration_json=note.elaboration_json,
            created_at=note.created_at,
            updated_at=note.updated_at,
            references=[
                ReferenceResponse(id=r.id, rank=r.rank, title=r.title, url=r.url, snippet=r.snippet)
                for r in note.references
            ],
        )


class ChapterResponse(CamelModel):
    id: str
    user_id: str
    title: str
    description: str | None = None
    position: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    notes: list[NoteResponse] = Field(default_factory=list)

    @classmethod
    def from_chapter(cls, chapter: Chapter, notes: list[Note] | None = None) -> "ChapterResponse":
        return cls(
            id=chapter.id,
            user_id=chapter.user_id,
            title=chapter.title,
            description=chapter.description,
            position=chapter.position,
            created_at=chapter.created_at,
            updated_at=chapter.updated_at,
            notes=[NoteResponse.from_note(n) for n in notes or []],
        )


class SummaryResponse(CamelModel):
    summary: str
    key_points: list[str]


class ImageUploadMetadata(CamelModel):
    chapter_title: str
    file_size: int
    mime_type: str
    elapsed_ms: int


class ImageUploadResponse(CamelModel):
    note_id: str
    image_url: str
    image_caption: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    metadata: ImageUploadMetadata

from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import uuid4

from marginalia.config import Settings, settings as default_settings
from marginalia.errors import NotFoundError
from marginalia.models.notes import Chapter, Note, NoteKind, Reference

CHAPTER_UPDATABLE = {"title", "description", "position"}
NOTE_UPDATABLE = {"title", "body_md", "image_caption"}


class NoteStore(Protocol):
    async def create_chapter(
        self, user_id: str, title: str, description: str | None = None, position: int | None = None
    ) -> Chapter: ...
    async def list_chapters(self, user_id: str | None = None) -> list[Chapter]: ...
    async def get_chapter(self, chapter_id: str) -> Chapter | None: ...
    async def update_chapter(self, chapter_id: str, **fields: Any) -> Chapter | None: ...
    async def delete_chapter(self, chapter_id: str) -> bool: ...

    async def create_note(
        self,
        chapter_id: str,
        title: str,
        *,
        kind: NoteKind = "text",
        body_md: str | None = None,
        image_url: str | None = None,
        image_caption: str | None = None,
        elaboration_json: str | None = None,
    ) -> Note: ...
    async def list_notes(self, chapter_id: str | None = None) -> list[Note]: ...
    async def get_note(self, note_id: str) -> Note | None: ...
    async def update_note(self, note_id: str, **fields: Any) -> Note | None: ...
    async def delete_note(self, note_id: str) -> bool: ...

    async def persist_elaboration(
        self, note_id: str, references: list[Reference], elaboration_json: str
    ) -> None:
        """Replace the note's references and elaboration blob, bumping ``updated_at``.

        Raises ``NotFoundError`` if the note no longer exists.
        """
        ...

    async def close(self) -> None: ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class InMemoryNoteStore:
    """Process-local store for development and tests.

    Returned objects are copies; mutating them does not touch stored state.
    """

    def __init__(self) -> None:
        self._chapters: dict[str, Chapter] = {}
        self._notes: dict[str, Note] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _copy_note(note: Note) -> Note:
        return dataclasses.replace(
            note, references=[dataclasses.replace(r) for r in sorted(note.references, key=lambda r: r.rank)]
        )

    # --- Chapters ---

    async def create_chapter(
        self, user_id: str, title: str, description: str | None = None, position: int | None = None
    ) -> Chapter:
        async with self._lock:
            if position is None:
                positions = [c.position for c in self._chapters.values() if c.user_id == user_id]
                position = max(positions) + 1 if positions else 1
            now = _utc_now()
            chapter = Chapter(
                id=_new_id(),
                user_id=user_id,
                title=title,
                description=description,
                position=position,
                created_at=now,
                updated_at=now,
            )
            self._chapters[chapter.id] = chapter
            return dataclasses.replace(chapter)

    async def list_chapters(self, user_id: str | None = None) -> list[Chapter]:
        chapters = [c for c in self._chapters.values() if user_id is None or c.user_id == user_id]
        return [dataclasses.replace(c) for c in sorted(chapters, key=lambda c: c.position)]

    async def get_chapter(self, chapter_id: str) -> Chapter | None:
        chapter = self._chapters.get(chapter_id)
        return dataclasses.replace(chapter) if chapter else None

    async def update_chapter(self, chapter_id: str, **fields: Any) -> Chapter | None:
        async with self._lock:
            chapter = self._chapters.get(chapter_id)
            if chapter is None:
                return None
            updates = {k: v for k, v in fields.items() if k in CHAPTER_UPDATABLE}
            chapter = dataclasses.replace(chapter, **updates, updated_at=_utc_now())
            self._chapters[chapter_id] = chapter
            return dataclasses.replace(chapter)

    async def delete_chapter(self, chapter_id: str) -> bool:
        async with self._lock:
            if self._chapters.pop(chapter_id, None) is None:
                return False
            for note_id in [n.id for n in self._notes.values() if n.chapter_id == chapter_id]:
                del self._notes[note_id]
            return True

    # --- Notes ---

    async def create_note(
        self,
        chapter_id: str,
        title: str,
        *,
        kind: NoteKind = "text",
        body_md: str | None = None,
        image_url: str | None = None,
        image_caption: str | None = None,
        elaboration_json: str | None = None,
    ) -> Note:
        async with self._lock:
            now = _utc_now()
            note = Note(
                id=_new_id(),
                chapter_id=chapter_id,
                title=title,
                kind=kind,
                body_md=body_md,
                image_url=image_url,
                image_caption=image_caption,
                elaboration_json=elaboration_json,
                created_at=now,
                updated_at=now,
            )
            self._notes[note.id] = note
            return self._copy_note(note)

    async def list_notes(self, chapter_id: str | None = None) -> list[Note]:
        notes = [n for n in self._notes.values() if chapter_id is None or n.chapter_id == chapter_id]
        notes.sort(key=lambda n: n.updated_at or _utc_now(), reverse=True)
        return [self._copy_note(n) for n in notes]

    async def get_note(self, note_id: str) -> Note | None:
        note = self._notes.get(note_id)
        return self._copy_note(note) if note else None

    async def update_note(self, note_id: str, **fields: Any) -> Note | None:
        async with self._lock:
            note = self._notes.get(note_id)
            if note is None:
                return None
            updates = {k: v for k, v in fields.items() if k in NOTE_UPDATABLE}
            note = dataclasses.replace(note, **updates, updated_at=_utc_now())
            self._notes[note_id] = note
            return self._copy_note(note)

    async def delete_note(self, note_id: str) -> bool:
        async with self._lock:
            return self._notes.pop(note_id, None) is not None

    async def persist_elaboration(
        self, note_id: str, references: list[Reference], elaboration_json: str
    ) -> None:
        async with self._lock:
            note = self._notes.get(note_id)
            if note is None:
                raise NotFoundError("Note not found")
            stored_refs = [
                Reference(
                    id=_new_id(),
                    note_id=note_id,
                    rank=ref.rank,
                    title=ref.title,
                    url=ref.url,
                    snippet=ref.snippet,
                )
                for ref in references
            ]
            self._notes[note_id] = dataclasses.replace(
                note,
                references=stored_refs,
                elaboration_json=elaboration_json,
                updated_at=_utc_now(),
            )

    async def close(self) -> None:
        return None


def build_note_store(config: Settings | None = None) -> NoteStore:
    """Postgres when ``DATABASE_URL`` is set, otherwise the in-memory store."""
    config = config or default_settings
    if config.database_url:
        from marginalia.services.database import PostgresNoteStore

        return PostgresNoteStore(config.database_url)
    return InMemoryNoteStore()

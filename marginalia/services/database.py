"""PostgreSQL note store using asyncpg."""

from __future__ import annotations

from typing import Any
from uuid import UUID

import asyncpg

from marginalia.errors import NotFoundError
from marginalia.models.notes import Chapter, Note, NoteKind, Reference
from marginalia.services import logger as log_service
from marginalia.services.note_store import CHAPTER_UPDATABLE, NOTE_UPDATABLE

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS chapters (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    position INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_chapters_user ON chapters (user_id, position);

CREATE TABLE IF NOT EXISTS notes (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    chapter_id UUID NOT NULL REFERENCES chapters(id) ON DELETE CASCADE,
    kind TEXT NOT NULL DEFAULT 'text',
    title TEXT NOT NULL,
    body_md TEXT,
    image_url TEXT,
    image_caption TEXT,
    elaboration_json TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_notes_chapter ON notes (chapter_id, updated_at DESC);

CREATE TABLE IF NOT EXISTS note_references (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    note_id UUID NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
    rank INTEGER NOT NULL,
    title TEXT NOT NULL,
    url TEXT NOT NULL,
    snippet TEXT NOT NULL DEFAULT '',
    UNIQUE (note_id, rank)
);
"""

CHAPTER_COLUMNS = "id, user_id, title, description, position, created_at, updated_at"
NOTE_COLUMNS = (
    "id, chapter_id, kind, title, body_md, image_url, image_caption, "
    "elaboration_json, created_at, updated_at"
)


def _as_uuid(value: str) -> UUID | None:
    """Parse an id from the URL; anything that is not a UUID cannot exist."""
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _chapter(row: asyncpg.Record) -> Chapter:
    data = dict(row)
    data["id"] = str(data["id"])
    return Chapter(**data)


def _note(row: asyncpg.Record, references: list[Reference] | None = None) -> Note:
    data = dict(row)
    data["id"] = str(data["id"])
    data["chapter_id"] = str(data["chapter_id"])
    return Note(**data, references=references or [])


def _reference(row: asyncpg.Record) -> Reference:
    return Reference(
        id=str(row["id"]),
        note_id=str(row["note_id"]),
        rank=row["rank"],
        title=row["title"],
        url=row["url"],
        snippet=row["snippet"] or "",
    )


class PostgresNoteStore:
    """Raw-SQL store over a lazily created asyncpg pool."""

    def __init__(self, database_url: str, *, min_size: int = 1, max_size: int = 10):
        if not database_url:
            raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
        self.database_url = database_url
        self.min_size = min_size
        self.max_size = max_size
        self._pool: asyncpg.Pool | None = None

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                self.database_url,
                min_size=self.min_size,
                max_size=self.max_size,
            )
        return self._pool

    async def init_schema(self) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        log_service.log_db_operation("init_schema", "*", "success")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    # --- Chapters ---

    async def create_chapter(
        self, user_id: str, title: str, description: str | None = None, position: int | None = None
    ) -> Chapter:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            result = await conn.fetchrow(
                f"""
                INSERT INTO chapters (user_id, title, description, position)
                VALUES (
                    $1, $2, $3,
                    COALESCE($4, (SELECT COALESCE(MAX(position), 0) + 1 FROM chapters WHERE user_id = $1))
                )
                RETURNING {CHAPTER_COLUMNS}
                """,
                user_id,
                title,
                description,
                position,
            )
        log_service.log_db_operation("insert", "chapters", "success", details=str(result["id"]))
        return _chapter(result)

    async def list_chapters(self, user_id: str | None = None) -> list[Chapter]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            if user_id is None:
                results = await conn.fetch(
                    f"SELECT {CHAPTER_COLUMNS} FROM chapters ORDER BY position, created_at"
                )
            else:
                results = await conn.fetch(
                    f"SELECT {CHAPTER_COLUMNS} FROM chapters WHERE user_id = $1 ORDER BY position, created_at",
                    user_id,
                )
        return [_chapter(r) for r in results]

    async def get_chapter(self, chapter_id: str) -> Chapter | None:
        chapter_uuid = _as_uuid(chapter_id)
        if chapter_uuid is None:
            return None
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            result = await conn.fetchrow(
                f"SELECT {CHAPTER_COLUMNS} FROM chapters WHERE id = $1",
                chapter_uuid,
            )
        return _chapter(result) if result else None

    async def update_chapter(self, chapter_id: str, **kwargs: Any) -> Chapter | None:
        chapter_uuid = _as_uuid(chapter_id)
        if chapter_uuid is None:
            return None
        updates = {k: v for k, v in kwargs.items() if k in CHAPTER_UPDATABLE}
        if not updates:
            return await self.get_chapter(chapter_id)

        set_clause = ", ".join(f"{k} = ${i+2}" for i, k in enumerate(updates.keys()))
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            result = await conn.fetchrow(
                f"""
                UPDATE chapters
                SET {set_clause}, updated_at = NOW()
                WHERE id = $1
                RETURNING {CHAPTER_COLUMNS}
                """,
                chapter_uuid,
                *updates.values(),
            )
        return _chapter(result) if result else None

    async def delete_chapter(self, chapter_id: str) -> bool:
        chapter_uuid = _as_uuid(chapter_id)
        if chapter_uuid is None:
            return False
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            status = await conn.execute("DELETE FROM chapters WHERE id = $1", chapter_uuid)
        log_service.log_db_operation("delete", "chapters", "success", details=status)
        return status.endswith(" 1")

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
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            result = await conn.fetchrow(
                f"""
                INSERT INTO notes (chapter_id, kind, title, body_md, image_url, image_caption, elaboration_json)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING {NOTE_COLUMNS}
                """,
                UUID(str(chapter_id)),
                kind,
                title,
                body_md,
                image_url,
                image_caption,
                elaboration_json,
            )
        log_service.log_db_operation("insert", "notes", "success", details=str(result["id"]))
        return _note(result)

    async def list_notes(self, chapter_id: str | None = None) -> list[Note]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            if chapter_id is None:
                results = await conn.fetch(f"SELECT {NOTE_COLUMNS} FROM notes ORDER BY updated_at DESC")
            else:
                chapter_uuid = _as_uuid(chapter_id)
                if chapter_uuid is None:
                    return []
                results = await conn.fetch(
                    f"SELECT {NOTE_COLUMNS} FROM notes WHERE chapter_id = $1 ORDER BY updated_at DESC",
                    chapter_uuid,
                )
        return [_note(r) for r in results]

    async def get_note(self, note_id: str) -> Note | None:
        note_uuid = _as_uuid(note_id)
        if note_uuid is None:
            return None
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            result = await conn.fetchrow(f"SELECT {NOTE_COLUMNS} FROM notes WHERE id = $1", note_uuid)
            if result is None:
                return None
            refs = await conn.fetch(
                """
                SELECT id, note_id, rank, title, url, snippet
                FROM note_references
                WHERE note_id = $1
                ORDER BY rank
                """,
                note_uuid,
            )
        return _note(result, [_reference(r) for r in refs])

    async def update_note(self, note_id: str, **kwargs: Any) -> Note | None:
        note_uuid = _as_uuid(note_id)
        if note_uuid is None:
            return None
        updates = {k: v for k, v in kwargs.items() if k in NOTE_UPDATABLE}
        if not updates:
            return await self.get_note(note_id)

        set_clause = ", ".join(f"{k} = ${i+2}" for i, k in enumerate(updates.keys()))
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            result = await conn.fetchrow(
                f"""
                UPDATE notes
                SET {set_clause}, updated_at = NOW()
                WHERE id = $1
                RETURNING id
                """,
                note_uuid,
                *updates.values(),
            )
        if result is None:
            return None
        return await self.get_note(note_id)

    async def delete_note(self, note_id: str) -> bool:
        note_uuid = _as_uuid(note_id)
        if note_uuid is None:
            return False
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            status = await conn.execute("DELETE FROM notes WHERE id = $1", note_uuid)
        log_service.log_db_operation("delete", "notes", "success", details=status)
        return status.endswith(" 1")

    async def persist_elaboration(
        self, note_id: str, references: list[Reference], elaboration_json: str
    ) -> None:
        note_uuid = _as_uuid(note_id)
        if note_uuid is None:
            raise NotFoundError("Note not found")
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    # Row lock so a concurrent delete cannot land between the writes.
                    locked = await conn.fetchval(
                        "SELECT id FROM notes WHERE id = $1 FOR UPDATE", note_uuid
                    )
                    if locked is None:
                        raise NotFoundError("Note not found")
                    await conn.execute("DELETE FROM note_references WHERE note_id = $1", note_uuid)
                    if references:
                        await conn.executemany(
                            """
                            INSERT INTO note_references (note_id, rank, title, url, snippet)
                            VALUES ($1, $2, $3, $4, $5)
                            """,
                            [(note_uuid, r.rank, r.title, r.url, r.snippet or "") for r in references],
                        )
                    await conn.execute(
                        """
                        UPDATE notes
                        SET elaboration_json = $2, updated_at = NOW()
                        WHERE id = $1
                        """,
                        note_uuid,
                        elaboration_json,
                    )
        except asyncpg.PostgresError as exc:
            log_service.log_db_operation("persist_elaboration", "notes", "failed", error=str(exc))
            raise
        log_service.log_db_operation(
            "persist_elaboration", "notes", "success", details=f"{note_id} refs={len(references)}"
        )

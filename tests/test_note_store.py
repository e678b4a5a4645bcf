from __future__ import annotations

import pytest

from marginalia.config import Settings
from marginalia.errors import NotFoundError
from marginalia.models.notes import Reference
from marginalia.services.database import PostgresNoteStore
from marginalia.services.note_store import InMemoryNoteStore, build_note_store


@pytest.fixture
def store() -> InMemoryNoteStore:
    return InMemoryNoteStore()


@pytest.mark.asyncio
async def test_chapter_positions_auto_increment_per_user(store):
    first = await store.create_chapter("u1", "Intro")
    second = await store.create_chapter("u1", "Cells")
    other = await store.create_chapter("u2", "Other")
    explicit = await store.create_chapter("u1", "Pinned", position=10)

    assert (first.position, second.position, other.position, explicit.position) == (1, 2, 1, 10)
    assert [c.title for c in await store.list_chapters("u1")] == ["Intro", "Cells", "Pinned"]


@pytest.mark.asyncio
async def test_update_and_delete_chapter_cascades_to_notes(store):
    chapter = await store.create_chapter("u1", "Intro")
    note = await store.create_note(chapter.id, "Note", body_md="body")

    updated = await store.update_chapter(chapter.id, title="Renamed", user_id="ignored")
    assert updated.title == "Renamed"
    assert updated.user_id == "u1"

    assert await store.delete_chapter(chapter.id) is True
    assert await store.get_note(note.id) is None
    assert await store.delete_chapter(chapter.id) is False
    assert await store.update_chapter("missing", title="x") is None


@pytest.mark.asyncio
async def test_note_crud(store):
    chapter = await store.create_chapter("u1", "Intro")
    note = await store.create_note(chapter.id, "Title", body_md="Body")

    assert note.kind == "text"
    fetched = await store.get_note(note.id)
    assert fetched.body_md == "Body"

    updated = await store.update_note(note.id, body_md="New body", kind="image")
    assert updated.body_md == "New body"
    assert updated.kind == "text"
    assert updated.updated_at >= note.updated_at

    assert [n.id for n in await store.list_notes(chapter.id)] == [note.id]
    assert await store.list_notes("other") == []
    assert await store.delete_note(note.id) is True
    assert await store.get_note(note.id) is None


@pytest.mark.asyncio
async def test_persist_elaboration_replaces_references_and_bumps_updated_at(store):
    chapter = await store.create_chapter("u1", "Intro")
    note = await store.create_note(chapter.id, "Title", body_md="Body")

    await store.persist_elaboration(
        note.id,
        [Reference(rank=2, title="B", url="https://b.io"), Reference(rank=1, title="A", url="https://a.io")],
        '{"contentHash": "x"}',
    )
    first = await store.get_note(note.id)
    assert [r.rank for r in first.references] == [1, 2]
    assert all(r.note_id == note.id and r.id for r in first.references)
    assert first.elaboration_json == '{"contentHash": "x"}'
    assert first.updated_at >= note.updated_at

    await store.persist_elaboration(note.id, [], '{"contentHash": "y"}')
    second = await store.get_note(note.id)
    assert second.references == []
    assert second.elaboration_json == '{"contentHash": "y"}'


@pytest.mark.asyncio
async def test_persist_elaboration_on_deleted_note_raises(store):
    chapter = await store.create_chapter("u1", "Intro")
    note = await store.create_note(chapter.id, "Title", body_md="Body")
    await store.delete_note(note.id)

    with pytest.raises(NotFoundError, match="Note not found"):
        await store.persist_elaboration(note.id, [], "{}")
    assert await store.get_note(note.id) is None


@pytest.mark.asyncio
async def test_returned_objects_are_copies(store):
    chapter = await store.create_chapter("u1", "Intro")
    note = await store.create_note(chapter.id, "Title", body_md="Body")

    note.body_md = "mutated"
    assert (await store.get_note(note.id)).body_md == "Body"


def test_build_note_store_picks_backend():
    assert isinstance(build_note_store(Settings(database_url="")), InMemoryNoteStore)
    assert isinstance(
        build_note_store(Settings(database_url="postgresql://u:p@localhost:5432/db")),
        PostgresNoteStore,
    )


def test_postgres_store_requires_url():
    with pytest.raises(RuntimeError):
        PostgresNoteStore("")


@pytest.mark.asyncio
async def test_postgres_store_treats_malformed_ids_as_missing():
    pg = PostgresNoteStore("postgresql://u:p@localhost:5432/db")
    assert await pg.get_note("not-a-uuid") is None
    assert await pg.get_chapter("not-a-uuid") is None
    assert await pg.delete_note("not-a-uuid") is False
    with pytest.raises(NotFoundError):
        await pg.persist_elaboration("not-a-uuid", [], "{}")

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from marginalia.errors import NotFoundError, UpstreamServerError, ValidationError
from marginalia.models.notes import ImageCaption
from marginalia.services.image_notes import (
    DEFAULT_CAPTION,
    ImageNoteService,
    Outcome,
    validate_image,
)
from marginalia.services.note_store import InMemoryNoteStore

MAX_BYTES = 1024


def _service(store, tmp_path, caption=None, error=None):
    captioner = MagicMock()
    captioner.caption_image = AsyncMock(return_value=caption, side_effect=error)
    return ImageNoteService(store, captioner, tmp_path / "images", MAX_BYTES), captioner


class TestValidateImage:
    @pytest.mark.parametrize(
        ("mime", "ext"),
        [("image/jpeg", ".jpg"), ("image/jpg", ".jpg"), ("image/png", ".png"), ("IMAGE/WEBP", ".webp")],
    )
    def test_accepted_types(self, mime, ext):
        assert validate_image(mime, 10, MAX_BYTES) == ext

    @pytest.mark.parametrize("mime", ["image/gif", "application/pdf", None, ""])
    def test_rejected_types(self, mime):
        with pytest.raises(ValidationError, match="Only JPG, PNG, and WebP"):
            validate_image(mime, 10, MAX_BYTES)

    def test_size_limits(self):
        assert validate_image("image/png", MAX_BYTES, MAX_BYTES) == ".png"
        with pytest.raises(ValidationError, match="exceeds"):
            validate_image("image/png", MAX_BYTES + 1, MAX_BYTES)
        with pytest.raises(ValidationError, match="empty"):
            validate_image("image/png", 0, MAX_BYTES)


@pytest.mark.asyncio
async def test_outcome_captures_value_or_error():
    async def ok():
        return "value"

    async def boom():
        raise RuntimeError("nope")

    good = await Outcome.of(ok())
    bad = await Outcome.of(boom())

    assert good.ok and good.unwrap_or("default") == "value"
    assert not bad.ok and bad.unwrap_or("default") == "default"
    assert isinstance(bad.error, RuntimeError)


@pytest.mark.asyncio
async def test_creates_captioned_image_note(tmp_path):
    store = InMemoryNoteStore()
    chapter = await store.create_chapter("u1", "Cell Biology")
    caption = ImageCaption(caption="A labelled animal cell " * 10, description="Diagram", tags=["cell"])
    service, captioner = _service(store, tmp_path, caption=caption)

    result = await service.create_image_note(
        chapter.id, b"\x89PNG data", filename="cell.PNG", content_type="image/png"
    )

    path_arg = captioner.caption_image.call_args.args[0]
    assert captioner.caption_image.call_args.kwargs["context"] == 'Image from chapter: "Cell Biology"'
    stored_file = tmp_path / "images" / result.note.image_url.rsplit("/", 1)[-1]
    assert stored_file.read_bytes() == b"\x89PNG data"
    assert path_arg == str(stored_file)
    assert stored_file.name.startswith("image-") and stored_file.suffix == ".png"

    note = await store.get_note(result.note.id)
    assert note.kind == "image"
    assert note.title == caption.caption[:100]
    assert note.image_caption == caption.caption
    assert note.image_url.startswith("/uploads/images/image-")
    blob = json.loads(note.elaboration_json)
    assert blob["tags"] == ["cell"]
    assert blob["description"] == "Diagram"
    assert "generatedAt" in blob
    assert result.caption_error is None
    assert result.chapter_title == "Cell Biology"


@pytest.mark.asyncio
async def test_caption_failure_degrades_to_default(tmp_path):
    store = InMemoryNoteStore()
    chapter = await store.create_chapter("u1", "Biology")
    service, _ = _service(store, tmp_path, error=UpstreamServerError("vision down"))

    result = await service.create_image_note(chapter.id, b"jpeg", filename="x.jpg", content_type="image/jpeg")

    assert result.caption.caption == DEFAULT_CAPTION
    assert result.note.title == DEFAULT_CAPTION
    assert result.caption_error == "vision down"
    assert (await store.get_note(result.note.id)) is not None


@pytest.mark.asyncio
async def test_missing_chapter_stores_nothing(tmp_path):
    service, captioner = _service(InMemoryNoteStore(), tmp_path, caption=ImageCaption(caption="x"))

    with pytest.raises(NotFoundError):
        await service.create_image_note("missing", b"data", filename="a.png", content_type="image/png")

    captioner.caption_image.assert_not_called()
    assert not (tmp_path / "images").exists() or not any((tmp_path / "images").iterdir())


@pytest.mark.asyncio
async def test_file_removed_when_note_creation_fails(tmp_path):
    store = InMemoryNoteStore()
    chapter = await store.create_chapter("u1", "Biology")
    store.create_note = AsyncMock(side_effect=RuntimeError("db down"))
    service, _ = _service(store, tmp_path, caption=ImageCaption(caption="x"))

    with pytest.raises(RuntimeError):
        await service.create_image_note(chapter.id, b"data", filename="a.png", content_type="image/png")

    assert list((tmp_path / "images").iterdir()) == []


@pytest.mark.asyncio
async def test_remove_image_ignores_foreign_urls(tmp_path):
    service, _ = _service(InMemoryNoteStore(), tmp_path)
    (tmp_path / "images").mkdir()
    kept = tmp_path / "images" / "keep.png"
    kept.write_bytes(b"x")

    await service.remove_image("https://elsewhere.io/keep.png")
    await service.remove_image(None)
    assert kept.exists()

    await service.remove_image("/uploads/images/keep.png")
    assert not kept.exists()
    await service.remove_image("/uploads/images/keep.png")

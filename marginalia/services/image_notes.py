"""Image upload to captioned image note."""
from __future__ import annotations

import asyncio
import json
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Generic, TypeVar

from loguru import logger

from marginalia.agents.image_captioner import ImageCaptioner
from marginalia.errors import NotFoundError, ValidationError
from marginalia.models.notes import ImageCaption, Note
from marginalia.services import logger as log_service
from marginalia.services.note_store import NoteStore

T = TypeVar("T")

IMAGE_URL_PREFIX = "/uploads/images"
DEFAULT_CAPTION = "Image uploaded"
ALLOWED_MIME_TYPES = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}
TITLE_CHARS = 100


@dataclass
class Outcome(Generic[T]):
    """Result of an optional enrichment step: a value or the error that prevented it."""

    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok and self.value is not None else default

    @classmethod
    async def of(cls, awaitable: Awaitable[T]) -> "Outcome[T]":
        try:
            return cls(value=await awaitable)
        except Exception as exc:
            return cls(error=exc)


@dataclass
class ImageNoteResult:
    note: Note
    caption: ImageCaption
    chapter_title: str
    file_size: int
    mime_type: str
    elapsed_ms: int
    caption_error: str | None = None


def validate_image(content_type: str | None, size: int, max_bytes: int) -> str:
    """Return the storage extension for an accepted upload."""
    mime_type = (content_type or "").lower().strip()
    if mime_type not in ALLOWED_MIME_TYPES:
        raise ValidationError(
            f"Invalid file type {mime_type or 'unknown'}. Only JPG, PNG, and WebP are allowed."
        )
    if size <= 0:
        raise ValidationError("Image file is empty")
    if size > max_bytes:
        raise ValidationError(
            f"File size {size / (1024 * 1024):.2f}MB exceeds maximum limit of "
            f"{max_bytes // (1024 * 1024)}MB"
        )
    return ALLOWED_MIME_TYPES[mime_type]


def _storage_name(original_name: str | None, default_ext: str) -> str:
    ext = Path(original_name or "").suffix.lower()
    if ext not in {".jpg", ".jpeg", ".png", ".webp"}:
        ext = default_ext
    return f"image-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext}"


class ImageNoteService:
    def __init__(self, store: NoteStore, captioner: ImageCaptioner, upload_dir: str | Path, max_bytes: int):
        self.store = store
        self.captioner = captioner
        self.upload_dir = Path(upload_dir)
        self.max_bytes = max_bytes

    def path_for_url(self, image_url: str) -> Path | None:
        if not image_url or not image_url.startswith(f"{IMAGE_URL_PREFIX}/"):
            return None
        return self.upload_dir / Path(image_url).name

    async def remove_image(self, image_url: str | None) -> None:
        path = self.path_for_url(image_url or "")
        if path is None:
            return
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            logger.warning(f"Image file already gone: {path}")

    async def create_image_note(
        self,
        chapter_id: str,
        data: bytes,
        *,
        filename: str | None,
        content_type: str | None,
    ) -> ImageNoteResult:
        started = time.perf_counter()
        if not chapter_id:
            raise ValidationError("chapterId is required")
        ext = validate_image(content_type, len(data), self.max_bytes)

        chapter = await self.store.get_chapter(chapter_id)
        if chapter is None:
            raise NotFoundError("Chapter not found")

        self.upload_dir.mkdir(parents=True, exist_ok=True)
        path = self.upload_dir / _storage_name(filename, ext)
        await asyncio.to_thread(path.write_bytes, data)
        image_url = f"{IMAGE_URL_PREFIX}/{path.name}"
        logger.info(f"Stored upload {path.name} ({len(data) / 1024:.2f}KB) for chapter {chapter_id}")

        outcome = await Outcome.of(
            self.captioner.caption_image(str(path), context=f'Image from chapter: "{chapter.title}"')
        )
        caption = outcome.unwrap_or(ImageCaption(caption=DEFAULT_CAPTION))
        if not caption.caption:
            caption = ImageCaption(caption=DEFAULT_CAPTION, description=caption.description, tags=caption.tags)
        if outcome.error is not None:
            logger.warning(f"Caption generation failed, using default: {outcome.error}")

        try:
            note = await self.store.create_note(
                chapter_id,
                caption.caption[:TITLE_CHARS],
                kind="image",
                image_url=image_url,
                image_caption=caption.caption,
                elaboration_json=json.dumps(
                    {
                        "caption": caption.caption,
                        "description": caption.description,
                        "tags": caption.tags,
                        "generatedAt": datetime.now(timezone.utc).isoformat(),
                    }
                ),
            )
        except Exception:
            await asyncio.to_thread(path.unlink, missing_ok=True)
            log_service.log_ai_operation("image_caption_failed", time.perf_counter() - started)
            raise

        elapsed = time.perf_counter() - started
        log_service.log_ai_operation("image_caption", elapsed)
        log_service.log_event(
            "image_note_created",
            "Image note created",
            note_id=note.id,
            chapter_id=chapter_id,
            file_size=len(data),
            caption_hash=log_service.hash_for_log(caption.caption),
        )
        return ImageNoteResult(
            note=note,
            caption=caption,
            chapter_title=chapter.title,
            file_size=len(data),
            mime_type=(content_type or "").lower(),
            elapsed_ms=int(elapsed * 1000),
            caption_error=str(outcome.error) if outcome.error is not None else None,
        )

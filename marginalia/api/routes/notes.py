from __future__ import annotations

import time

from fastapi import APIRouter, Body, Depends, File, Form, Query, Response, UploadFile
from fastapi.responses import PlainTextResponse
from loguru import logger

from marginalia.api.deps import Services, ai_rate_limit, get_services
from marginalia.errors import NotFoundError, ValidationError
from marginalia.models.schemas import (
    ElaborateRequest,
    ImageUploadMetadata,
    ImageUploadResponse,
    NoteCreate,
    NoteResponse,
    NoteUpdate,
    SummarizeRequest,
    SummaryResponse,
)
from marginalia.services import logger as log_service
from marginalia.services.citations import format_references

router = APIRouter(prefix="/api/notes", tags=["notes"])


@router.post("", response_model=NoteResponse, status_code=201)
async def create_note(payload: NoteCreate, services: Services = Depends(get_services)):
    chapter = await services.store.get_chapter(payload.chapter_id)
    if chapter is None:
        raise NotFoundError("Chapter not found")
    note = await services.store.create_note(
        payload.chapter_id,
        payload.title,
        kind="text",
        body_md=payload.body_md,
    )
    return NoteResponse.from_note(note)


@router.post(
    "/image",
    response_model=ImageUploadResponse,
    status_code=201,
    dependencies=[Depends(ai_rate_limit)],
)
async def upload_image(
    chapter_id: str = Form(default="", alias="chapterId"),
    file: UploadFile | None = File(default=None),
    services: Services = Depends(get_services),
):
    """Store an image and create a captioned image note in the chapter."""
    if not chapter_id:
        raise ValidationError("chapterId is required")
    if file is None:
        raise ValidationError("Image file is required")

    # One byte past the limit is enough to reject oversize uploads.
    data = await file.read(services.config.max_upload_bytes + 1)
    result = await services.image_notes.create_image_note(
        chapter_id,
        data,
        filename=file.filename,
        content_type=file.content_type,
    )
    return ImageUploadResponse(
        note_id=result.note.id,
        image_url=result.note.image_url or "",
        image_caption=result.caption.caption,
        description=result.caption.description,
        tags=result.caption.tags,
        metadata=ImageUploadMetadata(
            chapter_title=result.chapter_title,
            file_size=result.file_size,
            mime_type=result.mime_type,
            elapsed_ms=result.elapsed_ms,
        ),
    )


@router.get("", response_model=list[NoteResponse])
async def list_notes(
    chapter_id: str | None = Query(default=None),
    chapter_id_alias: str | None = Query(default=None, alias="chapterId"),
    services: Services = Depends(get_services),
):
    notes = await services.store.list_notes(chapter_id or chapter_id_alias)
    return [NoteResponse.from_note(n) for n in notes]


@router.get("/{note_id}", response_model=NoteResponse)
async def get_note(note_id: str, services: Services = Depends(get_services)):
    note = await services.store.get_note(note_id)
    if note is None:
        raise NotFoundError("Note not found")
    return NoteResponse.from_note(note)


@router.patch("/{note_id}", response_model=NoteResponse)
async def update_note(note_id: str, payload: NoteUpdate, services: Services = Depends(get_services)):
    note = await services.store.update_note(note_id, **payload.model_dump(exclude_unset=True))
    if note is None:
        raise NotFoundError("Note not found")
    return NoteResponse.from_note(note)


@router.put("/{note_id}", response_model=NoteResponse)
async def replace_note(note_id: str, payload: NoteUpdate, services: Services = Depends(get_services)):
    """Full update. Text notes must carry a title; omitted fields keep their values."""
    existing = await services.store.get_note(note_id)
    if existing is None:
        raise NotFoundError("Note not found")
    if existing.kind == "text" and not payload.title:
        raise ValidationError("Title is required for text notes")

    note = await services.store.update_note(
        note_id,
        title=payload.title or existing.title,
        body_md=payload.body_md if payload.body_md is not None else existing.body_md,
        image_caption=payload.image_caption if payload.image_caption is not None else existing.image_caption,
    )
    if note is None:
        raise NotFoundError("Note not found")
    return NoteResponse.from_note(note)


@router.delete("/{note_id}", status_code=204)
async def delete_note(note_id: str, services: Services = Depends(get_services)):
    existing = await services.store.get_note(note_id)
    if existing is None:
        raise NotFoundError("Note not found")
    await services.store.delete_note(note_id)
    if existing.kind == "image":
        await services.image_notes.remove_image(existing.image_url)
    return Response(status_code=204)


@router.post("/{note_id}/elaborate", dependencies=[Depends(ai_rate_limit)])
async def elaborate_note(
    note_id: str,
    payload: ElaborateRequest | None = Body(default=None),
    services: Services = Depends(get_services),
):
    """Elaborate a note with web-sourced, cited context. Cached for 24h per body."""
    force = payload.force if payload else False
    response = await services.orchestrator.elaborate(note_id, force=force)
    return response.to_payload()


@router.post(
    "/{note_id}/summarize",
    response_model=SummaryResponse,
    dependencies=[Depends(ai_rate_limit)],
)
async def summarize_note(
    note_id: str,
    payload: SummarizeRequest | None = Body(default=None),
    services: Services = Depends(get_services),
):
    note = await services.store.get_note(note_id)
    if note is None:
        raise NotFoundError("Note not found")
    if not note.body_md or not note.body_md.strip():
        raise ValidationError("Note has no content to summarize")

    started = time.perf_counter()
    max_length = payload.max_length if payload else 200
    summary = await services.summarizer.summarize(note.body_md, max_length)
    log_service.log_ai_operation("summarize", time.perf_counter() - started)
    logger.info(f"Summarized note {note_id} ({log_service.hash_for_log(note.body_md)})")
    return SummaryResponse(summary=summary.summary, key_points=summary.key_points)


@router.get("/{note_id}/references", response_class=PlainTextResponse)
async def note_references(
    note_id: str,
    style: str = Query(default="numbered", pattern="^(numbered|apa|mla)$"),
    services: Services = Depends(get_services),
):
    note = await services.store.get_note(note_id)
    if note is None:
        raise NotFoundError("Note not found")
    return PlainTextResponse(format_references(note.references, style))

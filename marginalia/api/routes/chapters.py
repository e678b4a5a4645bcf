from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from marginalia.api.deps import Services, get_services
from marginalia.errors import NotFoundError
from marginalia.models.schemas import ChapterCreate, ChapterResponse, ChapterUpdate

router = APIRouter(prefix="/api/chapters", tags=["chapters"])


@router.post("", response_model=ChapterResponse, status_code=201)
async def create_chapter(payload: ChapterCreate, services: Services = Depends(get_services)):
    chapter = await services.store.create_chapter(
        payload.user_id,
        payload.title,
        description=payload.description,
        position=payload.position,
    )
    return ChapterResponse.from_chapter(chapter)


@router.get("", response_model=list[ChapterResponse])
async def list_chapters(
    user_id: str | None = Query(default=None, alias="userId"),
    services: Services = Depends(get_services),
):
    """List chapters ordered by position, each with its notes."""
    chapters = await services.store.list_chapters(user_id)
    return [
        ChapterResponse.from_chapter(chapter, await services.store.list_notes(chapter.id))
        for chapter in chapters
    ]


@router.get("/{chapter_id}", response_model=ChapterResponse)
async def get_chapter(chapter_id: str, services: Services = Depends(get_services)):
    chapter = await services.store.get_chapter(chapter_id)
    if chapter is None:
        raise NotFoundError("Chapter not found")
    return ChapterResponse.from_chapter(chapter, await services.store.list_notes(chapter_id))


@router.patch("/{chapter_id}", response_model=ChapterResponse)
async def update_chapter(
    chapter_id: str,
    payload: ChapterUpdate,
    services: Services = Depends(get_services),
):
    updates = payload.model_dump(exclude_unset=True)
    chapter = await services.store.update_chapter(chapter_id, **updates)
    if chapter is None:
        raise NotFoundError("Chapter not found")
    return ChapterResponse.from_chapter(chapter, await services.store.list_notes(chapter_id))


@router.delete("/{chapter_id}", status_code=204)
async def delete_chapter(chapter_id: str, services: Services = Depends(get_services)):
    """Delete a chapter, its notes, and the image files those notes own."""
    chapter = await services.store.get_chapter(chapter_id)
    if chapter is None:
        raise NotFoundError("Chapter not found")
    notes = await services.store.list_notes(chapter_id)
    await services.store.delete_chapter(chapter_id)
    for note in notes:
        if note.kind == "image":
            await services.image_notes.remove_image(note.image_url)
    return Response(status_code=204)

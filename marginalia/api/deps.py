from __future__ import annotations

from dataclasses import dataclass

from fastapi import Query, Request

from marginalia.agents.citation_writer import CitationWriter
from marginalia.agents.image_captioner import ImageCaptioner
from marginalia.agents.orchestrator import ElaborationOrchestrator
from marginalia.agents.query_builder import QueryBuilder
from marginalia.agents.ranker import CredibilityRanker
from marginalia.agents.summarizer import NoteSummarizer
from marginalia.config import Settings
from marginalia.llm_client import LLMClient, get_client
from marginalia.services.image_notes import ImageNoteService
from marginalia.services.note_store import NoteStore, build_note_store
from marginalia.services.rate_limiter import SlidingWindowRateLimiter
from marginalia.tools.serper_search import SerperSearchClient, get_search_client


@dataclass
class Services:
    """Long-lived collaborators shared by every request."""

    config: Settings
    store: NoteStore
    llm: LLMClient
    search: SerperSearchClient
    orchestrator: ElaborationOrchestrator
    summarizer: NoteSummarizer
    image_notes: ImageNoteService
    rate_limiter: SlidingWindowRateLimiter


def build_services(
    config: Settings,
    *,
    store: NoteStore | None = None,
    llm: LLMClient | None = None,
    search: SerperSearchClient | None = None,
) -> Services:
    store = store if store is not None else build_note_store(config)
    llm = llm if llm is not None else get_client(config)
    search = search if search is not None else get_search_client(config)
    orchestrator = ElaborationOrchestrator(
        store,
        search,
        QueryBuilder(llm),
        CredibilityRanker(llm),
        CitationWriter(llm, model=config.elaboration_model),
        cache_ttl_hours=config.elaboration_cache_ttl_hours,
        max_results=config.search_max_results,
        region=config.search_region,
        max_sources=config.elaboration_max_sources,
    )
    return Services(
        config=config,
        store=store,
        llm=llm,
        search=search,
        orchestrator=orchestrator,
        summarizer=NoteSummarizer(llm),
        image_notes=ImageNoteService(
            store,
            ImageCaptioner(llm, model=config.vision_model),
            config.upload_dir,
            config.max_upload_bytes,
        ),
        rate_limiter=SlidingWindowRateLimiter(
            config.ai_rate_limit_max,
            config.ai_rate_limit_window_seconds,
        ),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def ai_rate_limit(
    request: Request,
    user_id: str | None = Query(default=None, alias="userId"),
) -> None:
    """Per-identity limit on routes that call the model."""
    client_ip = request.client.host if request.client else "unknown"
    key = f"{user_id}:{client_ip}" if user_id else client_ip
    get_services(request).rate_limiter.hit(key)

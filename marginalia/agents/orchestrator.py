from __future__ import annotations

import json
import math
import time
from datetime import timezone
from enum import Enum

from loguru import logger

from marginalia.agents.citation_writer import CitationWriter
from marginalia.agents.query_builder import QueryBuilder
from marginalia.agents.ranker import CredibilityRanker
from marginalia.errors import CacheParseError, MarginaliaError, NotFoundError, ValidationError
from marginalia.models.elaboration import (
    ElaborationMetadata,
    ElaborationRecord,
    ElaborationResponse,
    ReferenceOut,
    Section,
    TokenEstimate,
)
from marginalia.models.notes import Note, Reference, SearchResult
from marginalia.services import logger as log_service
from marginalia.services.content_hash import (
    DEFAULT_TTL_HOURS,
    age_hours,
    content_hash,
    is_elaboration_fresh,
)
from marginalia.services.inflight import InflightRegistry
from marginalia.services.note_store import NoteStore
from marginalia.services.redaction import redact
from marginalia.tools.serper_search import SerperSearchClient

SUMMARY_CHARS = 200
FALLBACK_QUERY_CHARS = 100


class ElaborationState(str, Enum):
    LOADING_NOTE = "loading_note"
    VALIDATING = "validating"
    CACHE_CHECK = "cache_check"
    CACHE_HIT = "cache_hit"
    BUILDING_QUERY = "building_query"
    SEARCHING = "searching"
    NO_RESULTS_PATH = "no_results_path"
    RANKING = "ranking"
    GENERATING = "generating"
    PERSISTING = "persisting"
    RESPONDING = "responding"
    FAILED = "failed"


def estimate_tokens(body: str, text: str, sources: list[SearchResult]) -> TokenEstimate:
    """Rough estimate at four characters per token."""
    sources_chars = len(
        json.dumps([s.to_dict() for s in sources], separators=(",", ":"), ensure_ascii=False)
    )
    return TokenEstimate(
        total=math.ceil((len(body) + len(text) + sources_chars) / 4),
        input=math.ceil((len(body) + sources_chars) / 4),
        output=math.ceil(len(text) / 4),
    )


def choose_search_query(queries: list[str], keywords: list[str], body: str) -> str:
    for query in queries:
        if query.strip():
            return query.strip()
    joined = " ".join(k.strip() for k in keywords if k.strip())
    if joined:
        return joined
    first_line = body.strip().splitlines()[0] if body.strip() else ""
    return redact(first_line[:FALLBACK_QUERY_CHARS]).strip()


def select_sources(results: list[SearchResult], ranked_indices: list[int], limit: int) -> list[SearchResult]:
    """Map ranked indices back to results, dropping out-of-range and repeated entries."""
    seen: set[int] = set()
    selected: list[SearchResult] = []
    for idx in ranked_indices:
        if not isinstance(idx, int) or isinstance(idx, bool):
            continue
        if idx < 0 or idx >= len(results) or idx in seen:
            continue
        seen.add(idx)
        selected.append(results[idx])
        if len(selected) >= limit:
            break
    return selected


class ElaborationOrchestrator:
    """Runs the elaboration pipeline for a stored note.

    Flow:
      1. Load the note and validate its body
      2. Return the stored elaboration when its content hash and TTL hold
      3. Build a search query, search the web
      4. With no results, elaborate without citations
      5. Otherwise rank results and elaborate citing the selected sources
      6. Persist references + blob in one store call and respond

    Nothing is written before step 6; any failure before it leaves the note
    untouched.
    """

    def __init__(
        self,
        store: NoteStore,
        search_client: SerperSearchClient,
        query_builder: QueryBuilder,
        ranker: CredibilityRanker,
        writer: CitationWriter,
        *,
        cache_ttl_hours: float = DEFAULT_TTL_HOURS,
        max_results: int = 10,
        region: str = "us",
        max_sources: int = 6,
        inflight: InflightRegistry[ElaborationResponse] | None = None,
    ):
        self.store = store
        self.search_client = search_client
        self.query_builder = query_builder
        self.ranker = ranker
        self.writer = writer
        self.cache_ttl_hours = cache_ttl_hours
        self.max_results = max_results
        self.region = region
        self.max_sources = max(int(max_sources), 1)
        self.inflight = inflight if inflight is not None else InflightRegistry()

    async def elaborate(self, note_id: str, *, force: bool = False) -> ElaborationResponse:
        """Elaborate ``note_id``, joining a concurrent non-forced run for the same note."""
        return await self.inflight.run(note_id, lambda: self._run(note_id, force=force), force=force)

    async def _run(self, note_id: str, *, force: bool) -> ElaborationResponse:
        started = time.perf_counter()
        state = ElaborationState.LOADING_NOTE
        try:
            self._step(note_id, state)
            note = await self.store.get_note(note_id)
            if note is None:
                raise NotFoundError("Note not found")

            state = ElaborationState.VALIDATING
            self._step(note_id, state)
            body = note.body_md
            if not isinstance(body, str) or not body.strip():
                raise ValidationError("Note has no content to elaborate")
            body_hash = content_hash(body)

            state = ElaborationState.CACHE_CHECK
            self._step(note_id, state, {"force": force, "body_hash": body_hash[:16]})
            if not force:
                cached = self._cached_response(note, body)
                if cached is not None:
                    state = ElaborationState.CACHE_HIT
                    self._step(note_id, state, {"age_hours": cached.metadata.age_hours})
                    log_service.log_ai_operation("elaborate", time.perf_counter() - started, cached=True)
                    return cached

            state = ElaborationState.BUILDING_QUERY
            self._step(note_id, state)
            plan = await self.query_builder.build_queries(body, 1)
            search_query = choose_search_query(plan.queries, plan.keywords, body)

            state = ElaborationState.SEARCHING
            self._step(note_id, state, {"query": log_service.preview_for_log(search_query)})
            results = await self.search_client.search(search_query, self.max_results, self.region)

            if not results:
                state = ElaborationState.NO_RESULTS_PATH
                self._step(note_id, state)
                text = await self.writer.elaborate(body, [])
                sections = [Section(type="elaboration", content=text)]
                sources: list[SearchResult] = []
                tokens = TokenEstimate()
            else:
                state = ElaborationState.RANKING
                self._step(note_id, state, {"sources_found": len(results)})
                decision = await self.ranker.rerank(body, results, self.max_sources)
                sources = select_sources(results, decision.ranked_indices, self.max_sources)
                if len(sources) < len(decision.ranked_indices):
                    logger.warning(
                        f"Ranker returned {len(decision.ranked_indices)} indices, "
                        f"{len(sources)} usable for {len(results)} results"
                    )

                state = ElaborationState.GENERATING
                self._step(note_id, state, {"sources_used": len(sources)})
                text = await self.writer.elaborate(body, sources)
                sections = [
                    Section(type="summary", content=body[:SUMMARY_CHARS]),
                    Section(type="elaboration", content=text),
                ]
                tokens = estimate_tokens(body, text, sources)

            references = [
                ReferenceOut(rank=idx + 1, title=s.title, url=s.url, snippet=s.snippet or "")
                for idx, s in enumerate(sources)
            ]
            record = ElaborationRecord(
                content_hash=body_hash,
                sections=sections,
                references=references,
                search_query=search_query,
                tokens=tokens,
            )

            state = ElaborationState.PERSISTING
            self._step(note_id, state, {"references": len(references)})
            await self.store.persist_elaboration(
                note_id,
                [Reference(rank=r.rank, title=r.title, url=r.url, snippet=r.snippet) for r in references],
                record.to_json(),
            )

            state = ElaborationState.RESPONDING
            elapsed = time.perf_counter() - started
            metadata = ElaborationMetadata(
                cached=False,
                search_query=search_query,
                tokens=tokens,
                elapsed_ms=int(elapsed * 1000),
            )
            if results:
                metadata.sources_found = len(results)
                metadata.sources_used = len(sources)
            self._step(note_id, state, {"elapsed_ms": metadata.elapsed_ms, "tokens": tokens.total})
            log_service.log_ai_operation("elaborate", elapsed, cached=False)
            return ElaborationResponse(sections=sections, references=references, metadata=metadata)
        except MarginaliaError as exc:
            log_service.log_pipeline_step(
                note_id,
                ElaborationState.FAILED.value,
                "failed",
                {"at": state.value, "error": type(exc).__name__, "message": exc.message},
            )
            raise

    def _cached_response(self, note: Note, body: str) -> ElaborationResponse | None:
        if not note.elaboration_json:
            return None
        try:
            record = ElaborationRecord.from_json(note.elaboration_json)
        except CacheParseError as exc:
            logger.warning(f"Ignoring stored elaboration for note {note.id}: {exc.message}")
            return None

        if not is_elaboration_fresh(record.content_hash, body, note.updated_at, self.cache_ttl_hours):
            logger.debug(f"Stored elaboration for note {note.id} is stale or out of date")
            return None

        updated_at = note.updated_at
        if updated_at is not None and updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        sections = record.sections or [Section(type="elaboration", content="")]
        return ElaborationResponse(
            sections=sections,
            references=[
                ReferenceOut(rank=r.rank, title=r.title, url=r.url, snippet=r.snippet or "")
                for r in sorted(note.references, key=lambda r: r.rank)
            ],
            metadata=ElaborationMetadata(
                cached=True,
                cache_age=updated_at.isoformat() if updated_at else None,
                age_hours=age_hours(updated_at),
                search_query=record.search_query,
                tokens=record.tokens,
            ),
        )

    @staticmethod
    def _step(note_id: str, state: ElaborationState, data: dict | None = None) -> None:
        log_service.log_pipeline_step(note_id, state.value, "started", data)
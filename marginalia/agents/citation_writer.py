from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from marginalia.agents.base import BaseAgent
from marginalia.models.notes import SearchResult
from marginalia.services.citations import strip_dangling_citations
from marginalia.services.prompt_store import render_prompt
from marginalia.services.redaction import redact


class CitationWriter(BaseAgent):
    """Writes a markdown elaboration citing sources as ``[1]..[k]``.

    Sources are numbered in the order given, never re-sorted.
    """

    name = "citation_writer"

    def _format_sources(self, sources: Sequence[SearchResult]) -> str:
        return "\n\n".join(
            render_prompt(
                "citation_writer.source_entry",
                number=idx + 1,
                title=source.title,
                snippet=redact(source.snippet) or "",
                url=source.url,
            )
            for idx, source in enumerate(sources)
        )

    async def elaborate(self, note_body: str, sources: Sequence[SearchResult] = ()) -> str:
        note_body = self._require_note(note_body)
        redacted = redact(note_body)
        sources = list(sources)

        if sources:
            system = render_prompt("citation_writer.cited_system_prompt", source_count=len(sources))
            user = render_prompt(
                "citation_writer.cited_user_prompt",
                note=redacted,
                sources=self._format_sources(sources),
            )
        else:
            system = render_prompt("citation_writer.uncited_system_prompt")
            user = render_prompt("citation_writer.uncited_user_prompt", note=redacted)

        text = await self.llm.complete_text(
            caller=self.name,
            model=self.model,
            system=system,
            user=user,
            temperature=0.7,
            max_tokens=1000,
        )

        cleaned, removed = strip_dangling_citations(text, len(sources))
        if removed:
            logger.warning(
                f"Stripped citation markers {removed} with only {len(sources)} source(s) available"
            )
        return cleaned.strip()

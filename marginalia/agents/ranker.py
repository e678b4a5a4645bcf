from __future__ import annotations

from collections.abc import Sequence

from marginalia.agents.base import BaseAgent
from marginalia.models.llm_outputs import RankingOutput
from marginalia.models.notes import RankingDecision, SearchResult
from marginalia.services.prompt_store import render_prompt
from marginalia.services.redaction import redact
from marginalia.tools.web_utils import extract_domain

NO_RESULTS_REASONING = "No results to rank"


class CredibilityRanker(BaseAgent):
    """Orders search results by estimated credibility and relevance."""

    name = "ranker"

    def _format_results(self, results: Sequence[SearchResult]) -> str:
        return "\n\n".join(
            render_prompt(
                "ranker.result_entry",
                index=idx,
                title=result.title,
                url=result.url,
                domain=extract_domain(result.url) if result.url else "unknown",
                snippet=redact(result.snippet) or "No snippet",
            )
            for idx, result in enumerate(results)
        )

    async def rerank(
        self,
        note_body: str,
        results: Sequence[SearchResult],
        top_n: int = 5,
    ) -> RankingDecision:
        """Return at most ``top_n`` indices into ``results`` in ranked order.

        Indices come straight from the model; callers must drop any that are
        out of range before dereferencing.
        """
        if not results:
            return RankingDecision(ranked_indices=[], reasoning=NO_RESULTS_REASONING)

        note_body = self._require_note(note_body)
        top_n = max(int(top_n), 1)

        output = await self.llm.complete_json(
            caller=self.name,
            model=self.model,
            system=render_prompt("ranker.system_prompt", top_n=top_n),
            user=render_prompt(
                "ranker.user_prompt",
                note=redact(note_body),
                results=self._format_results(results),
                top_n=top_n,
            ),
            output_model=RankingOutput,
            temperature=0.2,
        )
        return RankingDecision(
            ranked_indices=output.ranked_indices[:top_n],
            reasoning=output.reasoning,
        )

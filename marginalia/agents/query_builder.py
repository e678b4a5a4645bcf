from __future__ import annotations

from marginalia.agents.base import BaseAgent
from marginalia.models.llm_outputs import QueryPlanOutput
from marginalia.models.notes import QueryPlan
from marginalia.services.prompt_store import render_prompt
from marginalia.services.redaction import redact


class QueryBuilder(BaseAgent):
    """Derives web search queries and fallback keywords from a note."""

    name = "query_builder"

    async def build_queries(self, note_body: str, desired_count: int = 3) -> QueryPlan:
        """Ask the model for ``desired_count`` queries plus a keyword list.

        The model may return more or fewer queries than requested; callers
        take what they need.
        """
        note_body = self._require_note(note_body)
        count = max(int(desired_count), 1)
        redacted = redact(note_body)

        output = await self.llm.complete_json(
            caller=self.name,
            model=self.model,
            system=render_prompt("query_builder.system_prompt", count=count),
            user=render_prompt("query_builder.user_prompt", count=count, note=redacted),
            output_model=QueryPlanOutput,
            temperature=0.4,
        )
        return QueryPlan(queries=output.queries, keywords=output.keywords)

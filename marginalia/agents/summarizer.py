from __future__ import annotations

from marginalia.agents.base import BaseAgent
from marginalia.models.llm_outputs import SummaryOutput
from marginalia.models.notes import NoteSummary
from marginalia.services.prompt_store import render_prompt
from marginalia.services.redaction import redact


class NoteSummarizer(BaseAgent):
    name = "summarizer"

    async def summarize(self, note_body: str, max_length: int = 200) -> NoteSummary:
        """Concise summary of at most ``max_length`` characters plus 2-4 key points."""
        note_body = self._require_note(note_body)
        output = await self.llm.complete_json(
            caller=self.name,
            model=self.model,
            system=render_prompt("summarizer.system_prompt"),
            user=render_prompt(
                "summarizer.user_prompt",
                max_length=max_length,
                note=redact(note_body),
            ),
            output_model=SummaryOutput,
            temperature=0.3,
        )
        return NoteSummary(summary=output.summary, key_points=output.key_points)

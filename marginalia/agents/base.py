from __future__ import annotations

from marginalia.errors import ValidationError
from marginalia.llm_client import LLMClient


class BaseAgent:
    """Base for components that make a single model call per operation.

    Subclasses set ``name`` (used as the caller tag in LLM call logs) and
    implement their own operation on top of ``self.llm``.
    """

    name: str = "base"

    def __init__(self, llm: LLMClient, model: str | None = None):
        self.llm = llm
        self.model = model

    def _require_note(self, note_body: object) -> str:
        """Reject empty/non-string note content, then check the model credential."""
        if not isinstance(note_body, str) or not note_body.strip():
            raise ValidationError("Note content must be a non-empty string")
        self.llm.ensure_configured()
        return note_body

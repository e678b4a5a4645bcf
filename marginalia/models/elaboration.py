"""Elaboration payloads: the cached blob stored on a note and the API response."""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from marginalia.errors import CacheParseError

SectionType = Literal["summary", "elaboration"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Section(CamelModel):
    type: SectionType
    content: str


class ReferenceOut(CamelModel):
    rank: int
    title: str
    url: str
    snippet: str = ""


class TokenEstimate(CamelModel):
    total: int = 0
    input: int = 0
    output: int = 0


class ElaborationRecord(CamelModel):
    """Blob persisted in ``notes.elaboration_json``."""

    content_hash: str
    sections: list[Section] = Field(default_factory=list)
    references: list[ReferenceOut] = Field(default_factory=list)
    search_query: str = ""
    tokens: TokenEstimate = Field(default_factory=TokenEstimate)

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy_shape(cls, data: Any) -> Any:
        # Older blobs stored a flat "elaboratedContent" string instead of sections.
        if isinstance(data, dict) and not data.get("sections") and data.get("elaboratedContent"):
            data = {**data, "sections": [{"type": "elaboration", "content": data["elaboratedContent"]}]}
        return data

    @classmethod
    def from_json(cls, raw: str) -> "ElaborationRecord":
        try:
            return cls.model_validate_json(raw)
        except ValidationError as exc:
            raise CacheParseError(f"Stored elaboration is unreadable: {exc.error_count()} error(s)") from exc

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class ElaborationMetadata(CamelModel):
    cached: bool
    search_query: str | None = None
    tokens: TokenEstimate = Field(default_factory=TokenEstimate)
    elapsed_ms: int | None = None
    cache_age: str | None = None
    age_hours: float | None = None
    sources_found: int | None = None
    sources_used: int | None = None


class ElaborationResponse(CamelModel):
    sections: list[Section]
    references: list[ReferenceOut]
    metadata: ElaborationMetadata

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

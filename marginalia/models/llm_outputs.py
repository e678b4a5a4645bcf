"""Shapes the JSON-mode model responses are decoded into.

Fields fall back to empty values the way the prompts allow; a response of the
wrong type (e.g. ``queries`` as a string) fails validation.
"""
from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class _ModelOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")


def _clean_strings(values: list[str]) -> list[str]:
    return [" ".join(v.split()) for v in values if v and v.strip()]


class QueryPlanOutput(_ModelOutput):
    queries: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)

    @field_validator("queries", "keywords")
    @classmethod
    def _drop_blank(cls, values: list[str]) -> list[str]:
        return _clean_strings(values)


class RankingOutput(_ModelOutput):
    ranked_indices: list[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("rankedIndices", "ranked_indices", "selected"),
    )
    reasoning: str = ""


class SummaryOutput(_ModelOutput):
    summary: str = ""
    key_points: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("keyPoints", "key_points"),
    )


class CaptionOutput(_ModelOutput):
    caption: str = ""
    description: str = ""
    tags: list[str] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def _drop_blank(cls, values: list[str]) -> list[str]:
        return _clean_strings(values)

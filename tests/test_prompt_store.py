from __future__ import annotations

import os

import pytest

from marginalia.services.prompt_store import PROMPTS_PATH, PromptCatalog, clear_prompt_cache, render_prompt


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt("query_builder.user_prompt", count=2, note="Cells divide by mitosis.")
    assert "Generate 2 search queries" in prompt
    assert "Cells divide by mitosis." in prompt


def test_list_prompts_are_joined_by_newlines():
    prompt = render_prompt("ranker.system_prompt", top_n=6)
    assert "- Educational institutions (.edu)\n- Official documentation" in prompt
    assert "up to 6" in prompt


def test_note_text_with_dollar_signs_is_not_reinterpreted():
    prompt = render_prompt("citation_writer.uncited_user_prompt", note="Costs $5 or $value")
    assert "Costs $5 or $value" in prompt


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError):
        render_prompt("missing.prompt.key")


def test_render_prompt_raises_for_missing_value():
    with pytest.raises(KeyError, match="note"):
        render_prompt("summarizer.user_prompt", max_length=100)


def test_catalog_reloads_when_file_changes(tmp_path):
    path = tmp_path / "prompts.json"
    path.write_text('{"greeting": {"user_prompt": "Hello $name"}}', encoding="utf-8")
    catalog = PromptCatalog(path)
    assert catalog.render("greeting.user_prompt", name="Ada") == "Hello Ada"

    path.write_text('{"greeting": {"user_prompt": ["Hi", "$name"]}}', encoding="utf-8")
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000))
    assert catalog.render("greeting.user_prompt", name="Ada") == "Hi\nAda"
    assert catalog.keys() == ["greeting.user_prompt"]


def test_catalog_rejects_non_text_entries(tmp_path):
    path = tmp_path / "prompts.json"
    path.write_text('{"ranker": {"top_n": 5}}', encoding="utf-8")
    with pytest.raises(TypeError, match="ranker.top_n"):
        PromptCatalog(path).keys()


def test_every_agent_prompt_group_is_present():
    clear_prompt_cache()
    keys = PromptCatalog(PROMPTS_PATH).keys()
    for group in ("query_builder", "ranker", "citation_writer", "summarizer", "image_captioner"):
        assert any(k.startswith(f"{group}.") for k in keys)
    assert render_prompt("ranker.system_prompt", top_n=3)

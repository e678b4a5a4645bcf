"""Prompt catalog backed by ``prompts/prompts.json``.

Entries are grouped per agent (``"ranker": {"system_prompt": ...}``) and
addressed with dotted keys. Long prompts may be stored as a list of lines.
Placeholders use ``string.Template`` syntax so note text containing ``$`` is
inserted verbatim.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


class PromptCatalog:
    """Reads the catalog lazily and reloads it when the file changes on disk."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._entries: dict[str, Template] = {}
        self._mtime_ns: int | None = None

    def _refresh(self) -> None:
        mtime_ns = self.path.stat().st_mtime_ns
        if self._mtime_ns == mtime_ns:
            return
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"Prompt catalog must be a JSON object: {self.path}")
        self._entries = dict(_flatten(payload))
        self._mtime_ns = mtime_ns

    def keys(self) -> list[str]:
        self._refresh()
        return sorted(self._entries)

    def template(self, key: str) -> Template:
        self._refresh()
        try:
            return self._entries[key]
        except KeyError:
            raise KeyError(f"Prompt key not found: {key}") from None

    def render(self, key: str, **values: Any) -> str:
        template = self.template(key)
        try:
            return template.substitute(**values)
        except KeyError as exc:
            raise KeyError(f"Missing template value '{exc.args[0]}' for prompt '{key}'") from exc

    def clear(self) -> None:
        self._entries = {}
        self._mtime_ns = None


def _flatten(node: dict[str, Any], prefix: str = ""):
    for name, value in node.items():
        key = f"{prefix}{name}"
        if isinstance(value, dict):
            yield from _flatten(value, f"{key}.")
        elif isinstance(value, list):
            yield key, Template("\n".join(str(line) for line in value))
        elif isinstance(value, str):
            yield key, Template(value)
        else:
            raise TypeError(f"Prompt key must map to a string or list of lines: {key}")


_catalog = PromptCatalog(PROMPTS_PATH)


def render_prompt(key: str, **values: Any) -> str:
    return _catalog.render(key, **values)


def clear_prompt_cache() -> None:
    _catalog.clear()

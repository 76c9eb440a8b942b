"""Prompt templates kept in a JSON catalog.

Keys are dotted paths into the catalog (``query_expansion.user``). A prompt
is either a string or a list of lines, and uses ``string.Template``
placeholders. The catalog is re-read when the file's mtime changes.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


class PromptCatalog:
    def __init__(self, path: Path):
        self.path = Path(path)
        self._entries: dict[str, Any] = {}
        self._loaded_mtime_ns: int | None = None

    def _entries_for_current_file(self) -> dict[str, Any]:
        mtime_ns = self.path.stat().st_mtime_ns
        if mtime_ns != self._loaded_mtime_ns:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError(f"Prompt catalog {self.path} must be a JSON object")
            self._entries = payload
            self._loaded_mtime_ns = mtime_ns
        return self._entries

    def template(self, key: str) -> Template:
        node: Any = self._entries_for_current_file()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                raise KeyError(f"Prompt key not found: {key}")
            node = node[part]
        if isinstance(node, list) and all(isinstance(line, str) for line in node):
            node = "\n".join(node)
        if not isinstance(node, str):
            raise TypeError(f"Prompt key must map to a string or list of lines: {key}")
        return Template(node)

    def placeholders(self, key: str) -> set[str]:
        names = set()
        for match in Template.pattern.finditer(self.template(key).template):
            name = match.group("named") or match.group("braced")
            if name:
                names.add(name)
        return names

    def render(self, key: str, **values: Any) -> str:
        missing = sorted(self.placeholders(key) - values.keys())
        if missing:
            raise KeyError(f"Missing template values {', '.join(missing)} for prompt '{key}'")
        return self.template(key).substitute(**values)


catalog = PromptCatalog(PROMPTS_PATH)


def render_prompt(key: str, **values: Any) -> str:
    return catalog.render(key, **values)

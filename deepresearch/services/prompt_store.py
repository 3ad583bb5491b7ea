"""Pipeline prompt templates kept in a JSON catalog.

Keys are dotted paths (``facts.extract``). A leaf is either a string or a
list of lines joined with newlines, rendered with ``string.Template``.
The catalog reloads when the file's mtime changes, so prompts can be tuned
without restarting the service.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any, Iterator

from deepresearch.config import settings

BUNDLED_PROMPTS = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


class PromptCatalog:
    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._entries: dict[str, Any] | None = None
        self._mtime_ns: int | None = None

    def _entries_now(self) -> dict[str, Any]:
        mtime_ns = self.path.stat().st_mtime_ns
        if self._entries is None or self._mtime_ns != mtime_ns:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError(f"Prompt catalog must be a JSON object: {self.path}")
            self._entries = payload
            self._mtime_ns = mtime_ns
        return self._entries

    def template(self, key: str) -> Template:
        node: Any = self._entries_now()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                raise KeyError(f"Prompt key not found: {key}")
            node = node[part]
        if isinstance(node, list) and all(isinstance(line, str) for line in node):
            node = "\n".join(node)
        if not isinstance(node, str):
            raise TypeError(f"Prompt key must map to a string or list of lines: {key}")
        return Template(node)

    def render(self, key: str, **values: Any) -> str:
        template = self.template(key)
        try:
            return template.substitute(**values)
        except KeyError as exc:
            raise KeyError(f"Missing template value '{exc.args[0]}' for prompt '{key}'") from exc

    def keys(self) -> Iterator[str]:
        """Yield every leaf key in the catalog."""

        def walk(node: Any, prefix: str) -> Iterator[str]:
            for name, child in node.items():
                key = f"{prefix}.{name}" if prefix else name
                if isinstance(child, dict):
                    yield from walk(child, key)
                else:
                    yield key

        yield from walk(self._entries_now(), "")

    def reset(self) -> None:
        self._entries = None
        self._mtime_ns = None


_catalog: PromptCatalog | None = None


def get_catalog() -> PromptCatalog:
    global _catalog
    if _catalog is None:
        _catalog = PromptCatalog(settings.prompts_path or BUNDLED_PROMPTS)
    return _catalog


def set_catalog(catalog: PromptCatalog | None) -> None:
    global _catalog
    _catalog = catalog


def render_prompt(key: str, **values: Any) -> str:
    return get_catalog().render(key, **values)

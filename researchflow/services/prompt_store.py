from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

from loguru import logger

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


class PromptCatalog:
    """Dotted-key lookup over a JSON file of ``string.Template`` prompts.

    The file is read again whenever its modification time changes, so a
    running worker picks up prompt edits without a restart.
    """

    def __init__(self, path: Path = PROMPTS_PATH):
        self.path = path
        self._entries: dict[str, Any] | None = None
        self._loaded_mtime_ns: int | None = None

    def entries(self) -> dict[str, Any]:
        mtime_ns = self.path.stat().st_mtime_ns
        if self._entries is None or self._loaded_mtime_ns != mtime_ns:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError(f"{self.path.name} must hold a JSON object of prompt groups")
            logger.debug(f"Loaded prompt catalog from {self.path}")
            self._entries = data
            self._loaded_mtime_ns = mtime_ns
        return self._entries

    def template(self, key: str) -> Template:
        node: Any = self.entries()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                raise KeyError(f"No prompt named '{key}' in {self.path.name}")
            node = node[part]
        if not isinstance(node, str):
            raise TypeError(f"'{key}' is a prompt group, not a prompt")
        return Template(node)

    def render(self, key: str, **values: Any) -> str:
        template = self.template(key)
        try:
            return template.substitute(values)
        except KeyError as exc:
            raise KeyError(f"Prompt '{key}' needs a value for ${exc.args[0]}") from exc

    def reset(self) -> None:
        self._entries = None
        self._loaded_mtime_ns = None


catalog = PromptCatalog()


def render_prompt(key: str, **values: Any) -> str:
    """Render a catalog prompt; every placeholder must be supplied."""
    return catalog.render(key, **values)

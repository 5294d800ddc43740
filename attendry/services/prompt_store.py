"""Prompt catalog (``prompts/prompts.json``) rendered with ``string.Template``."""

from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any, Iterator

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"

# path -> (mtime_ns, catalog); reloaded when the file changes on disk.
_loaded: dict[Path, tuple[int, dict[str, Any]]] = {}


def load_catalog(path: Path = PROMPTS_PATH) -> dict[str, Any]:
    mtime_ns = path.stat().st_mtime_ns
    cached = _loaded.get(path)
    if cached is not None and cached[0] == mtime_ns:
        return cached[1]

    catalog = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(catalog, dict):
        raise ValueError(f"Prompt catalog must be a JSON object: {path}")
    _loaded[path] = (mtime_ns, catalog)
    return catalog


def _walk(node: dict[str, Any], prefix: str = "") -> Iterator[str]:
    for name, value in node.items():
        key = f"{prefix}{name}"
        if isinstance(value, dict):
            yield from _walk(value, f"{key}.")
        elif isinstance(value, str):
            yield key


def prompt_keys(path: Path = PROMPTS_PATH) -> list[str]:
    return sorted(_walk(load_catalog(path)))


def get_template(key: str, path: Path = PROMPTS_PATH) -> Template:
    node: Any = load_catalog(path)
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(f"Prompt key not found: {key}")
        node = node[part]
    if not isinstance(node, str):
        raise TypeError(f"Prompt key must map to a string: {key}")
    return Template(node)


def render_prompt(key: str, **values: Any) -> str:
    template = get_template(key)
    try:
        return template.substitute(**values)
    except KeyError as exc:
        raise KeyError(f"Missing template value {exc.args[0]!r} for prompt '{key}'") from exc


def clear_prompt_cache() -> None:
    _loaded.clear()

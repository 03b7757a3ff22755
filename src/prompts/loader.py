from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from config.settings import Settings

PROMPT_DIR = Path(__file__).resolve().parent
DEFAULT_INSTRUCTIONS_FILE = "instructions.md"
DEFAULT_TOOL_CATALOG_FILE = "tool_catalog.json"


@dataclass(frozen=True)
class CallScript:
    instructions: str
    tools: list[dict[str, Any]]


def _resolve(path: Path | str) -> Path:
    candidate = Path(path)
    if not candidate.is_absolute() and not candidate.exists():
        candidate = PROMPT_DIR / candidate
    if not candidate.exists():
        raise RuntimeError(f"Prompt file not found: {path}")
    return candidate


def load_prompt(filename: Path | str) -> str:
    """Load a prompt text file shipped with the codebase or given by path."""

    return _resolve(filename).read_text(encoding="utf-8").strip() + "\n"


def render_instructions(template: str, **context: str | None) -> str:
    """Fill `$name` placeholders; unknown placeholders are left untouched."""

    values = {key: value for key, value in context.items() if value is not None}
    return Template(template).safe_substitute(values)


def load_tool_catalog(filename: Path | str) -> list[dict[str, Any]]:
    try:
        catalog = json.loads(_resolve(filename).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"Tool catalog {filename} is not valid JSON: {exc}") from exc

    if not isinstance(catalog, list):
        raise RuntimeError(f"Tool catalog {filename} must be a JSON list")
    for tool in catalog:
        if not isinstance(tool, dict) or not tool.get("name"):
            raise RuntimeError(f"Tool catalog {filename} has an entry without a name")
        tool.setdefault("type", "function")
    return catalog


def load_call_script(settings: Settings) -> CallScript:
    template = load_prompt(settings.instructions_file or DEFAULT_INSTRUCTIONS_FILE)
    instructions = render_instructions(
        template,
        customer_name=settings.customer_name,
        cpf_prefix=", ".join(settings.customer_cpf_prefix) if settings.customer_cpf_prefix else None,
    )
    tools = load_tool_catalog(settings.tool_catalog_file or DEFAULT_TOOL_CATALOG_FILE)
    return CallScript(instructions=instructions, tools=tools)

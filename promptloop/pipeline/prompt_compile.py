"""Prompt template compilation and post-processing prompt helpers."""

import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from promptloop.core.datetime_utils import isoformat_utc, to_aware_utc, utc_now
from promptloop.schemas.common import Citation

PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

MAX_SOURCES = 5

EMPTY_POST_PROMPT_WARNING = "Post prompt is enabled but empty; skipping."

SERVICE_SYSTEM_PROMPT = """You are Promptloop, an automated scheduled execution agent.

Follow these rules for every response:
1) This is NOT a chat. Return the final deliverable directly as complete text.
2) Be goal-centric and complete the requested task end-to-end in one response.
3) Do NOT ask about options or follow-up questions.
4) Do not include conversational fillers, roleplay, or meta commentary.
5) Use clear structure and concise wording.
6) Make sure to avoid putting duplicate content.
7) You don't need additional source list or citation block.
8) If the request is impossible or unsafe, state the limitation briefly and provide the best valid alternative output.
9) Output plain text only."""


def coerce_string_vars(value: Any) -> dict[str, str]:
    """Normalize stored variables into a str -> str mapping.

    Numbers and booleans are stringified; nested values and None are dropped.
    """
    if not isinstance(value, dict):
        return {}

    result: dict[str, str] = {}
    for key, raw in value.items():
        if not isinstance(key, str):
            continue
        if isinstance(raw, str):
            result[key] = raw
        elif isinstance(raw, bool):
            result[key] = "true" if raw else "false"
        elif isinstance(raw, int | float):
            result[key] = str(raw)
    return result


def builtin_variables(now: datetime | None = None, timezone: str = "UTC") -> dict[str, str]:
    """Variables every template can use: now_iso, date, time, timezone."""
    at = to_aware_utc(now or utc_now())
    return {
        "now_iso": isoformat_utc(at),
        "date": at.strftime("%Y-%m-%d"),
        "time": at.strftime("%H:%M"),
        "timezone": timezone,
    }


def compile_prompt_template(
    template: str,
    variables: dict[str, str],
    now: datetime | None = None,
    timezone: str = "UTC",
) -> str:
    """Substitute `{{ name }}` placeholders.

    User variables take precedence over built-ins. Unknown placeholders are
    left as written.
    """
    values = {**builtin_variables(now, timezone), **variables}

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        return values.get(name, match.group(0))

    return PLACEHOLDER.sub(_replace, template)


@dataclass(frozen=True)
class PostPromptConfig:
    """Resolved post-processing settings for a run."""

    enabled: bool
    template: str
    warning: str | None


def should_apply_post_prompt(value: str | None) -> bool:
    return isinstance(value, str) and bool(value.strip())


def normalize_post_prompt_config(enabled: bool | None, template: str | None) -> PostPromptConfig:
    """Only enable the post pass when it was requested and the template isn't blank."""
    template = template if isinstance(template, str) else ""
    want_enabled = enabled is True
    has_template = should_apply_post_prompt(template)
    warning = EMPTY_POST_PROMPT_WARNING if want_enabled and not has_template else None
    return PostPromptConfig(enabled=want_enabled and has_template, template=template, warning=warning)


def format_sources_text(citations: list[Citation]) -> str:
    """Render up to five citations as a `Sources:` block (empty string if none)."""
    lines = []
    for citation in citations:
        url = citation.url.strip() if citation.url else ""
        if not url:
            continue
        title = (citation.title or "").strip()
        lines.append(f"- {title}: {url}" if title else f"- {url}")
        if len(lines) >= MAX_SOURCES:
            break
    return "Sources:\n" + "\n".join(lines) if lines else ""


def build_post_prompt_variables(
    base_variables: dict[str, str],
    output: str,
    citations: list[Citation],
    used_web_search: bool,
    llm_model: str,
) -> dict[str, str]:
    """Variables for the post-processing template; run metadata overrides base keys."""
    meta = {
        "output": output,
        "sources": format_sources_text(citations),
        "sources_json": json.dumps([c.model_dump(exclude_none=True) for c in citations]),
        "used_web_search": "true" if used_web_search else "false",
        "llm_model": llm_model,
    }
    return {**base_variables, **meta}

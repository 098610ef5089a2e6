"""LLM gateway for the external dashboard planner.

Asks Gemini for a dashboard plan shaped like a Specification.  The answer
is an untrusted hint: the synthesizer resolves every column it names and
the validator repairs the rest.

Provides:
- Rate limiting (asyncio.Semaphore)
- Prompt-level caching (md5 hash)
- Robust JSON extraction from fenced or embedded output

One attempt per compile; callers fall back to heuristics on any failure.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging

from google import genai

from config.settings import settings
from dashboard_compiler.cognitive.column_classifier import (
    ClassifiedColumn,
    format_classification_for_prompt,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Client singleton
# ---------------------------------------------------------------------------

_client: genai.Client | None = None


def _get_client() -> genai.Client:
    global _client
    if _client is None:
        _client = genai.Client(api_key=settings.gemini_api_key)
    return _client


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

_semaphore = asyncio.Semaphore(5)

# ---------------------------------------------------------------------------
# Prompt cache (md5 → response text)
# ---------------------------------------------------------------------------

_cache: dict[str, str] = {}
_CACHE_MAX = 200


def _cache_key(prompt: str) -> str:
    return hashlib.md5(prompt.encode()).hexdigest()


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------


def _extract_json(raw: str) -> dict | None:
    """Robustly extract a JSON object from an LLM response."""
    text = raw.strip()
    try:
        parsed = json.loads(text)
        return parsed if isinstance(parsed, dict) else None
    except (json.JSONDecodeError, ValueError):
        pass
    if "```" in text:
        parts = text.split("```")
        for part in parts[1::2]:
            block = part.strip()
            for tag in ("json", "JSON"):
                if block.startswith(tag):
                    block = block[len(tag):].strip()
            try:
                parsed = json.loads(block)
            except (json.JSONDecodeError, ValueError):
                continue
            if isinstance(parsed, dict):
                return parsed
    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        try:
            parsed = json.loads(text[start:end + 1])
            return parsed if isinstance(parsed, dict) else None
        except (json.JSONDecodeError, ValueError):
            pass
    return None


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

_PLAN_RULES = """Rules:
- Use ONLY the column names listed above. Never invent columns.
- Funnel stage columns are flags: aggregate them with "truthy_count".
- Identifier columns: use "count_distinct".
- Only numeric columns may use "sum", "avg", "min" or "max".
- At most {max_kpis} KPIs and {max_charts} charts.
- A funnel needs at least 2 stages, in the order leads move through them.
- Never return an empty dashboard: include at least one KPI.

Return a single JSON object:
{{
  "title": "...",
  "time": {{"column": "..."}},
  "kpis": [{{"column": "...", "label": "...", "aggregation": "...", "format": "number|currency|percent"}}],
  "funnel": {{"stages": [{{"column": "...", "label": "..."}}], "id_column": "..."}},
  "charts": [{{"type": "line|bar", "x_column": "...", "series": [{{"column": "...", "aggregation": "..."}}], "title": "..."}}],
  "tabs": ["..."]
}}"""


def build_plan_prompt(
    classified: list[ClassifiedColumn],
    dataset_name: str = "",
    user_prompt: str = "",
) -> str:
    """Prompt asking the planner for a dashboard over the classified columns."""
    sections = [
        "You are planning an analytics dashboard for a tabular dataset.",
        format_classification_for_prompt(classified, dataset_name),
    ]
    if user_prompt:
        sections.append(f"Operator request: {user_prompt}")
    sections.append(_PLAN_RULES.format(max_kpis=settings.max_kpis, max_charts=settings.max_charts))
    return "\n\n".join(sections)


# ---------------------------------------------------------------------------
# Core call with rate limit + cache (no retry)
# ---------------------------------------------------------------------------


async def _call_llm(prompt: str, use_cache: bool = True) -> str:
    """Single call to Gemini under the semaphore. Raises on failure."""
    key = _cache_key(prompt)
    if use_cache and key in _cache:
        return _cache[key]

    async with _semaphore:
        client = _get_client()
        response = await asyncio.to_thread(
            client.models.generate_content,
            model=settings.gemini_model,
            contents=prompt,
        )
        text = (response.text or "").strip()

    if use_cache:
        if len(_cache) >= _CACHE_MAX:
            # Evict oldest ~25%
            keys = list(_cache.keys())
            for k in keys[: len(keys) // 4]:
                _cache.pop(k, None)
        _cache[key] = text
    return text


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def request_plan(
    classified: list[ClassifiedColumn],
    dataset_name: str = "",
    user_prompt: str = "",
) -> dict | None:
    """Ask the planner for a dashboard plan.

    Returns the parsed plan, or None when no API key is configured or the
    answer holds no JSON object.  Transport errors propagate; the compiler
    decides how to degrade.
    """
    if not settings.gemini_api_key:
        logger.warning("No Gemini API key configured — skipping dashboard planner")
        return None

    prompt = build_plan_prompt(classified, dataset_name, user_prompt)
    raw = await _call_llm(prompt)
    plan = _extract_json(raw)
    if plan is None:
        logger.warning("Planner answer held no JSON object: %s", raw[:200])
    return plan

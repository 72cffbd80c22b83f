from __future__ import annotations

import json
import logging
import re
from typing import Any

import jsonschema

from . import metrics
from .config import AnalyzerConfig
from .errors import AnalyzerCallError
from .llm import call_model
from .utils import log_event

TRUNCATION_MARKER = "\n\n...[truncated]...\n\n"
PLACEHOLDER_VERSION = "placeholder/v1"
DEFAULT_MAX_CHARS = 12000

SYSTEM_PROMPT = (
    "You are a clinical-style CBT assistant. Read the user's journal entry and "
    "produce a JSON object (no extra text) matching the schema described. "
    "Be concise but thorough."
)

USER_PROMPT_TEMPLATE = """Return a single JSON object with keys:
- summary (short string, 1-2 sentences)
- keywords (array of short single-word strings)
- negativeThoughts (array of objects { "excerpt": string })
- emotions (array of objects { "name": string, "score": number between 0 and 1 })
- distortions (array of objects { "type": string, "excerpt": string })
- evidenceForThoughts (array of strings)
- evidenceAgainstThoughts (array of strings)
- reframes (array of objects { "text": string })
- suggestedActions (array of objects { "text": string, "type": string (optional) })
- worksheetPrefill (object with keys like situation, thought, emotion, alternativeThought)

Make sure the output is valid JSON only (no surrounding backticks or explanation).
Now analyze the following journal entry:
\"\"\"{text}\"\"\"
"""

_ARRAY = {"type": "array"}

ANALYSIS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "summary": {"type": "string"},
        "keywords": {"type": "array", "items": {"type": "string"}},
        "negativeThoughts": _ARRAY,
        "emotions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "score": {"type": "number", "minimum": 0, "maximum": 1},
                },
            },
        },
        "distortions": _ARRAY,
        "evidenceForThoughts": _ARRAY,
        "evidenceAgainstThoughts": _ARRAY,
        "reframes": _ARRAY,
        "suggestedActions": _ARRAY,
        "worksheetPrefill": {"type": "object"},
    },
}

_NON_ALPHA = re.compile(r"[^a-zA-Z]")


def truncate_text(text: str | None, max_chars: int = DEFAULT_MAX_CHARS) -> str:
    if not text:
        return ""
    if len(text) <= max_chars:
        return text
    head = text[: int(max_chars * 0.6)]
    tail_len = int(max_chars * 0.4)
    tail = text[-tail_len:] if tail_len else ""
    return f"{head}{TRUNCATION_MARKER}{tail}"


def build_messages(text: str, max_chars: int = DEFAULT_MAX_CHARS) -> list[dict[str, str]]:
    user = USER_PROMPT_TEMPLATE.replace("{text}", truncate_text(text, max_chars))
    return [{"role": "system", "content": SYSTEM_PROMPT}, {"role": "user", "content": user}]


def parse_analysis_json(raw: str | None) -> dict[str, Any] | None:
    """Decode a model reply into an object, tolerating prose around the JSON."""
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed
    decoder = json.JSONDecoder()
    start = raw.find("{")
    while start != -1:
        try:
            candidate, _ = decoder.raw_decode(raw, start)
        except json.JSONDecodeError:
            candidate = None
        if isinstance(candidate, dict):
            return candidate
        start = raw.find("{", start + 1)
    return None


def placeholder_analysis(text: str | None) -> dict[str, Any]:
    text = text or ""
    first_line = text.split("\n")[0]
    keywords: list[str] = []
    for word in text.split()[:6]:
        cleaned = _NON_ALPHA.sub("", word).lower()
        if cleaned and cleaned not in keywords:
            keywords.append(cleaned)
    return {
        "summary": first_line or "User wrote about some feelings today.",
        "keywords": keywords,
        "negativeThoughts": [{"excerpt": first_line}] if first_line else [],
        "emotions": [
            {"name": "anxiety", "score": 0.5},
            {"name": "sadness", "score": 0.2},
        ],
        "distortions": [{"type": "Overgeneralization", "excerpt": first_line}],
        "evidenceForThoughts": ["I felt bad during the meeting."],
        "evidenceAgainstThoughts": ["You succeeded in other meetings before."],
        "reframes": [{"text": "This was one event, not the whole story."}],
        "suggestedActions": [{"text": "Take a 10-minute walk."}],
        "worksheetPrefill": {
            "situation": first_line,
            "thought": first_line,
            "emotion": "anxious",
            "alternativeThought": "One day does not define capability.",
        },
        "analysisVersion": PLACEHOLDER_VERSION,
    }


def analyze_text(text: str | None, config: AnalyzerConfig, logger: logging.Logger) -> dict[str, Any]:
    """Produce a raw analysis payload for one journal entry.

    Never raises for model-side problems: a missing key, failing calls or an
    unparseable reply all degrade to the deterministic placeholder.
    """
    if not text or not text.strip():
        log_event(logger, logging.INFO, "analyzer_placeholder", reason="empty_text")
        metrics.track_analyzer_fallback("empty_text")
        return placeholder_analysis("")
    api_key = config.api_key
    if not api_key:
        log_event(logger, logging.INFO, "analyzer_placeholder", reason="no_api_key")
        metrics.track_analyzer_fallback("no_api_key")
        return placeholder_analysis(text)

    messages = build_messages(text, config.max_chars)
    params = {"temperature": config.temperature, "max_tokens": config.max_tokens}
    raw = None
    model_used = None
    for tier, model_name in _model_chain(config):
        try:
            raw = call_model(
                config.provider_type,
                config.base_url,
                api_key,
                model_name,
                messages,
                params,
                timeout_seconds=config.timeout_seconds,
            )
        except AnalyzerCallError as exc:
            metrics.track_analyzer_call(tier, ok=False)
            log_event(
                logger,
                logging.WARNING,
                "analyzer_call_failed",
                tier=tier,
                model=model_name,
                error=str(exc),
            )
            continue
        metrics.track_analyzer_call(tier, ok=True)
        model_used = model_name
        break

    if model_used is None:
        log_event(logger, logging.WARNING, "analyzer_fallback", reason="all_models_failed")
        metrics.track_analyzer_fallback("all_models_failed")
        return placeholder_analysis(text)

    parsed = parse_analysis_json(raw)
    if parsed is None:
        log_event(logger, logging.WARNING, "analyzer_fallback", reason="unparseable", model=model_used)
        metrics.track_analyzer_fallback("unparseable")
        return placeholder_analysis(text)

    validation = _validate_json(ANALYSIS_SCHEMA, parsed)
    if not validation["ok"]:
        log_event(
            logger,
            logging.WARNING,
            "analyzer_schema_invalid",
            model=model_used,
            error=validation["error"],
        )

    payload = dict(parsed)
    if not isinstance(payload.get("summary"), str) or not payload.get("summary"):
        payload["summary"] = text[:200]
    payload["analysisVersion"] = f"{model_used}/v1"
    return payload


def _model_chain(config: AnalyzerConfig) -> list[tuple[str, str]]:
    chain = [("primary", config.primary_model)]
    if config.secondary_model and config.secondary_model != config.primary_model:
        chain.append(("secondary", config.secondary_model))
    return chain


def _validate_json(schema: dict[str, Any], payload: Any) -> dict[str, Any]:
    try:
        jsonschema.validate(payload, schema)
        return {"ok": True}
    except jsonschema.ValidationError as exc:
        return {"ok": False, "error": exc.message}

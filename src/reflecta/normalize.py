from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any

from .models import (
    Distortion,
    Emotion,
    NegativeThought,
    NormalizedAnalysis,
    Reframe,
    SuggestedAction,
)
from .utils import json_dumps

ITEM_TEXT = "text"
ITEM_OBJECT = "object"
ITEM_UNKNOWN = "unknown"

SUMMARY_MAX_CHARS = 2000

_THOUGHT_KEYS = ("text", "thought", "excerpt")
_DISTORTION_TYPE_KEYS = ("type", "distortionType")
_REFRAME_ORIGIN_KEYS = ("originalThought", "text")
_EVIDENCE_FOR_KEYS = ("evidenceForThoughts", "evidenceFor")
_EVIDENCE_AGAINST_KEYS = ("evidenceAgainstThoughts", "evidenceAgainst")


@dataclass(frozen=True)
class Item:
    kind: str
    text: str = ""
    data: dict[str, Any] | None = None


def classify_item(value: Any) -> Item:
    """Tag one array element as text, object or unknown.

    Strings that look like JSON are decoded one level; a decoded array
    contributes its first element.
    """
    if isinstance(value, dict):
        return Item(ITEM_OBJECT, data=value)
    if isinstance(value, str):
        decoded = _decode_json_string(value)
        if isinstance(decoded, dict):
            return Item(ITEM_OBJECT, data=decoded)
        if isinstance(decoded, list) and decoded:
            first = decoded[0]
            if isinstance(first, dict):
                return Item(ITEM_OBJECT, data=first)
            if isinstance(first, str):
                return Item(ITEM_TEXT, text=first)
        return Item(ITEM_TEXT, text=value)
    if value is None:
        return Item(ITEM_UNKNOWN, text="")
    return Item(ITEM_UNKNOWN, text=json_dumps(value))


def normalize_analysis(payload: Any) -> NormalizedAnalysis:
    if not isinstance(payload, dict):
        return NormalizedAnalysis()
    return NormalizedAnalysis(
        negative_thoughts=normalize_negative_thoughts(payload.get("negativeThoughts")),
        emotions=normalize_emotions(payload.get("emotions")),
        distortions=normalize_distortions(payload.get("distortions")),
        evidence_for=normalize_evidence(_first_present(payload, _EVIDENCE_FOR_KEYS)),
        evidence_against=normalize_evidence(_first_present(payload, _EVIDENCE_AGAINST_KEYS)),
        reframes=normalize_reframes(payload.get("reframes")),
        suggested_actions=normalize_suggested_actions(payload.get("suggestedActions")),
        worksheet_prefill=normalize_worksheet(payload.get("worksheetPrefill")),
        version=_optional_str(payload.get("analysisVersion")),
        summary=normalize_summary(payload.get("summary")),
        keywords=normalize_keywords(payload.get("keywords")),
    )


def normalize_negative_thoughts(value: Any) -> list[NegativeThought]:
    thoughts = []
    for raw in _as_list(value):
        text = _item_text(classify_item(raw), _THOUGHT_KEYS)
        if text:
            thoughts.append(NegativeThought(text=text))
    return thoughts


def normalize_emotions(value: Any) -> list[Emotion]:
    emotions = []
    for raw in _as_list(value):
        item = classify_item(raw)
        if item.kind == ITEM_TEXT and item.text.strip():
            emotions.append(Emotion(name=item.text.strip(), score=0.0))
        elif item.kind == ITEM_OBJECT:
            name = _first_str(item.data, ("name", "emotion"))
            if name:
                emotions.append(Emotion(name=name, score=_clamp_score(item.data.get("score"))))
    return emotions


def normalize_distortions(value: Any) -> list[Distortion]:
    distortions = []
    for raw in _as_list(value):
        item = classify_item(raw)
        if item.kind == ITEM_OBJECT:
            distortion_type = _first_str(item.data, _DISTORTION_TYPE_KEYS) or json_dumps(item.data)
            excerpt = _first_str(item.data, ("excerpt", "text")) or None
            distortions.append(Distortion(type=distortion_type, excerpt=excerpt))
        elif item.text:
            distortions.append(Distortion(type=item.text))
    return distortions


def normalize_evidence(value: Any) -> list[str]:
    evidence = []
    for raw in _as_list(value):
        text = _item_text(classify_item(raw), _THOUGHT_KEYS)
        if text:
            evidence.append(text)
    return evidence


def normalize_reframes(value: Any) -> list[Reframe]:
    reframes = []
    for raw in _as_list(value):
        item = classify_item(raw)
        if item.kind == ITEM_OBJECT:
            reframes.append(
                Reframe(
                    original_thought=_first_str(item.data, _REFRAME_ORIGIN_KEYS),
                    rational_response=_first_str(item.data, ("rationalResponse",)),
                )
            )
        elif item.text:
            reframes.append(Reframe(original_thought=item.text, rational_response=""))
    return reframes


def normalize_suggested_actions(value: Any) -> list[SuggestedAction]:
    actions = []
    for raw in _as_list(value):
        text = _item_text(classify_item(raw), ("text", "action"))
        if text:
            actions.append(SuggestedAction(text=text))
    return actions


def normalize_worksheet(value: Any) -> dict[str, str]:
    if isinstance(value, str):
        value = _decode_json_string(value)
    if not isinstance(value, dict):
        return {}
    worksheet = {}
    for key, item in value.items():
        if item is None:
            continue
        worksheet[str(key)] = item if isinstance(item, str) else json_dumps(item)
    return worksheet


def normalize_summary(value: Any) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()[:SUMMARY_MAX_CHARS]


def normalize_keywords(value: Any) -> list[str]:
    keywords: list[str] = []
    for raw in _as_list(value):
        if isinstance(raw, str) and raw.strip() and raw.strip() not in keywords:
            keywords.append(raw.strip())
    return keywords


def _item_text(item: Item, keys: tuple[str, ...]) -> str:
    if item.kind == ITEM_OBJECT:
        return _first_str(item.data, keys) or json_dumps(item.data)
    return item.text


def _first_present(payload: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def _first_str(data: dict[str, Any] | None, keys: tuple[str, ...]) -> str:
    for key in keys:
        value = (data or {}).get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    return []


def _clamp_score(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(score):
        return 0.0
    return max(0.0, min(1.0, score))


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _decode_json_string(value: str) -> Any:
    stripped = value.strip()
    if not stripped.startswith(("{", "[")):
        return None
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        return None

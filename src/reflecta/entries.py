from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from . import metrics
from .errors import InvalidArgument, NotFound
from .models import JOB_KIND_ANALYZE_ENTRY, Entry
from .storage import (
    delete_entry as delete_entry_row,
    enqueue_job,
    get_entry_for_owner,
    insert_entry,
    update_entry_fields,
)
from .utils import log_event

ENTRY_TEXT_MAX_CHARS = 5000
MOOD_SCORE_MIN = 1
MOOD_SCORE_MAX = 10

_UNSET = object()


@dataclass(frozen=True)
class EntryWriteResult:
    entry: Entry
    analysis_job_id: str | None


def create_entry(
    conn: Any,
    owner_id: str,
    entry_text: Any,
    mood_score: Any = None,
    tags: Any = None,
    logger: logging.Logger | None = None,
) -> EntryWriteResult:
    logger = logger or logging.getLogger("reflecta.entries")
    _require_owner(owner_id)
    text = validate_entry_text(entry_text)
    mood = validate_mood_score(mood_score)
    tag_list = validate_tags(tags)
    entry = insert_entry(conn, owner_id, text, mood, tag_list)
    log_event(logger, logging.INFO, "entry_created", entry_id=entry.id, owner_id=owner_id)
    job_id = try_enqueue_analysis(conn, entry.id, logger)
    return EntryWriteResult(entry=entry, analysis_job_id=job_id)


def update_entry(
    conn: Any,
    owner_id: str,
    entry_id: str,
    *,
    entry_text: Any = _UNSET,
    mood_score: Any = _UNSET,
    tags: Any = _UNSET,
    logger: logging.Logger | None = None,
) -> EntryWriteResult:
    """Apply a partial update; only a real change of the text re-enqueues analysis."""
    logger = logger or logging.getLogger("reflecta.entries")
    _require_owner(owner_id)
    existing = get_entry_for_owner(conn, owner_id, entry_id)
    if existing is None:
        raise NotFound("entry not found")
    fields: dict[str, object] = {}
    if entry_text is not _UNSET:
        fields["entry_text"] = validate_entry_text(entry_text)
    if mood_score is not _UNSET:
        fields["mood_score"] = validate_mood_score(mood_score)
    if tags is not _UNSET and tags is not None:
        fields["tags"] = validate_tags(tags)
    text_changed = "entry_text" in fields and fields["entry_text"] != existing.entry_text
    update_entry_fields(conn, entry_id, fields)
    entry = get_entry_for_owner(conn, owner_id, entry_id)
    if entry is None:
        raise NotFound("entry not found")
    job_id = try_enqueue_analysis(conn, entry_id, logger) if text_changed else None
    log_event(
        logger,
        logging.INFO,
        "entry_updated",
        entry_id=entry_id,
        fields=",".join(sorted(fields)) or "-",
        reanalyze=text_changed,
    )
    return EntryWriteResult(entry=entry, analysis_job_id=job_id)


def get_entry(conn: Any, owner_id: str, entry_id: str) -> Entry:
    entry = get_entry_for_owner(conn, owner_id, entry_id)
    if entry is None:
        raise NotFound("entry not found")
    return entry


def delete_entry(conn: Any, owner_id: str, entry_id: str) -> None:
    if not delete_entry_row(conn, owner_id, entry_id):
        raise NotFound("entry not found")


def try_enqueue_analysis(conn: Any, entry_id: str, logger: logging.Logger) -> str | None:
    try:
        job_id = enqueue_job(conn, entry_id, JOB_KIND_ANALYZE_ENTRY)
    except Exception as exc:  # noqa: BLE001
        metrics.enqueue_failures.inc()
        log_event(logger, logging.ERROR, "enqueue_failed", target_id=entry_id, error=str(exc))
        return None
    log_event(logger, logging.INFO, "job_enqueued", job_id=job_id, target_id=entry_id)
    return job_id


def validate_entry_text(value: Any) -> str:
    if not isinstance(value, str):
        raise InvalidArgument("entry_text is required")
    text = value.strip()
    if not text:
        raise InvalidArgument("entry_text is required")
    if len(text) > ENTRY_TEXT_MAX_CHARS:
        raise InvalidArgument(f"entry_text cannot exceed {ENTRY_TEXT_MAX_CHARS} characters")
    return text


def validate_mood_score(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidArgument("mood_score must be a number")
    if value < MOOD_SCORE_MIN or value > MOOD_SCORE_MAX:
        raise InvalidArgument(f"mood_score must be between {MOOD_SCORE_MIN} and {MOOD_SCORE_MAX}")
    return int(value)


def validate_tags(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidArgument("tags must be a list")
    return [str(tag).strip() for tag in value if str(tag).strip()]


def _require_owner(owner_id: str) -> None:
    if not isinstance(owner_id, str) or not owner_id.strip():
        raise InvalidArgument("owner_id is required")

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from . import metrics
from .errors import InvalidArgument, NotFound, OutOfRange, ReflectaError
from .models import JOB_FAILED, JOB_PENDING, JOB_PROCESSING, AnalysisResult, Entry
from .normalize import normalize_analysis
from .storage import (
    get_analysis_result,
    get_entry_for_owner,
    get_latest_analysis_for_target,
    get_latest_job_for_target,
    get_reframes_json,
    insert_analysis_result,
    list_analysis_results,
    reframes_from_json,
    swap_reframes,
    update_entry_analysis,
)
from .utils import log_event

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
_ACCEPT_REFRAME_ATTEMPTS = 5

STATUS_READY = "ready"
STATUS_NOT_REQUESTED = "not_requested"


def save_analysis(
    conn: Any, entry: Entry, payload: Any, logger: logging.Logger
) -> AnalysisResult:
    """Persist one analyzer payload for an entry.

    The result row is the source of truth; copying the summary and keywords
    onto the entry is best-effort and never fails the save.
    """
    analysis = normalize_analysis(payload)
    result = insert_analysis_result(conn, entry.id, entry.owner_id, analysis)
    log_event(
        logger,
        logging.INFO,
        "analysis_saved",
        analysis_id=result.id,
        target_id=entry.id,
        version=result.version,
    )
    if analysis.summary or analysis.keywords:
        try:
            update_entry_analysis(
                conn,
                entry.id,
                summary=analysis.summary,
                keywords=analysis.keywords or None,
            )
        except Exception as exc:  # noqa: BLE001
            metrics.denormalize_failures.inc()
            log_event(
                logger,
                logging.WARNING,
                "entry_denormalize_failed",
                target_id=entry.id,
                error=str(exc),
            )
    return result


def get_analysis_for_target(conn: Any, owner_id: str, target_id: str) -> AnalysisResult | None:
    if not owner_id or not target_id:
        return None
    return get_latest_analysis_for_target(conn, owner_id, target_id)


def list_analyses(
    conn: Any,
    owner_id: str,
    page: Any = 1,
    limit: Any = None,
    *,
    default_limit: int = DEFAULT_PAGE_SIZE,
    max_limit: int = MAX_PAGE_SIZE,
) -> dict[str, Any]:
    page_num = max(1, _as_int(page) or 1)
    page_size = max(1, min(max_limit, _as_int(limit) or default_limit))
    offset = (page_num - 1) * page_size
    items, total = list_analysis_results(conn, owner_id, offset, page_size)
    return {"items": items, "total": total, "page": page_num, "limit": page_size}


def accept_reframe(conn: Any, owner_id: str, analysis_id: str, index: Any) -> AnalysisResult:
    if not owner_id or not analysis_id:
        raise InvalidArgument("owner_id and analysis_id are required")
    if isinstance(index, bool) or not isinstance(index, int):
        raise InvalidArgument("reframe index must be an integer")
    for _ in range(_ACCEPT_REFRAME_ATTEMPTS):
        current = get_reframes_json(conn, analysis_id, owner_id)
        if current is None:
            raise NotFound("analysis not found")
        reframes = reframes_from_json(current)
        if index < 0 or index >= len(reframes):
            raise OutOfRange("invalid reframe index")
        if not reframes[index].accepted_by_user:
            reframes[index] = replace(reframes[index], accepted_by_user=True)
            if not swap_reframes(conn, analysis_id, owner_id, current, reframes):
                continue
        result = get_analysis_result(conn, analysis_id, owner_id)
        if result is None:
            raise NotFound("analysis not found")
        return result
    raise ReflectaError("reframe update conflict")


def get_analysis_status(conn: Any, owner_id: str, target_id: str) -> dict[str, Any]:
    """Report whether an entry's analysis is ready, in flight, failed or never requested."""
    result = get_latest_analysis_for_target(conn, owner_id, target_id)
    if result is None and get_entry_for_owner(conn, owner_id, target_id) is None:
        raise NotFound("entry not found")
    job = get_latest_job_for_target(conn, target_id)
    status: dict[str, Any] = {
        "target_id": target_id,
        "analysis_id": result.id if result else None,
        "job_id": job.id if job else None,
        "attempts": job.attempts if job else 0,
        "last_error": job.last_error if job else None,
    }
    if job and job.status in (JOB_PENDING, JOB_PROCESSING, JOB_FAILED):
        status["state"] = job.status
    elif result is not None:
        status["state"] = STATUS_READY
    else:
        status["state"] = STATUS_NOT_REQUESTED
    return status


def _as_int(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0

from __future__ import annotations

import uuid
from dataclasses import asdict
from typing import Any

from .db import connect_db
from .errors import InvalidArgument, NotFound
from .models import (
    JOB_DONE,
    JOB_FAILED,
    JOB_KIND_ANALYZE_ENTRY,
    JOB_PENDING,
    JOB_PROCESSING,
    JOB_STATUSES,
    AnalysisResult,
    Distortion,
    Emotion,
    Entry,
    Job,
    NegativeThought,
    NormalizedAnalysis,
    Reframe,
    SuggestedAction,
)
from .utils import error_message, json_dumps, json_loads_or, utc_now_iso, utc_now_iso_offset

_JOB_COLUMNS = """
    id, kind, target_id, status, attempts, last_error, locked_by,
    created_at, updated_at, started_at, finished_at
"""

_ENTRY_COLUMNS = """
    id, owner_id, entry_text, mood_score, tags_json, summary, keywords_json,
    created_at, updated_at
"""

_RESULT_COLUMNS = """
    id, target_id, owner_id, negative_thoughts_json, emotions_json, distortions_json,
    evidence_for_json, evidence_against_json, reframes_json, suggested_actions_json,
    worksheet_prefill_json, version, created_at, updated_at
"""


def init_db(path: str):
    return connect_db(path)


# Jobs


def enqueue_job(conn: Any, target_id: str, kind: str = JOB_KIND_ANALYZE_ENTRY) -> str:
    if not isinstance(target_id, str) or not target_id.strip():
        raise InvalidArgument("target_id is required")
    job_id = _new_id("job")
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO analysis_jobs
            (id, kind, target_id, status, attempts, last_error, locked_by,
             created_at, updated_at, started_at, finished_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (job_id, kind, target_id.strip(), JOB_PENDING, 0, None, None, now, now, None, None),
    )
    conn.commit()
    return job_id


def fetch_pending_jobs(conn: Any, limit: int = 5) -> list[Job]:
    cursor = conn.execute(
        f"""
        SELECT {_JOB_COLUMNS}
        FROM analysis_jobs
        WHERE status = ?
        ORDER BY created_at ASC, id ASC
        LIMIT ?
        """,
        (JOB_PENDING, max(0, int(limit))),
    )
    return [_row_to_job(row) for row in cursor.fetchall()]


def claim_job(conn: Any, job_id: str, worker_id: str | None = None) -> Job | None:
    """Move a job from pending to processing; None means another worker won."""
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE analysis_jobs
        SET status = ?, attempts = attempts + 1, last_error = NULL,
            locked_by = ?, started_at = ?, finished_at = NULL, updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (JOB_PROCESSING, worker_id, now, now, job_id, JOB_PENDING),
    )
    conn.commit()
    if cursor.rowcount != 1:
        return None
    return get_job(conn, job_id)


def mark_job_done(conn: Any, job_id: str) -> bool:
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE analysis_jobs
        SET status = ?, finished_at = COALESCE(finished_at, ?), updated_at = ?
        WHERE id = ? AND status IN (?, ?)
        """,
        (JOB_DONE, now, now, job_id, JOB_PROCESSING, JOB_DONE),
    )
    conn.commit()
    return cursor.rowcount == 1


def mark_job_failed(conn: Any, job_id: str, error: BaseException | str | None) -> bool:
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE analysis_jobs
        SET status = ?, last_error = ?, finished_at = ?, updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (JOB_FAILED, error_message(error), now, now, job_id, JOB_PROCESSING),
    )
    conn.commit()
    return cursor.rowcount == 1


def reset_job(conn: Any, job_id: str) -> bool:
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE analysis_jobs
        SET status = ?, last_error = NULL, locked_by = NULL,
            started_at = NULL, finished_at = NULL, updated_at = ?
        WHERE id = ? AND status IN (?, ?)
        """,
        (JOB_PENDING, now, job_id, JOB_FAILED, JOB_PROCESSING),
    )
    conn.commit()
    return cursor.rowcount == 1


def reset_failed_jobs(conn: Any) -> int:
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE analysis_jobs
        SET status = ?, last_error = NULL, locked_by = NULL,
            started_at = NULL, finished_at = NULL, updated_at = ?
        WHERE status = ?
        """,
        (JOB_PENDING, now, JOB_FAILED),
    )
    conn.commit()
    return int(cursor.rowcount or 0)


def requeue_stale_jobs(conn: Any, older_than_seconds: int) -> int:
    cutoff = utc_now_iso_offset(seconds=-older_than_seconds)
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE analysis_jobs
        SET status = ?, last_error = 'stale_claim_requeued', locked_by = NULL,
            started_at = NULL, updated_at = ?
        WHERE status = ? AND started_at IS NOT NULL AND started_at < ?
        """,
        (JOB_PENDING, now, JOB_PROCESSING, cutoff),
    )
    conn.commit()
    return int(cursor.rowcount or 0)


def get_job(conn: Any, job_id: str) -> Job | None:
    row = conn.execute(
        f"SELECT {_JOB_COLUMNS} FROM analysis_jobs WHERE id = ?",
        (job_id,),
    ).fetchone()
    return _row_to_job(row) if row else None


def get_latest_job_for_target(conn: Any, target_id: str) -> Job | None:
    row = conn.execute(
        f"""
        SELECT {_JOB_COLUMNS}
        FROM analysis_jobs
        WHERE target_id = ?
        ORDER BY created_at DESC, id DESC
        LIMIT 1
        """,
        (target_id,),
    ).fetchone()
    return _row_to_job(row) if row else None


def list_jobs(conn: Any, status: str | None = None, limit: int = 50) -> list[Job]:
    if status is not None and status not in JOB_STATUSES:
        raise InvalidArgument(f"unknown job status {status}")
    if status:
        cursor = conn.execute(
            f"""
            SELECT {_JOB_COLUMNS}
            FROM analysis_jobs
            WHERE status = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (status, limit),
        )
    else:
        cursor = conn.execute(
            f"""
            SELECT {_JOB_COLUMNS}
            FROM analysis_jobs
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (limit,),
        )
    return [_row_to_job(row) for row in cursor.fetchall()]


def count_jobs_by_status(conn: Any) -> dict[str, int]:
    counts = {status: 0 for status in JOB_STATUSES}
    cursor = conn.execute("SELECT status, COUNT(*) FROM analysis_jobs GROUP BY status")
    for status, count in cursor.fetchall():
        counts[status] = int(count or 0)
    return counts


# Entries


def insert_entry(
    conn: Any,
    owner_id: str,
    entry_text: str,
    mood_score: int | None = None,
    tags: list[str] | None = None,
) -> Entry:
    entry_id = _new_id("ent")
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO entries
            (id, owner_id, entry_text, mood_score, tags_json, summary, keywords_json,
             created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (entry_id, owner_id, entry_text, mood_score, json_dumps(tags or []), None, "[]", now, now),
    )
    conn.commit()
    entry = get_entry(conn, entry_id)
    if entry is None:
        raise NotFound("entry not found after insert")
    return entry


def get_entry(conn: Any, entry_id: str) -> Entry | None:
    row = conn.execute(
        f"SELECT {_ENTRY_COLUMNS} FROM entries WHERE id = ?",
        (entry_id,),
    ).fetchone()
    return _row_to_entry(row) if row else None


def get_entry_for_owner(conn: Any, owner_id: str, entry_id: str) -> Entry | None:
    row = conn.execute(
        f"SELECT {_ENTRY_COLUMNS} FROM entries WHERE id = ? AND owner_id = ?",
        (entry_id, owner_id),
    ).fetchone()
    return _row_to_entry(row) if row else None


def update_entry_fields(conn: Any, entry_id: str, fields: dict[str, object]) -> None:
    columns = {
        "entry_text": lambda value: value,
        "mood_score": lambda value: value,
        "tags": lambda value: json_dumps(list(value or [])),
    }
    assignments = []
    params: list[object] = []
    for name, value in fields.items():
        if name not in columns:
            raise InvalidArgument(f"unsupported entry field {name}")
        column = "tags_json" if name == "tags" else name
        assignments.append(f"{column} = ?")
        params.append(columns[name](value))
    if not assignments:
        return
    assignments.append("updated_at = ?")
    params.extend([utc_now_iso(), entry_id])
    conn.execute(
        f"UPDATE entries SET {', '.join(assignments)} WHERE id = ?",
        tuple(params),
    )
    conn.commit()


def update_entry_analysis(
    conn: Any, entry_id: str, *, summary: str | None, keywords: list[str] | None
) -> bool:
    assignments = []
    params: list[object] = []
    if summary is not None:
        assignments.append("summary = ?")
        params.append(summary)
    if keywords is not None:
        assignments.append("keywords_json = ?")
        params.append(json_dumps(keywords))
    if not assignments:
        return False
    params.append(entry_id)
    cursor = conn.execute(
        f"UPDATE entries SET {', '.join(assignments)} WHERE id = ?",
        tuple(params),
    )
    conn.commit()
    return cursor.rowcount == 1


def delete_entry(conn: Any, owner_id: str, entry_id: str) -> bool:
    cursor = conn.execute(
        "DELETE FROM entries WHERE id = ? AND owner_id = ?",
        (entry_id, owner_id),
    )
    conn.commit()
    return cursor.rowcount == 1


# Analysis results


def insert_analysis_result(
    conn: Any, target_id: str, owner_id: str, analysis: NormalizedAnalysis
) -> AnalysisResult:
    result_id = _new_id("an")
    now = utc_now_iso()
    conn.execute(
        f"""
        INSERT INTO analysis_results ({_RESULT_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            result_id,
            target_id,
            owner_id,
            json_dumps(analysis.negative_thoughts),
            json_dumps(analysis.emotions),
            json_dumps(analysis.distortions),
            json_dumps(analysis.evidence_for),
            json_dumps(analysis.evidence_against),
            json_dumps(analysis.reframes),
            json_dumps(analysis.suggested_actions),
            json_dumps(analysis.worksheet_prefill),
            analysis.version,
            now,
            now,
        ),
    )
    conn.commit()
    result = get_analysis_result(conn, result_id)
    if result is None:
        raise NotFound("analysis not found after insert")
    return result


def get_analysis_result(
    conn: Any, analysis_id: str, owner_id: str | None = None
) -> AnalysisResult | None:
    if owner_id is None:
        row = conn.execute(
            f"SELECT {_RESULT_COLUMNS} FROM analysis_results WHERE id = ?",
            (analysis_id,),
        ).fetchone()
    else:
        row = conn.execute(
            f"SELECT {_RESULT_COLUMNS} FROM analysis_results WHERE id = ? AND owner_id = ?",
            (analysis_id, owner_id),
        ).fetchone()
    return _row_to_result(row) if row else None


def get_latest_analysis_for_target(
    conn: Any, owner_id: str, target_id: str
) -> AnalysisResult | None:
    row = conn.execute(
        f"""
        SELECT {_RESULT_COLUMNS}
        FROM analysis_results
        WHERE target_id = ? AND owner_id = ?
        ORDER BY created_at DESC, id DESC
        LIMIT 1
        """,
        (target_id, owner_id),
    ).fetchone()
    return _row_to_result(row) if row else None


def list_analysis_results(
    conn: Any, owner_id: str, offset: int, limit: int
) -> tuple[list[AnalysisResult], int]:
    cursor = conn.execute(
        f"""
        SELECT {_RESULT_COLUMNS}
        FROM analysis_results
        WHERE owner_id = ?
        ORDER BY created_at DESC, id DESC
        LIMIT ? OFFSET ?
        """,
        (owner_id, limit, offset),
    )
    items = [_row_to_result(row) for row in cursor.fetchall()]
    total = conn.execute(
        "SELECT COUNT(*) FROM analysis_results WHERE owner_id = ?",
        (owner_id,),
    ).fetchone()
    return items, int(total[0] or 0)


def get_reframes_json(conn: Any, analysis_id: str, owner_id: str) -> str | None:
    row = conn.execute(
        "SELECT reframes_json FROM analysis_results WHERE id = ? AND owner_id = ?",
        (analysis_id, owner_id),
    ).fetchone()
    return row[0] if row else None


def swap_reframes(
    conn: Any,
    analysis_id: str,
    owner_id: str,
    expected_json: str,
    reframes: list[Reframe],
) -> bool:
    cursor = conn.execute(
        """
        UPDATE analysis_results
        SET reframes_json = ?, updated_at = ?
        WHERE id = ? AND owner_id = ? AND reframes_json = ?
        """,
        (json_dumps(reframes), utc_now_iso(), analysis_id, owner_id, expected_json),
    )
    conn.commit()
    return cursor.rowcount == 1


def reframes_from_json(value: str | None) -> list[Reframe]:
    items = json_loads_or(value, [])
    reframes = []
    for item in items if isinstance(items, list) else []:
        if not isinstance(item, dict):
            continue
        reframes.append(
            Reframe(
                original_thought=str(item.get("original_thought") or ""),
                rational_response=str(item.get("rational_response") or ""),
                accepted_by_user=bool(item.get("accepted_by_user")),
            )
        )
    return reframes


def result_to_dict(result: AnalysisResult) -> dict[str, object]:
    return asdict(result)


def job_to_dict(job: Job) -> dict[str, object]:
    return asdict(job)


def entry_to_dict(entry: Entry) -> dict[str, object]:
    return asdict(entry)


def _row_to_job(row: tuple) -> Job:
    (
        job_id,
        kind,
        target_id,
        status,
        attempts,
        last_error,
        locked_by,
        created_at,
        updated_at,
        started_at,
        finished_at,
    ) = row
    return Job(
        id=job_id,
        kind=kind,
        target_id=target_id,
        status=status,
        attempts=int(attempts or 0),
        last_error=last_error,
        locked_by=locked_by,
        created_at=created_at,
        updated_at=updated_at,
        started_at=started_at,
        finished_at=finished_at,
    )


def _row_to_entry(row: tuple) -> Entry:
    (
        entry_id,
        owner_id,
        entry_text,
        mood_score,
        tags_json,
        summary,
        keywords_json,
        created_at,
        updated_at,
    ) = row
    return Entry(
        id=entry_id,
        owner_id=owner_id,
        entry_text=entry_text,
        mood_score=int(mood_score) if mood_score is not None else None,
        tags=list(json_loads_or(tags_json, [])),
        summary=summary,
        keywords=list(json_loads_or(keywords_json, [])),
        created_at=created_at,
        updated_at=updated_at,
    )


def _row_to_result(row: tuple) -> AnalysisResult:
    (
        result_id,
        target_id,
        owner_id,
        negative_thoughts_json,
        emotions_json,
        distortions_json,
        evidence_for_json,
        evidence_against_json,
        reframes_json,
        suggested_actions_json,
        worksheet_prefill_json,
        version,
        created_at,
        updated_at,
    ) = row
    return AnalysisResult(
        id=result_id,
        target_id=target_id,
        owner_id=owner_id,
        negative_thoughts=[
            NegativeThought(text=str(item.get("text") or ""))
            for item in _dict_items(negative_thoughts_json)
        ],
        emotions=[
            Emotion(name=str(item.get("name") or ""), score=float(item.get("score") or 0.0))
            for item in _dict_items(emotions_json)
        ],
        distortions=[
            Distortion(type=str(item.get("type") or ""), excerpt=item.get("excerpt"))
            for item in _dict_items(distortions_json)
        ],
        evidence_for=[str(item) for item in json_loads_or(evidence_for_json, [])],
        evidence_against=[str(item) for item in json_loads_or(evidence_against_json, [])],
        reframes=reframes_from_json(reframes_json),
        suggested_actions=[
            SuggestedAction(text=str(item.get("text") or ""))
            for item in _dict_items(suggested_actions_json)
        ],
        worksheet_prefill=dict(json_loads_or(worksheet_prefill_json, {})),
        version=version,
        created_at=created_at,
        updated_at=updated_at,
    )


def _dict_items(value: str | None) -> list[dict[str, Any]]:
    items = json_loads_or(value, [])
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Header, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from .config import Config, ConfigError, load_config
from .db import connect_db
from .entries import create_entry, delete_entry, get_entry, update_entry
from .errors import InvalidArgument, NotFound, OutOfRange, ReflectaError
from .models import JOB_FAILED, JOB_PROCESSING
from .results import accept_reframe, get_analysis_for_target, get_analysis_status, list_analyses
from .storage import (
    count_jobs_by_status,
    entry_to_dict,
    get_job,
    job_to_dict,
    list_jobs,
    reset_job,
    result_to_dict,
)
from .utils import configure_logging, log_event

app = FastAPI(title="Reflecta API")


class EntryCreateRequest(BaseModel):
    entry_text: str
    mood_score: int | None = None
    tags: list[str] | None = None


class EntryUpdateRequest(BaseModel):
    entry_text: str | None = None
    mood_score: int | None = None
    tags: list[str] | None = None


class AcceptReframeRequest(BaseModel):
    reframe_index: int


def get_config() -> Config:
    try:
        return load_config()
    except ConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def get_conn(config: Config = Depends(get_config)):
    conn = connect_db(config.paths.state_db)
    try:
        yield conn
    finally:
        conn.close()


def _get_logger() -> logging.Logger:
    return configure_logging("reflecta.api")


def _require_owner(x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="unauthorized")
    return x_user_id.strip()


def _require_admin_token(x_admin_token: str | None = Header(default=None)) -> None:
    token = os.environ.get("RF_ADMIN_TOKEN")
    if not token:
        return
    if x_admin_token != token:
        raise HTTPException(status_code=401, detail="unauthorized")


def _http_error(exc: ReflectaError) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InvalidArgument, OutOfRange)):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=409, detail=str(exc))


@app.get("/health")
def health() -> dict[str, object]:
    return {
        "ok": True,
        "version": _get_version(),
        "time": datetime.now(tz=timezone.utc).isoformat(),
    }


@app.get("/metrics")
def metrics_endpoint() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/entries", status_code=201)
def entries_create(
    payload: EntryCreateRequest,
    owner_id: str = Depends(_require_owner),
    conn=Depends(get_conn),
) -> dict[str, object]:
    try:
        written = create_entry(
            conn,
            owner_id,
            payload.entry_text,
            mood_score=payload.mood_score,
            tags=payload.tags,
            logger=_get_logger(),
        )
    except ReflectaError as exc:
        raise _http_error(exc) from exc
    return {"entry": entry_to_dict(written.entry), "analysis_job_id": written.analysis_job_id}


@app.get("/entries/{entry_id}")
def entries_get(
    entry_id: str,
    owner_id: str = Depends(_require_owner),
    conn=Depends(get_conn),
) -> dict[str, object]:
    try:
        entry = get_entry(conn, owner_id, entry_id)
    except ReflectaError as exc:
        raise _http_error(exc) from exc
    return {"entry": entry_to_dict(entry)}


@app.patch("/entries/{entry_id}")
def entries_update(
    entry_id: str,
    payload: EntryUpdateRequest,
    owner_id: str = Depends(_require_owner),
    conn=Depends(get_conn),
) -> dict[str, object]:
    fields = payload.model_dump(exclude_unset=True)
    try:
        written = update_entry(conn, owner_id, entry_id, logger=_get_logger(), **fields)
    except ReflectaError as exc:
        raise _http_error(exc) from exc
    return {"entry": entry_to_dict(written.entry), "analysis_job_id": written.analysis_job_id}


@app.delete("/entries/{entry_id}")
def entries_delete(
    entry_id: str,
    owner_id: str = Depends(_require_owner),
    conn=Depends(get_conn),
) -> dict[str, str]:
    try:
        delete_entry(conn, owner_id, entry_id)
    except ReflectaError as exc:
        raise _http_error(exc) from exc
    return {"status": "deleted"}


@app.get("/entries/{entry_id}/analysis-status")
def entries_analysis_status(
    entry_id: str,
    owner_id: str = Depends(_require_owner),
    conn=Depends(get_conn),
) -> dict[str, object]:
    try:
        return get_analysis_status(conn, owner_id, entry_id)
    except ReflectaError as exc:
        raise _http_error(exc) from exc


@app.get("/analyses")
def analyses_list(
    page: int = 1,
    limit: int | None = None,
    owner_id: str = Depends(_require_owner),
    config: Config = Depends(get_config),
    conn=Depends(get_conn),
) -> dict[str, object]:
    listing = list_analyses(
        conn,
        owner_id,
        page,
        limit,
        default_limit=config.api.default_page_size,
        max_limit=config.api.max_page_size,
    )
    listing["items"] = [result_to_dict(item) for item in listing["items"]]
    return listing


@app.get("/analyses/entry/{target_id}")
def analyses_for_entry(
    target_id: str,
    owner_id: str = Depends(_require_owner),
    conn=Depends(get_conn),
) -> dict[str, object]:
    result = get_analysis_for_target(conn, owner_id, target_id)
    if result is None:
        raise HTTPException(status_code=404, detail="analysis not found")
    return {"analysis": result_to_dict(result)}


@app.post("/analyses/{analysis_id}/accept-reframe")
def analyses_accept_reframe(
    analysis_id: str,
    payload: AcceptReframeRequest,
    owner_id: str = Depends(_require_owner),
    conn=Depends(get_conn),
) -> dict[str, object]:
    try:
        result = accept_reframe(conn, owner_id, analysis_id, payload.reframe_index)
    except ReflectaError as exc:
        raise _http_error(exc) from exc
    log_event(
        _get_logger(),
        logging.INFO,
        "reframe_accepted",
        analysis_id=analysis_id,
        index=payload.reframe_index,
    )
    return {"analysis": result_to_dict(result)}


@app.get("/jobs", dependencies=[Depends(_require_admin_token)])
def jobs(
    status: str | None = None,
    limit: int = 50,
    conn=Depends(get_conn),
) -> dict[str, object]:
    try:
        rows = list_jobs(conn, status=status, limit=limit)
    except ReflectaError as exc:
        raise _http_error(exc) from exc
    return {"jobs": [job_to_dict(job) for job in rows], "counts": count_jobs_by_status(conn)}


@app.post("/jobs/{job_id}/reset", dependencies=[Depends(_require_admin_token)])
def jobs_reset(job_id: str, conn=Depends(get_conn)) -> dict[str, object]:
    job = get_job(conn, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="job not found")
    if job.status not in (JOB_FAILED, JOB_PROCESSING) or not reset_job(conn, job_id):
        raise HTTPException(status_code=409, detail=f"job is {job.status}")
    log_event(_get_logger(), logging.INFO, "job_reset", job_id=job_id, previous_status=job.status)
    return {"job": job_to_dict(get_job(conn, job_id))}


def _get_version() -> str:
    try:
        from importlib.metadata import version

        return version("reflecta")
    except Exception:  # noqa: BLE001
        return "unknown"

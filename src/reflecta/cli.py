from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import asdict

from .analyzer import analyze_text
from .config import ConfigError, load_config
from .db import connect_db
from .errors import ReflectaError
from .normalize import normalize_analysis
from .storage import (
    enqueue_job,
    get_job,
    list_jobs,
    requeue_stale_jobs,
    reset_failed_jobs,
    reset_job,
)
from .utils import configure_logging, json_dumps, log_event


def _setup_logging() -> logging.Logger:
    return configure_logging("reflecta")


def _open(args: argparse.Namespace, logger: logging.Logger):
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return None, None
    return config, connect_db(config.paths.state_db)


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    config, conn = _open(args, logger)
    if conn is None:
        return 1
    conn.close()
    log_event(logger, logging.INFO, "db_migrated", path=config.paths.state_db)
    return 0


def _cmd_jobs_enqueue(args: argparse.Namespace, logger: logging.Logger) -> int:
    _, conn = _open(args, logger)
    if conn is None:
        return 1
    try:
        job_id = enqueue_job(conn, args.target_id)
    except ReflectaError as exc:
        log_event(logger, logging.ERROR, "job_enqueue_failed", error=str(exc))
        return 1
    finally:
        conn.close()
    log_event(logger, logging.INFO, "job_enqueued", job_id=job_id, target_id=args.target_id)
    return 0


def _cmd_jobs_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    _, conn = _open(args, logger)
    if conn is None:
        return 1
    try:
        jobs = list_jobs(conn, status=args.status, limit=args.limit)
    except ReflectaError as exc:
        log_event(logger, logging.ERROR, "jobs_list_failed", error=str(exc))
        return 1
    finally:
        conn.close()
    for job in jobs:
        log_event(
            logger,
            logging.INFO,
            "job",
            job_id=job.id,
            target_id=job.target_id,
            status=job.status,
            attempts=job.attempts,
            locked_by=job.locked_by,
            created_at=job.created_at,
            started_at=job.started_at,
            finished_at=job.finished_at,
            error=job.last_error,
        )
    return 0


def _cmd_jobs_reset(args: argparse.Namespace, logger: logging.Logger) -> int:
    _, conn = _open(args, logger)
    if conn is None:
        return 1
    try:
        job = get_job(conn, args.job_id)
        if job is None:
            log_event(logger, logging.ERROR, "job_not_found", job_id=args.job_id)
            return 1
        if not reset_job(conn, args.job_id):
            log_event(logger, logging.ERROR, "job_not_resettable", job_id=args.job_id, status=job.status)
            return 1
    finally:
        conn.close()
    log_event(logger, logging.INFO, "job_reset", job_id=args.job_id, previous_status=job.status)
    return 0


def _cmd_jobs_reset_failed(args: argparse.Namespace, logger: logging.Logger) -> int:
    _, conn = _open(args, logger)
    if conn is None:
        return 1
    try:
        count = reset_failed_jobs(conn)
    finally:
        conn.close()
    log_event(logger, logging.INFO, "jobs_reset", count=count)
    return 0


def _cmd_jobs_requeue_stale(args: argparse.Namespace, logger: logging.Logger) -> int:
    if args.older_than < 1:
        log_event(logger, logging.ERROR, "invalid_argument", error="--older-than must be >= 1")
        return 1
    _, conn = _open(args, logger)
    if conn is None:
        return 1
    try:
        count = requeue_stale_jobs(conn, args.older_than)
    finally:
        conn.close()
    log_event(logger, logging.INFO, "jobs_requeued", count=count, older_than=args.older_than)
    return 0


def _cmd_analyze(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    if args.text is not None:
        text = args.text
    elif args.file:
        with open(args.file, "r", encoding="utf-8") as handle:
            text = handle.read()
    else:
        text = sys.stdin.read()
    payload = analyze_text(text, config.analyzer, logger)
    analysis = normalize_analysis(payload)
    sys.stdout.write(json_dumps(asdict(analysis)) + "\n")
    return 0


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    import uvicorn

    log_event(logger, logging.INFO, "api_starting", host=args.host, port=args.port)
    uvicorn.run("reflecta.api:app", host=args.host, port=args.port, log_level="info")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="reflecta", description="Reflecta CLI")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (defaults to RF_CONFIG_PATH)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)

    db_migrate = db_subparsers.add_parser("migrate", help="Apply database migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    jobs_parser = subparsers.add_parser("jobs", help="Analysis job queue commands")
    jobs_subparsers = jobs_parser.add_subparsers(dest="jobs_command", required=True)

    jobs_enqueue = jobs_subparsers.add_parser("enqueue", help="Enqueue analysis for an entry")
    jobs_enqueue.add_argument("target_id", help="Entry id to analyze")
    jobs_enqueue.set_defaults(func=_cmd_jobs_enqueue)

    jobs_list = jobs_subparsers.add_parser("list", help="List recent jobs")
    jobs_list.add_argument("--status", default=None, help="Only jobs with this status")
    jobs_list.add_argument("--limit", type=int, default=20, help="Number of jobs to show")
    jobs_list.set_defaults(func=_cmd_jobs_list)

    jobs_reset = jobs_subparsers.add_parser("reset", help="Return a failed or stuck job to pending")
    jobs_reset.add_argument("job_id")
    jobs_reset.set_defaults(func=_cmd_jobs_reset)

    jobs_reset_failed = jobs_subparsers.add_parser("reset-failed", help="Return all failed jobs to pending")
    jobs_reset_failed.set_defaults(func=_cmd_jobs_reset_failed)

    jobs_requeue = jobs_subparsers.add_parser(
        "requeue-stale", help="Return processing jobs claimed too long ago to pending"
    )
    jobs_requeue.add_argument(
        "--older-than",
        type=int,
        default=900,
        help="Claim age in seconds (default 900)",
    )
    jobs_requeue.set_defaults(func=_cmd_jobs_requeue_stale)

    analyze_parser = subparsers.add_parser(
        "analyze", help="Run the analyzer and normalizer on text without touching the queue"
    )
    source = analyze_parser.add_mutually_exclusive_group()
    source.add_argument("--text", default=None)
    source.add_argument("--file", default=None)
    analyze_parser.set_defaults(func=_cmd_analyze)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())

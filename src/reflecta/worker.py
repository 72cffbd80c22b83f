from __future__ import annotations

import argparse
import logging
import os
import signal
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import replace
from typing import Any, Callable

from . import metrics
from .analyzer import analyze_text
from .config import Config, ConfigError, load_config
from .db import connect_db
from .errors import AnalysisTimeout
from .models import JOB_DONE, JOB_FAILED, Job
from .results import save_analysis
from .storage import claim_job, fetch_pending_jobs, get_entry, mark_job_done, mark_job_failed
from .utils import configure_logging, log_event

TARGET_NOT_FOUND = "target not found"

Analyzer = Callable[..., dict[str, Any]]


def _setup_logging() -> logging.Logger:
    return configure_logging("reflecta.worker")


def process_job(
    conn: Any,
    job: Job,
    config: Config,
    logger: logging.Logger,
    analyze: Analyzer = analyze_text,
) -> bool:
    """Run one claimed job to a terminal status. Returns True when it finished done."""
    try:
        entry = get_entry(conn, job.target_id)
        if entry is None:
            mark_job_failed(conn, job.id, TARGET_NOT_FOUND)
            metrics.track_job_finished(JOB_FAILED, "target_not_found")
            log_event(
                logger,
                logging.WARNING,
                "job_failed",
                job_id=job.id,
                target_id=job.target_id,
                error=TARGET_NOT_FOUND,
            )
            return False
        payload = _call_with_timeout(
            analyze,
            (entry.entry_text, config.analyzer, logger),
            config.worker.job_timeout_seconds,
        )
        result = save_analysis(conn, entry, payload, logger)
        mark_job_done(conn, job.id)
    except Exception as exc:  # noqa: BLE001
        mark_job_failed(conn, job.id, exc)
        reason = "timeout" if isinstance(exc, AnalysisTimeout) else "error"
        metrics.track_job_finished(JOB_FAILED, reason)
        log_event(
            logger,
            logging.ERROR,
            "job_failed",
            job_id=job.id,
            target_id=job.target_id,
            attempts=job.attempts,
            error=str(exc) or type(exc).__name__,
        )
        return False

    metrics.track_job_finished(JOB_DONE)
    log_event(
        logger,
        logging.INFO,
        "job_succeeded",
        job_id=job.id,
        target_id=job.target_id,
        analysis_id=result.id,
        attempts=job.attempts,
    )
    return True


def _call_with_timeout(func: Callable[..., Any], args: tuple, timeout_seconds: float) -> Any:
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="reflecta-analyze")
    future = executor.submit(func, *args)
    try:
        return future.result(timeout=timeout_seconds)
    except FutureTimeout as exc:
        future.cancel()
        raise AnalysisTimeout(f"analysis timed out after {timeout_seconds}s") from exc
    finally:
        executor.shutdown(wait=False)


class Poller:
    """Single-threaded polling loop over the pending job queue.

    Several pollers (usually in separate processes) may share one store; the
    claim step decides which of them runs a given job.
    """

    def __init__(
        self,
        conn: Any,
        config: Config,
        logger: logging.Logger | None = None,
        worker_id: str | None = None,
        analyze: Analyzer = analyze_text,
    ) -> None:
        self.conn = conn
        self.config = config
        self.logger = logger or logging.getLogger("reflecta.worker")
        self.worker_id = worker_id
        self.analyze = analyze
        self._stop_event = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        self._stop_event.set()

    def run_once(self) -> int:
        jobs = fetch_pending_jobs(self.conn, self.config.worker.batch_size)
        for job in jobs:
            if self.stopped:
                break
            claimed = claim_job(self.conn, job.id, self.worker_id)
            metrics.track_claim(claimed is not None)
            if claimed is None:
                log_event(
                    self.logger,
                    logging.DEBUG,
                    "job_claim_lost",
                    job_id=job.id,
                    worker_id=self.worker_id,
                )
                continue
            log_event(
                self.logger,
                logging.INFO,
                "job_claimed",
                job_id=claimed.id,
                target_id=claimed.target_id,
                attempts=claimed.attempts,
                worker_id=self.worker_id,
            )
            process_job(self.conn, claimed, self.config, self.logger, self.analyze)
        return len(jobs)

    def run(self) -> int:
        log_event(
            self.logger,
            logging.INFO,
            "worker_started",
            worker_id=self.worker_id,
            batch_size=self.config.worker.batch_size,
        )
        while not self.stopped:
            try:
                fetched = self.run_once()
            except Exception as exc:  # noqa: BLE001
                metrics.worker_loop_errors.inc()
                log_event(self.logger, logging.ERROR, "worker_loop_error", error=str(exc))
                self._stop_event.wait(self.config.worker.error_sleep_seconds)
                continue
            if fetched == 0:
                self._stop_event.wait(self.config.worker.idle_sleep_seconds)
        log_event(self.logger, logging.INFO, "worker_stopped", worker_id=self.worker_id)
        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reflecta analysis worker")
    parser.add_argument("--once", action="store_true", help="Process one batch and exit")
    parser.add_argument("--worker-id", default=os.environ.get("HOSTNAME", "worker"))
    parser.add_argument("--batch-size", type=int, default=None, help="Override worker.batch_size")
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logger = _setup_logging()
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    if args.batch_size is not None:
        if args.batch_size < 1:
            log_event(logger, logging.ERROR, "config_error", error="batch size must be >= 1")
            return 1
        config = replace(config, worker=replace(config.worker, batch_size=args.batch_size))

    conn = connect_db(config.paths.state_db)
    poller = Poller(conn, config, logger, worker_id=args.worker_id)
    try:
        if args.once:
            poller.run_once()
            return 0
        _install_signal_handlers(poller, logger)
        return poller.run()
    finally:
        conn.close()


def _install_signal_handlers(poller: Poller, logger: logging.Logger) -> None:
    def _handle(signum, _frame) -> None:
        log_event(logger, logging.INFO, "worker_stop_requested", signal=signum)
        poller.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


if __name__ == "__main__":
    raise SystemExit(main())

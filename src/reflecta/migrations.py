from __future__ import annotations

import logging
import sqlite3
from typing import Callable

from .utils import utc_now_iso

Migration = Callable[[sqlite3.Connection], None]


def apply_migrations(conn: sqlite3.Connection) -> None:
    logger = logging.getLogger("reflecta.migrations")
    conn.execute("BEGIN IMMEDIATE")
    try:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version TEXT PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
            """
        )
        applied = {
            row[0]
            for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
        }
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _migration_initial_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS entries (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            entry_text TEXT NOT NULL,
            mood_score INTEGER NULL,
            tags_json TEXT NULL,
            summary TEXT NULL,
            keywords_json TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_entries_owner_created ON entries(owner_id, created_at)"
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS analysis_jobs (
            id TEXT PRIMARY KEY,
            kind TEXT NOT NULL,
            target_id TEXT NOT NULL,
            status TEXT NOT NULL,
            attempts INTEGER NOT NULL DEFAULT 0,
            last_error TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_analysis_jobs_status_created "
        "ON analysis_jobs(status, created_at)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_analysis_jobs_target ON analysis_jobs(target_id, created_at)"
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS analysis_results (
            id TEXT PRIMARY KEY,
            target_id TEXT NOT NULL,
            owner_id TEXT NOT NULL,
            negative_thoughts_json TEXT NOT NULL,
            emotions_json TEXT NOT NULL,
            distortions_json TEXT NOT NULL,
            evidence_for_json TEXT NOT NULL,
            evidence_against_json TEXT NOT NULL,
            reframes_json TEXT NOT NULL,
            suggested_actions_json TEXT NOT NULL,
            worksheet_prefill_json TEXT NOT NULL,
            version TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_analysis_results_target "
        "ON analysis_results(target_id, created_at)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_analysis_results_owner "
        "ON analysis_results(owner_id, created_at)"
    )


def _migration_jobs_claim_fields(conn: sqlite3.Connection) -> None:
    columns = _table_columns(conn, "analysis_jobs")
    for name in ("locked_by", "started_at", "finished_at"):
        if name not in columns:
            conn.execute(f"ALTER TABLE analysis_jobs ADD COLUMN {name} TEXT NULL")


def _table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_initial_schema", _migration_initial_schema),
        ("002_jobs_claim_fields", _migration_jobs_claim_fields),
    ]

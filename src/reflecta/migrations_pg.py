from __future__ import annotations

import logging

from .utils import utc_now_iso

_BOOTSTRAP_VERSION = "pg_bootstrap_001"


def apply_migrations_pg(conn) -> None:
    logger = logging.getLogger("reflecta.migrations")
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
    if _BOOTSTRAP_VERSION in applied:
        conn.commit()
        return
    try:
        _bootstrap_schema(conn)
        conn.execute(
            "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?) "
            "ON CONFLICT DO NOTHING",
            (_BOOTSTRAP_VERSION, utc_now_iso()),
        )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    logger.info("migration_applied version=%s", _BOOTSTRAP_VERSION)


def _bootstrap_schema(conn) -> None:
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
            locked_by TEXT NULL,
            started_at TEXT NULL,
            finished_at TEXT NULL,
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

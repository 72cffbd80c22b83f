import sqlite3

from reflecta.migrations import _get_migrations, apply_migrations
from reflecta.storage import init_db


def test_apply_migrations_idempotent(tmp_path):
    db_path = tmp_path / "state.sqlite3"
    conn = sqlite3.connect(str(db_path))
    apply_migrations(conn)
    apply_migrations(conn)

    rows = conn.execute("SELECT version FROM schema_migrations").fetchall()
    versions = [row[0] for row in rows]
    expected = [version for version, _ in _get_migrations()]
    assert sorted(versions) == sorted(expected)
    assert len(versions) == len(set(versions))


def test_connect_applies_schema_every_time(tmp_path):
    db_path = str(tmp_path / "nested" / "state.sqlite3")
    first = init_db(db_path)
    first.close()
    conn = init_db(db_path)

    columns = {row[1] for row in conn.execute("PRAGMA table_info(analysis_jobs)").fetchall()}
    assert {"locked_by", "started_at", "finished_at", "attempts", "last_error"} <= columns
    mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    assert mode.lower() == "wal"

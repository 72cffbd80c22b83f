from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    for name in (
        "RF_DB_URL",
        "RF_CONFIG_PATH",
        "RF_DATA_DIR",
        "RF_ADMIN_TOKEN",
        "RF_LOG_FILE",
        "RF_LOG_LEVELS",
        "OPENAI_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("RF_STATE_DB", str(tmp_path / "state.sqlite3"))

import logging
import os
import sys

from reflecta.utils import configure_logging, log_event


def test_configure_logging_idempotent(tmp_path, monkeypatch):
    log_file = tmp_path / "logs" / "reflecta.log"
    monkeypatch.setenv("RF_LOG_LEVEL", "INFO")
    monkeypatch.setenv("RF_LOG_FILE", str(log_file))

    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    try:
        root.handlers = []
        configure_logging("reflecta.worker")
        configure_logging("reflecta.worker")

        stream_handlers = [
            handler
            for handler in root.handlers
            if isinstance(handler, logging.StreamHandler)
            and not isinstance(handler, logging.FileHandler)
        ]
        file_handlers = [
            handler for handler in root.handlers if isinstance(handler, logging.FileHandler)
        ]

        assert len(stream_handlers) == 1
        assert stream_handlers[0].stream is sys.stdout
        assert len(file_handlers) == 1
        assert os.path.abspath(file_handlers[0].baseFilename) == os.path.abspath(
            str(log_file)
        )
    finally:
        for handler in root.handlers:
            if handler not in original_handlers:
                handler.close()
        root.handlers = original_handlers
        root.setLevel(original_level)


def test_log_level_overrides(monkeypatch):
    monkeypatch.setenv("RF_LOG_LEVELS", "reflecta.analyzer=DEBUG, broken, reflecta.api=warning")
    target = logging.getLogger("reflecta.analyzer")
    other = logging.getLogger("reflecta.api")
    original = (target.level, other.level)
    try:
        configure_logging("reflecta")
        assert target.level == logging.DEBUG
        assert other.level == logging.WARNING
    finally:
        target.setLevel(original[0])
        other.setLevel(original[1])


def test_log_event_formats_key_values(caplog):
    logger = logging.getLogger("reflecta.tests")
    with caplog.at_level(logging.INFO, logger="reflecta.tests"):
        log_event(logger, logging.INFO, "job_claimed", job_id="job_1", attempts=2)

    assert "event=job_claimed job_id=job_1 attempts=2" in caplog.text

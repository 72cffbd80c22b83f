import json
from dataclasses import dataclass
from datetime import datetime, timezone

from reflecta.db import _convert_qmark_to_percent, is_postgres_url
from reflecta.models import Reframe
from reflecta.utils import error_message, json_dumps, json_loads_or


@dataclass
class Payload:
    value: str


def test_json_dumps_handles_dataclasses_and_datetimes():
    encoded = json_dumps(
        {
            "reframes": [Reframe(original_thought="a", rational_response="b")],
            "payload": Payload(value="ok"),
            "when": datetime(2025, 1, 1, tzinfo=timezone.utc),
            "tags": ("x", "y"),
        }
    )

    decoded = json.loads(encoded)
    assert decoded["reframes"] == [
        {"original_thought": "a", "rational_response": "b", "accepted_by_user": False}
    ]
    assert decoded["payload"] == {"value": "ok"}
    assert decoded["when"] == "2025-01-01T00:00:00+00:00"
    assert decoded["tags"] == ["x", "y"]


def test_json_dumps_is_stable():
    assert json_dumps({"b": 1, "a": 2}) == json_dumps({"a": 2, "b": 1})


def test_json_loads_or_default():
    assert json_loads_or(None, []) == []
    assert json_loads_or("not json", {}) == {}
    assert json_loads_or('["a"]', []) == ["a"]


def test_error_message():
    assert error_message(None) == "unknown"
    assert error_message("") == "unknown"
    assert error_message(ValueError("bad input")) == "bad input"
    assert error_message(TimeoutError()) == "TimeoutError"


def test_qmark_conversion_skips_literals():
    sql = "UPDATE t SET a = ?, b = '?' WHERE c = ?"

    assert _convert_qmark_to_percent(sql) == "UPDATE t SET a = %s, b = '?' WHERE c = %s"
    assert is_postgres_url("postgresql://db/reflecta")
    assert not is_postgres_url("sqlite:///tmp/x")

import http.client
import io
import json
import logging
import urllib.error

import pytest

from reflecta import analyzer
from reflecta.analyzer import (
    PLACEHOLDER_VERSION,
    TRUNCATION_MARKER,
    analyze_text,
    build_messages,
    parse_analysis_json,
    placeholder_analysis,
    truncate_text,
)
from reflecta.config import load_config
from reflecta.errors import AnalyzerCallError
from reflecta.llm import router

LOGGER = logging.getLogger("reflecta.tests")

MODEL_REPLY = {
    "summary": "Stressful day at work.",
    "keywords": ["work", "stress"],
    "negativeThoughts": [{"excerpt": "I always mess up"}],
    "emotions": [{"name": "anxiety", "score": 0.7}],
    "distortions": [{"type": "Overgeneralization", "excerpt": "always"}],
    "evidenceForThoughts": ["Missed a deadline"],
    "evidenceAgainstThoughts": ["Shipped two projects"],
    "reframes": [{"text": "One deadline is not a pattern"}],
    "suggestedActions": [{"text": "Plan tomorrow"}],
    "worksheetPrefill": {"situation": "Meeting"},
}


def _analyzer_config(monkeypatch, api_key="sk-test"):
    if api_key:
        monkeypatch.setenv("OPENAI_API_KEY", api_key)
    return load_config().analyzer


def test_truncate_text_keeps_short_text():
    assert truncate_text("hello", max_chars=10) == "hello"
    assert truncate_text("", max_chars=10) == ""
    assert truncate_text(None) == ""


def test_truncate_text_keeps_head_and_tail():
    text = "a" * 100 + "b" * 100

    truncated = truncate_text(text, max_chars=100)

    assert truncated == "a" * 60 + TRUNCATION_MARKER + "b" * 40


def test_build_messages_embeds_truncated_text():
    messages = build_messages("x" * 50, max_chars=20)

    assert [msg["role"] for msg in messages] == ["system", "user"]
    assert "[truncated]" in messages[1]["content"]
    assert "negativeThoughts" in messages[1]["content"]


def test_parse_analysis_json_direct():
    assert parse_analysis_json('{"summary": "ok"}') == {"summary": "ok"}


def test_parse_analysis_json_extracts_object_from_prose():
    raw = 'Sure! Here it is:\n```json\n{"summary": "ok", "keywords": ["a"]}\n```\nThanks'

    assert parse_analysis_json(raw) == {"summary": "ok", "keywords": ["a"]}


def test_parse_analysis_json_skips_unbalanced_prefix():
    raw = 'note {not json} then {"summary": "inner {braces}"}'

    assert parse_analysis_json(raw) == {"summary": "inner {braces}"}


@pytest.mark.parametrize("raw", [None, "", "no json here", "[1, 2, 3]", "{broken"])
def test_parse_analysis_json_returns_none(raw):
    assert parse_analysis_json(raw) is None


def test_placeholder_analysis_is_deterministic():
    text = "Today I felt, really REALLY bad about work\nsecond line"

    first = placeholder_analysis(text)

    assert first == placeholder_analysis(text)
    assert first["summary"] == "Today I felt, really REALLY bad about work"
    assert first["keywords"] == ["today", "i", "felt", "really", "bad"]
    assert first["negativeThoughts"] == [{"excerpt": first["summary"]}]
    assert first["analysisVersion"] == PLACEHOLDER_VERSION


def test_placeholder_analysis_for_empty_text():
    result = placeholder_analysis("")

    assert result["summary"] == "User wrote about some feelings today."
    assert result["keywords"] == []
    assert result["negativeThoughts"] == []


def test_analyze_text_without_api_key_uses_placeholder(monkeypatch):
    config = _analyzer_config(monkeypatch, api_key=None)

    def _fail(*_args, **_kwargs):
        raise AssertionError("model should not be called")

    monkeypatch.setattr(analyzer, "call_model", _fail)

    result = analyze_text("Rough day", config, LOGGER)

    assert result["analysisVersion"] == PLACEHOLDER_VERSION
    assert result["summary"] == "Rough day"


def test_analyze_text_uses_primary_model(monkeypatch):
    config = _analyzer_config(monkeypatch)
    calls = []

    def _fake_call(provider_type, base_url, api_key, model_name, messages, params, timeout_seconds):
        calls.append((model_name, params, api_key))
        return json.dumps(MODEL_REPLY)

    monkeypatch.setattr(analyzer, "call_model", _fake_call)

    result = analyze_text("I always mess up at work", config, LOGGER)

    assert calls == [("gpt-4o-mini", {"temperature": 0.0, "max_tokens": 1000}, "sk-test")]
    assert result["analysisVersion"] == "gpt-4o-mini/v1"
    assert result["summary"] == "Stressful day at work."


def test_analyze_text_falls_back_to_secondary_model(monkeypatch):
    config = _analyzer_config(monkeypatch)
    calls = []

    def _fake_call(provider_type, base_url, api_key, model_name, messages, params, timeout_seconds):
        calls.append(model_name)
        if model_name == config.primary_model:
            raise AnalyzerCallError("http_error 503: overloaded")
        return json.dumps(MODEL_REPLY)

    monkeypatch.setattr(analyzer, "call_model", _fake_call)

    result = analyze_text("entry", config, LOGGER)

    assert calls == [config.primary_model, config.secondary_model]
    assert result["analysisVersion"] == f"{config.secondary_model}/v1"


def test_analyze_text_all_models_failing_gives_placeholder(monkeypatch):
    config = _analyzer_config(monkeypatch)

    def _fake_call(*_args, **_kwargs):
        raise AnalyzerCallError("network_error: refused")

    monkeypatch.setattr(analyzer, "call_model", _fake_call)

    result = analyze_text("entry text", config, LOGGER)

    assert result["analysisVersion"] == PLACEHOLDER_VERSION
    assert result["summary"] == "entry text"


def test_analyze_text_unparseable_reply_gives_placeholder(monkeypatch):
    config = _analyzer_config(monkeypatch)
    monkeypatch.setattr(analyzer, "call_model", lambda *args, **kwargs: "I cannot help with that.")

    result = analyze_text("entry text", config, LOGGER)

    assert result["analysisVersion"] == PLACEHOLDER_VERSION


def test_analyze_text_keeps_schema_invalid_reply(monkeypatch, caplog):
    config = _analyzer_config(monkeypatch)
    reply = {"emotions": [{"name": "anger", "score": 7}]}
    monkeypatch.setattr(analyzer, "call_model", lambda *args, **kwargs: json.dumps(reply))

    with caplog.at_level(logging.WARNING, logger="reflecta.tests"):
        result = analyze_text("entry text", config, LOGGER)

    assert result["emotions"] == reply["emotions"]
    assert result["summary"] == "entry text"
    assert "analyzer_schema_invalid" in caplog.text


def test_call_model_builds_openai_request(monkeypatch):
    captured = {}

    def _fake_http(method, url, headers, payload, timeout_seconds):
        captured.update(method=method, url=url, headers=headers, payload=payload)
        return {"choices": [{"message": {"content": "{}"}}]}

    monkeypatch.setattr(router, "_http_request", _fake_http)

    raw = router.call_model(
        "openai_compatible",
        "https://api.example.test/v1/",
        "sk-test",
        "gpt-4o-mini",
        [{"role": "system", "content": "s"}, {"role": "user", "content": "u"}],
        {"temperature": 0.0, "max_tokens": 10, "ignored": True},
    )

    assert raw == "{}"
    assert captured["url"] == "https://api.example.test/v1/chat/completions"
    assert captured["headers"] == {"Authorization": "Bearer sk-test"}
    assert captured["payload"]["max_tokens"] == 10
    assert "ignored" not in captured["payload"]


def test_call_model_builds_anthropic_request(monkeypatch):
    captured = {}

    def _fake_http(method, url, headers, payload, timeout_seconds):
        captured.update(url=url, headers=headers, payload=payload)
        return {"content": [{"type": "text", "text": "{\"summary\": \"x\"}"}]}

    monkeypatch.setattr(router, "_http_request", _fake_http)

    raw = router.call_model(
        "anthropic",
        "",
        "key",
        "claude-test",
        [{"role": "system", "content": "s"}, {"role": "user", "content": "u"}],
        {"max_tokens": 50},
    )

    assert raw == '{"summary": "x"}'
    assert captured["url"] == "https://api.anthropic.com/v1/messages"
    assert captured["headers"]["x-api-key"] == "key"
    assert captured["payload"]["system"] == "s"
    assert captured["payload"]["messages"] == [{"role": "user", "content": "u"}]


def test_call_model_missing_choices_is_call_error(monkeypatch):
    monkeypatch.setattr(router, "_http_request", lambda *args, **kwargs: {"choices": []})

    with pytest.raises(AnalyzerCallError):
        router.call_model("openai_compatible", "", "k", "m", [], {})


def test_http_error_becomes_call_error(monkeypatch):
    def _raise(request, timeout):
        raise urllib.error.HTTPError(
            request.full_url, 429, "Too Many Requests", {}, io.BytesIO(b"slow down")
        )

    monkeypatch.setattr(router.urllib.request, "urlopen", _raise)

    with pytest.raises(AnalyzerCallError) as excinfo:
        router.call_model("openai_compatible", "https://api.example.test/v1", "k", "m", [], {})

    assert "http_error 429" in str(excinfo.value)


class _FakeResponse:
    def __init__(self, body):
        self._body = body

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def read(self):
        return self._body


def test_dropped_connection_on_primary_falls_back_to_secondary(monkeypatch, caplog):
    config = _analyzer_config(monkeypatch)
    requested = []

    def _urlopen(request, timeout):
        model_name = json.loads(request.data)["model"]
        requested.append(model_name)
        if model_name == config.primary_model:
            raise http.client.RemoteDisconnected("Remote end closed connection without response")
        reply = {"choices": [{"message": {"content": json.dumps(MODEL_REPLY)}}]}
        return _FakeResponse(json.dumps(reply).encode("utf-8"))

    monkeypatch.setattr(router.urllib.request, "urlopen", _urlopen)

    with caplog.at_level(logging.WARNING, logger="reflecta.tests"):
        result = analyze_text("entry", config, LOGGER)

    assert requested == [config.primary_model, config.secondary_model]
    assert result["analysisVersion"] == f"{config.secondary_model}/v1"
    assert "event=analyzer_call_failed tier=primary" in caplog.text
    assert "RemoteDisconnected" in caplog.text


@pytest.mark.parametrize(
    "error",
    [
        ConnectionResetError("reset by peer"),
        http.client.IncompleteRead(b"partial"),
    ],
)
def test_transport_errors_become_call_errors(monkeypatch, error):
    def _raise(request, timeout):
        raise error

    monkeypatch.setattr(router.urllib.request, "urlopen", _raise)

    with pytest.raises(AnalyzerCallError) as excinfo:
        router.call_model("openai_compatible", "https://api.example.test/v1", "k", "m", [], {})

    assert str(excinfo.value).startswith("network_error")


def test_non_utf8_body_is_invalid_response(monkeypatch):
    monkeypatch.setattr(
        router.urllib.request, "urlopen", lambda request, timeout: _FakeResponse(b"\xff\xfe{")
    )

    with pytest.raises(AnalyzerCallError) as excinfo:
        router.call_model("openai_compatible", "https://api.example.test/v1", "k", "m", [], {})

    assert str(excinfo.value) == "invalid_response_body"

from __future__ import annotations

import http.client
import json
import urllib.error
import urllib.request
from typing import Any

from ..errors import AnalyzerCallError

SUPPORTED_PROVIDER_TYPES = ("openai_compatible", "anthropic")


def call_model(
    provider_type: str,
    base_url: str,
    api_key: str | None,
    model_name: str,
    messages: list[dict[str, str]],
    params: dict[str, Any],
    timeout_seconds: float = 30.0,
) -> str:
    """Send one chat request and return the assistant text.

    Raises AnalyzerCallError on HTTP/network failures and malformed envelopes.
    """
    base_url = base_url or _default_base_url(provider_type)
    if provider_type == "openai_compatible":
        path = _join_url(base_url, "/chat/completions")
        payload = {
            "model": model_name,
            "messages": messages,
            **_filter_params(params),
        }
        headers = _auth_headers(provider_type, api_key)
        response = _http_request("POST", path, headers, payload, timeout_seconds)
        return _read_openai(response)
    if provider_type == "anthropic":
        path = _join_url(base_url, "/messages")
        system = [msg["content"] for msg in messages if msg.get("role") == "system"]
        user = [msg for msg in messages if msg.get("role") != "system"]
        payload = {
            "model": model_name,
            "max_tokens": int(params.get("max_tokens", 1000)),
            "system": "\n\n".join(system),
            "messages": user,
        }
        if "temperature" in params:
            payload["temperature"] = params["temperature"]
        headers = _auth_headers(provider_type, api_key)
        response = _http_request("POST", path, headers, payload, timeout_seconds)
        return _read_anthropic(response)
    raise AnalyzerCallError("unsupported_provider_type")


def _http_request(
    method: str,
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any] | None,
    timeout_seconds: float,
) -> dict[str, Any]:
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    request = urllib.request.Request(url, data=data, method=method)
    request.add_header("Content-Type", "application/json")
    for key, value in headers.items():
        request.add_header(key, value)
    try:
        with urllib.request.urlopen(request, timeout=timeout_seconds) as response:
            body = response.read()
    except urllib.error.HTTPError as exc:
        raw = exc.read().decode("utf-8", errors="ignore")
        raise AnalyzerCallError(f"http_error {exc.code}: {raw[:500]}") from exc
    except urllib.error.URLError as exc:
        raise AnalyzerCallError(f"network_error: {exc}") from exc
    except TimeoutError as exc:
        raise AnalyzerCallError("network_timeout") from exc
    except (OSError, http.client.HTTPException) as exc:
        raise AnalyzerCallError(f"network_error: {type(exc).__name__}: {exc}") from exc
    try:
        parsed = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise AnalyzerCallError("invalid_response_body") from exc
    if not isinstance(parsed, dict):
        raise AnalyzerCallError("invalid_response_body")
    return parsed


def _read_openai(response: dict[str, Any]) -> str:
    choices = response.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        raise AnalyzerCallError("openai_missing_choices")
    message = choices[0].get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]
    if isinstance(message, str):
        return message
    text = choices[0].get("text")
    if isinstance(text, str):
        return text
    raise AnalyzerCallError("openai_missing_content")


def _read_anthropic(response: dict[str, Any]) -> str:
    content = response.get("content") or []
    if not content or not isinstance(content[0], dict):
        raise AnalyzerCallError("anthropic_missing_content")
    return content[0].get("text") or ""


def _filter_params(params: dict[str, Any]) -> dict[str, Any]:
    allowed = {"temperature", "max_tokens", "top_p", "seed"}
    return {key: value for key, value in params.items() if key in allowed}


def _auth_headers(provider_type: str, api_key: str | None) -> dict[str, str]:
    if not api_key:
        return {}
    if provider_type == "openai_compatible":
        return {"Authorization": f"Bearer {api_key}"}
    if provider_type == "anthropic":
        return {"x-api-key": api_key, "anthropic-version": "2023-06-01"}
    return {}


def _default_base_url(provider_type: str) -> str:
    if provider_type == "openai_compatible":
        return "https://api.openai.com/v1"
    if provider_type == "anthropic":
        return "https://api.anthropic.com/v1"
    return ""


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path

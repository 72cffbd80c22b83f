from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

import yaml

from .llm import SUPPORTED_PROVIDER_TYPES


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class AppConfig:
    name: str


@dataclass(frozen=True)
class PathsConfig:
    data_dir: str
    state_db: str


@dataclass(frozen=True)
class WorkerConfig:
    batch_size: int
    idle_sleep_seconds: float
    error_sleep_seconds: float
    job_timeout_seconds: float


@dataclass(frozen=True)
class AnalyzerConfig:
    provider_type: str
    base_url: str
    api_key_env: str
    primary_model: str
    secondary_model: str
    max_chars: int
    temperature: float
    max_tokens: int
    timeout_seconds: float

    @property
    def api_key(self) -> str | None:
        value = os.environ.get(self.api_key_env, "").strip()
        return value or None


@dataclass(frozen=True)
class ApiConfig:
    default_page_size: int
    max_page_size: int


@dataclass(frozen=True)
class Config:
    app: AppConfig
    paths: PathsConfig
    worker: WorkerConfig
    analyzer: AnalyzerConfig
    api: ApiConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "app": {
        "name": "Reflecta",
    },
    "paths": {
        "data_dir": "/data",
        "state_db": "/data/reflecta.sqlite3",
    },
    "worker": {
        "batch_size": 5,
        "idle_sleep_seconds": 3.0,
        "error_sleep_seconds": 5.0,
        "job_timeout_seconds": 120.0,
    },
    "analyzer": {
        "provider_type": "openai_compatible",
        "base_url": "https://api.openai.com/v1",
        "api_key_env": "OPENAI_API_KEY",
        "primary_model": "gpt-4o-mini",
        "secondary_model": "gpt-4.1-mini",
        "max_chars": 12000,
        "temperature": 0.0,
        "max_tokens": 1000,
        "timeout_seconds": 60.0,
    },
    "api": {
        "default_page_size": 20,
        "max_page_size": 100,
    },
}


def get_config_path() -> str | None:
    path = os.environ.get("RF_CONFIG_PATH", "").strip()
    return path or None


def load_config(path: str | None = None) -> Config:
    """Build the runtime config: defaults, then the YAML file, then env overrides."""
    cfg = _deep_copy(DEFAULT_CONFIG)
    path = path or get_config_path()
    if path:
        cfg = _deep_merge(cfg, _read_yaml(path))
    _apply_env_overrides(cfg)
    errors = validate_config(cfg)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return _build_config(cfg)


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    analyzer = cfg.get("analyzer") if isinstance(cfg.get("analyzer"), dict) else {}
    provider_type = analyzer.get("provider_type")
    if isinstance(provider_type, str) and provider_type not in SUPPORTED_PROVIDER_TYPES:
        errors.append(f"config.analyzer.provider_type must be one of {', '.join(SUPPORTED_PROVIDER_TYPES)}")
    worker = cfg.get("worker") if isinstance(cfg.get("worker"), dict) else {}
    if isinstance(worker.get("batch_size"), int) and worker["batch_size"] < 1:
        errors.append("config.worker.batch_size must be >= 1")
    job_timeout = worker.get("job_timeout_seconds")
    call_timeout = analyzer.get("timeout_seconds")
    if _is_number(job_timeout) and _is_number(call_timeout) and job_timeout < 2 * call_timeout:
        errors.append(
            "config.worker.job_timeout_seconds must be >= 2 * config.analyzer.timeout_seconds"
        )
    api = cfg.get("api") if isinstance(cfg.get("api"), dict) else {}
    if isinstance(api.get("max_page_size"), int) and api["max_page_size"] < 1:
        errors.append("config.api.max_page_size must be >= 1")
    return errors


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _read_yaml(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"config file is not valid YAML: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError("config file must contain a mapping")
    return loaded


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    paths = cfg.setdefault("paths", {})
    data_dir = os.environ.get("RF_DATA_DIR", "").strip()
    if data_dir and isinstance(paths, dict):
        paths["data_dir"] = data_dir
        paths["state_db"] = os.path.join(data_dir, "reflecta.sqlite3")
    state_db = os.environ.get("RF_STATE_DB", "").strip()
    if state_db and isinstance(paths, dict):
        paths["state_db"] = state_db


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def _build_config(cfg: dict[str, Any]) -> Config:
    app_cfg = cfg["app"]
    paths_cfg = cfg["paths"]
    worker_cfg = cfg["worker"]
    analyzer_cfg = cfg["analyzer"]
    api_cfg = cfg["api"]

    return Config(
        app=AppConfig(name=str(app_cfg["name"])),
        paths=PathsConfig(
            data_dir=str(paths_cfg["data_dir"]),
            state_db=str(paths_cfg["state_db"]),
        ),
        worker=WorkerConfig(
            batch_size=int(worker_cfg["batch_size"]),
            idle_sleep_seconds=float(worker_cfg["idle_sleep_seconds"]),
            error_sleep_seconds=float(worker_cfg["error_sleep_seconds"]),
            job_timeout_seconds=float(worker_cfg["job_timeout_seconds"]),
        ),
        analyzer=AnalyzerConfig(
            provider_type=str(analyzer_cfg["provider_type"]),
            base_url=str(analyzer_cfg["base_url"]),
            api_key_env=str(analyzer_cfg["api_key_env"]),
            primary_model=str(analyzer_cfg["primary_model"]),
            secondary_model=str(analyzer_cfg["secondary_model"]),
            max_chars=int(analyzer_cfg["max_chars"]),
            temperature=float(analyzer_cfg["temperature"]),
            max_tokens=int(analyzer_cfg["max_tokens"]),
            timeout_seconds=float(analyzer_cfg["timeout_seconds"]),
        ),
        api=ApiConfig(
            default_page_size=int(api_cfg["default_page_size"]),
            max_page_size=int(api_cfg["max_page_size"]),
        ),
    )


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))

from __future__ import annotations

import json
import os
import time
import warnings
from collections.abc import Callable
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/memworker/config.json").expanduser()

# Provider name under which the host service routes sessions to this worker.
MESSAGES_API_PROVIDER = "anthropic-api"

DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
DEFAULT_ANTHROPIC_BASE_URL = "https://api.anthropic.com"
DEFAULT_CONCURRENCY = 3
DEFAULT_MAX_CONTEXT_MESSAGES = 20
DEFAULT_MAX_ESTIMATED_TOKENS = 100000

CONFIG_ENV_OVERRIDES = {
    "provider": "MEMWORKER_PROVIDER",
    "anthropic_api_key": "MEMWORKER_ANTHROPIC_API_KEY",
    "anthropic_model": "MEMWORKER_ANTHROPIC_MODEL",
    "anthropic_base_url": "MEMWORKER_ANTHROPIC_BASE_URL",
    "anthropic_concurrency": "MEMWORKER_ANTHROPIC_CONCURRENCY",
    "anthropic_max_tokens": "MEMWORKER_ANTHROPIC_MAX_TOKENS",
    "max_context_messages": "MEMWORKER_MAX_CONTEXT_MESSAGES",
    "max_estimated_tokens": "MEMWORKER_MAX_ESTIMATED_TOKENS",
    "request_timeout_s": "MEMWORKER_REQUEST_TIMEOUT_S",
    "config_refresh_s": "MEMWORKER_CONFIG_REFRESH_S",
}

_INT_KEYS = {
    "anthropic_concurrency",
    "anthropic_max_tokens",
    "max_context_messages",
    "max_estimated_tokens",
}
_FLOAT_KEYS = {"request_timeout_s", "config_refresh_s"}

# Settings that must stay positive; anything else falls back to the default.
_POSITIVE_KEYS = {
    "anthropic_concurrency",
    "anthropic_max_tokens",
    "max_context_messages",
    "max_estimated_tokens",
    "request_timeout_s",
}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("MEMWORKER_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class MemWorkerConfig:
    provider: str = MESSAGES_API_PROVIDER
    anthropic_api_key: str | None = None
    anthropic_model: str = DEFAULT_ANTHROPIC_MODEL
    anthropic_base_url: str = DEFAULT_ANTHROPIC_BASE_URL
    anthropic_concurrency: int = DEFAULT_CONCURRENCY
    anthropic_max_tokens: int = 4096
    max_context_messages: int = DEFAULT_MAX_CONTEXT_MESSAGES
    max_estimated_tokens: int = DEFAULT_MAX_ESTIMATED_TOKENS
    request_timeout_s: float = 60.0
    # How long a loaded config stays fresh; 0 reloads on every read.
    config_refresh_s: float = 5.0


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid number for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce(key: str, value: object, current: Any) -> Any:
    if key in _INT_KEYS:
        return _parse_int(value, current, key=key)
    if key in _FLOAT_KEYS:
        return _parse_float(value, current, key=key)
    if value is None:
        return current
    return str(value)


def load_config(path: Path | None = None) -> MemWorkerConfig:
    cfg = MemWorkerConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_env(cfg)
    return _enforce_bounds(cfg)


def _apply_dict(cfg: MemWorkerConfig, data: dict[str, Any]) -> MemWorkerConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        setattr(cfg, key, _coerce(key, value, getattr(cfg, key)))
    return cfg


def _apply_env(cfg: MemWorkerConfig) -> MemWorkerConfig:
    for key, value in get_env_overrides().items():
        setattr(cfg, key, _coerce(key, value, getattr(cfg, key)))
    if not cfg.anthropic_api_key:
        cfg.anthropic_api_key = os.getenv("ANTHROPIC_API_KEY") or None
    return cfg


def _enforce_bounds(cfg: MemWorkerConfig) -> MemWorkerConfig:
    defaults = MemWorkerConfig()
    for key in _POSITIVE_KEYS:
        value = getattr(cfg, key)
        if value <= 0:
            warnings.warn(f"Non-positive value for {key}: {value!r}", RuntimeWarning, stacklevel=3)
            setattr(cfg, key, getattr(defaults, key))
    if cfg.config_refresh_s < 0:
        cfg.config_refresh_s = 0.0
    return cfg


def config_as_dict(cfg: MemWorkerConfig, *, redact_secrets: bool = True) -> dict[str, Any]:
    data = {item.name: getattr(cfg, item.name) for item in fields(cfg)}
    if redact_secrets and data.get("anthropic_api_key"):
        data["anthropic_api_key"] = "[REDACTED]"
    return data


class ConfigProvider:
    """Hands out the current config, reloading it once it goes stale.

    ``refresh_s`` overrides the refresh interval stored in the config itself.
    """

    def __init__(
        self,
        path: Path | None = None,
        *,
        refresh_s: float | None = None,
        loader: Callable[[Path | None], MemWorkerConfig] = load_config,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.path = path
        self.refresh_s = refresh_s
        self._loader = loader
        self._clock = clock
        self._cached: MemWorkerConfig | None = None
        self._loaded_at = 0.0

    @classmethod
    def static(cls, cfg: MemWorkerConfig) -> ConfigProvider:
        return cls(loader=lambda _path: cfg, refresh_s=float("inf"))

    def get(self) -> MemWorkerConfig:
        now = self._clock()
        if self._cached is None or self._is_stale(self._cached, now):
            self._cached = self._loader(self.path)
            self._loaded_at = now
        return self._cached

    def invalidate(self) -> None:
        self._cached = None

    def _is_stale(self, cfg: MemWorkerConfig, now: float) -> bool:
        refresh_s = self.refresh_s if self.refresh_s is not None else cfg.config_refresh_s
        if refresh_s <= 0:
            return True
        return now - self._loaded_at >= refresh_s


def uses_messages_api(cfg: MemWorkerConfig) -> bool:
    """True when the configured provider routes sessions to this worker."""
    return cfg.provider.strip().lower() == MESSAGES_API_PROVIDER

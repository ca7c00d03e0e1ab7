import json
from pathlib import Path

import pytest

from memworker.config import (
    DEFAULT_CONCURRENCY,
    ConfigProvider,
    MemWorkerConfig,
    config_as_dict,
    get_config_path,
    get_env_overrides,
    load_config,
    read_config_file,
    uses_messages_api,
    write_config_file,
)


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_rejects_non_object(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2]")
    with pytest.raises(ValueError, match="config must be an object"):
        read_config_file(config_path)


def test_read_config_file_missing_or_blank_is_empty(tmp_path: Path) -> None:
    assert read_config_file(tmp_path / "absent.json") == {}
    blank = tmp_path / "blank.json"
    blank.write_text("  \n")
    assert read_config_file(blank) == {}


def test_config_path_follows_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEMWORKER_CONFIG", str(tmp_path / "custom.json"))
    assert get_config_path() == tmp_path / "custom.json"


def test_write_then_load_config(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "config.json"
    write_config_file(
        {"anthropic_model": "claude-test", "anthropic_concurrency": 5, "unknown": True},
        config_path,
    )

    cfg = load_config(config_path)

    assert json.loads(config_path.read_text())["anthropic_model"] == "claude-test"
    assert cfg.anthropic_model == "claude-test"
    assert cfg.anthropic_concurrency == 5
    assert not hasattr(cfg, "unknown")


def test_env_overrides_file_values(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"anthropic_concurrency": 2, "max_context_messages": 8}))
    monkeypatch.setenv("MEMWORKER_ANTHROPIC_CONCURRENCY", "6")
    monkeypatch.setenv("MEMWORKER_ANTHROPIC_BASE_URL", "https://proxy.example")

    cfg = load_config(config_path)

    assert get_env_overrides()["anthropic_concurrency"] == "6"
    assert cfg.anthropic_concurrency == 6
    assert cfg.max_context_messages == 8
    assert cfg.anthropic_base_url == "https://proxy.example"


def test_api_key_falls_back_to_anthropic_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-from-env")
    assert load_config().anthropic_api_key == "sk-ant-from-env"

    monkeypatch.setenv("MEMWORKER_ANTHROPIC_API_KEY", "sk-ant-explicit")
    assert load_config().anthropic_api_key == "sk-ant-explicit"


def test_missing_api_key_stays_none() -> None:
    assert load_config().anthropic_api_key is None


def test_invalid_int_warns_and_keeps_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEMWORKER_MAX_CONTEXT_MESSAGES", "lots")

    with pytest.warns(RuntimeWarning, match="Invalid int for max_context_messages"):
        cfg = load_config()

    assert cfg.max_context_messages == 20


def test_non_positive_concurrency_resets_to_default(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"anthropic_concurrency": 0}))

    with pytest.warns(RuntimeWarning, match="anthropic_concurrency"):
        cfg = load_config(config_path)

    assert cfg.anthropic_concurrency == DEFAULT_CONCURRENCY


def test_config_as_dict_redacts_api_key() -> None:
    cfg = MemWorkerConfig(anthropic_api_key="sk-ant-secret")

    assert config_as_dict(cfg)["anthropic_api_key"] == "[REDACTED]"
    assert config_as_dict(cfg, redact_secrets=False)["anthropic_api_key"] == "sk-ant-secret"
    assert config_as_dict(MemWorkerConfig())["anthropic_api_key"] is None


def test_provider_reloads_once_stale() -> None:
    now = [0.0]
    loads: list[int] = []

    def loader(_path: Path | None) -> MemWorkerConfig:
        loads.append(1)
        return MemWorkerConfig(anthropic_concurrency=len(loads))

    provider = ConfigProvider(refresh_s=5, loader=loader, clock=lambda: now[0])

    assert provider.get().anthropic_concurrency == 1
    now[0] = 4.9
    assert provider.get().anthropic_concurrency == 1
    now[0] = 5.0
    assert provider.get().anthropic_concurrency == 2
    provider.invalidate()
    assert provider.get().anthropic_concurrency == 3


def test_provider_uses_refresh_from_config_when_not_overridden() -> None:
    loads: list[int] = []

    def loader(_path: Path | None) -> MemWorkerConfig:
        loads.append(1)
        return MemWorkerConfig(config_refresh_s=0)

    provider = ConfigProvider(loader=loader, clock=lambda: 0.0)
    provider.get()
    provider.get()

    assert len(loads) == 2


def test_provider_picks_up_file_edits(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"max_context_messages": 10}))
    provider = ConfigProvider(config_path, refresh_s=0)

    assert provider.get().max_context_messages == 10
    config_path.write_text(json.dumps({"max_context_messages": 12}))
    assert provider.get().max_context_messages == 12


def test_static_provider_never_reloads() -> None:
    cfg = MemWorkerConfig(anthropic_model="pinned")
    provider = ConfigProvider.static(cfg)

    assert provider.get() is cfg
    assert provider.get() is cfg


def test_provider_selector(monkeypatch: pytest.MonkeyPatch) -> None:
    assert uses_messages_api(load_config())

    monkeypatch.setenv("MEMWORKER_PROVIDER", "claude")
    assert not uses_messages_api(load_config())

    assert uses_messages_api(MemWorkerConfig(provider=" Anthropic-API "))

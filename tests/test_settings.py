"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from datamachine.services.settings import (
    ProviderSettings,
    SecretVault,
    Settings,
    SettingsStore,
    redact_secret,
)


def _store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "settings.key"))


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    assert _store(tmp_path).load() == Settings()


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    store = _store(tmp_path)
    original = Settings(
        default_provider="openai",
        default_model="gpt-4o-mini",
        max_turns=8,
        global_system_prompt="Write in British English.",
        enabled_tools={"web_fetch": True, "google_search": False},
        tool_configs={"google_search": {"api_key": "g-key", "cx": "engine"}},
        providers={
            "openai": ProviderSettings(api_key="sk-secret", request_timeout=30.0),
            "local": ProviderSettings(api_key="local-key", base_url="http://localhost:11434/v1"),
        },
    )

    store.save(original)
    reloaded = _store(tmp_path).load()

    assert reloaded == original


def test_api_keys_encrypted_on_disk(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(Settings(providers={"openai": ProviderSettings(api_key="sk-secret")}))

    raw = json.loads(store.path.read_text(encoding="utf-8"))

    assert "sk-secret" not in store.path.read_text(encoding="utf-8")
    assert raw["providers"]["openai"]["api_key_ciphertext"].startswith("fernet:")
    assert "api_key" not in raw["providers"]["openai"]
    assert raw["version"] == 1


def test_invalid_json_yields_defaults(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.write_text("{not json", encoding="utf-8")

    assert store.load() == Settings()


def test_unknown_fields_ignored(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.write_text(json.dumps({"default_model": "m", "legacy_field": 1}), encoding="utf-8")

    assert store.load().default_model == "m"


def test_undecryptable_key_dropped(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.write_text(
        json.dumps({"providers": {"openai": {"api_key_ciphertext": "fernet:garbage", "request_timeout": 5}}}),
        encoding="utf-8",
    )

    provider = store.load().provider("openai")

    assert provider.api_key == ""
    assert provider.request_timeout == 5


def test_load_applies_cli_overrides(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(Settings(default_model="stored"))

    loaded = store.load(overrides={"default_model": "cli", "max_turns": None, "unknown": 1})

    assert loaded.default_model == "cli"
    assert loaded.max_turns == Settings().max_turns


def test_env_overrides_take_priority_over_cli(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DATAMACHINE_DEFAULT_MODEL", "env-model")
    monkeypatch.setenv("DATAMACHINE_MAX_TURNS", "3")
    monkeypatch.setenv("DATAMACHINE_DEBUG_LOGGING", "yes")
    monkeypatch.setenv("DATAMACHINE_SITE_CONTEXT", "0")

    loaded = _store(tmp_path).load(overrides={"default_model": "cli"})

    assert loaded.default_model == "env-model"
    assert loaded.max_turns == 3
    assert loaded.debug_logging is True
    assert loaded.site_context_enabled is False


def test_invalid_int_env_override_ignored(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DATAMACHINE_MAX_TURNS", "many")

    assert _store(tmp_path).load().max_turns == Settings().max_turns


def test_provider_key_from_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(Settings(providers={"anthropic": ProviderSettings(api_key="stored", max_retries=1)}))
    monkeypatch.setenv("DATAMACHINE_ANTHROPIC_API_KEY", "env-key")
    monkeypatch.setenv("DATAMACHINE_OPENAI_API_KEY", "sk-env")

    loaded = store.load()

    assert loaded.provider("anthropic") == ProviderSettings(api_key="env-key", max_retries=1)
    assert loaded.provider("openai").api_key == "sk-env"


def test_unconfigured_provider_has_defaults() -> None:
    assert Settings().provider("openai") == ProviderSettings()


def test_secret_vault_roundtrip(tmp_path: Path) -> None:
    vault = SecretVault(key_path=tmp_path / "vault.key")

    token = vault.encrypt("top-secret")

    assert token.startswith("fernet:")
    assert SecretVault(key_path=tmp_path / "vault.key").decrypt(token) == "top-secret"
    assert vault.encrypt("") == ""
    assert vault.decrypt("") == ""
    assert vault.decrypt("rot13:abc") == ""


def test_secret_vault_rejects_foreign_token(tmp_path: Path) -> None:
    token = SecretVault(key_path=tmp_path / "a.key").encrypt("secret")

    with pytest.raises(ValueError):
        SecretVault(key_path=tmp_path / "b.key").decrypt(token)


@pytest.mark.parametrize(
    ("value", "expected"),
    [("", ""), ("abc", "***"), ("sk-abcdef", "sk*****ef")],
)
def test_redact_secret(value: str, expected: str) -> None:
    assert redact_secret(value) == expected

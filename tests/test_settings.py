"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from agentloop.services.settings import (
    PricingSettings,
    RuntimeSettings,
    SecretVault,
    Settings,
    SettingsStore,
    redact_secret,
)


def _store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "settings.key"))


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    settings = _store(tmp_path).load()

    assert settings == Settings()
    assert settings.runtime.max_steps == 400


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    store = _store(tmp_path)
    original = Settings(
        base_url="https://example.com/v1",
        api_key="super-secret",
        model="gpt-4.1-mini",
        organization="acme",
        default_headers={"X-Test": "1"},
        metadata={"env": "dev"},
        runtime=RuntimeSettings(max_steps=12, approval_mode="manual", allow_list=["calc"]),
        pricing=PricingSettings(input_per_million=2.5, output_per_million=10.0),
    )

    store.save(original)
    reloaded = _store(tmp_path).load()

    assert reloaded == original


def test_api_key_is_encrypted_on_disk(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(Settings(api_key="super-secret"))

    payload = json.loads((tmp_path / "settings.json").read_text(encoding="utf-8"))

    assert "api_key" not in payload
    assert payload["api_key_ciphertext"].startswith("fernet:")
    assert "super-secret" not in (tmp_path / "settings.json").read_text(encoding="utf-8")


def test_load_legacy_plaintext_api_key_migrates(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(json.dumps({"api_key": "legacy", "model": "old-model"}), encoding="utf-8")

    settings = _store(tmp_path).load()

    assert settings.api_key == "legacy"
    assert settings.model == "old-model"
    migrated = json.loads(target.read_text(encoding="utf-8"))
    assert "api_key" not in migrated
    assert migrated["version"] == 1


def test_invalid_json_falls_back_to_defaults(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text("{not json", encoding="utf-8")

    assert _store(tmp_path).load() == Settings()


def test_unknown_sections_are_ignored(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text(
        json.dumps({"runtime": {"max_steps": 3, "unknown": True}, "pricing": "bad", "mystery": 1}),
        encoding="utf-8",
    )

    settings = _store(tmp_path).load()

    assert settings.runtime.max_steps == 3
    assert settings.pricing == PricingSettings()


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENTLOOP_MODEL", "env-model")
    monkeypatch.setenv("AGENTLOOP_DEBUG_EVENT_LOGGING", "yes")
    monkeypatch.setenv("AGENTLOOP_MAX_STEPS", "7")
    monkeypatch.setenv("AGENTLOOP_TEMPERATURE", "not-a-number")

    settings = _store(tmp_path).load()

    assert settings.model == "env-model"
    assert settings.debug_event_logging is True
    assert settings.runtime.max_steps == 7
    assert settings.temperature == Settings().temperature


def test_caller_overrides_merge_metadata(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(Settings(metadata={"a": 1}))

    settings = store.load(overrides={"metadata": {"b": 2}, "model": None, "nonsense": 1})

    assert settings.metadata == {"a": 1, "b": 2}
    assert settings.model == Settings().model


def test_vault_rejects_unknown_prefix(tmp_path: Path) -> None:
    vault = SecretVault(key_path=tmp_path / "key")

    with pytest.raises(ValueError):
        vault.decrypt("plain:abc")


def test_to_client_settings_copies_connection_fields() -> None:
    client_settings = Settings(api_key="k", model="m", metadata={"n": 1}).to_client_settings()

    assert client_settings.api_key == "k"
    assert client_settings.model == "m"
    assert client_settings.metadata == {"n": "1"}
    assert client_settings.default_headers is None


def test_redact_secret() -> None:
    assert redact_secret("") == ""
    assert redact_secret("abcd") == "****"
    assert redact_secret("sk-123456") == "sk*****56"

from __future__ import annotations

from pathlib import Path

import allure
import pytest

from driverflow.config import (
    SUPPORTED_METHODS,
    ExecutionSettings,
    ManifestSettings,
    SelectionSettings,
    Settings,
)

pytestmark = [
    allure.epic("Staging Runtime"),
    allure.feature("Configuration"),
]


def test_defaults_are_valid() -> None:
    settings = Settings()
    settings.validate()

    assert settings.execution.concurrency == 5
    assert settings.execution.retries == 3
    assert settings.execution.backoff_base_seconds == 2.0
    assert settings.execution.methods == SUPPORTED_METHODS
    assert settings.selection.policy == "latest"


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DRIVERFLOW_CONCURRENCY", "8")
    monkeypatch.setenv("DRIVERFLOW_RETRIES", "0")
    monkeypatch.setenv("DRIVERFLOW_BACKOFF_BASE_SECONDS", "0.5")
    monkeypatch.setenv("DRIVERFLOW_METHODS", " Copy, http ,copy,, ")
    monkeypatch.setenv("DRIVERFLOW_MANIFEST_PATH", str(tmp_path / "env_manifest.json"))
    monkeypatch.setenv("DRIVERFLOW_LOCK_DIR", str(tmp_path / "locks"))
    monkeypatch.setenv("DRIVERFLOW_SELECTION_POLICY", "STRICT")

    settings = Settings.from_env()
    settings.validate()

    assert settings.execution.concurrency == 8
    assert settings.execution.retries == 0
    assert settings.execution.backoff_base_seconds == 0.5
    assert settings.execution.methods == ("copy", "http")
    assert settings.manifest.path == tmp_path / "env_manifest.json"
    assert settings.manifest.lock_dir == tmp_path / "locks"
    assert settings.selection.policy == "strict"


def test_explicit_manifest_path_wins_over_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DRIVERFLOW_MANIFEST_PATH", str(tmp_path / "env.json"))

    settings = Settings.from_env(manifest_path=tmp_path / "cli.json")

    assert settings.manifest.path == tmp_path / "cli.json"


def test_validate_rejects_non_positive_concurrency() -> None:
    settings = Settings(execution=ExecutionSettings(concurrency=0))

    with pytest.raises(ValueError, match="DRIVERFLOW_CONCURRENCY"):
        settings.validate()


def test_validate_rejects_negative_retries() -> None:
    settings = Settings(execution=ExecutionSettings(retries=-1))

    with pytest.raises(ValueError, match="DRIVERFLOW_RETRIES"):
        settings.validate()


def test_validate_rejects_negative_backoff() -> None:
    settings = Settings(execution=ExecutionSettings(backoff_base_seconds=-0.1))

    with pytest.raises(ValueError, match="DRIVERFLOW_BACKOFF_BASE_SECONDS"):
        settings.validate()


def test_validate_rejects_unknown_method() -> None:
    settings = Settings(execution=ExecutionSettings(methods=("http", "ftp")))

    with pytest.raises(ValueError, match="Unsupported method in DRIVERFLOW_METHODS: 'ftp'"):
        settings.validate()


def test_validate_rejects_non_positive_lock_timeout() -> None:
    settings = Settings(manifest=ManifestSettings(lock_timeout_seconds=0))

    with pytest.raises(ValueError, match="DRIVERFLOW_MANIFEST_LOCK_TIMEOUT_SECONDS"):
        settings.validate()


def test_validate_rejects_unknown_selection_policy() -> None:
    settings = Settings(selection=SelectionSettings(policy="newest"))

    with pytest.raises(ValueError, match="Invalid DRIVERFLOW_SELECTION_POLICY"):
        settings.validate()

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from portal_e2e.config import get_config, load_config


_ENV_VARS = (
    "TEST_ENV",
    "BASE_URL",
    "API_URL",
    "TEST_USERNAME",
    "TEST_PASSWORD",
    "TEST_TOTP_SECRET",
    "TOTP_SECRET",
    "STAGING_URL",
    "STAGING_API_URL",
    "STAGING_USERNAME",
    "STAGING_PASSWORD",
    "STAGING_TOTP_SECRET",
    "PROD_URL",
    "PROD_API_URL",
    "PROD_USERNAME",
    "PROD_PASSWORD",
    "PROD_TOTP_SECRET",
    "LOGIN_STEP_ATTEMPTS",
    "LOGIN_PROBE_TIMEOUT_MS",
    "HEADLESS",
    "CI",
    "SLOWMO_MS",
    "DEBUG_DIR",
    "LOG_LEVEL",
    "LOG_FILE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path: Path, name: str, text: str) -> Path:
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    return p


def test_defaults_without_env_or_yaml() -> None:
    cfg = load_config(None)
    assert cfg.environment == "test"
    assert cfg.login.step_attempts == 5
    assert cfg.login.initial_backoff_s == 3.0
    assert cfg.browser.headless is True
    assert cfg.browser.debug_dir == "test-results/debug"

    env = cfg.resolve()
    assert env.is_test_env
    assert env.base_url == ""
    assert not env.credentials.complete


def test_test_environment_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BASE_URL", "https://qa.portal.example/")
    monkeypatch.setenv("API_URL", "https://api.qa.portal.example")
    monkeypatch.setenv("TEST_USERNAME", "qa.user")
    monkeypatch.setenv("TEST_PASSWORD", "pw")
    monkeypatch.setenv("TOTP_SECRET", "GHBAMSEXL7DOEWCE")

    env = get_config()
    assert env.environment == "test"
    assert env.base_url == "https://qa.portal.example"
    assert env.api_url == "https://api.qa.portal.example"
    assert env.credentials.username == "qa.user"
    assert env.credentials.totp_secret == "GHBAMSEXL7DOEWCE"
    assert env.credentials.complete


def test_test_env_selects_staging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_ENV", "staging")
    monkeypatch.setenv("STAGING_URL", "https://staging.portal.example")
    monkeypatch.setenv("STAGING_USERNAME", "stage.user")
    monkeypatch.setenv("STAGING_PASSWORD", "pw")

    env = get_config()
    assert env.is_staging_env
    assert not env.is_test_env and not env.is_prod_env
    assert env.base_url == "https://staging.portal.example"
    assert env.credentials.username == "stage.user"


def test_explicit_environment_wins_over_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_ENV", "staging")
    monkeypatch.setenv("PROD_URL", "https://portal.example")
    assert get_config("prod").is_prod_env
    assert get_config("PROD").base_url == "https://portal.example"


def test_unknown_environment_raises() -> None:
    cfg = load_config(None)
    with pytest.raises(ValueError, match="Environment dev not found in configuration"):
        cfg.resolve("dev")


def test_yaml_overrides_and_env_expansion(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QA_PASSWORD", "from-env")
    cfg_path = _write(
        tmp_path,
        "config.yaml",
        """
environment: test
environments:
  test:
    base_url: "https://qa.portal.example"
    credentials:
      username: "yaml.user"
      password: "${QA_PASSWORD}"
login:
  step_attempts: 3
browser:
  headless: false
""",
    )
    cfg = load_config(cfg_path)
    assert cfg.login.step_attempts == 3
    assert cfg.login.probe_timeout_ms == 10_000
    assert cfg.browser.headless is False

    env = cfg.resolve()
    assert env.credentials.username == "yaml.user"
    assert env.credentials.password == "from-env"


def test_missing_yaml_file_falls_back_to_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BASE_URL", "https://qa.portal.example")
    cfg = load_config(tmp_path / "nope.yaml")
    assert cfg.resolve().base_url == "https://qa.portal.example"


def test_relative_base_url_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BASE_URL", "qa.portal.example")
    with pytest.raises(ValidationError):
        load_config(None)


def test_env_knobs(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOGIN_STEP_ATTEMPTS", "7")
    monkeypatch.setenv("LOGIN_PROBE_TIMEOUT_MS", "not-a-number")
    monkeypatch.setenv("CI", "false")
    monkeypatch.setenv("SLOWMO_MS", "250")
    cfg = load_config(None)
    assert cfg.login.step_attempts == 7
    assert cfg.login.probe_timeout_ms == 10_000
    assert cfg.browser.headless is False
    assert cfg.browser.slow_mo_ms == 250


def test_secrets_are_not_in_repr(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_USERNAME", "qa.user")
    monkeypatch.setenv("TEST_PASSWORD", "hunter2-secret")
    monkeypatch.setenv("TOTP_SECRET", "GHBAMSEXL7DOEWCE")
    text = repr(get_config())
    assert "qa.user" in text
    assert "hunter2-secret" not in text
    assert "GHBAMSEXL7DOEWCE" not in text

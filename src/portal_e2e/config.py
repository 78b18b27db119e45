from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional, Union
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, model_validator


Environment = Literal["test", "staging", "prod"]
ENVIRONMENTS: tuple[str, ...] = ("test", "staging", "prod")

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name, "") or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in {"1", "true", "t", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _environment_from_env(prefix: str, url_var: str, api_var: str) -> dict:
    return {
        "base_url": os.getenv(url_var, ""),
        "api_url": os.getenv(api_var, ""),
        "credentials": {
            "username": os.getenv(f"{prefix}_USERNAME", ""),
            "password": os.getenv(f"{prefix}_PASSWORD", ""),
            "totp_secret": os.getenv(f"{prefix}_TOTP_SECRET", ""),
        },
    }


def _default_config_from_env() -> dict:
    """
    Env-only config so a `.env` file is enough for most runs; YAML is an optional override.
    """
    test_env = _environment_from_env("TEST", "BASE_URL", "API_URL")
    # The test environment's secret is commonly exported without a prefix.
    if not test_env["credentials"]["totp_secret"]:
        test_env["credentials"]["totp_secret"] = os.getenv("TOTP_SECRET", "")

    return {
        "environment": (os.getenv("TEST_ENV", "") or "test").strip().lower(),
        "environments": {
            "test": test_env,
            "staging": _environment_from_env("STAGING", "STAGING_URL", "STAGING_API_URL"),
            "prod": _environment_from_env("PROD", "PROD_URL", "PROD_API_URL"),
        },
        "login": {
            "step_attempts": _env_int("LOGIN_STEP_ATTEMPTS", 5),
            "probe_timeout_ms": _env_int("LOGIN_PROBE_TIMEOUT_MS", 10_000),
        },
        "browser": {
            "headless": _env_bool("HEADLESS", default=_env_bool("CI", default=True)),
            "slow_mo_ms": _env_int("SLOWMO_MS", 0),
            "debug_dir": os.getenv("DEBUG_DIR", "test-results/debug"),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "file_path": os.getenv("LOG_FILE", "test-results/portal-e2e.log"),
        },
    }


class Credentials(BaseModel):
    username: str = ""
    password: str = Field(default="", repr=False)
    totp_secret: str = Field(default="", repr=False)

    @property
    def complete(self) -> bool:
        return bool(self.username and self.password)


class EnvironmentConfig(BaseModel):
    """
    Where one deployment of the portal lives and who logs into it.

    `base_url` is the UI origin (e.g. `https://qa.portal.example`); `api_url` is the REST/GraphQL
    origin used by API-level checks.
    """

    base_url: str = ""
    api_url: str = ""
    credentials: Credentials = Credentials()

    @model_validator(mode="after")
    def _normalize_urls(self) -> "EnvironmentConfig":
        for name in ("base_url", "api_url"):
            value = (getattr(self, name) or "").strip().rstrip("/")
            if value:
                parsed = urlparse(value)
                if not parsed.scheme or not parsed.netloc:
                    raise ValueError(f"{name} must be a full URL like 'https://portal.example' (got {value!r})")
            setattr(self, name, value)
        return self


class EnvConfig(EnvironmentConfig):
    """An `EnvironmentConfig` resolved for a named environment."""

    environment: Environment

    @property
    def is_test_env(self) -> bool:
        return self.environment == "test"

    @property
    def is_staging_env(self) -> bool:
        return self.environment == "staging"

    @property
    def is_prod_env(self) -> bool:
        return self.environment == "prod"


class LoginTimings(BaseModel):
    # Flaky QA networks: 5 attempts per step with a 3s initial backoff.
    step_attempts: int = Field(default=5, ge=1)
    initial_backoff_s: float = Field(default=3.0, ge=0)
    backoff_multiplier: float = Field(default=1.5, ge=1)
    max_backoff_s: float = Field(default=15.0, ge=0)
    probe_timeout_ms: int = Field(default=10_000, ge=0)
    navigation_timeout_ms: int = Field(default=90_000, ge=0)


class BrowserConfig(BaseModel):
    headless: bool = True
    slow_mo_ms: int = 0
    viewport_width: int = 1280
    viewport_height: int = 720
    ignore_https_errors: bool = True
    action_timeout_ms: int = 60_000
    navigation_timeout_ms: int = 60_000
    debug_dir: str = "test-results/debug"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = "test-results/portal-e2e.log"


class AppConfig(BaseModel):
    environment: Environment = "test"
    environments: dict[str, EnvironmentConfig] = Field(default_factory=dict)
    login: LoginTimings = LoginTimings()
    browser: BrowserConfig = BrowserConfig()
    logging: LoggingConfig = LoggingConfig()

    def resolve(self, environment: Optional[str] = None) -> EnvConfig:
        name = (environment or self.environment or "test").strip().lower()
        env = self.environments.get(name)
        if env is None or name not in ENVIRONMENTS:
            raise ValueError(f"Environment {name} not found in configuration")
        return EnvConfig(environment=name, **env.model_dump())


def load_config(path: Optional[Union[str, Path]] = None, environment: Optional[str] = None) -> AppConfig:
    raw: dict = {}
    if path:
        p = Path(path)
        if p.exists():
            raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
            raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    if environment:
        merged["environment"] = environment.strip().lower()
    return AppConfig.model_validate(merged)


def get_config(environment: Optional[str] = None, *, path: Optional[Union[str, Path]] = None) -> EnvConfig:
    """Resolve one environment (default: `TEST_ENV`, else `test`)."""
    return load_config(path).resolve(environment)

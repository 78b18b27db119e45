from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Optional


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
REDACTED = "***"


class RedactingFilter(logging.Filter):
    """
    Replaces known secret values (passwords, TOTP secrets) in formatted log messages.

    Attached to handlers rather than loggers so records from playwright and friends are covered too.
    """

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        super().__init__()
        self._secrets: set[str] = set()
        self.add(*secrets)

    def add(self, *secrets: str) -> None:
        # Very short values would redact random substrings of normal messages.
        self._secrets.update(s for s in secrets if s and len(s) >= 4)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        msg = record.getMessage()
        redacted = msg
        for secret in sorted(self._secrets, key=len, reverse=True):
            redacted = redacted.replace(secret, REDACTED)
        if redacted != msg:
            record.msg = redacted
            record.args = None
        return True


_redactor = RedactingFilter()


def redact_secrets(*secrets: str) -> None:
    """Register values that must never appear in log output."""
    _redactor.add(*secrets)


def configure_logging(level: str = "INFO", file_path: Optional[str] = None) -> None:
    numeric_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    for handler in handlers:
        handler.addFilter(_redactor)

    # force=True: the CLI configures once from env, then again from the loaded YAML.
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, handlers=handlers, force=True)

    # Playwright's driver chatter drowns out the step log at INFO.
    for noisy in ("playwright", "asyncio"):
        logging.getLogger(noisy).setLevel(os.getenv("NOISY_LOG_LEVEL", "WARNING"))


def mask_code(code: str) -> str:
    """Mask a one-time code for logs, keeping the first two digits."""
    if not code:
        return ""
    if len(code) < 4:
        return "*" * len(code)
    return f"{code[:2]}{'*' * (len(code) - 2)}"

from __future__ import annotations

import logging
from pathlib import Path

from portal_e2e.logging_config import RedactingFilter, configure_logging, redact_secrets


def test_redacting_filter_replaces_secrets_in_args() -> None:
    f = RedactingFilter(["hunter2-secret", "ab"])
    rec = logging.LogRecord("x", logging.INFO, __file__, 1, "login as %s with %s", ("qa.user", "hunter2-secret"), None)
    assert f.filter(rec)
    assert rec.getMessage() == "login as qa.user with ***"


def test_short_values_are_not_registered() -> None:
    f = RedactingFilter(["ab"])
    rec = logging.LogRecord("x", logging.INFO, __file__, 1, "tab about", None, None)
    f.filter(rec)
    assert rec.getMessage() == "tab about"


def test_configure_logging_writes_redacted_file(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "run.log"
    configure_logging(level="DEBUG", file_path=str(log_file))
    redact_secrets("GHBAMSEXL7DOEWCE")

    logging.getLogger("portal_e2e.test").info("secret=%s", "GHBAMSEXL7DOEWCE")
    for handler in logging.getLogger().handlers:
        handler.flush()

    text = log_file.read_text(encoding="utf-8")
    assert "secret=***" in text
    assert "GHBAMSEXL7DOEWCE" not in text
    assert logging.getLogger("playwright").level == logging.WARNING

from __future__ import annotations

import zipfile
from pathlib import Path

from portal_e2e.util.debug_bundle import create_debug_bundle


def test_create_debug_bundle_includes_debug_and_log(tmp_path: Path) -> None:
    debug_dir = tmp_path / "debug"
    debug_dir.mkdir()
    (debug_dir / "login-invalid_credentials_20240101_000000.png").write_bytes(b"png")
    (debug_dir / "login-invalid_credentials_20240101_000000.html").write_text("<html/>", encoding="utf-8")

    log_file = tmp_path / "portal-e2e.log"
    log_file.write_text("hello", encoding="utf-8")

    out = create_debug_bundle(
        debug_dir=str(debug_dir),
        log_file=str(log_file),
        out_dir=str(tmp_path / "out"),
        environment="Staging",
    )
    assert out.exists()
    assert out.suffix == ".zip"
    assert out.name.startswith("debug_bundle_staging_")

    with zipfile.ZipFile(out, "r") as z:
        names = set(z.namelist())
        assert "portal-e2e.log" in names
        assert "debug/login-invalid_credentials_20240101_000000.png" in names
        assert "debug/login-invalid_credentials_20240101_000000.html" in names


def test_create_debug_bundle_skips_secrets_and_missing_inputs(tmp_path: Path) -> None:
    extra = tmp_path / "extra-src"
    extra.mkdir()
    (extra / "trace.zip").write_bytes(b"trace")
    (extra / ".env").write_text("TEST_PASSWORD=x", encoding="utf-8")
    (extra / "config.yaml").write_text("environments: {}", encoding="utf-8")

    out = create_debug_bundle(
        debug_dir=str(tmp_path / "does-not-exist"),
        log_file=str(tmp_path / "missing.log"),
        out_dir=str(tmp_path),
        extra_paths=[str(extra)],
    )
    assert out.name.startswith("debug_bundle_")
    assert "_staging_" not in out.name

    with zipfile.ZipFile(out, "r") as z:
        names = set(z.namelist())
    assert names == {"extra/extra-src/trace.zip"}

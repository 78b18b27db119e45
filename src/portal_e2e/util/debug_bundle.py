from __future__ import annotations

import time
import zipfile
from pathlib import Path
from typing import Iterable, Optional


def create_debug_bundle(
    *,
    debug_dir: str,
    log_file: str,
    out_dir: str = "test-results",
    environment: str = "",
    extra_paths: Optional[Iterable[str]] = None,
) -> Path:
    """
    Zip the screenshots/HTML captured by failed steps together with the run log.

    Never includes `.env` or YAML config files, even when they sit inside an extra path.
    """
    out_root = Path(out_dir)
    out_root.mkdir(parents=True, exist_ok=True)

    stamp = time.strftime("%Y%m%d_%H%M%S")
    env_part = f"_{environment.strip().lower()}" if (environment or "").strip() else ""
    out_path = out_root / f"debug_bundle{env_part}_{stamp}.zip"

    dbg = Path(debug_dir)
    log = Path(log_file)

    def _is_secret(p: Path) -> bool:
        return p.name == ".env" or p.name.endswith(".env") or p.suffix in (".yaml", ".yml")

    def _add_file(z: zipfile.ZipFile, file_path: Path, arcname: str) -> None:
        if _is_secret(file_path) or file_path.resolve() == out_path.resolve():
            return
        try:
            if file_path.exists() and file_path.is_file():
                z.write(file_path, arcname=arcname)
        except OSError:
            # a screenshot may be rotated away while we bundle
            return

    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
        _add_file(z, log, arcname=log.name)

        if dbg.is_dir():
            for p in sorted(dbg.rglob("*")):
                if p.is_file():
                    _add_file(z, p, arcname=str(Path("debug") / p.relative_to(dbg)))

        for raw in extra_paths or ():
            p = Path(raw)
            if p.is_file():
                _add_file(z, p, arcname=str(Path("extra") / p.name))
            elif p.is_dir():
                for f in sorted(p.rglob("*")):
                    if f.is_file():
                        _add_file(z, f, arcname=str(Path("extra") / p.name / f.relative_to(p)))

    return out_path

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .auth.login import LoginFlow
from .auth.totp import TotpError, TotpGenerator
from .config import ENVIRONMENTS, load_config
from .logging_config import configure_logging, mask_code, redact_secrets
from .portal.browser import PlaywrightDriver, open_portal_page, save_debug
from .util.debug_bundle import create_debug_bundle


logger = logging.getLogger("portal_e2e")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="portal-e2e")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    login = sub.add_parser("login", help="Log into the portal in a real browser (username, password, TOTP 2FA)")
    login.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    login.add_argument("--environment", choices=ENVIRONMENTS, default=None, help="Target environment (default: TEST_ENV or test)")
    login.add_argument("--headful", action="store_true", help="Run browser headful (debug)")
    login.add_argument("--slowmo-ms", type=int, default=None, help="Playwright slow motion in milliseconds (debug).")
    login.add_argument(
        "--expect-failure",
        action="store_true",
        help="Succeed only if the portal rejects the credentials (negative login check).",
    )
    login.add_argument("--debug-dir", default="", help="Where to write failure screenshots (default: browser.debug_dir)")

    totp = sub.add_parser("totp-code", help="Print the current TOTP code for a secret (masked unless --show)")
    totp.add_argument("--secret", default="", help="Base32 secret (default: TOTP_SECRET)")
    totp.add_argument("--show", action="store_true", help="Print the full code (avoid in logged environments).")

    show = sub.add_parser("show-config", help="Print the resolved environment with secrets masked")
    show.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    show.add_argument("--environment", choices=ENVIRONMENTS, default=None)

    bundle = sub.add_parser("debug-bundle", help="Zip failure screenshots + the run log for sharing")
    bundle.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    bundle.add_argument("--debug-dir", default="", help="Default: browser.debug_dir")
    bundle.add_argument("--log-file", default="", help="Default: logging.file_path")
    bundle.add_argument("--out-dir", default="test-results")

    return p


def _cmd_login(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    configure_logging(level=cfg.logging.level, file_path=cfg.logging.file_path)
    env = cfg.resolve(args.environment)
    redact_secrets(env.credentials.password, env.credentials.totp_secret)

    if not env.base_url:
        raise SystemExit(f"No base URL configured for environment {env.environment!r} (set BASE_URL or a YAML override).")
    if not env.credentials.complete:
        raise SystemExit(f"Missing username/password for environment {env.environment!r}.")

    browser_cfg = cfg.browser.model_copy(
        update={
            "headless": cfg.browser.headless and not args.headful,
            "slow_mo_ms": cfg.browser.slow_mo_ms if args.slowmo_ms is None else args.slowmo_ms,
        }
    )
    debug_dir = args.debug_dir or browser_cfg.debug_dir

    logger.info("Logging into %s (%s) as %s", env.base_url, env.environment, env.credentials.username)
    with TotpGenerator() as totp, open_portal_page(browser_cfg, base_url=env.base_url) as page:
        driver = PlaywrightDriver(
            page,
            base_url=env.base_url,
            navigation_timeout_ms=cfg.login.navigation_timeout_ms,
        )
        flow = LoginFlow(driver, totp, timings=cfg.login)
        try:
            result = flow.login(
                env.credentials.username,
                env.credentials.password,
                env.credentials.totp_secret or None,
                expect_failure=args.expect_failure,
            )
        except TotpError:
            save_debug(page, debug_dir=debug_dir, name_prefix="login-totp-error")
            raise

        if not result.succeeded:
            shot = save_debug(page, debug_dir=debug_dir, name_prefix=f"login-{result.reason.value if result.reason else 'failed'}")
            logger.error("Login did not succeed: %s (artifacts: %s)", result.detail or result.reason, shot)
            return 1

    if result.expected:
        logger.info("Credentials were rejected, as expected.")
    else:
        logger.info("Login OK (steps=%s)", result.steps)
    return 0


def _cmd_totp_code(args: argparse.Namespace) -> int:
    secret = args.secret or os.getenv("TOTP_SECRET", "")
    redact_secrets(secret)
    with TotpGenerator() as totp:
        try:
            code = totp.generate_code(secret or None)
        except TotpError as e:
            logger.error("%s", e)
            return 1
        shown = code if args.show else mask_code(code)
        print(f"{shown} (valid for {totp.seconds_remaining():.0f}s)")
    return 0


def _cmd_show_config(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    env = cfg.resolve(args.environment)
    print(f"environment: {env.environment}")
    print(f"base_url:    {env.base_url or '(unset)'}")
    print(f"api_url:     {env.api_url or '(unset)'}")
    print(f"username:    {env.credentials.username or '(unset)'}")
    print(f"password:    {'***' if env.credentials.password else '(unset)'}")
    print(f"totp_secret: {'***' if env.credentials.totp_secret else '(unset)'}")
    print(f"step budget: {cfg.login.step_attempts} attempts, probe timeout {cfg.login.probe_timeout_ms}ms")
    return 0


def _cmd_debug_bundle(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    out = create_debug_bundle(
        debug_dir=args.debug_dir or cfg.browser.debug_dir,
        log_file=args.log_file or cfg.logging.file_path,
        out_dir=args.out_dir,
        environment=cfg.environment,
    )
    print(str(out))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    if args.cmd == "login":
        return _cmd_login(args)
    if args.cmd == "totp-code":
        return _cmd_totp_code(args)
    if args.cmd == "show-config":
        return _cmd_show_config(args)
    if args.cmd == "debug-bundle":
        return _cmd_debug_bundle(args)

    print(f"Unknown command: {args.cmd}", file=sys.stderr)
    return 2

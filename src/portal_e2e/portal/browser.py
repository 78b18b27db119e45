from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Protocol
from urllib.parse import urljoin

from playwright.sync_api import Page, sync_playwright
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from ..config import BrowserConfig


logger = logging.getLogger(__name__)


class BrowserDriver(Protocol):
    """
    The five browser primitives the login flow is written against.

    `wait_for` reports whether `selector` reached `state` ("visible", "hidden", "attached",
    "detached") within `timeout_ms`; it must not raise on timeout.
    """

    def navigate(self, url: str) -> None: ...

    def fill(self, selector: str, value: str) -> None: ...

    def click(self, selector: str) -> None: ...

    def wait_for(self, selector: str, state: str, timeout_ms: int) -> bool: ...

    def current_url(self) -> str: ...


class PlaywrightDriver:
    """`BrowserDriver` over a synchronous Playwright page."""

    def __init__(
        self,
        page: Page,
        *,
        base_url: str = "",
        navigation_timeout_ms: int = 60_000,
        action_timeout_ms: int = 10_000,
    ) -> None:
        self.page = page
        self.base_url = base_url.rstrip("/")
        self.navigation_timeout_ms = navigation_timeout_ms
        self.action_timeout_ms = action_timeout_ms

    def _absolute(self, url: str) -> str:
        if not self.base_url or re.match(r"^[a-z][a-z0-9+.-]*:", url, re.I):
            return url
        return urljoin(self.base_url + "/", url.lstrip("/"))

    def navigate(self, url: str) -> None:
        target = self._absolute(url)
        logger.debug("Navigating to %s", target)
        self.page.goto(target, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)

    def fill(self, selector: str, value: str) -> None:
        self.page.locator(selector).first.fill(value, timeout=self.action_timeout_ms)

    def click(self, selector: str) -> None:
        self.page.locator(selector).first.click(timeout=self.action_timeout_ms)

    def wait_for(self, selector: str, state: str, timeout_ms: int) -> bool:
        try:
            self.page.locator(selector).first.wait_for(state=state, timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return False
        return True

    def current_url(self) -> str:
        return self.page.url or ""


@contextmanager
def open_portal_page(cfg: BrowserConfig, *, base_url: str) -> Iterator[Page]:
    """
    Launch Chromium, open a fresh context pointed at `base_url`, and yield a page.
    """
    with sync_playwright() as p:
        # Prefer Playwright's bundled Chromium, but fall back to a system-installed browser if the
        # Playwright browser cache is missing.
        slow_mo = int(cfg.slow_mo_ms or 0)
        try:
            browser = p.chromium.launch(headless=cfg.headless, slow_mo=slow_mo)
        except Exception as e:
            msg = str(e)
            if "Executable doesn't exist" not in msg:
                raise

            logger.warning(
                "Playwright Chromium executable missing; falling back to system browser channel. (%s)",
                msg,
            )

            # Try Chrome first, then Edge.
            try:
                browser = p.chromium.launch(headless=cfg.headless, slow_mo=slow_mo, channel="chrome")
            except Exception:
                browser = p.chromium.launch(headless=cfg.headless, slow_mo=slow_mo, channel="msedge")
        try:
            ctx = browser.new_context(
                base_url=base_url or None,
                ignore_https_errors=cfg.ignore_https_errors,
                viewport={"width": cfg.viewport_width, "height": cfg.viewport_height},
                color_scheme="light",
            )
            try:
                page = ctx.new_page()
                page.set_default_timeout(cfg.action_timeout_ms)
                page.set_default_navigation_timeout(cfg.navigation_timeout_ms)
                yield page
            finally:
                ctx.close()
        finally:
            browser.close()


def save_debug(page: Page, *, debug_dir: str, name_prefix: str) -> Optional[Path]:
    """
    Best-effort screenshot + HTML + body text of the current page. Returns the screenshot path.
    """
    safe = re.sub(r"[^a-zA-Z0-9_-]+", "_", name_prefix).strip("_")[:60] or "page"
    try:
        out_dir = Path(debug_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        shot = out_dir / f"{safe}.png"
        page.screenshot(path=str(shot), full_page=True)
        (out_dir / f"{safe}.html").write_text(page.content(), encoding="utf-8")
        # Also save the rendered body text so failures can be read without a browser.
        try:
            (out_dir / f"{safe}.txt").write_text(page.inner_text("body"), encoding="utf-8")
        except Exception:
            logger.debug("Failed to save body text (name=%s).", safe, exc_info=True)
        return shot
    except Exception:
        logger.debug("Failed to save debug artifacts.", exc_info=True)
        return None

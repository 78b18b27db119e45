from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Optional, TypeVar

from playwright.sync_api import Page
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from ..retry import RetryPolicy, retry
from .probes import PortalRoute, classify_route
from .selectors import EventBrowserSelectors, PortalRoutes


logger = logging.getLogger(__name__)
T = TypeVar("T")


class EventBrowserError(RuntimeError):
    pass


class NotAuthenticatedError(EventBrowserError):
    pass


class EventBrowserPage:
    """
    Page object for the monitoring "event browser": a time-ranged, filterable, sortable, paginated
    event table with a details pane and CSV/JSON export.
    """

    def __init__(
        self,
        page: Page,
        *,
        selectors: EventBrowserSelectors = EventBrowserSelectors(),
        routes: PortalRoutes = PortalRoutes(),
        default_timeout_ms: int = 30_000,
        navigation_timeout_ms: int = 45_000,
        policy: RetryPolicy = RetryPolicy(max_attempts=3, initial_delay_s=1.0, multiplier=2.0, max_delay_s=5.0),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.page = page
        self.selectors = selectors
        self.routes = routes
        self.default_timeout_ms = default_timeout_ms
        self.navigation_timeout_ms = navigation_timeout_ms
        self.policy = policy
        self._sleep = sleep

    def _retry(self, label: str, operation: Callable[[], T]) -> T:
        result = retry(
            lambda attempt: operation(),
            is_definitive=lambda e: isinstance(e, NotAuthenticatedError),
            policy=self.policy,
            sleep=self._sleep,
            label=f"event browser {label}",
        )
        if not result.ok:
            if isinstance(result.error, EventBrowserError):
                raise result.error
            raise EventBrowserError(f"Failed to {label}: {result.error}") from result.error
        return result.value

    def _ensure_authenticated(self) -> None:
        route = classify_route(self.page.url, self.routes)
        if route in (PortalRoute.LOGIN, PortalRoute.LOGIN_FAILED, PortalRoute.TWO_FACTOR):
            raise NotAuthenticatedError(f"Not authenticated - on the {route.value} page ({self.page.url})")

    def _wait_visible(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        self.page.wait_for_selector(
            selector,
            state="visible",
            timeout=self.default_timeout_ms if timeout_ms is None else timeout_ms,
        )

    def goto(self) -> None:
        logger.info("Navigating to the event browser.")
        self._ensure_authenticated()
        self.page.goto(self.routes.event_browser_path, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
        self._ensure_authenticated()

        def _wait_for_shell() -> None:
            for selector in (
                self.selectors.event_table,
                self.selectors.refresh_button,
                self.selectors.time_range_selector,
            ):
                self._wait_visible(selector, self.navigation_timeout_ms)
            self.verify_loaded()

        self._retry("load the event browser UI", _wait_for_shell)
        logger.info("Event browser loaded.")

    def verify_loaded(self) -> None:
        self._ensure_authenticated()
        try:
            for selector in (
                self.selectors.portal_header,
                self.selectors.user_profile,
                self.selectors.event_table,
                self.selectors.refresh_button,
                self.selectors.time_range_selector,
            ):
                self._wait_visible(selector, 10_000)
        except PlaywrightTimeoutError as e:
            raise EventBrowserError(f"Event browser did not finish loading: {e}") from e

        error = self.page.locator(self.selectors.error_message)
        if error.count() > 0 and error.first.is_visible():
            raise EventBrowserError(f"Page loaded with error: {(error.first.text_content() or '').strip()}")

        profile = (self.page.locator(self.selectors.user_profile).first.text_content() or "").strip()
        if not profile:
            raise EventBrowserError("User session not properly loaded (empty user profile)")

    def wait_for_events_to_load(self, timeout_ms: Optional[int] = None) -> None:
        timeout = self.default_timeout_ms if timeout_ms is None else timeout_ms
        # Fast responses may never show the spinner at all.
        try:
            self.page.wait_for_selector(self.selectors.loading_spinner, state="visible", timeout=5_000)
            self.page.wait_for_selector(self.selectors.loading_spinner, state="hidden", timeout=timeout)
        except PlaywrightTimeoutError:
            logger.debug("Loading spinner not seen or already hidden.")

        either = f"{self.selectors.event_table}, {self.selectors.no_data_message}"
        self.page.wait_for_selector(either, state="visible", timeout=timeout)

    def select_time_range(self, label: str) -> None:
        def _op() -> None:
            self.page.click(self.selectors.time_range_selector)
            self.page.get_by_text(label, exact=True).first.click()
            self.wait_for_events_to_load()

        self._retry(f"select time range {label!r}", _op)

    def refresh(self) -> None:
        def _op() -> None:
            self.page.click(self.selectors.refresh_button)
            self.wait_for_events_to_load()

        self._retry("refresh events", _op)

    def filter_events(self, term: str) -> None:
        def _op() -> None:
            self.page.fill(self.selectors.filter_input, term)
            self.wait_for_events_to_load()

        self._retry("apply filter", _op)

    def search(self, term: str) -> None:
        def _op() -> None:
            self.page.fill(self.selectors.search_input, term)
            self.page.press(self.selectors.search_input, "Enter")
            self.wait_for_events_to_load()

        self._retry("search events", _op)

    def sort_by_column(self, column_name: str) -> None:
        def _op() -> None:
            header = self.page.locator(self.selectors.column_headers).filter(has_text=column_name)
            header.first.click()
            self.wait_for_events_to_load()

        self._retry(f"sort by {column_name!r}", _op)

    def export_events(self, fmt: str, *, target_dir: str = "test-results/downloads") -> Path:
        out_dir = Path(target_dir)
        out_dir.mkdir(parents=True, exist_ok=True)

        def _op() -> Path:
            with self.page.expect_download(timeout=self.default_timeout_ms) as download_info:
                self.page.click(self.selectors.export_button)
                self.page.get_by_text(fmt, exact=False).first.click()
            download = download_info.value
            path = out_dir / download.suggested_filename
            download.save_as(str(path))
            return path

        path = self._retry(f"export events as {fmt}", _op)
        logger.info("Exported events as %s to %s", fmt, path)
        return path

    def go_to_page(self, page_number: int) -> None:
        def _op() -> None:
            pagination = self.page.locator(self.selectors.pagination_controls)
            pagination.get_by_text(str(page_number), exact=True).first.click()
            self.wait_for_events_to_load()

        self._retry(f"go to page {page_number}", _op)

    def open_event_details(self, index: int) -> None:
        def _op() -> None:
            self.page.locator(self.selectors.event_rows).nth(index).click()
            self._wait_visible(self.selectors.event_details)

        self._retry(f"open details of event #{index}", _op)

    def event_count(self) -> int:
        return self.page.locator(self.selectors.event_rows).count()

    def has_no_data(self) -> bool:
        return self.page.locator(self.selectors.no_data_message).is_visible()

    def event_details_text(self) -> str:
        return (self.page.locator(self.selectors.event_details).first.inner_text() or "").strip()

    def verify_event_details(self, expected: dict[str, str]) -> None:
        text = self.event_details_text()
        missing = {k: v for k, v in expected.items() if v not in text}
        if missing:
            raise EventBrowserError(f"Event details missing expected values: {missing}")

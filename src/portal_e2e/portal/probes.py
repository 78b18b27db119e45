"""
Non-mutating checks that answer "has the UI reached state X?".

Each probe observes the page through a `BrowserDriver` with its own short timeout and reports a
`ProbeResult` and never interacts with the page. All URL interpretation goes through
`classify_route` so the login flow never matches URL strings itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from .browser import BrowserDriver
from .selectors import LoginSelectors, PortalRoutes


class PortalRoute(str, Enum):
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"
    TWO_FACTOR = "two_factor"
    AUTHENTICATED = "authenticated"
    BROWSER_ERROR = "browser_error"
    UNKNOWN = "unknown"


class ContinueOutcome(str, Enum):
    REQUIRES_TWO_FACTOR = "requires_two_factor"
    ALREADY_AUTHENTICATED = "already_authenticated"
    REJECTED = "rejected"
    NAVIGATION_ERROR = "navigation_error"
    PENDING = "pending"


@dataclass(frozen=True)
class ProbeResult:
    reached: bool
    cause: str = ""
    route: Optional[PortalRoute] = None

    @classmethod
    def reached_(cls, route: Optional[PortalRoute] = None) -> "ProbeResult":
        return cls(True, "", route)

    @classmethod
    def not_reached(cls, cause: str, route: Optional[PortalRoute] = None) -> "ProbeResult":
        return cls(False, cause, route)

    def __bool__(self) -> bool:
        return self.reached


def classify_route(url: str, routes: PortalRoutes = PortalRoutes()) -> PortalRoute:
    raw = (url or "").strip()
    if not raw or raw == "about:blank":
        return PortalRoute.UNKNOWN

    parsed = urlparse(raw)
    if parsed.scheme not in ("http", "https"):
        # chrome-error://chromewebdata/ and friends
        return PortalRoute.BROWSER_ERROR

    path = parsed.path or "/"
    fragment = parsed.fragment or ""
    haystack = f"{path}#{fragment}".lower()

    if routes.login_failed_token.lower() in haystack:
        return PortalRoute.LOGIN_FAILED
    if routes.two_factor_token.lower() in haystack:
        return PortalRoute.TWO_FACTOR
    if path.rstrip("/").endswith(routes.landing_path):
        return PortalRoute.AUTHENTICATED
    for login_path in routes.login_paths:
        if path.rstrip("/").endswith(login_path):
            if fragment.strip() in routes.login_fragments:
                return PortalRoute.LOGIN
            # Any other SPA route under the UI shell is an authenticated view.
            return PortalRoute.AUTHENTICATED
    return PortalRoute.UNKNOWN


def is_landing(url: str, routes: PortalRoutes = PortalRoutes()) -> bool:
    parsed = urlparse(url or "")
    return (
        classify_route(url, routes) is PortalRoute.AUTHENTICATED
        and parsed.path.rstrip("/").endswith(routes.landing_path)
        and (not routes.landing_fragment or parsed.fragment.startswith(routes.landing_fragment))
    )


class PageProbes:
    """Probe set bound to one driver, selector set and route table."""

    def __init__(
        self,
        driver: BrowserDriver,
        *,
        selectors: LoginSelectors = LoginSelectors(),
        routes: PortalRoutes = PortalRoutes(),
        timeout_ms: int = 10_000,
    ) -> None:
        self.driver = driver
        self.selectors = selectors
        self.routes = routes
        self.timeout_ms = timeout_ms

    def route(self) -> PortalRoute:
        return classify_route(self.driver.current_url(), self.routes)

    def _visible(self, selector: str, timeout_ms: Optional[int] = None) -> bool:
        return self.driver.wait_for(selector, "visible", self.timeout_ms if timeout_ms is None else timeout_ms)

    def login_form_visible(self) -> ProbeResult:
        route = self.route()
        if route not in (PortalRoute.LOGIN, PortalRoute.LOGIN_FAILED):
            return ProbeResult.not_reached(f"not on the login route ({self.driver.current_url()})", route)
        if not self._visible(self.selectors.username_input):
            return ProbeResult.not_reached("username input not visible", route)
        if not self._visible(self.selectors.continue_button):
            return ProbeResult.not_reached("continue button not visible", route)
        return ProbeResult.reached_(route)

    def password_input_visible(self) -> ProbeResult:
        route = self.route()
        if route is PortalRoute.LOGIN_FAILED:
            return ProbeResult.not_reached("redirected to the login failure page", route)
        if not self._visible(self.selectors.password_input):
            return ProbeResult.not_reached("password input not visible", route)
        return ProbeResult.reached_(route)

    def continue_enabled(self) -> ProbeResult:
        route = self.route()
        enabled = f"{self.selectors.continue_button}:not([disabled])"
        if not self._visible(enabled):
            return ProbeResult.not_reached("continue button not interactive", route)
        return ProbeResult.reached_(route)

    def two_factor_input_visible(self, timeout_ms: Optional[int] = None) -> ProbeResult:
        route = self.route()
        if route is PortalRoute.LOGIN_FAILED:
            return ProbeResult.not_reached("redirected to the login failure page", route)
        if not self._visible(self.selectors.code_inputs, timeout_ms):
            return ProbeResult.not_reached("2FA code inputs not visible", route)
        return ProbeResult.reached_(route)

    def two_factor_submit_visible(self) -> ProbeResult:
        route = self.route()
        enabled = f"{self.selectors.two_factor_submit}:not([disabled])"
        if not self._visible(enabled):
            return ProbeResult.not_reached("2FA submit button not interactive", route)
        return ProbeResult.reached_(route)

    def portal_loaded(self) -> ProbeResult:
        url = self.driver.current_url()
        route = classify_route(url, self.routes)
        if not is_landing(url, self.routes):
            return ProbeResult.not_reached(f"not on the portal landing page ({url})", route)
        if not self._visible(self.selectors.portal_body):
            return ProbeResult.not_reached("portal body not visible", route)
        # Short wait: an error banner, if any, is rendered together with the page.
        if self.driver.wait_for(self.selectors.error_banner, "visible", min(self.timeout_ms, 1_000)):
            return ProbeResult.not_reached("login error banner shown on the portal page", route)
        return ProbeResult.reached_(route)

    def after_continue(self) -> ContinueOutcome:
        """
        Decide where the continue click led. Only `PENDING` means "look again later".
        """
        route = self.route()
        if route is PortalRoute.LOGIN_FAILED:
            return ContinueOutcome.REJECTED
        if route is PortalRoute.TWO_FACTOR:
            return ContinueOutcome.REQUIRES_TWO_FACTOR
        if route is PortalRoute.AUTHENTICATED:
            return ContinueOutcome.ALREADY_AUTHENTICATED
        if route in (PortalRoute.BROWSER_ERROR, PortalRoute.UNKNOWN):
            return ContinueOutcome.NAVIGATION_ERROR
        # Still on the login route: some builds render the code inputs in place.
        if self.two_factor_input_visible(timeout_ms=self.timeout_ms).reached:
            return ContinueOutcome.REQUIRES_TWO_FACTOR
        # The redirect may have landed while we were waiting for the inputs.
        route = self.route()
        if route is PortalRoute.LOGIN_FAILED:
            return ContinueOutcome.REJECTED
        if route is PortalRoute.TWO_FACTOR:
            return ContinueOutcome.REQUIRES_TWO_FACTOR
        if route is PortalRoute.AUTHENTICATED:
            return ContinueOutcome.ALREADY_AUTHENTICATED
        return ContinueOutcome.PENDING

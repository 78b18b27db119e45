from .browser import BrowserDriver, PlaywrightDriver, open_portal_page, save_debug
from .probes import ContinueOutcome, PageProbes, PortalRoute, ProbeResult, classify_route
from .selectors import EventBrowserSelectors, LoginSelectors, PortalRoutes

__all__ = [
    "BrowserDriver",
    "PlaywrightDriver",
    "open_portal_page",
    "save_debug",
    "ContinueOutcome",
    "PageProbes",
    "PortalRoute",
    "ProbeResult",
    "classify_route",
    "EventBrowserSelectors",
    "LoginSelectors",
    "PortalRoutes",
]

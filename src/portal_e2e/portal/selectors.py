from __future__ import annotations

from dataclasses import dataclass


def testid(value: str) -> str:
    return f'[data-testid="{value}"]'


@dataclass(frozen=True)
class LoginSelectors:
    """
    The portal's login UI is a multi-step form keyed by data-testid attributes.
    Keep all UI selectors here for easy maintenance.
    """

    username_input: str = testid("login-textbox-username")
    password_input: str = testid("login-textbox-password")
    continue_button: str = testid("login-btn-continue")
    back_to_login_link: str = testid("link-back-to-login-or-loginform")
    change_user_link: str = testid("link-change-user")

    # 2FA: one single-digit input per code position, then a submit button.
    code_inputs: str = ".code--input"
    two_factor_submit: str = testid("button-twofa-login")

    # Anything on the landing page that signals a failed/partial login.
    error_banner: str = '[data-testid*="error"], .error-message, .alert-error'
    portal_body: str = "body"

    def code_input(self, index: int) -> str:
        return f"{self.code_inputs} >> nth={index}"


@dataclass(frozen=True)
class PortalRoutes:
    login_path: str = "/portal/ui"
    login_paths: tuple[str, ...] = ("/portal/ui", "/portal/login")
    # Fragments under the login path that still show the login form.
    login_fragments: tuple[str, ...] = ("", "/", "login", "/login")
    login_failed_token: str = "loginfail"
    two_factor_token: str = "twofactor"
    landing_path: str = "/portal/portal.html"
    landing_fragment: str = "WELCOME_NEWS"
    event_browser_path: str = "/portal/ui#/monitoring-usage/monitoring-event-browser"


@dataclass(frozen=True)
class EventBrowserSelectors:
    time_range_selector: str = testid("time-range-selector")
    refresh_button: str = testid("refresh-button")
    event_table: str = testid("event-table")
    event_rows: str = testid("event-row")
    filter_input: str = testid("filter-input")
    search_input: str = testid("search-input")
    column_headers: str = testid("column-header")
    export_button: str = testid("export-button")
    pagination_controls: str = testid("pagination-controls")
    loading_spinner: str = testid("loading-spinner")
    no_data_message: str = testid("no-data-message")
    event_details: str = testid("event-details")
    error_message: str = testid("error-message")
    portal_header: str = testid("portal-header")
    user_profile: str = testid("user-profile")

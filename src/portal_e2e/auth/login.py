from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from ..config import LoginTimings
from ..logging_config import mask_code
from ..portal.browser import BrowserDriver
from ..portal.probes import ContinueOutcome, PageProbes, PortalRoute, ProbeResult
from ..portal.selectors import LoginSelectors, PortalRoutes
from ..retry import RetryOutcome, RetryPolicy, RetryResult, retry
from .totp import TotpError, TotpGenerator


logger = logging.getLogger(__name__)


class LoginState(str, Enum):
    START = "start"
    USERNAME_ENTERED = "username_entered"
    PASSWORD_ENTERED = "password_entered"
    CONTINUE_PENDING = "continue_pending"
    TWO_FACTOR_REQUIRED = "two_factor_required"
    TWO_FACTOR_ENTERED = "two_factor_entered"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class FailureReason(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    VERIFICATION_TIMEOUT = "verification_timeout"
    NAVIGATION_ERROR = "navigation_error"
    UNEXPECTED_STATE = "unexpected_state"


_QUICK_CHECK_MS = 500


class StepNotReached(RuntimeError):
    """A step's probe did not report Reached; the step may be retried."""


class NavigationFailed(StepNotReached):
    """The browser could not load a page at all (DNS, connection reset, ...)."""


class DefinitiveStepFailure(RuntimeError):
    """A step observed something retrying cannot fix."""

    def __init__(self, reason: FailureReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class LoginFailedError(RuntimeError):
    def __init__(self, reason: FailureReason, *, state: LoginState, attempts: int, detail: str = "") -> None:
        msg = f"Login failed ({reason.value}) at {state.value} after {attempts} attempt(s)"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)
        self.reason = reason
        self.state = state
        self.attempts = attempts
        self.detail = detail


@dataclass(frozen=True)
class Credential:
    username: str
    password: str = field(repr=False)
    totp_secret: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class LoginResult:
    state: LoginState
    reason: Optional[FailureReason] = None
    failed_at: Optional[LoginState] = None
    attempts: int = 0
    detail: str = ""
    expected: bool = False
    steps: dict[str, int] = field(default_factory=dict)

    @property
    def authenticated(self) -> bool:
        return self.state is LoginState.AUTHENTICATED

    @property
    def succeeded(self) -> bool:
        """True for a login that went the way the caller asked (including an expected rejection)."""
        if self.expected:
            return self.reason is FailureReason.INVALID_CREDENTIALS
        return self.authenticated

    def raise_for_failure(self) -> "LoginResult":
        if self.succeeded:
            return self
        raise LoginFailedError(
            self.reason or FailureReason.UNEXPECTED_STATE,
            state=self.failed_at or self.state,
            attempts=self.attempts,
            detail=self.detail,
        )


class _Abort(Exception):
    """Internal: unwinds `login()` with a terminal result."""

    def __init__(self, result: LoginResult) -> None:
        super().__init__(result.detail)
        self.result = result


def _is_definitive(e: Exception) -> bool:
    return isinstance(e, (DefinitiveStepFailure, TotpError))


class LoginFlow:
    """
    Drives the portal's multi-step login form to AUTHENTICATED or FAILED(reason).

    Every step (open, username, password, continue, 2FA entry, 2FA submit, verification) is an
    action followed by a probe, wrapped in its own retry budget. Transient "not rendered yet"
    results are retried with backoff; a redirect to the login failure route is definitive and ends
    the attempt immediately. TOTP errors are raised to the caller as-is.
    """

    def __init__(
        self,
        driver: BrowserDriver,
        totp: TotpGenerator,
        *,
        timings: LoginTimings = LoginTimings(),
        selectors: LoginSelectors = LoginSelectors(),
        routes: PortalRoutes = PortalRoutes(),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.driver = driver
        self.totp = totp
        self.timings = timings
        self.selectors = selectors
        self.routes = routes
        self.probes = PageProbes(driver, selectors=selectors, routes=routes, timeout_ms=timings.probe_timeout_ms)
        self._sleep = sleep

        self.state = LoginState.START
        self._steps: dict[str, int] = {}
        self._expect_failure = False
        self._codes_requested = 0

    @property
    def codes_requested(self) -> int:
        return self._codes_requested

    def policy(self, max_attempts: Optional[int] = None) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=max_attempts or self.timings.step_attempts,
            initial_delay_s=self.timings.initial_backoff_s,
            multiplier=self.timings.backoff_multiplier,
            max_delay_s=self.timings.max_backoff_s,
        )

    # ---- public API -------------------------------------------------------------------------

    def login(
        self,
        username: str,
        password: str,
        totp_secret: Optional[str] = None,
        expect_failure: bool = False,
    ) -> LoginResult:
        self.state = LoginState.START
        self._steps = {}
        self._expect_failure = expect_failure
        self._codes_requested = 0
        logger.info("Starting login (username=%s expect_failure=%s)", username, expect_failure)

        try:
            self._run_step("open_login_page", self._open_login_page)
            self._run_step("enter_username", lambda attempt: self._enter_username(username))
            self.state = LoginState.USERNAME_ENTERED
            self._run_step("enter_password", lambda attempt: self._enter_password(password))
            self.state = LoginState.PASSWORD_ENTERED

            self.state = LoginState.CONTINUE_PENDING
            outcome = self._run_step(
                "continue",
                self._click_continue,
                max_attempts=1 if expect_failure else None,
            )

            if expect_failure:
                return self._fail(
                    FailureReason.UNEXPECTED_STATE,
                    attempts=self._steps["continue"],
                    detail=f"credentials were accepted ({outcome.value}) but a rejection was expected",
                )

            if outcome is ContinueOutcome.REQUIRES_TWO_FACTOR:
                self.state = LoginState.TWO_FACTOR_REQUIRED
                logger.info("Credentials accepted; 2FA required.")
                self._run_step("enter_two_factor", lambda attempt: self._enter_two_factor(totp_secret))
                self.state = LoginState.TWO_FACTOR_ENTERED
                self._run_step("submit_two_factor", lambda attempt: self._submit_two_factor(attempt, totp_secret))
            else:
                logger.info("Continue landed on the portal directly; single-factor login.")

            self._run_step("verify_login", lambda attempt: self._verify_login())
        except _Abort as abort:
            return abort.result

        self.state = LoginState.AUTHENTICATED
        logger.info("Login successful (steps=%s)", self._steps)
        return LoginResult(LoginState.AUTHENTICATED, steps=dict(self._steps))

    def login_as(self, credential: Credential, *, expect_failure: bool = False) -> LoginResult:
        return self.login(
            credential.username,
            credential.password,
            credential.totp_secret,
            expect_failure=expect_failure,
        )

    def back_to_login(self) -> None:
        """Follow the "back to login" link from the failure page and wait for the form."""

        def _op(attempt: int) -> None:
            self.driver.click(self.selectors.back_to_login_link)
            self._require(self.probes.login_form_visible())

        result = retry(_op, is_definitive=_is_definitive, policy=self.policy(), sleep=self._sleep, label="back_to_login")
        if not result.ok:
            raise LoginFailedError(
                FailureReason.VERIFICATION_TIMEOUT,
                state=self.state,
                attempts=result.attempts,
                detail=str(result.error),
            )
        self.state = LoginState.START

    # ---- step plumbing ----------------------------------------------------------------------

    def _run_step(self, name: str, operation: Callable[[int], object], *, max_attempts: Optional[int] = None):
        result: RetryResult = retry(
            operation,
            is_definitive=_is_definitive,
            policy=self.policy(max_attempts),
            sleep=self._sleep,
            label=f"login step {name}",
        )
        self._steps[name] = result.attempts

        if result.outcome is RetryOutcome.OK:
            return result.value

        err = result.error
        if isinstance(err, TotpError):
            err.state = self.state
            err.attempts = result.attempts
            logger.error("Login aborted at %s (step=%s): %s", self.state.value, name, err)
            raise err
        if result.outcome is RetryOutcome.DEFINITIVE_FAILURE and isinstance(err, DefinitiveStepFailure):
            if err.reason is FailureReason.INVALID_CREDENTIALS and self._expect_failure:
                logger.info("Credentials rejected as expected (step=%s).", name)
                raise _Abort(
                    LoginResult(
                        LoginState.FAILED,
                        reason=FailureReason.INVALID_CREDENTIALS,
                        failed_at=self.state,
                        attempts=result.attempts,
                        detail=str(err),
                        expected=True,
                        steps=dict(self._steps),
                    )
                )
            self._fail(err.reason, attempts=result.attempts, detail=str(err), abort=True)
        if isinstance(err, NavigationFailed):
            self._fail(FailureReason.NAVIGATION_ERROR, attempts=result.attempts, detail=str(err), abort=True)
        self._fail(FailureReason.VERIFICATION_TIMEOUT, attempts=result.attempts, detail=str(err), abort=True)

    def _fail(self, reason: FailureReason, *, attempts: int, detail: str, abort: bool = False) -> LoginResult:
        failed_at = self.state
        logger.error("Login failed (%s) at %s after %d attempt(s): %s", reason.value, failed_at.value, attempts, detail)
        self.state = LoginState.FAILED
        result = LoginResult(
            LoginState.FAILED,
            reason=reason,
            failed_at=failed_at,
            attempts=attempts,
            detail=detail,
            expected=self._expect_failure,
            steps=dict(self._steps),
        )
        if abort:
            raise _Abort(result)
        return result

    def _require(self, probe: ProbeResult) -> None:
        if probe.reached:
            return
        if probe.route is PortalRoute.LOGIN_FAILED:
            raise DefinitiveStepFailure(FailureReason.INVALID_CREDENTIALS, "redirected to the login failure page")
        if probe.route is PortalRoute.BROWSER_ERROR:
            raise DefinitiveStepFailure(FailureReason.NAVIGATION_ERROR, f"browser error page ({self.driver.current_url()})")
        raise StepNotReached(probe.cause)

    # ---- steps ------------------------------------------------------------------------------

    def _open_login_page(self, attempt: int) -> None:
        try:
            self.driver.navigate(self.routes.login_path)
        except Exception as e:
            raise NavigationFailed(f"could not load the login page: {e}") from e
        self._change_user_if_visible()
        # Nothing has been submitted yet, so even an error page here is worth another try.
        probe = self.probes.login_form_visible()
        if not probe.reached:
            raise StepNotReached(probe.cause)

    def _change_user_if_visible(self) -> None:
        # The portal remembers the last user and shows "Change user" instead of the username field.
        if self.driver.wait_for(self.selectors.change_user_link, "visible", min(self.timings.probe_timeout_ms, 3_000)):
            logger.info("Change user link visible; clicking it.")
            self.driver.click(self.selectors.change_user_link)

    def _enter_username(self, username: str) -> None:
        if not self.driver.wait_for(self.selectors.username_input, "visible", self.timings.probe_timeout_ms):
            raise StepNotReached("username input not visible")
        self.driver.fill(self.selectors.username_input, username)
        self._require(self.probes.password_input_visible())

    def _enter_password(self, password: str) -> None:
        self.driver.fill(self.selectors.password_input, password)
        self._require(self.probes.continue_enabled())

    def _click_continue(self, attempt: int) -> ContinueOutcome:
        if attempt > 1:
            # The previous click's redirect may land during the backoff; look again before re-clicking.
            outcome = self.probes.after_continue()
            if outcome is not ContinueOutcome.PENDING:
                logger.info("Previous continue click landed late: %s", outcome.value)
                return self._continue_result(outcome)

        if self.probes.route() is PortalRoute.LOGIN and self.driver.wait_for(
            self.selectors.continue_button, "visible", self.timings.probe_timeout_ms
        ):
            logger.info("Clicking continue (attempt %d).", attempt)
            self.driver.click(self.selectors.continue_button)

        return self._continue_result(self.probes.after_continue())

    def _continue_result(self, outcome: ContinueOutcome) -> ContinueOutcome:
        logger.info("After continue: %s (url=%s)", outcome.value, self.driver.current_url())
        if outcome is ContinueOutcome.REJECTED:
            raise DefinitiveStepFailure(FailureReason.INVALID_CREDENTIALS, "redirected to the login failure page")
        if outcome is ContinueOutcome.NAVIGATION_ERROR:
            raise DefinitiveStepFailure(
                FailureReason.NAVIGATION_ERROR,
                f"continue led to an unrecognised page ({self.driver.current_url()})",
            )
        if outcome is ContinueOutcome.PENDING:
            raise StepNotReached("still on the login form after continue")
        return outcome

    def _fill_code(self, totp_secret: Optional[str]) -> None:
        code = self.totp.generate_code(totp_secret)
        self._codes_requested += 1
        logger.info(
            "Entering 2FA code %s (%.0fs left in time step)",
            mask_code(code),
            self.totp.seconds_remaining(),
        )
        for i, digit in enumerate(code):
            self.driver.fill(self.selectors.code_input(i), digit)

    def _enter_two_factor(self, totp_secret: Optional[str]) -> None:
        self._require(self.probes.two_factor_input_visible())
        self._fill_code(totp_secret)
        self._require(self.probes.two_factor_submit_visible())

    def _submit_two_factor(self, attempt: int, totp_secret: Optional[str]) -> None:
        if attempt > 1:
            if self.probes.route() is PortalRoute.AUTHENTICATED:
                # The previous click landed after its probe gave up.
                return
            # The previous code may have expired or been rejected: never resubmit it.
            self._require(self.probes.two_factor_input_visible())
            self._fill_code(totp_secret)
        self.driver.click(self.selectors.two_factor_submit)

        self.driver.wait_for(self.selectors.code_inputs, "hidden", self.timings.probe_timeout_ms)
        route = self.probes.route()
        if route is PortalRoute.AUTHENTICATED:
            return
        if route is PortalRoute.LOGIN_FAILED:
            raise DefinitiveStepFailure(FailureReason.INVALID_CREDENTIALS, "2FA rejected (login failure page)")
        if route in (PortalRoute.BROWSER_ERROR, PortalRoute.UNKNOWN):
            raise DefinitiveStepFailure(
                FailureReason.NAVIGATION_ERROR,
                f"2FA submit led to an unrecognised page ({self.driver.current_url()})",
            )
        if route is PortalRoute.TWO_FACTOR:
            raise StepNotReached("2FA prompt still shown after submitting the code")
        # LOGIN: fine only while the in-place 2FA prompt is still up.
        if self.driver.wait_for(self.selectors.code_inputs, "visible", _QUICK_CHECK_MS):
            raise StepNotReached("2FA prompt still shown after submitting the code")
        raise DefinitiveStepFailure(FailureReason.UNEXPECTED_STATE, "returned to the login form after 2FA")

    def _verify_login(self) -> None:
        probe = self.probes.portal_loaded()
        if probe.route is PortalRoute.LOGIN:
            raise DefinitiveStepFailure(FailureReason.UNEXPECTED_STATE, "session dropped back to the login form")
        self._require(probe)

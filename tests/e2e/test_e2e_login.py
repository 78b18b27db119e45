from __future__ import annotations

import pytest

from portal_e2e.auth.login import FailureReason, LoginFlow, LoginResult, LoginState
from portal_e2e.config import EnvConfig
from portal_e2e.portal.probes import PortalRoute


pytestmark = pytest.mark.portal


def test_login_with_valid_credentials_reaches_portal(logged_in: LoginResult, login_flow: LoginFlow) -> None:
    assert logged_in.authenticated
    assert login_flow.probes.route() is PortalRoute.AUTHENTICATED
    assert login_flow.probes.portal_loaded().reached


def test_invalid_password_is_rejected(login_flow: LoginFlow, env_config: EnvConfig) -> None:
    res = login_flow.login(env_config.credentials.username, "definitely-not-the-password", expect_failure=True)
    assert res.succeeded, res.detail
    assert res.reason is FailureReason.INVALID_CREDENTIALS
    assert login_flow.codes_requested == 0


def test_invalid_username_is_rejected(login_flow: LoginFlow) -> None:
    res = login_flow.login("no-such-user@example.invalid", "whatever", expect_failure=True)
    assert res.succeeded, res.detail


def test_back_to_login_after_rejection(login_flow: LoginFlow, env_config: EnvConfig) -> None:
    res = login_flow.login(env_config.credentials.username, "definitely-not-the-password", expect_failure=True)
    assert res.succeeded, res.detail

    login_flow.back_to_login()
    assert login_flow.state is LoginState.START
    assert login_flow.probes.login_form_visible().reached

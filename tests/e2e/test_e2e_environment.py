from __future__ import annotations

import pytest

from portal_e2e.config import EnvConfig
from portal_e2e.portal.probes import PortalRoute, classify_route


pytestmark = pytest.mark.portal


def test_environment_is_consistent(env_config: EnvConfig) -> None:
    flags = [env_config.is_test_env, env_config.is_staging_env, env_config.is_prod_env]
    assert flags.count(True) == 1
    assert env_config.base_url.startswith(("http://", "https://"))


def test_login_page_is_reachable(page, env_config: EnvConfig) -> None:
    resp = page.goto("/portal/ui", wait_until="domcontentloaded")
    assert resp is None or resp.ok, f"login page returned HTTP {resp.status if resp else '?'}"
    assert classify_route(page.url) in (PortalRoute.LOGIN, PortalRoute.AUTHENTICATED)


def test_api_is_reachable(page, env_config: EnvConfig) -> None:
    if not env_config.api_url:
        pytest.skip("No API URL configured for this environment.")
    resp = page.request.get(env_config.api_url, fail_on_status_code=False)
    assert resp.status < 500, f"API at {env_config.api_url} returned HTTP {resp.status}"

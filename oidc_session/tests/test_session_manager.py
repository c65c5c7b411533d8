"""
Tests for SessionManager: login flow, access token retrieval, refresh outcomes, logout.
The provider is simulated with httpx.MockTransport.
"""
import time
from urllib.parse import parse_qs, urlsplit

import httpx
import jwt
import pytest

from oidc_session.cookies import CookieJar
from oidc_session.crypto import CryptoSuite
from oidc_session.errors import (
    AuthorizationDenied,
    ConfigUnavailable,
    RefreshFailed,
    StateMismatch,
    TokenExchangeFailed,
)
from oidc_session.manager import SessionManager
from oidc_session.realm import RealmConfigCache

REALM = "https://idp/realms/demo"
SIGNING_SECRET = "test-signing-secret-0123456789abcdef"
CRYPTO = CryptoSuite("aes-256-gcm", b"0123456789abcdef0123456789abcdef")

DISCOVERY = {
    "issuer": REALM,
    "authorization_endpoint": "https://idp/auth",
    "token_endpoint": "https://idp/token",
    "end_session_endpoint": "https://idp/logout",
}


def _jwt(lifetime: int = 300, **claims) -> str:
    return jwt.encode({"exp": int(time.time()) + lifetime, **claims}, SIGNING_SECRET, algorithm="HS256")


class FakeProvider:
    """Discovery + token endpoint with queued token responses; records every request."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.discovery = dict(DISCOVERY)
        self.discovery_status = 200
        self.token_responses: list[httpx.Response] = []
        self.token_error: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/.well-known/openid-configuration"):
            return httpx.Response(self.discovery_status, json=self.discovery)
        if request.url.path == "/token":
            if self.token_error is not None:
                raise self.token_error
            return self.token_responses.pop(0)
        return httpx.Response(404)

    def token_calls(self) -> list[dict]:
        return [
            {k: v[0] for k, v in parse_qs(r.content.decode()).items()}
            for r in self.requests
            if r.url.path == "/token"
        ]

    def discovery_calls(self) -> int:
        return sum(1 for r in self.requests if r.url.path.endswith("/openid-configuration"))


def token_response(access: str | None = None, refresh: str | None = None, status: int = 200) -> httpx.Response:
    return httpx.Response(
        status,
        json={
            "access_token": access or _jwt(300, sub="u1"),
            "refresh_token": refresh or _jwt(1800, sub="u1"),
            "expires_in": 300,
            "refresh_expires_in": 1800,
            "token_type": "Bearer",
            "scope": "openid profile",
            "session_state": "sess-1",
        },
    )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def make_manager(provider):
    http = httpx.Client(transport=httpx.MockTransport(provider.handler))

    def _make(cookies: dict | None = None, **kwargs) -> tuple[SessionManager, CookieJar]:
        jar = CookieJar(cookies)
        manager = SessionManager(
            jar,
            http_client=http,
            realm=REALM,
            base_url="https://app",
            client_id="demo",
            client_secret="s3cret",
            crypto=CRYPTO,
            **kwargs,
        )
        return manager, jar

    yield _make
    http.close()


def _logged_in_cookies(access: str | None = "at-current", refresh: str = "rt-current") -> dict:
    cookies = {"refresh-token": CRYPTO.encrypt(refresh)}
    if access is not None:
        cookies["access-token"] = access
    return cookies


# --- login flow ---


def test_start_login_flow_builds_authorization_url(make_manager, provider):
    manager, jar = make_manager()
    url = manager.start_login_flow()

    state = jar.get("auth-state")
    assert state
    assert url == (
        "https://idp/auth?client_id=demo&response_type=code"
        f"&redirect_uri=https%3A%2F%2Fapp%2Flogin&state={state}"
    )
    assert [r.name for r in jar.records] == ["auth-state"]
    assert provider.token_calls() == []


def test_start_login_flow_state_is_unpredictable(make_manager):
    states = set()
    for _ in range(5):
        manager, jar = make_manager()
        manager.start_login_flow()
        states.add(jar.get("auth-state"))
    assert len(states) == 5
    assert all(len(s) >= 32 for s in states)


def test_start_login_flow_keeps_existing_endpoint_query(make_manager, provider):
    provider.discovery["authorization_endpoint"] = "https://idp/auth?kc_idp_hint=corp"
    manager, _ = make_manager()
    url = manager.start_login_flow()
    assert url.startswith("https://idp/auth?kc_idp_hint=corp&client_id=demo&")


def test_complete_login_flow_stores_tokens(make_manager, provider):
    access, refresh = _jwt(300, sub="u1"), _jwt(1800, sub="u1")
    provider.token_responses.append(token_response(access, refresh))
    manager, jar = make_manager({"auth-state": "state-1"})

    assert manager.complete_login_flow("state-1", "code-1") == "/"

    (call,) = provider.token_calls()
    assert call == {
        "client_id": "demo",
        "client_secret": "s3cret",
        "grant_type": "authorization_code",
        "code": "code-1",
        "redirect_uri": "https://app/login",
    }
    assert jar.get("access-token") == access
    assert CRYPTO.decrypt(jar.get("refresh-token")) == refresh
    assert manager.is_logged_in()


@pytest.mark.parametrize("state", [None, "", "other-state", "\u00e9t\u00e9"])
def test_complete_login_flow_rejects_bad_state(make_manager, provider, state):
    manager, jar = make_manager({"auth-state": "state-1"})
    with pytest.raises(StateMismatch):
        manager.complete_login_flow(state, "code-1")
    assert provider.requests == []
    assert jar.records == []


def test_complete_login_flow_non_ascii_cookie_state(make_manager, provider):
    manager, _ = make_manager({"auth-state": "caf\u00e9"})
    with pytest.raises(StateMismatch):
        manager.complete_login_flow("state-1", "code-1")
    assert provider.requests == []


def test_complete_login_flow_without_state_cookie(make_manager):
    manager, _ = make_manager()
    with pytest.raises(StateMismatch):
        manager.complete_login_flow("state-1", "code-1")


def test_complete_login_flow_with_out_of_range_exp(make_manager, provider):
    access = jwt.encode({"exp": 10**12, "sub": "u1"}, SIGNING_SECRET, algorithm="HS256")
    refresh = jwt.encode({"exp": -(10**12), "sub": "u1"}, SIGNING_SECRET, algorithm="HS256")
    provider.token_responses.append(token_response(access, refresh))
    manager, jar = make_manager({"auth-state": "state-1"})

    assert manager.complete_login_flow("state-1", "code-1") == "/"
    assert all(r.expires is None for r in jar.records)
    assert manager.get_expirations().access_token is None
    assert manager.is_logged_in()


def test_complete_login_flow_rejected_code(make_manager, provider):
    provider.token_responses.append(
        httpx.Response(400, json={"error": "invalid_grant", "error_description": "Code not valid"})
    )
    manager, jar = make_manager({"auth-state": "state-1"})
    with pytest.raises(TokenExchangeFailed) as exc:
        manager.complete_login_flow("state-1", "code-1")
    assert exc.value.status_code == 400
    assert exc.value.error == "invalid_grant"
    assert jar.get("access-token") is None
    assert not manager.is_logged_in()


@pytest.mark.parametrize(
    "body",
    [
        {"access_token": "at"},
        {"access_token": 1, "refresh_token": "rt"},
        ["access_token", "refresh_token"],
    ],
)
def test_complete_login_flow_malformed_tokens(make_manager, provider, body):
    provider.token_responses.append(httpx.Response(200, json=body))
    manager, _ = make_manager({"auth-state": "state-1"})
    with pytest.raises(TokenExchangeFailed):
        manager.complete_login_flow("state-1", "code-1")


def test_complete_login_flow_non_json_body(make_manager, provider):
    provider.token_responses.append(httpx.Response(200, text="<html>oops</html>"))
    manager, _ = make_manager({"auth-state": "state-1"})
    with pytest.raises(TokenExchangeFailed):
        manager.complete_login_flow("state-1", "code-1")


def test_handle_login_flow_dispatches(make_manager, provider):
    manager, jar = make_manager()
    url = manager.handle_login_flow({})
    assert url.startswith("https://idp/auth?")

    provider.token_responses.append(token_response())
    state = jar.get("auth-state")
    assert manager.handle_login_flow({"state": state, "code": "code-1"}) == "/"
    assert manager.is_logged_in()


def test_handle_login_flow_provider_error(make_manager, provider):
    manager, _ = make_manager({"auth-state": "state-1"})
    with pytest.raises(AuthorizationDenied) as exc:
        manager.handle_login_flow({"error": "access_denied", "error_description": "User denied", "state": "state-1"})
    assert exc.value.error == "access_denied"
    assert provider.requests == []


# --- access token / refresh ---


def test_get_access_token_uses_cookie_without_network(make_manager, provider):
    manager, _ = make_manager(_logged_in_cookies(access="at-current"))
    assert manager.get_access_token() == "at-current"
    assert provider.requests == []


def test_get_access_token_refreshes_once_when_missing(make_manager, provider):
    new_access, new_refresh = _jwt(300, sub="u1"), _jwt(1800, sub="u1")
    provider.token_responses.append(token_response(new_access, new_refresh))
    manager, jar = make_manager(_logged_in_cookies(access=None, refresh="rt-current"))

    assert manager.get_access_token() == new_access

    (call,) = provider.token_calls()
    assert call == {
        "client_id": "demo",
        "client_secret": "s3cret",
        "grant_type": "refresh_token",
        "refresh_token": "rt-current",
    }
    assert CRYPTO.decrypt(jar.get("refresh-token")) == new_refresh


def test_get_access_token_logged_out(make_manager, provider):
    manager, _ = make_manager()
    assert manager.get_access_token() is None
    assert provider.requests == []


def test_refresh_without_refresh_token_is_noop(make_manager, provider):
    manager, jar = make_manager({"access-token": "at-only"})
    manager.refresh()
    assert provider.requests == []
    assert jar.records == []


def test_refresh_session_not_active_logs_out(make_manager, provider):
    provider.token_responses.append(
        httpx.Response(400, json={"error": "invalid_grant", "error_description": "Session not active"})
    )
    manager, jar = make_manager(_logged_in_cookies())

    manager.refresh()

    assert jar.get("access-token") is None
    assert jar.get("refresh-token") is None
    assert {r.name for r in jar.records if r.delete} == {"access-token", "refresh-token"}
    assert manager.is_logged_in() is False


def test_refresh_other_invalid_grant_is_an_error(make_manager, provider):
    provider.token_responses.append(
        httpx.Response(400, json={"error": "invalid_grant", "error_description": "Token is not active"})
    )
    manager, jar = make_manager(_logged_in_cookies())
    with pytest.raises(RefreshFailed):
        manager.refresh()
    assert jar.records == []


def test_refresh_server_error_keeps_cookies(make_manager, provider):
    provider.token_responses.append(httpx.Response(500, json={"error": "server_error"}))
    cookies = _logged_in_cookies()
    manager, jar = make_manager(cookies)

    with pytest.raises(RefreshFailed) as exc:
        manager.refresh()

    assert exc.value.status_code == 500
    assert jar.records == []
    assert jar.get("access-token") == cookies["access-token"]
    assert jar.get("refresh-token") == cookies["refresh-token"]
    assert manager.is_logged_in()


def test_refresh_malformed_success_keeps_cookies(make_manager, provider):
    provider.token_responses.append(httpx.Response(200, json={"access_token": "only-access"}))
    manager, jar = make_manager(_logged_in_cookies())
    with pytest.raises(RefreshFailed):
        manager.refresh()
    assert jar.records == []


def test_refresh_network_error(make_manager, provider):
    provider.token_error = httpx.ConnectError("connection refused")
    manager, jar = make_manager(_logged_in_cookies())
    with pytest.raises(RefreshFailed):
        manager.refresh()
    assert jar.records == []


# --- session state ---


def test_is_logged_in_follows_refresh_cookie(make_manager):
    assert make_manager()[0].is_logged_in() is False
    assert make_manager({"access-token": "at"})[0].is_logged_in() is False
    assert make_manager(_logged_in_cookies(access=None))[0].is_logged_in() is True


def test_is_logged_in_false_for_corrupt_cookie(make_manager):
    manager, _ = make_manager({"refresh-token": "garbage.from.elsewhere"})
    assert manager.is_logged_in() is False


def test_get_expirations(make_manager):
    now = int(time.time())
    access = jwt.encode({"exp": now + 60}, SIGNING_SECRET, algorithm="HS256")
    refresh = jwt.encode({"exp": now + 600}, SIGNING_SECRET, algorithm="HS256")
    manager, _ = make_manager({"access-token": access, "refresh-token": CRYPTO.encrypt(refresh)})
    exp = manager.get_expirations()
    assert int(exp.access_token.timestamp()) == now + 60
    assert int(exp.refresh_token.timestamp()) == now + 600


def test_get_expirations_logged_out(make_manager):
    exp = make_manager()[0].get_expirations()
    assert exp.access_token is None
    assert exp.refresh_token is None


# --- logout ---


def test_logout_builds_end_session_url(make_manager):
    manager, jar = make_manager(_logged_in_cookies())
    url = manager.logout()

    parts = urlsplit(url)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://idp/logout"
    assert parse_qs(parts.query) == {"post_logout_redirect_uri": ["https://app/"], "client_id": ["demo"]}
    assert jar.get("access-token") is None
    assert manager.is_logged_in() is False


def test_logout_clears_cookies_even_if_config_fails(make_manager, provider):
    provider.discovery_status = 503
    manager, jar = make_manager(_logged_in_cookies())
    with pytest.raises(ConfigUnavailable):
        manager.logout()
    assert {r.name for r in jar.records if r.delete} == {"access-token", "refresh-token"}


# --- realm config ---


def test_realm_config_fetched_once_per_manager(make_manager, provider):
    provider.token_responses.append(token_response())
    manager, jar = make_manager()
    manager.start_login_flow()
    manager.complete_login_flow(jar.get("auth-state"), "code-1")
    manager.logout()
    assert provider.discovery_calls() == 1


def test_separate_managers_fetch_separately(make_manager, provider):
    make_manager()[0].start_login_flow()
    make_manager()[0].start_login_flow()
    assert provider.discovery_calls() == 2


def test_shared_cache_spans_managers(make_manager, provider):
    cache = RealmConfigCache()
    make_manager(realm_cache=cache)[0].start_login_flow()
    make_manager(realm_cache=cache)[0].start_login_flow()
    assert provider.discovery_calls() == 1


@pytest.mark.parametrize(
    "document",
    [
        {"authorization_endpoint": "https://idp/auth", "token_endpoint": "https://idp/token"},
        {**DISCOVERY, "token_endpoint": 42},
        {**DISCOVERY, "end_session_endpoint": None},
    ],
)
def test_invalid_discovery_document(make_manager, provider, document):
    provider.discovery = document
    manager, _ = make_manager()
    with pytest.raises(ConfigUnavailable):
        manager.start_login_flow()


def test_discovery_failure_is_not_memoised(make_manager, provider):
    provider.discovery_status = 500
    manager, _ = make_manager()
    with pytest.raises(ConfigUnavailable):
        manager.start_login_flow()
    provider.discovery_status = 200
    assert manager.start_login_flow().startswith("https://idp/auth?")
    assert provider.discovery_calls() == 2


def test_discovery_url_is_under_realm(make_manager, provider):
    make_manager()[0].start_login_flow()
    assert str(provider.requests[0].url) == f"{REALM}/.well-known/openid-configuration"

"""
OIDC relying-party session: authorization code login, token refresh, logout.

State lives in three cookies (see cookies.py). Flow:
  start_login_flow -> provider -> handle_login_flow(code, state) -> tokens in cookies
  get_access_token -> cached cookie, or refresh_token grant
  refresh: HTTP 400 invalid_grant "Session not active" means the provider ended the session -> local logout
Token signatures are not verified here; trust comes from the direct TLS exchange with the token endpoint.
"""
import logging
import secrets
import threading
from typing import Any, Mapping
from urllib.parse import urlencode

import httpx

from oidc_session import config
from oidc_session.cookies import CookieJar, CookieStore
from oidc_session.crypto import CryptoSuite
from oidc_session.errors import (
    AuthorizationDenied,
    ConfigUnavailable,
    RefreshFailed,
    StateMismatch,
    TokenExchangeFailed,
)
from oidc_session.models import RealmConfig, TokenExpirations, Tokens, token_expiry
from oidc_session.realm import RealmConfigCache

logger = logging.getLogger(__name__)

SESSION_NOT_ACTIVE = ("invalid_grant", "Session not active")

_default_client: httpx.Client | None = None
_default_client_lock = threading.Lock()


def get_http_client() -> httpx.Client:
    """Shared client for provider calls when none is injected."""
    global _default_client
    with _default_client_lock:
        if _default_client is None:
            _default_client = httpx.Client(headers={"Accept": "application/json"})
        return _default_client


def generate_state() -> str:
    """Opaque CSRF value bound to one login attempt."""
    return secrets.token_urlsafe(32)


def _with_query(url: str, params: dict[str, str]) -> str:
    return f"{url}{'&' if '?' in url else '?'}{urlencode(params)}"


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _is_session_not_active(response: httpx.Response, data: Any) -> bool:
    return (
        response.status_code == 400
        and isinstance(data, dict)
        and (data.get("error"), data.get("error_description")) == SESSION_NOT_ACTIVE
    )


def _provider_error(data: Any) -> str | None:
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return None


class SessionManager:
    """Login flow and token lifecycle for one request's cookies."""

    def __init__(
        self,
        cookies: CookieJar,
        *,
        http_client: httpx.Client | None = None,
        realm: str | None = None,
        base_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        crypto: CryptoSuite | None = None,
        realm_cache: RealmConfigCache | None = None,
    ):
        self._store = CookieStore(cookies, crypto=crypto)
        self._http = http_client or get_http_client()
        self._realm = (realm or config.REALM).rstrip("/")
        self._base_url = (base_url or config.BASE_URL).rstrip("/")
        self._client_id = client_id or config.CLIENT_ID
        self._client_secret = client_secret if client_secret is not None else config.CLIENT_SECRET
        self._realm_cache = realm_cache or RealmConfigCache()

    @property
    def redirect_uri(self) -> str:
        return f"{self._base_url}/login"

    # --- session state ---

    def is_logged_in(self) -> bool:
        """The refresh token, not the short-lived access token, decides whether a session exists."""
        return bool(self._store.refresh_token)

    def get_expirations(self) -> TokenExpirations:
        return TokenExpirations(
            access_token=token_expiry(self._store.access_token),
            refresh_token=token_expiry(self._store.refresh_token),
        )

    def get_access_token(self) -> str | None:
        """Current access token; refreshes once if only the refresh token is left. None when logged out."""
        current = self._store.access_token
        if current:
            return current
        self.refresh()
        return self._store.access_token

    # --- login ---

    def handle_login_flow(self, params: Mapping[str, str]) -> str:
        """Next step for a request to the login route: callback completion or a fresh login redirect."""
        error = params.get("error")
        if error:
            logger.warning("Provider returned error on callback: %s", error)
            raise AuthorizationDenied(error, params.get("error_description"))
        code = params.get("code")
        if code:
            return self.complete_login_flow(params.get("state"), code)
        return self.start_login_flow()

    def start_login_flow(self) -> str:
        state = generate_state()
        self._store.set_auth_state(state)

        realm_config = self._get_realm_config()
        return _with_query(
            realm_config.authorization_endpoint,
            {
                "client_id": self._client_id,
                "response_type": "code",
                "redirect_uri": self.redirect_uri,
                "state": state,
            },
        )

    def complete_login_flow(self, state: str | None, code: str) -> str:
        expected = self._store.auth_state
        # Bytes comparison; compare_digest rejects non-ASCII str
        if not state or not expected or not secrets.compare_digest(state.encode("utf-8"), expected.encode("utf-8")):
            logger.warning("Login callback rejected: state did not match")
            raise StateMismatch("state did not match")

        realm_config = self._get_realm_config()
        form = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        try:
            r = self._http.post(realm_config.token_endpoint, data=form)
        except httpx.HTTPError as e:
            raise TokenExchangeFailed(f"fetching tokens failed: {e}") from e

        data = _json_or_none(r)
        try:
            if not r.is_success:
                raise ValueError("non-success status")
            tokens = Tokens.from_response(data)
        except ValueError as e:
            error = _provider_error(data)
            raise TokenExchangeFailed(
                f"fetching tokens failed (status={r.status_code}, error={error})",
                status_code=r.status_code,
                error=error,
            ) from e

        self._store_tokens(tokens)
        logger.info("Login completed for client_id=%s", self._client_id)
        return config.POST_LOGIN_PATH

    # --- refresh ---

    def refresh(self) -> None:
        refresh_token = self._store.refresh_token
        if not refresh_token:
            return

        realm_config = self._get_realm_config()
        form = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        try:
            r = self._http.post(realm_config.token_endpoint, data=form)
        except httpx.HTTPError as e:
            raise RefreshFailed(f"refreshing access token failed: {e}") from e

        data = _json_or_none(r)
        if _is_session_not_active(r, data):
            logger.info("Provider reports session not active; clearing token cookies")
            self._store.delete_tokens()
            return

        try:
            if not r.is_success:
                raise ValueError("non-success status")
            tokens = Tokens.from_response(data)
        except ValueError as e:
            error = _provider_error(data)
            raise RefreshFailed(
                f"refreshing access token failed (status={r.status_code}, error={error})",
                status_code=r.status_code,
                error=error,
            ) from e

        self._store_tokens(tokens)
        logger.info("Access token refreshed (refresh token rotated) for client_id=%s", self._client_id)

    # --- logout ---

    def logout(self) -> str:
        """Clear tokens locally, then build the provider end-session URL (which may fail)."""
        self._store.delete_tokens()
        logger.info("Token cookies cleared for logout")

        realm_config = self._get_realm_config()
        return _with_query(
            realm_config.end_session_endpoint,
            {
                "post_logout_redirect_uri": f"{self._base_url}/",
                "client_id": self._client_id,
            },
        )

    # --- internals ---

    def _store_tokens(self, tokens: Tokens) -> None:
        self._store.set_tokens(
            tokens.access_token,
            tokens.refresh_token,
            access_expiry=tokens.access_token_expiry,
            refresh_expiry=tokens.refresh_token_expiry,
        )

    def _get_realm_config(self) -> RealmConfig:
        return self._realm_cache.get(self._fetch_realm_config)

    def _fetch_realm_config(self) -> RealmConfig:
        url = f"{self._realm}/.well-known/openid-configuration"
        try:
            r = self._http.get(url)
        except httpx.HTTPError as e:
            raise ConfigUnavailable(f"unable to retrieve realm configuration: {e}") from e
        if not r.is_success:
            raise ConfigUnavailable(f"unable to retrieve realm configuration (status={r.status_code})")
        try:
            return RealmConfig.from_document(_json_or_none(r), default_issuer=self._realm)
        except ValueError as e:
            raise ConfigUnavailable(f"unable to retrieve realm configuration: {e}") from e

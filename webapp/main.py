"""
Relying-party web app.
GET /login drives the OIDC code flow, GET /logout ends the session, GET /hello calls the hello API
with the user's access token. Session state is kept in cookies by oidc_session.
"""
import html
import logging

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from oidc_session.config import REALM_CONFIG_TTL_SECONDS
from oidc_session.cookies import CookieJar
from oidc_session.errors import (
    AuthorizationDenied,
    ConfigUnavailable,
    RefreshFailed,
    StateMismatch,
    TokenExchangeFailed,
)
from oidc_session.manager import SessionManager, get_http_client
from oidc_session.realm import RealmConfigCache
from webapp.api_client import ApiClient
from webapp.config import API_URL

logger = logging.getLogger(__name__)

app = FastAPI(title="OIDC Web", version="0.2.0")

# Discovery document shared by all requests of this process
realm_cache = RealmConfigCache(ttl_seconds=REALM_CONFIG_TTL_SECONDS)


def get_provider_client() -> httpx.Client:
    return get_http_client()


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body>
  <h1>{html.escape(title)}</h1>
  {body}
  <p><a href="/">Home</a></p>
</body>
</html>""",
        status_code=status_code,
    )


def _session(request: Request, http: httpx.Client) -> tuple[SessionManager, CookieJar]:
    jar = CookieJar(request.cookies)
    return SessionManager(jar, http_client=http, realm_cache=realm_cache), jar


def _fmt(value) -> str:
    return html.escape(value.isoformat()) if value else "n/a"


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "webapp"}


@app.get("/", response_class=HTMLResponse)
def home(request: Request, http: httpx.Client = Depends(get_provider_client)):
    """Home page: login state and token expirations."""
    oidc, jar = _session(request, http)
    if oidc.is_logged_in():
        exp = oidc.get_expirations()
        body = f"""<p>Logged in.</p>
  <p>Access token expires: {_fmt(exp.access_token)}</p>
  <p>Refresh token expires: {_fmt(exp.refresh_token)}</p>
  <p><a href="/hello">Call /hello</a> | <a href="/logout">Log out</a></p>"""
    else:
        body = """<p>Not logged in.</p>
  <p><a href="/login">Log in</a> | <a href="/hello">Call /hello</a> (anonymous)</p>"""
    return jar.apply(_page("OIDC Client", body))


@app.get("/login")
def login(request: Request, http: httpx.Client = Depends(get_provider_client)):
    """
    Without `code`: set CSRF state cookie and redirect to the provider.
    With `code` + `state` (provider callback): exchange the code and redirect to the post-login path.
    """
    oidc, jar = _session(request, http)
    try:
        target = oidc.handle_login_flow(request.query_params)
    except (StateMismatch, AuthorizationDenied) as e:
        return jar.apply(
            _page("Login error", f"<p>{html.escape(str(e))}</p><p><a href=\"/login\">Try again</a></p>", 400)
        )
    except (TokenExchangeFailed, ConfigUnavailable) as e:
        logger.warning("Login flow failed: %s", e)
        return jar.apply(_page("Login failed", f"<p>{html.escape(str(e))}</p>", 502))
    return jar.apply(RedirectResponse(url=target, status_code=302))


@app.get("/logout")
def logout(request: Request, http: httpx.Client = Depends(get_provider_client)):
    """Delete token cookies and redirect to the provider's end-session endpoint."""
    oidc, jar = _session(request, http)
    try:
        url = oidc.logout()
    except ConfigUnavailable as e:
        # Cookies are already deleted; the user is logged out locally
        logger.warning("Logout redirect unavailable: %s", e)
        return jar.apply(_page("Logged out", "<p>Logged out locally; the identity provider could not be reached.</p>", 502))
    return jar.apply(RedirectResponse(url=url, status_code=302))


@app.get("/hello", response_class=HTMLResponse)
def hello(request: Request, http: httpx.Client = Depends(get_provider_client)):
    """Call the hello API, with a Bearer token when logged in."""
    oidc, jar = _session(request, http)
    api = ApiClient(oidc, API_URL, http)
    try:
        r = api.get_hello()
    except (RefreshFailed, ConfigUnavailable) as e:
        logger.warning("Could not obtain access token: %s", e)
        return jar.apply(_page("Call /hello", f"<p>Could not obtain access token: {html.escape(str(e))}</p>", 502))
    except httpx.HTTPError as e:
        return jar.apply(_page("Call /hello", f"<p>Request failed: {html.escape(str(e))}</p>", 502))
    body = f"""<p>Status: {r.status_code}</p>
  <pre>{html.escape(r.text[:2000])}</pre>
  <p><a href="/hello">Call /hello again</a></p>"""
    return jar.apply(_page("Call /hello", body))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "webapp.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )

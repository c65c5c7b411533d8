"""
Client for the hello API. Sends the user's access token as a Bearer header when there is one;
without a token the request goes out anonymous and the API decides what to return.
"""
import httpx

from oidc_session.manager import SessionManager


class ApiClient:
    def __init__(self, oidc: SessionManager, api_url: str, http_client: httpx.Client):
        self._oidc = oidc
        self._api_url = api_url.rstrip("/")
        self._http = http_client

    def get_hello(self) -> httpx.Response:
        headers = {}
        access_token = self._oidc.get_access_token()
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return self._http.get(f"{self._api_url}/hello", headers=headers)

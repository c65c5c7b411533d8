"""
Cookie-backed storage for the login flow: CSRF state, access token, refresh token.

One generic slot type parameterised by name, codec and expiry policy; the refresh-token
slot runs values through CryptoSuite. All cookies: SameSite=Lax; HttpOnly; Secure; Path=/.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping

from starlette.responses import Response

from oidc_session.config import ACCESS_TOKEN_COOKIE, AUTH_STATE_COOKIE, REFRESH_TOKEN_COOKIE
from oidc_session.crypto import CryptoSuite, DecryptionError, get_refresh_token_crypto
from oidc_session.models import token_expiry

logger = logging.getLogger(__name__)


@dataclass
class CookieRecord:
    name: str
    value: str
    expires: datetime | None = None
    samesite: str = "lax"
    httponly: bool = True
    secure: bool = True
    path: str = "/"
    delete: bool = False


class CookieJar:
    """
    Per-request cookie view: incoming request cookies plus writes made while handling the request.
    Reads see earlier writes in the same request; apply() copies the writes onto the response.
    """

    def __init__(self, request_cookies: Mapping[str, str] | None = None):
        self._incoming = dict(request_cookies or {})
        self._pending: dict[str, CookieRecord] = {}

    def get(self, name: str) -> str | None:
        record = self._pending.get(name)
        if record is not None:
            return None if record.delete else record.value
        return self._incoming.get(name)

    def set(self, record: CookieRecord) -> None:
        self._pending[record.name] = record

    def delete(self, name: str) -> None:
        self._pending[name] = CookieRecord(name=name, value="", delete=True)

    @property
    def records(self) -> list[CookieRecord]:
        return list(self._pending.values())

    def apply(self, response: Response) -> Response:
        for r in self._pending.values():
            if r.delete:
                response.delete_cookie(r.name, path=r.path, secure=r.secure, httponly=r.httponly, samesite=r.samesite)
            else:
                response.set_cookie(
                    r.name,
                    r.value,
                    expires=r.expires,
                    path=r.path,
                    secure=r.secure,
                    httponly=r.httponly,
                    samesite=r.samesite,
                )
        return response


def _identity(value: str) -> str:
    return value


@dataclass(frozen=True)
class CookieSlot:
    name: str
    encode: Callable[[str], str] = _identity
    decode: Callable[[str], str] = _identity
    expires_from_token: bool = False

    def read(self, jar: CookieJar) -> str | None:
        raw = jar.get(self.name)
        if not raw:
            return None
        return self.decode(raw)

    def write(self, jar: CookieJar, value: str, expires: datetime | None = None) -> None:
        if expires is None and self.expires_from_token:
            expires = token_expiry(value)
        jar.set(CookieRecord(name=self.name, value=self.encode(value), expires=expires))

    def clear(self, jar: CookieJar) -> None:
        jar.delete(self.name)


class CookieStore:
    """The three cookies used by SessionManager, read and written through one CookieJar."""

    def __init__(self, jar: CookieJar, crypto: CryptoSuite | None = None):
        self._jar = jar
        crypto = crypto or get_refresh_token_crypto()
        self._auth_state = CookieSlot(AUTH_STATE_COOKIE)
        self._access_token = CookieSlot(ACCESS_TOKEN_COOKIE, expires_from_token=True)
        self._refresh_token = CookieSlot(
            REFRESH_TOKEN_COOKIE,
            encode=crypto.encrypt,
            decode=crypto.decrypt,
            expires_from_token=True,
        )

    @property
    def auth_state(self) -> str | None:
        return self._auth_state.read(self._jar)

    def set_auth_state(self, state: str) -> None:
        self._auth_state.write(self._jar, state)

    @property
    def access_token(self) -> str | None:
        return self._access_token.read(self._jar)

    @property
    def refresh_token(self) -> str | None:
        """Decrypted refresh token; None when absent or when the cookie cannot be decrypted."""
        try:
            return self._refresh_token.read(self._jar)
        except DecryptionError as e:
            logger.warning("Ignoring invalid %s cookie: %s", REFRESH_TOKEN_COOKIE, e)
            return None

    def set_tokens(
        self,
        access_token: str,
        refresh_token: str,
        access_expiry: datetime | None = None,
        refresh_expiry: datetime | None = None,
    ) -> None:
        """Write both tokens. Expiries already read from the tokens can be passed in; otherwise they are derived here."""
        self._access_token.write(self._jar, access_token, access_expiry)
        self._refresh_token.write(self._jar, refresh_token, refresh_expiry)

    def delete_tokens(self) -> None:
        self._access_token.clear(self._jar)
        self._refresh_token.clear(self._jar)

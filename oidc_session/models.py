"""
Provider metadata and token payloads for the relying party.
Token contents are never verified here; only the `exp` claim is read, for cookie lifetime and display.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import jwt

logger = logging.getLogger(__name__)


def token_expiry(token: str | None) -> datetime | None:
    """Unverified `exp` claim as a UTC datetime; None for opaque tokens or tokens without exp."""
    if not token:
        return None
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        logger.debug("Token expiry not readable (not a JWT?): %s", e)
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        return None
    try:
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        logger.debug("Token exp %r out of range: %s", exp, e)
        return None


@dataclass(frozen=True)
class RealmConfig:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    end_session_endpoint: str

    @classmethod
    def from_document(cls, doc: Any, *, default_issuer: str = "") -> "RealmConfig":
        """Validate a discovery document. Raises ValueError if a required endpoint is missing or not a string."""
        if not isinstance(doc, dict):
            raise ValueError("discovery document is not a JSON object")
        for field in ("authorization_endpoint", "token_endpoint", "end_session_endpoint"):
            if not isinstance(doc.get(field), str):
                raise ValueError(f"discovery document missing string field {field!r}")
        issuer = doc.get("issuer")
        if issuer is not None and not isinstance(issuer, str):
            raise ValueError("discovery document field 'issuer' is not a string")
        return cls(
            issuer=issuer or default_issuer,
            authorization_endpoint=doc["authorization_endpoint"],
            token_endpoint=doc["token_endpoint"],
            end_session_endpoint=doc["end_session_endpoint"],
        )


@dataclass
class Tokens:
    access_token: str
    refresh_token: str
    access_token_expiry: datetime | None = None
    refresh_token_expiry: datetime | None = None
    scope: str = ""
    token_type: str | None = None
    expires_in: int | None = None
    refresh_expires_in: int | None = None
    session_state: str | None = None

    @classmethod
    def from_response(cls, data: Any) -> "Tokens":
        """
        Parse a token endpoint success body. access_token and refresh_token must both be strings;
        everything else is optional and only kept for display.
        """
        if not isinstance(data, dict):
            raise ValueError("token response is not a JSON object")
        access_token = data.get("access_token")
        refresh_token = data.get("refresh_token")
        if not isinstance(access_token, str) or not isinstance(refresh_token, str):
            raise ValueError("token response missing access_token/refresh_token")
        scope = data.get("scope")
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            access_token_expiry=token_expiry(access_token),
            refresh_token_expiry=token_expiry(refresh_token),
            scope=scope if isinstance(scope, str) else "",
            token_type=data.get("token_type"),
            expires_in=data.get("expires_in"),
            refresh_expires_in=data.get("refresh_expires_in"),
            session_state=data.get("session_state"),
        )


@dataclass(frozen=True)
class TokenExpirations:
    """When each stored token expires (unverified, display only)."""

    access_token: datetime | None
    refresh_token: datetime | None

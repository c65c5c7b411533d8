"""
Errors raised by the OIDC session flow. Cookie decryption failures are not here:
they are absorbed by the cookie store and never reach callers.
"""


class OIDCError(Exception):
    """Base class for login/refresh/logout flow failures."""


class StateMismatch(OIDCError):
    """Callback state missing or different from the auth-state cookie; no tokens issued."""


class AuthorizationDenied(OIDCError):
    """Provider redirected back with an error instead of a code."""

    def __init__(self, error: str, error_description: str | None = None):
        self.error = error
        self.error_description = error_description
        super().__init__(f"authorization failed: {error_description or error}")


class ConfigUnavailable(OIDCError):
    """Discovery document could not be fetched or is missing required endpoints."""


class _TokenEndpointError(OIDCError):
    def __init__(self, message: str, *, status_code: int | None = None, error: str | None = None):
        self.status_code = status_code
        self.error = error
        super().__init__(message)


class TokenExchangeFailed(_TokenEndpointError):
    """Authorization code exchange rejected or returned a malformed token response."""


class RefreshFailed(_TokenEndpointError):
    """Refresh grant rejected (other than session-not-active) or malformed; cookies left as they were."""

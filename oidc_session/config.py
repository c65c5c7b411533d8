"""
Relying-party configuration for the OIDC cookie session.
No secrets in this file; client secret and refresh-token key come from env.
"""
import os

# Realm (issuer) base URL; discovery lives at {REALM}/.well-known/openid-configuration
REALM = os.environ.get("OIDC_REALM", "http://127.0.0.1:8080/realms/demo").rstrip("/")

# Public base URL of this app; redirect_uri is {BASE_URL}/login, post-logout is {BASE_URL}/
BASE_URL = os.environ.get("OIDC_BASE_URL", "http://127.0.0.1:8000").rstrip("/")

# Confidential client registered at the provider
CLIENT_ID = os.environ.get("OIDC_CLIENT_ID", "demo")
CLIENT_SECRET = os.environ.get("OIDC_CLIENT_SECRET", "")

# Path the browser lands on after a completed login
POST_LOGIN_PATH = "/"

# Refresh-token cookie encryption. Key is read as latin-1 so any byte value can be given in env.
# Empty key: a random key is generated per process (see crypto.get_refresh_token_crypto).
REFRESH_TOKEN_ALGORITHM = os.environ.get("OIDC_REFRESH_TOKEN_ALGORITHM", "aes-256-gcm").strip().lower()
REFRESH_TOKEN_KEY = os.environ.get("OIDC_REFRESH_TOKEN_KEY", "").encode("latin-1")

# Realm config memo lifetime for shared caches (seconds). Unset or <= 0: never expires.
_ttl = os.environ.get("OIDC_REALM_CONFIG_TTL_SECONDS", "").strip()
REALM_CONFIG_TTL_SECONDS = float(_ttl) if _ttl and float(_ttl) > 0 else None

# Cookie names (browser-facing contract)
AUTH_STATE_COOKIE = "auth-state"
ACCESS_TOKEN_COOKIE = "access-token"
REFRESH_TOKEN_COOKIE = "refresh-token"

"""
Pytest configuration shared by all packages. Config modules read env at import,
so test settings must be in place before any test module is collected.
"""
import os

os.environ.setdefault("OIDC_REALM", "https://idp/realms/demo")
os.environ.setdefault("OIDC_BASE_URL", "https://app")
os.environ.setdefault("OIDC_CLIENT_ID", "demo")
os.environ.setdefault("OIDC_CLIENT_SECRET", "s3cret")
os.environ.setdefault("OIDC_REFRESH_TOKEN_ALGORITHM", "aes-256-gcm")
os.environ.setdefault("OIDC_REFRESH_TOKEN_KEY", "0123456789abcdef0123456789abcdef")
os.environ.setdefault("API_URL", "https://api")
os.environ.setdefault("OIDC_JWKS_URI", "https://idp/realms/demo/protocol/openid-connect/certs")
# Hello API checks audience only when configured
os.environ.pop("API_AUDIENCE", None)

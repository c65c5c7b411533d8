"""
Hello API configuration. The issuer is the OIDC realm that signs the access tokens.
"""
import os

ISSUER = os.environ.get("OIDC_REALM", "http://127.0.0.1:8080/realms/demo").rstrip("/")

# Realm signing keys
JWKS_URI = os.environ.get("OIDC_JWKS_URI") or f"{ISSUER}/protocol/openid-connect/certs"

# Checked only when set; realm access tokens carry the client audience inconsistently
API_AUDIENCE = os.environ.get("API_AUDIENCE") or None

# Realm role required on /hello
REQUIRED_ROLE = "USER"

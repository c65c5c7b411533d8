"""
Web app configuration. OIDC client settings live in oidc_session.config.
"""
import os

# Hello API (protected resource) called with the user's access token
API_URL = os.environ.get("API_URL", "http://127.0.0.1:7000").rstrip("/")

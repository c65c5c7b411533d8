"""
Bearer token validation for the hello API: signature via the realm JWKS, then iss/exp (and aud when configured).
Authorization is by realm role (realm_access.roles).
"""
import logging
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from hello_api.config import API_AUDIENCE, ISSUER, JWKS_URI

logger = logging.getLogger(__name__)

_jwks_client: PyJWKClient | None = None


def get_jwks_client() -> PyJWKClient:
    global _jwks_client
    if _jwks_client is None:
        _jwks_client = PyJWKClient(uri=JWKS_URI, cache_jwk_set=True, lifespan=300)
    return _jwks_client


security = HTTPBearer(auto_error=False)


def _unauthorized(error: str, description: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "error_description": description},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_bearer_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> str:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _unauthorized("invalid_request", "Bearer token required")
    return credentials.credentials


def verify_access_token(token: str) -> dict:
    """Decoded claims of a valid token; HTTP 401 otherwise."""
    try:
        signing_key = get_jwks_client().get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=API_AUDIENCE,
            issuer=ISSUER,
            options={"verify_aud": API_AUDIENCE is not None, "require": ["exp", "iss"]},
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("invalid_token", "Token expired")
    except jwt.InvalidAudienceError:
        raise _unauthorized("invalid_token", "Invalid audience")
    except jwt.InvalidIssuerError:
        raise _unauthorized("invalid_token", "Invalid issuer")
    except jwt.PyJWTError as e:
        logger.debug("JWT verification failed: %s", e)
        raise _unauthorized("invalid_token", "Token verification failed")


def get_claims(token: Annotated[str, Depends(get_bearer_token)]) -> dict:
    return verify_access_token(token)


def realm_roles(claims: dict) -> set[str]:
    access = claims.get("realm_access")
    if not isinstance(access, dict):
        return set()
    roles = access.get("roles")
    if not isinstance(roles, list):
        return set()
    return {str(r) for r in roles}


def require_role(role: str):
    """Dependency factory: the token must carry the given realm role."""

    def _check(claims: Annotated[dict, Depends(get_claims)]) -> dict:
        if role not in realm_roles(claims):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": "insufficient_role", "error_description": f"Role '{role}' required"},
            )
        return claims

    return Depends(_check)

"""
Bearer token validation for the resource server.
Keys come from the Authorization Server's JWKS through a caching key source; every
verification failure produces the same 401 body so callers learn nothing about why.
"""
import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from resource_server.config import (
    API_AUDIENCE,
    CLOCK_SKEW_SECONDS,
    ISSUER,
    JWKS_CACHE_TTL,
    JWKS_FETCH_TIMEOUT,
    JWKS_MAX_STALENESS,
    JWKS_MIN_REFRESH_INTERVAL,
    JWKS_URI,
    SCOPE_ADMIN,
    SCOPE_READ,
    SCOPE_WRITE,
)
from token_core.key_cache import CachingKeySource, HttpKeySetFetcher
from token_core.verifier import Principal, TokenVerifier

logger = logging.getLogger(__name__)

_INVALID_TOKEN = {"error": "invalid_token", "error_description": "Token verification failed"}
_BEARER_CHALLENGE = {"WWW-Authenticate": 'Bearer error="invalid_token"'}


@lru_cache(maxsize=1)
def get_verifier() -> TokenVerifier:
    """Single shared verifier; its key source caches the JWK set between requests."""
    key_source = CachingKeySource(
        HttpKeySetFetcher(JWKS_URI, timeout=JWKS_FETCH_TIMEOUT),
        ttl=JWKS_CACHE_TTL,
        max_staleness=JWKS_MAX_STALENESS,
        min_refresh_interval=JWKS_MIN_REFRESH_INTERVAL,
    )
    return TokenVerifier(key_source, issuer=ISSUER, audience=API_AUDIENCE, clock_skew=CLOCK_SKEW_SECONDS)


security = HTTPBearer(auto_error=False)


def get_bearer_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> str:
    """Extract Bearer token from Authorization header. Raises 401 if missing or not Bearer."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "invalid_request", "error_description": "Bearer token required"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


def get_principal(
    token: Annotated[str, Depends(get_bearer_token)],
    verifier: Annotated[TokenVerifier, Depends(get_verifier)],
) -> Principal:
    """Dependency: valid Bearer token -> Principal."""
    result = verifier.verify(token)
    if not result.valid:
        logger.info("Rejected bearer token: %s", result.reason.value)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_INVALID_TOKEN,
            headers=_BEARER_CHALLENGE,
        )
    return result.principal


def require_scope(required: str):
    """Dependency factory: require the given scope in the access token."""

    def _check(principal: Annotated[Principal, Depends(get_principal)]) -> Principal:
        if not principal.has_scope(required):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "insufficient_scope",
                    "error_description": f"Scope '{required}' required",
                },
                headers={"WWW-Authenticate": f'Bearer error="insufficient_scope", scope="{required}"'},
            )
        return principal

    return Depends(_check)


RequireRead = require_scope(SCOPE_READ)
RequireWrite = require_scope(SCOPE_WRITE)
RequireAdmin = require_scope(SCOPE_ADMIN)

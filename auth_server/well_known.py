"""
Well-known endpoints: JWKS (key publication) and OAuth 2.0 authorization server metadata (RFC 8414).
Verifiers resolve a token's kid against the live JWKS, so key rotation needs no verifier reconfiguration.
"""
from functools import lru_cache

from fastapi import APIRouter, Response

from auth_server.config import ALLOWED_SCOPES, ISSUER, JWKS_MAX_AGE
from auth_server.keys import KeyManager, get_key_manager
from token_core.keyset import KeySet

router = APIRouter()


class KeyPublicationService:
    """Read-only view of the KeyManager's publishable keys."""

    def __init__(self, key_manager: KeyManager):
        self.key_manager = key_manager

    def get_key_set(self) -> KeySet:
        return self.key_manager.public_key_set()

    def jwks(self) -> dict:
        return self.get_key_set().to_jwks()


@lru_cache(maxsize=1)
def get_publication_service() -> KeyPublicationService:
    return KeyPublicationService(get_key_manager())


@router.get("/.well-known/jwks.json")
def jwks_json(response: Response):
    """JSON Web Key Set for token signature verification. Symmetric keys are never listed."""
    response.headers["Cache-Control"] = f"public, max-age={JWKS_MAX_AGE}"
    return get_publication_service().jwks()


@router.get("/.well-known/oauth-authorization-server")
def authorization_server_metadata():
    """RFC 8414 discovery document."""
    return {
        "issuer": ISSUER,
        "token_endpoint": f"{ISSUER}/oauth/token",
        "introspection_endpoint": f"{ISSUER}/oauth/introspect",
        "jwks_uri": f"{ISSUER}/.well-known/jwks.json",
        "grant_types_supported": ["client_credentials", "password"],
        "response_types_supported": ["token"],
        "scopes_supported": sorted(ALLOWED_SCOPES),
        "token_endpoint_auth_methods_supported": ["client_secret_basic", "client_secret_post"],
        "introspection_endpoint_auth_methods_supported": ["client_secret_basic", "client_secret_post"],
    }

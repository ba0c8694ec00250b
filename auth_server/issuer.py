"""
Token issuance: authenticate the client, settle the granted scope, mint a signed access token.

The JWS header is built here rather than left to library defaults: alg and kid always
come from the KeyManager's current key, so the kid in every token names a key that is
in the published key set at the moment of issuance.
"""
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Protocol

import jwt

from auth_server.keys import KeyManager
from token_core.errors import InvalidCredentials, ScopeNotAuthorized, SigningFailure

logger = logging.getLogger(__name__)

REGISTERED_CLAIMS = frozenset({"iss", "sub", "aud", "iat", "exp", "nbf", "jti", "scope", "client_id"})


@dataclass(frozen=True)
class ClientCredentials:
    client_id: str
    client_secret: str | None = None

    def __repr__(self) -> str:
        return f"ClientCredentials(client_id={self.client_id!r})"


class CredentialStore(Protocol):
    def authenticate_client(self, client_id: str, client_secret: str | None) -> bool: ...

    def authorized_scopes(self, client_id: str, subject: str | None) -> set[str]: ...


@dataclass(frozen=True)
class IssuedToken:
    token: str
    header: dict
    claims: dict
    expires_in: int

    @property
    def kid(self) -> str:
        return self.header["kid"]

    @property
    def scope(self) -> str:
        return self.claims["scope"]


def _scope_set(requested: str | Iterable[str] | None) -> set[str]:
    if requested is None:
        return set()
    if isinstance(requested, str):
        return set(requested.split())
    return {s for s in requested if s}


class TokenIssuer:
    def __init__(
        self,
        key_manager: KeyManager,
        credential_store: CredentialStore,
        *,
        issuer: str,
        lifetime: int,
        audience: str | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.key_manager = key_manager
        self.credential_store = credential_store
        self.issuer = issuer
        self.lifetime = lifetime
        self.audience = audience
        self._clock = clock

    def issue(
        self,
        credentials: ClientCredentials,
        requested_scope: str | Iterable[str] | None,
        subject: str | None = None,
        extra_claims: dict[str, Any] | None = None,
    ) -> IssuedToken:
        """
        Mint an access token for subject (defaults to the client itself).
        Raises InvalidCredentials, ScopeNotAuthorized (client errors) or SigningFailure (server fault).
        """
        if not self.credential_store.authenticate_client(credentials.client_id, credentials.client_secret):
            raise InvalidCredentials("Invalid client credentials")

        subject = subject or credentials.client_id
        authorized = self.credential_store.authorized_scopes(credentials.client_id, subject)
        requested = _scope_set(requested_scope)
        if requested - authorized:
            raise ScopeNotAuthorized(requested - authorized)
        granted = (requested or authorized) & authorized

        if extra_claims:
            clashing = REGISTERED_CLAIMS & set(extra_claims)
            if clashing:
                raise ValueError(f"Extension claims may not override: {', '.join(sorted(clashing))}")

        now = int(self._clock())
        claims: dict[str, Any] = {
            "iss": self.issuer,
            "sub": subject,
            "iat": now,
            "exp": now + self.lifetime,
            "scope": " ".join(sorted(granted)),
            "client_id": credentials.client_id,
            "jti": secrets.token_urlsafe(16),
        }
        if self.audience:
            claims["aud"] = self.audience
        if extra_claims:
            claims.update(extra_claims)

        token, header = self._sign(claims)
        logger.info(
            "Issued access token kid=%s client_id=%s sub=%s scope=%r",
            header["kid"],
            credentials.client_id,
            subject,
            claims["scope"],
        )
        return IssuedToken(token=token, header=header, claims=claims, expires_in=self.lifetime)

    def _sign(self, claims: dict) -> tuple[str, dict]:
        try:
            key = self.key_manager.current_signing_key()
            header = {"alg": key.algorithm.value, "kid": key.kid, "typ": "JWT"}
            token = jwt.encode(claims, key.private_key, algorithm=key.algorithm.value, headers=header)
        except (jwt.PyJWTError, ValueError, TypeError, AttributeError) as e:
            logger.exception("Signing failed")
            raise SigningFailure(f"Could not sign token: {e}") from e
        if isinstance(token, bytes):
            token = token.decode("utf-8")
        return token, header

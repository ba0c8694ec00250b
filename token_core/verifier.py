"""
Bearer token verification (resource-server side).

verify() walks a fixed sequence: parse, resolve kid, check signature, check claims.
The first failing step decides the FailureReason. Reasons are for diagnostics;
HTTP callers are expected to collapse them into one 401 response.
"""
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Protocol

import jwt
from jwt.api_jws import PyJWS

from token_core.errors import KeyFetchError, TokenRejected, UnsupportedAlgorithm
from token_core.keyset import KeySet, SigningAlgorithm

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ("sub", "iss", "iat", "exp", "scope")
# always enforced; a Principal cannot be built without them
PRINCIPAL_CLAIMS = ("sub", "iss", "iat", "exp")
DEFAULT_CLOCK_SKEW = 30


class FailureReason(str, Enum):
    EXPIRED_TOKEN = "expired_token"
    BAD_SIGNATURE = "bad_signature"
    UNKNOWN_KEY_ID = "unknown_key_id"
    MALFORMED_TOKEN = "malformed_token"
    MISSING_REQUIRED_CLAIM = "missing_required_claim"


def parse_scope(scope_value: Any) -> tuple[str, ...]:
    """Normalize a scope claim (space-separated string or list) to a tuple."""
    if scope_value is None:
        return ()
    if isinstance(scope_value, (list, tuple)):
        return tuple(str(s) for s in scope_value)
    return tuple(str(scope_value).split())


@dataclass(frozen=True)
class Principal:
    subject: str
    scopes: tuple[str, ...]
    issuer: str
    issued_at: int
    expires_at: int
    claims: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes

    @classmethod
    def from_claims(cls, claims: dict) -> "Principal":
        return cls(
            subject=str(claims["sub"]),
            scopes=parse_scope(claims.get("scope")),
            issuer=str(claims["iss"]),
            issued_at=int(claims["iat"]),
            expires_at=int(claims["exp"]),
            claims=MappingProxyType(dict(claims)),
        )


@dataclass(frozen=True)
class VerificationResult:
    principal: Principal | None = None
    reason: FailureReason | None = None

    @property
    def valid(self) -> bool:
        return self.principal is not None

    @classmethod
    def ok(cls, principal: Principal) -> "VerificationResult":
        return cls(principal=principal)

    @classmethod
    def invalid(cls, reason: FailureReason) -> "VerificationResult":
        return cls(reason=reason)


class KeySource(Protocol):
    def get_key_set(self, *, force_refresh: bool = False) -> KeySet: ...


class StaticKeySource:
    """KeySource over an in-process KeySet or a callable producing one (e.g. KeyManager.verification_key_set)."""

    def __init__(self, key_set: KeySet | Callable[[], KeySet]):
        self._key_set = key_set

    def get_key_set(self, *, force_refresh: bool = False) -> KeySet:
        if callable(self._key_set):
            return self._key_set()
        return self._key_set


class _Rejected(Exception):
    def __init__(self, reason: FailureReason, detail: str):
        self.reason = reason
        self.detail = detail


class TokenVerifier:
    def __init__(
        self,
        key_source: KeySource,
        *,
        issuer: str | None = None,
        audience: str | None = None,
        clock_skew: int = DEFAULT_CLOCK_SKEW,
        required_claims: Iterable[str] = REQUIRED_CLAIMS,
        clock: Callable[[], float] = time.time,
    ):
        self.key_source = key_source
        self.issuer = issuer
        self.audience = audience
        self.clock_skew = clock_skew
        self.required_claims = tuple(dict.fromkeys((*PRINCIPAL_CLAIMS, *required_claims)))
        self._clock = clock
        self._jws = PyJWS()

    def verify(self, token: str) -> VerificationResult:
        try:
            header, claims = self._parse(token)
            key = self._resolve_key(header["kid"])
            self._check_signature(token, header["alg"], key)
            self._check_claims(claims)
        except _Rejected as rejected:
            logger.debug("Token rejected (%s): %s", rejected.reason.value, rejected.detail)
            return VerificationResult.invalid(rejected.reason)
        return VerificationResult.ok(Principal.from_claims(claims))

    def verify_or_raise(self, token: str) -> Principal:
        result = self.verify(token)
        if not result.valid:
            raise TokenRejected(result.reason)
        return result.principal

    def _parse(self, token: str) -> tuple[dict, dict]:
        if not isinstance(token, str) or token.count(".") != 2:
            raise _Rejected(FailureReason.MALFORMED_TOKEN, "not a three-part compact token")
        try:
            decoded = self._jws.decode_complete(token, options={"verify_signature": False})
            claims = json.loads(decoded["payload"])
        except (jwt.InvalidTokenError, ValueError) as e:
            raise _Rejected(FailureReason.MALFORMED_TOKEN, str(e))
        header = decoded["header"]
        if not isinstance(claims, dict):
            raise _Rejected(FailureReason.MALFORMED_TOKEN, "claims segment is not a JSON object")
        for name in ("alg", "kid"):
            if not isinstance(header.get(name), str) or not header[name]:
                raise _Rejected(FailureReason.MALFORMED_TOKEN, f"header {name!r} missing")
        # no JWS extensions are understood, so any critical one must be refused
        if "crit" in header:
            raise _Rejected(FailureReason.MALFORMED_TOKEN, "unsupported critical header parameters")
        return header, claims

    def _resolve_key(self, kid: str):
        try:
            key = self.key_source.get_key_set().get(kid)
            if key is None:
                key = self.key_source.get_key_set(force_refresh=True).get(kid)
        except KeyFetchError as e:
            logger.warning("No key set available to resolve kid=%s: %s", kid, e)
            raise _Rejected(FailureReason.UNKNOWN_KEY_ID, "key set unavailable")
        if key is None:
            raise _Rejected(FailureReason.UNKNOWN_KEY_ID, f"kid {kid!r} not in key set")
        return key

    def _check_signature(self, token: str, header_alg: str, key) -> None:
        try:
            declared = SigningAlgorithm.parse(header_alg)
        except UnsupportedAlgorithm:
            declared = None
        # header alg must be exactly the key's alg; never let the token choose
        if declared is not key.algorithm or header_alg != key.algorithm.value:
            raise _Rejected(
                FailureReason.BAD_SIGNATURE,
                f"header alg {header_alg!r} does not match key alg {key.algorithm.value}",
            )
        try:
            self._jws.decode(token, key.key, algorithms=[key.algorithm.value])
        except jwt.InvalidSignatureError:
            raise _Rejected(FailureReason.BAD_SIGNATURE, "signature mismatch")
        except (jwt.InvalidAlgorithmError, jwt.InvalidKeyError, TypeError, ValueError) as e:
            raise _Rejected(FailureReason.BAD_SIGNATURE, f"key not usable: {e}")
        except jwt.DecodeError as e:
            raise _Rejected(FailureReason.MALFORMED_TOKEN, str(e))
        except jwt.InvalidTokenError as e:
            raise _Rejected(FailureReason.MALFORMED_TOKEN, str(e))

    def _check_claims(self, claims: dict) -> None:
        for name in ("exp", "iat"):
            if name in claims and (isinstance(claims[name], bool) or not isinstance(claims[name], (int, float))):
                raise _Rejected(FailureReason.MALFORMED_TOKEN, f"{name} is not numeric")
        if "exp" in claims and self._clock() > claims["exp"] + self.clock_skew:
            raise _Rejected(FailureReason.EXPIRED_TOKEN, "token expired")
        missing = [name for name in self.required_claims if claims.get(name) is None]
        if missing:
            raise _Rejected(FailureReason.MISSING_REQUIRED_CLAIM, f"missing {', '.join(missing)}")
        if self.issuer is not None and claims.get("iss") != self.issuer:
            raise _Rejected(FailureReason.MISSING_REQUIRED_CLAIM, "issuer not accepted")
        if self.audience is not None:
            aud = claims.get("aud")
            audiences = aud if isinstance(aud, list) else [aud]
            if self.audience not in audiences:
                raise _Rejected(FailureReason.MISSING_REQUIRED_CLAIM, "audience not accepted")

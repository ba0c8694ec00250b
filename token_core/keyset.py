"""
Verification keys and key sets (JWKS).
A KeySet is the published, kid-indexed view of every key that may verify a token.
Symmetric keys can live in an in-process KeySet but are never rendered as JWKs.
"""
import base64
import hashlib
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Iterator

import jwt
from jwt.algorithms import ECAlgorithm, RSAAlgorithm

from token_core.errors import UnsupportedAlgorithm

logger = logging.getLogger(__name__)

_ALIASES = {
    "HMAC-SHA256": "HS256",
    "RSA-SHA256": "RS256",
    "ECDSA-SHA256": "ES256",
}

# RFC 7638 required members per key type
_THUMBPRINT_MEMBERS = {
    "RSA": ("e", "kty", "n"),
    "EC": ("crv", "kty", "x", "y"),
}


class SigningAlgorithm(str, Enum):
    HS256 = "HS256"
    RS256 = "RS256"
    ES256 = "ES256"

    @property
    def symmetric(self) -> bool:
        return self is SigningAlgorithm.HS256

    @property
    def key_type(self) -> str:
        return {"HS256": "oct", "RS256": "RSA", "ES256": "EC"}[self.value]

    @classmethod
    def parse(cls, value: "str | SigningAlgorithm") -> "SigningAlgorithm":
        """Accept a JWA name (RS256) or a descriptive alias (RSA-SHA256), case-insensitive."""
        if isinstance(value, SigningAlgorithm):
            return value
        if not isinstance(value, str):
            raise UnsupportedAlgorithm(value)
        name = value.strip().upper()
        name = _ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            raise UnsupportedAlgorithm(value) from None


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def jwk_thumbprint(jwk: dict) -> str:
    """RFC 7638 SHA-256 thumbprint of a public JWK, base64url without padding."""
    members = _THUMBPRINT_MEMBERS.get(jwk.get("kty"))
    if members is None:
        raise ValueError(f"No thumbprint defined for kty={jwk.get('kty')!r}")
    canonical = json.dumps({m: jwk[m] for m in members}, separators=(",", ":"), sort_keys=True)
    return b64url(hashlib.sha256(canonical.encode("utf-8")).digest())


def public_key_to_jwk(public_key: Any, algorithm: SigningAlgorithm) -> dict:
    """Algorithm-specific public JWK members (no kid/use/alg) for an RSA or EC public key."""
    if algorithm is SigningAlgorithm.RS256:
        jwk = RSAAlgorithm.to_jwk(public_key, as_dict=True)
    elif algorithm is SigningAlgorithm.ES256:
        jwk = ECAlgorithm.to_jwk(public_key, as_dict=True)
    else:
        raise ValueError("Symmetric keys cannot be represented as a public JWK")
    # "use" is set by the caller; the two must not both appear
    jwk.pop("key_ops", None)
    return jwk


@dataclass(frozen=True)
class VerificationKey:
    """
    Verification-side view of a key.
    key is a cryptography public key object, or the shared secret (bytes) for HS256.
    """

    kid: str
    algorithm: SigningAlgorithm
    key: Any

    @property
    def symmetric(self) -> bool:
        return self.algorithm.symmetric

    def to_jwk(self) -> dict:
        if self.symmetric:
            raise ValueError(f"Refusing to publish symmetric key {self.kid!r}")
        jwk = public_key_to_jwk(self.key, self.algorithm)
        jwk.update({"kid": self.kid, "use": "sig", "alg": self.algorithm.value})
        return jwk


class KeySet:
    """Immutable, ordered set of VerificationKeys indexed by kid."""

    def __init__(self, keys: Iterable[VerificationKey] = ()):
        by_kid: dict[str, VerificationKey] = {}
        for key in keys:
            if key.kid in by_kid:
                raise ValueError(f"Duplicate key identifier in key set: {key.kid!r}")
            by_kid[key.kid] = key
        self._by_kid = by_kid

    def get(self, kid: str) -> VerificationKey | None:
        return self._by_kid.get(kid)

    def kids(self) -> list[str]:
        return list(self._by_kid)

    def __contains__(self, kid: object) -> bool:
        return kid in self._by_kid

    def __iter__(self) -> Iterator[VerificationKey]:
        return iter(self._by_kid.values())

    def __len__(self) -> int:
        return len(self._by_kid)

    def __repr__(self) -> str:
        return f"KeySet(kids={self.kids()!r})"

    def to_jwks(self) -> dict:
        """JWKS document. Symmetric keys are left out even if present in this set."""
        return {"keys": [k.to_jwk() for k in self if not k.symmetric]}

    @classmethod
    def from_jwks(cls, document: Any) -> "KeySet":
        """
        Build a KeySet from a JWKS document. Entries that are unusable for signature
        verification (no kid, wrong use, symmetric, unsupported alg, bad key data)
        are skipped with a warning rather than failing the whole set.
        """
        if not isinstance(document, dict) or not isinstance(document.get("keys"), list):
            raise ValueError("JWKS document must be an object with a 'keys' array")
        keys: list[VerificationKey] = []
        seen: set[str] = set()
        for entry in document["keys"]:
            key = _parse_jwk(entry)
            if key is None:
                continue
            if key.kid in seen:
                logger.warning("Skipping duplicate kid=%s in JWKS", key.kid)
                continue
            seen.add(key.kid)
            keys.append(key)
        return cls(keys)


def _parse_jwk(entry: Any) -> VerificationKey | None:
    if not isinstance(entry, dict):
        logger.warning("Skipping non-object JWKS entry")
        return None
    kid = entry.get("kid")
    if not isinstance(kid, str) or not kid:
        logger.warning("Skipping JWKS entry without kid")
        return None
    if entry.get("use", "sig") != "sig":
        logger.debug("Skipping kid=%s: use=%s", kid, entry.get("use"))
        return None
    if entry.get("kty") == "oct":
        logger.warning("Skipping kid=%s: symmetric key published in JWKS", kid)
        return None
    try:
        algorithm = SigningAlgorithm.parse(entry.get("alg", ""))
    except UnsupportedAlgorithm:
        logger.warning("Skipping kid=%s: unsupported alg %r", kid, entry.get("alg"))
        return None
    if entry.get("kty") != algorithm.key_type:
        logger.warning("Skipping kid=%s: kty %r does not match alg %s", kid, entry.get("kty"), algorithm.value)
        return None
    try:
        parsed = jwt.PyJWK(entry, algorithm=algorithm.value)
    except (jwt.PyJWKError, jwt.InvalidKeyError, ValueError, TypeError) as e:
        logger.warning("Skipping kid=%s: invalid key data (%s)", kid, e)
        return None
    return VerificationKey(kid=kid, algorithm=algorithm, key=parsed.key)

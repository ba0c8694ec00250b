"""
Signing key management with rotation.

One key is current (used for new tokens); rotated-out keys stay verification-only
for a grace window so tokens they signed keep verifying. The whole key state is an
immutable snapshot swapped under a lock, so readers never see a half-rotated state.
HS256 keys work for in-process verification but never appear in the published key set.
"""
import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from token_core.errors import UnsupportedAlgorithm
from token_core.keyset import KeySet, SigningAlgorithm, VerificationKey, jwk_thumbprint, public_key_to_jwk

logger = logging.getLogger(__name__)

_RSA_DEFAULT_BITS = 2048
_HMAC_DEFAULT_BITS = 256
_EC_BITS = 256

STATUS_SIGNING = "signing"
STATUS_VERIFICATION = "verification"


@dataclass(frozen=True)
class SigningKey:
    kid: str
    algorithm: SigningAlgorithm
    private_key: Any  # RSA/EC private key object, or the HMAC secret (bytes)
    created_at: float

    @property
    def is_symmetric(self) -> bool:
        return self.algorithm.symmetric

    @property
    def public_key(self) -> Any:
        """Public material. For symmetric keys this is the secret itself."""
        if self.is_symmetric:
            return self.private_key
        return self.private_key.public_key()

    def public_view(self) -> VerificationKey:
        return VerificationKey(kid=self.kid, algorithm=self.algorithm, key=self.public_key)

    def __repr__(self) -> str:
        return f"SigningKey(kid={self.kid!r}, algorithm={self.algorithm.value})"


@dataclass(frozen=True)
class _RetiredKey:
    key: SigningKey
    verify_until: float


@dataclass(frozen=True)
class _KeyState:
    current: SigningKey
    retired: tuple[_RetiredKey, ...] = field(default=())


def _new_key_material(algorithm: SigningAlgorithm, key_size: int | None) -> Any:
    if algorithm is SigningAlgorithm.RS256:
        bits = key_size or _RSA_DEFAULT_BITS
        if bits < _RSA_DEFAULT_BITS:
            raise ValueError(f"RSA key size must be at least {_RSA_DEFAULT_BITS} bits, got {bits}")
        return rsa.generate_private_key(public_exponent=65537, key_size=bits)
    if algorithm is SigningAlgorithm.ES256:
        if key_size not in (None, _EC_BITS):
            raise ValueError(f"ES256 keys are P-256 ({_EC_BITS} bits), got {key_size}")
        return ec.generate_private_key(ec.SECP256R1())
    bits = key_size or _HMAC_DEFAULT_BITS
    if bits < _HMAC_DEFAULT_BITS or bits % 8:
        raise ValueError(f"HMAC key size must be a multiple of 8 and at least {_HMAC_DEFAULT_BITS} bits, got {bits}")
    return secrets.token_bytes(bits // 8)


def _algorithm_for_private_key(private_key: Any) -> SigningAlgorithm:
    if isinstance(private_key, rsa.RSAPrivateKey):
        return SigningAlgorithm.RS256
    if isinstance(private_key, ec.EllipticCurvePrivateKey) and isinstance(private_key.curve, ec.SECP256R1):
        return SigningAlgorithm.ES256
    raise UnsupportedAlgorithm(type(private_key).__name__)


class KeyManager:
    def __init__(
        self,
        algorithm: str | SigningAlgorithm = SigningAlgorithm.RS256,
        *,
        key_size: int | None = None,
        grace_seconds: float = 330,
        clock: Callable[[], float] = time.time,
        initial_key: Any = None,
    ):
        """
        algorithm/key_size are the defaults for rotate(). initial_key may be a private key
        object (e.g. loaded from PEM) to use as the first current key instead of generating one.
        """
        self.algorithm = SigningAlgorithm.parse(algorithm)
        self.key_size = key_size
        self.grace_seconds = grace_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # every kid ever handed out by this manager; never shrinks
        self._issued_kids: set[str] = set()
        if initial_key is not None:
            first = self._wrap(initial_key, _algorithm_for_private_key(initial_key))
        else:
            first = self.generate_key(self.algorithm, key_size)
        self._state = _KeyState(current=first)

    def generate_key(self, algorithm: str | SigningAlgorithm, key_size: int | None = None) -> SigningKey:
        """Create a fresh key with a never-before-issued kid. Does not make it current."""
        alg = SigningAlgorithm.parse(algorithm)
        return self._wrap(_new_key_material(alg, key_size), alg)

    def _wrap(self, material: Any, algorithm: SigningAlgorithm) -> SigningKey:
        with self._lock:
            if algorithm.symmetric:
                kid = secrets.token_urlsafe(12)
                while kid in self._issued_kids:
                    kid = secrets.token_urlsafe(12)
            else:
                kid = jwk_thumbprint(public_key_to_jwk(material.public_key(), algorithm))
                if kid in self._issued_kids:
                    raise ValueError(f"Key with kid {kid!r} was already issued by this key manager")
            self._issued_kids.add(kid)
        return SigningKey(kid=kid, algorithm=algorithm, private_key=material, created_at=self._clock())

    def current_signing_key(self) -> SigningKey:
        return self._state.current

    def rotate(self, algorithm: str | SigningAlgorithm | None = None, key_size: int | None = None) -> SigningKey:
        """Generate a new current key; the previous one becomes verification-only for grace_seconds."""
        return self.replace_current(algorithm, key_size)[0]

    def replace_current(
        self, algorithm: str | SigningAlgorithm | None = None, key_size: int | None = None
    ) -> tuple[SigningKey, SigningKey]:
        """Rotate and return (new key, key it replaced), both taken from the same swap."""
        alg = SigningAlgorithm.parse(algorithm) if algorithm is not None else self.algorithm
        if key_size is None and alg is self.algorithm:
            key_size = self.key_size
        new_key = self.generate_key(alg, key_size)
        with self._lock:
            now = self._clock()
            old = self._state
            retired = tuple(r for r in old.retired if r.verify_until > now)
            retired += (_RetiredKey(key=old.current, verify_until=now + self.grace_seconds),)
            self._state = _KeyState(current=new_key, retired=retired)
        logger.info(
            "Rotated signing key: new kid=%s alg=%s; previous kid=%s verification-only for %ss",
            new_key.kid,
            new_key.algorithm.value,
            old.current.kid,
            self.grace_seconds,
        )
        return new_key, old.current

    def retain(self, key: SigningKey | Any, verify_until: float | None = None) -> SigningKey:
        """Add a key to the verification-only set (e.g. the previous key loaded at startup)."""
        if not isinstance(key, SigningKey):
            key = self._wrap(key, _algorithm_for_private_key(key))
        until = verify_until if verify_until is not None else self._clock() + self.grace_seconds
        with self._lock:
            old = self._state
            if key.kid == old.current.kid or any(r.key.kid == key.kid for r in old.retired):
                raise ValueError(f"Key {key.kid!r} is already managed")
            self._state = _KeyState(current=old.current, retired=old.retired + (_RetiredKey(key, until),))
        return key

    def purge_expired(self) -> list[str]:
        """Drop keys whose grace window has ended. Returns the purged kids."""
        with self._lock:
            now = self._clock()
            old = self._state
            kept = tuple(r for r in old.retired if r.verify_until > now)
            purged = [r.key.kid for r in old.retired if r.verify_until <= now]
            if purged:
                self._state = _KeyState(current=old.current, retired=kept)
        if purged:
            logger.info("Purged expired verification keys: %s", purged)
        return purged

    def _live_keys(self) -> list[SigningKey]:
        state = self._state
        now = self._clock()
        return [state.current] + [r.key for r in reversed(state.retired) if r.verify_until > now]

    def verification_key_set(self) -> KeySet:
        """Every key that may verify a token right now, symmetric ones included. In-process use only."""
        return KeySet(k.public_view() for k in self._live_keys())

    def public_key_set(self) -> KeySet:
        """Publishable key set: current + in-grace keys, asymmetric only."""
        return KeySet(k.public_view() for k in self._live_keys() if not k.is_symmetric)

    def describe(self) -> list[dict]:
        state = self._state
        now = self._clock()
        rows = [
            {
                "kid": state.current.kid,
                "alg": state.current.algorithm.value,
                "status": STATUS_SIGNING,
                "published": not state.current.is_symmetric,
                "created_at": int(state.current.created_at),
                "verify_until": None,
            }
        ]
        for r in reversed(state.retired):
            if r.verify_until <= now:
                continue
            rows.append(
                {
                    "kid": r.key.kid,
                    "alg": r.key.algorithm.value,
                    "status": STATUS_VERIFICATION,
                    "published": not r.key.is_symmetric,
                    "created_at": int(r.key.created_at),
                    "verify_until": int(r.verify_until),
                }
            )
        return rows


def _serialize_private(key) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _deserialize_private(pem: bytes):
    return serialization.load_pem_private_key(pem, password=None)


def load_or_create_signing_key(path: str, algorithm: SigningAlgorithm, key_size: int | None = None):
    """
    Load an RSA/EC private key from path, or generate one and save it there.
    Returns the private key object.
    """
    p = Path(path)
    if p.exists():
        try:
            key = _deserialize_private(p.read_bytes())
            _algorithm_for_private_key(key)
            return key
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            logger.warning("Failed to load signing key from %s: %s; generating new key", path, e)
    key = _new_key_material(algorithm, key_size)
    try:
        p.write_bytes(_serialize_private(key))
        logger.info("Generated and saved signing key to %s", path)
    except OSError as e:
        logger.warning("Could not save signing key to %s: %s", path, e)
    return key


def _load_previous_key(path: str):
    """Load optional previous key (for rotation). Returns the private key or None if missing/invalid."""
    p = Path(path)
    if not p.exists():
        return None
    try:
        key = _deserialize_private(p.read_bytes())
        _algorithm_for_private_key(key)
        return key
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        logger.warning("Failed to load previous signing key from %s: %s", path, e)
        return None


def build_key_manager() -> KeyManager:
    """KeyManager wired from auth_server.config (PEM persistence for asymmetric keys)."""
    from auth_server.config import (
        KEY_GRACE_SECONDS,
        SIGNING_ALGORITHM,
        SIGNING_KEY_PATH,
        SIGNING_KEY_PREVIOUS_PATH,
        SIGNING_KEY_SIZE,
    )

    algorithm = SigningAlgorithm.parse(SIGNING_ALGORITHM)
    initial = None
    if SIGNING_KEY_PATH and not algorithm.symmetric:
        initial = load_or_create_signing_key(SIGNING_KEY_PATH, algorithm, SIGNING_KEY_SIZE)
    manager = KeyManager(algorithm, key_size=SIGNING_KEY_SIZE, grace_seconds=KEY_GRACE_SECONDS, initial_key=initial)

    if SIGNING_KEY_PREVIOUS_PATH:
        prev = _load_previous_key(SIGNING_KEY_PREVIOUS_PATH)
        if prev is not None:
            try:
                retained = manager.retain(prev)
                logger.info("Loaded previous signing key (kid=%s) for rotation", retained.kid)
            except ValueError as e:
                logger.warning("Ignoring previous signing key from %s: %s", SIGNING_KEY_PREVIOUS_PATH, e)
    current = manager.current_signing_key()
    logger.info("Signing key ready: kid=%s alg=%s", current.kid, current.algorithm.value)
    return manager


@lru_cache(maxsize=1)
def get_key_manager() -> KeyManager:
    """Process-wide KeyManager for the FastAPI app."""
    return build_key_manager()

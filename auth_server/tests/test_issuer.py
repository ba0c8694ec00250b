"""Tests for TokenIssuer against an in-memory credential store and the token verifier."""
import jwt
import pytest

from auth_server.issuer import ClientCredentials, TokenIssuer
from auth_server.keys import KeyManager
from token_core.errors import InvalidCredentials, ScopeNotAuthorized, SigningFailure
from token_core.verifier import FailureReason, StaticKeySource, TokenVerifier

ISSUER = "https://auth.test"
NOW = 1_700_000_000


class MemoryCredentialStore:
    def __init__(self, clients):
        # client_id -> (secret, scopes)
        self.clients = clients

    def authenticate_client(self, client_id, client_secret):
        entry = self.clients.get(client_id)
        return entry is not None and client_secret is not None and entry[0] == client_secret

    def authorized_scopes(self, client_id, subject):
        entry = self.clients.get(client_id)
        return set(entry[1]) if entry else set()


@pytest.fixture
def key_manager():
    return KeyManager("RS256", clock=lambda: NOW)


@pytest.fixture
def issuer(key_manager):
    store = MemoryCredentialStore({"svc": ("s3cret", {"read", "write"})})
    return TokenIssuer(key_manager, store, issuer=ISSUER, lifetime=300, clock=lambda: NOW)


def _verifier(key_manager, **kwargs):
    return TokenVerifier(StaticKeySource(key_manager.verification_key_set), issuer=ISSUER, clock=lambda: NOW, **kwargs)


def test_issue_and_verify(issuer, key_manager):
    issued = issuer.issue(ClientCredentials("svc", "s3cret"), "read", subject="alice")

    assert issued.header == {"alg": "RS256", "kid": key_manager.current_signing_key().kid, "typ": "JWT"}
    assert jwt.get_unverified_header(issued.token)["kid"] == issued.kid
    assert issued.expires_in == 300
    assert issued.claims["exp"] == NOW + 300
    assert issued.claims["iat"] == NOW
    assert issued.claims["client_id"] == "svc"
    assert issued.claims["jti"]

    result = _verifier(key_manager).verify(issued.token)
    assert result.valid
    assert dict(result.principal.claims) == issued.claims
    assert result.principal.subject == "alice"
    assert result.principal.scopes == ("read",)


def test_subject_defaults_to_client(issuer):
    assert issuer.issue(ClientCredentials("svc", "s3cret"), "read").claims["sub"] == "svc"


def test_empty_request_grants_all_authorized(issuer):
    assert issuer.issue(ClientCredentials("svc", "s3cret"), None).scope == "read write"
    assert issuer.issue(ClientCredentials("svc", "s3cret"), "").scope == "read write"


def test_scope_list_request(issuer):
    assert issuer.issue(ClientCredentials("svc", "s3cret"), ["write", "read"]).scope == "read write"


def test_unauthorized_scope_rejected(issuer):
    with pytest.raises(ScopeNotAuthorized) as excinfo:
        issuer.issue(ClientCredentials("svc", "s3cret"), "read admin")
    assert excinfo.value.scopes == {"admin"}
    assert excinfo.value.error == "invalid_scope"


@pytest.mark.parametrize(
    "credentials",
    [
        ClientCredentials("svc", "wrong"),
        ClientCredentials("svc", None),
        ClientCredentials("nobody", "s3cret"),
    ],
)
def test_invalid_credentials(issuer, credentials):
    with pytest.raises(InvalidCredentials):
        issuer.issue(credentials, "read")


def test_credentials_repr_hides_secret():
    assert "s3cret" not in repr(ClientCredentials("svc", "s3cret"))


def test_audience_claim(key_manager):
    store = MemoryCredentialStore({"svc": ("s3cret", {"read"})})
    issuer = TokenIssuer(
        key_manager, store, issuer=ISSUER, lifetime=60, audience="https://api.test", clock=lambda: NOW
    )
    token = issuer.issue(ClientCredentials("svc", "s3cret"), "read").token
    assert _verifier(key_manager, audience="https://api.test").verify(token).valid
    assert _verifier(key_manager, audience="https://other.test").verify(token).reason is (
        FailureReason.MISSING_REQUIRED_CLAIM
    )


def test_extra_claims(issuer):
    issued = issuer.issue(ClientCredentials("svc", "s3cret"), "read", extra_claims={"tenant": "acme"})
    assert issued.claims["tenant"] == "acme"
    with pytest.raises(ValueError):
        issuer.issue(ClientCredentials("svc", "s3cret"), "read", extra_claims={"sub": "root"})


def test_signing_failure_is_server_fault():
    class BrokenKeyManager:
        def current_signing_key(self):
            raise ValueError("key material unavailable")

    store = MemoryCredentialStore({"svc": ("s3cret", {"read"})})
    issuer = TokenIssuer(BrokenKeyManager(), store, issuer=ISSUER, lifetime=60)
    with pytest.raises(SigningFailure):
        issuer.issue(ClientCredentials("svc", "s3cret"), "read")


def test_tokens_from_every_key_verify_through_rotations(issuer, key_manager):
    verifier = _verifier(key_manager)
    tokens = []
    for algorithm in ["ES256", "HS256", "RS256"]:
        tokens.append(issuer.issue(ClientCredentials("svc", "s3cret"), "read"))
        key_manager.rotate(algorithm)
    tokens.append(issuer.issue(ClientCredentials("svc", "s3cret"), "read"))

    assert len({t.kid for t in tokens}) == 4
    for issued in tokens:
        assert issued.kid in key_manager.verification_key_set()
        assert verifier.verify(issued.token).valid


def test_kid_matches_published_key_at_issuance(issuer, key_manager):
    issued = issuer.issue(ClientCredentials("svc", "s3cret"), "read")
    jwks = key_manager.public_key_set().to_jwks()
    published = {k["kid"]: k for k in jwks["keys"]}
    assert published[issued.kid]["alg"] == issued.header["alg"]

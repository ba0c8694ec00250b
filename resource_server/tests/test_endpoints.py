"""
Tests for resource server endpoints: /public, /me, /notes, /admin success and failure paths.
The verifier is swapped for one over a local key set; test_end_to_end.py covers the JWKS path.
"""
import json
import time

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from resource_server.auth import get_verifier
from resource_server.config import API_AUDIENCE, ISSUER
from resource_server.main import app
from token_core.keyset import KeySet, SigningAlgorithm, VerificationKey, b64url
from token_core.verifier import StaticKeySource, TokenVerifier

KID = "test-key"


@pytest.fixture(scope="module")
def signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def client(signing_key):
    key_set = KeySet([VerificationKey(KID, SigningAlgorithm.RS256, signing_key.public_key())])
    verifier = TokenVerifier(StaticKeySource(key_set), issuer=ISSUER, audience=API_AUDIENCE)
    app.dependency_overrides[get_verifier] = lambda: verifier
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _make_token(key, sub="alice", scope="read", *, kid=KID, exp_in=3600, **overrides):
    now = int(time.time())
    payload = {"sub": sub, "scope": scope, "iss": ISSUER, "aud": API_AUDIENCE, "iat": now, "exp": now + exp_in}
    payload.update(overrides)
    payload = {k: v for k, v in payload.items() if v is not None}
    return jwt.encode(payload, key, algorithm="RS256", headers={"kid": kid})


def _raw_token(header):
    payload = {"sub": "alice", "scope": "read", "iss": ISSUER, "aud": API_AUDIENCE, "iat": 0, "exp": 2**31}
    return ".".join(b64url(json.dumps(part).encode()) for part in (header, payload)) + ".AAAA"


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_public_no_auth(client):
    r = client.get("/public")
    assert r.status_code == 200
    assert r.json()["access"] == "anonymous"


def test_me_with_read_scope(client, signing_key):
    r = client.get("/me", headers=_bearer(_make_token(signing_key, scope="read write")))
    assert r.status_code == 200
    assert r.json()["sub"] == "alice"
    assert r.json()["scope"] == ["read", "write"]


def test_me_without_token(client):
    r = client.get("/me")
    assert r.status_code == 401
    assert r.json()["error"] == "invalid_request"
    assert r.headers["www-authenticate"].startswith("Bearer")


def test_me_with_basic_auth_header(client):
    r = client.get("/me", headers={"Authorization": "Basic YTpi"})
    assert r.status_code == 401


def test_rejections_are_indistinguishable(client, signing_key):
    other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    tokens = {
        "expired": _make_token(signing_key, exp_in=-3600),
        "bad_signature": _make_token(other_key),
        "unknown_kid": _make_token(signing_key, kid="99"),
        "malformed": "not.a.jwt",
        "wrong_issuer": _make_token(signing_key, iss="https://evil.test"),
        "no_scope_claim": _make_token(signing_key, scope=None),
        "numeric_kid": _raw_token({"alg": "RS256", "kid": 7}),
        "critical_header": _raw_token({"alg": "RS256", "kid": KID, "crit": ["x"]}),
    }
    responses = {name: client.get("/me", headers=_bearer(token)) for name, token in tokens.items()}
    bodies = {name: r.json() for name, r in responses.items()}

    assert all(r.status_code == 401 for r in responses.values())
    assert len({str(body) for body in bodies.values()}) == 1
    assert bodies["expired"]["error"] == "invalid_token"
    assert len({r.headers["www-authenticate"] for r in responses.values()}) == 1


def test_missing_scope_is_403(client, signing_key):
    r = client.get("/admin", headers=_bearer(_make_token(signing_key, scope="read")))
    assert r.status_code == 403
    assert r.json()["error"] == "insufficient_scope"
    assert 'scope="admin"' in r.headers["www-authenticate"]


def test_admin_with_admin_scope(client, signing_key):
    r = client.get("/admin", headers=_bearer(_make_token(signing_key, sub="root", scope="admin")))
    assert r.status_code == 200
    assert r.json()["sub"] == "root"


def test_notes_write_then_read(client, signing_key):
    writer = _make_token(signing_key, sub="note-taker", scope="read write")
    r = client.post("/notes", json={"text": "first"}, headers=_bearer(writer))
    assert r.status_code == 201
    assert r.json()["count"] == 1

    r = client.get("/notes", headers=_bearer(_make_token(signing_key, sub="note-taker", scope="read")))
    assert r.status_code == 200
    assert r.json()["notes"] == ["first"]


def test_notes_write_requires_write_scope(client, signing_key):
    r = client.post("/notes", json={"text": "x"}, headers=_bearer(_make_token(signing_key, scope="read")))
    assert r.status_code == 403


def test_notes_rejects_empty_text(client, signing_key):
    r = client.post("/notes", json={"text": ""}, headers=_bearer(_make_token(signing_key, scope="write")))
    assert r.status_code == 422


def test_health(client):
    assert client.get("/health").json()["service"] == "resource_server"

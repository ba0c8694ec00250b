"""
Token introspection endpoint (POST /oauth/introspect). RFC 7662.
Caller must authenticate as a registered client. Tokens are checked with the same
TokenVerifier the resource server uses, against this server's live keys
(HS256 keys included, since nothing leaves the process).
"""
import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from sqlalchemy.orm import Session

from auth_server.audit import EVENT_INTROSPECT, OUTCOME_FAIL, OUTCOME_SUCCESS, get_client_ip, log_audit
from auth_server.client_auth import SqlCredentialStore, require_client_auth
from auth_server.config import CLOCK_SKEW_SECONDS, ISSUER
from auth_server.database import get_db
from auth_server.keys import get_key_manager
from token_core.verifier import StaticKeySource, TokenVerifier

logger = logging.getLogger(__name__)
router = APIRouter()


@lru_cache(maxsize=1)
def get_local_verifier() -> TokenVerifier:
    return TokenVerifier(
        StaticKeySource(get_key_manager().verification_key_set),
        issuer=ISSUER,
        clock_skew=CLOCK_SKEW_SECONDS,
    )


@router.post("/oauth/introspect")
def introspect(
    request: Request,
    token: str = Form(...),
    token_type_hint: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    db: Session = Depends(get_db),
):
    """
    RFC 7662: whether the token is active, and its claims if so.
    Any rejection reason is reported only as {"active": false}.
    """
    if not token.strip():
        raise HTTPException(
            status_code=400,
            detail={"error": "invalid_request", "error_description": "token is required"},
        )
    caller = require_client_auth(SqlCredentialStore(db), request, client_id, client_secret)

    if token_type_hint and token_type_hint.strip().lower() not in ("", "access_token"):
        logger.debug("Ignoring token_type_hint=%s; only access tokens are introspectable", token_type_hint)

    result = get_local_verifier().verify(token.strip())
    log_audit(
        db,
        EVENT_INTROSPECT,
        client_id=caller.client_id,
        subject=result.principal.subject if result.valid else None,
        ip=get_client_ip(request),
        outcome=OUTCOME_SUCCESS if result.valid else OUTCOME_FAIL,
    )
    if not result.valid:
        return {"active": False}

    claims = result.principal.claims
    body = {
        "active": True,
        "token_type": "Bearer",
        "scope": " ".join(result.principal.scopes),
        "sub": result.principal.subject,
        "client_id": claims.get("client_id"),
        "iss": result.principal.issuer,
        "iat": result.principal.issued_at,
        "exp": result.principal.expires_at,
        "jti": claims.get("jti"),
    }
    if "aud" in claims:
        body["aud"] = claims["aud"]
    return body

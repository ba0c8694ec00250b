"""
Token endpoint (POST /oauth/token). client_credentials and password grants.
Errors use the RFC 6749 §5.2 body: {"error": ..., "error_description": ...}.
"""
import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Request, Response
from sqlalchemy.orm import Session

from auth_server.audit import (
    EVENT_TOKEN_DENIED,
    EVENT_TOKEN_ISSUED,
    OUTCOME_FAIL,
    get_client_ip,
    log_audit,
)
from auth_server.client_auth import INVALID_CLIENT_HEADERS, SqlCredentialStore, get_client_credentials_from_request
from auth_server.config import (
    ACCESS_TOKEN_EXPIRES,
    API_AUDIENCE,
    ISSUER,
    RATE_LIMIT_TOKEN_PER_MINUTE,
)
from auth_server.database import get_db
from auth_server.issuer import TokenIssuer
from auth_server.keys import get_key_manager
from auth_server.rate_limit import token_limiter
from token_core.errors import InvalidCredentials, ScopeNotAuthorized, SigningFailure

logger = logging.getLogger(__name__)
router = APIRouter()

SUPPORTED_GRANTS = ("client_credentials", "password")


def _oauth_error(status_code: int, error: str, description: str, headers: dict | None = None) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": error, "error_description": description},
        headers=headers,
    )


def build_token_issuer(store: SqlCredentialStore) -> TokenIssuer:
    return TokenIssuer(
        get_key_manager(),
        store,
        issuer=ISSUER,
        lifetime=ACCESS_TOKEN_EXPIRES,
        audience=API_AUDIENCE,
    )


@router.post("/oauth/token")
def token(
    request: Request,
    response: Response,
    grant_type: str = Form(...),
    scope: str | None = Form(None),
    username: str | None = Form(None),
    password: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    db: Session = Depends(get_db),
):
    """
    client_credentials: token for the client itself (sub = client_id).
    password: token for a resource owner (sub = username); scope narrowed to what both hold.
    """
    ip = get_client_ip(request)
    allowed, retry_after = token_limiter.check_and_consume(f"token:{ip or 'unknown'}", RATE_LIMIT_TOKEN_PER_MINUTE)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail={"error": "too_many_requests", "error_description": "Rate limit exceeded"},
            headers={"Retry-After": str(retry_after)},
        )

    if grant_type not in SUPPORTED_GRANTS:
        raise _oauth_error(
            400, "unsupported_grant_type", "Only client_credentials and password grants are supported"
        )

    credentials = get_client_credentials_from_request(request, client_id, client_secret)
    if credentials is None:
        raise _oauth_error(401, "invalid_client", "Client authentication required", INVALID_CLIENT_HEADERS)

    store = SqlCredentialStore(db)
    subject = None
    if grant_type == "password":
        if not username or not password:
            raise _oauth_error(400, "invalid_request", "username and password are required for password grant")
        # client first, so unauthenticated callers cannot probe user passwords
        if not store.authenticate_client(credentials.client_id, credentials.client_secret):
            log_audit(db, EVENT_TOKEN_DENIED, client_id=credentials.client_id, ip=ip, outcome=OUTCOME_FAIL)
            raise _oauth_error(401, "invalid_client", "Invalid client credentials", INVALID_CLIENT_HEADERS)
        if not store.authenticate_user(username, password):
            log_audit(
                db, EVENT_TOKEN_DENIED, client_id=credentials.client_id, subject=username, ip=ip, outcome=OUTCOME_FAIL
            )
            raise _oauth_error(400, "invalid_grant", "Invalid resource owner credentials")
        subject = username

    try:
        issued = build_token_issuer(store).issue(credentials, scope, subject)
    except InvalidCredentials:
        log_audit(db, EVENT_TOKEN_DENIED, client_id=credentials.client_id, ip=ip, outcome=OUTCOME_FAIL)
        raise _oauth_error(401, "invalid_client", "Invalid client credentials", INVALID_CLIENT_HEADERS)
    except ScopeNotAuthorized as e:
        log_audit(
            db, EVENT_TOKEN_DENIED, client_id=credentials.client_id, subject=subject, ip=ip, outcome=OUTCOME_FAIL
        )
        raise _oauth_error(400, "invalid_scope", str(e))
    except SigningFailure:
        logger.error("Token issuance failed for client_id=%s: signing key unavailable", credentials.client_id)
        raise _oauth_error(500, "server_error", "Token could not be issued")

    log_audit(
        db,
        EVENT_TOKEN_ISSUED,
        client_id=credentials.client_id,
        subject=issued.claims["sub"],
        kid=issued.kid,
        ip=ip,
    )
    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"
    return {
        "access_token": issued.token,
        "token_type": "Bearer",
        "expires_in": issued.expires_in,
        "scope": issued.scope,
    }

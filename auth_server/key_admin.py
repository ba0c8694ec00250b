"""
Key administration: list managed keys, rotate the signing key.
Only clients registered with the keys.admin scope may call these (HTTP Basic).
"""
import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from sqlalchemy.orm import Session

from auth_server.audit import EVENT_KEY_ROTATED, get_client_ip, log_audit
from auth_server.client_auth import require_admin_client
from auth_server.database import get_db
from auth_server.issuer import ClientCredentials
from auth_server.keys import get_key_manager
from token_core.errors import UnsupportedAlgorithm

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/keys")


@router.get("")
def list_keys(_admin: ClientCredentials = Depends(require_admin_client)):
    """Current signing key and verification-only keys still inside their grace window."""
    return {"keys": get_key_manager().describe()}


@router.post("/rotate")
def rotate_key(
    request: Request,
    algorithm: str | None = Form(None),
    key_size: int | None = Form(None),
    db: Session = Depends(get_db),
    admin: ClientCredentials = Depends(require_admin_client),
):
    """
    Make a fresh key current. The previous key stays in the JWKS for the grace period,
    so tokens it signed keep verifying.
    """
    manager = get_key_manager()
    try:
        new_key, previous = manager.replace_current(algorithm or None, key_size)
    except (UnsupportedAlgorithm, ValueError) as e:
        raise HTTPException(
            status_code=400,
            detail={"error": "invalid_request", "error_description": str(e)},
        )
    purged = manager.purge_expired()
    log_audit(db, EVENT_KEY_ROTATED, client_id=admin.client_id, kid=new_key.kid, ip=get_client_ip(request))
    return {
        "kid": new_key.kid,
        "alg": new_key.algorithm.value,
        "published": not new_key.is_symmetric,
        "previous_kid": previous.kid,
        "purged": purged,
    }

"""
Audit trail for token issuance, introspection and key rotation.
Records name the client, subject and kid involved; tokens and secrets are never stored.
GET /audit lists recent events for administrative clients.
"""
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from auth_server.client_auth import require_admin_client
from auth_server.database import get_db
from auth_server.issuer import ClientCredentials
from auth_server.models import AuditLog

logger = logging.getLogger(__name__)

EVENT_TOKEN_ISSUED = "token_issued"
EVENT_TOKEN_DENIED = "token_denied"
EVENT_INTROSPECT = "introspect"
EVENT_KEY_ROTATED = "key_rotated"

OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"

MAX_AUDIT_ROWS = 500


def get_client_ip(request: Request | None) -> str | None:
    """Peer address of the request. X-Forwarded-For is not trusted."""
    if request is None or request.client is None:
        return None
    return request.client.host


def log_audit(
    db: Session,
    event_type: str,
    *,
    client_id: str | None = None,
    subject: str | None = None,
    kid: str | None = None,
    ip: str | None = None,
    outcome: str = OUTCOME_SUCCESS,
) -> None:
    entry = AuditLog(event_type=event_type, client_id=client_id, subject=subject, kid=kid, ip=ip, outcome=outcome)
    db.add(entry)
    db.commit()
    logger.info("audit %s outcome=%s client_id=%s sub=%s kid=%s", event_type, outcome, client_id, subject, kid)


def query_audit_logs(
    db: Session,
    *,
    limit: int = 100,
    event_type: str | None = None,
    outcome: str | None = None,
    client_id: str | None = None,
    since: datetime | None = None,
) -> list[dict]:
    """Most recent first; limit is clamped to 1..MAX_AUDIT_ROWS."""
    q = db.query(AuditLog)
    for column, value in (
        (AuditLog.event_type, event_type),
        (AuditLog.outcome, outcome),
        (AuditLog.client_id, client_id),
    ):
        if value:
            q = q.filter(column == value)
    if since is not None:
        q = q.filter(AuditLog.created_at >= since)
    rows = q.order_by(AuditLog.id.desc()).limit(min(max(1, limit), MAX_AUDIT_ROWS)).all()
    return [row.to_dict() for row in rows]


router = APIRouter(tags=["audit"])


@router.get("/audit")
def list_audit_logs(
    limit: int = Query(100, ge=1, le=MAX_AUDIT_ROWS),
    event_type: str | None = None,
    outcome: str | None = None,
    client_id: str | None = None,
    since: datetime | None = None,
    db: Session = Depends(get_db),
    _admin: ClientCredentials = Depends(require_admin_client),
):
    """Recent audit events. Requires a client registered with keys.admin."""
    return query_audit_logs(
        db, limit=limit, event_type=event_type, outcome=outcome, client_id=client_id, since=since
    )

"""
Client authentication and the SQL-backed credential store. RFC 6749 §2.3.1.
Credentials via Authorization: Basic base64(client_id:client_secret) or client_id + client_secret in form.
"""
import base64
import binascii
import logging
from urllib.parse import unquote_plus

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from auth_server.config import SCOPE_KEYS_ADMIN
from auth_server.database import get_db
from auth_server.issuer import ClientCredentials
from auth_server.models import Client, User
from auth_server.seed import verify_password

logger = logging.getLogger(__name__)

INVALID_CLIENT_HEADERS = {"WWW-Authenticate": 'Basic realm="oauth"'}


def _parse_basic(header_value: str) -> tuple[str, str] | None:
    """Parse 'Basic <base64(client_id:client_secret)>'. Returns (client_id, client_secret) or None."""
    if not header_value or not header_value.strip().lower().startswith("basic "):
        return None
    try:
        encoded = header_value.strip()[6:].strip()
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if ":" not in decoded:
        return None
    client_id, _, client_secret = decoded.partition(":")
    # RFC 6749 §2.3.1: both parts are form-urlencoded before base64
    return unquote_plus(client_id).strip(), unquote_plus(client_secret)


class SqlCredentialStore:
    """CredentialStore over the clients/users tables; secrets are bcrypt hashes."""

    def __init__(self, db: Session):
        self.db = db
        # (client_id, secret) pairs already checked; one bcrypt round per request
        self._verified: set[tuple[str, str]] = set()

    def _client(self, client_id: str) -> Client | None:
        return self.db.query(Client).filter(Client.client_id == client_id).first()

    def _user(self, username: str) -> User | None:
        return self.db.query(User).filter(User.username == username).first()

    def authenticate_client(self, client_id: str, client_secret: str | None) -> bool:
        if not client_secret:
            return False
        if (client_id, client_secret) in self._verified:
            return True
        client = self._client(client_id)
        if client is None or not verify_password(client_secret, client.client_secret_hash):
            return False
        self._verified.add((client_id, client_secret))
        return True

    def authenticate_user(self, username: str, password: str) -> bool:
        user = self._user(username)
        if user is None or not password:
            return False
        return verify_password(password, user.password_hash)

    def authorized_scopes(self, client_id: str, subject: str | None) -> set[str]:
        """Client's scopes; for a resource owner subject, narrowed to what the user holds."""
        client = self._client(client_id)
        if client is None:
            return set()
        scopes = client.scope_set
        if subject is not None and subject != client_id:
            user = self._user(subject)
            scopes &= user.scope_set if user is not None else set()
        return scopes


def get_client_credentials_from_request(
    request: Request,
    client_id_form: str | None,
    client_secret_form: str | None,
) -> ClientCredentials | None:
    """
    Get client credentials from the form or from Authorization Basic.
    Form takes precedence if both present.
    """
    if client_id_form and client_secret_form is not None:
        return ClientCredentials(client_id_form.strip(), client_secret_form)
    auth_header = request.headers.get("Authorization")
    basic = _parse_basic(auth_header) if auth_header else None
    if basic:
        return ClientCredentials(*basic)
    if client_id_form:
        return ClientCredentials(client_id_form.strip(), None)
    return None


def require_client_auth(
    store: SqlCredentialStore,
    request: Request,
    client_id_form: str | None = None,
    client_secret_form: str | None = None,
) -> ClientCredentials:
    """
    Resolve and authenticate the calling client. Raises 401 invalid_client when
    credentials are missing or wrong. Returns the verified credentials.
    """
    credentials = get_client_credentials_from_request(request, client_id_form, client_secret_form)
    if credentials is None or not credentials.client_id:
        raise HTTPException(
            status_code=401,
            detail={"error": "invalid_client", "error_description": "Client authentication required"},
            headers=INVALID_CLIENT_HEADERS,
        )
    if not store.authenticate_client(credentials.client_id, credentials.client_secret):
        logger.info("Client authentication failed for client_id=%s", credentials.client_id)
        raise HTTPException(
            status_code=401,
            detail={"error": "invalid_client", "error_description": "Invalid client credentials"},
            headers=INVALID_CLIENT_HEADERS,
        )
    return credentials


def require_admin_client(request: Request, db: Session = Depends(get_db)) -> ClientCredentials:
    """Dependency: authenticated client (HTTP Basic) whose registered scopes include keys.admin."""
    store = SqlCredentialStore(db)
    credentials = require_client_auth(store, request)
    if SCOPE_KEYS_ADMIN not in store.authorized_scopes(credentials.client_id, None):
        raise HTTPException(
            status_code=403,
            detail={"error": "insufficient_scope", "error_description": f"Scope '{SCOPE_KEYS_ADMIN}' required"},
        )
    return credentials

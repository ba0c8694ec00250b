"""
Seed an OAuth client and a resource owner from environment. No hardcoded credentials.
Optional: OAUTH_SEED_CLIENT_ID + OAUTH_SEED_CLIENT_SECRET (+ OAUTH_SEED_CLIENT_SCOPES),
OAUTH_SEED_USER + OAUTH_SEED_PASSWORD (+ OAUTH_SEED_USER_SCOPES).
"""
import logging
import os

import bcrypt
from sqlalchemy.orm import Session

from auth_server.config import ALLOWED_SCOPES
from auth_server.models import Client, User

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    # Bcrypt has a 72-byte limit
    raw = password.encode("utf-8")
    if len(raw) > 72:
        raw = raw[:72]
    return bcrypt.hashpw(raw, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    raw = plain.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(raw, hashed.encode("utf-8"))
    except ValueError:
        # stored hash is not a bcrypt hash
        return False


def normalize_scopes(value: str | None) -> str:
    """Space-separated, sorted, restricted to ALLOWED_SCOPES."""
    requested = set((value or "").split())
    unknown = requested - ALLOWED_SCOPES
    if unknown:
        logger.warning("Ignoring unknown scope(s) in seed: %s", " ".join(sorted(unknown)))
    return " ".join(sorted(requested & ALLOWED_SCOPES))


def seed_from_env(db: Session) -> None:
    """Create one client and/or one user from env if set."""
    client_id = os.environ.get("OAUTH_SEED_CLIENT_ID")
    client_secret = os.environ.get("OAUTH_SEED_CLIENT_SECRET")
    if client_id and client_secret:
        if db.query(Client).filter(Client.client_id == client_id).first() is None:
            scopes = normalize_scopes(os.environ.get("OAUTH_SEED_CLIENT_SCOPES", "read"))
            db.add(Client(client_id=client_id, client_secret_hash=hash_password(client_secret), scopes=scopes))
            db.commit()
            logger.info("Seeded client: %s (scopes=%s)", client_id, scopes)
        else:
            logger.debug("Client already exists: %s", client_id)

    seed_user = os.environ.get("OAUTH_SEED_USER")
    seed_password = os.environ.get("OAUTH_SEED_PASSWORD")
    if seed_user and seed_password:
        if db.query(User).filter(User.username == seed_user).first() is None:
            scopes = normalize_scopes(os.environ.get("OAUTH_SEED_USER_SCOPES", "read"))
            db.add(User(username=seed_user, password_hash=hash_password(seed_password), scopes=scopes))
            db.commit()
            logger.info("Seeded user: %s (scopes=%s)", seed_user, scopes)
        else:
            logger.debug("User already exists: %s", seed_user)

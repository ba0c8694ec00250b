"""
Authorization Server configuration.
No secrets in this file; client/user credentials come from env (seed) or the DB.
"""
import os

# Issuer URL (public identifier, goes into the iss claim)
ISSUER = os.environ.get("OAUTH_ISSUER", "http://127.0.0.1:9000").rstrip("/")

# API audience for access tokens; empty string disables the aud claim
API_AUDIENCE = os.environ.get("OAUTH_API_AUDIENCE", "http://127.0.0.1:7000").strip() or None

# SQLite DB for development
DATABASE_URL = os.environ.get("AUTH_DATABASE_URL", "sqlite:///./auth_server.db")

# Scopes this server knows about. keys.admin gates key rotation and the audit log.
ALLOWED_SCOPES = {"read", "write", "admin", "keys.admin"}
SCOPE_KEYS_ADMIN = "keys.admin"

# Access token lifetime (seconds)
ACCESS_TOKEN_EXPIRES = int(os.environ.get("OAUTH_ACCESS_TOKEN_EXPIRES", "300"))

# Tolerated clock difference between issuer and verifiers (seconds)
CLOCK_SKEW_SECONDS = int(os.environ.get("OAUTH_CLOCK_SKEW_SECONDS", "30"))

# How long a rotated-out key stays in the JWKS. Default: the longest a token signed
# just before rotation can still be accepted anywhere.
KEY_GRACE_SECONDS = int(
    os.environ.get("OAUTH_KEY_GRACE_SECONDS", str(ACCESS_TOKEN_EXPIRES + CLOCK_SKEW_SECONDS))
)

# Signing algorithm for new keys: RS256 (default), ES256 or HS256 (HS256 keys are never published)
SIGNING_ALGORITHM = os.environ.get("OAUTH_SIGNING_ALGORITHM", "RS256")
# Key size in bits; empty = algorithm default (RSA 2048, HMAC 256)
SIGNING_KEY_SIZE = int(os.environ["OAUTH_SIGNING_KEY_SIZE"]) if os.environ.get("OAUTH_SIGNING_KEY_SIZE") else None

# PEM file for the current asymmetric signing key. If unset the key lives in memory only;
# if set and missing, a key is generated and saved there.
SIGNING_KEY_PATH = os.environ.get("OAUTH_SIGNING_KEY_PATH", "").strip() or None
# Optional previous key: published for KEY_GRACE_SECONDS after startup so existing tokens still verify.
SIGNING_KEY_PREVIOUS_PATH = os.environ.get("OAUTH_SIGNING_KEY_PREVIOUS_PATH", "").strip() or None

# Cache-Control max-age on the JWKS response (seconds)
JWKS_MAX_AGE = int(os.environ.get("OAUTH_JWKS_MAX_AGE", "300"))

# Rate limiting: per-IP, per minute
RATE_LIMIT_TOKEN_PER_MINUTE = int(os.environ.get("OAUTH_RATE_LIMIT_TOKEN_PER_MINUTE", "60"))

LOG_LEVEL = os.environ.get("OAUTH_LOG_LEVEL", "INFO").upper()

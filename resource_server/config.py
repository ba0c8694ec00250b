"""
Resource server configuration.
Issuer, audience and JWKS location are public identifiers, not secrets.
"""
import os

# Authorization Server: where we fetch JWKS and what iss must say
ISSUER = os.environ.get("OAUTH_ISSUER", "http://127.0.0.1:9000").rstrip("/")

# This API's audience; access tokens must carry it in aud. Empty disables the check.
API_AUDIENCE = os.environ.get("OAUTH_API_AUDIENCE", "http://127.0.0.1:7000").strip() or None

JWKS_URI = os.environ.get("OAUTH_JWKS_URI", f"{ISSUER}/.well-known/jwks.json")

# Key set cache: refresh after TTL, tolerate an unreachable issuer for up to MAX_STALENESS,
# and refetch on an unknown kid at most once per MIN_REFRESH_INTERVAL (all seconds)
JWKS_CACHE_TTL = float(os.environ.get("OAUTH_JWKS_CACHE_TTL", "300"))
JWKS_MAX_STALENESS = float(os.environ.get("OAUTH_JWKS_MAX_STALENESS", "3600"))
JWKS_MIN_REFRESH_INTERVAL = float(os.environ.get("OAUTH_JWKS_MIN_REFRESH_INTERVAL", "1"))
JWKS_FETCH_TIMEOUT = float(os.environ.get("OAUTH_JWKS_FETCH_TIMEOUT", "5"))

CLOCK_SKEW_SECONDS = int(os.environ.get("OAUTH_CLOCK_SKEW_SECONDS", "30"))

# Scopes required by protected routes
SCOPE_READ = "read"
SCOPE_WRITE = "write"
SCOPE_ADMIN = "admin"

LOG_LEVEL = os.environ.get("OAUTH_LOG_LEVEL", "INFO").upper()

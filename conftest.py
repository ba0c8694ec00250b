"""
Pytest configuration. Use in-memory SQLite and in-memory signing keys so tests don't touch the filesystem.
Set before any auth_server module reads its config.
"""
import os

import pytest

os.environ["AUTH_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["OAUTH_SIGNING_KEY_PATH"] = ""
os.environ["OAUTH_SIGNING_KEY_PREVIOUS_PATH"] = ""
os.environ["OAUTH_SIGNING_ALGORITHM"] = "RS256"
# Seed variables from the developer's shell must not leak into tests
for _name in (
    "OAUTH_SEED_CLIENT_ID",
    "OAUTH_SEED_CLIENT_SECRET",
    "OAUTH_SEED_USER",
    "OAUTH_SEED_PASSWORD",
):
    os.environ.pop(_name, None)

from auth_server.rate_limit import token_limiter  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Every test starts with an empty token-endpoint rate limit window."""
    token_limiter.reset()
    yield
    token_limiter.reset()

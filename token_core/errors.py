"""
Error taxonomy shared by the auth server and the resource server.
Client-caused failures derive from AuthenticationError; SigningFailure is the
only server-side fault raised while issuing tokens.
"""


class UnsupportedAlgorithm(ValueError):
    """Algorithm name not recognised or not allowed for signing keys."""

    def __init__(self, algorithm: object):
        self.algorithm = algorithm
        super().__init__(f"Unsupported signing algorithm: {algorithm!r}")


class AuthenticationError(Exception):
    """Client-caused rejection during a credential exchange. Not retryable."""

    error = "invalid_request"


class InvalidCredentials(AuthenticationError):
    error = "invalid_client"


class ScopeNotAuthorized(AuthenticationError):
    error = "invalid_scope"

    def __init__(self, scopes: set[str]):
        self.scopes = scopes
        super().__init__(f"Scope(s) not authorized: {' '.join(sorted(scopes))}")


class SigningFailure(Exception):
    """Key material unavailable or unusable while minting a token (server fault)."""


class KeyFetchError(Exception):
    """Remote key set could not be fetched or parsed."""


class TokenRejected(Exception):
    """Raised by TokenVerifier.verify_or_raise; carries the FailureReason."""

    def __init__(self, reason):
        self.reason = reason
        super().__init__(f"Token rejected: {reason.value}")

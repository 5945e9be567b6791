"""Exceptions raised by the session and CSRF layer.

Authentication and CSRF outcomes are NOT exceptions: a missing or expired
session is ``None`` from the store and a CSRF failure is a ``CsrfReject``
value. Only infrastructure and login failures are raised.
"""


class SessionGuardError(Exception):
    """Base exception for the session guard."""


class StoreUnavailableError(SessionGuardError):
    """Raised when the session backend cannot complete an operation.

    HTTP handlers should respond with 503; letting the request through without
    a session check is never acceptable.
    """


class SessionLimitExceededError(SessionGuardError):
    """Raised on login when the subject already holds the maximum number of
    sessions and the reject-new policy is configured."""


class IdentityProviderError(SessionGuardError):
    """Raised when the delegated OAuth exchange cannot produce a principal."""

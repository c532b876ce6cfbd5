"""Error kinds raised by the store engines.

Every engine operation either returns its payload or raises one of the
subclasses below. The routing layer owns the mapping from ``kind`` to a
status code; nothing in here knows about HTTP.
"""


class StorefrontError(Exception):
    kind = "internal"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.kind.replace("_", " ")


class Unauthenticated(StorefrontError):
    """Missing, malformed, badly signed or expired credential."""

    kind = "unauthenticated"


class Forbidden(StorefrontError):
    """Authenticated, but the role check failed."""

    kind = "forbidden"


class NotFound(StorefrontError):
    """Resource absent, or not owned by the caller."""

    kind = "not_found"


class InvalidArgument(StorefrontError):
    kind = "invalid_argument"


class InvalidReference(StorefrontError):
    """A foreign key points to a row that does not exist."""

    kind = "invalid_reference"


class Conflict(StorefrontError):
    kind = "conflict"


class InvalidState(StorefrontError):
    """Illegal role transition or deletion target."""

    kind = "invalid_state"


class DeadlineExceeded(StorefrontError):
    kind = "deadline_exceeded"


class Internal(StorefrontError):
    kind = "internal"


class RefreshNotYetEligible(StorefrontError):
    """Refresh was asked for a credential that is not close enough to expiry."""

    kind = "refresh_not_yet_eligible"

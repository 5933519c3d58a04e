"""Exception types raised by the session-state engine."""


class GitclawStateError(Exception):
    """Base class for gitclaw-state errors."""


class InvalidTurn(GitclawStateError, ValueError):
    """A turn violates the role/block invariants and cannot be appended."""


class IntegrityViolation(GitclawStateError):
    """A transcript is corrupt or a rewrite would change its structure."""


class RestoreError(GitclawStateError):
    """Base class for archive restore failures.

    Callers are expected to catch these and start a fresh transcript.
    """

    def __init__(self, association_id: str, message: str) -> None:
        super().__init__(message)
        self.association_id = association_id


class RestoreNotFound(RestoreError):
    """No archive entry exists for the association."""


class RestoreContentMissing(RestoreError):
    """The archive entry exists but its content is gone or unreadable."""

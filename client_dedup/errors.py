from __future__ import annotations


class DedupError(Exception):
    """Base exception for client dedup failures."""


class PreconditionError(DedupError):
    """Raised when a merge is requested with invalid participants, before any I/O."""


class UnresolvedDecisionError(PreconditionError):
    """Raised when a manual field decision has no chosen value."""

    def __init__(self, fields):
        self.fields = tuple(fields)
        super().__init__(f"Manual decisions need a value: {', '.join(self.fields)}")


class ClientNotFoundError(DedupError):
    """Raised when the store has no client with the given id."""


class RelationshipFetchError(DedupError):
    """Raised when relationship counts cannot be retrieved; counts are unknown, not zero."""


class MergeError(DedupError):
    """Raised when a merge step fails.

    ``partial`` is True only when a rollback could not restore the prior state.
    """

    def __init__(self, message: str, partial: bool = False):
        self.partial = partial
        super().__init__(message)


class InvalidTransitionError(DedupError):
    """Raised when a merge session operation is not allowed in its current state."""

"""Error taxonomy.

Validation and identity errors are raised before any runtime mutation.
Errors that happen while a plan executes are not raised: the executor
records them per operation in the ReconciliationResult.
"""
from __future__ import annotations


class ReconcilerError(Exception):
    """Base class for all reconciler exceptions."""


class NotFound(ReconcilerError):
    """The referenced network or container does not exist."""


class RuntimeUnavailable(ReconcilerError):
    """The container runtime's control channel cannot be reached.

    Retryable by the caller.
    """


class MalformedDocument(ReconcilerError):
    """The declarative document is not syntactically or structurally valid."""


class InvalidSpec(ReconcilerError):
    """The document parsed, but describes a network that cannot exist."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid network spec")


class ConflictInProgress(ReconcilerError):
    """Another apply already holds the lease for this network."""


class Indeterminate(ReconcilerError):
    """A deadline expired while a runtime call was in flight.

    The call was abandoned, not assumed failed: re-observe before deciding.
    """


class OperationFailed(ReconcilerError):
    """A runtime mutation failed for a reason other than being already applied."""

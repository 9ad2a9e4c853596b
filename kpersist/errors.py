"""Exception hierarchy for kpersist.

Leaf operations raise these; only the application's worker-failure policy
decides whether a failure terminates the process.
"""

from __future__ import annotations


class KPersistError(Exception):
    """Base class for all kpersist errors."""


class MalformedInputError(KPersistError, ValueError):
    """Raised when a document handed to the diff engine is not valid JSON."""


class InboxClosedError(KPersistError):
    """Raised when a snapshot is sent to an inbox that was already closed."""


class WatchSetupError(KPersistError):
    """Raised when the initial watch request for a stream cannot be opened."""

    def __init__(self, stream: str, cause: Exception) -> None:
        super().__init__(f"Failed to open {stream} watch: {cause}")
        self.stream = stream
        self.cause = cause


class TrackerError(KPersistError):
    """Raised when a resource tracker cannot record a change.

    Carries the entity name so the failure policy can report which
    resource stopped being tracked.
    """

    def __init__(self, name: str, cause: Exception) -> None:
        super().__init__(f"Tracking of resource '{name}' failed: {cause}")
        self.name = name
        self.cause = cause

"""Change ledger for kpersist.

Turns the stream of snapshots observed for one custom resource into an
append-only file: the initial document followed by one diff block per
observed modification.

Submodules:
    diff      -- Recursive JSON diff producing FieldChange lists.
    snapshot  -- Removal of control-plane bookkeeping and pretty printing.
    inbox     -- Bounded, closable, ordered snapshot queue.
    tracker   -- ResourceChangeTracker: one worker per resource.
"""

from kpersist.ledger.diff import apply_diff, diff
from kpersist.ledger.inbox import Inbox
from kpersist.ledger.tracker import ResourceChangeTracker

__all__ = ["Inbox", "ResourceChangeTracker", "apply_diff", "diff"]

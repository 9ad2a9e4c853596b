"""Per-run output directory and entity file naming.

A run directory is named after the process start time.  Every entity gets
exactly one file inside it whose name is derived from the entity kind, the
same start timestamp and the entity name, so the name is known before the
file exists and never changes while the process lives.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from kpersist.storage.timestamps import run_timestamp

RESOURCE_KIND = "integration"
POD_KIND = "pod"


@dataclass
class RunLayout:
    """File-system layout of a single kpersist run."""

    base_dir: Path
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def stamp(self) -> str:
        return run_timestamp(self.started_at)

    @property
    def run_dir(self) -> Path:
        return Path(self.base_dir) / self.stamp

    def create(self) -> Path:
        """Create the run directory (and missing parents). Idempotent."""
        self.run_dir.mkdir(parents=True, exist_ok=True)
        return self.run_dir

    def entity_file(self, kind: str, name: str) -> Path:
        if not name or "/" in name or name in (".", ".."):
            raise ValueError(f"Invalid entity name for a file name: {name!r}")
        return self.run_dir / f"{self.stamp}_{kind}_{name}.txt"

    def resource_file(self, name: str) -> Path:
        return self.entity_file(RESOURCE_KIND, name)

    def pod_file(self, name: str) -> Path:
        return self.entity_file(POD_KIND, name)

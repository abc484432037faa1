"""Archiver invocation descriptors.

Planners return these values instead of shell command strings; the
TarArchiver turns them into subprocess calls.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union

from tarchain.store import SnapshotState


class Operation(str, Enum):
    """Archiver operation named by an invocation."""
    CREATE = "create"
    EXTRACT = "extract"


@dataclass(frozen=True)
class ExclusionRule:
    """A path fragment excluded from an archive, anchored under the source root."""
    pattern: str
    path: Path

    def member_pattern(self, source_leaf: str) -> str:
        """Return the pattern as it appears among archive member names."""
        return f"{source_leaf}/{self.pattern.strip('/')}"


@dataclass(frozen=True)
class CreateArchive:
    """Create ``archive_path`` from ``source_root/source_leaf``."""
    source_dir: Path
    archive_path: Path
    snapshot: SnapshotState
    exclusions: Tuple[ExclusionRule, ...] = ()
    reset_snapshot: bool = False
    operation: Operation = field(default=Operation.CREATE, init=False)

    @property
    def source_root(self) -> Path:
        return self.source_dir.parent

    @property
    def source_leaf(self) -> str:
        return self.source_dir.name


@dataclass(frozen=True)
class ExtractArchive:
    """Extract ``archive_path`` into ``target_dir``."""
    archive_path: Path
    snapshot: SnapshotState
    target_dir: Path
    operation: Operation = field(default=Operation.EXTRACT, init=False)


ArchiveInvocation = Union[CreateArchive, ExtractArchive]


@dataclass(frozen=True)
class IncrementalArchive:
    """An incremental archive found on disk."""
    path: Path
    base_name: str
    archive_date: date
    sequence: int = 0

    @property
    def name(self) -> str:
        return self.path.name

    def sort_key(self) -> Tuple[date, int, str]:
        return (self.archive_date, self.sequence, self.path.name)


@dataclass
class RestorePlan:
    """Ordered extract invocations reconstructing a series."""
    base_name: str
    extraction_target: Path
    snapshot: SnapshotState
    full: ExtractArchive
    incrementals: List[ExtractArchive] = field(default_factory=list)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @property
    def steps(self) -> List[ExtractArchive]:
        return [self.full] + list(self.incrementals)

    @property
    def is_full_only(self) -> bool:
        return not self.incrementals

    def __len__(self) -> int:
        return 1 + len(self.incrementals)

"""Backup planning for tarchain.

BackupPlanner turns a backup request into a single CreateArchive descriptor.
Full and incremental plans of the same series share one snapshot-state
handle: tar compares the tree against whatever the snapshot file last
recorded, whether a full or an incremental run wrote it.
"""

from datetime import date
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional, Union
import logging

from tarchain.errors import InvalidMode, InvalidPath
from tarchain.invocation import CreateArchive, ExclusionRule
from tarchain.store import BackupSeries, SnapshotStore


logger = logging.getLogger(__name__)


class BackupMode(str, Enum):
    """Kind of backup to take."""
    FULL = "full"
    INCREMENTAL = "incremental"

    @classmethod
    def parse(cls, value: Union[str, "BackupMode"]) -> "BackupMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise InvalidMode(f"Invalid backup mode '{value}'. Must be one of: {valid}")


def require_directory(path: Union[str, Path], what: str) -> Path:
    """Return ``path`` as an absolute Path, or raise InvalidPath."""
    if path is None or not str(path).strip():
        raise InvalidPath(f"{what} is required")
    path = Path(path).expanduser()
    if not path.exists():
        raise InvalidPath(f"{what} not found: {path}")
    if not path.is_dir():
        raise InvalidPath(f"{what} is not a directory: {path}")
    return path.absolute()


class BackupPlanner:
    """
    Plans full and incremental backups.

    Args:
        store: Snapshot store handing out shared snapshot-state handles
        clock: Callable returning today's date (for incremental archive names)
    """

    def __init__(
        self,
        store: Optional[SnapshotStore] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        self.store = store if store is not None else SnapshotStore()
        self.clock = clock or date.today

    def plan(
        self,
        mode: Union[str, BackupMode],
        source_dir: Union[str, Path],
        output_dir: Union[str, Path],
        exclude_patterns: Optional[Iterable[str]] = None,
    ) -> CreateArchive:
        """
        Plan one backup invocation.

        Args:
            mode: "full" or "incremental"
            source_dir: Directory to archive
            output_dir: Directory receiving the archive and snapshot state
            exclude_patterns: Path fragments relative to source_dir to omit

        Returns:
            CreateArchive descriptor; nothing is executed

        Raises:
            InvalidMode: If mode is not full or incremental
            InvalidPath: If source_dir or output_dir is missing or not a directory
        """
        backup_mode = BackupMode.parse(mode)
        source = require_directory(source_dir, "Source directory")
        output = require_directory(output_dir, "Output directory")

        series = BackupSeries.for_source(source, output)
        if not series.base_name:
            raise InvalidPath(f"Cannot derive a series name from {source}")
        snapshot = self.store.snapshot_for(series)

        if backup_mode is BackupMode.FULL:
            archive_path = self.store.full_archive_for(series)
        else:
            archive_path = self.store.inc_archive_for(series, self.clock())
            if not snapshot.exists():
                logger.warning(
                    f"Snapshot state {snapshot.path} does not exist; "
                    f"incremental backup of {series.base_name} will contain every file"
                )

        exclusions = tuple(
            ExclusionRule(pattern=pattern, path=source / pattern.strip("/"))
            for pattern in (exclude_patterns or [])
            if pattern and pattern.strip()
        )

        logger.debug(
            f"Planned {backup_mode.value} backup of {source} -> {archive_path} "
            f"({len(exclusions)} exclusion(s))"
        )
        return CreateArchive(
            source_dir=source,
            archive_path=archive_path,
            snapshot=snapshot,
            exclusions=exclusions,
            reset_snapshot=backup_mode is BackupMode.FULL,
        )

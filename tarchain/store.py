"""Snapshot store for tarchain.

Derives the canonical on-disk names of a backup series: the snapshot-state
file the archiver uses for change tracking, the full archive and the dated
incremental archives. Nothing here reads or writes those files.
"""

from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Dict, Tuple, Union


SNAPSHOT_SUFFIX = "-snapshot"
FULL_ARCHIVE_SUFFIX = ".tar.gz"
INCREMENTAL_MARKER = "-inc-"
DATE_FORMAT = "%Y-%m-%d"
# Suffix of archives still being written
PARTIAL_SUFFIX = ".partial"

PathLike = Union[str, Path]


def _require_name(value: str, what: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{what} must be a non-empty string")
    return value


def _require_dir(value: PathLike, what: str) -> Path:
    if value is None or not str(value).strip():
        raise ValueError(f"{what} must be a non-empty path")
    return Path(value)


def snapshot_path(base_name: str, output_dir: PathLike) -> Path:
    """Return ``{output_dir}/{base_name}-snapshot``."""
    _require_name(base_name, "base_name")
    return _require_dir(output_dir, "output_dir") / f"{base_name}{SNAPSHOT_SUFFIX}"


def full_archive_path(base_name: str, output_dir: PathLike) -> Path:
    """Return ``{output_dir}/{base_name}.tar.gz``."""
    _require_name(base_name, "base_name")
    return _require_dir(output_dir, "output_dir") / f"{base_name}{FULL_ARCHIVE_SUFFIX}"


def inc_archive_path(
    base_name: str,
    output_dir: PathLike,
    archive_date: Union[date, str],
    sequence: int = 0,
) -> Path:
    """
    Return ``{output_dir}/{base_name}-inc-{YYYY-MM-DD}.tar.gz``.

    A non-zero sequence produces ``{base_name}-inc-{date}.{NN}.tar.gz`` for a
    second, third, ... incremental taken on the same day.

    Args:
        base_name: Series base name
        output_dir: Directory holding the series archives
        archive_date: Creation date, as a date or an ISO ``YYYY-MM-DD`` string
        sequence: Same-day sequence number (0 for the first archive of the day)

    Returns:
        Path of the incremental archive
    """
    _require_name(base_name, "base_name")
    if isinstance(archive_date, str):
        archive_date = date.fromisoformat(archive_date)
    stamp = archive_date.strftime(DATE_FORMAT)
    if sequence:
        name = f"{base_name}{INCREMENTAL_MARKER}{stamp}.{sequence:02d}{FULL_ARCHIVE_SUFFIX}"
    else:
        name = f"{base_name}{INCREMENTAL_MARKER}{stamp}{FULL_ARCHIVE_SUFFIX}"
    return _require_dir(output_dir, "output_dir") / name


def base_name_from_archive(archive_path: PathLike) -> str:
    """Strip the full-archive suffix from an archive filename."""
    name = Path(archive_path).name
    if not name.endswith(FULL_ARCHIVE_SUFFIX) or name == FULL_ARCHIVE_SUFFIX:
        raise ValueError(f"Not a {FULL_ARCHIVE_SUFFIX} archive: {archive_path}")
    return name[: -len(FULL_ARCHIVE_SUFFIX)]


@dataclass(frozen=True)
class BackupSeries:
    """A logical backup target identified by its base name."""
    base_name: str
    source_directory: Path
    output_directory: Path

    @classmethod
    def for_source(cls, source_directory: PathLike, output_directory: PathLike) -> "BackupSeries":
        source = Path(source_directory).absolute()
        return cls(
            base_name=source.name,
            source_directory=source,
            output_directory=Path(output_directory).absolute(),
        )


@dataclass(frozen=True, eq=False)
class SnapshotState:
    """
    Handle on the snapshot-state file of one series.

    The archiver reads and rewrites the file; tarchain only passes the handle
    around so that every invocation of a series refers to the same state.
    """
    base_name: str
    path: Path

    @property
    def lock_path(self) -> Path:
        """Lock file serialising operations on this snapshot state."""
        return self.path.with_name(self.path.name + ".lock")

    def exists(self) -> bool:
        return self.path.is_file()

    def __repr__(self) -> str:
        return f"SnapshotState({self.base_name!r}, {str(self.path)!r})"


class SnapshotStore:
    """
    Hands out snapshot-state handles.

    One store returns the same SnapshotState object for every request naming
    the same file, so a full and a later incremental plan share the handle.
    """

    def __init__(self):
        self._handles: Dict[Tuple[str, Path], SnapshotState] = {}

    def state_at(self, base_name: str, path: PathLike) -> SnapshotState:
        """Return the handle for an explicit snapshot-state path."""
        _require_name(base_name, "base_name")
        resolved = Path(path).absolute()
        key = (base_name, resolved)
        handle = self._handles.get(key)
        if handle is None:
            handle = SnapshotState(base_name=base_name, path=resolved)
            self._handles[key] = handle
        return handle

    def snapshot_for(self, series: BackupSeries) -> SnapshotState:
        """Return the co-located snapshot-state handle of a series."""
        return self.state_at(
            series.base_name,
            snapshot_path(series.base_name, series.output_directory),
        )

    def full_archive_for(self, series: BackupSeries) -> Path:
        return full_archive_path(series.base_name, series.output_directory)

    def inc_archive_for(self, series: BackupSeries, archive_date: date) -> Path:
        """
        Return the next free incremental path for ``archive_date``.

        The first archive of a day gets the plain dated name; later ones on
        the same day get a two-digit sequence so no delta is ever overwritten.
        """
        candidate = inc_archive_path(series.base_name, series.output_directory, archive_date)
        sequence = 0
        while candidate.exists():
            sequence += 1
            if sequence > 99:
                raise ValueError(
                    f"Too many incremental archives for {series.base_name} on {archive_date}"
                )
            candidate = inc_archive_path(
                series.base_name, series.output_directory, archive_date, sequence
            )
        return candidate

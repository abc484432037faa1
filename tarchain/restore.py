"""Restore planning for tarchain.

RestorePlanner produces the ordered extract invocations that rebuild a
series: the full archive first, then every selected incremental archive in
ascending date order, all against the same snapshot-state handle.
"""

from pathlib import Path
from typing import Optional, Union
import logging

from tarchain.errors import InvalidArchive, InvalidPath
from tarchain.invocation import ExtractArchive, RestorePlan
from tarchain.planner import require_directory
from tarchain.selector import DateLike, IncrementalSelector, parse_bound
from tarchain.store import (
    FULL_ARCHIVE_SUFFIX,
    SnapshotStore,
    base_name_from_archive,
    snapshot_path as default_snapshot_path,
)


logger = logging.getLogger(__name__)


class RestorePlanner:
    """
    Plans restores of a full archive plus its incrementals.

    Args:
        store: Snapshot store handing out snapshot-state handles
        selector: Selector used to find and order incremental archives
    """

    def __init__(
        self,
        store: Optional[SnapshotStore] = None,
        selector: Optional[IncrementalSelector] = None,
    ):
        self.store = store if store is not None else SnapshotStore()
        self.selector = selector if selector is not None else IncrementalSelector()

    def _validate_archive(self, archive_path: Union[str, Path]) -> Path:
        if archive_path is None or not str(archive_path).strip():
            raise InvalidArchive("Archive file is required")
        archive = Path(archive_path).expanduser().absolute()
        if not archive.name.endswith(FULL_ARCHIVE_SUFFIX) or archive.name == FULL_ARCHIVE_SUFFIX:
            raise InvalidArchive(
                f"Archive must be a {FULL_ARCHIVE_SUFFIX} file: {archive}"
            )
        if not archive.exists():
            raise InvalidArchive(f"Archive not found: {archive}")
        if not archive.is_file():
            raise InvalidArchive(f"Archive is not a file: {archive}")
        return archive

    def plan(
        self,
        archive_path: Union[str, Path],
        output_dir: Union[str, Path],
        snapshot_path: Optional[Union[str, Path]] = None,
        inc_dir: Optional[Union[str, Path]] = None,
        start_date: DateLike = None,
        end_date: DateLike = None,
        create_target: bool = True,
    ) -> RestorePlan:
        """
        Plan the restore of ``archive_path`` into ``output_dir``.

        Args:
            archive_path: Full archive (``{base}.tar.gz``)
            output_dir: Directory receiving ``{base}/``
            snapshot_path: Snapshot state; defaults to ``{archive_dir}/{base}-snapshot``
            inc_dir: Directory holding the incrementals; defaults to the archive's directory
            start_date: Earliest incremental date to replay (inclusive)
            end_date: Latest incremental date to replay (inclusive)
            create_target: Create ``{output_dir}/{base}`` now; dry runs leave it alone

        Returns:
            RestorePlan whose first step extracts the full archive

        Raises:
            InvalidArchive: If the archive is missing or not a .tar.gz file
            InvalidPath: If an explicit snapshot file or incremental directory is
                         missing, or output_dir is not a directory
        """
        archive = self._validate_archive(archive_path)
        base_name = base_name_from_archive(archive)
        archive_dir = archive.parent
        start = parse_bound(start_date, "start date")
        end = parse_bound(end_date, "end date")

        if snapshot_path is not None:
            snapshot_file = Path(snapshot_path).expanduser().absolute()
            if not snapshot_file.is_file():
                raise InvalidPath(f"Snapshot file not found: {snapshot_file}")
        else:
            snapshot_file = default_snapshot_path(base_name, archive_dir)
            if not snapshot_file.exists():
                logger.warning(f"Snapshot file {snapshot_file} does not exist")
        snapshot = self.store.state_at(base_name, snapshot_file)

        if inc_dir is not None:
            incremental_dir = require_directory(inc_dir, "Incremental directory")
        else:
            incremental_dir = archive_dir

        if output_dir is None or not str(output_dir).strip():
            raise InvalidPath("Output directory is required")
        output = Path(output_dir).expanduser().absolute()
        if output.exists() and not output.is_dir():
            raise InvalidPath(f"Output directory is not a directory: {output}")
        extraction_target = output / base_name
        if extraction_target.exists() and not extraction_target.is_dir():
            raise InvalidPath(f"Extraction target is not a directory: {extraction_target}")
        if create_target:
            extraction_target.mkdir(parents=True, exist_ok=True)

        selected = self.selector.select(base_name, incremental_dir, start, end)

        plan = RestorePlan(
            base_name=base_name,
            extraction_target=extraction_target,
            snapshot=snapshot,
            full=ExtractArchive(
                archive_path=archive,
                snapshot=snapshot,
                target_dir=extraction_target,
            ),
            incrementals=[
                ExtractArchive(
                    archive_path=inc.path,
                    snapshot=snapshot,
                    target_dir=incremental_dir,
                )
                for inc in selected
            ],
            start_date=start,
            end_date=end,
        )

        if plan.is_full_only:
            logger.info(f"No incremental archives found for {base_name} in {incremental_dir}")
        else:
            logger.info(
                f"Restore of {base_name} will replay {len(plan.incrementals)} incremental archive(s)"
            )
        return plan

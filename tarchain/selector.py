"""Incremental archive selection for tarchain.

Finds the incremental archives of a series in a directory, keeps those whose
embedded date lies inside an inclusive window and orders them for replay.
Order comes from the parsed date, never from modification times or raw
filename sort: ascending date, then same-day sequence, then filename.
"""

from datetime import date, datetime
from pathlib import Path
from typing import Iterator, List, Optional, Pattern, Union
import logging
import re

from tarchain.invocation import IncrementalArchive
from tarchain.store import DATE_FORMAT, INCREMENTAL_MARKER, PARTIAL_SUFFIX


logger = logging.getLogger(__name__)

DateLike = Union[date, str, None]


def incremental_pattern(base_name: str) -> Pattern[str]:
    """
    Compile the filename pattern ``{base_name}-inc-{date}.{ext}``.

    Groups: ``date`` (YYYY-MM-DD), ``sequence`` (optional two digits added
    for same-day archives) and ``ext``. Unfinished ``.partial`` archives
    never match.
    """
    return re.compile(
        rf"^{re.escape(base_name)}{re.escape(INCREMENTAL_MARKER)}"
        r"(?P<date>\d{4}-\d{2}-\d{2})"
        r"(?:\.(?P<sequence>\d{2}))?"
        r"\.(?P<ext>[^/]+)"
        rf"(?<!{re.escape(PARTIAL_SUFFIX)})$"
    )


def scan_directory(directory: Path, pattern: Pattern[str]) -> Iterator[Path]:
    """
    Yield regular files directly under ``directory`` whose name matches.

    The scan is not recursive and yields nothing for a missing directory.
    """
    if not directory.is_dir():
        return
    for entry in directory.iterdir():
        if entry.is_file() and pattern.match(entry.name):
            yield entry


def parse_bound(value: DateLike, what: str = "date") -> Optional[date]:
    """Accept a date, an ISO ``YYYY-MM-DD`` string or None."""
    if value is None or isinstance(value, date):
        if isinstance(value, datetime):
            return value.date()
        return value
    try:
        return datetime.strptime(value.strip(), DATE_FORMAT).date()
    except ValueError:
        raise ValueError(f"Invalid {what} '{value}': expected YYYY-MM-DD")


class IncrementalSelector:
    """Selects and orders the incremental archives of a series."""

    def candidates(self, base_name: str, scan_dir: Union[str, Path]) -> Iterator[IncrementalArchive]:
        """Yield every incremental archive of ``base_name`` in ``scan_dir``, unordered."""
        pattern = incremental_pattern(base_name)
        for entry in scan_directory(Path(scan_dir), pattern):
            match = pattern.match(entry.name)
            try:
                archive_date = datetime.strptime(match.group("date"), DATE_FORMAT).date()
            except ValueError:
                # Looks dated but is not a calendar date (e.g. 2024-02-30)
                logger.debug(f"Skipping {entry.name}: invalid embedded date")
                continue
            sequence = match.group("sequence")
            yield IncrementalArchive(
                path=entry,
                base_name=base_name,
                archive_date=archive_date,
                sequence=int(sequence) if sequence else 0,
            )

    def select(
        self,
        base_name: str,
        scan_dir: Union[str, Path],
        start_date: DateLike = None,
        end_date: DateLike = None,
    ) -> List[IncrementalArchive]:
        """
        Return the series' incremental archives in replay order.

        Args:
            base_name: Series base name
            scan_dir: Directory to scan (not recursive)
            start_date: Keep archives dated on or after this day
            end_date: Keep archives dated on or before this day

        Returns:
            Archives sorted by (date, sequence, filename); empty when none match
        """
        start = parse_bound(start_date, "start date")
        end = parse_bound(end_date, "end date")
        if start is not None and end is not None and start > end:
            logger.warning(f"Start date {start} is after end date {end}; nothing can match")

        selected = {}
        for archive in self.candidates(base_name, scan_dir):
            if start is not None and archive.archive_date < start:
                continue
            if end is not None and archive.archive_date > end:
                continue
            selected.setdefault(archive.name, archive)

        ordered = sorted(selected.values(), key=IncrementalArchive.sort_key)
        logger.debug(
            f"Selected {len(ordered)} incremental archive(s) for {base_name} in {scan_dir}"
        )
        return ordered

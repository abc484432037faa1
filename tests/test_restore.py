"""Tests for restore planning."""

from datetime import date
from pathlib import Path

import pytest

from tarchain.errors import InvalidArchive, InvalidPath
from tarchain.invocation import Operation
from tarchain.restore import RestorePlanner
from tarchain.store import SnapshotStore


@pytest.fixture
def archive_dir(tmp_path: Path) -> Path:
    """A backup directory with a full archive, snapshot and three incrementals."""
    directory = tmp_path / "backups"
    directory.mkdir()
    for name in (
        "site.tar.gz",
        "site-snapshot",
        "site-inc-2024-03-10.tar.gz",
        "site-inc-2024-01-05.tar.gz",
        "site-inc-2024-02-01.tar.gz",
    ):
        (directory / name).write_bytes(b"")
    return directory


class TestRestorePlan:

    def test_full_then_incrementals_in_date_order(self, archive_dir, tmp_path):
        plan = RestorePlanner().plan(archive_dir / "site.tar.gz", tmp_path / "restore")

        assert plan.base_name == "site"
        assert len(plan) == 4
        assert plan.steps[0] is plan.full
        assert plan.full.archive_path == archive_dir / "site.tar.gz"
        assert [s.archive_path.name for s in plan.incrementals] == [
            "site-inc-2024-01-05.tar.gz",
            "site-inc-2024-02-01.tar.gz",
            "site-inc-2024-03-10.tar.gz",
        ]
        assert all(s.operation is Operation.EXTRACT for s in plan.steps)

    def test_end_date_limits_chain(self, archive_dir, tmp_path):
        plan = RestorePlanner().plan(
            archive_dir / "site.tar.gz", tmp_path / "restore", end_date="2024-02-01"
        )
        assert [s.archive_path.name for s in plan.incrementals] == [
            "site-inc-2024-01-05.tar.gz",
            "site-inc-2024-02-01.tar.gz",
        ]
        assert plan.end_date == date(2024, 2, 1)

    def test_start_date_limits_chain(self, archive_dir, tmp_path):
        plan = RestorePlanner().plan(
            archive_dir / "site.tar.gz", tmp_path / "restore", start_date=date(2024, 3, 1)
        )
        assert [s.archive_path.name for s in plan.incrementals] == ["site-inc-2024-03-10.tar.gz"]

    def test_no_incrementals_gives_single_step(self, tmp_path):
        directory = tmp_path / "backups"
        directory.mkdir()
        (directory / "site.tar.gz").write_bytes(b"")

        plan = RestorePlanner().plan(directory / "site.tar.gz", tmp_path / "restore")

        assert len(plan) == 1
        assert plan.is_full_only
        assert plan.steps == [plan.full]

    def test_all_steps_share_snapshot_handle(self, archive_dir, tmp_path):
        plan = RestorePlanner().plan(archive_dir / "site.tar.gz", tmp_path / "restore")
        assert all(step.snapshot is plan.snapshot for step in plan.steps)

    def test_snapshot_handle_matches_backup_side(self, archive_dir, tmp_path):
        store = SnapshotStore()
        backup_side = store.state_at("site", archive_dir / "site-snapshot")
        plan = RestorePlanner(store=store).plan(archive_dir / "site.tar.gz", tmp_path / "restore")
        assert plan.snapshot is backup_side

    def test_default_snapshot_beside_archive(self, archive_dir, tmp_path):
        plan = RestorePlanner().plan(archive_dir / "site.tar.gz", tmp_path / "restore")
        assert plan.snapshot.path == archive_dir / "site-snapshot"

    def test_missing_default_snapshot_still_plans(self, archive_dir, tmp_path):
        (archive_dir / "site-snapshot").unlink()
        plan = RestorePlanner().plan(archive_dir / "site.tar.gz", tmp_path / "restore")
        assert not plan.snapshot.exists()

    def test_explicit_snapshot(self, archive_dir, tmp_path):
        other = tmp_path / "elsewhere"
        other.mkdir()
        (other / "custom-snapshot").write_bytes(b"")
        plan = RestorePlanner().plan(
            archive_dir / "site.tar.gz", tmp_path / "restore",
            snapshot_path=other / "custom-snapshot",
        )
        assert plan.snapshot.path == other / "custom-snapshot"
        assert plan.snapshot.base_name == "site"

    def test_extraction_target_created(self, archive_dir, tmp_path):
        plan = RestorePlanner().plan(archive_dir / "site.tar.gz", tmp_path / "restore")
        assert plan.extraction_target == tmp_path / "restore" / "site"
        assert plan.extraction_target.is_dir()
        assert plan.full.target_dir == plan.extraction_target

    def test_extraction_target_left_alone_when_asked(self, archive_dir, tmp_path):
        plan = RestorePlanner().plan(archive_dir / "site.tar.gz", tmp_path / "restore", create_target=False)
        assert plan.extraction_target == tmp_path / "restore" / "site"
        assert not (tmp_path / "restore").exists()

    def test_incrementals_scanned_from_inc_dir(self, archive_dir, tmp_path):
        inc_dir = tmp_path / "incs"
        inc_dir.mkdir()
        (inc_dir / "site-inc-2025-01-01.tar.gz").write_bytes(b"")

        plan = RestorePlanner().plan(
            archive_dir / "site.tar.gz", tmp_path / "restore", inc_dir=inc_dir
        )

        assert [s.archive_path.name for s in plan.incrementals] == ["site-inc-2025-01-01.tar.gz"]
        assert plan.incrementals[0].target_dir == inc_dir

    def test_incrementals_default_to_archive_directory(self, archive_dir, tmp_path):
        plan = RestorePlanner().plan(archive_dir / "site.tar.gz", tmp_path / "restore")
        assert all(s.target_dir == archive_dir for s in plan.incrementals)


class TestRestoreErrors:

    def test_missing_archive(self, tmp_path):
        with pytest.raises(InvalidArchive, match="not found"):
            RestorePlanner().plan(tmp_path / "site.tar.gz", tmp_path / "restore")

    @pytest.mark.parametrize("name", ["site.zip", "site.tar", ".tar.gz"])
    def test_wrong_suffix(self, tmp_path, name):
        (tmp_path / name).write_bytes(b"")
        with pytest.raises(InvalidArchive):
            RestorePlanner().plan(tmp_path / name, tmp_path / "restore")

    def test_archive_is_directory(self, tmp_path):
        (tmp_path / "site.tar.gz").mkdir()
        with pytest.raises(InvalidArchive, match="not a file"):
            RestorePlanner().plan(tmp_path / "site.tar.gz", tmp_path / "restore")

    def test_empty_archive_argument(self, tmp_path):
        with pytest.raises(InvalidArchive):
            RestorePlanner().plan("", tmp_path / "restore")

    def test_explicit_snapshot_missing(self, archive_dir, tmp_path):
        with pytest.raises(InvalidPath, match="Snapshot file"):
            RestorePlanner().plan(
                archive_dir / "site.tar.gz", tmp_path / "restore",
                snapshot_path=tmp_path / "nope-snapshot",
            )

    def test_inc_dir_missing(self, archive_dir, tmp_path):
        with pytest.raises(InvalidPath):
            RestorePlanner().plan(
                archive_dir / "site.tar.gz", tmp_path / "restore", inc_dir=tmp_path / "nope"
            )

    def test_output_is_file(self, archive_dir, tmp_path):
        (tmp_path / "restore").write_text("x")
        with pytest.raises(InvalidPath):
            RestorePlanner().plan(archive_dir / "site.tar.gz", tmp_path / "restore")

    def test_bad_date_creates_nothing(self, archive_dir, tmp_path):
        with pytest.raises(ValueError):
            RestorePlanner().plan(
                archive_dir / "site.tar.gz", tmp_path / "restore", end_date="yesterday"
            )
        assert not (tmp_path / "restore").exists()

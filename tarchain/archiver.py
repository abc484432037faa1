"""GNU tar archiver for tarchain.

TarArchiver turns CreateArchive and ExtractArchive descriptors into tar
command lines and runs them. Change tracking relies on tar's
``--listed-incremental`` snapshot file.
"""

from pathlib import Path
from typing import List, Optional
import logging
import subprocess

from tarchain.errors import ArchiverFailure
from tarchain.invocation import ArchiveInvocation, CreateArchive, ExtractArchive
from tarchain.logger import log_archiver_output
from tarchain.store import PARTIAL_SUFFIX


logger = logging.getLogger(__name__)


class TarArchiver:
    """
    Runs tar for archive creation and extraction.

    Archives are written to ``{archive}.partial`` first and renamed once tar
    succeeds, so a failed run never leaves a truncated archive under the
    final name.
    """

    PARTIAL_SUFFIX = PARTIAL_SUFFIX
    PREVIOUS_SUFFIX = ".previous"

    def __init__(self, tar_command: str = "tar", timeout_seconds: Optional[int] = 3600):
        """
        Initialize the archiver.

        Args:
            tar_command: tar executable (GNU tar is required for --listed-incremental)
            timeout_seconds: Per-invocation timeout; None waits forever
        """
        self.tar_command = tar_command
        self.timeout_seconds = timeout_seconds

    def partial_path(self, archive_path: Path) -> Path:
        return archive_path.with_name(archive_path.name + self.PARTIAL_SUFFIX)

    def build_create_command(self, invocation: CreateArchive, archive_file: Optional[Path] = None) -> List[str]:
        """
        Build the tar command for a CreateArchive.

        Exclusions are anchored member patterns (``leaf/pattern``) so they
        only match directly under the source root.
        """
        cmd = [
            self.tar_command,
            "--create",
            "--gzip",
            f"--file={archive_file or invocation.archive_path}",
            f"--listed-incremental={invocation.snapshot.path}",
            f"--directory={invocation.source_root}",
        ]
        if invocation.exclusions:
            cmd.append("--anchored")
            for rule in invocation.exclusions:
                cmd.append(f"--exclude={rule.member_pattern(invocation.source_leaf)}")
        cmd.append(invocation.source_leaf)
        return cmd

    def build_extract_command(self, invocation: ExtractArchive) -> List[str]:
        """Build the tar command for an ExtractArchive."""
        return [
            self.tar_command,
            "--extract",
            "--gzip",
            f"--file={invocation.archive_path}",
            f"--listed-incremental={invocation.snapshot.path}",
            f"--directory={invocation.target_dir}",
        ]

    def build_command(self, invocation: ArchiveInvocation) -> List[str]:
        if isinstance(invocation, CreateArchive):
            return self.build_create_command(invocation)
        if isinstance(invocation, ExtractArchive):
            return self.build_extract_command(invocation)
        raise TypeError(f"Unsupported invocation: {invocation!r}")

    def _stop(self, process: subprocess.Popen) -> None:
        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def _run(self, cmd: List[str]) -> str:
        """Run tar and return its stdout; raise ArchiverFailure on failure."""
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise ArchiverFailure(f"Cannot run {self.tar_command}: {e}")

        try:
            stdout_bytes, stderr_bytes = process.communicate(timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired:
            self._stop(process)
            raise ArchiverFailure(
                f"{self.tar_command} timed out after {self.timeout_seconds} seconds"
            )
        except BaseException:
            # Interrupted: tar must not outlive the cleanup of its output
            self._stop(process)
            raise

        stdout = stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else ""
        stderr = stderr_bytes.decode("utf-8", errors="replace") if stderr_bytes else ""
        log_archiver_output(logger, stderr)

        if process.returncode != 0:
            message = stderr.strip() or f"{self.tar_command} exited with code {process.returncode}"
            raise ArchiverFailure(message, return_code=process.returncode, stderr=stderr)
        return stdout

    def _discard(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove {path}: {e}")

    def _reset_snapshot(self, snapshot: Path) -> Optional[Path]:
        """
        Empty the snapshot state, keeping the old one as ``{snapshot}.previous``.

        Returns:
            Path of the kept copy, or None when there was no snapshot state
        """
        snapshot.parent.mkdir(parents=True, exist_ok=True)
        kept = None
        if snapshot.exists():
            kept = snapshot.with_name(snapshot.name + self.PREVIOUS_SUFFIX)
            snapshot.replace(kept)
        try:
            snapshot.write_bytes(b"")
        except OSError as e:
            self._put_back_snapshot(snapshot, kept)
            raise ArchiverFailure(f"Cannot reset snapshot state {snapshot}: {e}")
        logger.debug(f"Reset snapshot state {snapshot}")
        return kept

    def _put_back_snapshot(self, snapshot: Path, kept: Optional[Path]) -> None:
        try:
            if kept is not None:
                kept.replace(snapshot)
                logger.warning(f"Full backup failed; previous snapshot state {snapshot} put back")
            else:
                snapshot.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not restore snapshot state {snapshot}: {e}")

    def create(self, invocation: CreateArchive) -> Path:
        """
        Create an archive.

        For a full backup the snapshot state is emptied first, which makes
        tar record a level-0 dump and start a new chain. The previous state
        is put back if the backup does not finish, so the existing chain
        stays usable.

        Returns:
            Path of the finished archive

        Raises:
            ArchiverFailure: If tar fails or times out
        """
        snapshot = invocation.snapshot.path
        kept = self._reset_snapshot(snapshot) if invocation.reset_snapshot else None
        partial = self.partial_path(invocation.archive_path)

        finished = False
        try:
            self._run(self.build_create_command(invocation, archive_file=partial))
            try:
                partial.replace(invocation.archive_path)
            except OSError as e:
                raise ArchiverFailure(f"Cannot finalize archive {invocation.archive_path}: {e}")
            finished = True
        finally:
            if not finished:
                self._discard(partial)
                if invocation.reset_snapshot:
                    self._put_back_snapshot(snapshot, kept)
            elif kept is not None:
                self._discard(kept)
        return invocation.archive_path

    def extract(self, invocation: ExtractArchive) -> Path:
        """
        Extract an archive into its target directory.

        Returns:
            The target directory

        Raises:
            ArchiverFailure: If tar fails or times out
        """
        invocation.target_dir.mkdir(parents=True, exist_ok=True)
        self._run(self.build_extract_command(invocation))
        return invocation.target_dir

    def run(self, invocation: ArchiveInvocation) -> Path:
        """Dispatch an invocation to create or extract."""
        if isinstance(invocation, CreateArchive):
            return self.create(invocation)
        if isinstance(invocation, ExtractArchive):
            return self.extract(invocation)
        raise TypeError(f"Unsupported invocation: {invocation!r}")

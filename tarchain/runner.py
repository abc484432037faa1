"""Backup and restore orchestration for tarchain.

run_backup and run_restore tie the components together:
- Load configuration
- Set up logging
- Plan (validation errors abort here, before tar is ever run)
- Acquire the series lock (a restore from read-only media runs unlocked)
- Execute the planned invocations in order, stopping at the first failure
- Release the lock

The lock is always released, and no invocation runs after a failed one:
each incremental extract depends on the tree left by the step before it.
"""

from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Union
import logging
import time

from tarchain.archiver import TarArchiver
from tarchain.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
)
from tarchain.errors import (
    EXIT_CONFIG_ERROR,
    EXIT_LOCK_ERROR,
    EXIT_SUCCESS,
    EXIT_USAGE_ERROR,
    ArchiverFailure,
    TarchainError,
)
from tarchain.invocation import ArchiveInvocation, CreateArchive, RestorePlan
from tarchain.lock import LockError, LockUnavailable, SeriesLock
from tarchain.logger import (
    LoggingError,
    get_logger,
    log_run_completion,
    log_run_error,
    log_run_start,
    setup_logging,
)
from tarchain.planner import BackupMode, BackupPlanner
from tarchain.restore import RestorePlanner
from tarchain.selector import DateLike
from tarchain.store import SnapshotState, SnapshotStore


@dataclass
class ExecutionResult:
    """Outcome of executing a sequence of invocations."""
    completed: List[ArchiveInvocation] = field(default_factory=list)
    failed: Optional[ArchiveInvocation] = None
    error: Optional[ArchiverFailure] = None
    skipped: int = 0

    @property
    def success(self) -> bool:
        return self.failed is None


@dataclass
class RunResult:
    """Result of a backup or restore run."""
    success: bool
    exit_code: int
    plan: Optional[Union[CreateArchive, RestorePlan]] = None
    execution: Optional[ExecutionResult] = None
    error_message: Optional[str] = None
    duration_seconds: float = 0.0
    dry_run: bool = False
    # Planned tar command lines, filled in for dry runs
    commands: List[List[str]] = field(default_factory=list)


def execute_plan(
    steps: Sequence[ArchiveInvocation],
    archiver: TarArchiver,
    on_step: Optional[Callable[[int, ArchiveInvocation], None]] = None,
) -> ExecutionResult:
    """
    Run invocations strictly in order, stopping at the first failure.

    Args:
        steps: Invocations in execution order
        archiver: Archiver that runs each invocation
        on_step: Optional callback invoked with (index, invocation) before each step

    Returns:
        ExecutionResult listing completed steps and, on failure, the failed
        step, its error and how many later steps were skipped
    """
    logger = get_logger()
    result = ExecutionResult()
    for index, step in enumerate(steps):
        if on_step is not None:
            on_step(index, step)
        logger.info(
            f"Step {index + 1}/{len(steps)}: {step.operation.value} {step.archive_path}"
        )
        try:
            archiver.run(step)
        except ArchiverFailure as e:
            result.failed = step
            result.error = e
            result.skipped = len(steps) - index - 1
            if result.skipped:
                logger.error(f"Skipping {result.skipped} remaining step(s)")
            return result
        result.completed.append(step)
    return result


def _load(config: Optional[Configuration], config_path: Optional[Path]) -> Configuration:
    if config is not None:
        return config
    return parse_config(config_path)


def _setup_logger(config: Configuration, console_level: Optional[str]) -> logging.Logger:
    try:
        return setup_logging(config.logging, console_level=console_level)
    except (LoggingError, OSError) as e:
        # Continue with whatever handlers are already configured
        logger = get_logger()
        logger.warning(f"Failed to set up logging: {e}")
        return logger


def _archiver_for(config: Configuration) -> TarArchiver:
    return TarArchiver(
        tar_command=config.archiver.tar_command,
        timeout_seconds=config.archiver.timeout_seconds or None,
    )


def _execute_locked(
    snapshot: SnapshotState,
    steps: Sequence[ArchiveInvocation],
    config: Configuration,
    archiver: Optional[TarArchiver],
    logger: logging.Logger,
    lock_optional: bool = False,
) -> ExecutionResult:
    """
    Execute steps while holding the series lock.

    With ``lock_optional``, a lock file that cannot be created (read-only
    backup media) is logged and the steps run unlocked. A lock held by
    another run is still an error.
    """
    archiver = archiver or _archiver_for(config)
    lock = SeriesLock(snapshot.lock_path, timeout=config.lock.timeout_seconds)
    try:
        lock.acquire()
    except LockUnavailable as e:
        if not lock_optional:
            raise
        logger.warning(f"Running without series lock: {e}")
        return execute_plan(steps, archiver)

    logger.debug(f"Lock acquired: {lock.lock_path}")
    try:
        return execute_plan(steps, archiver)
    finally:
        lock.release()
        logger.debug("Lock released")


def _dry_run(
    plan: Union[CreateArchive, RestorePlan],
    steps: Sequence[ArchiveInvocation],
    config: Configuration,
    archiver: Optional[TarArchiver],
) -> RunResult:
    archiver = archiver or _archiver_for(config)
    return RunResult(
        success=True,
        exit_code=EXIT_SUCCESS,
        plan=plan,
        dry_run=True,
        commands=[archiver.build_command(step) for step in steps],
    )


def _finish(
    logger: logging.Logger,
    operation: str,
    plan: Union[CreateArchive, RestorePlan],
    execution: ExecutionResult,
    start_time: float,
    archive_path: Optional[Path] = None,
) -> RunResult:
    duration = time.time() - start_time
    if not execution.success:
        log_run_error(logger, execution.error, f"{execution.failed.operation.value} of {execution.failed.archive_path}")
        return RunResult(
            success=False,
            exit_code=execution.error.exit_code,
            plan=plan,
            execution=execution,
            error_message=str(execution.error),
            duration_seconds=duration,
        )
    log_run_completion(logger, operation, duration, len(execution.completed), archive_path)
    return RunResult(
        success=True,
        exit_code=EXIT_SUCCESS,
        plan=plan,
        execution=execution,
        duration_seconds=duration,
    )


def run_backup(
    mode: Union[str, BackupMode],
    source_dir: Union[str, Path],
    output_dir: Union[str, Path],
    exclude_patterns: Optional[Iterable[str]] = None,
    config_path: Optional[Path] = None,
    config: Optional[Configuration] = None,
    archiver: Optional[TarArchiver] = None,
    store: Optional[SnapshotStore] = None,
    today: Optional[Callable[[], date]] = None,
    dry_run: bool = False,
    console_level: Optional[str] = None,
) -> RunResult:
    """
    Run a full or incremental backup.

    Args:
        mode: "full" or "incremental"
        source_dir: Directory to back up
        output_dir: Directory receiving the archive and snapshot state
        exclude_patterns: Path fragments relative to source_dir to omit,
                          appended to the configured exclude_patterns
        config_path: Path to configuration file. If None, uses the default path.
        config: Pre-loaded Configuration. If provided, config_path is ignored.
        archiver: Archiver to use (defaults to a TarArchiver built from config)
        store: Snapshot store (defaults to a fresh one)
        today: Clock for incremental archive names
        dry_run: Plan only; no lock is taken and tar is not run
        console_level: Console log level override

    Returns:
        RunResult with success status, exit code, plan and execution details
    """
    start_time = time.time()
    try:
        config = _load(config, config_path)
    except (ConfigurationError, ValidationError) as e:
        return RunResult(success=False, exit_code=EXIT_CONFIG_ERROR, error_message=str(e))

    logger = _setup_logger(config, console_level)
    patterns = list(config.exclude_patterns) + list(exclude_patterns or [])

    try:
        plan = BackupPlanner(store=store, clock=today).plan(mode, source_dir, output_dir, patterns)
    except TarchainError as e:
        log_run_error(logger, e, "backup planning")
        return RunResult(success=False, exit_code=e.exit_code, error_message=str(e))
    except ValueError as e:
        log_run_error(logger, e, "backup planning")
        return RunResult(success=False, exit_code=EXIT_USAGE_ERROR, error_message=str(e))

    operation = f"{BackupMode.parse(mode).value} backup"
    if dry_run:
        return _dry_run(plan, [plan], config, archiver)

    log_run_start(logger, operation, plan.source_dir, plan.archive_path.parent)
    try:
        execution = _execute_locked(plan.snapshot, [plan], config, archiver, logger)
    except LockError as e:
        log_run_error(logger, e, "lock acquisition")
        return RunResult(success=False, exit_code=EXIT_LOCK_ERROR, plan=plan, error_message=str(e))

    return _finish(logger, operation, plan, execution, start_time, plan.archive_path)


def run_restore(
    archive_path: Union[str, Path],
    output_dir: Union[str, Path],
    snapshot_path: Optional[Union[str, Path]] = None,
    inc_dir: Optional[Union[str, Path]] = None,
    start_date: DateLike = None,
    end_date: DateLike = None,
    config_path: Optional[Path] = None,
    config: Optional[Configuration] = None,
    archiver: Optional[TarArchiver] = None,
    store: Optional[SnapshotStore] = None,
    dry_run: bool = False,
    console_level: Optional[str] = None,
) -> RunResult:
    """
    Restore a full archive and replay its incrementals.

    An empty incremental selection is not an error: the restore consists of
    the full extraction alone and succeeds.

    Args:
        archive_path: Full archive ``{base}.tar.gz``
        output_dir: Directory receiving ``{base}/``
        snapshot_path: Snapshot state override
        inc_dir: Incremental archive directory override
        start_date: Earliest incremental date to replay (inclusive)
        end_date: Latest incremental date to replay (inclusive)
        config_path: Path to configuration file
        config: Pre-loaded Configuration
        archiver: Archiver to use
        store: Snapshot store
        dry_run: Plan only; the extraction target is not created
        console_level: Console log level override

    Returns:
        RunResult with success status, exit code, plan and execution details
    """
    start_time = time.time()
    try:
        config = _load(config, config_path)
    except (ConfigurationError, ValidationError) as e:
        return RunResult(success=False, exit_code=EXIT_CONFIG_ERROR, error_message=str(e))

    logger = _setup_logger(config, console_level)

    try:
        plan = RestorePlanner(store=store).plan(
            archive_path,
            output_dir,
            snapshot_path=snapshot_path,
            inc_dir=inc_dir,
            start_date=start_date,
            end_date=end_date,
            create_target=not dry_run,
        )
    except TarchainError as e:
        log_run_error(logger, e, "restore planning")
        return RunResult(success=False, exit_code=e.exit_code, error_message=str(e))
    except ValueError as e:
        log_run_error(logger, e, "restore planning")
        return RunResult(success=False, exit_code=EXIT_USAGE_ERROR, error_message=str(e))

    if dry_run:
        return _dry_run(plan, plan.steps, config, archiver)

    log_run_start(logger, "restore", plan.full.archive_path, plan.extraction_target)
    try:
        execution = _execute_locked(
            plan.snapshot, plan.steps, config, archiver, logger, lock_optional=True
        )
    except LockError as e:
        log_run_error(logger, e, "lock acquisition")
        return RunResult(success=False, exit_code=EXIT_LOCK_ERROR, plan=plan, error_message=str(e))

    return _finish(logger, "restore", plan, execution, start_time)

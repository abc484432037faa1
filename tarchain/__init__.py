"""tarchain - Full and incremental tar backups with snapshot-chain restore."""

__version__ = "0.1.0"

from tarchain.errors import (
    TarchainError,
    InvalidMode,
    InvalidPath,
    InvalidArchive,
    ArchiverFailure,
)
from tarchain.store import (
    BackupSeries,
    SnapshotState,
    SnapshotStore,
    snapshot_path,
    full_archive_path,
    inc_archive_path,
)
from tarchain.invocation import (
    CreateArchive,
    ExtractArchive,
    ExclusionRule,
    IncrementalArchive,
    RestorePlan,
)
from tarchain.planner import BackupMode, BackupPlanner
from tarchain.selector import IncrementalSelector
from tarchain.restore import RestorePlanner
from tarchain.archiver import TarArchiver
from tarchain.lock import SeriesLock, LockError
from tarchain.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
)
from tarchain.runner import (
    ExecutionResult,
    RunResult,
    execute_plan,
    run_backup,
    run_restore,
)

__all__ = [
    "TarchainError",
    "InvalidMode",
    "InvalidPath",
    "InvalidArchive",
    "ArchiverFailure",
    "BackupSeries",
    "SnapshotState",
    "SnapshotStore",
    "snapshot_path",
    "full_archive_path",
    "inc_archive_path",
    "CreateArchive",
    "ExtractArchive",
    "ExclusionRule",
    "IncrementalArchive",
    "RestorePlan",
    "BackupMode",
    "BackupPlanner",
    "IncrementalSelector",
    "RestorePlanner",
    "TarArchiver",
    "SeriesLock",
    "LockError",
    "Configuration",
    "ConfigurationError",
    "ValidationError",
    "parse_config",
    "ExecutionResult",
    "RunResult",
    "execute_plan",
    "run_backup",
    "run_restore",
]

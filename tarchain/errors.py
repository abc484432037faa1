"""Error taxonomy for tarchain.

Every error carries the process exit code the CLI reports for it. Planning
errors (InvalidMode, InvalidPath, InvalidArchive) are raised before any
archiver invocation is issued; ArchiverFailure is raised while executing a
plan and stops the remaining steps.
"""


# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_USAGE_ERROR = 2
EXIT_INVALID_PATH = 3
EXIT_INVALID_ARCHIVE = 4
EXIT_INVALID_MODE = 5
EXIT_LOCK_ERROR = 6
EXIT_ARCHIVER_FAILURE = 7


class TarchainError(Exception):
    """Base exception for tarchain errors."""

    exit_code = EXIT_USAGE_ERROR

    def __init__(self, message: str):
        super().__init__(message)


class InvalidMode(TarchainError):
    """Raised when a backup mode is not 'full' or 'incremental'."""

    exit_code = EXIT_INVALID_MODE


class InvalidPath(TarchainError):
    """Raised when a required file or directory is missing or has the wrong type."""

    exit_code = EXIT_INVALID_PATH


class InvalidArchive(TarchainError):
    """Raised when a restore archive is missing or has the wrong extension."""

    exit_code = EXIT_INVALID_ARCHIVE


class ArchiverFailure(TarchainError):
    """Raised when the archiver reports a non-zero outcome."""

    exit_code = EXIT_ARCHIVER_FAILURE

    def __init__(self, message: str, return_code: int = -1, stderr: str = ""):
        super().__init__(message)
        self.return_code = return_code
        self.stderr = stderr

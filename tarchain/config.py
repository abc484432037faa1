"""Configuration management for tarchain.

Settings live in an optional TOML file (``~/.config/tarchain/config.toml``)
with four parts: top-level ``exclude_patterns`` (or the same key under
``[main]``) and the ``[archiver]``, ``[lock]`` and ``[logging]`` tables.
Every key is optional; missing keys take the dataclass defaults below.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import tomllib


class ConfigurationError(Exception):
    """Raised when a configuration file cannot be read or is not valid TOML."""
    pass


class ValidationError(Exception):
    """Raised when a configuration key holds a value of the wrong type or range."""
    pass


DEFAULT_LOG_DIR = Path.home() / ".local/log"


@dataclass
class ArchiverConfig:
    """How tar is invoked."""
    tar_command: str = "tar"
    timeout_seconds: int = 3600  # 0 = no timeout


@dataclass
class LockConfig:
    """How long to wait for another run on the same series."""
    timeout_seconds: int = 5


@dataclass
class LoggingConfig:
    """Log destinations, level and rotation."""
    level: str = "INFO"
    log_file: Path = field(default_factory=lambda: DEFAULT_LOG_DIR / "tarchain.log")
    error_log_file: Path = field(default_factory=lambda: DEFAULT_LOG_DIR / "tarchain.err")
    log_max_size_mb: int = 10
    log_backup_count: int = 5

    @property
    def log_max_bytes(self) -> int:
        return self.log_max_size_mb * 1024 * 1024


@dataclass
class Configuration:
    """Main configuration for tarchain."""
    # Applied to every backup in addition to --exclude-files
    exclude_patterns: List[str] = field(default_factory=list)
    archiver: ArchiverConfig = field(default_factory=ArchiverConfig)
    lock: LockConfig = field(default_factory=LockConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


DEFAULT_CONFIG_PATH = Path.home() / ".config/tarchain/config.toml"


def _validate_type(value: Any, expected_type: type, key: str) -> None:
    # bool is a subclass of int; "timeout_seconds = true" is not a number
    if isinstance(value, bool) and expected_type is not bool:
        actual = "bool"
    elif isinstance(value, expected_type):
        return
    else:
        actual = type(value).__name__
    raise ValidationError(
        f"Key '{key}' has invalid type: expected {expected_type.__name__}, got {actual}"
    )


def _table(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    table = data.get(name, {})
    if not isinstance(table, dict):
        raise ValidationError(f"'{name}' must be a table, got {type(table).__name__}")
    return table


def _read(table: Dict[str, Any], section: str, key: str, default: Any, expected_type: type) -> Any:
    """Return ``table[key]`` (or ``default``) after checking its type."""
    value = table.get(key, default)
    _validate_type(value, expected_type, f"{section}.{key}")
    return value


def _read_non_negative(table: Dict[str, Any], section: str, key: str, default: int) -> int:
    value = _read(table, section, key, default, int)
    if value < 0:
        raise ValidationError(f"Key '{section}.{key}' must not be negative")
    return value


def _archiver_from(data: Dict[str, Any]) -> ArchiverConfig:
    table = _table(data, "archiver")
    defaults = ArchiverConfig()

    tar_command = _read(table, "archiver", "tar_command", defaults.tar_command, str)
    if not tar_command.strip():
        raise ValidationError("Key 'archiver.tar_command' must not be empty")

    return ArchiverConfig(
        tar_command=tar_command,
        timeout_seconds=_read_non_negative(table, "archiver", "timeout_seconds", defaults.timeout_seconds),
    )


def _lock_from(data: Dict[str, Any]) -> LockConfig:
    table = _table(data, "lock")
    return LockConfig(
        timeout_seconds=_read_non_negative(table, "lock", "timeout_seconds", LockConfig().timeout_seconds),
    )


def _logging_from(data: Dict[str, Any]) -> LoggingConfig:
    table = _table(data, "logging")
    defaults = LoggingConfig()
    log_file = _read(table, "logging", "log_file", str(defaults.log_file), str)
    error_log_file = _read(table, "logging", "error_log_file", str(defaults.error_log_file), str)

    return LoggingConfig(
        level=_read(table, "logging", "level", defaults.level, str),
        log_file=Path(log_file).expanduser(),
        error_log_file=Path(error_log_file).expanduser(),
        log_max_size_mb=_read(table, "logging", "log_max_size_mb", defaults.log_max_size_mb, int),
        log_backup_count=_read(table, "logging", "log_backup_count", defaults.log_backup_count, int),
    )


def _exclude_patterns_from(data: Dict[str, Any]) -> List[str]:
    source = _table(data, "main") if "main" in data else data
    patterns = source.get("exclude_patterns", [])
    _validate_type(patterns, list, "exclude_patterns")
    for index, pattern in enumerate(patterns):
        _validate_type(pattern, str, f"exclude_patterns[{index}]")
    return list(patterns)


def parse_config_string(toml_content: str) -> Configuration:
    """
    Build a Configuration from TOML text.

    Args:
        toml_content: TOML document

    Returns:
        Configuration with defaults for every absent key

    Raises:
        ConfigurationError: If the text is not valid TOML
        ValidationError: If a key has the wrong type or an out-of-range value
    """
    try:
        data = tomllib.loads(toml_content)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML format: {e}")

    return Configuration(
        exclude_patterns=_exclude_patterns_from(data),
        archiver=_archiver_from(data),
        lock=_lock_from(data),
        logging=_logging_from(data),
    )


def parse_config(config_path: Optional[Path] = None) -> Configuration:
    """
    Load the configuration file.

    An explicit path must exist. Without one, the default file is read when
    present and built-in defaults are returned otherwise.

    Raises:
        ConfigurationError: If an explicit file is missing or any file is unreadable
        ValidationError: If a key has the wrong type or an out-of-range value
    """
    if config_path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            return Configuration()
        config_path = DEFAULT_CONFIG_PATH

    path = Path(config_path).expanduser()
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    try:
        content = path.read_text()
    except PermissionError:
        raise ConfigurationError(f"Permission denied reading configuration file: {path}")
    except OSError as e:
        raise ConfigurationError(f"Error reading configuration file {path}: {e}")

    return parse_config_string(content)


def _toml_value(value: Any) -> str:
    """Render a str, Path, int or list of those as a TOML value."""
    if isinstance(value, (list, tuple)):
        if not value:
            return "[]"
        items = "".join(f"    {_toml_value(item)},\n" for item in value)
        return f"[\n{items}]"
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_config(config: Configuration) -> str:
    """
    Render a Configuration as TOML that parse_config_string reads back unchanged.
    """
    sections = [
        ("main", {"exclude_patterns": config.exclude_patterns}),
        ("archiver", {
            "tar_command": config.archiver.tar_command,
            "timeout_seconds": config.archiver.timeout_seconds,
        }),
        ("lock", {"timeout_seconds": config.lock.timeout_seconds}),
        ("logging", {
            "level": config.logging.level,
            "log_file": config.logging.log_file,
            "error_log_file": config.logging.error_log_file,
            "log_max_size_mb": config.logging.log_max_size_mb,
            "log_backup_count": config.logging.log_backup_count,
        }),
    ]
    blocks = []
    for name, values in sections:
        lines = [f"[{name}]"]
        lines.extend(f"{key} = {_toml_value(value)}" for key, value in values.items())
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n"


def create_default_config() -> str:
    """Return a commented configuration file holding the defaults."""
    return '''# tarchain configuration file

[main]
# Paths (relative to the backed-up directory) excluded from every backup,
# in addition to --exclude-files
exclude_patterns = []

[archiver]
# GNU tar is required (--listed-incremental)
tar_command = "tar"
# Per-invocation timeout in seconds (0 = no timeout)
timeout_seconds = 3600

[lock]
# Seconds to wait for another run on the same series to finish
timeout_seconds = 5

[logging]
# Log level: DEBUG, INFO, WARNING, ERROR
level = "INFO"
log_file = "~/.local/log/tarchain.log"
error_log_file = "~/.local/log/tarchain.err"
log_max_size_mb = 10
log_backup_count = 5
'''

"""Pytest configuration and fixtures for tarchain tests."""

import logging
from pathlib import Path

import pytest
from hypothesis import settings, Phase

from tarchain.config import Configuration, LoggingConfig
from tarchain.logger import LOGGER_NAME

# Configure hypothesis to use fewer examples for faster test runs
settings.register_profile(
    "fast",
    max_examples=20,
    deadline=10000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate]
)
settings.register_profile("ci", max_examples=100, deadline=10000)

settings.load_profile("fast")


@pytest.fixture
def config(tmp_path: Path) -> Configuration:
    """Configuration that logs under tmp_path instead of the home directory."""
    log_dir = tmp_path / "logs"
    return Configuration(
        logging=LoggingConfig(
            level="DEBUG",
            log_file=log_dir / "tarchain.log",
            error_log_file=log_dir / "tarchain.err",
        ),
    )


@pytest.fixture(autouse=True)
def _reset_logger():
    """Close handlers installed by setup_logging between tests."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def series_dirs(tmp_path: Path):
    """Source directory `data/site` with a few files and an empty `backups` directory."""
    source = tmp_path / "data" / "site"
    (source / "logs").mkdir(parents=True)
    (source / "index.html").write_text("<html></html>")
    (source / "logs" / "access.log").write_text("GET /\n")
    output = tmp_path / "backups"
    output.mkdir()
    return source, output


"""Unit tests for CLI commands."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from tarchain import __version__
from tarchain.cli import EXIT_GENERAL_ERROR, create_parser, main
from tarchain.config import format_config
from tarchain.errors import (
    EXIT_ARCHIVER_FAILURE,
    EXIT_CONFIG_ERROR,
    EXIT_INVALID_ARCHIVE,
    EXIT_INVALID_PATH,
    EXIT_SUCCESS,
)


@pytest.fixture
def config_file(tmp_path: Path, config) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(format_config(config))
    return path


def fake_tar(returncode=0, stderr=b""):
    """Popen replacement that writes the --file= target like tar would."""
    def popen(cmd, **kwargs):
        if "--create" in cmd:
            for arg in cmd:
                if arg.startswith("--file="):
                    Path(arg[len("--file="):]).write_bytes(b"archive")
        process = MagicMock()
        process.communicate.return_value = (b"", stderr)
        process.returncode = returncode
        return process
    return popen


@pytest.fixture
def restore_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "backups"
    directory.mkdir()
    for name in ("site.tar.gz", "site-snapshot", "site-inc-2024-01-05.tar.gz", "site-inc-2024-02-01.tar.gz"):
        (directory / name).write_bytes(b"")
    return directory


class TestParser:

    def test_snapshot_required(self):
        with pytest.raises(SystemExit) as exc_info:
            create_parser().parse_args([])
        assert exc_info.value.code == 2

    @pytest.mark.parametrize("argv", [
        ["--snapshot=archive"],
        ["--snapshot=backup", "--action=weekly", "--archive-dir=/data/site", "--output-path=/backups"],
        ["--snapshot=restore", "--archive-file=/b/site.tar.gz", "--output-path=/r", "--end-date=2024-13-01"],
    ])
    def test_bad_values_are_usage_errors(self, argv):
        with pytest.raises(SystemExit) as exc_info:
            main(argv)
        assert exc_info.value.code == 2

    @pytest.mark.parametrize("argv", [
        ["--snapshot=backup", "--archive-dir=/data/site", "--output-path=/backups"],
        ["--snapshot=backup", "--action=full", "--output-path=/backups"],
        ["--snapshot=backup", "--action=full", "--archive-dir=/data/site"],
        ["--snapshot=restore", "--output-path=/restore"],
    ])
    def test_missing_mode_options(self, argv, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(argv)
        assert exc_info.value.code == 2
        assert "requires" in capsys.readouterr().err

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_dates_parsed(self):
        args = create_parser().parse_args([
            "--snapshot=restore", "--start-date=2024-01-01", "--end-date=2024-02-01",
        ])
        assert args.start_date.isoformat() == "2024-01-01"
        assert args.end_date.isoformat() == "2024-02-01"


class TestBackupCommand:

    def test_full_backup(self, series_dirs, config_file, capsys):
        source, output = series_dirs
        with patch("tarchain.archiver.subprocess.Popen", side_effect=fake_tar()):
            exit_code = main([
                f"--config={config_file}", "--snapshot=backup", "--action=full",
                f"--archive-dir={source}", f"--output-path={output}",
            ])

        assert exit_code == EXIT_SUCCESS
        assert (output / "site.tar.gz").exists()
        assert "Backup completed" in capsys.readouterr().out

    def test_dry_run_prints_tar_command(self, series_dirs, config_file, capsys):
        source, output = series_dirs
        with patch("tarchain.archiver.subprocess.Popen") as popen:
            exit_code = main([
                f"--config={config_file}", "--dry-run", "--snapshot=backup",
                "--action=incremental", f"--archive-dir={source}", f"--output-path={output}",
                "--exclude-files=logs, tmp",
            ])

        assert exit_code == EXIT_SUCCESS
        popen.assert_not_called()
        out = capsys.readouterr().out
        assert out.startswith("tar --create --gzip")
        assert "--listed-incremental=" in out
        assert "--exclude=site/logs" in out
        assert "--exclude=site/tmp" in out

    def test_missing_source(self, tmp_path, config_file, capsys):
        (tmp_path / "backups").mkdir()
        exit_code = main([
            f"--config={config_file}", "--snapshot=backup", "--action=full",
            f"--archive-dir={tmp_path / 'nope'}", f"--output-path={tmp_path / 'backups'}",
        ])
        assert exit_code == EXIT_INVALID_PATH
        assert "Error:" in capsys.readouterr().err

    def test_tar_failure(self, series_dirs, config_file, capsys):
        source, output = series_dirs
        with patch("tarchain.archiver.subprocess.Popen", side_effect=fake_tar(returncode=2, stderr=b"tar: boom")):
            exit_code = main([
                f"--config={config_file}", "--snapshot=backup", "--action=full",
                f"--archive-dir={source}", f"--output-path={output}",
            ])
        assert exit_code == EXIT_ARCHIVER_FAILURE
        assert "tar: boom" in capsys.readouterr().err
        assert not (output / "site.tar.gz").exists()

    def test_missing_config_file(self, series_dirs, tmp_path):
        source, output = series_dirs
        exit_code = main([
            f"--config={tmp_path / 'absent.toml'}", "--snapshot=backup", "--action=full",
            f"--archive-dir={source}", f"--output-path={output}",
        ])
        assert exit_code == EXIT_CONFIG_ERROR


class TestRestoreCommand:

    def test_restore(self, restore_dir, tmp_path, config_file, capsys):
        with patch("tarchain.archiver.subprocess.Popen", side_effect=fake_tar()) as popen:
            exit_code = main([
                f"--config={config_file}", "--snapshot=restore",
                f"--archive-file={restore_dir / 'site.tar.gz'}",
                f"--output-path={tmp_path / 'restore'}",
            ])

        assert exit_code == EXIT_SUCCESS
        assert popen.call_count == 3
        assert "Restored site to" in capsys.readouterr().out

    def test_dry_run_order(self, restore_dir, tmp_path, config_file, capsys):
        exit_code = main([
            f"--config={config_file}", "--dry-run", "--snapshot=restore",
            f"--archive-file={restore_dir / 'site.tar.gz'}",
            f"--output-path={tmp_path / 'restore'}",
        ])

        assert exit_code == EXIT_SUCCESS
        lines = capsys.readouterr().out.strip().splitlines()
        assert len(lines) == 3
        assert "site.tar.gz" in lines[0]
        assert "site-inc-2024-01-05.tar.gz" in lines[1]
        assert "site-inc-2024-02-01.tar.gz" in lines[2]

    def test_no_incrementals_is_informational(self, tmp_path, config_file, capsys):
        directory = tmp_path / "backups"
        directory.mkdir()
        (directory / "site.tar.gz").write_bytes(b"")
        with patch("tarchain.archiver.subprocess.Popen", side_effect=fake_tar()):
            exit_code = main([
                f"--config={config_file}", "--snapshot=restore",
                f"--archive-file={directory / 'site.tar.gz'}",
                f"--output-path={tmp_path / 'restore'}",
                "--start-date=2030-01-01",
            ])

        assert exit_code == EXIT_SUCCESS
        assert "No incremental archives to apply" in capsys.readouterr().out

    def test_invalid_archive(self, tmp_path, config_file, capsys):
        exit_code = main([
            f"--config={config_file}", "--snapshot=restore",
            f"--archive-file={tmp_path / 'site.zip'}",
            f"--output-path={tmp_path / 'restore'}",
        ])
        assert exit_code == EXIT_INVALID_ARCHIVE
        assert "Error:" in capsys.readouterr().err

    def test_failure_mid_chain_reports_skipped(self, restore_dir, tmp_path, config_file, capsys):
        calls = []
        ok = fake_tar()
        bad = fake_tar(returncode=2, stderr=b"tar: corrupt")

        def popen(cmd, **kwargs):
            calls.append(cmd)
            return bad(cmd, **kwargs) if len(calls) == 2 else ok(cmd, **kwargs)

        with patch("tarchain.archiver.subprocess.Popen", side_effect=popen):
            exit_code = main([
                f"--config={config_file}", "--snapshot=restore",
                f"--archive-file={restore_dir / 'site.tar.gz'}",
                f"--output-path={tmp_path / 'restore'}",
            ])

        assert exit_code == EXIT_ARCHIVER_FAILURE
        assert len(calls) == 2
        assert "1 remaining step(s) were not run" in capsys.readouterr().err


class TestMainErrors:

    def test_keyboard_interrupt(self, capsys):
        with patch("tarchain.cli.cmd_backup", side_effect=KeyboardInterrupt):
            exit_code = main([
                "--snapshot=backup", "--action=full", "--archive-dir=/d", "--output-path=/o",
            ])
        assert exit_code == 130
        assert "Interrupted" in capsys.readouterr().err

    def test_unexpected_exception(self, capsys):
        with patch("tarchain.cli.cmd_restore", side_effect=RuntimeError("Unexpected")):
            exit_code = main(["--snapshot=restore", "--archive-file=/a.tar.gz", "--output-path=/o"])
        assert exit_code == EXIT_GENERAL_ERROR
        assert "Unexpected" in capsys.readouterr().err

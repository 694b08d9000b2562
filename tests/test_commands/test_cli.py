from __future__ import annotations

import os
import logging
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from depbump.cli import cli, main
from depbump.__version__ import __version__
from depbump.exceptions import NetworkError


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Drop handlers bound to CliRunner streams after each test."""
    root_logger = logging.getLogger("depbump")
    saved_handlers = list(root_logger.handlers)

    yield

    root_logger.handlers[:] = saved_handlers
    root_logger.setLevel(logging.NOTSET)
    root_logger.propagate = True


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    (tmp_path / "package.json").write_text('{"name": "app"}', encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.mark.unit
class TestCliGroup:
    """Tests for global options handled by the group."""

    def test_version(self) -> None:
        result = CliRunner().invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert result.output.strip() == f"depbump {__version__}"

    def test_help_lists_commands(self) -> None:
        result = CliRunner().invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("check", "update", "doctor"):
            assert command in result.output

    def test_invalid_config_exits_one(self, workdir: Path) -> None:
        (workdir / "depbump.toml").write_text("[depbump]\nbogus = 1\n", encoding="utf-8")

        with patch("depbump.commands.check.check_project") as mock_check:
            result = CliRunner().invoke(cli, ["check"])

        assert result.exit_code == 1
        assert "Unknown configuration keys" in result.output
        mock_check.assert_not_called()

    def test_verbosity_sets_log_level(self, workdir: Path) -> None:
        with patch("depbump.commands.check.check_project", side_effect=SystemExit(0)):
            CliRunner().invoke(cli, ["-vv", "check"])

        assert logging.getLogger("depbump").level == logging.DEBUG

    def test_no_color_exports_env(self, workdir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)

        with patch("depbump.commands.check.check_project", side_effect=SystemExit(0)):
            CliRunner().invoke(cli, ["--no-color", "check"])

        assert os.environ.get("NO_COLOR") == "1"


@pytest.mark.unit
class TestMainEntryPoint:
    """Tests for main() exit code mapping."""

    def test_usage_error_returns_two(self, workdir: Path) -> None:
        with patch("sys.argv", ["depbump", "check", "--error-level", "9"]):
            assert main() == 2

    def test_depbump_error_returns_one(self, workdir: Path) -> None:
        with patch("sys.argv", ["depbump", "check"]), patch(
            "depbump.commands.check.check_project", side_effect=NetworkError("offline")
        ):
            assert main() == 1

    def test_keyboard_interrupt_returns_130(self, workdir: Path) -> None:
        with patch("sys.argv", ["depbump", "check"]), patch(
            "depbump.commands.check.check_project", side_effect=KeyboardInterrupt
        ):
            assert main() == 130

    def test_unexpected_error_returns_one(self, workdir: Path) -> None:
        with patch("sys.argv", ["depbump", "check"]), patch(
            "depbump.commands.check.check_project", side_effect=RuntimeError("bug")
        ):
            assert main() == 1

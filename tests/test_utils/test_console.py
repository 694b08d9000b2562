from __future__ import annotations

import sys
import pytest
from pathlib import PurePosixPath
from typing import Generator
from unittest.mock import patch

from rich.table import Table
from rich.console import Console

from depbump.utils.console import (
    DEPBUMP_THEME,
    _get_console,
    _should_use_color,
    colorize_update_type,
    confirm,
    print_error,
    print_json,
    print_output,
    print_success,
    print_table,
    print_warning,
    reconfigure_console,
)


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture(autouse=True)
def reset_console() -> Generator[None, None, None]:
    """Reset the console singleton around each test."""
    reconfigure_console()
    yield
    reconfigure_console()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("NO_COLOR", raising=False)
    monkeypatch.delenv("CI", raising=False)


# ==============================================================================
# Console configuration
# ==============================================================================


@pytest.mark.unit
class TestConsoleConfiguration:
    """Tests for color detection and the console singleton."""

    @pytest.mark.parametrize("style", ["success", "error", "warning", "info", "dim"])
    def test_theme_has_style(self, style: str) -> None:
        assert style in DEPBUMP_THEME.styles

    def test_no_color_env_disables_color(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NO_COLOR", "1")

        assert _should_use_color() is False

    def test_tty_enables_color(self, clean_env: None) -> None:
        with patch.object(sys.stdout, "isatty", return_value=True):
            assert _should_use_color() is True

    def test_isatty_error_disables_color(self, clean_env: None) -> None:
        with patch.object(sys.stdout, "isatty", side_effect=OSError):
            assert _should_use_color() is False

    def test_singleton(self) -> None:
        assert _get_console() is _get_console()
        assert isinstance(_get_console(), Console)

    def test_reconfigure_creates_new_console(self) -> None:
        first = _get_console()

        reconfigure_console()

        assert _get_console() is not first


# ==============================================================================
# Message helpers
# ==============================================================================


@pytest.mark.unit
class TestStatusMessages:
    """Tests for print_success, print_error and print_warning."""

    def test_success(self) -> None:
        with patch.object(Console, "print") as mock_print:
            print_success("Upgraded package.json")

        mock_print.assert_called_once_with("[OK] Upgraded package.json", style="success")

    def test_error(self) -> None:
        with patch.object(Console, "print") as mock_print:
            print_error("Registry unreachable")

        mock_print.assert_called_once_with("[ERROR] Registry unreachable", style="error")

    def test_warning_custom_prefix(self) -> None:
        with patch.object(Console, "print") as mock_print:
            print_warning("Rejected react", prefix="!")

        mock_print.assert_called_once_with("! Rejected react", style="warning")

    def test_output_disables_markup(self) -> None:
        """Test captured output containing brackets prints verbatim."""
        with patch.object(Console, "print") as mock_print:
            print_output("[error] test failed")

        mock_print.assert_called_once_with(
            "[error] test failed", markup=False, highlight=False, style="dim"
        )


# ==============================================================================
# Structured output
# ==============================================================================


@pytest.mark.unit
class TestPrintTable:
    """Tests for print_table."""

    def test_prints_table(self) -> None:
        rows = [{"Name": "react", "From": "^17.0.2", "To": "^18.3.1"}]

        with patch.object(Console, "print") as mock_print:
            print_table(rows, title="Upgrades")

        table = mock_print.call_args[0][0]
        assert isinstance(table, Table)
        assert table.title == "Upgrades"
        assert [c.header for c in table.columns] == ["Name", "From", "To"]
        assert table.row_count == 1

    def test_empty_data_prints_nothing(self) -> None:
        with patch.object(Console, "print") as mock_print:
            print_table([])

        mock_print.assert_not_called()

    def test_custom_headers_and_missing_values(self) -> None:
        with patch.object(Console, "print") as mock_print:
            print_table([{"Name": "react"}], headers=["Name", "Status"])

        table = mock_print.call_args[0][0]
        assert [c.header for c in table.columns] == ["Name", "Status"]

    def test_row_styler(self) -> None:
        rows = [{"Name": "a", "ok": True}, {"Name": "b", "ok": False}]

        with patch.object(Console, "print") as mock_print:
            print_table(rows, headers=["Name"], row_styler=lambda r: None if r["ok"] else "red")

        table = mock_print.call_args[0][0]
        assert [row.style for row in table.rows] == [None, "red"]


@pytest.mark.unit
class TestPrintJson:
    def test_serializes_with_str_fallback(self) -> None:
        with patch.object(Console, "print_json") as mock_print_json:
            print_json({"path": PurePosixPath("apps/web"), "n": 1})

        mock_print_json.assert_called_once_with('{"path": "apps/web", "n": 1}')


# ==============================================================================
# Confirmation
# ==============================================================================


@pytest.mark.unit
class TestConfirm:
    """Tests for confirm."""

    @pytest.mark.parametrize(
        "answer, default, expected",
        [
            ("y", False, True),
            ("YES", False, True),
            ("n", True, False),
            ("no", True, False),
            ("", True, True),
            ("", False, False),
            ("maybe", True, True),
            ("  y  ", False, True),
        ],
    )
    def test_answers(self, answer: str, default: bool, expected: bool) -> None:
        with patch("builtins.input", return_value=answer), patch.object(Console, "print"):
            assert confirm("Apply?", default=default) is expected

    @pytest.mark.parametrize("error", [KeyboardInterrupt, EOFError])
    def test_interrupt_declines(self, error: type) -> None:
        with patch("builtins.input", side_effect=error), patch.object(Console, "print"):
            assert confirm("Apply?", default=True) is False

    @pytest.mark.parametrize("default, hint", [(True, "[Y/n]"), (False, "[y/N]")])
    def test_prompt_shows_default(self, default: bool, hint: str) -> None:
        with patch("builtins.input", return_value=""), patch.object(Console, "print") as mock_print:
            confirm("Continue?", default=default)

        prompt = mock_print.call_args_list[0]
        assert hint in prompt[0][0]
        assert prompt[1]["markup"] is False


@pytest.mark.unit
class TestColorizeUpdateType:
    @pytest.mark.parametrize(
        "update_type, expected",
        [
            ("major", "[red]major[/red]"),
            ("Minor", "[yellow]Minor[/yellow]"),
            ("patch", "[green]patch[/green]"),
            ("same", "same"),
        ],
    )
    def test_colors(self, update_type: str, expected: str) -> None:
        assert colorize_update_type(update_type) == expected

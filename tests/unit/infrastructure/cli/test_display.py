import pytest
from unittest.mock import MagicMock

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from jmapbridge.infrastructure.cli.display import ConsoleDisplay, _cell


@pytest.fixture
def mock_console():
    """Fixture to create a mock rich Console object."""
    return MagicMock()


@pytest.fixture
def console_display(mock_console: MagicMock):
    """Fixture to create a ConsoleDisplay instance with a mocked console."""
    return ConsoleDisplay(console=mock_console)


def test_display_output(console_display: ConsoleDisplay, mock_console: MagicMock):
    """Test that display_output prints a titled panel."""
    console_display.display_output("Hello", title="Session")
    mock_console.print.assert_called_once()
    args, _ = mock_console.print.call_args
    assert isinstance(args[0], Panel)
    assert "Session" in args[0].title
    assert args[0].renderable.plain == "Hello"


def test_display_error(console_display: ConsoleDisplay, mock_console: MagicMock):
    """Test that display_error prints a red error panel."""
    console_display.display_error("Something went wrong")
    args, _ = mock_console.print.call_args
    assert isinstance(args[0], Panel)
    assert "Error" in args[0].title
    assert args[0].border_style == "red"
    assert args[0].renderable.plain == "Something went wrong"


def test_display_info(console_display: ConsoleDisplay, mock_console: MagicMock):
    """Test that display_info prints an info panel."""
    console_display.display_info("Process completed")
    args, _ = mock_console.print.call_args
    assert "Info" in args[0].title
    assert args[0].renderable.plain == "Process completed"


def test_display_table(console_display: ConsoleDisplay, mock_console: MagicMock):
    """Test that display_table prints one row per record."""
    rows = [{"id": "M1", "name": "Inbox", "unread": 3}, {"id": "M2", "name": "Sent"}]
    console_display.display_table("Mailboxes", ["id", "name", "unread"], rows)
    args, _ = mock_console.print.call_args
    table = args[0]
    assert isinstance(table, Table)
    assert table.title == "Mailboxes"
    assert [c.header for c in table.columns] == ["id", "name", "unread"]
    assert table.row_count == 2
    assert list(table.columns[2].cells) == ["3", ""]


def test_display_table_without_rows_shows_info(console_display: ConsoleDisplay, mock_console: MagicMock):
    console_display.display_table("Emails", ["id"], [])
    args, _ = mock_console.print.call_args
    assert isinstance(args[0], Panel)
    assert args[0].renderable.plain == "Emails: nothing to show."


@pytest.mark.parametrize("value, expected", [
    (None, ""),
    (True, "yes"),
    (False, "no"),
    (["a", "b"], "a, b"),
    ({"email": "x@example.com"}, "email=x@example.com"),
    ([{"name": "Ann", "email": "ann@example.com"}], "name=Ann, email=ann@example.com"),
    (42, "42"),
])
def test_cell_formatting(value, expected):
    assert _cell(value) == expected


def test_renders_to_a_real_console():
    """Test that output renders without errors on a recording console."""
    console = Console(record=True, width=80)
    display = ConsoleDisplay(console=console)
    display.display_table("Emails", ["subject"], [{"subject": "Quarterly report"}])
    display.display_error("boom")
    text = console.export_text()
    assert "Quarterly report" in text
    assert "boom" in text

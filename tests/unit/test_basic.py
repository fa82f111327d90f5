#!/usr/bin/env python
"""Basic functionality test for REPL components without device."""

import io
from datetime import datetime

import pytest
from prompt_toolkit.document import Document
from rich.console import Console

from cablectrl.cli import CableCtrlREPL
from cablectrl.commands import (
    COMMANDS,
    CommandCompleter,
    get_command,
    parse_level,
    parse_mode,
    parse_number,
)
from cablectrl.controller import SessionController, StopOutcome
from cablectrl.display import DisplayManager
from cablectrl.errors import ValidationError
from cablectrl.modes import EchoLevel, ProgramMode
from cablectrl.session import WorkoutRecord


def _display():
    return DisplayManager(Console(file=io.StringIO(), width=120))


def _output(display):
    return display.console.file.getvalue()


def test_display():
    """Test display functionality."""
    display = _display()

    display.print_banner()
    display.print_status(
        {
            "connected": True,
            "state": "working",
            "mode": "Old School",
            "warmup_reps": 3,
            "warmup_target": 3,
            "working_reps": 4,
            "target_reps": 10,
            "auto_stop": 0.4,
            "load_a": 12.5,
            "load_b": 12.0,
            "pos_a": 500,
            "pos_b": 480,
            "max_pos_a": 1000,
            "max_pos_b": 1000,
        }
    )
    display.print_stop_outcome(StopOutcome.STOPPED)
    display.print_stop_outcome(StopOutcome.FORCED_DISCONNECT)
    display.print_info("This is an info message")
    display.print_error("This is an error message")
    display.print_help(COMMANDS)

    output = _output(display)
    assert "CableCtrl" in output
    assert "4/10" in output
    assert "24.5 kg" in output
    assert "40%" in output
    assert "Trainer stopped" in output
    assert "link dropped" in output
    assert "Error:" in output
    assert "justlift" in output


def test_format_helpers():
    assert DisplayManager.format_load(12.345) == "12.3 kg"
    assert DisplayManager.format_reps(3, 10) == "3/10"
    assert DisplayManager.format_reps(7, 0) == "7"
    assert DisplayManager.format_reps(None, None) == "-/-"
    assert DisplayManager.format_bar(500, 1000, width=10) == "█████░░░░░ 500"
    assert DisplayManager.format_bar(2000, 1000, width=4) == "████ 2000"


def test_history_display():
    display = _display()
    display.print_history([])
    display.print_history(
        [
            WorkoutRecord("Echo Hard", 0.0, 8, 8, datetime(2024, 1, 1, 9), datetime(2024, 1, 1, 9, 5), "target reached"),
            WorkoutRecord("Pump", 15.0, 6, 10, datetime(2024, 1, 1, 9), datetime(2024, 1, 1, 9, 2), "stopped by user"),
        ]
    )

    output = _output(display)
    assert "No workouts completed yet" in output
    assert "Adaptive" in output
    assert "15.0 kg" in output
    assert "6/10" in output


def test_commands():
    """Test command definitions."""
    assert get_command("connect").name == "connect"
    assert get_command("c").name == "connect"
    assert get_command("jl").name == "justlift"
    assert get_command("?").name == "help"
    assert get_command("speed") is None

    handlers = {cmd.handler for cmd in COMMANDS}
    for handler in handlers:
        assert hasattr(CableCtrlREPL, handler)


def test_argument_parsing():
    assert parse_mode("tutbeast") is ProgramMode.TUT_BEAST
    assert parse_mode("Old_School") is ProgramMode.OLD_SCHOOL
    assert parse_mode("1") is ProgramMode.PUMP
    assert parse_level("epic") is EchoLevel.EPIC
    assert parse_level("2") is EchoLevel.HARDER
    assert parse_number("12.5", "weight") == 12.5
    assert parse_number("8", "reps", int) == 8

    with pytest.raises(ValidationError):
        parse_mode("crossfit")
    with pytest.raises(ValidationError):
        parse_level("5")
    with pytest.raises(ValidationError, match="Invalid reps"):
        parse_number("eight", "reps", int)


def test_completer():
    completer = CommandCompleter()

    def complete(text):
        return {c.text for c in completer.get_completions(Document(text), None)}

    assert "gram" in complete("pro")
    assert complete("program tut") == {"", "beast"}
    assert complete("color p") == {"ink", "urple"}
    assert "hard" in complete("echo ")
    assert complete("program tut ") == set()
    assert complete("status ") == set()


@pytest.mark.asyncio
async def test_controller_properties():
    """Test controller properties (without connection)."""
    controller = SessionController()

    assert controller.is_connected is False
    assert controller.device_name is None
    assert controller.session is None
    assert controller.history == []

    status = controller.get_status()
    assert status["connected"] is False
    assert status["state"] == "idle"
    assert status["mode"] is None

"""
Command definitions and auto-completion for REPL.

Defines all available commands with metadata and provides a completer
for prompt_toolkit auto-completion.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from .errors import ValidationError
from .modes import COLOR_PRESETS, EchoLevel, ProgramMode


@dataclass
class Command:
    """Command definition with metadata."""

    name: str
    aliases: List[str]
    description: str
    usage: str
    handler: str


# Define all available commands
COMMANDS = [
    Command(
        name="scan",
        aliases=[],
        description="List trainers in range",
        usage="scan",
        handler="cmd_scan",
    ),
    Command(
        name="connect",
        aliases=["c"],
        description="Connect to trainer",
        usage="connect",
        handler="cmd_connect",
    ),
    Command(
        name="disconnect",
        aliases=["dc"],
        description="Disconnect from trainer",
        usage="disconnect",
        handler="cmd_disconnect",
    ),
    Command(
        name="program",
        aliases=["p"],
        description="Start a program set with a rep target",
        usage="program <mode> <kg per cable> <reps> [progression kg]",
        handler="cmd_program",
    ),
    Command(
        name="justlift",
        aliases=["jl"],
        description="Start an open-ended program set (auto-stops at rest)",
        usage="justlift <mode> <kg per cable> [progression kg]",
        handler="cmd_justlift",
    ),
    Command(
        name="echo",
        aliases=["e"],
        description="Start an Echo set",
        usage="echo <level> [eccentric %] [reps]",
        handler="cmd_echo",
    ),
    Command(
        name="echolift",
        aliases=["ejl"],
        description="Start an open-ended Echo set (auto-stops at rest)",
        usage="echolift <level> [eccentric %]",
        handler="cmd_echolift",
    ),
    Command(
        name="stop",
        aliases=["x"],
        description="Stop the trainer",
        usage="stop",
        handler="cmd_stop",
    ),
    Command(
        name="color",
        aliases=["col"],
        description="Apply an LED color preset",
        usage="color <preset>",
        handler="cmd_color",
    ),
    Command(
        name="status",
        aliases=["st"],
        description="Show current telemetry and rep counts",
        usage="status",
        handler="cmd_status",
    ),
    Command(
        name="live",
        aliases=["l"],
        description="Toggle live display mode",
        usage="live",
        handler="cmd_live",
    ),
    Command(
        name="history",
        aliases=["hist"],
        description="Show completed sets",
        usage="history",
        handler="cmd_history",
    ),
    Command(
        name="info",
        aliases=["i"],
        description="Show device and debug information",
        usage="info",
        handler="cmd_info",
    ),
    Command(
        name="help",
        aliases=["h", "?"],
        description="Show all available commands",
        usage="help",
        handler="cmd_help",
    ),
    Command(
        name="quit",
        aliases=["q", "exit"],
        description="Exit the REPL",
        usage="quit",
        handler="cmd_quit",
    ),
]

MODE_NAMES: Dict[str, ProgramMode] = {
    mode.name.lower().replace("_", ""): mode for mode in ProgramMode
}
LEVEL_NAMES: Dict[str, EchoLevel] = {level.name.lower(): level for level in EchoLevel}

# Second-argument suggestions per command
ARGUMENT_CHOICES: Dict[str, List[str]] = {
    "program": sorted(MODE_NAMES),
    "justlift": sorted(MODE_NAMES),
    "echo": sorted(LEVEL_NAMES),
    "echolift": sorted(LEVEL_NAMES),
    "color": sorted(COLOR_PRESETS),
}


def get_command(name: str) -> Command | None:
    """Get command by name or alias.

    Args:
        name: Command name or alias

    Returns:
        Command object if found, None otherwise
    """
    for cmd in COMMANDS:
        if cmd.name == name or name in cmd.aliases:
            return cmd
    return None


def parse_mode(text: str) -> ProgramMode:
    """Resolve a program mode from its name (e.g. ``tutbeast``) or number."""
    key = text.lower().replace("_", "").replace("-", "")
    if key in MODE_NAMES:
        return MODE_NAMES[key]
    if key.isdigit() and int(key) in ProgramMode._value2member_map_:
        return ProgramMode(int(key))
    raise ValidationError(f"Unknown mode '{text}'. Choose from: {', '.join(sorted(MODE_NAMES))}")


def parse_level(text: str) -> EchoLevel:
    """Resolve an Echo level from its name or 1-based number."""
    key = text.lower()
    if key in LEVEL_NAMES:
        return LEVEL_NAMES[key]
    if key.isdigit() and 1 <= int(key) <= len(EchoLevel):
        return EchoLevel(int(key) - 1)
    raise ValidationError(f"Unknown Echo level '{text}'. Choose from: {', '.join(LEVEL_NAMES)}")


def parse_number(text: str, label: str, kind: type = float) -> Any:
    """Parse a numeric argument, raising ValidationError with the argument name."""
    try:
        return kind(text)
    except ValueError:
        raise ValidationError(f"Invalid {label}: {text}") from None


class CommandCompleter(Completer):
    """Auto-completion for commands and arguments."""

    def __init__(self) -> None:
        """Initialize completer."""
        self._command_names = set()
        self._command_aliases = set()

        for cmd in COMMANDS:
            self._command_names.add(cmd.name)
            self._command_aliases.update(cmd.aliases)

    def get_completions(self, document: Document, complete_event) -> Any:  # type: ignore[no-untyped-def]
        """Get completion suggestions for current input.

        Args:
            document: Current input document
            complete_event: Completion event

        Yields:
            Completion objects for matching commands/arguments
        """
        text = document.text_before_cursor.lstrip()
        parts = text.split()

        # If no text yet, suggest nothing (avoid spam)
        if not text:
            return []

        # First part: complete command name
        if len(parts) <= 1 and not text.endswith(" "):
            partial_cmd = parts[0].lower() if parts else ""
            all_names = self._command_names | self._command_aliases

            for name in sorted(all_names):
                if name.startswith(partial_cmd):
                    completion = name[len(partial_cmd) :]
                    yield Completion(
                        completion,
                        start_position=-len(partial_cmd),
                        display=f"({name})",
                    )
            return

        # Second part: mode, level or preset names
        cmd = get_command(parts[0].lower())
        if cmd is None or cmd.name not in ARGUMENT_CHOICES:
            return
        at_new_word = text.endswith(" ")
        if len(parts) > 2 or (len(parts) == 2 and at_new_word):
            return

        partial = "" if at_new_word else parts[-1].lower()
        for choice in ARGUMENT_CHOICES[cmd.name]:
            if choice.startswith(partial):
                yield Completion(
                    choice[len(partial) :],
                    start_position=-len(partial),
                    display=choice,
                )

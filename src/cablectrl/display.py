"""
Display manager for Rich-based REPL output and live updates.

Handles all console output including formatted tables, status display,
workout history and the toggle-able live telemetry view.
"""

import logging
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

logger = logging.getLogger(__name__)


class DisplayManager:
    """Manages console output with Rich library."""

    def __init__(self, console: Optional[Console] = None):
        """Initialize display manager.

        Args:
            console: Rich Console instance (creates one if None)
        """
        self.console = console or Console()
        self.live_enabled = False
        self._live: Optional[Live] = None
        self._live_data: Dict[str, Any] = {}

    def print_banner(self) -> None:
        """Print startup banner."""
        panel = Panel(
            "[bold cyan]CableCtrl - Cable Trainer Control[/bold cyan]\n"
            "[dim]Type 'help' for commands, 'quit' to exit[/dim]",
            expand=False,
        )
        self.console.print(panel)

    def print_status(self, data: dict) -> None:
        """Display one-time status table.

        Args:
            data: Status snapshot from SessionController.get_status()
        """
        self.console.print(self.format_status_table(data))

    def print_stop_outcome(self, outcome) -> None:  # type: ignore[no-untyped-def]
        """Display how a STOP request ended.

        Args:
            outcome: StopOutcome enum
        """
        from .controller import StopOutcome

        if outcome == StopOutcome.STOPPED:
            self.console.print("[green]✓[/green] Trainer stopped", highlight=False)
        elif outcome == StopOutcome.FORCED_DISCONNECT:
            self.console.print(
                "[yellow]⚠[/yellow] Stop command failed; link dropped so the trainer "
                "releases the load. Reconnect before the next set.",
                highlight=False,
            )
        else:
            self.console.print(
                "[yellow]⚠[/yellow] Not connected; trainer has no active link",
                highlight=False,
            )

    def print_error(self, message: str) -> None:
        """Print red error message."""
        self.console.print(f"[red]Error:[/red] {message}", highlight=False)

    def print_info(self, message: str) -> None:
        """Print blue info message."""
        self.console.print(f"[cyan]Info:[/cyan] {message}", highlight=False)

    def print_help(self, commands: list) -> None:
        """Display command reference.

        Args:
            commands: List of Command objects
        """
        table = Table(title="Available Commands", show_header=True)
        table.add_column("Command", style="cyan")
        table.add_column("Aliases", style="magenta")
        table.add_column("Description", style="white")
        table.add_column("Usage", style="yellow")

        for cmd in commands:
            aliases = ", ".join(cmd.aliases) if cmd.aliases else "-"
            table.add_row(cmd.name, aliases, cmd.description, cmd.usage)

        self.console.print(table)
        self.console.print(
            "[dim]Keyboard shortcuts: Ctrl+C to interrupt, Ctrl+D to exit[/dim]"
        )

    def print_history(self, records: List[Any]) -> None:
        """Display completed sets, newest first."""
        if not records:
            self.print_info("No workouts completed yet")
            return

        table = Table(title="Workout History", show_header=True, header_style="bold cyan")
        table.add_column("Ended", style="dim")
        table.add_column("Mode", style="cyan")
        table.add_column("Weight", style="yellow")
        table.add_column("Reps", style="yellow")
        table.add_column("Reason", style="white")

        for record in records:
            weight = self.format_load(record.weight_kg) if record.weight_kg > 0 else "Adaptive"
            table.add_row(
                record.ended_at.strftime("%H:%M:%S"),
                record.mode_name,
                weight,
                self.format_reps(record.reps, record.target_reps),
                record.reason,
            )
        self.console.print(table)

    def start_live(self) -> None:
        """Start live display refresh mode."""
        if self.live_enabled:
            return

        self.live_enabled = True
        self._live_data = {"state": "idle", "connected": False}
        self._live = Live(self._create_live_table(), console=self.console, refresh_per_second=4)
        self._live.start()
        self.console.print("[dim]Live display enabled ['live' to disable][/dim]")

    def stop_live(self) -> None:
        """Stop live display refresh mode."""
        if not self.live_enabled:
            return

        self.live_enabled = False
        if self._live is not None:
            self._live.stop()
            self._live = None

    def update_live(self, data: dict) -> None:
        """Update live display with a new status snapshot."""
        if not self.live_enabled or self._live is None:
            return

        self._live_data.update(data)
        try:
            self._live.update(self._create_live_table())
        except Exception as e:
            logger.error(f"Live update error: {e}")

    def toggle_live(self) -> bool:
        """Toggle live display on/off.

        Returns:
            New live display state (True = on, False = off)
        """
        if self.live_enabled:
            self.stop_live()
        else:
            self.start_live()
        return self.live_enabled

    def _create_live_table(self) -> Table:
        return self.format_status_table(self._live_data)

    def format_status_table(self, data: dict) -> Table:
        """Create Rich Table for status display."""
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="yellow")

        table.add_row("Connection", "connected" if data.get("connected") else "disconnected")
        table.add_row("State", str(data.get("state", "idle")))
        if data.get("mode"):
            table.add_row("Mode", data["mode"])
            table.add_row(
                "Warmup", self.format_reps(data.get("warmup_reps"), data.get("warmup_target"))
            )
            table.add_row(
                "Working", self.format_reps(data.get("working_reps"), data.get("target_reps"))
            )

        load_a = data.get("load_a", 0.0)
        load_b = data.get("load_b", 0.0)
        table.add_row("Right (A)", self.format_load(load_a))
        table.add_row("Left (B)", self.format_load(load_b))
        table.add_row("Total", self.format_load(load_a + load_b))
        table.add_row(
            "Position A",
            self.format_bar(data.get("pos_a", 0), data.get("max_pos_a", 1000)),
        )
        table.add_row(
            "Position B",
            self.format_bar(data.get("pos_b", 0), data.get("max_pos_b", 1000)),
        )

        progress = data.get("auto_stop", 0.0)
        if progress > 0:
            table.add_row("Auto-stop", f"{progress * 100:.0f}%")
        return table

    @staticmethod
    def format_load(kg: float) -> str:
        return f"{kg:.1f} kg"

    @staticmethod
    def format_reps(done: Optional[int], target: Optional[int]) -> str:
        """Format a rep counter as ``done/target`` or ``done`` when open-ended."""
        if done is None:
            return "-/-"
        if target:
            return f"{done}/{target}"
        return str(done)

    @staticmethod
    def format_bar(position: int, maximum: int, width: int = 20) -> str:
        """Render a cable position as a text bar scaled to the max seen."""
        fraction = min(position / maximum, 1.0) if maximum > 0 else 0.0
        filled = int(round(fraction * width))
        return f"{'█' * filled}{'░' * (width - filled)} {position}"

"""
Main REPL application for cable trainer control.

Interactive command loop with async support, auto-completion,
and live telemetry display.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.history import InMemoryHistory

from .commands import COMMANDS, CommandCompleter, get_command, parse_level, parse_mode, parse_number
from .controller import SessionController
from .display import DisplayManager
from .errors import CableCtrlError
from .events import (
    AutoStopTriggered,
    Disconnected,
    RepCompleted,
    SampleReceived,
    SessionCompleted,
)
from .modes import COLOR_PRESETS
from .session import EchoRequest, FixedProgram, JustLiftProgram

logger = logging.getLogger(__name__)


class CableCtrlREPL:
    """Interactive REPL for cable trainer control."""

    def __init__(self, controller: Optional[SessionController] = None) -> None:
        """Initialize REPL with controller and display manager."""
        self.controller = controller or SessionController()
        self.display = DisplayManager()
        self.running = False

        # Create prompt session with auto-completion
        self.session: PromptSession = PromptSession(
            completer=CommandCompleter(),
            history=InMemoryHistory(),
            enable_history_search=True,
        )

        # Background event task
        self._event_task: Optional[asyncio.Task] = None

    async def run(self) -> None:
        """Run the main REPL loop."""
        self.running = True
        self.display.print_banner()

        # Start event processing loop
        self._event_task = asyncio.create_task(self._event_loop())

        try:
            while self.running:
                try:
                    text = await self.session.prompt_async(self._get_prompt())
                    if text.strip():
                        await self._handle_input(text.strip())
                except KeyboardInterrupt:
                    # Just show new prompt on Ctrl+C
                    self.display.console.print()
                    continue

        except EOFError:
            # End of input (Ctrl+D)
            await self.cmd_quit([])
        finally:
            self.running = False
            if self._event_task:
                self._event_task.cancel()
                try:
                    await self._event_task
                except asyncio.CancelledError:
                    pass

    def _get_prompt(self) -> FormattedText:
        """Get dynamic prompt based on connection and session state."""
        if not self.controller.is_connected:
            return FormattedText([("class:prompt", "[disconnected] > ")])
        session = self.controller.session
        suffix = f" {session.state.value}" if session else ""
        return FormattedText(
            [("class:prompt", f"[{self.controller.device_name}{suffix}] > ")]
        )

    async def _handle_input(self, text: str) -> None:
        """Parse and dispatch command."""
        parts = text.split(maxsplit=1)
        if not parts:
            return

        cmd_name = parts[0].lower()
        args = parts[1].split() if len(parts) > 1 else []

        cmd = get_command(cmd_name)
        if not cmd:
            self.display.print_error(
                f"Unknown command: {cmd_name}. Type 'help' for available commands."
            )
            return

        handler = getattr(self, cmd.handler, None)
        if handler is None:
            self.display.print_error(f"Handler not found: {cmd.handler}")
            return

        try:
            await handler(args)
        except CableCtrlError as e:
            self.display.print_error(str(e))
        except Exception as e:
            self.display.print_error(f"Command failed: {e}")
            logger.exception("Command exception")

    async def _event_loop(self) -> None:
        """Background task rendering controller events."""
        with self.controller.subscribe() as events:
            async for event in events:
                if isinstance(event, SampleReceived):
                    if self.display.live_enabled:
                        self.display.update_live(self.controller.get_status())
                elif isinstance(event, RepCompleted) and not self.display.live_enabled:
                    kind = "Warmup" if event.is_warmup else "Working"
                    done = event.warmup_reps if event.is_warmup else event.working_reps
                    target = event.warmup_target if event.is_warmup else event.target_reps
                    self.display.print_info(
                        f"{kind} rep {self.display.format_reps(done, target)}"
                    )
                elif isinstance(event, AutoStopTriggered):
                    self.display.print_info("Auto-stop: resting at bottom of range")
                elif isinstance(event, SessionCompleted):
                    if self.display.live_enabled:
                        self.display.update_live(self.controller.get_status())
                    self.display.print_info(
                        f"{event.mode_name} complete: {event.working_reps} reps ({event.reason})"
                    )
                elif isinstance(event, Disconnected) and not event.expected:
                    if self.display.live_enabled:
                        self.display.stop_live()
                    self.display.print_info("Device disconnected")

    def _require_connected(self) -> bool:
        if not self.controller.is_connected:
            self.display.print_error("Not connected. Use 'connect' first.")
            return False
        return True

    # ========== Command Handlers ==========

    async def cmd_scan(self, args: list) -> None:
        """List trainers in range."""
        self.display.print_info("Scanning...")
        devices = await self.controller.discover()
        if not devices:
            self.display.print_error("No trainer found. Make sure it's powered on and in range.")
            return
        for device in devices:
            self.display.console.print(f"  {device.name or 'Unknown'} ({device.address})")

    async def cmd_connect(self, args: list) -> None:
        """Connect to trainer."""
        if self.controller.is_connected:
            self.display.print_info("Already connected")
            return

        self.display.print_info("Connecting...")
        await self.controller.connect()
        self.display.print_info(f"Connected to {self.controller.device_name}")

    async def cmd_disconnect(self, args: list) -> None:
        """Disconnect from trainer."""
        if not self.controller.is_connected:
            self.display.print_info("Not connected")
            return

        if self.display.live_enabled:
            self.display.stop_live()

        await self.controller.disconnect()
        self.display.print_info("Disconnected")

    async def cmd_program(self, args: list) -> None:
        """Start a program set with a rep target."""
        if len(args) < 3:
            self.display.print_error("Usage: program <mode> <kg per cable> <reps> [progression kg]")
            return
        request = FixedProgram(
            mode=parse_mode(args[0]),
            per_cable_kg=parse_number(args[1], "weight"),
            reps=parse_number(args[2], "reps", int),
            progression_kg=parse_number(args[3], "progression") if len(args) > 3 else 0.0,
        )
        if not self._require_connected():
            return
        session = await self.controller.start_program(request)
        self.display.print_info(f"Started {session.mode_name}: {request.per_cable_kg} kg x {request.reps}")

    async def cmd_justlift(self, args: list) -> None:
        """Start an open-ended program set."""
        if len(args) < 2:
            self.display.print_error("Usage: justlift <mode> <kg per cable> [progression kg]")
            return
        request = JustLiftProgram(
            base_mode=parse_mode(args[0]),
            per_cable_kg=parse_number(args[1], "weight"),
            progression_kg=parse_number(args[2], "progression") if len(args) > 2 else 0.0,
        )
        if not self._require_connected():
            return
        session = await self.controller.start_program(request)
        self.display.print_info(f"Started {session.mode_name}: {request.per_cable_kg} kg")

    async def cmd_echo(self, args: list) -> None:
        """Start an Echo set."""
        if not args:
            self.display.print_error("Usage: echo <level> [eccentric %] [reps]")
            return
        request = EchoRequest(
            level=parse_level(args[0]),
            eccentric_pct=parse_number(args[1], "eccentric percentage", int) if len(args) > 1 else 100,
            target_reps=parse_number(args[2], "reps", int) if len(args) > 2 else 0,
        )
        if not self._require_connected():
            return
        session = await self.controller.start_echo(request)
        self.display.print_info(f"Started {session.mode_name}")

    async def cmd_echolift(self, args: list) -> None:
        """Start an open-ended Echo set."""
        if not args:
            self.display.print_error("Usage: echolift <level> [eccentric %]")
            return
        request = EchoRequest(
            level=parse_level(args[0]),
            eccentric_pct=parse_number(args[1], "eccentric percentage", int) if len(args) > 1 else 100,
            just_lift=True,
        )
        if not self._require_connected():
            return
        session = await self.controller.start_echo(request)
        self.display.print_info(f"Started {session.mode_name}")

    async def cmd_stop(self, args: list) -> None:
        """Stop the trainer."""
        outcome = await self.controller.stop()
        self.display.print_stop_outcome(outcome)

    async def cmd_color(self, args: list) -> None:
        """Apply an LED color preset."""
        if not args:
            self.display.print_error(f"Usage: color <{'|'.join(COLOR_PRESETS)}>")
            return
        if not self._require_connected():
            return
        await self.controller.set_color_preset(args[0])
        self.display.print_info(f"Color scheme set to {COLOR_PRESETS[args[0].lower()].name}")

    async def cmd_status(self, args: list) -> None:
        """Show current telemetry and rep counts."""
        self.display.print_status(self.controller.get_status())

    async def cmd_live(self, args: list) -> None:
        """Toggle live display mode."""
        enabled = self.display.toggle_live()
        if enabled:
            self.display.update_live(self.controller.get_status())
        else:
            self.display.print_info("Live display disabled")

    async def cmd_history(self, args: list) -> None:
        """Show completed sets."""
        self.display.print_history(self.controller.history)

    async def cmd_info(self, args: list) -> None:
        """Show device and debug information."""
        if not self._require_connected():
            return

        transport = self.controller.transport
        self.display.console.print("[bold cyan]Device Information[/bold cyan]")
        self.display.console.print(f"  Name: {self.controller.device_name}")
        if transport is not None:
            self.display.console.print(f"  Address: {transport.address}")

        self.display.console.print()
        self.display.console.print("[bold cyan]Debug Information[/bold cyan]")
        self.display.console.print(f"  Connected: {self.controller.is_connected}")
        self.display.console.print(f"  Stop at top: {self.controller.stop_at_top}")
        self.display.console.print(f"  Auto-stop: {self.controller.auto_stop_enabled}")
        self.display.console.print(f"  Live enabled: {self.display.live_enabled}")
        if transport is not None:
            self.display.console.print(f"  Pollers: {', '.join(transport.active_pollers) or '-'}")
        reps = self.controller.rep_state
        self.display.console.print(
            f"  Calibrated A: {reps.calibrated_min_a} - {reps.calibrated_max_a}"
        )
        self.display.console.print(
            f"  Calibrated B: {reps.calibrated_min_b} - {reps.calibrated_max_b}"
        )
        prop = self.controller.last_property
        self.display.console.print(f"  Last property: {prop.hex(' ') if prop else '-'}")

    async def cmd_help(self, args: list) -> None:
        """Show all available commands."""
        self.display.print_help(COMMANDS)

    async def cmd_quit(self, args: list) -> None:
        """Exit the REPL."""
        if self.display.live_enabled:
            self.display.stop_live()

        if self.controller.is_connected:
            if self.controller.session is not None:
                self.display.print_info("Stopping active set...")
                await self.controller.stop()
            self.display.print_info("Disconnecting...")
            await self.controller.disconnect()

        self.display.console.print("[cyan]Goodbye![/cyan]")
        self.running = False


async def run_cli_command(command: str, args: argparse.Namespace) -> None:
    """Run a single CLI command and exit."""
    controller = SessionController(address=args.address, stop_at_top=args.stop_at_top)
    display = DisplayManager()

    try:
        if command == "scan":
            devices = await controller.discover()
            if not devices:
                display.print_error("No trainer found. Make sure it's powered on and in range.")
                sys.exit(1)
            for device in devices:
                display.console.print(f"{device.name or 'Unknown'} ({device.address})")
            return

        display.print_info("Connecting to trainer...")
        await controller.connect()

        if command == "stop":
            outcome = await controller.stop()
            display.print_stop_outcome(outcome)

        elif command == "color":
            await controller.set_color_preset(args.color)
            display.print_info(f"Color scheme set to {COLOR_PRESETS[args.color].name}")

        else:
            display.print_error(f"Unknown command: {command}")
            sys.exit(1)

    except CableCtrlError as e:
        display.print_error(str(e))
        sys.exit(1)

    finally:
        # Ensure we disconnect if still connected
        if controller.is_connected:
            await controller.disconnect()


def main() -> None:
    """Entry point for the REPL application."""
    parser = argparse.ArgumentParser(
        description="Cable Trainer Control",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  cablectrl                         # Start interactive REPL
  cablectrl --scan                  # List trainers in range
  cablectrl --stop                  # Stop trainer (auto-connects)
  cablectrl --color teal            # Apply LED color preset
  cablectrl --address AA:BB:CC:DD:EE:FF  # Skip scanning
        """,
    )

    parser.add_argument("--address", help="Bluetooth address of the trainer")
    parser.add_argument("--scan", action="store_true", help="List trainers in range")
    parser.add_argument("--stop", action="store_true", help="Stop trainer")
    parser.add_argument("--color", choices=sorted(COLOR_PRESETS), help="Apply LED color preset")
    parser.add_argument(
        "--stop-at-top",
        action="store_true",
        help="End fixed sets at the top of the final rep",
    )
    parser.add_argument("--no-auto-stop", action="store_true", help="Disable Just Lift auto-stop")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
    )

    # Check which command was requested
    commands = []
    if args.scan:
        commands.append("scan")
    if args.stop:
        commands.append("stop")
    if args.color:
        commands.append("color")

    # If no CLI commands, start REPL
    if not commands:
        try:
            controller = SessionController(
                address=args.address,
                stop_at_top=args.stop_at_top,
                auto_stop=not args.no_auto_stop,
            )
            asyncio.run(CableCtrlREPL(controller).run())
        except KeyboardInterrupt:
            print("\nInterrupted")
            sys.exit(0)
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        if len(commands) > 1:
            print("Error: Only one command can be specified at a time", file=sys.stderr)
            sys.exit(1)

        try:
            asyncio.run(run_cli_command(commands[0], args))
        except KeyboardInterrupt:
            print("\nInterrupted")
            sys.exit(1)


if __name__ == "__main__":
    main()

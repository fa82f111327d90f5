"""
Session orchestration for the cable trainer.

This module ties the transport, frame builders and telemetry decoders
together: it runs the init sequence on connect, starts Program and Echo
sets, feeds telemetry into the rep detector and auto-stop gate, drives
the safety-critical STOP path and publishes domain events.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from bleak.backends.device import BLEDevice

from .autostop import AutoStopGate, AutoStopState
from .core import (
    COMMAND_CHAR_UUID,
    DEFAULT_WARMUP_REPS,
    INIT_PRESET_DELAY,
    MONITOR_CHAR_UUID,
    MONITOR_POLL_INTERVAL,
    NOTIFY_CHAR_UUIDS,
    PROPERTY_CHAR_UUID,
    PROPERTY_POLL_INTERVAL,
    REP_NOTIFY_CHAR_UUID,
    STOP_ATTEMPTS,
    STOP_RETRY_BACKOFF,
)
from .errors import (
    CableCtrlError,
    DisconnectedError,
    MalformedPayloadError,
    SessionError,
    TransportError,
    ValidationError,
)
from .events import (
    Disconnected,
    EventStream,
    SampleReceived,
    SessionCompleted,
    Subscription,
)
from .modes import COLOR_PRESETS
from .protocol import (
    ColorScheme,
    Frame,
    build_color_scheme,
    build_echo_control,
    build_init_command,
    build_init_preset,
    build_program_params,
    build_stop_command,
)
from .reps import RepCounterState, RepDetector
from .session import (
    EchoRequest,
    ProgramRequest,
    Session,
    SessionMode,
    SessionState,
    WorkoutRecord,
)
from .telemetry import MonitorSample, TelemetryParser, parse_rep_notification
from .transport import GattTransport, discover_trainers

logger = logging.getLogger(__name__)


class StopOutcome(Enum):
    """How a STOP request ended."""

    STOPPED = "stopped"
    FORCED_DISCONNECT = "forced_disconnect"
    NOT_CONNECTED = "not_connected"


class SessionController:
    """Owns the active session and its rep counter state."""

    def __init__(
        self,
        transport: Optional[GattTransport] = None,
        *,
        address: Optional[str] = None,
        stop_at_top: bool = False,
        auto_stop: bool = True,
        gate: Optional[AutoStopGate] = None,
    ) -> None:
        """Initialize controller with no device connection.

        Args:
            transport: Pre-built transport; built on connect when None
            address: Bluetooth address to use instead of scanning
            stop_at_top: Finish fixed sets at the top of the final rep
            auto_stop: Enable the stall gate for Just Lift sets
            gate: Auto-stop gate tuning, defaults from core constants
        """
        self._transport = transport
        self._address = address
        self.stop_at_top = stop_at_top
        self.auto_stop_enabled = auto_stop

        self.events = EventStream()
        self._parser = TelemetryParser()
        self._gate = gate or AutoStopGate()

        self._session: Optional[Session] = None
        self._rep_unsubscribe: Optional[Callable[[], None]] = None
        self._starting = False
        self._detector = RepDetector()
        self._reps = RepCounterState()
        self._gate_state = AutoStopState()
        self._auto_stop_progress = 0.0

        self._last_sample: Optional[MonitorSample] = None
        self._last_property: Optional[bytes] = None
        self._history: List[WorkoutRecord] = []
        self._tasks: set = set()
        self._stop_lock = asyncio.Lock()

        # Dynamic scale for position bars (max seen + 100)
        self.max_pos_a = 1000
        self.max_pos_b = 1000

    # ========== Properties ==========

    @property
    def is_connected(self) -> bool:
        return self._transport is not None and self._transport.is_connected

    @property
    def device_name(self) -> Optional[str]:
        if self._transport is None:
            return None
        return self._transport.name

    @property
    def transport(self) -> Optional[GattTransport]:
        return self._transport

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def rep_state(self) -> RepCounterState:
        return self._reps

    @property
    def last_sample(self) -> Optional[MonitorSample]:
        return self._last_sample

    @property
    def last_property(self) -> Optional[bytes]:
        return self._last_property

    @property
    def history(self) -> List[WorkoutRecord]:
        """Completed sets, newest first."""
        return list(self._history)

    @property
    def auto_stop_progress(self) -> float:
        return self._auto_stop_progress

    def subscribe(self, maxsize: Optional[int] = None) -> Subscription:
        """Subscribe to the domain event stream."""
        return self.events.subscribe(maxsize)

    # ========== Connection ==========

    async def discover(self) -> List[BLEDevice]:
        """Scan for trainers in range."""
        return await discover_trainers()

    async def connect(self) -> None:
        """Connect to the trainer and send the init sequence.

        Uses the injected transport, the configured address, or the first
        trainer found by scanning, in that order.

        Raises:
            TransportError: No trainer found or the connection failed
        """
        if self.is_connected:
            logger.warning("Already connected")
            return

        if self._transport is None:
            target: Union[str, BLEDevice, None] = self._address
            if target is None:
                devices = await self.discover()
                if not devices:
                    raise TransportError(
                        "No trainer found. Make sure it's powered on and in range."
                    )
                target = devices[0]
            self._transport = GattTransport(target)

        transport = self._transport
        transport.set_on_disconnect(self._on_transport_disconnect)
        await transport.connect()

        try:
            for uuid in NOTIFY_CHAR_UUIDS:
                await transport.subscribe(uuid, self._make_log_listener(uuid))
            await self._send_init()
        except CableCtrlError:
            await transport.disconnect()
            raise

    async def disconnect(self) -> None:
        """Disconnect from the trainer; an active set is archived."""
        if self._transport is None:
            return
        await self._transport.disconnect()

    async def _send_init(self) -> None:
        await self._write(build_init_command())
        await asyncio.sleep(INIT_PRESET_DELAY)
        await self._write(build_init_preset())
        logger.info("Init sequence sent")

    async def _write(self, frame: Frame) -> None:
        transport = self._require_transport()
        await transport.write_frame(COMMAND_CHAR_UUID, frame, with_response=True)

    def _require_transport(self) -> GattTransport:
        if self._transport is None or not self._transport.is_connected:
            raise DisconnectedError("Not connected. Use 'connect' first.")
        return self._transport

    def _make_log_listener(self, uuid: str) -> Callable[[bytes], None]:
        def listener(data: bytes) -> None:
            logger.debug(f"Notification {uuid}: {data.hex(' ')}")

        return listener

    def _on_transport_disconnect(self, expected: bool) -> None:
        """Invalidate session and counters together when the link drops."""
        if self._session is not None:
            self._complete_session("disconnected")
        self._reset_session_state()
        self.events.publish(Disconnected(expected=expected))

    # ========== Sessions ==========

    async def start_program(self, request: ProgramRequest) -> Session:
        """Start a fixed or Just Lift program set.

        Raises:
            ValidationError: Parameters outside their range (before any I/O)
            DisconnectedError: Not connected
            SessionError: A set is already running or the start write failed
        """
        frame = build_program_params(request.to_params())
        return await self._start_session(SessionMode.PROGRAM, request, frame, DEFAULT_WARMUP_REPS)

    async def start_echo(self, request: EchoRequest) -> Session:
        """Start an Echo set; same errors as start_program."""
        frame = build_echo_control(request.to_params())
        return await self._start_session(SessionMode.ECHO, request, frame, request.warmup_reps)

    async def _start_session(
        self,
        mode: SessionMode,
        request: Union[ProgramRequest, EchoRequest],
        frame: Frame,
        warmup_target: int,
    ) -> Session:
        transport = self._require_transport()
        if self._starting or (self._session is not None and self._session.is_active):
            raise SessionError("A set is already running. Stop it before starting another.")

        self._reset_session_state()
        session = Session(
            mode=mode,
            request=request,
            start_time=datetime.now(),
            warmup_target=warmup_target,
            state=SessionState.WARMUP if warmup_target > 0 else SessionState.WORKING,
        )
        self._detector = RepDetector(
            warmup_target=warmup_target,
            target_reps=session.target_reps,
            stop_at_top=self.stop_at_top,
        )

        self._starting = True
        try:
            await transport.write_frame(COMMAND_CHAR_UUID, frame, with_response=True)
            self._rep_unsubscribe = await transport.subscribe(REP_NOTIFY_CHAR_UUID, self._on_rep_notification)
        except CableCtrlError as exc:
            self._abort_start()
            raise SessionError(f"Failed to start {session.mode_name}: {exc}") from exc
        finally:
            self._starting = False

        # Only a set the device accepted can be archived
        self._session = session
        transport.start_polling("monitor", MONITOR_CHAR_UUID, MONITOR_POLL_INTERVAL, self._on_monitor_data)
        transport.start_polling("property", PROPERTY_CHAR_UUID, PROPERTY_POLL_INTERVAL, self._on_property_data)
        logger.info(f"Started {session.mode_name}")
        return session

    def _abort_start(self) -> None:
        if self._transport is not None:
            self._transport.stop_polling()
        self._release_rep_listener()
        self._session = None
        self._reset_session_state()

    def _release_rep_listener(self) -> None:
        # Connect-time log listeners stay registered
        if self._rep_unsubscribe is not None:
            self._rep_unsubscribe()
            self._rep_unsubscribe = None

    def _reset_session_state(self) -> None:
        self._reps = RepCounterState()
        self._gate_state = AutoStopState()
        self._auto_stop_progress = 0.0
        self._parser.reset()

    def _complete_session(self, reason: str) -> Optional[WorkoutRecord]:
        """Archive the active session with the reps actually performed."""
        session = self._session
        if session is None:
            return None

        if self._transport is not None:
            self._transport.stop_polling()
        self._release_rep_listener()

        session.state = SessionState.COMPLETED
        session.end_time = datetime.now()
        record = WorkoutRecord(
            mode_name=session.mode_name,
            weight_kg=session.weight_kg,
            reps=self._reps.working_reps,
            target_reps=session.target_reps,
            started_at=session.start_time,
            ended_at=session.end_time,
            reason=reason,
        )
        self._history.insert(0, record)
        self._session = None
        self._reset_session_state()

        self.events.publish(
            SessionCompleted(
                mode_name=record.mode_name,
                working_reps=record.reps,
                target_reps=record.target_reps,
                reason=reason,
            )
        )
        logger.info(f"Workout completed ({reason}) and saved to history")
        return record

    # ========== STOP path ==========

    async def stop(self, reason: str = "stopped by user") -> StopOutcome:
        """Stop the trainer, retrying transient failures.

        The stop frame is retried up to STOP_ATTEMPTS times with polling
        paused. If every attempt fails the link is dropped on purpose, which
        the trainer treats as a stop.

        Returns:
            How the stop ended
        """
        async with self._stop_lock:
            transport = self._transport
            if transport is None or not transport.is_connected:
                self._complete_session(reason)
                return StopOutcome.NOT_CONNECTED

            if self._session is not None:
                self._session.state = SessionState.STOPPING

            frame = build_stop_command()
            transport.pause_polling()
            try:
                await transport.drain()
                for attempt in range(1, STOP_ATTEMPTS + 1):
                    try:
                        await transport.write_frame(COMMAND_CHAR_UUID, frame, with_response=True)
                        break
                    except DisconnectedError:
                        raise
                    except TransportError as e:
                        logger.warning(f"Stop attempt {attempt}/{STOP_ATTEMPTS} failed: {e}")
                        if attempt < STOP_ATTEMPTS:
                            await asyncio.sleep(STOP_RETRY_BACKOFF)
                else:
                    logger.error("Stop command failed, forcing disconnect")
                    self._complete_session(f"{reason}, link dropped")
                    await transport.disconnect()
                    return StopOutcome.FORCED_DISCONNECT
            except DisconnectedError:
                logger.warning("Link dropped while stopping")
                self._complete_session(reason)
                return StopOutcome.NOT_CONNECTED
            finally:
                transport.resume_polling()

            self._complete_session(reason)
            logger.info(f"Trainer stopped ({reason})")
            return StopOutcome.STOPPED

    def _spawn(self, coro: Any) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task failed: {task.exception()}")

    async def wait_idle(self) -> None:
        """Wait for background stop tasks spawned by telemetry handlers."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ========== Telemetry handlers ==========

    def _on_monitor_data(self, data: bytes) -> None:
        try:
            sample = self._parser.parse_monitor(data)
        except MalformedPayloadError as e:
            logger.warning(f"Dropped monitor payload: {e}")
            return

        self._last_sample = sample
        if sample.pos_a > self.max_pos_a:
            self.max_pos_a = sample.pos_a + 100
        if sample.pos_b > self.max_pos_b:
            self.max_pos_b = sample.pos_b + 100
        self.events.publish(SampleReceived(sample))

        session = self._session
        if (
            session is None
            or session.state not in (SessionState.WARMUP, SessionState.WORKING)
            or not session.is_just_lift
            or not self.auto_stop_enabled
        ):
            return

        update = self._gate.process(self._gate_state, sample, self._reps)
        self._gate_state = update.state
        self._auto_stop_progress = update.progress
        for event in update.events:
            self.events.publish(event)
        if update.triggered:
            self._spawn(self.stop(reason="auto-stop"))

    def _on_property_data(self, data: bytes) -> None:
        # Undocumented payload, kept opaque
        self._last_property = data
        logger.debug(f"Property: {data.hex(' ')}")

    def _on_rep_notification(self, data: bytes) -> None:
        session = self._session
        if session is None or session.state not in (SessionState.WARMUP, SessionState.WORKING):
            return

        try:
            counters = parse_rep_notification(data)
        except MalformedPayloadError as e:
            logger.warning(f"Dropped rep notification: {e}")
            return

        update = self._detector.process(
            self._reps, counters, self._parser.last_pos_a, self._parser.last_pos_b
        )
        self._reps = update.state

        if session.state is SessionState.WARMUP and update.state.warmup_reps >= session.warmup_target:
            session.state = SessionState.WORKING
            session.warmup_end_time = datetime.now()
            logger.info("Warmup complete, counting working reps")

        for event in update.events:
            self.events.publish(event)

        if update.completed:
            if update.stop_required:
                self._spawn(self.stop(reason="target reached"))
            else:
                self._complete_session("target reached")

    # ========== Color ==========

    async def set_color_scheme(self, brightness: float, colors: Sequence[Sequence[int]]) -> None:
        """Send an LED color scheme (brightness 0-1, three RGB triples)."""
        frame = build_color_scheme(ColorScheme.from_values(brightness, colors))
        await self._write(frame)
        logger.info("Color scheme updated")

    async def set_color_preset(self, name: str) -> None:
        preset = COLOR_PRESETS.get(name.lower())
        if preset is None:
            raise ValidationError(
                f"Unknown color preset '{name}'. Choose from: {', '.join(COLOR_PRESETS)}"
            )
        await self.set_color_scheme(preset.brightness, preset.colors)

    # ========== Status ==========

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of connection, session and last telemetry for display."""
        session = self._session
        sample = self._last_sample
        status: Dict[str, Any] = {
            "connected": self.is_connected,
            "state": session.state.value if session else SessionState.IDLE.value,
            "mode": session.mode_name if session else None,
            "warmup_reps": self._reps.warmup_reps if session else None,
            "warmup_target": session.warmup_target if session else DEFAULT_WARMUP_REPS,
            "working_reps": self._reps.working_reps if session else None,
            "target_reps": session.target_reps if session else None,
            "auto_stop": self._auto_stop_progress,
            "load_a": sample.load_a if sample else 0.0,
            "load_b": sample.load_b if sample else 0.0,
            "pos_a": sample.pos_a if sample else 0,
            "pos_b": sample.pos_b if sample else 0,
            "ticks": sample.ticks if sample else 0,
            "max_pos_a": self.max_pos_a,
            "max_pos_b": self.max_pos_b,
        }
        return status

"""
Serialized GATT transport on top of bleak.

The platform BLE stacks reject overlapping GATT operations ("operation
already in progress"), so every read, write and notify registration goes
through a single FIFO queue drained by one worker task. Inbound
notifications are not queued; they are dispatched straight to listeners.

Connection teardown has exactly one code path: a platform disconnect
event and a manual ``disconnect()`` both end in ``_handle_disconnect``,
which stops polling, fails queued operations with DisconnectedError and
invokes the disconnect hook once.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError

from .core import (
    CONNECT_TIMEOUT,
    DEVICE_NAME_PREFIXES,
    OPERATION_TIMEOUT,
    SCAN_TIMEOUT,
    SERVICE_UUID,
)
from .errors import DisconnectedError, GattTimeoutError, TransportError

logger = logging.getLogger(__name__)

NotificationCallback = Callable[[bytes], None]
DisconnectCallback = Callable[[bool], None]


def _is_trainer(device: BLEDevice, service_uuids: List[str]) -> bool:
    name = device.name or ""
    if any(name.startswith(prefix) for prefix in DEVICE_NAME_PREFIXES):
        return True
    return SERVICE_UUID in [uuid.lower() for uuid in service_uuids]


async def discover_trainers(timeout: float = SCAN_TIMEOUT) -> List[BLEDevice]:
    """Scan for trainers by advertised name prefix or primary service.

    Returns:
        Matching devices, possibly empty
    """
    logger.info("Scanning for trainers...")
    found = await BleakScanner.discover(timeout=timeout, return_adv=True)
    devices = []
    for device, advertisement in found.values():
        if _is_trainer(device, advertisement.service_uuids or []):
            logger.info(f"Found trainer: {device.name or 'Unknown'} ({device.address})")
            devices.append(device)
    if not devices:
        logger.warning("No trainers found")
    return devices


class _Operation:
    """One queued GATT transaction."""

    __slots__ = ("name", "factory", "future")

    def __init__(
        self, name: str, factory: Callable[[], Awaitable[Any]], future: asyncio.Future
    ) -> None:
        self.name = name
        self.factory = factory
        self.future = future

    def fail(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)


class GattTransport:
    """Owns the BLE connection and serializes all GATT operations."""

    def __init__(
        self,
        device: Union[BLEDevice, str],
        *,
        client_factory: Callable[..., Any] = BleakClient,
        connect_timeout: float = CONNECT_TIMEOUT,
        operation_timeout: float = OPERATION_TIMEOUT,
    ) -> None:
        """Initialize transport without connecting.

        Args:
            device: BLEDevice from a scan or a Bluetooth address
            client_factory: Callable building the BLE client, BleakClient by default
            connect_timeout: Bounded wait for connection establishment
            operation_timeout: Bounded wait for each GATT transaction
        """
        self._device = device
        self._client_factory = client_factory
        self._connect_timeout = connect_timeout
        self._operation_timeout = operation_timeout

        self._client: Optional[Any] = None
        self._disconnected = True
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._in_flight: Optional[_Operation] = None

        self._listeners: Dict[str, List[NotificationCallback]] = {}
        self._notifying: set = set()

        self._pollers: Dict[str, asyncio.Task] = {}
        self._poll_gate = asyncio.Event()

        self._on_disconnect: Optional[DisconnectCallback] = None

    @property
    def address(self) -> str:
        if isinstance(self._device, str):
            return self._device
        return self._device.address

    @property
    def name(self) -> str:
        if isinstance(self._device, str):
            return self._device
        return self._device.name or self._device.address

    @property
    def is_connected(self) -> bool:
        return (
            not self._disconnected
            and self._client is not None
            and self._client.is_connected
        )

    @property
    def active_pollers(self) -> List[str]:
        return [name for name, task in self._pollers.items() if not task.done()]

    @property
    def polling_paused(self) -> bool:
        return not self._poll_gate.is_set()

    def set_on_disconnect(self, callback: Optional[DisconnectCallback]) -> None:
        """Set hook called once per connection with ``expected`` (manual) flag."""
        self._on_disconnect = callback

    # ========== Lifecycle ==========

    async def connect(self) -> Any:
        """Connect to the device and start the operation queue.

        Returns:
            The connected client handle

        Raises:
            GattTimeoutError: Connection not established in time
            TransportError: Platform refused the connection
        """
        if self.is_connected:
            logger.warning("Already connected")
            return self._client

        logger.info(f"Connecting to {self.name}...")
        client = self._client_factory(
            self._device, disconnected_callback=self._on_platform_disconnect
        )
        try:
            await asyncio.wait_for(client.connect(), timeout=self._connect_timeout)
        except asyncio.TimeoutError as exc:
            raise GattTimeoutError(
                f"Connection to {self.name} timed out after {self._connect_timeout:.0f}s. "
                "Make sure the trainer is powered on and in range."
            ) from exc
        except (BleakError, OSError) as exc:
            raise TransportError(f"Connection to {self.name} failed: {exc}") from exc

        self._client = client
        self._disconnected = False
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run_queue(self._queue))
        self._poll_gate.set()
        logger.info(f"Connected to {self.name}")
        return client

    async def disconnect(self) -> None:
        """Disconnect; a second call or a late platform event is a no-op."""
        if self._disconnected:
            return

        client = self._client
        logger.info("Disconnecting...")
        self._handle_disconnect(expected=True)

        if client is None:
            return
        try:
            await asyncio.wait_for(client.disconnect(), timeout=self._operation_timeout)
        except (BleakError, OSError, asyncio.TimeoutError) as exc:
            logger.warning(f"Disconnect failed: {exc}")
        logger.info("Disconnected")

    def _on_platform_disconnect(self, client: Any) -> None:
        if not self._disconnected:
            logger.warning("Device disconnected")
        self._handle_disconnect(expected=False)

    def _handle_disconnect(self, expected: bool) -> None:
        if self._disconnected:
            return
        self._disconnected = True

        self.stop_polling()
        self._fail_pending()
        if self._worker is not None:
            self._worker.cancel()
            self._worker = None
        self._queue = None
        self._listeners.clear()
        self._notifying.clear()
        self._client = None

        if self._on_disconnect:
            try:
                self._on_disconnect(expected)
            except Exception as e:
                logger.error(f"Disconnect callback error: {e}")

    def _fail_pending(self) -> None:
        pending = []
        if self._in_flight is not None:
            pending.append(self._in_flight)
            self._in_flight = None
        if self._queue is not None:
            while not self._queue.empty():
                pending.append(self._queue.get_nowait())
        for op in pending:
            op.fail(DisconnectedError(f"Device disconnected during {op.name}"))
        if pending:
            logger.debug(f"Failed {len(pending)} pending GATT operation(s)")

    # ========== Operation queue ==========

    async def _run_queue(self, queue: asyncio.Queue) -> None:
        while True:
            op = await queue.get()
            if op.future.done():
                # Caller gave up while queued
                continue
            self._in_flight = op
            try:
                result = await asyncio.wait_for(op.factory(), timeout=self._operation_timeout)
            except asyncio.CancelledError:
                op.fail(DisconnectedError(f"Device disconnected during {op.name}"))
                raise
            except asyncio.TimeoutError:
                op.fail(
                    GattTimeoutError(f"{op.name} timed out after {self._operation_timeout:.1f}s")
                )
            except (BleakError, OSError) as exc:
                error = TransportError(f"{op.name} failed: {exc}")
                error.__cause__ = exc
                op.fail(error)
            except Exception as exc:
                op.fail(exc)
            else:
                if not op.future.done():
                    op.future.set_result(result)
            finally:
                if self._in_flight is op:
                    self._in_flight = None

    async def _submit(self, name: str, factory: Callable[[Any], Awaitable[Any]]) -> Any:
        if self._disconnected or self._queue is None or self._client is None:
            raise DisconnectedError(f"Cannot {name}: not connected. Use 'connect' first.")
        client = self._client
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(_Operation(name, lambda: factory(client), future))
        return await future

    async def drain(self) -> None:
        """Wait until every operation queued before this call has resolved."""
        await self._submit("drain", lambda client: asyncio.sleep(0))

    # ========== GATT primitives ==========

    async def write_frame(self, characteristic: str, frame: Any, with_response: bool = True) -> None:
        """Write a frame (or raw bytes) to a characteristic.

        Raises:
            DisconnectedError: Not connected, or link lost before completion
            GattTimeoutError: Write not acknowledged in time
            TransportError: Platform write failure
        """
        data = bytes(frame)
        label = frame.kind.value if hasattr(frame, "kind") else "payload"
        logger.debug(f"TX {label} ({len(data)} bytes): {data.hex(' ')}")
        await self._submit(
            f"write {label}",
            lambda client: client.write_gatt_char(characteristic, data, response=with_response),
        )

    async def read(self, characteristic: str) -> bytes:
        """Read a characteristic value."""
        value = await self._submit(
            f"read {characteristic}", lambda client: client.read_gatt_char(characteristic)
        )
        return bytes(value)

    async def subscribe(self, characteristic: str, callback: NotificationCallback) -> Callable[[], None]:
        """Add a notification listener, enabling notify on first use.

        Returns:
            Function removing this listener
        """
        listeners = self._listeners.setdefault(characteristic, [])
        listeners.append(callback)

        if characteristic not in self._notifying:
            self._notifying.add(characteristic)
            try:
                await self._submit(
                    f"subscribe {characteristic}",
                    lambda client: client.start_notify(
                        characteristic, self._make_notification_handler(characteristic)
                    ),
                )
            except Exception:
                self._notifying.discard(characteristic)
                if callback in listeners:
                    listeners.remove(callback)
                raise

        def unsubscribe() -> None:
            current = self._listeners.get(characteristic, [])
            if callback in current:
                current.remove(callback)

        return unsubscribe

    def _make_notification_handler(self, characteristic: str) -> Callable[[Any, bytearray], None]:
        def handler(_sender: Any, data: bytearray) -> None:
            payload = bytes(data)
            listeners = list(self._listeners.get(characteristic, ()))
            if not listeners:
                logger.debug(f"RX {characteristic}: {payload.hex(' ')}")
            for listener in listeners:
                try:
                    listener(payload)
                except Exception as e:
                    logger.error(f"Notification handler error: {e}")

        return handler

    # ========== Polling ==========

    def start_polling(
        self, name: str, characteristic: str, interval: float, callback: NotificationCallback
    ) -> None:
        """Start (or restart) a periodic read loop feeding ``callback``."""
        self.stop_polling(name)
        self._pollers[name] = asyncio.create_task(
            self._poll_loop(name, characteristic, interval, callback)
        )
        logger.debug(f"Started {name} polling every {interval:.2f}s")

    def stop_polling(self, name: Optional[str] = None) -> None:
        """Cancel one poll loop, or all of them when ``name`` is None."""
        names = [name] if name is not None else list(self._pollers)
        current = asyncio.current_task() if _loop_running() else None
        for poll_name in names:
            task = self._pollers.pop(poll_name, None)
            if task is not None and task is not current:
                task.cancel()

    def pause_polling(self) -> None:
        self._poll_gate.clear()

    def resume_polling(self) -> None:
        self._poll_gate.set()

    async def _poll_loop(
        self, name: str, characteristic: str, interval: float, callback: NotificationCallback
    ) -> None:
        while self._pollers.get(name) is asyncio.current_task():
            await self._poll_gate.wait()
            try:
                data = await self.read(characteristic)
            except DisconnectedError:
                logger.debug(f"{name} polling stopped: disconnected")
                return
            except TransportError as e:
                logger.warning(f"{name} poll failed: {e}")
            else:
                try:
                    callback(data)
                except Exception as e:
                    logger.error(f"{name} poll handler error: {e}")
            await asyncio.sleep(interval)


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True

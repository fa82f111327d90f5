"""In-memory BLE fakes for tests that run without a trainer."""

import asyncio
import struct
from typing import Any, Callable, Dict, List, Optional, Tuple

from bleak.exc import BleakError

from cablectrl.core import MONITOR_CHAR_UUID


def monitor_payload(
    pos_a: int = 0, pos_b: int = 0, load_a: int = 0, load_b: int = 0, ticks: int = 0
) -> bytes:
    """Encode a 16-byte monitor reading."""
    return struct.pack(
        "<8H", ticks & 0xFFFF, ticks >> 16, pos_a, 0, load_a, pos_b, 0, load_b
    )


def rep_payload(top: int, complete: int, middle: int = 0) -> bytes:
    """Encode a rep notification."""
    return struct.pack("<3H", top, middle, complete)


class FakeBleakClient:
    """In-memory stand-in for BleakClient recording GATT traffic."""

    def __init__(self, device: Any, disconnected_callback: Optional[Callable] = None) -> None:
        self.device = device
        self.disconnected_callback = disconnected_callback
        self.is_connected = False

        self.writes: List[Tuple[str, bytes, bool]] = []
        self.reads: Dict[str, bytes] = {MONITOR_CHAR_UUID: monitor_payload()}
        self.notify_handlers: Dict[str, Callable] = {}
        self.start_notify_calls: List[str] = []

        self.connect_error: Optional[BaseException] = None
        self.write_failures = 0
        self.write_delay = 0.0

        self.active = 0
        self.max_active = 0

    async def connect(self) -> bool:
        if self.connect_error is not None:
            raise self.connect_error
        self.is_connected = True
        return True

    async def disconnect(self) -> bool:
        self.is_connected = False
        return True

    async def write_gatt_char(self, char: str, data: bytes, response: bool = False) -> None:
        self._enter()
        try:
            if self.write_delay:
                await asyncio.sleep(self.write_delay)
            if self.write_failures > 0:
                self.write_failures -= 1
                raise BleakError("write rejected")
            self.writes.append((char, bytes(data), response))
        finally:
            self._exit()

    async def read_gatt_char(self, char: str) -> bytearray:
        self._enter()
        try:
            await asyncio.sleep(0)
            return bytearray(self.reads.get(char, bytes(16)))
        finally:
            self._exit()

    async def start_notify(self, char: str, handler: Callable) -> None:
        self.start_notify_calls.append(char)
        self.notify_handlers[char] = handler

    def _enter(self) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)

    def _exit(self) -> None:
        self.active -= 1

    # Test drivers

    def notify(self, char: str, data: bytes) -> None:
        self.notify_handlers[char](char, bytearray(data))

    def drop(self) -> None:
        """Simulate the platform reporting a lost link."""
        self.is_connected = False
        if self.disconnected_callback is not None:
            self.disconnected_callback(self)

    def written(self, char: Optional[str] = None) -> List[bytes]:
        return [data for target, data, _ in self.writes if char is None or target == char]


class FakeClientFactory:
    """Callable passed as ``client_factory``; keeps the last client built."""

    def __init__(self) -> None:
        self.client: Optional[FakeBleakClient] = None
        self.connect_error: Optional[BaseException] = None

    def __call__(self, device: Any, disconnected_callback: Optional[Callable] = None) -> FakeBleakClient:
        self.client = FakeBleakClient(device, disconnected_callback=disconnected_callback)
        self.client.connect_error = self.connect_error
        return self.client


async def wait_for_event(subscription: Any, event_type: type, timeout: float = 2.0, predicate=None) -> Any:
    """Return the first event of ``event_type`` matching ``predicate``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise asyncio.TimeoutError(f"No {event_type.__name__} within {timeout}s")
        event = await subscription.get(timeout=remaining)
        if isinstance(event, event_type) and (predicate is None or predicate(event)):
            return event

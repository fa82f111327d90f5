"""
Typed domain events and the broadcast stream that delivers them.

Consumers subscribe for a bounded lifetime and iterate the subscription
asynchronously; a slow consumer loses events rather than stalling the
BLE callbacks that publish them.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Union

from .telemetry import MonitorSample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SampleReceived:
    sample: MonitorSample


@dataclass(frozen=True)
class TopReached:
    warmup_reps: int
    working_reps: int
    pos_a: int
    pos_b: int


@dataclass(frozen=True)
class RepCompleted:
    is_warmup: bool
    warmup_reps: int
    warmup_target: int
    working_reps: int
    target_reps: int


@dataclass(frozen=True)
class AutoStopProgress:
    """Fraction of the stall dwell accumulated, 0.0 when disarmed."""

    progress: float
    armed: bool


@dataclass(frozen=True)
class AutoStopTriggered:
    elapsed: float


@dataclass(frozen=True)
class SessionCompleted:
    mode_name: str
    working_reps: int
    target_reps: int
    reason: str


@dataclass(frozen=True)
class Disconnected:
    expected: bool


Event = Union[
    SampleReceived,
    TopReached,
    RepCompleted,
    AutoStopProgress,
    AutoStopTriggered,
    SessionCompleted,
    Disconnected,
]


class Subscription:
    """Async iterator over events published after it was created."""

    def __init__(self, stream: "EventStream", maxsize: int) -> None:
        self._stream = stream
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    def _offer(self, event: Event) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            # Drop if backed up - a live display can skip a frame
            logger.debug(f"Subscriber queue full, dropping {type(event).__name__}")

    async def get(self, timeout: Optional[float] = None) -> Event:
        """Wait for the next event, raising asyncio.TimeoutError on expiry."""
        return await asyncio.wait_for(self._queue.get(), timeout=timeout)

    def get_nowait(self) -> Event:
        return self._queue.get_nowait()

    def drain(self) -> List[Event]:
        """Return all events currently buffered."""
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._stream._remove(self)

    def __aiter__(self) -> AsyncIterator[Event]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Event]:
        while not self._closed:
            try:
                yield await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                # Continue - device may be idle
                continue

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class EventStream:
    """Single typed event channel with explicit, scoped subscriptions."""

    def __init__(self, maxsize: int = 100) -> None:
        self._maxsize = maxsize
        self._subscribers: List[Subscription] = []

    def subscribe(self, maxsize: Optional[int] = None) -> Subscription:
        subscription = Subscription(self, maxsize or self._maxsize)
        self._subscribers.append(subscription)
        return subscription

    def publish(self, event: Event) -> None:
        for subscription in list(self._subscribers):
            subscription._offer(event)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

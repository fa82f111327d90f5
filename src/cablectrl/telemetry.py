"""
Decoders for monitor telemetry and rep notification payloads.
"""

import logging
import struct
import time
from dataclasses import dataclass
from typing import NamedTuple, Optional

from .core import LOAD_SCALE, POSITION_SPIKE_CEILING
from .errors import MalformedPayloadError

logger = logging.getLogger(__name__)

# ticks lo, ticks hi, posA, ?, loadA, posB, ?, loadB
MONITOR_FORMAT = "<8H"
MONITOR_SIZE = struct.calcsize(MONITOR_FORMAT)
REP_NOTIFICATION_MIN_SIZE = 6


@dataclass(frozen=True)
class MonitorSample:
    """One decoded telemetry reading of both cables."""

    timestamp: float
    ticks: int
    pos_a: int
    pos_b: int
    load_a: float
    load_b: float

    @property
    def total_load(self) -> float:
        return self.load_a + self.load_b


class RepCounters(NamedTuple):
    """Counters carried by a rep notification."""

    top: int
    middle: int
    complete: int


def counter_delta(prev: int, next_value: int) -> int:
    """Forward distance between two readings of a wrapping 16-bit counter."""
    if next_value >= prev:
        return next_value - prev
    return 0xFFFF - prev + next_value + 1


def parse_monitor(
    data: bytes,
    last_pos_a: int = 0,
    last_pos_b: int = 0,
    timestamp: Optional[float] = None,
) -> MonitorSample:
    """Decode a 16-byte monitor payload.

    Position readings above the spike ceiling are sensor glitches and are
    replaced by the last accepted position for that cable.

    Args:
        data: Raw characteristic value
        last_pos_a: Last accepted position of cable A
        last_pos_b: Last accepted position of cable B
        timestamp: Sample time, defaults to ``time.monotonic()``

    Raises:
        MalformedPayloadError: Payload shorter than 16 bytes
    """
    if len(data) < MONITOR_SIZE:
        raise MalformedPayloadError(
            f"Monitor payload needs {MONITOR_SIZE} bytes, received {len(data)}"
        )

    ticks_lo, ticks_hi, pos_a, _, load_a, pos_b, _, load_b = struct.unpack_from(
        MONITOR_FORMAT, data
    )

    if pos_a > POSITION_SPIKE_CEILING:
        logger.debug(f"Discarding cable A position spike {pos_a}")
        pos_a = last_pos_a
    if pos_b > POSITION_SPIKE_CEILING:
        logger.debug(f"Discarding cable B position spike {pos_b}")
        pos_b = last_pos_b

    return MonitorSample(
        timestamp=time.monotonic() if timestamp is None else timestamp,
        ticks=ticks_lo | (ticks_hi << 16),
        pos_a=pos_a,
        pos_b=pos_b,
        load_a=load_a / LOAD_SCALE,
        load_b=load_b / LOAD_SCALE,
    )


def parse_rep_notification(data: bytes) -> RepCounters:
    """Decode a rep notification as little-endian u16 words.

    Raises:
        MalformedPayloadError: Payload shorter than 6 bytes
    """
    if len(data) < REP_NOTIFICATION_MIN_SIZE:
        raise MalformedPayloadError(
            f"Rep notification needs {REP_NOTIFICATION_MIN_SIZE} bytes, received {len(data)}"
        )
    top, middle, complete = struct.unpack_from("<3H", data)
    return RepCounters(top, middle, complete)


class TelemetryParser:
    """Monitor decoder that remembers the last accepted cable positions."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.last_pos_a = 0
        self.last_pos_b = 0

    def parse_monitor(self, data: bytes, timestamp: Optional[float] = None) -> MonitorSample:
        sample = parse_monitor(data, self.last_pos_a, self.last_pos_b, timestamp)
        self.last_pos_a = sample.pos_a
        self.last_pos_b = sample.pos_b
        return sample

    @staticmethod
    def parse_rep_notification(data: bytes) -> RepCounters:
        return parse_rep_notification(data)

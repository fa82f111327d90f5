"""
Workout mode definitions and per-mode constant tables.

Program modes select a 32-byte force/timing profile block that is copied
verbatim into the program parameters frame. Echo levels select the
gain/cap constants of the adaptive Echo controller.
"""

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Tuple


class ProgramMode(IntEnum):
    """Base resistance profiles understood by the trainer."""

    OLD_SCHOOL = 0
    PUMP = 1
    TUT = 2
    TUT_BEAST = 3
    ECCENTRIC_ONLY = 4

    @property
    def display_name(self) -> str:
        return _PROGRAM_MODE_NAMES[self]


class EchoLevel(IntEnum):
    """Echo mode difficulty levels."""

    HARD = 0
    HARDER = 1
    HARDEST = 2
    EPIC = 3

    @property
    def display_name(self) -> str:
        return self.name.capitalize()


_PROGRAM_MODE_NAMES = {
    ProgramMode.OLD_SCHOOL: "Old School",
    ProgramMode.PUMP: "Pump",
    ProgramMode.TUT: "TUT",
    ProgramMode.TUT_BEAST: "TUT Beast",
    ProgramMode.ECCENTRIC_ONLY: "Eccentric Only",
}

# u16, u16, f32, u16, u16, f32, i16, i16, f32, i16, i16, f32
MODE_PROFILE_FORMAT = "<HHfHHfhhfhhf"
MODE_PROFILE_SIZE = struct.calcsize(MODE_PROFILE_FORMAT)

_MODE_PROFILE_VALUES: Dict[ProgramMode, Tuple] = {
    ProgramMode.OLD_SCHOOL: (0, 20, 3.0, 75, 600, 50.0, -1300, -1200, 100.0, -260, -110, 0.0),
    ProgramMode.PUMP: (50, 450, 10.0, 500, 600, 50.0, -700, -550, 1.0, -100, -50, 1.0),
    ProgramMode.TUT: (250, 350, 7.0, 450, 600, 50.0, -900, -700, 70.0, -100, -50, 14.0),
    ProgramMode.TUT_BEAST: (150, 250, 7.0, 350, 450, 50.0, -900, -700, 70.0, -100, -50, 28.0),
    ProgramMode.ECCENTRIC_ONLY: (50, 550, 50.0, 650, 750, 10.0, -900, -700, 70.0, -100, -50, 20.0),
}

MODE_PROFILES: Dict[ProgramMode, bytes] = {
    mode: struct.pack(MODE_PROFILE_FORMAT, *values)
    for mode, values in _MODE_PROFILE_VALUES.items()
}


def mode_profile(mode: ProgramMode) -> bytes:
    """Return the 32-byte profile block for a program mode."""
    return MODE_PROFILES[ProgramMode(mode)]


@dataclass(frozen=True)
class EchoConstants:
    """Derived controller constants for one Echo level."""

    gain: float
    cap: float
    smoothing: float = 0.1
    floor: float = 0.0
    neg_limit: float = -100.0
    concentric_pct: int = 50


ECHO_CONSTANTS: Dict[EchoLevel, EchoConstants] = {
    EchoLevel.HARD: EchoConstants(gain=1.0, cap=50.0),
    EchoLevel.HARDER: EchoConstants(gain=1.25, cap=40.0),
    EchoLevel.HARDEST: EchoConstants(gain=1.667, cap=30.0),
    EchoLevel.EPIC: EchoConstants(gain=3.333, cap=15.0),
}


def echo_constants(level: EchoLevel) -> EchoConstants:
    """Return the table-driven constants for an Echo level."""
    return ECHO_CONSTANTS[EchoLevel(level)]


@dataclass(frozen=True)
class ColorPreset:
    """Named LED color scheme."""

    name: str
    brightness: float
    colors: Tuple[Tuple[int, int, int], ...]


COLOR_PRESETS: Dict[str, ColorPreset] = {
    "blue": ColorPreset("Blue", 0.4, ((0x00, 0xA8, 0xDD), (0x00, 0xCF, 0xFC), (0x5D, 0xDF, 0xFC))),
    "green": ColorPreset("Green", 0.4, ((0x7D, 0xC1, 0x47), (0xA1, 0xD8, 0x6A), (0xBA, 0xE0, 0x94))),
    "teal": ColorPreset("Teal", 0.4, ((0x3E, 0x9A, 0xB7), (0x83, 0xBE, 0xD1), (0xC2, 0xDF, 0xE8))),
    "yellow": ColorPreset("Yellow", 0.4, ((0xFF, 0x90, 0x51), (0xFF, 0xD6, 0x47), (0xFF, 0xB7, 0x00))),
    "pink": ColorPreset("Pink", 0.4, ((0xFF, 0x00, 0x4C), (0xFF, 0x23, 0x8C), (0xFF, 0x8C, 0x8C))),
    "red": ColorPreset("Red", 0.4, ((0xFF, 0x00, 0x00), (0xFF, 0x55, 0x55), (0xFF, 0xAA, 0xAA))),
    "purple": ColorPreset("Purple", 0.4, ((0x88, 0x00, 0xFF), (0xAA, 0x55, 0xFF), (0xDD, 0xAA, 0xFF))),
}

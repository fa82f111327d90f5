"""
Binary command frame builders for the trainer's command characteristic.

Every builder validates its inputs before allocating the frame, writes
fields at fixed offsets (little-endian integers, IEEE-754 little-endian
floats) and returns an immutable Frame whose length is checked against
the size documented for its kind.
"""

import math
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, NamedTuple, Optional, Sequence, Tuple, Type, Union

from .core import (
    COLOR_BRIGHTNESS_MAX,
    COLOR_BRIGHTNESS_MIN,
    COLOR_CHANNEL_MAX,
    COLOR_CHANNEL_MIN,
    COLOR_COUNT,
    DEFAULT_WARMUP_REPS,
    ECHO_PERCENT_MAX,
    ECHO_PERCENT_MIN,
    ECHO_REPS_MAX,
    ECHO_REPS_MIN,
    EFFECTIVE_KG_OFFSET,
    PROGRAM_MAX_KG,
    PROGRAM_MAX_REPS,
    PROGRAM_MIN_KG,
    PROGRAM_MIN_REPS,
    PROGRESSION_MAX_KG,
    PROGRESSION_MIN_KG,
)
from .errors import ValidationError
from .modes import EchoLevel, ProgramMode, echo_constants, mode_profile

REPS_SENTINEL = 0xFF

ECHO_COMMAND_ID = 0x4E
COLOR_COMMAND_ID = 0x11
PROGRAM_COMMAND_ID = 0x04

INIT_COMMAND_BYTES = bytes([0x0A, 0x00, 0x00, 0x00])

# Command id, reserved, brightness 0.4, then the default colors twice
INIT_PRESET_BYTES = bytes(
    [
        0x11, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00,
        0x00, 0x00, 0x00, 0x00, 0xCD, 0xCC, 0xCC, 0x3E,
        0xFF, 0x00, 0x4C, 0xFF, 0x23, 0x8C, 0xFF, 0x8C, 0x8C,
        0xFF, 0x00, 0x4C, 0xFF, 0x23, 0x8C, 0xFF, 0x8C, 0x8C,
    ]
)


class FrameKind(Enum):
    """Semantic tag of a command frame."""

    INIT_COMMAND = "InitCommand"
    INIT_PRESET = "InitPreset"
    PROGRAM_PARAMS = "ProgramParams"
    ECHO_CONTROL = "EchoControl"
    COLOR_SCHEME = "ColorScheme"

    @property
    def size(self) -> int:
        return FRAME_SIZES[self]


FRAME_SIZES = {
    FrameKind.INIT_COMMAND: 4,
    FrameKind.INIT_PRESET: 34,
    FrameKind.PROGRAM_PARAMS: 96,
    FrameKind.ECHO_CONTROL: 32,
    FrameKind.COLOR_SCHEME: 34,
}


@dataclass(frozen=True)
class Frame:
    """Immutable fixed-length command payload."""

    kind: FrameKind
    data: bytes

    def __post_init__(self) -> None:
        # A wrong length here is a builder bug, never user input
        if len(self.data) != self.kind.size:
            raise AssertionError(
                f"{self.kind.value} frame must be {self.kind.size} bytes, "
                f"built {len(self.data)}"
            )

    def __bytes__(self) -> bytes:
        return self.data

    def __len__(self) -> int:
        return len(self.data)

    def hex(self) -> str:
        return self.data.hex(" ")


# ========== Parameter types ==========


@dataclass(frozen=True)
class ProgramParams:
    """Parameters of the 96-byte program frame."""

    base_mode: ProgramMode
    is_just_lift: bool
    reps: int
    per_cable_kg: float
    effective_kg: float
    progression_kg: float = 0.0

    @classmethod
    def for_weight(
        cls,
        base_mode: ProgramMode,
        per_cable_kg: float,
        reps: int = 0,
        progression_kg: float = 0.0,
        is_just_lift: bool = False,
    ) -> "ProgramParams":
        """Build params deriving the effective weight from the per-cable weight."""
        return cls(
            base_mode=base_mode,
            is_just_lift=is_just_lift,
            reps=0 if is_just_lift else reps,
            per_cable_kg=per_cable_kg,
            effective_kg=per_cable_kg + EFFECTIVE_KG_OFFSET,
            progression_kg=progression_kg,
        )


@dataclass(frozen=True)
class EchoParams:
    """Parameters of the 32-byte Echo control frame."""

    level: EchoLevel
    eccentric_pct: int
    warmup_reps: int = DEFAULT_WARMUP_REPS
    target_reps: int = 0
    is_just_lift: bool = False


class RGB(NamedTuple):
    r: int
    g: int
    b: int


@dataclass(frozen=True)
class ColorScheme:
    """LED brightness and the three colors mirrored onto both sides."""

    brightness: float
    colors: Tuple[RGB, ...]

    @classmethod
    def from_values(cls, brightness: float, colors: Iterable[Sequence[int]]) -> "ColorScheme":
        """Coerce (r, g, b) sequences into RGB tuples without range checks."""
        converted = []
        for index, color in enumerate(colors):
            if len(color) != 3:
                raise ValidationError(
                    f"Color {index + 1} must have 3 channels, received {len(color)}"
                )
            converted.append(RGB(*color))
        return cls(brightness=brightness, colors=tuple(converted))


# ========== Validation helpers ==========


def _assert_number(value: Any, label: str) -> None:
    if (
        value is None
        or isinstance(value, bool)
        or not isinstance(value, (int, float))
        or math.isnan(value)
    ):
        raise ValidationError(f"{label} is required but missing or invalid")


def _assert_range(
    value: Any, minimum: float, maximum: float, label: str, unit: str = ""
) -> None:
    _assert_number(value, label)
    if value < minimum or value > maximum:
        suffix = f" {unit}" if unit else ""
        raise ValidationError(
            f"{label} {value}{suffix} outside valid range "
            f"{minimum}{suffix}-{maximum}{suffix}"
        )


def _assert_int_range(value: Any, minimum: int, maximum: int, label: str, unit: str = "") -> None:
    _assert_range(value, minimum, maximum, label, unit)
    if int(value) != value:
        raise ValidationError(f"{label} {value} must be a whole number")


def _coerce_enum(value: Any, enum_cls: Type[Enum], label: str) -> Any:
    if isinstance(value, bool):
        raise ValidationError(f"{label} {value} is not a valid {enum_cls.__name__}")
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(str(int(member.value)) for member in enum_cls)
        raise ValidationError(f"{label} {value} not in allowed set [{allowed}]") from None


def validate_program_params(params: ProgramParams) -> ProgramMode:
    """Check program params, returning the resolved mode."""
    _assert_range(params.per_cable_kg, PROGRAM_MIN_KG, PROGRAM_MAX_KG, "Per-cable weight", "kg")
    _assert_range(
        params.effective_kg,
        PROGRAM_MIN_KG + EFFECTIVE_KG_OFFSET,
        PROGRAM_MAX_KG + EFFECTIVE_KG_OFFSET,
        "Effective weight",
        "kg",
    )
    _assert_range(
        params.progression_kg, PROGRESSION_MIN_KG, PROGRESSION_MAX_KG, "Progression", "kg"
    )
    if not params.is_just_lift:
        _assert_int_range(params.reps, PROGRAM_MIN_REPS, PROGRAM_MAX_REPS, "Reps")
    return _coerce_enum(params.base_mode, ProgramMode, "Program mode")


def validate_echo_params(params: EchoParams) -> EchoLevel:
    """Check Echo params, returning the resolved level."""
    level = _coerce_enum(params.level, EchoLevel, "Echo level")
    _assert_int_range(params.eccentric_pct, ECHO_PERCENT_MIN, ECHO_PERCENT_MAX, "Eccentric percentage", "%")
    _assert_int_range(params.warmup_reps, ECHO_REPS_MIN, ECHO_REPS_MAX, "Warmup reps")
    if not params.is_just_lift:
        _assert_int_range(params.target_reps, ECHO_REPS_MIN, ECHO_REPS_MAX, "Target reps")
    return level


def validate_color_scheme(scheme: ColorScheme) -> None:
    """Check brightness and the three color triples."""
    _assert_range(scheme.brightness, COLOR_BRIGHTNESS_MIN, COLOR_BRIGHTNESS_MAX, "Color scheme brightness")
    colors = scheme.colors
    if not isinstance(colors, (list, tuple)):
        raise ValidationError(
            f"Color scheme requires a sequence of colors, received {type(colors).__name__}"
        )
    if len(colors) != COLOR_COUNT:
        raise ValidationError(
            f"Color scheme requires exactly {COLOR_COUNT} colors, received {len(colors)}"
        )
    for index, color in enumerate(colors, start=1):
        if not isinstance(color, (list, tuple)) or len(color) != 3:
            raise ValidationError(f"Color {index} is not a valid RGB triple")
        for channel, value in zip(("red", "green", "blue"), color):
            _assert_int_range(
                value, COLOR_CHANNEL_MIN, COLOR_CHANNEL_MAX, f"Color {index} {channel} channel"
            )


# ========== Builders ==========


def build_init_command() -> Frame:
    """4-byte init command, also reused verbatim as STOP."""
    return Frame(FrameKind.INIT_COMMAND, INIT_COMMAND_BYTES)


def build_stop_command() -> Frame:
    return build_init_command()


def build_init_preset() -> Frame:
    """34-byte coefficient/color header sent once after connecting."""
    return Frame(FrameKind.INIT_PRESET, INIT_PRESET_BYTES)


def build_program_params(params: ProgramParams) -> Frame:
    """Build the 96-byte program parameters frame.

    Just Lift keeps the base mode's profile block but writes the 0xFF
    sentinel instead of a rep count. The device expects the rep byte to
    include the warmup reps, so fixed programs send ``reps + 3``.
    """
    mode = validate_program_params(params)

    frame = bytearray(FrameKind.PROGRAM_PARAMS.size)
    struct.pack_into("<I", frame, 0x00, PROGRAM_COMMAND_ID)
    frame[0x04] = REPS_SENTINEL if params.is_just_lift else int(params.reps) + DEFAULT_WARMUP_REPS
    frame[0x05:0x08] = b"\x03\x03\x00"

    struct.pack_into("<f", frame, 0x08, 5.0)
    struct.pack_into("<f", frame, 0x0C, 5.0)
    struct.pack_into("<HHHH", frame, 0x14, 250, 250, 200, 30)
    struct.pack_into("<f", frame, 0x1C, 5.0)
    struct.pack_into("<HHHH", frame, 0x24, 250, 250, 200, 30)
    struct.pack_into("<HH", frame, 0x2C, 250, 80)

    frame[0x30:0x50] = mode_profile(mode)

    struct.pack_into("<f", frame, 0x54, params.effective_kg)
    struct.pack_into("<f", frame, 0x58, params.per_cable_kg)
    struct.pack_into("<f", frame, 0x5C, params.progression_kg)

    return Frame(FrameKind.PROGRAM_PARAMS, bytes(frame))


def build_echo_control(params: EchoParams) -> Frame:
    """Build the 32-byte Echo control frame."""
    level = validate_echo_params(params)
    constants = echo_constants(level)

    frame = bytearray(FrameKind.ECHO_CONTROL.size)
    struct.pack_into("<I", frame, 0x00, ECHO_COMMAND_ID)
    frame[0x04] = int(params.warmup_reps)
    frame[0x05] = REPS_SENTINEL if params.is_just_lift else int(params.target_reps)
    struct.pack_into(
        "<HHfffff",
        frame,
        0x08,
        int(params.eccentric_pct),
        constants.concentric_pct,
        constants.smoothing,
        constants.gain,
        constants.cap,
        constants.floor,
        constants.neg_limit,
    )
    return Frame(FrameKind.ECHO_CONTROL, bytes(frame))


def build_color_scheme(scheme: ColorScheme) -> Frame:
    """Build the 34-byte color frame; colors are written twice (left/right)."""
    validate_color_scheme(scheme)

    frame = bytearray(FrameKind.COLOR_SCHEME.size)
    struct.pack_into("<IIIf", frame, 0x00, COLOR_COMMAND_ID, 0, 0, scheme.brightness)
    offset = 0x10
    for _ in range(2):
        for color in scheme.colors:
            frame[offset:offset + 3] = bytes(int(channel) for channel in color)
            offset += 3
    return Frame(FrameKind.COLOR_SCHEME, bytes(frame))


_BUILDERS = {
    FrameKind.PROGRAM_PARAMS: (ProgramParams, build_program_params),
    FrameKind.ECHO_CONTROL: (EchoParams, build_echo_control),
    FrameKind.COLOR_SCHEME: (ColorScheme, build_color_scheme),
}


def build(kind: Union[FrameKind, str], params: Optional[Any] = None) -> Frame:
    """Build a frame of the given kind.

    Args:
        kind: FrameKind or its wire name (e.g. "ProgramParams")
        params: Parameter object for parameterised kinds

    Returns:
        The immutable frame

    Raises:
        ValidationError: Unknown kind or parameters outside their contract
    """
    try:
        kind = FrameKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown frame kind: {kind}") from None

    if kind is FrameKind.INIT_COMMAND:
        return build_init_command()
    if kind is FrameKind.INIT_PRESET:
        return build_init_preset()

    params_type, builder = _BUILDERS[kind]
    if not isinstance(params, params_type):
        raise ValidationError(
            f"{kind.value} requires {params_type.__name__}, "
            f"received {type(params).__name__}"
        )
    return builder(params)

"""
Session requests, the active session record and archived workouts.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from .core import DEFAULT_WARMUP_REPS
from .modes import EchoLevel, ProgramMode
from .protocol import EchoParams, ProgramParams


@dataclass(frozen=True)
class FixedProgram:
    """Program with a fixed working rep target."""

    mode: ProgramMode
    reps: int
    per_cable_kg: float
    progression_kg: float = 0.0

    @property
    def display_name(self) -> str:
        return ProgramMode(self.mode).display_name

    def to_params(self) -> ProgramParams:
        return ProgramParams.for_weight(
            self.mode, self.per_cable_kg, reps=self.reps, progression_kg=self.progression_kg
        )


@dataclass(frozen=True)
class JustLiftProgram:
    """Open-ended program ended by the user or the auto-stop gate."""

    base_mode: ProgramMode
    per_cable_kg: float
    progression_kg: float = 0.0

    @property
    def display_name(self) -> str:
        return f"Just Lift ({ProgramMode(self.base_mode).display_name})"

    def to_params(self) -> ProgramParams:
        return ProgramParams.for_weight(
            self.base_mode, self.per_cable_kg, progression_kg=self.progression_kg, is_just_lift=True
        )


ProgramRequest = Union[FixedProgram, JustLiftProgram]


@dataclass(frozen=True)
class EchoRequest:
    """Echo set; ``just_lift`` drops the rep target."""

    level: EchoLevel
    eccentric_pct: int = 100
    target_reps: int = 0
    warmup_reps: int = DEFAULT_WARMUP_REPS
    just_lift: bool = False

    @property
    def display_name(self) -> str:
        name = f"Echo {EchoLevel(self.level).display_name}"
        return f"Just Lift ({name})" if self.just_lift else name

    def to_params(self) -> EchoParams:
        return EchoParams(
            level=self.level,
            eccentric_pct=self.eccentric_pct,
            warmup_reps=self.warmup_reps,
            target_reps=0 if self.just_lift else self.target_reps,
            is_just_lift=self.just_lift,
        )


class SessionMode(Enum):
    PROGRAM = "program"
    ECHO = "echo"


class SessionState(Enum):
    IDLE = "idle"
    WARMUP = "warmup"
    WORKING = "working"
    STOPPING = "stopping"
    COMPLETED = "completed"


@dataclass
class Session:
    """The active set. Owned and mutated only by SessionController."""

    mode: SessionMode
    request: Union[ProgramRequest, EchoRequest]
    start_time: datetime
    warmup_target: int = DEFAULT_WARMUP_REPS
    warmup_end_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    state: SessionState = SessionState.WARMUP

    @property
    def is_just_lift(self) -> bool:
        if isinstance(self.request, EchoRequest):
            return self.request.just_lift
        return isinstance(self.request, JustLiftProgram)

    @property
    def target_reps(self) -> int:
        if isinstance(self.request, FixedProgram):
            return self.request.reps
        if isinstance(self.request, EchoRequest) and not self.request.just_lift:
            return self.request.target_reps
        return 0

    @property
    def weight_kg(self) -> float:
        """Per-cable weight, 0.0 for adaptive Echo sets."""
        if isinstance(self.request, EchoRequest):
            return 0.0
        return float(self.request.per_cable_kg)

    @property
    def mode_name(self) -> str:
        return self.request.display_name

    @property
    def is_active(self) -> bool:
        return self.state in (SessionState.WARMUP, SessionState.WORKING, SessionState.STOPPING)


@dataclass(frozen=True)
class WorkoutRecord:
    """Archived session kept in memory for the lifetime of the process."""

    mode_name: str
    weight_kg: float
    reps: int
    target_reps: int
    started_at: datetime
    ended_at: datetime
    reason: str

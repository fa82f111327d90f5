"""
Stall detector that ends open-ended sets when the user rests at the bottom.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .core import AUTO_STOP_DANGER_FRACTION, AUTO_STOP_DWELL, AUTO_STOP_NOISE_FLOOR
from .events import AutoStopProgress, AutoStopTriggered, Event
from .reps import RepCounterState
from .telemetry import MonitorSample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutoStopState:
    armed_since: Optional[float] = None
    triggered: bool = False


@dataclass(frozen=True)
class AutoStopUpdate:
    state: AutoStopState
    events: Tuple[Event, ...] = ()
    progress: float = 0.0

    @property
    def triggered(self) -> bool:
        return any(isinstance(event, AutoStopTriggered) for event in self.events)


@dataclass
class AutoStopGate:
    """Arms while any calibrated cable sits in its danger zone.

    A cable takes part once its calibrated range exceeds the noise floor.
    Its danger zone is everything at or below ``min + danger_fraction *
    range``. Staying armed for ``dwell`` seconds triggers exactly once;
    leaving the zone earlier disarms and the dwell restarts from zero.
    """

    dwell: float = AUTO_STOP_DWELL
    noise_floor: float = AUTO_STOP_NOISE_FLOOR
    danger_fraction: float = AUTO_STOP_DANGER_FRACTION

    def danger_threshold(self, minimum: Optional[float], maximum: Optional[float]) -> Optional[float]:
        """Threshold for one cable, or None while its range is not meaningful."""
        if minimum is None or maximum is None:
            return None
        span = maximum - minimum
        if span <= self.noise_floor:
            return None
        return minimum + span * self.danger_fraction

    def in_danger_zone(self, sample: MonitorSample, reps: RepCounterState) -> Optional[bool]:
        """Whether any qualifying cable is in its danger zone, None if none qualify."""
        cables = (
            (sample.pos_a, self.danger_threshold(reps.calibrated_min_a, reps.calibrated_max_a)),
            (sample.pos_b, self.danger_threshold(reps.calibrated_min_b, reps.calibrated_max_b)),
        )
        thresholds = [(position, threshold) for position, threshold in cables if threshold is not None]
        if not thresholds:
            return None
        return any(position <= threshold for position, threshold in thresholds)

    def process(
        self, state: AutoStopState, sample: MonitorSample, reps: RepCounterState
    ) -> AutoStopUpdate:
        """Apply one monitor sample, returning the new state and events."""
        if state.triggered:
            return AutoStopUpdate(state, progress=1.0)

        danger = self.in_danger_zone(sample, reps)
        if not danger:
            if state.armed_since is not None:
                logger.debug("Auto-stop disarmed")
            state = AutoStopState()
            return AutoStopUpdate(state, (AutoStopProgress(0.0, armed=False),), 0.0)

        if state.armed_since is None:
            logger.debug("Auto-stop armed")
            state = AutoStopState(armed_since=sample.timestamp)

        elapsed = sample.timestamp - state.armed_since
        progress = min(elapsed / self.dwell, 1.0) if self.dwell > 0 else 1.0
        events: List[Event] = [AutoStopProgress(progress, armed=True)]

        if elapsed >= self.dwell:
            logger.warning(f"Auto-stop triggered after {elapsed:.1f}s at bottom of range")
            state = AutoStopState(armed_since=state.armed_since, triggered=True)
            events.append(AutoStopTriggered(elapsed))

        return AutoStopUpdate(state, tuple(events), progress)

"""
Rep boundary detection from the trainer's wrapping hardware counters.

Each rep notification carries a top-of-range counter and a rep-complete
counter. A forward change of either counter is an edge: top edges
calibrate the upper end of each cable's range, complete edges calibrate
the lower end and advance the warmup/working rep counts.

The detector holds configuration only. All progress lives in an immutable
RepCounterState that the caller passes in and replaces with the returned
one, so the notification and polling contexts never share mutable state.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Tuple

from .core import CALIBRATION_WINDOW, DEFAULT_WARMUP_REPS, WORKING_WINDOW
from .events import Event, RepCompleted, TopReached
from .telemetry import RepCounters, counter_delta

logger = logging.getLogger(__name__)


class RepPhase(Enum):
    CALIBRATING = "calibrating"
    WORKING = "working"
    DONE = "done"


def _push(buffer: Tuple[int, ...], value: int, capacity: int) -> Tuple[int, ...]:
    return (buffer + (value,))[-capacity:]


def _mean(buffer: Tuple[int, ...]) -> Optional[float]:
    if not buffer:
        return None
    return sum(buffer) / len(buffer)


@dataclass(frozen=True)
class RepCounterState:
    """Counter tracking and range calibration for one session."""

    last_top_counter: Optional[int] = None
    last_complete_counter: Optional[int] = None
    warmup_reps: int = 0
    working_reps: int = 0
    top_positions_a: Tuple[int, ...] = ()
    top_positions_b: Tuple[int, ...] = ()
    bottom_positions_a: Tuple[int, ...] = ()
    bottom_positions_b: Tuple[int, ...] = ()
    done: bool = False

    @property
    def calibrated_max_a(self) -> Optional[float]:
        return _mean(self.top_positions_a)

    @property
    def calibrated_max_b(self) -> Optional[float]:
        return _mean(self.top_positions_b)

    @property
    def calibrated_min_a(self) -> Optional[float]:
        return _mean(self.bottom_positions_a)

    @property
    def calibrated_min_b(self) -> Optional[float]:
        return _mean(self.bottom_positions_b)


@dataclass(frozen=True)
class RepUpdate:
    """Result of feeding one notification to the detector."""

    state: RepCounterState
    events: Tuple[Event, ...] = ()
    completed: bool = False
    stop_required: bool = False


@dataclass
class RepDetector:
    """Turns rep notifications into warmup/working rep events.

    Attributes:
        warmup_target: Completed reps counted as warmup before working reps
        target_reps: Working reps that finish the set, 0 for open-ended sets
        stop_at_top: Finish on the top of the final rep and request an
            explicit stop, since the trainer only ends the set itself at
            the bottom of that rep
    """

    warmup_target: int = DEFAULT_WARMUP_REPS
    target_reps: int = 0
    stop_at_top: bool = False

    def phase(self, state: RepCounterState) -> RepPhase:
        if state.done:
            return RepPhase.DONE
        if state.warmup_reps < self.warmup_target:
            return RepPhase.CALIBRATING
        return RepPhase.WORKING

    def _window(self, state: RepCounterState) -> int:
        if self.phase(state) is RepPhase.CALIBRATING:
            return CALIBRATION_WINDOW
        return WORKING_WINDOW

    def record_top_position(self, state: RepCounterState, pos_a: int, pos_b: int) -> RepCounterState:
        capacity = self._window(state)
        return replace(
            state,
            top_positions_a=_push(state.top_positions_a, pos_a, capacity),
            top_positions_b=_push(state.top_positions_b, pos_b, capacity),
        )

    def record_bottom_position(self, state: RepCounterState, pos_a: int, pos_b: int) -> RepCounterState:
        capacity = self._window(state)
        return replace(
            state,
            bottom_positions_a=_push(state.bottom_positions_a, pos_a, capacity),
            bottom_positions_b=_push(state.bottom_positions_b, pos_b, capacity),
        )

    def _is_final_top(self, state: RepCounterState) -> bool:
        return (
            self.stop_at_top
            and self.target_reps > 0
            and self.phase(state) is RepPhase.WORKING
            and state.working_reps == self.target_reps - 1
        )

    def _count_rep(self, state: RepCounterState, events: List[Event]) -> RepCounterState:
        if state.warmup_reps + state.working_reps < self.warmup_target:
            state = replace(state, warmup_reps=state.warmup_reps + 1)
            logger.info(f"Warmup rep {state.warmup_reps}/{self.warmup_target} complete")
            is_warmup = True
        else:
            state = replace(state, working_reps=state.working_reps + 1)
            if self.target_reps > 0:
                logger.info(f"Working rep {state.working_reps}/{self.target_reps} complete")
            else:
                logger.info(f"Working rep {state.working_reps} complete")
            is_warmup = False

        events.append(
            RepCompleted(
                is_warmup=is_warmup,
                warmup_reps=state.warmup_reps,
                warmup_target=self.warmup_target,
                working_reps=state.working_reps,
                target_reps=self.target_reps,
            )
        )
        return state

    def process(
        self, state: RepCounterState, counters: RepCounters, pos_a: int, pos_b: int
    ) -> RepUpdate:
        """Apply one rep notification.

        The first notification of a session only seeds the counters.

        Args:
            state: Current counter state
            counters: Decoded notification counters
            pos_a: Latest accepted position of cable A
            pos_b: Latest accepted position of cable B

        Returns:
            RepUpdate carrying the new state and any emitted events
        """
        if state.done:
            return RepUpdate(state)

        events: List[Event] = []

        if state.last_top_counter is None:
            state = replace(state, last_top_counter=counters.top)
        else:
            top_delta = counter_delta(state.last_top_counter, counters.top)
            state = replace(state, last_top_counter=counters.top)
            if top_delta > 0:
                final_top = self._is_final_top(state)
                state = self.record_top_position(state, pos_a, pos_b)
                events.append(TopReached(state.warmup_reps, state.working_reps, pos_a, pos_b))
                if final_top:
                    state = self._count_rep(state, events)
                    state = replace(state, last_complete_counter=counters.complete, done=True)
                    logger.info("Target reps reached at top, stopping set")
                    return RepUpdate(state, tuple(events), completed=True, stop_required=True)

        if state.last_complete_counter is None:
            state = replace(state, last_complete_counter=counters.complete)
            return RepUpdate(state, tuple(events))

        complete_delta = counter_delta(state.last_complete_counter, counters.complete)
        state = replace(state, last_complete_counter=counters.complete)
        if complete_delta == 0:
            return RepUpdate(state, tuple(events))

        state = self.record_bottom_position(state, pos_a, pos_b)
        state = self._count_rep(state, events)

        if self.target_reps > 0 and state.working_reps >= self.target_reps:
            logger.info("Target reps reached, completing set")
            return RepUpdate(replace(state, done=True), tuple(events), completed=True)

        return RepUpdate(state, tuple(events))

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from .constants import (
    BAD_SEND_RATE,
    GOOD_SEND_RATE,
    INITIAL_PENALTY_TIME,
    MAX_PENALTY_TIME,
    MIN_PENALTY_TIME,
    PENALTY_REDUCTION_PERIOD,
    RTT_THRESHOLD_MS,
)

logger = logging.getLogger(__name__)


class FlowMode(enum.Enum):
    GOOD = "good"
    BAD = "bad"


@dataclass(slots=True)
class FlowState:
    mode: FlowMode = FlowMode.BAD
    penalty_time: float = INITIAL_PENALTY_TIME
    good_conditions_time: float = 0.0
    penalty_reduction_accumulator: float = 0.0


class FlowControl:
    """Two-state send-rate controller driven by RTT samples.

    Starts in BAD mode. Conditions must stay good for longer than
    ``penalty_time`` before upgrading to GOOD. Dropping back to BAD soon
    after an upgrade doubles the penalty (up to 60s); every 10s spent in
    GOOD halves it again (down to 1s).
    """

    def __init__(self) -> None:
        self.state = FlowState()

    @property
    def mode(self) -> FlowMode:
        return self.state.mode

    def reset(self) -> None:
        self.state = FlowState()

    def send_rate(self) -> float:
        return GOOD_SEND_RATE if self.state.mode == FlowMode.GOOD else BAD_SEND_RATE

    def update(self, dt: float, rtt_ms: float) -> None:
        s = self.state

        if s.mode == FlowMode.GOOD:
            if rtt_ms > RTT_THRESHOLD_MS:
                logger.info("*** dropping to bad mode *** (rtt %.1fms)", rtt_ms)
                s.mode = FlowMode.BAD
                if s.good_conditions_time < PENALTY_REDUCTION_PERIOD and s.penalty_time < MAX_PENALTY_TIME:
                    s.penalty_time = min(s.penalty_time * 2.0, MAX_PENALTY_TIME)
                    logger.info("penalty time increased to %.1f", s.penalty_time)
                s.good_conditions_time = 0.0
                s.penalty_reduction_accumulator = 0.0
                return

            s.good_conditions_time += dt
            s.penalty_reduction_accumulator += dt

            if s.penalty_reduction_accumulator > PENALTY_REDUCTION_PERIOD and s.penalty_time > MIN_PENALTY_TIME:
                s.penalty_time = max(s.penalty_time / 2.0, MIN_PENALTY_TIME)
                logger.info("penalty time reduced to %.1f", s.penalty_time)
                s.penalty_reduction_accumulator = 0.0
            return

        if rtt_ms <= RTT_THRESHOLD_MS:
            s.good_conditions_time += dt
        else:
            s.good_conditions_time = 0.0

        if s.good_conditions_time > s.penalty_time:
            logger.info("*** upgrading to good mode ***")
            s.mode = FlowMode.GOOD
            s.good_conditions_time = 0.0
            s.penalty_reduction_accumulator = 0.0


@dataclass(slots=True)
class SendSchedule:
    accumulator: float = 0.0

    def advance(self, dt: float, rate: float) -> int:
        """Add ``dt`` and return how many sends are now due at ``rate`` per second."""
        self.accumulator += dt
        interval = 1.0 / rate
        due = 0
        while self.accumulator > interval:
            self.accumulator -= interval
            due += 1
        return due

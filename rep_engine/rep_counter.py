import logging
from collections import deque, namedtuple

import numpy as np

logger = logging.getLogger(__name__)

# counted: whether the rep was added; reason: anomaly kind when it was not
RepOutcome = namedtuple("RepOutcome", ["counted", "reason", "interval_ms"])

TOO_FAST = "too-fast"
SUDDEN_ACCELERATION = "sudden-acceleration"

# Prior intervals needed before the sudden-acceleration check applies
MIN_CADENCE_INTERVALS = 3


class RepCounter:
    """Counts completed repetitions and rejects implausibly fast ones.

    The first repetition of a session always counts. Later ones count only when
    at least ``min_rep_ms`` has passed since the last counted rep. A rejected rep
    leaves the count and the last-rep timestamp untouched.
    """

    def __init__(self, min_rep_ms, acceleration_ratio=0.0, history_size=5):
        self.min_rep_ms = min_rep_ms
        self.acceleration_ratio = acceleration_ratio
        self.count = 0
        self.last_rep_ms = None
        self.intervals = deque(maxlen=history_size)

    @property
    def average_interval_ms(self):
        return float(np.mean(self.intervals)) if self.intervals else None

    @property
    def cadence_per_minute(self):
        """Reps per minute over the recent intervals, None until two reps were counted."""
        average = self.average_interval_ms
        return 60000.0 / average if average else None

    def register(self, now):
        """Try to count a completed repetition at timestamp ``now``."""
        if self.last_rep_ms is None:
            return self._count(now, None)

        interval = now - self.last_rep_ms
        if interval < self.min_rep_ms:
            logger.warning("Rep rejected: %d ms since last rep, minimum is %d ms", interval, self.min_rep_ms)
            return RepOutcome(False, TOO_FAST, interval)

        if self.acceleration_ratio > 0 and len(self.intervals) >= MIN_CADENCE_INTERVALS:
            average = self.average_interval_ms
            if interval < average * self.acceleration_ratio:
                logger.warning("Rep rejected: %d ms interval against a %.0f ms average", interval, average)
                return RepOutcome(False, SUDDEN_ACCELERATION, interval)

        self.intervals.append(interval)
        return self._count(now, interval)

    def _count(self, now, interval):
        self.count += 1
        self.last_rep_ms = now
        logger.info("Rep %d counted at %d ms", self.count, now)
        return RepOutcome(True, None, interval)

    def reset(self):
        self.count = 0
        self.last_rep_ms = None
        self.intervals.clear()

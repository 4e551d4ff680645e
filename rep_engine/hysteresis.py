import logging

from rep_engine.config import Verdict

logger = logging.getLogger(__name__)


class Debouncer:
    """Turns noisy per-frame verdicts into stable two-state transitions.

    Flipping into ``working`` takes ``enter_frames`` consecutive verdicts naming
    it, flipping back takes ``exit_frames``. A verdict that repeats the current
    state, or any verdict outside the pair (INVALID), zeroes the pending count.
    The state may start as None (undetermined); the first stable run of either
    verdict then decides it.
    """

    def __init__(self, start, working, enter_frames, exit_frames, name="state"):
        if enter_frames < 1 or exit_frames < 1:
            raise ValueError("hysteresis frame counts must be at least 1")
        self.working = working
        self.resting = working.opposite()
        self.enter_frames = enter_frames
        self.exit_frames = exit_frames
        self.name = name
        self.state = start
        self.pending = None
        self.count = 0

    def required(self, target):
        return self.enter_frames if target is self.working else self.exit_frames

    def update(self, verdict):
        """Feed one verdict; return (previous, new) when the state flips, else None."""
        if verdict not in (self.working, self.resting) or verdict is self.state:
            self.reset_counter()
            return None

        if verdict is not self.pending:
            self.pending = verdict
            self.count = 0
        self.count += 1

        if self.count < self.required(verdict):
            return None

        previous = self.state
        self.state = verdict
        self.reset_counter()
        logger.debug("%s flipped %s -> %s", self.name, previous, verdict)
        return previous, verdict

    def reset_counter(self):
        self.pending = None
        self.count = 0

    def reset(self, start):
        self.state = start
        self.reset_counter()

    @property
    def counters(self):
        """Pending consecutive-opposing counts keyed by the verdict they would flip to."""
        return {
            self.working: self.count if self.pending is self.working else 0,
            self.resting: self.count if self.pending is self.resting else 0,
        }


def phase_debouncer(settings):
    """UP/DOWN debouncer for a rep exercise, leaving its start state on goodFrames."""
    start = settings.start_state
    return Debouncer(start, start.opposite(), settings.good_frames, settings.bad_frames,
                     name=f"{settings.kind.value} phase")


def posture_debouncer(settings, name="posture"):
    """GOOD/BAD debouncer starting undetermined."""
    return Debouncer(None, Verdict.GOOD, settings.good_frames, settings.bad_frames,
                     name=f"{settings.kind.value} {name}")

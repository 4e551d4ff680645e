import logging
import random
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from rep_engine.config import TELEMETRY_DEFAULTS, freeze

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    FRAME_PROCESSED = "frameProcessed"
    FRAME_SKIPPED = "frameSkipped"
    REP_COUNTED = "repCounted"
    STATE_TRANSITION = "stateTransition"
    POSTURE_WARNING = "postureWarning"
    ANOMALY_DETECTED = "anomalyDetected"
    CALIBRATION_COMPLETE = "calibrationComplete"


# Only the high-rate event is subject to sampling
SAMPLED_EVENTS = frozenset({EventType.FRAME_PROCESSED})


@dataclass(frozen=True)
class TelemetryEvent:
    type: EventType
    exercise: str
    timestamp_ms: int
    payload: MappingProxyType = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "payload", freeze(self.payload))

    def as_dict(self):
        return {
            "type": self.type.value,
            "exercise": self.exercise,
            "timestamp_ms": self.timestamp_ms,
            "payload": _thaw(self.payload),
        }


# Function to turn a frozen payload back into plain dicts and lists
def _thaw(value):
    if isinstance(value, MappingProxyType):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


class TelemetryEmitter:
    """Bounded, oldest-first-evicting buffer of telemetry events with subscribers.

    Subscribers are called synchronously with every recorded event. The host can
    also poll ``events`` or take everything buffered with ``drain()``.
    """

    def __init__(self, telemetry_config=None, rng=None, seed=None):
        cfg = telemetry_config if telemetry_config is not None else TELEMETRY_DEFAULTS
        self.enabled = bool(cfg["enabled"])
        self.event_types = {t: bool(cfg["eventTypes"].get(t.value, True)) for t in EventType}
        self.sampling_rate = float(cfg["samplingRate"])
        self.include_landmarks = bool(cfg["includeLandmarks"])
        self.include_angles = bool(cfg["includeAngles"])
        self.include_visibility = bool(cfg["includeVisibility"])
        self.max_buffer_size = int(cfg["maxBufferSize"])
        self.buffer = deque(maxlen=self.max_buffer_size)
        self.rng = rng if rng is not None else random.Random(seed)
        self.subscribers = []
        self.evicted = 0

    def is_enabled(self, event_type):
        return self.enabled and self.event_types[EventType(event_type)]

    def subscribe(self, callback):
        self.subscribers.append(callback)
        return callback

    def unsubscribe(self, callback):
        if callback in self.subscribers:
            self.subscribers.remove(callback)

    def emit(self, event_type, exercise, timestamp_ms, payload=None):
        """Record an event; returns it, or None when disabled or sampled out."""
        event_type = EventType(event_type)
        if not self.is_enabled(event_type):
            return None
        if event_type in SAMPLED_EVENTS and self.rng.random() >= self.sampling_rate:
            return None

        event = TelemetryEvent(event_type, str(exercise), timestamp_ms, payload or {})
        if len(self.buffer) == self.max_buffer_size:
            self.evicted += 1
        self.buffer.append(event)
        self._notify(event)
        return event

    def _notify(self, event):
        for callback in list(self.subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Telemetry subscriber %r failed on %s", callback, event.type.value)

    @property
    def events(self):
        return tuple(self.buffer)

    def drain(self):
        """Remove and return every buffered event, oldest first."""
        events = list(self.buffer)
        self.buffer.clear()
        return events

    def __len__(self):
        return len(self.buffer)

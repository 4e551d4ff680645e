import logging
from collections import ChainMap
from dataclasses import dataclass, field
from enum import Enum

from rep_engine.calibration import Calibration, CalibrationBaseline
from rep_engine.classifiers import CLASSIFIERS, RollingHistory
from rep_engine.config import DEFAULT_ENGINE_CONFIG, ConfigError, EngineConfig, Verdict, build_config, parse_exercise
from rep_engine.hysteresis import phase_debouncer, posture_debouncer
from rep_engine.landmarks import Pose
from rep_engine.posture_warning import PostureWarningSystem
from rep_engine.rep_counter import RepCounter
from rep_engine.telemetry import EventType, TelemetryEmitter
from rep_engine.visibility import VisibilityGate

logger = logging.getLogger(__name__)

LOW_VISIBILITY = "low_visibility"
NON_MONOTONIC = "non_monotonic_timestamp"


class RecalibrationPolicy(str, Enum):
    PRESERVE = "preserve"
    RESET = "reset"


class FrameStatus(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    CALIBRATING = "calibrating"


@dataclass(frozen=True)
class FrameResult:
    """What the session did with one frame, and where it stands afterwards."""

    status: FrameStatus
    timestamp_ms: int
    rep_count: int
    state: Verdict
    posture: Verdict
    verdict: Verdict = None
    reason: str = None
    warning: str = None
    hold_ms: int = 0
    metrics: dict = field(default_factory=dict)
    events: tuple = ()


class ExerciseSession:
    """Per-exercise pipeline: gate, classify, debounce, count, warn, report.

    One session tracks one exercise for one user. Frames must be fed in
    timestamp order; the session never blocks and never raises for degraded
    input. Only construction can fail, with ConfigError.
    """

    def __init__(self, exercise, config=None, lighting="normal", telemetry=None, baseline=None, calibrate=False):
        if config is None:
            config = DEFAULT_ENGINE_CONFIG
        elif isinstance(config, dict):
            config = build_config(config)
        elif not isinstance(config, EngineConfig):
            raise ConfigError(f"expected an EngineConfig or a mapping, got {type(config).__name__}")

        self.config = config
        self.kind = parse_exercise(exercise)
        self.settings = config.exercise(self.kind)
        self.lighting = lighting
        self.gate = VisibilityGate.for_exercise(config, self.kind, lighting)
        self.params = ChainMap({"MIN_VISIBILITY": self.gate.min_visibility}, self.settings.thresholds)
        self.classifier = CLASSIFIERS[self.kind]
        self.telemetry = telemetry if telemetry is not None else TelemetryEmitter(config.telemetry)

        self.history = RollingHistory()
        self.phase = None if self.kind.is_hold else phase_debouncer(self.settings)
        self.posture_state = posture_debouncer(self.settings, "hold" if self.kind.is_hold else "form")
        self.rep_counter = RepCounter(self.settings.min_rep_ms,
                                      config.cadence["suddenAccelerationRatio"],
                                      config.cadence["historySize"])
        self.warnings = PostureWarningSystem(self.settings.warning_cooldown_ms)
        self.hold_ms = 0
        self.last_issue = None
        self.last_timestamp_ms = None
        self._hold_mark_ms = None

        self.calibration = None
        self.baseline = baseline
        if calibrate:
            self._start_calibration()
        elif baseline is None:
            self.baseline = CalibrationBaseline.defaults(config.calibration)

        logger.info("Session started: exercise=%s lighting=%s min_visibility=%.2f calibrate=%s",
                    self.kind.value, lighting, self.gate.min_visibility, calibrate)

    # Public state

    @property
    def rep_count(self):
        return self.rep_counter.count

    @property
    def last_rep_timestamp(self):
        return self.rep_counter.last_rep_ms

    @property
    def state(self):
        """Debounced phase for rep exercises, debounced posture for holds."""
        if self.phase is None:
            return self.posture_state.state
        return self.phase.state

    @property
    def posture(self):
        return self.posture_state.state

    @property
    def counters(self):
        debouncer = self.phase if self.phase is not None else self.posture_state
        return debouncer.counters

    @property
    def calibrating(self):
        return self.calibration is not None

    # Frame pipeline

    def process_frame(self, frame):
        now = frame.timestamp_ms
        emitted = []

        if self.last_timestamp_ms is not None and now < self.last_timestamp_ms:
            logger.debug("Frame at %d ms is older than %d ms, skipped", now, self.last_timestamp_ms)
            self._emit(emitted, EventType.FRAME_SKIPPED, now, {
                "reason": NON_MONOTONIC,
                "last_timestamp_ms": self.last_timestamp_ms,
            })
            return self._result(FrameStatus.SKIPPED, now, emitted, reason=NON_MONOTONIC)
        self.last_timestamp_ms = now

        if self.calibration is not None:
            return self._calibrate(frame, emitted)

        gate = self.gate.check(frame)
        if not gate.usable:
            logger.debug("Frame at %d ms skipped, landmarks %s below %.2f", now, gate.missing, self.gate.min_visibility)
            self._emit_skip(emitted, now, gate, "exercise")
            return self._result(FrameStatus.SKIPPED, now, emitted, reason=LOW_VISIBILITY)

        pose = Pose(frame, self.config.landmarks)
        result = self.classifier(pose, self.baseline, self.history, self.params)
        self.history.push(result)

        if self.phase is not None:
            self._update_phase(result.verdict, now, emitted)
            form = result.form_ok
        else:
            form = result.verdict is Verdict.GOOD
        if result.form_ok is None:
            form_verdict = Verdict.INVALID
        else:
            form_verdict = Verdict.GOOD if form else Verdict.BAD
        if not form and result.issue:
            self.last_issue = result.issue

        flip = self.posture_state.update(form_verdict)
        if flip is not None:
            self._emit(emitted, EventType.STATE_TRANSITION, now, {
                "channel": "posture",
                "from": flip[0].value if flip[0] is not None else None,
                "to": flip[1].value,
            })

        self._update_hold(now)

        warning = self.warnings.check(now, self.posture_state.state is Verdict.BAD, self.last_issue)
        if warning is not None:
            self._emit(emitted, EventType.POSTURE_WARNING, now, {
                "message": warning,
                "posture": Verdict.BAD.value,
                "rep_count": self.rep_count,
            })

        self._emit(emitted, EventType.FRAME_PROCESSED, now, self._frame_payload(frame, gate, result))
        return self._result(FrameStatus.PROCESSED, now, emitted, verdict=result.verdict,
                            warning=warning, metrics=result.metrics)

    def process_frames(self, frames):
        return [self.process_frame(frame) for frame in frames]

    def _update_phase(self, verdict, now, emitted):
        flip = self.phase.update(verdict)
        if flip is None:
            return
        previous, current = flip
        self._emit(emitted, EventType.STATE_TRANSITION, now, {
            "channel": "phase",
            "from": previous.value,
            "to": current.value,
        })
        if current is not self.settings.count_on:
            return

        outcome = self.rep_counter.register(now)
        if outcome.counted:
            self._emit(emitted, EventType.REP_COUNTED, now, {
                "rep_count": self.rep_count,
                "interval_ms": outcome.interval_ms,
                "cadence_per_minute": self.rep_counter.cadence_per_minute,
            })
        else:
            self._emit(emitted, EventType.ANOMALY_DETECTED, now, {
                "reason": outcome.reason,
                "interval_ms": outcome.interval_ms,
                "min_rep_ms": self.rep_counter.min_rep_ms,
                "rep_count": self.rep_count,
            })

    def _update_hold(self, now):
        if not (self.kind.is_hold and self.settings.hold_timer):
            return
        if self.posture_state.state is Verdict.GOOD:
            if self._hold_mark_ms is not None:
                self.hold_ms += now - self._hold_mark_ms
            self._hold_mark_ms = now
        else:
            self._hold_mark_ms = None

    # Calibration

    def _start_calibration(self):
        self.calibration = Calibration(self.config.calibration, self.config.landmarks)
        self.baseline = None

    def _calibrate(self, frame, emitted):
        now = frame.timestamp_ms
        calibration = self.calibration
        gate = calibration.add_frame(frame)
        if not gate.usable:
            self._emit_skip(emitted, now, gate, "calibration")

        if calibration.finished:
            self.baseline = calibration.baseline
            self.calibration = None
            self._emit(emitted, EventType.CALIBRATION_COMPLETE, now, {
                "baseline": self.baseline.as_dict(),
                "is_default": self.baseline.is_default,
                "frame_count": calibration.frame_count,
                "state": calibration.state.value,
                "elapsed_ms": calibration.elapsed_ms(now),
            })

        status = FrameStatus.CALIBRATING if gate.usable else FrameStatus.SKIPPED
        return self._result(status, now, emitted, reason=None if gate.usable else LOW_VISIBILITY)

    def recalibrate(self, policy=RecalibrationPolicy.PRESERVE):
        """Start a fresh calibration run; classification pauses until it finishes.

        PRESERVE keeps the rep count, phase, last-rep time and hold time.
        RESET starts every counter over as if the session were new.
        """
        try:
            policy = RecalibrationPolicy(policy)
        except ValueError:
            raise ConfigError(f"unknown recalibration policy {policy!r}") from None

        if policy is RecalibrationPolicy.RESET:
            self.reset()
        else:
            self.history.clear()
            if self.phase is not None:
                self.phase.reset_counter()
            self.posture_state.reset_counter()
            self._hold_mark_ms = None
        self._start_calibration()
        logger.info("Recalibration started for %s (%s)", self.kind.value, policy.value)

    def reset(self):
        """Start counting over, keeping the current baseline and timestamp ordering."""
        self.rep_counter.reset()
        if self.phase is not None:
            self.phase.reset(self.settings.start_state)
        self.posture_state.reset(None)
        self.warnings.reset()
        self.history.clear()
        self.hold_ms = 0
        self.last_issue = None
        self._hold_mark_ms = None

    # Telemetry helpers

    def _emit(self, emitted, event_type, now, payload):
        event = self.telemetry.emit(event_type, self.kind.value, now, payload)
        if event is not None:
            emitted.append(event)
        return event

    def _emit_skip(self, emitted, now, gate, phase):
        payload = {"reason": LOW_VISIBILITY, "phase": phase, "missing": list(gate.missing)}
        if self.telemetry.include_visibility:
            payload["min_visibility"] = gate.min_visibility
        self._emit(emitted, EventType.FRAME_SKIPPED, now, payload)

    def _frame_payload(self, frame, gate, result):
        payload = {
            "verdict": result.verdict.value,
            "state": self.state.value if self.state is not None else None,
            "posture": self.posture.value if self.posture is not None else None,
            "rep_count": self.rep_count,
        }
        if self.kind.is_hold:
            payload["hold_ms"] = self.hold_ms
        if self.telemetry.include_angles:
            payload["metrics"] = dict(result.metrics)
        if self.telemetry.include_visibility:
            payload["min_visibility"] = gate.min_visibility
        if self.telemetry.include_landmarks:
            payload["landmarks"] = frame.to_array().tolist()
        return payload

    def _result(self, status, now, emitted, **kwargs):
        return FrameResult(
            status=status,
            timestamp_ms=now,
            rep_count=self.rep_count,
            state=self.state,
            posture=self.posture,
            hold_ms=self.hold_ms,
            events=tuple(emitted),
            **kwargs,
        )

import copy
import json
import logging
import math
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from rep_engine.landmarks import NUM_LANDMARKS, POSE_LANDMARKS

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when a threshold table or session setup is malformed."""


class ExerciseKind(str, Enum):
    PUSHUPS = "pushups"
    SQUATS = "squats"
    LUNGES = "lunges"
    JUMPINGJACKS = "jumpingjacks"
    HIGHKNEES = "highknees"
    WALLSIT = "wallsit"
    SITUPS = "situps"
    PLANK = "plank"
    SIDEPLANK = "sideplank"

    @property
    def is_hold(self):
        """True for the posture-only exercises that accumulate hold time instead of reps."""
        return self in HOLD_EXERCISES


HOLD_EXERCISES = frozenset({ExerciseKind.PLANK, ExerciseKind.SIDEPLANK, ExerciseKind.WALLSIT})


class Verdict(str, Enum):
    UP = "up"
    DOWN = "down"
    GOOD = "good"
    BAD = "bad"
    INVALID = "invalid"

    def opposite(self):
        return _OPPOSITES[self]


_OPPOSITES = {
    Verdict.UP: Verdict.DOWN,
    Verdict.DOWN: Verdict.UP,
    Verdict.GOOD: Verdict.BAD,
    Verdict.BAD: Verdict.GOOD,
    Verdict.INVALID: Verdict.INVALID,
}


LIGHTING_PRESETS = {
    "bright": {
        "minVisibility": 0.4,
        "description": "Bright lighting with direct sunlight or strong indoor lighting",
    },
    "normal": {
        "minVisibility": 0.35,
        "description": "Normal indoor lighting conditions",
    },
    "dim": {
        "minVisibility": 0.3,
        "description": "Dim lighting conditions (evening, low light)",
    },
    "backlit": {
        "minVisibility": 0.3,
        "description": "Backlit conditions (window or light source behind user)",
    },
    "auto": {
        "minVisibility": 0.35,
        "description": "Automatic adaptation based on detected conditions",
    },
}

CALIBRATION_DEFAULTS = {
    "shoulderWidth": 0.2,
    "neutralAnkleSpacing": 0.12,
    "torsoLength": 0.3,
    "neutralHipHeight": 0.5,
    "neutralKneeAngle": 178.0,
    "cameraDistanceFactor": 1.0,
    # Lying/neutral reference distances for the sit-up ratios
    "shoulderKneeDistance": 0.45,
    "headKneeDistance": 0.6,
    "calibrationDurationMs": 3000,
    "minStableFrames": 30,
    "minViableFrames": 10,
    "minVisibility": 0.5,
}

TELEMETRY_DEFAULTS = {
    "enabled": True,
    "eventTypes": {
        "frameProcessed": True,
        "frameSkipped": True,
        "repCounted": True,
        "stateTransition": True,
        "postureWarning": True,
        "anomalyDetected": True,
        "calibrationComplete": True,
    },
    "samplingRate": 1.0,
    "maxBufferSize": 100,
    "includeLandmarks": False,
    "includeAngles": True,
    "includeVisibility": True,
}

CADENCE_DEFAULTS = {
    # 0 disables the sudden-acceleration check
    "suddenAccelerationRatio": 0.0,
    "historySize": 5,
}

HYSTERESIS_DEFAULTS = {
    "pushups": {"goodFrames": 3, "badFrames": 5},
    "squats": {"goodFrames": 2, "badFrames": 4},
    "lunges": {"goodFrames": 2, "badFrames": 4},
    "jumpingjacks": {"goodFrames": 1, "badFrames": 3},
    "highknees": {"goodFrames": 1, "badFrames": 3},
    "wallsit": {"goodFrames": 3, "badFrames": 5},
    "situps": {"goodFrames": 2, "badFrames": 4},
    "plank": {"goodFrames": 3, "badFrames": 5},
    "sideplank": {"goodFrames": 3, "badFrames": 4},
}

CRITICAL_LANDMARKS_DEFAULTS = {
    "pushups": [11, 12, 13, 14, 15, 16, 23, 24, 25, 26],
    "squats": [11, 12, 23, 24, 25, 26, 27, 28],
    "lunges": [11, 12, 23, 24, 25, 26, 27, 28],
    "jumpingjacks": [11, 12, 15, 16, 23, 24, 27, 28],
    "highknees": [11, 12, 23, 24, 25, 26, 27, 28],
    "wallsit": [11, 12, 23, 24, 25, 26, 27, 28],
    "situps": [11, 12, 15, 16, 23, 24, 25, 26],
    "plank": [11, 12, 13, 14, 15, 16, 23, 24, 25, 26, 27, 28],
    "sideplank": [11, 12, 13, 14, 23, 24, 27, 28],
}

EXERCISE_DEFAULTS = {
    "pushups": {
        "ELBOW_ANGLE_DOWN": 110,
        "ELBOW_ANGLE_UP": 140,
        "BACK_ALIGNMENT_MIN": 140,
        "BACK_ALIGNMENT_MAX": 180,
        "MIN_REP_MS": 400,
        "WARNING_COOLDOWN": 2000,
        "startState": "up",
        "countOn": "up",
    },
    "squats": {
        # Hip-below-knee depth plus torso verticality on the way up
        "HIP_BELOW_KNEE_MIN": 0.01,
        "TORSO_VERTICAL_THRESHOLD": 25,
        "HIP_ANGLE_MIN": 130,
        "HIP_ANGLE_COLLAPSE": 60,
        "COLLAPSE_TILT_MIN": 70,
        "TORSO_TILT_MAX": 70,
        "HORIZONTAL_THRESHOLD": 0.08,
        "HEAD_HIP_HORIZONTAL_THRESHOLD": 0.10,
        "HANDS_ON_GROUND_THRESHOLD": 0.07,
        "MIN_REP_MS": 450,
        "WARNING_COOLDOWN": 2000,
        "startState": "up",
        "countOn": "up",
    },
    "lunges": {
        "FRONT_KNEE_ANGLE_DOWN": 100,
        "FRONT_KNEE_ANGLE_UP": 170,
        "BACK_KNEE_ANGLE_DOWN": 110,
        "BACK_KNEE_ANGLE_UP": 160,
        "TORSO_TILT_MAX": 60,
        "HANDS_ON_GROUND_THRESHOLD": 0.07,
        "MIN_REP_MS": 600,
        "WARNING_COOLDOWN": 2000,
        "startState": "up",
        "countOn": "up",
    },
    "jumpingjacks": {
        "SHOULDER_ABDUCTION_DOWN": 40,
        "SHOULDER_ABDUCTION_UP": 145,
        "HIP_ABDUCTION_DOWN": 12,
        "HIP_ABDUCTION_UP": 32,
        "MIN_REP_MS": 800,
        "MIN_UP_MS": 200,
        "MIN_ALTERNATION_TIME": 250,
        "MAX_ALTERNATION_TIME": 2000,
        "HISTORY_MAX": 5,
        "UPRIGHT_TILT_MAX": 45,
        "WARNING_COOLDOWN": 2000,
        "startState": "down",
        "countOn": "down",
    },
    "highknees": {
        # Knee height in torso lengths below the hip
        "KNEE_ABOVE_HIP_THRESHOLD": 0.3,
        "KNEE_FLEXION_PEAK": 120,
        "KNEE_FLEXION_DOWN": 150,
        "HIP_FLEXION_PEAK": 100,
        "HIP_EXTENSION_DOWN": 160,
        "MIN_ALTERNATION_TIME": 250,
        "MAX_ALTERNATION_TIME": 2000,
        "MIN_REP_MS": 400,
        "MIN_VISIBILITY": 0.35,
        "UPRIGHT_TILT_MAX": 45,
        "WARNING_COOLDOWN": 2000,
        "startState": "down",
        "countOn": "up",
    },
    "wallsit": {
        "KNEE_ANGLE_MIN": 60,
        "KNEE_ANGLE_MAX": 130,
        "HIP_ANGLE_MIN": 60,
        "HIP_ANGLE_MAX": 130,
        "KNEE_ANGLE_DIFF_MAX": 30,
        "WALL_ALIGNMENT_MAX": 0.15,
        "TORSO_TILT_MAX": 30,
        "MIN_VISIBILITY": 0.35,
        "WARNING_COOLDOWN": 2000,
        "ENABLE_HOLD_TIMER": True,
    },
    "situps": {
        "SHOULDER_DOWN_RATIO": 0.88,
        "SHOULDER_UP_RATIO": 0.62,
        "HEAD_DOWN_RATIO": 0.90,
        "HEAD_UP_RATIO": 0.55,
        "DOWN_TORSO_COS": 0.35,
        "UP_TORSO_COS": 0.70,
        "HIP_ANGLE_MAX": 160,
        "MIN_METRICS_FOR_DOWN": 1,
        "MIN_METRICS_FOR_UP": 2,
        "MIN_REP_MS": 600,
        "WARNING_COOLDOWN": 2000,
        "startState": "down",
        "countOn": "up",
    },
    "plank": {
        "BACK_ALIGNMENT_MIN": 155,
        "BACK_ALIGNMENT_MAX": 180,
        "HORIZ_MAX_DEG": 35,
        "KNEE_MIN_DEG": 150,
        "KNEE_ANGLE_DIFF_MAX": 20,
        "WARNING_COOLDOWN": 2000,
        "ENABLE_HOLD_TIMER": True,
    },
    "sideplank": {
        "SHOULDER_ANGLE_MIN": 80,
        "SHOULDER_ANGLE_MAX": 100,
        "TORSO_ANGLE_MIN": 160,
        "TORSO_ANGLE_MAX": 180,
        "HIP_SAG_THRESHOLD": 0.05,
        "HIP_HIKE_THRESHOLD": 0.05,
        "ELBOW_ALIGNMENT_THRESHOLD": 0.08,
        "FEET_STACKING_THRESHOLD": 0.1,
        "HEAD_NECK_ANGLE_MIN": 160,
        "HEAD_NECK_ANGLE_MAX": 180,
        "WARNING_COOLDOWN": 2000,
        "ENABLE_HOLD_TIMER": True,
    },
}

# Accepted for older documents but ignored by the active algorithms
DEPRECATED_KEYS = {
    "squats": ("KNEE_ANGLE_DOWN", "KNEE_ANGLE_UP", "TORSO_TILT_MIN"),
}

# (lower, upper) pairs that must keep a gap between them
ORDERED_PAIRS = {
    "pushups": [("ELBOW_ANGLE_DOWN", "ELBOW_ANGLE_UP"), ("BACK_ALIGNMENT_MIN", "BACK_ALIGNMENT_MAX")],
    "squats": [("HIP_ANGLE_COLLAPSE", "HIP_ANGLE_MIN")],
    "lunges": [("FRONT_KNEE_ANGLE_DOWN", "FRONT_KNEE_ANGLE_UP"), ("BACK_KNEE_ANGLE_DOWN", "BACK_KNEE_ANGLE_UP")],
    "jumpingjacks": [("SHOULDER_ABDUCTION_DOWN", "SHOULDER_ABDUCTION_UP"), ("HIP_ABDUCTION_DOWN", "HIP_ABDUCTION_UP"),
                     ("MIN_ALTERNATION_TIME", "MAX_ALTERNATION_TIME")],
    "highknees": [("KNEE_FLEXION_PEAK", "KNEE_FLEXION_DOWN"), ("HIP_FLEXION_PEAK", "HIP_EXTENSION_DOWN"),
                  ("MIN_ALTERNATION_TIME", "MAX_ALTERNATION_TIME")],
    "wallsit": [("KNEE_ANGLE_MIN", "KNEE_ANGLE_MAX"), ("HIP_ANGLE_MIN", "HIP_ANGLE_MAX")],
    "situps": [("SHOULDER_UP_RATIO", "SHOULDER_DOWN_RATIO"), ("HEAD_UP_RATIO", "HEAD_DOWN_RATIO"),
               ("DOWN_TORSO_COS", "UP_TORSO_COS")],
    "plank": [("BACK_ALIGNMENT_MIN", "BACK_ALIGNMENT_MAX")],
    "sideplank": [("SHOULDER_ANGLE_MIN", "SHOULDER_ANGLE_MAX"), ("TORSO_ANGLE_MIN", "TORSO_ANGLE_MAX"),
                  ("HEAD_NECK_ANGLE_MIN", "HEAD_NECK_ANGLE_MAX")],
}

_DEGREE_MARKERS = ("ANGLE", "ABDUCTION", "FLEXION", "EXTENSION", "TILT", "_DEG", "ALIGNMENT_M", "VERTICAL_THRESHOLD")
_INTEGER_KEYS = ("MIN_METRICS_FOR_DOWN", "MIN_METRICS_FOR_UP", "HISTORY_MAX")

DEFAULT_CONFIG = {
    "landmarks": POSE_LANDMARKS,
    "lightingPresets": LIGHTING_PRESETS,
    "calibration": CALIBRATION_DEFAULTS,
    "telemetry": TELEMETRY_DEFAULTS,
    "cadence": CADENCE_DEFAULTS,
    "hysteresis": HYSTERESIS_DEFAULTS,
    "criticalLandmarks": CRITICAL_LANDMARKS_DEFAULTS,
    "exercises": EXERCISE_DEFAULTS,
}


@dataclass(frozen=True)
class ExerciseSettings:
    """Resolved, read-only settings for one exercise."""

    kind: ExerciseKind
    thresholds: MappingProxyType
    good_frames: int
    bad_frames: int
    critical_landmarks: tuple
    start_state: Verdict
    count_on: Verdict
    min_rep_ms: int
    warning_cooldown_ms: int
    hold_timer: bool


@dataclass(frozen=True)
class EngineConfig:
    landmarks: MappingProxyType
    lighting_presets: MappingProxyType
    calibration: MappingProxyType
    telemetry: MappingProxyType
    cadence: MappingProxyType
    hysteresis: MappingProxyType
    critical_landmarks: MappingProxyType
    exercises: MappingProxyType

    def exercise(self, kind):
        kind = parse_exercise(kind)
        thresholds = self.exercises[kind.value]
        hysteresis = self.hysteresis[kind.value]
        if kind.is_hold:
            start_state, count_on = None, None
        else:
            start_state = Verdict(thresholds["startState"])
            count_on = Verdict(thresholds["countOn"])
        return ExerciseSettings(
            kind=kind,
            thresholds=thresholds,
            good_frames=hysteresis["goodFrames"],
            bad_frames=hysteresis["badFrames"],
            critical_landmarks=tuple(self.critical_landmarks[kind.value]),
            start_state=start_state,
            count_on=count_on,
            min_rep_ms=thresholds.get("MIN_REP_MS", 0),
            warning_cooldown_ms=thresholds["WARNING_COOLDOWN"],
            hold_timer=bool(thresholds.get("ENABLE_HOLD_TIMER", False)),
        )

    def min_visibility(self, kind, lighting="normal"):
        """Visibility threshold for an exercise under a lighting preset."""
        kind = parse_exercise(kind)
        if lighting not in self.lighting_presets:
            raise ConfigError(f"unknown lighting preset {lighting!r}; expected one of {sorted(self.lighting_presets)}")
        preset = self.lighting_presets[lighting]["minVisibility"]
        floor = self.exercises[kind.value].get("MIN_VISIBILITY", 0.0)
        return max(preset, floor)


def parse_exercise(value):
    if isinstance(value, ExerciseKind):
        return value
    try:
        return ExerciseKind(str(value).strip().lower())
    except ValueError:
        raise ConfigError(f"unknown exercise {value!r}; expected one of {[k.value for k in ExerciseKind]}") from None


def _deep_merge(base, override):
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def freeze(value):
    """Read-only deep copy: mappings become MappingProxyType, lists and tuples become tuples."""
    if isinstance(value, (dict, MappingProxyType)):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _check_number(where, value, low=None, high=None):
    if not _is_number(value):
        raise ConfigError(f"{where} must be a finite number, got {value!r}")
    if low is not None and value < low:
        raise ConfigError(f"{where}={value} is below {low}")
    if high is not None and value > high:
        raise ConfigError(f"{where}={value} is above {high}")


def _check_frames(where, value):
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ConfigError(f"{where} must be an integer >= 1, got {value!r}")


def _check_mapping(where, value):
    if not isinstance(value, dict):
        raise ConfigError(f"{where} must be a mapping, got {type(value).__name__}")


def _validate_landmarks(table):
    if not isinstance(table, dict):
        raise ConfigError("landmarks must be a mapping of name to index")
    indices = list(table.values())
    for name, idx in table.items():
        if not isinstance(idx, int) or isinstance(idx, bool) or not 0 <= idx < NUM_LANDMARKS:
            raise ConfigError(f"landmark {name} has index {idx!r} outside 0..{NUM_LANDMARKS - 1}")
    if len(set(indices)) != len(indices):
        raise ConfigError("landmark indices must be unique")
    missing = set(POSE_LANDMARKS) - set(table)
    if missing:
        raise ConfigError(f"landmark table is missing {sorted(missing)}")


def _validate_exercise(name, params):
    deprecated = DEPRECATED_KEYS.get(name, ())
    for key in [k for k in params if k in deprecated]:
        logger.warning("Configuration key %s.%s is deprecated and ignored", name, key)
        del params[key]

    unknown = set(params) - set(EXERCISE_DEFAULTS[name])
    if unknown:
        raise ConfigError(f"unknown keys for {name}: {sorted(unknown)}")

    for key, value in params.items():
        where = f"exercises.{name}.{key}"
        if key in ("startState", "countOn"):
            if value not in (Verdict.UP.value, Verdict.DOWN.value):
                raise ConfigError(f"{where} must be 'up' or 'down', got {value!r}")
        elif key == "ENABLE_HOLD_TIMER":
            if not isinstance(value, bool):
                raise ConfigError(f"{where} must be a boolean")
        elif key in _INTEGER_KEYS:
            _check_frames(where, value)
        elif key.endswith("_COS"):
            _check_number(where, value, -1.0, 1.0)
        elif key == "MIN_VISIBILITY":
            _check_number(where, value, 0.0, 1.0)
        elif any(marker in key for marker in _DEGREE_MARKERS):
            # Joint angles come out of calculate_angle clamped to 0..180
            _check_number(where, value, 0.0, 180.0)
        else:
            _check_number(where, value, 0.0)

    for low, high in ORDERED_PAIRS.get(name, ()):
        if params[low] >= params[high]:
            raise ConfigError(f"exercises.{name}: {low}={params[low]} must be below {high}={params[high]}")

    if name == "situps":
        for key in ("MIN_METRICS_FOR_DOWN", "MIN_METRICS_FOR_UP"):
            if params[key] > 3:
                raise ConfigError(f"exercises.situps.{key} cannot exceed the 3 voting metrics")
    if name == "jumpingjacks" and params["HISTORY_MAX"] > 5:
        raise ConfigError("exercises.jumpingjacks.HISTORY_MAX cannot exceed 5 frames")


def validate_config(doc):
    """Check a merged configuration document in place; raise ConfigError on the first problem."""
    unknown = set(doc) - set(DEFAULT_CONFIG)
    if unknown:
        raise ConfigError(f"unknown configuration sections: {sorted(unknown)}")
    for section in DEFAULT_CONFIG:
        _check_mapping(section, doc[section])

    _validate_landmarks(doc["landmarks"])

    presets = doc["lightingPresets"]
    if not presets:
        raise ConfigError("at least one lighting preset is required")
    for name, preset in presets.items():
        _check_mapping(f"lightingPresets.{name}", preset)
        _check_number(f"lightingPresets.{name}.minVisibility", preset.get("minVisibility"), 0.0, 1.0)

    cal = doc["calibration"]
    for key in ("shoulderWidth", "neutralAnkleSpacing", "torsoLength", "neutralHipHeight",
                "neutralKneeAngle", "cameraDistanceFactor", "shoulderKneeDistance", "headKneeDistance"):
        _check_number(f"calibration.{key}", cal[key])
        if cal[key] <= 0:
            raise ConfigError(f"calibration.{key} must be positive")
    _check_number("calibration.neutralKneeAngle", cal["neutralKneeAngle"], 0.0, 180.0)
    _check_number("calibration.calibrationDurationMs", cal["calibrationDurationMs"], 0.0)
    _check_frames("calibration.minStableFrames", cal["minStableFrames"])
    _check_frames("calibration.minViableFrames", cal["minViableFrames"])
    if cal["minViableFrames"] > cal["minStableFrames"]:
        raise ConfigError("calibration.minViableFrames cannot exceed minStableFrames")
    _check_number("calibration.minVisibility", cal["minVisibility"], 0.0, 1.0)

    tel = doc["telemetry"]
    _check_number("telemetry.samplingRate", tel["samplingRate"], 0.0, 1.0)
    _check_frames("telemetry.maxBufferSize", tel["maxBufferSize"])
    _check_mapping("telemetry.eventTypes", tel["eventTypes"])
    unknown = set(tel["eventTypes"]) - set(TELEMETRY_DEFAULTS["eventTypes"])
    if unknown:
        raise ConfigError(f"unknown telemetry event types: {sorted(unknown)}")

    cad = doc["cadence"]
    _check_number("cadence.suddenAccelerationRatio", cad["suddenAccelerationRatio"], 0.0, 1.0)
    _check_frames("cadence.historySize", cad["historySize"])

    for kind in ExerciseKind:
        name = kind.value
        for section in ("hysteresis", "criticalLandmarks", "exercises"):
            if name not in doc[section]:
                raise ConfigError(f"{section} has no entry for {name}")
        hyst = doc["hysteresis"][name]
        _check_mapping(f"hysteresis.{name}", hyst)
        _check_frames(f"hysteresis.{name}.goodFrames", hyst.get("goodFrames"))
        _check_frames(f"hysteresis.{name}.badFrames", hyst.get("badFrames"))
        indices = doc["criticalLandmarks"][name]
        if not isinstance(indices, (list, tuple)):
            raise ConfigError(f"criticalLandmarks.{name} must be a list of landmark indices")
        if not indices:
            raise ConfigError(f"criticalLandmarks.{name} cannot be empty")
        for idx in indices:
            if not isinstance(idx, int) or isinstance(idx, bool) or not 0 <= idx < NUM_LANDMARKS:
                raise ConfigError(f"criticalLandmarks.{name} has index {idx!r} outside 0..{NUM_LANDMARKS - 1}")
        _check_mapping(f"exercises.{name}", doc["exercises"][name])
        _validate_exercise(name, doc["exercises"][name])

    for section in ("hysteresis", "criticalLandmarks", "exercises"):
        unknown = set(doc[section]) - {k.value for k in ExerciseKind}
        if unknown:
            raise ConfigError(f"{section} names unknown exercises: {sorted(unknown)}")


def build_config(overrides=None):
    """Merge overrides over the defaults, validate, and freeze the result."""
    if overrides is not None and not isinstance(overrides, dict):
        raise ConfigError("configuration overrides must be a mapping")
    doc = _deep_merge(DEFAULT_CONFIG, overrides or {})
    validate_config(doc)
    return EngineConfig(
        landmarks=freeze(doc["landmarks"]),
        lighting_presets=freeze(doc["lightingPresets"]),
        calibration=freeze(doc["calibration"]),
        telemetry=freeze(doc["telemetry"]),
        cadence=freeze(doc["cadence"]),
        hysteresis=freeze(doc["hysteresis"]),
        critical_landmarks=freeze(doc["criticalLandmarks"]),
        exercises=freeze(doc["exercises"]),
    )


def load_config(path=None, overrides=None):
    """Load a JSON configuration document over the defaults."""
    doc = {}
    if path is not None:
        try:
            with open(path, "r", encoding="utf-8") as f:
                doc = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"cannot read configuration {path}: {exc}") from exc
        if not isinstance(doc, dict):
            raise ConfigError(f"configuration {path} must hold a JSON object")
        logger.info("Loaded configuration from %s", path)
    if overrides:
        doc = _deep_merge(doc, overrides)
    return build_config(doc)


DEFAULT_ENGINE_CONFIG = build_config()

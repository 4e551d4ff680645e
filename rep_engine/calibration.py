import logging
from dataclasses import asdict, dataclass
from enum import Enum

import numpy as np

from rep_engine.geometric_func import calculate_angle, normalized_distance
from rep_engine.landmarks import Pose
from rep_engine.visibility import VisibilityGate

logger = logging.getLogger(__name__)

CALIBRATION_LANDMARKS = (
    "LEFT_SHOULDER", "RIGHT_SHOULDER",
    "LEFT_HIP", "RIGHT_HIP",
    "LEFT_KNEE", "RIGHT_KNEE",
    "LEFT_ANKLE", "RIGHT_ANKLE",
)


@dataclass(frozen=True)
class CalibrationBaseline:
    """Per-session reference measurements; replaced, never mutated, on recalibration."""

    shoulder_width: float
    torso_length: float
    neutral_hip_height: float
    neutral_knee_angle: float
    camera_distance_factor: float
    neutral_ankle_spacing: float
    shoulder_knee_distance: float
    head_knee_distance: float
    is_default: bool = False
    frame_count: int = 0

    @classmethod
    def defaults(cls, calibration_config, frame_count=0):
        c = calibration_config
        return cls(
            shoulder_width=float(c["shoulderWidth"]),
            torso_length=float(c["torsoLength"]),
            neutral_hip_height=float(c["neutralHipHeight"]),
            neutral_knee_angle=float(c["neutralKneeAngle"]),
            camera_distance_factor=float(c["cameraDistanceFactor"]),
            neutral_ankle_spacing=float(c["neutralAnkleSpacing"]),
            shoulder_knee_distance=float(c["shoulderKneeDistance"]),
            head_knee_distance=float(c["headKneeDistance"]),
            is_default=True,
            frame_count=frame_count,
        )

    def as_dict(self):
        return asdict(self)


class CalibrationState(str, Enum):
    COLLECTING = "collecting"
    COMPLETE = "complete"
    ABORTED = "aborted"


class Calibration:
    """Collects neutral-pose measurements and turns them into a baseline.

    Usable frames contribute one sample each. The run ends once minStableFrames
    samples exist or calibrationDurationMs has passed since the first frame,
    whichever comes first. Ending on time with fewer than minViableFrames
    samples aborts to the default baseline so an exercise is never held back.
    """

    def __init__(self, calibration_config, landmark_table=None):
        self.config = calibration_config
        self.table = landmark_table
        pose = Pose(None, landmark_table)
        self.gate = VisibilityGate([pose.index(name) for name in CALIBRATION_LANDMARKS],
                                   calibration_config["minVisibility"])
        self.state = CalibrationState.COLLECTING
        self.baseline = None
        self.started_ms = None
        self.samples = {
            "shoulder_width": [],
            "torso_length": [],
            "neutral_hip_height": [],
            "neutral_knee_angle": [],
            "neutral_ankle_spacing": [],
            "shoulder_knee_distance": [],
            "head_knee_distance": [],
        }

    @property
    def frame_count(self):
        return len(self.samples["shoulder_width"])

    @property
    def finished(self):
        return self.state is not CalibrationState.COLLECTING

    def elapsed_ms(self, timestamp_ms):
        return 0 if self.started_ms is None else timestamp_ms - self.started_ms

    def add_frame(self, frame):
        """Feed one frame; returns the calibration visibility gate result."""
        if self.finished:
            raise RuntimeError("calibration already finished")
        if self.started_ms is None:
            self.started_ms = frame.timestamp_ms

        gate = self.gate.check(frame)
        if gate.usable:
            self._measure(Pose(frame, self.table))

        if self.frame_count >= self.config["minStableFrames"]:
            self._finish()
        elif self.elapsed_ms(frame.timestamp_ms) >= self.config["calibrationDurationMs"]:
            if self.frame_count >= self.config["minViableFrames"]:
                self._finish()
            else:
                self._abort()
        return gate

    def _measure(self, pose):
        shoulder_mid = pose.mid("LEFT_SHOULDER", "RIGHT_SHOULDER")
        hip_mid = pose.mid("LEFT_HIP", "RIGHT_HIP")
        knee_mid = pose.mid("LEFT_KNEE", "RIGHT_KNEE")
        left_knee = calculate_angle(pose["LEFT_HIP"], pose["LEFT_KNEE"], pose["LEFT_ANKLE"])
        right_knee = calculate_angle(pose["RIGHT_HIP"], pose["RIGHT_KNEE"], pose["RIGHT_ANKLE"])

        s = self.samples
        s["shoulder_width"].append(normalized_distance(pose["LEFT_SHOULDER"], pose["RIGHT_SHOULDER"]))
        s["torso_length"].append(normalized_distance(shoulder_mid, hip_mid))
        s["neutral_hip_height"].append(hip_mid[1])
        s["neutral_knee_angle"].append((left_knee + right_knee) / 2)
        s["neutral_ankle_spacing"].append(normalized_distance(pose["LEFT_ANKLE"], pose["RIGHT_ANKLE"]))
        s["shoulder_knee_distance"].append(normalized_distance(shoulder_mid, knee_mid))
        if pose.visible("NOSE", self.config["minVisibility"]):
            s["head_knee_distance"].append(normalized_distance(pose["NOSE"], knee_mid))

    def _finish(self):
        defaults = CalibrationBaseline.defaults(self.config)
        values = {}
        for name, samples in self.samples.items():
            # Median per measurement; missing or zero falls back to the default
            value = float(np.median(samples)) if samples else 0.0
            values[name] = value if value > 0 else getattr(defaults, name)

        # Similar triangles: a wider shoulder span than the reference means a closer camera
        values["camera_distance_factor"] = self.config["shoulderWidth"] / values["shoulder_width"]
        self.baseline = CalibrationBaseline(is_default=False, frame_count=self.frame_count, **values)
        self.state = CalibrationState.COMPLETE
        logger.info("Calibration complete after %d frames: %s", self.frame_count, self.baseline)

    def _abort(self):
        self.baseline = CalibrationBaseline.defaults(self.config, frame_count=self.frame_count)
        self.state = CalibrationState.ABORTED
        logger.warning("Calibration aborted with %d stable frames (need %d); using default baseline",
                       self.frame_count, self.config["minViableFrames"])

from dataclasses import dataclass

import numpy as np

NUM_LANDMARKS = 33

# Standard 33-point numbering used by MediaPipe Pose
POSE_LANDMARKS = {
    "NOSE": 0,
    "LEFT_EYE_INNER": 1,
    "LEFT_EYE": 2,
    "LEFT_EYE_OUTER": 3,
    "RIGHT_EYE_INNER": 4,
    "RIGHT_EYE": 5,
    "RIGHT_EYE_OUTER": 6,
    "LEFT_EAR": 7,
    "RIGHT_EAR": 8,
    "MOUTH_LEFT": 9,
    "MOUTH_RIGHT": 10,
    "LEFT_SHOULDER": 11,
    "RIGHT_SHOULDER": 12,
    "LEFT_ELBOW": 13,
    "RIGHT_ELBOW": 14,
    "LEFT_WRIST": 15,
    "RIGHT_WRIST": 16,
    "LEFT_PINKY": 17,
    "RIGHT_PINKY": 18,
    "LEFT_INDEX": 19,
    "RIGHT_INDEX": 20,
    "LEFT_THUMB": 21,
    "RIGHT_THUMB": 22,
    "LEFT_HIP": 23,
    "RIGHT_HIP": 24,
    "LEFT_KNEE": 25,
    "RIGHT_KNEE": 26,
    "LEFT_ANKLE": 27,
    "RIGHT_ANKLE": 28,
    "LEFT_HEEL": 29,
    "RIGHT_HEEL": 30,
    "LEFT_FOOT_INDEX": 31,
    "RIGHT_FOOT_INDEX": 32,
}


@dataclass(frozen=True)
class Landmark:
    x: float
    y: float
    z: float = 0.0
    visibility: float = 1.0


@dataclass(frozen=True)
class Frame:
    """One timestamped snapshot of all 33 landmarks."""

    timestamp_ms: int
    landmarks: tuple

    def __post_init__(self):
        landmarks = tuple(self.landmarks)
        if len(landmarks) != NUM_LANDMARKS:
            raise ValueError(f"a frame needs {NUM_LANDMARKS} landmarks, got {len(landmarks)}")
        object.__setattr__(self, "landmarks", landmarks)

    def __getitem__(self, idx):
        return self.landmarks[idx]

    @classmethod
    def from_landmarks(cls, landmarks, timestamp_ms):
        """Build a frame from any sequence of objects exposing x, y, z and visibility."""
        points = []
        for lm in landmarks:
            visibility = getattr(lm, "visibility", None)
            points.append(Landmark(
                float(lm.x),
                float(lm.y),
                float(getattr(lm, "z", 0.0) or 0.0),
                1.0 if visibility is None else float(visibility),
            ))
        return cls(int(timestamp_ms), tuple(points))

    @classmethod
    def from_array(cls, array, timestamp_ms):
        """Build a frame from a (33, 4) array of x, y, z, visibility rows."""
        array = np.asarray(array, dtype=float)
        if array.shape != (NUM_LANDMARKS, 4):
            raise ValueError(f"expected an array of shape ({NUM_LANDMARKS}, 4), got {array.shape}")
        return cls(int(timestamp_ms), tuple(Landmark(*row) for row in array.tolist()))

    def to_array(self):
        return np.array([[lm.x, lm.y, lm.z, lm.visibility] for lm in self.landmarks])


class Pose:
    """Name-based view of a frame through a landmark index table."""

    def __init__(self, frame, landmark_table=None):
        self.frame = frame
        self.table = landmark_table if landmark_table is not None else POSE_LANDMARKS

    @property
    def timestamp_ms(self):
        return self.frame.timestamp_ms

    def __getitem__(self, name):
        return self.frame[self.table[name]]

    def index(self, name):
        return self.table[name]

    def visible(self, name, min_visibility):
        return self[name].visibility >= min_visibility

    def mid(self, left, right):
        """Midpoint of two named landmarks as an (x, y) tuple."""
        a, b = self[left], self[right]
        return ((a.x + b.x) / 2, (a.y + b.y) / 2)

    def side(self, side, part):
        return self[f"{side.upper()}_{part}"]

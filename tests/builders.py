import math
from collections import ChainMap
from dataclasses import replace

from rep_engine.calibration import CalibrationBaseline
from rep_engine.config import DEFAULT_ENGINE_CONFIG
from rep_engine.landmarks import NUM_LANDMARKS, POSE_LANDMARKS, Frame, Landmark, Pose


def make_frame(points=None, timestamp_ms=0, visibility=None):
    """Frame with every landmark at the image centre, overridden by name.

    ``points`` maps names to (x, y) or (x, y, visibility); ``visibility`` maps
    names to a visibility score applied on top.
    """
    landmarks = [Landmark(0.5, 0.5, 0.0, 1.0)] * NUM_LANDMARKS
    for name, point in (points or {}).items():
        vis = point[2] if len(point) > 2 else 1.0
        landmarks[POSE_LANDMARKS[name]] = Landmark(point[0], point[1], 0.0, vis)
    for name, vis in (visibility or {}).items():
        idx = POSE_LANDMARKS[name]
        landmarks[idx] = replace(landmarks[idx], visibility=vis)
    return Frame(timestamp_ms, landmarks)


def make_pose(points, timestamp_ms=0, visibility=None):
    return Pose(make_frame(points, timestamp_ms, visibility))


def bend(vertex, angle, length=0.1, direction=1):
    """Point that makes ``angle`` degrees at ``vertex`` with a point straight above it."""
    rad = math.radians(angle)
    return (vertex[0] + direction * length * math.sin(rad), vertex[1] - length * math.cos(rad))


def params_for(kind, min_visibility=0.35, **overrides):
    thresholds = DEFAULT_ENGINE_CONFIG.exercise(kind).thresholds
    return ChainMap(dict(overrides), {"MIN_VISIBILITY": min_visibility}, thresholds)


def default_baseline(**changes):
    baseline = CalibrationBaseline.defaults(DEFAULT_ENGINE_CONFIG.calibration)
    return replace(baseline, **changes) if changes else baseline


STANDING = {
    "NOSE": (0.5, 0.15),
    "LEFT_EAR": (0.47, 0.14),
    "RIGHT_EAR": (0.53, 0.14),
    "LEFT_SHOULDER": (0.45, 0.3),
    "RIGHT_SHOULDER": (0.55, 0.3),
    "LEFT_ELBOW": (0.43, 0.42),
    "RIGHT_ELBOW": (0.57, 0.42),
    "LEFT_WRIST": (0.42, 0.52),
    "RIGHT_WRIST": (0.58, 0.52),
    "LEFT_HIP": (0.46, 0.55),
    "RIGHT_HIP": (0.54, 0.55),
    "LEFT_KNEE": (0.46, 0.72),
    "RIGHT_KNEE": (0.54, 0.72),
    "LEFT_ANKLE": (0.46, 0.9),
    "RIGHT_ANKLE": (0.54, 0.9),
}

SQUAT_BOTTOM = dict(
    STANDING,
    NOSE=(0.5, 0.35),
    LEFT_SHOULDER=(0.45, 0.5),
    RIGHT_SHOULDER=(0.55, 0.5),
    LEFT_ELBOW=(0.4, 0.58),
    RIGHT_ELBOW=(0.6, 0.58),
    LEFT_WRIST=(0.42, 0.6),
    RIGHT_WRIST=(0.58, 0.6),
    LEFT_HIP=(0.46, 0.75),
    RIGHT_HIP=(0.54, 0.75),
    LEFT_KNEE=(0.4, 0.72),
    RIGHT_KNEE=(0.6, 0.72),
)


def pushup_points(elbow_angle, sag=False):
    """Side view of a push-up with both elbows at ``elbow_angle``."""
    hip_y = 0.55 if sag else 0.4
    elbow = (0.3, 0.5)
    wrist = bend(elbow, elbow_angle)
    return {
        "NOSE": (0.2, 0.42),
        "LEFT_SHOULDER": (0.3, 0.4),
        "RIGHT_SHOULDER": (0.3, 0.4),
        "LEFT_ELBOW": elbow,
        "RIGHT_ELBOW": elbow,
        "LEFT_WRIST": wrist,
        "RIGHT_WRIST": wrist,
        "LEFT_HIP": (0.5, hip_y),
        "RIGHT_HIP": (0.5, hip_y),
        "LEFT_KNEE": (0.65, 0.4),
        "RIGHT_KNEE": (0.65, 0.4),
        "LEFT_ANKLE": (0.8, 0.4),
        "RIGHT_ANKLE": (0.8, 0.4),
    }


def lunge_points(left_knee_angle, right_knee_angle):
    """Front view with each knee bent to the given angle."""
    left_knee = (0.45, 0.7)
    right_knee = (0.55, 0.7)
    return dict(
        STANDING,
        LEFT_SHOULDER=(0.45, 0.25),
        RIGHT_SHOULDER=(0.55, 0.25),
        LEFT_WRIST=(0.44, 0.45),
        RIGHT_WRIST=(0.56, 0.45),
        LEFT_HIP=(0.45, 0.5),
        RIGHT_HIP=(0.55, 0.5),
        LEFT_KNEE=left_knee,
        RIGHT_KNEE=right_knee,
        LEFT_ANKLE=bend(left_knee, left_knee_angle, 0.2),
        RIGHT_ANKLE=bend(right_knee, right_knee_angle, 0.2, direction=-1),
    )


def jumping_jack_points(up):
    if up:
        arms = {"LEFT_WRIST": (0.4, 0.05), "RIGHT_WRIST": (0.6, 0.05)}
        legs = {"LEFT_ANKLE": (0.35, 0.9), "RIGHT_ANKLE": (0.65, 0.9)}
    else:
        arms = {"LEFT_WRIST": (0.44, 0.55), "RIGHT_WRIST": (0.56, 0.55)}
        legs = {"LEFT_ANKLE": (0.48, 0.9), "RIGHT_ANKLE": (0.52, 0.9)}
    return dict(STANDING, LEFT_HIP=(0.47, 0.55), RIGHT_HIP=(0.53, 0.55), **arms, **legs)


def high_knee_points(raised=None):
    """Standing with straight legs, or with one thigh raised level with the hip."""
    points = dict(STANDING)
    if raised == "left":
        points.update(LEFT_KNEE=(0.6, 0.55), LEFT_ANKLE=(0.6, 0.72))
    elif raised == "right":
        points.update(RIGHT_KNEE=(0.4, 0.55), RIGHT_ANKLE=(0.4, 0.72))
    return points


def lying_situp_points():
    return {
        "NOSE": (0.1, 0.8),
        "LEFT_SHOULDER": (0.2, 0.8),
        "RIGHT_SHOULDER": (0.2, 0.8),
        "LEFT_WRIST": (0.3, 0.8),
        "RIGHT_WRIST": (0.3, 0.8),
        "LEFT_HIP": (0.5, 0.8),
        "RIGHT_HIP": (0.5, 0.8),
        "LEFT_KNEE": (0.65, 0.65),
        "RIGHT_KNEE": (0.65, 0.65),
        "LEFT_ANKLE": (0.8, 0.8),
        "RIGHT_ANKLE": (0.8, 0.8),
    }


def sitting_situp_points():
    """Torso at cosine 0.75 from vertical, shoulders 0.6 from the knees, head hidden."""
    shoulder = (0.5 - 0.3 * math.sqrt(1 - 0.75 ** 2), 0.8 - 0.3 * 0.75)
    knee = (shoulder[0] + 0.6, shoulder[1])
    return {
        "NOSE": (shoulder[0], shoulder[1] - 0.1, 0.0),
        "LEFT_SHOULDER": shoulder,
        "RIGHT_SHOULDER": shoulder,
        "LEFT_WRIST": (0.6, 0.6),
        "RIGHT_WRIST": (0.6, 0.6),
        "LEFT_HIP": (0.5, 0.8),
        "RIGHT_HIP": (0.5, 0.8),
        "LEFT_KNEE": knee,
        "RIGHT_KNEE": knee,
        "LEFT_ANKLE": (knee[0] + 0.1, 0.8),
        "RIGHT_ANKLE": (knee[0] + 0.1, 0.8),
    }


def wall_sit_points():
    points = {}
    for side in ("LEFT", "RIGHT"):
        points.update({
            f"{side}_SHOULDER": (0.3, 0.3),
            f"{side}_HIP": (0.3, 0.6),
            f"{side}_KNEE": (0.5, 0.6),
            f"{side}_ANKLE": (0.5, 0.85),
        })
    return points


def plank_points(sag=False):
    hip_y = 0.6 if sag else 0.5
    points = {}
    for side in ("LEFT", "RIGHT"):
        points.update({
            f"{side}_SHOULDER": (0.3, 0.5),
            f"{side}_ELBOW": (0.3, 0.6),
            f"{side}_WRIST": (0.35, 0.6),
            f"{side}_HIP": (0.5, hip_y),
            f"{side}_KNEE": (0.65, 0.5),
            f"{side}_ANKLE": (0.8, 0.5),
        })
    return points


def side_plank_points(sag=False):
    hip = (0.55, 0.65) if sag else (0.55, 0.55)
    return {
        "LEFT_EAR": (0.2, 0.48),
        "LEFT_SHOULDER": (0.3, 0.5),
        "LEFT_ELBOW": (0.3, 0.6),
        "LEFT_WRIST": (0.4, 0.6),
        "LEFT_HIP": hip,
        "LEFT_ANKLE": (0.8, 0.6),
        "RIGHT_EAR": (0.2, 0.46, 0.6),
        "RIGHT_SHOULDER": (0.3, 0.48, 0.6),
        "RIGHT_ELBOW": (0.3, 0.58, 0.6),
        "RIGHT_WRIST": (0.4, 0.58, 0.6),
        "RIGHT_HIP": (hip[0], hip[1] - 0.02, 0.6),
        "RIGHT_ANKLE": (0.8, 0.58, 0.6),
    }

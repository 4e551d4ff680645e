"""Per-exercise frame classifiers.

Every classifier has the signature ``classify(pose, baseline, history, params)``
and returns a :class:`ClassifierResult`. Classifiers read the rolling history but
never mutate it or the session; anything they need remembered across frames goes
back through ``ClassifierResult.aux`` and the session stores it.

Angle thresholds are inclusive: a value equal to a DOWN or UP bound crosses it.
"""
from collections import deque
from dataclasses import dataclass, field

import numpy as np

from rep_engine.config import ExerciseKind, Verdict
from rep_engine.geometric_func import (
    calculate_angle,
    calculate_horizontal_distance,
    horizontal_deviation,
    normalized_distance,
    torso_tilt,
    vertical_cosine,
)

HISTORY_SIZE = 5


@dataclass(frozen=True)
class ClassifierResult:
    verdict: Verdict
    # None when the classifier has no form opinion for this frame
    form_ok: bool = None
    issue: str = None
    metrics: dict = field(default_factory=dict)
    aux: dict = field(default_factory=dict)


class RollingHistory:
    """Short per-session memory of recent classifier outputs."""

    def __init__(self, size=HISTORY_SIZE):
        self.metrics = deque(maxlen=size)
        self.verdicts = deque(maxlen=size)
        self.aux = {}

    def push(self, result):
        self.metrics.append(dict(result.metrics))
        self.verdicts.append(result.verdict)
        self.aux.update(result.aux)

    def recent(self, key, count=None):
        values = [m[key] for m in self.metrics if m.get(key) is not None]
        if count is not None:
            values = values[-count:] if count > 0 else []
        return values

    @property
    def last_verdict(self):
        return self.verdicts[-1] if self.verdicts else None

    def clear(self):
        self.metrics.clear()
        self.verdicts.clear()
        self.aux.clear()


def _limb_angles(pose, first, vertex, last):
    left = calculate_angle(pose[f"LEFT_{first}"], pose[f"LEFT_{vertex}"], pose[f"LEFT_{last}"])
    right = calculate_angle(pose[f"RIGHT_{first}"], pose[f"RIGHT_{vertex}"], pose[f"RIGHT_{last}"])
    return left, right


def _hands_on_ground(pose, params):
    """Both wrists at foot level, as in a push-up or bear crawl."""
    if not (pose.visible("LEFT_WRIST", params["MIN_VISIBILITY"])
            and pose.visible("RIGHT_WRIST", params["MIN_VISIBILITY"])):
        return False
    wrist_y = pose.mid("LEFT_WRIST", "RIGHT_WRIST")[1]
    foot_y = pose.mid("LEFT_ANKLE", "RIGHT_ANKLE")[1]
    return wrist_y >= foot_y - params["HANDS_ON_GROUND_THRESHOLD"]


def _horizontal_body(pose, params):
    shoulder = pose.mid("LEFT_SHOULDER", "RIGHT_SHOULDER")
    hip = pose.mid("LEFT_HIP", "RIGHT_HIP")
    if abs(shoulder[1] - hip[1]) > params["HORIZONTAL_THRESHOLD"]:
        return False
    # Head check only when the nose is visible
    if not pose.visible("NOSE", params["MIN_VISIBILITY"]):
        return True
    return abs(pose["NOSE"].y - hip[1]) <= params["HEAD_HIP_HORIZONTAL_THRESHOLD"]


# Push-ups: averaged elbow angle with a DOWN/UP gap, back alignment for form
def classify_pushups(pose, baseline, history, params):
    left, right = _limb_angles(pose, "SHOULDER", "ELBOW", "WRIST")
    elbow = (left + right) / 2
    back = calculate_angle(pose.mid("LEFT_SHOULDER", "RIGHT_SHOULDER"),
                           pose.mid("LEFT_HIP", "RIGHT_HIP"),
                           pose.mid("LEFT_KNEE", "RIGHT_KNEE"))

    if elbow <= params["ELBOW_ANGLE_DOWN"]:
        verdict = Verdict.DOWN
    elif elbow >= params["ELBOW_ANGLE_UP"]:
        verdict = Verdict.UP
    else:
        verdict = Verdict.INVALID

    form_ok = params["BACK_ALIGNMENT_MIN"] <= back <= params["BACK_ALIGNMENT_MAX"]
    return ClassifierResult(
        verdict,
        form_ok=form_ok,
        issue=None if form_ok else "Keep your body in a straight line",
        metrics={"left_elbow": left, "right_elbow": right, "elbow": elbow, "back_alignment": back},
    )


# Squats: hip below knee is DOWN, hip back at knee level with an upright torso is UP
def classify_squats(pose, baseline, history, params):
    shoulder = pose.mid("LEFT_SHOULDER", "RIGHT_SHOULDER")
    hip = pose.mid("LEFT_HIP", "RIGHT_HIP")
    knee = pose.mid("LEFT_KNEE", "RIGHT_KNEE")
    hip_drop = hip[1] - knee[1]
    tilt = torso_tilt(shoulder, hip)
    left_hip, right_hip = _limb_angles(pose, "SHOULDER", "HIP", "KNEE")
    hip_angle = (left_hip + right_hip) / 2
    horizontal = _horizontal_body(pose, params)
    hands_down = _hands_on_ground(pose, params)
    hip_below_knee = hip_drop >= params["HIP_BELOW_KNEE_MIN"]

    if horizontal or hands_down:
        verdict = Verdict.INVALID
    elif hip_below_knee:
        verdict = Verdict.DOWN
    elif tilt <= params["TORSO_VERTICAL_THRESHOLD"]:
        verdict = Verdict.UP
    else:
        verdict = Verdict.INVALID

    issue = None
    if horizontal:
        issue = "Stand up to squat, your body is horizontal"
    elif hands_down:
        issue = "Keep your hands off the ground"
    elif hip_angle < params["HIP_ANGLE_COLLAPSE"] and tilt > params["COLLAPSE_TILT_MIN"]:
        issue = "Keep your back straight - avoid rounding"
    elif not hip_below_knee:
        if hip_angle < params["HIP_ANGLE_MIN"]:
            issue = "Keep your chest up"
        elif tilt > params["TORSO_TILT_MAX"]:
            issue = "Avoid leaning too far forward"

    return ClassifierResult(
        verdict,
        form_ok=issue is None,
        issue=issue,
        metrics={"hip_drop": hip_drop, "torso_tilt": tilt, "hip_angle": hip_angle},
    )


# Lunges: the more bent knee is the front leg; both knees must bend for DOWN and straighten for UP
def classify_lunges(pose, baseline, history, params):
    left, right = _limb_angles(pose, "HIP", "KNEE", "ANKLE")
    front, back = min(left, right), max(left, right)
    tilt = torso_tilt(pose.mid("LEFT_SHOULDER", "RIGHT_SHOULDER"), pose.mid("LEFT_HIP", "RIGHT_HIP"))
    hands_down = _hands_on_ground(pose, params)

    if front <= params["FRONT_KNEE_ANGLE_DOWN"] and back <= params["BACK_KNEE_ANGLE_DOWN"]:
        verdict = Verdict.INVALID if hands_down else Verdict.DOWN
    elif front >= params["FRONT_KNEE_ANGLE_UP"] and back >= params["BACK_KNEE_ANGLE_UP"]:
        verdict = Verdict.UP
    else:
        verdict = Verdict.INVALID

    issue = None
    if hands_down:
        issue = "Keep your hands off the ground"
    elif tilt > params["TORSO_TILT_MAX"]:
        issue = "Keep your torso upright"
    return ClassifierResult(
        verdict,
        form_ok=issue is None,
        issue=issue,
        metrics={"front_knee": front, "back_knee": back, "front_side": "left" if left <= right else "right",
                 "torso_tilt": tilt},
    )


# Jumping jacks: arms overhead and legs apart (held MIN_UP_MS) is UP, arms down and feet together is DOWN;
# a DOWN only closes the jump when it lands MIN_ALTERNATION_TIME..MAX_ALTERNATION_TIME after the UP
def classify_jumpingjacks(pose, baseline, history, params):
    now = pose.timestamp_ms
    left_arm, right_arm = _limb_angles(pose, "HIP", "SHOULDER", "WRIST")
    hip = pose.mid("LEFT_HIP", "RIGHT_HIP")
    spread = calculate_angle(pose["LEFT_ANKLE"], hip, pose["RIGHT_ANKLE"])
    window = history.recent("leg_spread", params["HISTORY_MAX"] - 1) + [spread]
    smoothed = float(np.mean(window))
    tilt = torso_tilt(pose.mid("LEFT_SHOULDER", "RIGHT_SHOULDER"), hip)

    arms_up = min(left_arm, right_arm) >= params["SHOULDER_ABDUCTION_UP"]
    arms_down = max(left_arm, right_arm) <= params["SHOULDER_ABDUCTION_DOWN"]
    up_since = history.aux.get("up_pose_since")
    # Start of the last accepted UP pose, open until a DOWN closes the jump
    cycle_start = history.aux.get("up_cycle_ms")
    metrics = {"left_arm": left_arm, "right_arm": right_arm, "leg_spread": spread,
               "leg_spread_smoothed": smoothed, "torso_tilt": tilt}

    if arms_up and smoothed >= params["HIP_ABDUCTION_UP"]:
        if up_since is None:
            up_since = now
        if now - up_since >= params["MIN_UP_MS"]:
            verdict = Verdict.UP
            cycle_start = up_since
        else:
            verdict = Verdict.INVALID
    elif arms_down and smoothed <= params["HIP_ABDUCTION_DOWN"]:
        up_since = None
        if cycle_start is None:
            verdict = Verdict.DOWN
        else:
            cycle = now - cycle_start
            metrics["cycle_ms"] = cycle
            if params["MIN_ALTERNATION_TIME"] <= cycle <= params["MAX_ALTERNATION_TIME"]:
                verdict = Verdict.DOWN
                cycle_start = None
            else:
                # Outside the window a DOWN pose does not close the jump
                verdict = Verdict.INVALID
    else:
        up_since = None
        verdict = Verdict.INVALID

    form_ok = tilt <= params["UPRIGHT_TILT_MAX"]
    return ClassifierResult(
        verdict,
        form_ok=form_ok,
        issue=None if form_ok else "Stand upright",
        metrics=metrics,
        aux={"up_pose_since": up_since, "up_cycle_ms": cycle_start},
    )


def _knee_raised(pose, side, torso, params):
    knee_angle = calculate_angle(pose.side(side, "HIP"), pose.side(side, "KNEE"), pose.side(side, "ANKLE"))
    hip_angle = calculate_angle(pose.side(side, "SHOULDER"), pose.side(side, "HIP"), pose.side(side, "KNEE"))
    knee_height = (pose.side(side, "KNEE").y - pose.side(side, "HIP").y) / torso
    raised = ((knee_angle <= params["KNEE_FLEXION_PEAK"] or knee_height <= params["KNEE_ABOVE_HIP_THRESHOLD"])
              and hip_angle <= params["HIP_FLEXION_PEAK"])
    down = knee_angle >= params["KNEE_FLEXION_DOWN"] and hip_angle >= params["HIP_EXTENSION_DOWN"]
    return raised, down, knee_angle, hip_angle, knee_height


# High knees: a raised knee is UP, both legs extended is DOWN; raises must alternate legs
def classify_highknees(pose, baseline, history, params):
    now = pose.timestamp_ms
    shoulder = pose.mid("LEFT_SHOULDER", "RIGHT_SHOULDER")
    hip = pose.mid("LEFT_HIP", "RIGHT_HIP")
    torso = normalized_distance(shoulder, hip) or baseline.torso_length
    tilt = torso_tilt(shoulder, hip)

    legs = {side: _knee_raised(pose, side, torso, params) for side in ("left", "right")}
    metrics = {"torso_tilt": tilt}
    for side, (_, _, knee_angle, hip_angle, knee_height) in legs.items():
        metrics[f"{side}_knee"] = knee_angle
        metrics[f"{side}_hip"] = hip_angle
        metrics[f"{side}_knee_height"] = knee_height

    active = history.aux.get("active_leg")
    last_leg = history.aux.get("last_raise_leg")
    last_at = history.aux.get("last_raise_ms")
    raised = [side for side, leg in legs.items() if leg[0]]
    aux = {}

    if shoulder[1] >= hip[1]:
        # Shoulders level with or below the hips: lying or planking, not high knees
        verdict = Verdict.INVALID
    elif raised:
        leg = min(raised, key=lambda side: legs[side][4])
        if leg == active:
            verdict = Verdict.UP
        else:
            interval = None if last_at is None else now - last_at
            fresh_bout = interval is None or interval > params["MAX_ALTERNATION_TIME"]
            alternating = (leg != last_leg and interval is not None
                           and params["MIN_ALTERNATION_TIME"] <= interval <= params["MAX_ALTERNATION_TIME"])
            if fresh_bout or alternating:
                verdict = Verdict.UP
                aux = {"active_leg": leg, "last_raise_leg": leg, "last_raise_ms": now}
            else:
                verdict = Verdict.INVALID
                aux = {"active_leg": None}
        metrics["raised_leg"] = leg
    elif legs["left"][1] and legs["right"][1]:
        verdict = Verdict.DOWN
        aux = {"active_leg": None}
    else:
        verdict = Verdict.INVALID

    form_ok = tilt <= params["UPRIGHT_TILT_MAX"]
    return ClassifierResult(
        verdict,
        form_ok=form_ok,
        issue=None if form_ok else "Stand upright",
        metrics=metrics,
        aux=aux,
    )


# Sit-ups: three metrics vote against the lying-down baseline; UP needs the stronger consensus
def classify_situps(pose, baseline, history, params):
    shoulder = pose.mid("LEFT_SHOULDER", "RIGHT_SHOULDER")
    hip = pose.mid("LEFT_HIP", "RIGHT_HIP")
    knee = pose.mid("LEFT_KNEE", "RIGHT_KNEE")
    left_hip, right_hip = _limb_angles(pose, "SHOULDER", "HIP", "KNEE")
    hip_angle = (left_hip + right_hip) / 2

    shoulder_ratio = normalized_distance(shoulder, knee) / baseline.shoulder_knee_distance
    head_ratio = None
    if pose.visible("NOSE", params["MIN_VISIBILITY"]):
        head_ratio = normalized_distance(pose["NOSE"], knee) / baseline.head_knee_distance
    torso_cos = vertical_cosine(shoulder, hip)

    down_votes = 0
    up_votes = 0
    if shoulder_ratio >= params["SHOULDER_DOWN_RATIO"]:
        down_votes += 1
    elif shoulder_ratio <= params["SHOULDER_UP_RATIO"]:
        up_votes += 1
    if head_ratio is not None:
        if head_ratio >= params["HEAD_DOWN_RATIO"]:
            down_votes += 1
        elif head_ratio <= params["HEAD_UP_RATIO"]:
            up_votes += 1
    if torso_cos <= params["DOWN_TORSO_COS"]:
        down_votes += 1
    elif torso_cos >= params["UP_TORSO_COS"]:
        up_votes += 1

    knees_bent = hip_angle <= params["HIP_ANGLE_MAX"]
    if up_votes >= params["MIN_METRICS_FOR_UP"]:
        verdict = Verdict.UP
    elif down_votes >= params["MIN_METRICS_FOR_DOWN"] and knees_bent:
        verdict = Verdict.DOWN
    else:
        verdict = Verdict.INVALID

    return ClassifierResult(
        verdict,
        form_ok=knees_bent,
        issue=None if knees_bent else "Bend your knees",
        metrics={"shoulder_ratio": shoulder_ratio, "head_ratio": head_ratio, "torso_cos": torso_cos,
                 "hip_angle": hip_angle, "up_votes": up_votes, "down_votes": down_votes},
    )


def _posture_result(issues, metrics):
    verdict = Verdict.BAD if issues else Verdict.GOOD
    return ClassifierResult(
        verdict,
        form_ok=not issues,
        issue=issues[0] if issues else None,
        metrics=metrics,
    )


# Wall sit: knees and hips near 90 degrees, symmetric legs, back against the wall
def classify_wallsit(pose, baseline, history, params):
    left_knee, right_knee = _limb_angles(pose, "HIP", "KNEE", "ANKLE")
    left_hip, right_hip = _limb_angles(pose, "SHOULDER", "HIP", "KNEE")
    shoulder = pose.mid("LEFT_SHOULDER", "RIGHT_SHOULDER")
    hip = pose.mid("LEFT_HIP", "RIGHT_HIP")
    wall_alignment = calculate_horizontal_distance(shoulder, hip)
    tilt = torso_tilt(shoulder, hip)

    issues = []
    knee_lo, knee_hi = params["KNEE_ANGLE_MIN"], params["KNEE_ANGLE_MAX"]
    if not (knee_lo <= left_knee <= knee_hi and knee_lo <= right_knee <= knee_hi):
        issues.append("Sink to 90° knees")
    if abs(left_knee - right_knee) > params["KNEE_ANGLE_DIFF_MAX"]:
        issues.append("Even out both legs")
    hip_lo, hip_hi = params["HIP_ANGLE_MIN"], params["HIP_ANGLE_MAX"]
    if not (hip_lo <= left_hip <= hip_hi and hip_lo <= right_hip <= hip_hi):
        issues.append("Keep torso upright")
    if wall_alignment > params["WALL_ALIGNMENT_MAX"]:
        issues.append("Press back into wall")
    if tilt > params["TORSO_TILT_MAX"]:
        issues.append("Stay vertical")

    return _posture_result(issues, {
        "left_knee": left_knee, "right_knee": right_knee,
        "left_hip": left_hip, "right_hip": right_hip,
        "wall_alignment": wall_alignment, "torso_tilt": tilt,
    })


# Plank: straight shoulder-hip-ankle line held near horizontal with straight, even knees
def classify_plank(pose, baseline, history, params):
    shoulder = pose.mid("LEFT_SHOULDER", "RIGHT_SHOULDER")
    hip = pose.mid("LEFT_HIP", "RIGHT_HIP")
    ankle = pose.mid("LEFT_ANKLE", "RIGHT_ANKLE")
    body_line = calculate_angle(shoulder, hip, ankle)
    orientation = horizontal_deviation(shoulder, hip)
    left_knee, right_knee = _limb_angles(pose, "HIP", "KNEE", "ANKLE")

    issues = []
    if not params["BACK_ALIGNMENT_MIN"] <= body_line <= params["BACK_ALIGNMENT_MAX"]:
        issues.append("Keep your body in a straight line")
    if orientation > params["HORIZ_MAX_DEG"]:
        issues.append("Align your body horizontally")
    if min(left_knee, right_knee) < params["KNEE_MIN_DEG"]:
        issues.append("Keep your knees straight")
    if abs(left_knee - right_knee) > params["KNEE_ANGLE_DIFF_MAX"]:
        issues.append("Even out both legs")

    return _posture_result(issues, {
        "body_line": body_line, "orientation": orientation,
        "left_knee": left_knee, "right_knee": right_knee,
    })


# Side plank: checks run on the support side, the one the camera sees best
def classify_sideplank(pose, baseline, history, params):
    min_vis = params["MIN_VISIBILITY"]

    def side_visibility(side):
        return np.mean([pose.side(side, part).visibility for part in ("SHOULDER", "ELBOW", "HIP", "ANKLE")])

    side = "left" if side_visibility("left") >= side_visibility("right") else "right"
    shoulder = pose.side(side, "SHOULDER")
    elbow = pose.side(side, "ELBOW")
    hip = pose.side(side, "HIP")
    ankle = pose.side(side, "ANKLE")

    issues = []
    metrics = {"support_side": side}

    line_mid_y = (shoulder.y + ankle.y) / 2
    if hip.y > line_mid_y + params["HIP_SAG_THRESHOLD"]:
        issues.append("Hip sagging - lift your hips up!")
    elif hip.y < line_mid_y - params["HIP_HIKE_THRESHOLD"]:
        issues.append("Hip too high - lower your hips!")

    elbow_offset = calculate_horizontal_distance(elbow, shoulder)
    if elbow_offset >= params["ELBOW_ALIGNMENT_THRESHOLD"]:
        issues.append("Keep elbow under shoulder!")

    feet_gap = calculate_horizontal_distance(pose["LEFT_ANKLE"], pose["RIGHT_ANKLE"])
    if feet_gap >= params["FEET_STACKING_THRESHOLD"]:
        issues.append("Stack your feet together!")

    wrist = pose.side(side, "WRIST")
    if wrist.visibility >= min_vis:
        support = calculate_angle(shoulder, elbow, wrist)
        metrics["shoulder_support"] = support
        if not params["SHOULDER_ANGLE_MIN"] <= support <= params["SHOULDER_ANGLE_MAX"]:
            issues.append("Adjust your arm position!")

    body_line = calculate_angle(shoulder, hip, ankle)
    if not params["TORSO_ANGLE_MIN"] <= body_line <= params["TORSO_ANGLE_MAX"]:
        issues.append("Keep your body straight!")

    ear = pose.side(side, "EAR")
    if ear.visibility >= min_vis:
        head_neck = calculate_angle(ear, shoulder, hip)
        metrics["head_neck"] = head_neck
        if not params["HEAD_NECK_ANGLE_MIN"] <= head_neck <= params["HEAD_NECK_ANGLE_MAX"]:
            issues.append("Keep your head in line with your body!")

    metrics.update({"body_line": body_line, "elbow_offset": elbow_offset, "feet_gap": feet_gap})
    return _posture_result(issues, metrics)


CLASSIFIERS = {
    ExerciseKind.PUSHUPS: classify_pushups,
    ExerciseKind.SQUATS: classify_squats,
    ExerciseKind.LUNGES: classify_lunges,
    ExerciseKind.JUMPINGJACKS: classify_jumpingjacks,
    ExerciseKind.HIGHKNEES: classify_highknees,
    ExerciseKind.WALLSIT: classify_wallsit,
    ExerciseKind.SITUPS: classify_situps,
    ExerciseKind.PLANK: classify_plank,
    ExerciseKind.SIDEPLANK: classify_sideplank,
}


def classifier_for(kind):
    return CLASSIFIERS[kind]

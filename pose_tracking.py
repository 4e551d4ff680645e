import argparse
import logging
import sys

import cv2
import mediapipe as mp

from rep_engine.config import ConfigError, ExerciseKind, Verdict, load_config
from rep_engine.landmarks import Frame
from rep_engine.session import ExerciseSession, FrameStatus
from rep_engine.telemetry import EventType, TelemetryEmitter

logger = logging.getLogger("pose_tracking")

DEFAULT_MODEL = "models/pose_landmarker_full.task"

# Skeleton edges drawn on the preview window
POSE_CONNECTIONS = [
    (11, 12), (11, 13), (13, 15), (12, 14), (14, 16),
    (11, 23), (12, 24), (23, 24),
    (23, 25), (25, 27), (24, 26), (26, 28),
    (27, 29), (29, 31), (28, 30), (30, 32),
]


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Count exercise reps and check posture from a video or webcam")
    parser.add_argument("--exercise", required=True, choices=[k.value for k in ExerciseKind])
    parser.add_argument("--lighting", default="normal", help="lighting preset (bright, normal, dim, backlit, auto)")
    parser.add_argument("--video", default="0", help="video file path, or a webcam index")
    parser.add_argument("--model", default=DEFAULT_MODEL, help="MediaPipe pose landmarker .task file")
    parser.add_argument("--config", default=None, help="JSON configuration document")
    parser.add_argument("--no-calibration", action="store_true", help="skip calibration and use default baseline")
    parser.add_argument("--show", action="store_true", help="display the annotated video")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args(argv)


# Function to create the MediaPipe pose landmarker in video mode
def open_landmarker(model_path):
    options = mp.tasks.vision.PoseLandmarkerOptions(
        base_options=mp.tasks.BaseOptions(model_asset_path=model_path),
        running_mode=mp.tasks.vision.RunningMode.VIDEO,
        num_poses=1,
        min_pose_detection_confidence=0.5,
        min_pose_presence_confidence=0.5,
        min_tracking_confidence=0.5,
    )
    return mp.tasks.vision.PoseLandmarker.create_from_options(options)


def open_capture(source):
    return cv2.VideoCapture(int(source) if source.isdigit() else source)


# Function to log the events a user cares about as they happen
def log_event(event):
    if event.type is EventType.REP_COUNTED:
        logger.info("Rep %s", event.payload["rep_count"])
    elif event.type is EventType.POSTURE_WARNING:
        logger.info("Posture: %s", event.payload["message"])
    elif event.type is EventType.ANOMALY_DETECTED:
        logger.info("Rep ignored (%s)", event.payload["reason"])
    elif event.type is EventType.CALIBRATION_COMPLETE:
        logger.info("Calibration %s after %s frames", event.payload["state"], event.payload["frame_count"])


def draw_overlay(image, landmarks, session, result):
    h, w = image.shape[:2]
    for start, end in POSE_CONNECTIONS:
        a, b = landmarks[start], landmarks[end]
        if a.visibility > 0.5 and b.visibility > 0.5:
            cv2.line(image, (int(a.x * w), int(a.y * h)), (int(b.x * w), int(b.y * h)), (0, 255, 0), 2)

    if session.kind.is_hold:
        text = f"{session.kind.value}: {session.hold_ms / 1000:.1f}s"
    else:
        text = f"{session.kind.value}: {session.rep_count}"
    cv2.putText(image, text, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 1, (255, 255, 255), 2)

    if result.status is FrameStatus.CALIBRATING:
        status = "Calibrating - hold still"
    else:
        status = f"state: {session.state.value if session.state else '-'}"
    cv2.putText(image, status, (10, 65), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (255, 255, 0), 2)
    if session.last_issue and session.posture is Verdict.BAD:
        cv2.putText(image, session.last_issue, (10, 100), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 0, 255), 2)
    return image


def run(args):
    config = load_config(args.config)
    telemetry = TelemetryEmitter(config.telemetry)
    telemetry.subscribe(log_event)
    session = ExerciseSession(args.exercise, config=config, lighting=args.lighting,
                              telemetry=telemetry, calibrate=not args.no_calibration)

    cap = open_capture(args.video)
    if not cap.isOpened():
        logger.error("Cannot open video source %s", args.video)
        return 1

    fps = cap.get(cv2.CAP_PROP_FPS) or 30.0
    frame_index = 0
    try:
        with open_landmarker(args.model) as landmarker:
            while True:
                ret, image = cap.read()
                if not ret:
                    logger.info("End of video or error reading the frame.")
                    break

                timestamp_ms = int(frame_index * 1000 / fps)
                frame_index += 1
                rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
                mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
                detection = landmarker.detect_for_video(mp_image, timestamp_ms)
                if not detection.pose_landmarks:
                    continue

                landmarks = detection.pose_landmarks[0]
                result = session.process_frame(Frame.from_landmarks(landmarks, timestamp_ms))
                telemetry.drain()

                if args.show:
                    cv2.imshow("Pose tracking", draw_overlay(image, landmarks, session, result))
                    if cv2.waitKey(1) & 0xFF == ord("q"):
                        break
    finally:
        cap.release()
        if args.show:
            cv2.destroyAllWindows()

    if session.kind.is_hold:
        logger.info("Finished %s: held good form for %.1f s", session.kind.value, session.hold_ms / 1000)
    else:
        logger.info("Finished %s: %d reps", session.kind.value, session.rep_count)
    return 0


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        return run(args)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())

import logging

import pytest

import pose_tracking
from rep_engine.telemetry import EventType, TelemetryEvent


def test_parse_args_defaults():
    args = pose_tracking.parse_args(["--exercise", "plank"])
    assert args.exercise == "plank"
    assert args.lighting == "normal"
    assert args.video == "0"
    assert not args.no_calibration
    assert not args.show


def test_parse_args_rejects_unknown_exercise():
    with pytest.raises(SystemExit):
        pose_tracking.parse_args(["--exercise", "burpees"])


def test_bad_configuration_exits_before_capture(tmp_path):
    path = tmp_path / "config.json"
    path.write_text('{"exercises": {"squats": {"HIP_BELOW_KNEE_MIN": "deep"}}}')
    assert pose_tracking.main(["--exercise", "squats", "--config", str(path)]) == 2
    assert pose_tracking.main(["--exercise", "squats", "--lighting", "neon"]) == 2


def test_log_event(caplog):
    with caplog.at_level(logging.INFO, logger="pose_tracking"):
        pose_tracking.log_event(TelemetryEvent(EventType.REP_COUNTED, "squats", 0, {"rep_count": 3}))
        pose_tracking.log_event(TelemetryEvent(EventType.FRAME_PROCESSED, "squats", 1, {}))
    assert "Rep 3" in caplog.text
    assert len(caplog.records) == 1


def test_badly_shaped_configuration_exits_cleanly(tmp_path):
    path = tmp_path / "config.json"
    path.write_text('{"hysteresis": {"pushups": 5}}')
    assert pose_tracking.main(["--exercise", "pushups", "--config", str(path)]) == 2

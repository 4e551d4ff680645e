import json
import logging

import pytest

from rep_engine.config import (
    DEFAULT_ENGINE_CONFIG,
    ConfigError,
    ExerciseKind,
    Verdict,
    build_config,
    load_config,
    parse_exercise,
)


def test_defaults_cover_every_exercise():
    for kind in ExerciseKind:
        settings = DEFAULT_ENGINE_CONFIG.exercise(kind)
        assert settings.kind is kind
        assert settings.good_frames >= 1 and settings.bad_frames >= 1
        assert settings.critical_landmarks
        assert settings.warning_cooldown_ms == 2000


def test_pushup_defaults():
    settings = DEFAULT_ENGINE_CONFIG.exercise("pushups")
    assert settings.thresholds["ELBOW_ANGLE_DOWN"] == 110
    assert settings.thresholds["ELBOW_ANGLE_UP"] == 140
    assert (settings.good_frames, settings.bad_frames) == (3, 5)
    assert settings.start_state is Verdict.UP
    assert settings.count_on is Verdict.UP
    assert settings.min_rep_ms == 400


def test_hold_exercises_have_no_phase():
    for kind in (ExerciseKind.PLANK, ExerciseKind.SIDEPLANK, ExerciseKind.WALLSIT):
        settings = DEFAULT_ENGINE_CONFIG.exercise(kind)
        assert settings.start_state is None
        assert settings.hold_timer


def test_parse_exercise():
    assert parse_exercise(" PushUps ") is ExerciseKind.PUSHUPS
    with pytest.raises(ConfigError):
        parse_exercise("burpees")


def test_config_is_read_only():
    with pytest.raises(TypeError):
        DEFAULT_ENGINE_CONFIG.exercises["pushups"]["ELBOW_ANGLE_UP"] = 10


def test_lighting_preset_and_exercise_floor():
    assert DEFAULT_ENGINE_CONFIG.min_visibility("squats", "normal") == pytest.approx(0.35)
    assert DEFAULT_ENGINE_CONFIG.min_visibility("squats", "bright") == pytest.approx(0.4)
    # High knees carries its own 0.35 floor above the dim preset
    assert DEFAULT_ENGINE_CONFIG.min_visibility("highknees", "dim") == pytest.approx(0.35)
    with pytest.raises(ConfigError):
        DEFAULT_ENGINE_CONFIG.min_visibility("squats", "disco")


def test_override_is_merged():
    config = build_config({"exercises": {"pushups": {"MIN_REP_MS": 600}}, "hysteresis": {"squats": {"goodFrames": 1}}})
    assert config.exercise("pushups").min_rep_ms == 600
    assert config.exercise("pushups").thresholds["ELBOW_ANGLE_DOWN"] == 110
    assert config.exercise("squats").good_frames == 1
    assert config.exercise("squats").bad_frames == 4
    # Defaults are untouched
    assert DEFAULT_ENGINE_CONFIG.exercise("pushups").min_rep_ms == 400


def test_deprecated_squat_keys_are_dropped(caplog):
    with caplog.at_level(logging.WARNING, logger="rep_engine.config"):
        config = build_config({"exercises": {"squats": {"KNEE_ANGLE_DOWN": 90, "KNEE_ANGLE_UP": 160}}})
    assert "KNEE_ANGLE_DOWN" not in config.exercise("squats").thresholds
    assert "deprecated" in caplog.text


@pytest.mark.parametrize("overrides", [
    {"exercises": {"pushups": {"ELBOW_ANGLE_DWN": 100}}},
    {"exercises": {"pushups": {"ELBOW_ANGLE_DOWN": 150}}},
    {"exercises": {"pushups": {"ELBOW_ANGLE_DOWN": "low"}}},
    {"exercises": {"plank": {"BACK_ALIGNMENT_MIN": -5}}},
    {"exercises": {"situps": {"MIN_METRICS_FOR_UP": 4}}},
    {"exercises": {"situps": {"UP_TORSO_COS": 1.5}}},
    {"exercises": {"jumpingjacks": {"countOn": "sideways"}}},
    {"exercises": {"burpees": {}}},
    {"hysteresis": {"pushups": {"goodFrames": 0}}},
    {"criticalLandmarks": {"squats": [11, 40]}},
    {"landmarks": {"NOSE": 99}},
    {"lightingPresets": {"dim": {"minVisibility": 2}}},
    {"calibration": {"shoulderWidth": 0}},
    {"calibration": {"minViableFrames": 50}},
    {"telemetry": {"samplingRate": 1.5}},
    {"telemetry": {"eventTypes": {"heartbeat": True}}},
    {"cadence": {"suddenAccelerationRatio": -1}},
    {"ui": {}},
    {"calibration": 5},
    {"hysteresis": {"pushups": 5}},
    {"criticalLandmarks": {"pushups": 5}},
    {"lightingPresets": {"normal": 0.3}},
    {"telemetry": {"eventTypes": 5}},
    {"exercises": {"squats": [110, 140]}},
    {"exercises": {"jumpingjacks": {"MIN_ALTERNATION_TIME": 3000}}},
    {"exercises": {"sideplank": {"TORSO_ANGLE_MAX": 200}}},
])
def test_invalid_configuration_is_rejected(overrides):
    with pytest.raises(ConfigError):
        build_config(overrides)


def test_load_config_from_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "lightingPresets": {"dim": {"minVisibility": 0.25}},
        "exercises": {"lunges": {"TORSO_TILT_MAX": 45}},
    }))
    config = load_config(path, overrides={"exercises": {"lunges": {"MIN_REP_MS": 700}}})
    assert config.lighting_presets["dim"]["minVisibility"] == pytest.approx(0.25)
    assert config.exercise("lunges").thresholds["TORSO_TILT_MAX"] == 45
    assert config.exercise("lunges").min_rep_ms == 700


def test_load_config_errors(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.json")
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    with pytest.raises(ConfigError):
        load_config(broken)
    listing = tmp_path / "list.json"
    listing.write_text("[1, 2]")
    with pytest.raises(ConfigError):
        load_config(listing)


def test_load_config_without_path_uses_defaults():
    assert load_config() == DEFAULT_ENGINE_CONFIG

import pytest

from rep_engine.config import DEFAULT_ENGINE_CONFIG, Verdict
from rep_engine.hysteresis import Debouncer, phase_debouncer, posture_debouncer

UP, DOWN, INVALID = Verdict.UP, Verdict.DOWN, Verdict.INVALID
GOOD, BAD = Verdict.GOOD, Verdict.BAD


def feed(debouncer, verdicts):
    return [debouncer.update(v) for v in verdicts]


def test_flip_needs_consecutive_frames():
    debouncer = Debouncer(UP, DOWN, enter_frames=3, exit_frames=5)
    flips = feed(debouncer, [DOWN, DOWN])
    assert flips == [None, None]
    assert debouncer.state is UP
    assert debouncer.update(DOWN) == (UP, DOWN)
    assert debouncer.state is DOWN


def test_return_uses_exit_count():
    debouncer = Debouncer(UP, DOWN, enter_frames=3, exit_frames=5)
    feed(debouncer, [DOWN] * 3)
    feed(debouncer, [UP] * 4)
    assert debouncer.state is DOWN
    assert debouncer.update(UP) == (DOWN, UP)


def test_invalid_resets_the_count():
    debouncer = Debouncer(UP, DOWN, enter_frames=3, exit_frames=5)
    feed(debouncer, [DOWN, DOWN, INVALID, DOWN, DOWN])
    assert debouncer.state is UP
    assert debouncer.counters[DOWN] == 2
    debouncer.update(DOWN)
    assert debouncer.state is DOWN


def test_same_direction_resets_the_count():
    debouncer = Debouncer(UP, DOWN, enter_frames=3, exit_frames=5)
    feed(debouncer, [DOWN, DOWN, UP])
    assert debouncer.counters == {DOWN: 0, UP: 0}
    feed(debouncer, [DOWN, DOWN])
    assert debouncer.state is UP


def test_foreign_verdicts_are_ignored():
    debouncer = Debouncer(UP, DOWN, enter_frames=1, exit_frames=1)
    assert debouncer.update(GOOD) is None
    assert debouncer.state is UP


def test_undetermined_start():
    debouncer = Debouncer(None, GOOD, enter_frames=3, exit_frames=5)
    feed(debouncer, [BAD] * 4)
    assert debouncer.state is None
    assert debouncer.update(BAD) == (None, BAD)
    feed(debouncer, [GOOD] * 3)
    assert debouncer.state is GOOD


def test_frame_counts_must_be_positive():
    with pytest.raises(ValueError):
        Debouncer(UP, DOWN, 0, 1)


def test_reset():
    debouncer = Debouncer(UP, DOWN, enter_frames=2, exit_frames=2)
    feed(debouncer, [DOWN, DOWN, UP])
    debouncer.reset(UP)
    assert debouncer.state is UP
    assert debouncer.counters[DOWN] == 0


def test_factories_follow_exercise_settings():
    situps = phase_debouncer(DEFAULT_ENGINE_CONFIG.exercise("situps"))
    assert situps.state is DOWN
    assert situps.working is UP
    assert (situps.enter_frames, situps.exit_frames) == (2, 4)

    plank = posture_debouncer(DEFAULT_ENGINE_CONFIG.exercise("plank"))
    assert plank.state is None
    assert plank.working is GOOD
    assert (plank.enter_frames, plank.exit_frames) == (3, 5)

import pytest

from config import JudgementConfig
import gameplay_models
from gameplay_models import InputEvent, JudgementLabel, NoteState, TapEvent
import judge
from judge import JudgeEngine, JudgementWindows
from note_scheduler import NoteScheduler


def _engine(make_chart, entries, **kwargs):
    scheduler = NoteScheduler(make_chart(entries))
    scheduler.advance(0.0)
    return scheduler, JudgeEngine(scheduler, **kwargs)


@pytest.mark.parametrize(
    "input_time, expected_label",
    [
        (2.03, JudgementLabel.COOL),
        (1.97, JudgementLabel.COOL),
        (2.12, JudgementLabel.FINE),
        (1.88, JudgementLabel.FINE),
        (2.30, JudgementLabel.MISS),
        (1.70, JudgementLabel.MISS),
    ],
)
def test_timing_bands(make_chart, input_time, expected_label):
    scheduler, engine = _engine(make_chart, [(2.0, 0)])

    result = engine.on_input_event(InputEvent(lane=0, at_time=input_time))

    assert result is not None
    assert result.label is expected_label
    assert result.note.state is (NoteState.MISSED if expected_label is JudgementLabel.MISS else NoteState.HIT)


@pytest.mark.parametrize(
    "input_time, expected_label, expected_combo",
    [
        (2.08, JudgementLabel.COOL, 1),
        (1.92, JudgementLabel.COOL, 1),
        (2.18, JudgementLabel.FINE, 1),
        (1.82, JudgementLabel.FINE, 1),
        (2.35, JudgementLabel.MISS, 0),
        (1.65, JudgementLabel.MISS, 0),
    ],
)
def test_input_exactly_on_a_window_edge_gets_that_window(make_chart, input_time, expected_label, expected_combo):
    scheduler, engine = _engine(make_chart, [(2.0, 0)])

    result = engine.on_input_event(InputEvent(lane=0, at_time=input_time))

    assert result is not None
    assert result.label is expected_label
    assert result.combo_after == expected_combo
    assert abs(result.note.delta_seconds) == pytest.approx(abs(input_time - 2.0))


def test_automatic_miss_edge_is_exclusive(make_chart):
    scheduler, engine = _engine(make_chart, [(2.0, 0)])

    assert engine.update_for_time(2.38) == []
    assert scheduler.pending_count() == 1
    assert [result.label for result in engine.update_for_time(2.381)] == [JudgementLabel.MISS]


def test_drain_empties_the_recent_buffer(make_chart):
    scheduler, engine = _engine(make_chart, [(1.0, 0), (2.0, 1)])
    hit = engine.on_input_event(InputEvent(lane=0, at_time=1.0))
    misses = engine.update_for_time(3.0)

    assert engine.drain_recent_judgements() == [hit] + misses
    assert engine.drain_recent_judgements() == []
    assert engine.recent_judgements() == []


def test_input_beyond_miss_band_does_not_touch_note(make_chart):
    scheduler, engine = _engine(make_chart, [(2.0, 0)])

    assert engine.on_input_event(InputEvent(lane=0, at_time=2.40)) is None
    assert scheduler.pending_notes()[0].state is NoteState.PENDING
    assert engine.score_state().score == 0


@pytest.mark.parametrize(
    "delta, expected_label",
    [
        (0.0, JudgementLabel.COOL),
        (0.08, JudgementLabel.COOL),
        (0.0801, JudgementLabel.FINE),
        (0.18, JudgementLabel.FINE),
        (0.1801, JudgementLabel.MISS),
        (0.35, JudgementLabel.MISS),
        (-0.35, JudgementLabel.MISS),
        (0.3501, None),
    ],
)
def test_classifier_boundaries(delta, expected_label):
    row = judge.DEFAULT_WINDOWS.classify_delta(delta)

    if expected_label is None:
        assert row is None
    else:
        assert row.label is expected_label


def test_windows_are_table_rows():
    windows = JudgementWindows.from_config(JudgementConfig())

    assert [(row.max_abs_delta_seconds, row.label, row.base_score) for row in windows.rows] == [
        (0.08, JudgementLabel.COOL, 300),
        (0.18, JudgementLabel.FINE, 100),
        (0.35, JudgementLabel.MISS, 0),
    ]
    assert windows.hit_window_seconds == 0.18
    assert windows.max_window_seconds == 0.35


def test_two_consecutive_cool_hits_score_615(make_chart):
    scheduler, engine = _engine(make_chart, [(1.0, 0), (1.5, 1)])

    first = engine.on_input_event(InputEvent(lane=0, at_time=1.0))
    second = engine.on_input_event(InputEvent(lane=1, at_time=1.5))

    assert (first.score_delta, first.combo_after) == (300, 1)
    assert (second.score_delta, second.combo_after) == (315, 2)
    state = engine.score_state()
    assert state.score == 615
    assert state.combo == 2
    assert state.max_combo == 2
    assert state.cool_count == 2


def test_fine_hit_uses_pre_increment_combo(make_chart):
    scheduler, engine = _engine(make_chart, [(1.0, 0), (1.5, 0), (2.0, 0), (2.5, 0)])
    for time_seconds in (1.0, 1.5, 2.0):
        engine.on_input_event(InputEvent(lane=0, at_time=time_seconds))

    result = engine.on_input_event(InputEvent(lane=0, at_time=2.6))

    assert result.label is JudgementLabel.FINE
    assert result.score_delta == 115
    assert engine.score_for_hit(100, 3) == 115


@pytest.mark.parametrize("explicit", [True, False])
def test_any_miss_resets_combo_to_zero(make_chart, explicit):
    scheduler, engine = _engine(make_chart, [(1.0, 0), (1.5, 0), (2.0, 0), (3.0, 1)])
    for time_seconds in (1.0, 1.5, 2.0):
        engine.on_input_event(InputEvent(lane=0, at_time=time_seconds))
    assert engine.score_state().combo == 3
    score_before = engine.score_state().score

    if explicit:
        results = [engine.on_input_event(InputEvent(lane=1, at_time=3.3))]
    else:
        results = engine.update_for_time(3.5)

    assert [result.label for result in results] == [JudgementLabel.MISS]
    assert results[0].automatic is not explicit
    assert results[0].score_delta == 0
    assert results[0].combo_after == 0
    assert engine.score_state().combo == 0
    assert engine.score_state().max_combo == 3
    assert engine.score_state().score == score_before


def test_empty_lane_tap_is_ignored(make_chart):
    scheduler, engine = _engine(make_chart, [(1.0, 0)])
    engine.on_input_event(InputEvent(lane=0, at_time=1.0))

    assert engine.on_input_event(InputEvent(lane=0, at_time=1.05)) is None
    assert engine.on_input_event(InputEvent(lane=3, at_time=1.0)) is None
    assert engine.score_state().combo == 1


def test_nearest_note_in_lane_wins_over_queue_order(make_chart):
    scheduler, engine = _engine(make_chart, [(1.0, 0), (1.3, 0)])

    result = engine.on_input_event(InputEvent(lane=0, at_time=1.25))

    assert result.note.time == 1.3
    assert result.label is JudgementLabel.COOL


def test_automatic_miss_after_fine_window_plus_grace(make_chart):
    scheduler, engine = _engine(make_chart, [(1.0, 0), (5.0, 1)])

    assert engine.update_for_time(1.37) == []
    misses = engine.update_for_time(1.40)

    assert [result.note.time for result in misses] == [1.0]
    assert misses[0].automatic
    assert engine.score_state().miss_count == 1
    assert engine.update_for_time(1.40) == []


def test_tap_prefers_timing_with_distance_tie_break(make_chart):
    scheduler, engine = _engine(make_chart, [(1.0, 0), (1.05, 1)])
    early, late = scheduler.pending_notes()
    early.position = (100.0, 100.0)
    late.position = (110.0, 100.0)

    result = engine.on_tap_event(TapEvent(x=110.0, y=100.0, at_time=1.04), hit_radius=50.0)

    assert result.note.id == late.id
    assert result.label is JudgementLabel.COOL


def test_tap_distance_breaks_timing_ties(make_chart):
    scheduler, engine = _engine(make_chart, [(1.0, 0), (1.0, 1)])
    near, far = scheduler.pending_notes()
    near.position = (205.0, 200.0)
    far.position = (240.0, 200.0)

    result = engine.on_tap_event(TapEvent(x=200.0, y=200.0, at_time=1.0), hit_radius=50.0)

    assert result.note.id == near.id


def test_tap_outside_radius_or_without_position_is_ignored(make_chart):
    scheduler, engine = _engine(make_chart, [(1.0, 0), (1.0, 1)])
    placed, unplaced = scheduler.pending_notes()
    placed.position = (100.0, 100.0)

    assert engine.on_tap_event(TapEvent(x=161.0, y=100.0, at_time=1.0), hit_radius=50.0) is None
    result = engine.on_tap_event(TapEvent(x=159.0, y=100.0, at_time=1.0), hit_radius=50.0)
    assert result.note.id == placed.id
    assert unplaced.is_pending


def test_tap_far_from_note_time_is_a_stray(make_chart):
    scheduler, engine = _engine(make_chart, [(1.0, 0)])
    scheduler.pending_notes()[0].position = (0.0, 0.0)

    assert engine.on_tap_event(TapEvent(x=0.0, y=0.0, at_time=2.0), hit_radius=50.0) is None


def test_subscribers_receive_results_synchronously(make_chart):
    scheduler, engine = _engine(make_chart, [(1.0, 0), (1.5, 0)])
    received = []

    def failing(result):
        raise RuntimeError("feedback device unplugged")

    engine.on_judgement(failing)
    unsubscribe = engine.on_judgement(received.append)

    first = engine.on_input_event(InputEvent(lane=0, at_time=1.0))
    assert received == [first]

    unsubscribe()
    engine.on_input_event(InputEvent(lane=0, at_time=1.5))
    assert received == [first]
    assert engine.score_state().combo == 2


def test_result_note_is_a_snapshot(make_chart):
    scheduler, engine = _engine(make_chart, [(1.0, 0)])

    result = engine.on_input_event(InputEvent(lane=0, at_time=1.01))
    result.note.state = NoteState.MISSED

    assert scheduler.active_notes()[0].state is NoteState.HIT
    assert scheduler.active_notes()[0].label is JudgementLabel.COOL
    assert scheduler.active_notes()[0].delta_seconds == pytest.approx(0.01)


def test_last_label_tracks_latest_judgement(make_chart):
    scheduler, engine = _engine(make_chart, [(1.0, 0), (2.0, 1)])
    engine.on_input_event(InputEvent(lane=0, at_time=1.1))
    assert engine.score_state().last_label is JudgementLabel.FINE
    assert engine.score_state().last_label_time == 1.1

    engine.update_for_time(2.5)
    assert engine.score_state().last_label is JudgementLabel.MISS
    assert engine.score_state().last_label_time == 2.5


def test_engine_from_config_uses_configured_windows(make_chart):
    scheduler = NoteScheduler(make_chart([(1.0, 0)]))
    scheduler.advance(0.0)
    engine = JudgeEngine.from_config(
        scheduler,
        JudgementConfig(cool_seconds=0.02, fine_seconds=0.05, miss_seconds=0.1, auto_miss_grace_seconds=0.0),
    )

    assert engine.auto_miss_after_seconds() == pytest.approx(0.05)
    assert engine.on_input_event(InputEvent(lane=0, at_time=1.2)) is None
    assert engine.on_input_event(InputEvent(lane=0, at_time=1.04)).label is JudgementLabel.FINE


def test_reset_clears_score(make_chart):
    scheduler, engine = _engine(make_chart, [(1.0, 0)])
    engine.on_input_event(InputEvent(lane=0, at_time=1.0))
    engine.reset()

    assert engine.score_state() == judge.ScoreState()
    assert engine.recent_judgements() == []


def test_module_self_check():
    judge._run_unit_tests()

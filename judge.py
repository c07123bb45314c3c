# -*- coding: utf-8 -*-
########################
# judge.py
########################
# Purpose:
# - Hit judgement and scoring engine.
# - Matches lane InputEvents to the nearest pending Note, and pointer TapEvents to the best nearby Note.
# - Forfeits notes nobody hit once their grace time has passed.
# - Emits a JudgementResult for every resolved note and notifies subscribers synchronously.
#
# Design notes:
# - Pure gameplay logic. Consumes only events and song time in seconds.
# - Thresholds are data: JudgementWindows holds ordered (max_abs_delta, label, base_score) rows.
# - NoteScheduler owns the notes; JudgeEngine changes their state via NoteScheduler.mark_judged.
# - Deltas are rounded to TIME_DECIMALS before comparing, so an input exactly on a window edge gets
#   that window. The automatic miss uses the same rounding.
# - Score uses the combo value from before the hit: floor(base * (1 + combo * bonus)).
# - Input inside the explicit miss band (up to 0.35 s) misses the note. Without input, a note is forfeited
#   once song time passes note time + fine window + grace (0.18 + 0.20 s).
# - Tap selection minimizes |time delta| + distance / 1000. Seconds and pixels are mixed; this is a
#   tie-break heuristic, not a true nearest-note metric.
#
########################
# Interfaces:
# Public dataclasses:
# - JudgementWindow(max_abs_delta_seconds: float, label: JudgementLabel, base_score: int)
# - JudgementWindows(rows: tuple[JudgementWindow, ...])
#   - classify_delta(delta_seconds: float) -> Optional[JudgementWindow]
#   - hit_window_seconds -> float
#   - max_window_seconds -> float
# - ScoreState(score, combo, max_combo, cool_count, fine_count, miss_count, last_label, last_label_time)
#
# Public classes:
# - class JudgeEngine
#   - __init__(note_scheduler: NoteScheduler, judgement_windows: Optional[JudgementWindows] = None, *,
#              auto_miss_grace_seconds: float = 0.20, combo_bonus_per_step: float = 0.05)
#   - score_state() -> ScoreState
#   - on_judgement(callback) -> Callable[[], None]
#   - on_input_event(input_event: InputEvent) -> Optional[JudgementResult]
#   - on_tap_event(tap_event: TapEvent, *, hit_radius: float, radius_multiplier: float = 1.2) -> Optional[JudgementResult]
#   - update_for_time(song_time_seconds: float) -> list[JudgementResult]
#   - recent_judgements() -> list[JudgementResult]
#   - drain_recent_judgements() -> list[JudgementResult]
#   - reset() -> None
#
########################

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass
from fractions import Fraction
from typing import Callable, List, Optional, Tuple

from config import JudgementConfig
import gameplay_models
import note_scheduler

logger = logging.getLogger(__name__)

JudgementCallback = Callable[[gameplay_models.JudgementResult], None]


@dataclass(frozen=True)
class JudgementWindow:
    max_abs_delta_seconds: float
    label: gameplay_models.JudgementLabel
    base_score: int


@dataclass(frozen=True)
class JudgementWindows:
    rows: Tuple[JudgementWindow, ...]

    @classmethod
    def from_config(cls, judgement_config: JudgementConfig) -> "JudgementWindows":
        return cls(
            rows=(
                JudgementWindow(judgement_config.cool_seconds, gameplay_models.JudgementLabel.COOL, judgement_config.cool_score),
                JudgementWindow(judgement_config.fine_seconds, gameplay_models.JudgementLabel.FINE, judgement_config.fine_score),
                JudgementWindow(judgement_config.miss_seconds, gameplay_models.JudgementLabel.MISS, 0),
            )
        )

    def classify_delta(self, delta_seconds: float) -> Optional[JudgementWindow]:
        abs_delta = round(abs(float(delta_seconds)), gameplay_models.TIME_DECIMALS)
        for row in self.rows:
            if abs_delta <= round(float(row.max_abs_delta_seconds), gameplay_models.TIME_DECIMALS):
                return row
        return None

    @property
    def hit_window_seconds(self) -> float:
        return max(row.max_abs_delta_seconds for row in self.rows if row.label.is_hit)

    @property
    def max_window_seconds(self) -> float:
        return max(row.max_abs_delta_seconds for row in self.rows)


DEFAULT_WINDOWS = JudgementWindows.from_config(JudgementConfig())


@dataclass
class ScoreState:
    score: int = 0
    combo: int = 0
    max_combo: int = 0
    cool_count: int = 0
    fine_count: int = 0
    miss_count: int = 0
    last_label: Optional[gameplay_models.JudgementLabel] = None
    last_label_time: Optional[float] = None

    def snapshot(self) -> "ScoreState":
        return dataclasses.replace(self)


class JudgeEngine:
    def __init__(
        self,
        note_scheduler_obj: note_scheduler.NoteScheduler,
        judgement_windows: Optional[JudgementWindows] = None,
        *,
        auto_miss_grace_seconds: float = 0.20,
        combo_bonus_per_step: float = 0.05,
    ) -> None:
        self._note_scheduler = note_scheduler_obj
        self._judgement_windows = judgement_windows if judgement_windows is not None else DEFAULT_WINDOWS
        self._auto_miss_grace_seconds = float(auto_miss_grace_seconds)
        # Exact arithmetic so floor() never lands one point short on values like 100 * 1.15.
        self._combo_bonus = Fraction(str(combo_bonus_per_step))
        self._score_state = ScoreState()
        self._recent_judgements: List[gameplay_models.JudgementResult] = []
        self._callbacks: List[JudgementCallback] = []

    @classmethod
    def from_config(
        cls,
        note_scheduler_obj: note_scheduler.NoteScheduler,
        judgement_config: JudgementConfig,
    ) -> "JudgeEngine":
        return cls(
            note_scheduler_obj,
            JudgementWindows.from_config(judgement_config),
            auto_miss_grace_seconds=judgement_config.auto_miss_grace_seconds,
            combo_bonus_per_step=judgement_config.combo_bonus_per_step,
        )

    def score_state(self) -> ScoreState:
        return self._score_state

    def judgement_windows(self) -> JudgementWindows:
        return self._judgement_windows

    def auto_miss_after_seconds(self) -> float:
        return self._judgement_windows.hit_window_seconds + self._auto_miss_grace_seconds

    def on_judgement(self, callback: JudgementCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def recent_judgements(self) -> List[gameplay_models.JudgementResult]:
        return list(self._recent_judgements)

    def drain_recent_judgements(self) -> List[gameplay_models.JudgementResult]:
        """Results resolved since the last drain, in resolution order. The buffer is emptied."""
        drained = self._recent_judgements
        self._recent_judgements = []
        return drained

    def reset(self) -> None:
        self._score_state = ScoreState()
        self._recent_judgements.clear()

    def score_for_hit(self, base_score: int, combo_before: int) -> int:
        return int(math.floor(Fraction(int(base_score)) * (1 + int(combo_before) * self._combo_bonus)))

    def on_input_event(self, input_event: gameplay_models.InputEvent) -> Optional[gameplay_models.JudgementResult]:
        note = self._note_scheduler.find_nearest_pending(
            lane=int(input_event.lane),
            target_time_seconds=float(input_event.at_time),
            max_window_seconds=self._judgement_windows.max_window_seconds,
        )
        if note is None:
            return None
        return self._judge_note(note, at_time=float(input_event.at_time))

    def on_tap_event(
        self,
        tap_event: gameplay_models.TapEvent,
        *,
        hit_radius: float,
        radius_multiplier: float = 1.2,
    ) -> Optional[gameplay_models.JudgementResult]:
        reach = float(hit_radius) * float(radius_multiplier)
        at_time = float(tap_event.at_time)

        best_note: Optional[gameplay_models.Note] = None
        best_value = float("inf")
        for candidate in self._note_scheduler.pending_notes():
            if candidate.position is None:
                continue
            distance = math.hypot(float(tap_event.x) - candidate.position[0], float(tap_event.y) - candidate.position[1])
            if distance > reach:
                continue
            value = abs(candidate.time - at_time) + distance / 1000.0
            if value < best_value:
                best_value = value
                best_note = candidate

        if best_note is None:
            return None
        return self._judge_note(best_note, at_time=at_time)

    def update_for_time(self, song_time_seconds: float) -> List[gameplay_models.JudgementResult]:
        now = float(song_time_seconds)
        misses: List[gameplay_models.JudgementResult] = []
        forfeit_after = round(self.auto_miss_after_seconds(), gameplay_models.TIME_DECIMALS)
        for note in self._note_scheduler.pending_past(now):
            if gameplay_models.time_delta(now, note.time) <= forfeit_after:
                continue
            misses.append(
                self._resolve(
                    note,
                    label=gameplay_models.JudgementLabel.MISS,
                    base_score=0,
                    at_time=now,
                    automatic=True,
                )
            )
        return misses

    def _judge_note(self, note: gameplay_models.Note, *, at_time: float) -> Optional[gameplay_models.JudgementResult]:
        row = self._judgement_windows.classify_delta(gameplay_models.time_delta(at_time, note.time))
        if row is None:
            # Too far from the note to count: a stray tap.
            return None
        return self._resolve(note, label=row.label, base_score=row.base_score, at_time=at_time, automatic=False)

    def _resolve(
        self,
        note: gameplay_models.Note,
        *,
        label: gameplay_models.JudgementLabel,
        base_score: int,
        at_time: float,
        automatic: bool,
    ) -> gameplay_models.JudgementResult:
        state = gameplay_models.NoteState.HIT if label.is_hit else gameplay_models.NoteState.MISSED
        self._note_scheduler.mark_judged(
            note,
            state=state,
            label=label,
            judged_at=at_time,
            delta_seconds=gameplay_models.time_delta(at_time, note.time),
        )

        score_state = self._score_state
        if label.is_hit:
            score_delta = self.score_for_hit(base_score, score_state.combo)
            score_state.combo += 1
            score_state.score += score_delta
            score_state.max_combo = max(score_state.max_combo, score_state.combo)
            if label is gameplay_models.JudgementLabel.COOL:
                score_state.cool_count += 1
            else:
                score_state.fine_count += 1
        else:
            score_delta = 0
            score_state.combo = 0
            score_state.miss_count += 1
        score_state.last_label = label
        score_state.last_label_time = at_time

        result = gameplay_models.JudgementResult(
            note=note.snapshot(),
            label=label,
            score_delta=score_delta,
            combo_after=score_state.combo,
            time_seconds=at_time,
            automatic=automatic,
        )
        logger.debug(
            "Note %d lane %d %s delta=%+.3fs score+%d combo=%d%s",
            note.id,
            note.lane,
            label.value,
            at_time - note.time,
            score_delta,
            score_state.combo,
            " (auto)" if automatic else "",
        )
        self._recent_judgements.append(result)
        self._notify(result)
        return result

    def _notify(self, result: gameplay_models.JudgementResult) -> None:
        for callback in list(self._callbacks):
            try:
                callback(result)
            except Exception:
                logger.exception("Judgement subscriber %r failed", callback)


def _run_unit_tests() -> None:
    chart = gameplay_models.Chart(
        notes=(gameplay_models.ChartNote(time_seconds=1.0, lane=0), gameplay_models.ChartNote(time_seconds=1.5, lane=0)),
        tempo=None,
        duration_seconds=3.0,
    )
    scheduler = note_scheduler.NoteScheduler(chart)
    scheduler.advance(0.0)
    engine = JudgeEngine(scheduler)

    hit = engine.on_input_event(gameplay_models.InputEvent(lane=0, at_time=1.0))
    assert hit is not None
    assert hit.label is gameplay_models.JudgementLabel.COOL
    assert engine.score_state().score == 300

    stray = engine.on_input_event(gameplay_models.InputEvent(lane=1, at_time=1.0))
    assert stray is None

    misses = engine.update_for_time(song_time_seconds=2.0)
    assert len(misses) == 1
    assert engine.score_state().combo == 0
    assert engine.score_state().miss_count == 1


if __name__ == "__main__":
    _run_unit_tests()
    print("judge.py: ok")

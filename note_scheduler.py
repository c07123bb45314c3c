# -*- coding: utf-8 -*-
########################
# note_scheduler.py
########################
# Purpose:
# - Materialize chart entries into live Note objects against the playback clock.
# - Owns the active note set: pending notes plus judged notes still inside their decay window.
# - Provides the candidate queries JudgeEngine uses for lane input, taps and automatic misses.
#
# Design notes:
# - Pure gameplay logic, no rendering or input APIs.
# - advance() walks a single cursor through the chart. When the lookahead or the pending cap blocks
#   the cursor, advancing stops for that call without skipping the blocking entry.
# - A Note changes state exactly once, through mark_judged.
#
########################
# Interfaces:
# Public classes:
# - class NotePlacement
#   - __init__(*, width: float, height: float, margin_ratio: float = 0.15, seed: int = 0)
#   - place(note: Note) -> tuple[float, float]
#
# - class NoteScheduler
#   - __init__(chart: Chart, scheduler_config: Optional[SchedulerConfig] = None, placement: Optional[NotePlacement] = None)
#   - chart() -> Chart
#   - next_chart_index -> int
#   - advance(now: float) -> list[Note]
#   - active_notes() -> list[Note]
#   - pending_notes(lane: Optional[int] = None) -> list[Note]
#   - pending_count() -> int
#   - find_nearest_pending(*, lane: int, target_time_seconds: float, max_window_seconds: float) -> Optional[Note]
#   - pending_past(cutoff_time_seconds: float) -> list[Note]
#   - mark_judged(note: Note, *, state: NoteState, label: JudgementLabel, judged_at: float, delta_seconds: float) -> None
#   - is_expired(note: Note, now: float) -> bool
#   - prune_expired(now: float) -> list[Note]
#   - is_finished() -> bool
#   - reset() -> None
#
# Inputs:
# - Chart and song time in seconds.
#
# Outputs:
# - Newly activated Note objects, and candidate selection for JudgeEngine.
#
########################

from __future__ import annotations

import logging
import random
from typing import List, Optional, Tuple

from config import SchedulerConfig
import gameplay_models

logger = logging.getLogger(__name__)


class NotePlacement:
    """Random on-screen target point for each note, kept clear of the playfield edges."""

    def __init__(self, *, width: float, height: float, margin_ratio: float = 0.15, seed: int = 0) -> None:
        self._width = float(width)
        self._height = float(height)
        self._margin_ratio = float(margin_ratio)
        self._seed = int(seed)
        self._random_generator = random.Random(self._seed)

    def reset(self) -> None:
        self._random_generator = random.Random(self._seed)

    def place(self, note: gameplay_models.Note) -> Tuple[float, float]:
        margin_x = self._width * self._margin_ratio
        margin_y = self._height * self._margin_ratio
        x = margin_x + self._random_generator.random() * (self._width - margin_x * 2.0)
        y = margin_y + self._random_generator.random() * (self._height - margin_y * 2.0)
        return (x, y)


class NoteScheduler:
    def __init__(
        self,
        chart: gameplay_models.Chart,
        scheduler_config: Optional[SchedulerConfig] = None,
        placement: Optional[NotePlacement] = None,
    ) -> None:
        sorted_notes = sorted(chart.notes, key=lambda item: (float(item.time_seconds), int(item.lane)))
        self._chart = gameplay_models.Chart(
            notes=tuple(sorted_notes),
            tempo=chart.tempo,
            duration_seconds=float(chart.duration_seconds),
        )
        self._config = scheduler_config if scheduler_config is not None else SchedulerConfig()
        self._placement = placement
        self._cursor = 0
        self._active: List[gameplay_models.Note] = []

    def chart(self) -> gameplay_models.Chart:
        return self._chart

    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def next_chart_index(self) -> int:
        return self._cursor

    def reset(self) -> None:
        self._cursor = 0
        self._active.clear()
        if self._placement is not None:
            self._placement.reset()

    def advance(self, now: float) -> List[gameplay_models.Note]:
        horizon = float(now) + float(self._config.lookahead_seconds)
        chart_notes = self._chart.notes
        activated: List[gameplay_models.Note] = []

        while self._cursor < len(chart_notes) and chart_notes[self._cursor].time_seconds < horizon:
            if self.pending_count() >= int(self._config.max_active_notes):
                break
            chart_note = chart_notes[self._cursor]
            note = gameplay_models.Note(id=self._cursor, lane=int(chart_note.lane), time=float(chart_note.time_seconds))
            if self._placement is not None:
                note.position = self._placement.place(note)
            self._active.append(note)
            activated.append(note)
            self._cursor += 1

        if activated:
            logger.debug("Activated %d notes, cursor at %d/%d", len(activated), self._cursor, len(chart_notes))
        return activated

    def active_notes(self) -> List[gameplay_models.Note]:
        return list(self._active)

    def pending_notes(self, lane: Optional[int] = None) -> List[gameplay_models.Note]:
        return [
            note
            for note in self._active
            if note.is_pending and (lane is None or note.lane == int(lane))
        ]

    def pending_count(self) -> int:
        return sum(1 for note in self._active if note.is_pending)

    def find_nearest_pending(
        self,
        *,
        lane: int,
        target_time_seconds: float,
        max_window_seconds: float,
    ) -> Optional[gameplay_models.Note]:
        target = float(target_time_seconds)
        window = round(float(max_window_seconds), gameplay_models.TIME_DECIMALS)

        best_note: Optional[gameplay_models.Note] = None
        best_abs_delta = float("inf")

        for candidate in self.pending_notes(lane):
            abs_delta = abs(gameplay_models.time_delta(candidate.time, target))
            if abs_delta > window:
                continue
            if abs_delta < best_abs_delta:
                best_note = candidate
                best_abs_delta = abs_delta
            elif abs_delta == best_abs_delta and best_note is not None and candidate.time < best_note.time:
                # Equidistant: the earlier note wins.
                best_note = candidate

        return best_note

    def pending_past(self, cutoff_time_seconds: float) -> List[gameplay_models.Note]:
        cutoff = float(cutoff_time_seconds)
        candidates = [note for note in self._active if note.is_pending and note.time < cutoff]
        candidates.sort(key=lambda item: (item.time, item.lane))
        return candidates

    def mark_judged(
        self,
        note: gameplay_models.Note,
        *,
        state: gameplay_models.NoteState,
        label: gameplay_models.JudgementLabel,
        judged_at: float,
        delta_seconds: float,
    ) -> None:
        if not note.is_pending:
            raise ValueError(f"Note {note.id} already judged as {note.state.value}")
        if state is gameplay_models.NoteState.PENDING:
            raise ValueError("Judged state must be HIT or MISSED")
        note.state = state
        note.label = label
        note.judged_at = float(judged_at)
        note.delta_seconds = float(delta_seconds)

    def is_expired(self, note: gameplay_models.Note, now: float) -> bool:
        if note.is_pending or note.judged_at is None:
            return False
        if note.state is gameplay_models.NoteState.HIT:
            decay_seconds = float(self._config.hit_decay_seconds)
        else:
            decay_seconds = float(self._config.miss_decay_seconds)
        return float(now) - note.judged_at > decay_seconds

    def prune_expired(self, now: float) -> List[gameplay_models.Note]:
        kept: List[gameplay_models.Note] = []
        removed: List[gameplay_models.Note] = []
        for note in self._active:
            if self.is_expired(note, now):
                removed.append(note)
            else:
                kept.append(note)
        self._active = kept
        return removed

    def is_finished(self) -> bool:
        return self._cursor >= len(self._chart.notes) and not self._active


def _run_unit_tests() -> None:
    notes = tuple(gameplay_models.ChartNote(time_seconds=0.5 * index, lane=index % 4) for index in range(1, 11))
    chart = gameplay_models.Chart(notes=notes, tempo=120, duration_seconds=6.0)
    scheduler = NoteScheduler(chart)

    activated = scheduler.advance(0.0)
    assert [note.id for note in activated] == [0, 1, 2, 3]
    assert scheduler.advance(0.1) == []
    assert scheduler.next_chart_index == 4

    first = activated[0]
    scheduler.mark_judged(
        first,
        state=gameplay_models.NoteState.HIT,
        label=gameplay_models.JudgementLabel.COOL,
        judged_at=0.5,
        delta_seconds=0.0,
    )
    assert [note.id for note in scheduler.advance(0.5)] == [4]
    assert not scheduler.is_expired(first, 0.85)
    assert scheduler.is_expired(first, 0.95)
    assert scheduler.prune_expired(1.0) == [first]

    nearest = scheduler.find_nearest_pending(lane=1, target_time_seconds=2.4, max_window_seconds=0.35)
    assert nearest is not None and nearest.time == 2.5


if __name__ == "__main__":
    _run_unit_tests()
    print("note_scheduler.py: ok")

# -*- coding: utf-8 -*-
########################
# game_session.py
########################
# Purpose:
# - One play session: owns the NoteScheduler, JudgeEngine and ApproachSmoother for a single chart.
# - Runs the per-frame tick and exposes read-only state to renderers and feedback collaborators.
#
# Design notes:
# - Single writer: only tick() mutates session state. Input collaborators call submit_input(), which
#   only queues. The queue is drained inside tick().
# - Tick order is fixed:
#   1) read clock  2) update approach time  3) scheduler advance  4) drain input
#   5) automatic miss sweep  6) prune notes past their decay window
# - No module level state. Several sessions can run side by side.
# - Stopping is simply not calling tick() again. Nothing needs rollback.
#
########################
# Interfaces:
# Public dataclasses:
# - TickReport(song_time_seconds: float, activated: tuple[Note, ...], judgements: tuple[JudgementResult, ...], pruned: int)
#
# Public classes:
# - class GameSession
#   - __init__(chart: Chart, clock: ClockSource, *, app_config: Optional[AppConfig] = None,
#              input_source: Optional[InputSource] = None, seed: int = 0)
#   - from_chart_result(chart_result: ChartResult, clock: ClockSource, ...) -> GameSession
#   - submit_input(event: InputEvent | TapEvent) -> None
#   - tick() -> TickReport
#   - get_active_notes() -> tuple[Note, ...]
#   - get_score_state() -> ScoreState
#   - get_scheduler_state() -> SchedulerState
#   - on_judgement(callback) -> Callable[[], None]
#   - travel_fraction(note: Note) -> float
#   - is_finished() -> bool
#   - restart() -> None
#
# Public functions:
# - async run_session(session: GameSession, *, frame_seconds: float = 1 / 60, should_stop=None) -> ScoreState
#
########################

from __future__ import annotations

import asyncio
import collections
import logging
from dataclasses import dataclass
from typing import Callable, Deque, Optional, Tuple

from approach_smoother import ApproachSmoother
from chart_engine import ChartResult
from config import AppConfig
import gameplay_models
from input_router import InputSource
import judge
import note_scheduler
from timing_model import ClockSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickReport:
    song_time_seconds: float
    activated: Tuple[gameplay_models.Note, ...]
    judgements: Tuple[gameplay_models.JudgementResult, ...]
    pruned: int


class GameSession:
    def __init__(
        self,
        chart: gameplay_models.Chart,
        clock: ClockSource,
        *,
        app_config: Optional[AppConfig] = None,
        input_source: Optional[InputSource] = None,
        seed: int = 0,
    ) -> None:
        self._config = app_config if app_config is not None else AppConfig()
        self._clock = clock
        self._input_source = input_source

        playfield = self._config.playfield
        placement = note_scheduler.NotePlacement(
            width=playfield.width,
            height=playfield.height,
            margin_ratio=playfield.margin_ratio,
            seed=seed,
        )
        self._scheduler = note_scheduler.NoteScheduler(chart, self._config.scheduler, placement=placement)
        self._judge = judge.JudgeEngine.from_config(self._scheduler, self._config.judgement)
        self._smoother = ApproachSmoother(chart.tempo, self._config.approach)
        self._hit_radius = playfield.hit_radius()
        self._tap_radius_multiplier = float(playfield.tap_radius_multiplier)

        self._pending_input: Deque[gameplay_models.GameplayInput] = collections.deque()
        self._last_song_time_seconds = 0.0

    @classmethod
    def from_chart_result(
        cls,
        chart_result: ChartResult,
        clock: ClockSource,
        *,
        app_config: Optional[AppConfig] = None,
        input_source: Optional[InputSource] = None,
    ) -> "GameSession":
        return cls(
            chart_result.chart,
            clock,
            app_config=app_config,
            input_source=input_source,
            seed=chart_result.seed,
        )

    # ------------------------------------------------------------------
    # Collaborator API
    # ------------------------------------------------------------------

    def submit_input(self, event: gameplay_models.GameplayInput) -> None:
        self._pending_input.append(event)

    def on_judgement(self, callback: Callable[[gameplay_models.JudgementResult], None]) -> Callable[[], None]:
        return self._judge.on_judgement(callback)

    def get_active_notes(self) -> Tuple[gameplay_models.Note, ...]:
        return tuple(note.snapshot() for note in self._scheduler.active_notes())

    def get_score_state(self) -> judge.ScoreState:
        return self._judge.score_state().snapshot()

    def get_scheduler_state(self) -> gameplay_models.SchedulerState:
        return gameplay_models.SchedulerState(
            next_chart_index=self._scheduler.next_chart_index,
            active_count=self._scheduler.pending_count(),
            smoothed_approach=self._smoother.value,
        )

    def travel_fraction(self, note: gameplay_models.Note) -> float:
        return self._smoother.travel_fraction(note, self._last_song_time_seconds)

    @property
    def chart(self) -> gameplay_models.Chart:
        return self._scheduler.chart()

    @property
    def hit_radius(self) -> float:
        return self._hit_radius

    @property
    def song_time_seconds(self) -> float:
        return self._last_song_time_seconds

    def is_finished(self) -> bool:
        return self._scheduler.is_finished() and not self._pending_input

    def restart(self) -> None:
        restart_clock = getattr(self._clock, "restart", None)
        if callable(restart_clock):
            restart_clock()
        self._scheduler.reset()
        self._judge.reset()
        self._smoother.reset()
        self._pending_input.clear()
        self._last_song_time_seconds = 0.0

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self) -> TickReport:
        now = float(self._clock.song_time_seconds())
        self._last_song_time_seconds = now

        self._smoother.update(self._scheduler.pending_count())

        activated = self._scheduler.advance(now)

        if self._input_source is not None:
            self._pending_input.extend(self._input_source.poll(now))
        while self._pending_input:
            self._apply_input(self._pending_input.popleft())

        self._judge.update_for_time(now)

        pruned = self._scheduler.prune_expired(now)

        return TickReport(
            song_time_seconds=now,
            activated=tuple(note.snapshot() for note in activated),
            judgements=tuple(self._judge.drain_recent_judgements()),
            pruned=len(pruned),
        )

    def _apply_input(self, event: gameplay_models.GameplayInput) -> Optional[gameplay_models.JudgementResult]:
        if isinstance(event, gameplay_models.TapEvent):
            return self._judge.on_tap_event(
                event,
                hit_radius=self._hit_radius,
                radius_multiplier=self._tap_radius_multiplier,
            )
        if isinstance(event, gameplay_models.InputEvent):
            return self._judge.on_input_event(event)
        raise TypeError(f"Unsupported input event: {event!r}")


async def run_session(
    session: GameSession,
    *,
    frame_seconds: float = 1.0 / 60.0,
    should_stop: Optional[Callable[[], bool]] = None,
) -> judge.ScoreState:
    """Cooperative frame loop. Returns the final score once stopped or the chart is exhausted."""
    frame_count = 0
    while True:
        if should_stop is not None and should_stop():
            logger.info("Session stopped after %d frames", frame_count)
            break
        session.tick()
        frame_count += 1
        if session.is_finished():
            logger.info("Chart finished after %d frames", frame_count)
            break
        await asyncio.sleep(float(frame_seconds))
    return session.get_score_state()

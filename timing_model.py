# -*- coding: utf-8 -*-
########################
# timing_model.py
########################
# Purpose:
# - Single source of truth for song timing in gameplay.
# - Converts player time into song time by applying a configurable AV offset.
# - Holds the tempo map used to turn beat indexes into seconds.
#
# Design notes:
# - Gameplay code must read time through a ClockSource, never from wall time directly.
# - Song time is non-decreasing within a playback session. restart() starts a new session at 0.
# - Clamp player time to non-negative.
#
########################
# Interfaces:
# Public protocols:
# - ClockSource: song_time_seconds() -> float
#
# Public dataclasses:
# - TimingSnapshot(player_time_seconds: float, av_offset_seconds: float, song_time_seconds: float)
# - BpmChange(time_seconds: float, bpm: float, beat_length_seconds: float)
#
# Public classes:
# - class TimingModel (externally driven clock)
#   - player_time_seconds() -> float
#   - av_offset_seconds() -> float
#   - song_time_seconds() -> float
#   - set_av_offset_seconds(av_offset_seconds: float) -> None
#   - update_player_time_seconds(player_time_seconds: float) -> None
#   - restart() -> None
#   - snapshot() -> TimingSnapshot
# - class MonotonicClock (self driven clock on time.monotonic)
#   - start() -> None, restart() -> None, song_time_seconds() -> float
# - class TempoMap
#   - add_bpm_change(time_seconds: float, bpm: float) -> None
#   - bpm_at(time_seconds: float) -> Optional[BpmChange]
#   - beat_to_seconds(beat_index: float) -> float
#   - reset() -> None
#
# Inputs:
# - player_time_seconds from the audio source (seconds).
# - av_offset_seconds from configuration (seconds).
#
# Outputs:
# - Derived song_time_seconds used by NoteScheduler, JudgeEngine and GameSession.
#
########################

from __future__ import annotations

import bisect
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class ClockSource(Protocol):
    def song_time_seconds(self) -> float:
        ...


@dataclass(frozen=True)
class TimingSnapshot:
    player_time_seconds: float
    av_offset_seconds: float
    song_time_seconds: float


class TimingModel:
    def __init__(self, av_offset_seconds: float = 0.0) -> None:
        self._player_time_seconds = 0.0
        self._av_offset_seconds = float(av_offset_seconds)

    def player_time_seconds(self) -> float:
        return float(self._player_time_seconds)

    def av_offset_seconds(self) -> float:
        return float(self._av_offset_seconds)

    def song_time_seconds(self) -> float:
        # AV offset may be negative, so song time may be negative near start.
        return float(self._player_time_seconds) + float(self._av_offset_seconds)

    def set_av_offset_seconds(self, av_offset_seconds: float) -> None:
        self._av_offset_seconds = float(av_offset_seconds)

    def update_player_time_seconds(self, player_time_seconds: float) -> None:
        value = float(player_time_seconds)
        if value < 0.0:
            value = 0.0
        # Late or jittery reports never move the session clock backwards.
        if value < self._player_time_seconds:
            return
        self._player_time_seconds = value

    def restart(self) -> None:
        self._player_time_seconds = 0.0

    def snapshot(self) -> TimingSnapshot:
        return TimingSnapshot(
            player_time_seconds=self.player_time_seconds(),
            av_offset_seconds=self.av_offset_seconds(),
            song_time_seconds=self.song_time_seconds(),
        )


class MonotonicClock:
    """Playback clock that measures elapsed time since start() on a monotonic timer.

    time_function is injectable so a session can be driven from a recorded trace.
    """

    def __init__(
        self,
        av_offset_seconds: float = 0.0,
        time_function: Callable[[], float] = time.monotonic,
    ) -> None:
        self._time_function = time_function
        self._timing_model = TimingModel(av_offset_seconds=av_offset_seconds)
        self._origin: Optional[float] = None

    def start(self) -> None:
        if self._origin is None:
            self._origin = float(self._time_function())

    def restart(self) -> None:
        self._origin = float(self._time_function())
        self._timing_model.restart()

    def is_running(self) -> bool:
        return self._origin is not None

    def song_time_seconds(self) -> float:
        if self._origin is not None:
            elapsed = float(self._time_function()) - self._origin
            self._timing_model.update_player_time_seconds(elapsed)
        return self._timing_model.song_time_seconds()

    def snapshot(self) -> TimingSnapshot:
        self.song_time_seconds()
        return self._timing_model.snapshot()


@dataclass(frozen=True)
class BpmChange:
    time_seconds: float
    bpm: float
    beat_length_seconds: float


class TempoMap:
    def __init__(self) -> None:
        self._changes: List[BpmChange] = []

    @classmethod
    def constant(cls, bpm: float) -> "TempoMap":
        tempo_map = cls()
        tempo_map.add_bpm_change(0.0, bpm)
        return tempo_map

    def changes(self) -> List[BpmChange]:
        return list(self._changes)

    def add_bpm_change(self, time_seconds: float, bpm: float) -> None:
        bpm_value = float(bpm)
        if bpm_value <= 0.0:
            raise ValueError(f"bpm must be positive, got {bpm!r}")
        change = BpmChange(
            time_seconds=float(time_seconds),
            bpm=bpm_value,
            beat_length_seconds=60.0 / bpm_value,
        )
        keys = [item.time_seconds for item in self._changes]
        self._changes.insert(bisect.bisect_right(keys, change.time_seconds), change)

    def reset(self) -> None:
        self._changes.clear()

    def bpm_at(self, time_seconds: float) -> Optional[BpmChange]:
        if not self._changes:
            return None
        current = self._changes[0]
        for change in self._changes:
            if change.time_seconds <= float(time_seconds):
                current = change
            else:
                break
        return current

    def beat_to_seconds(self, beat_index: float) -> float:
        accumulated = 0.0
        remaining_beats = float(beat_index)

        for index, segment in enumerate(self._changes):
            next_change = self._changes[index + 1] if index + 1 < len(self._changes) else None
            if next_change is None:
                accumulated += remaining_beats * segment.beat_length_seconds
                break

            beats_in_segment = (next_change.time_seconds - segment.time_seconds) / segment.beat_length_seconds
            if remaining_beats > beats_in_segment:
                accumulated += beats_in_segment * segment.beat_length_seconds
                remaining_beats -= beats_in_segment
            else:
                accumulated += remaining_beats * segment.beat_length_seconds
                break

        return accumulated


def _run_unit_tests() -> None:
    model = TimingModel()
    model.set_av_offset_seconds(-0.2)
    model.update_player_time_seconds(-5.0)
    assert model.player_time_seconds() == 0.0
    assert abs(model.song_time_seconds() - (-0.2)) < 1e-9

    model.update_player_time_seconds(1.5)
    assert abs(model.song_time_seconds() - 1.3) < 1e-9

    model.update_player_time_seconds(1.0)
    assert abs(model.player_time_seconds() - 1.5) < 1e-9

    model.restart()
    assert model.player_time_seconds() == 0.0

    ticks = iter([10.0, 10.5, 12.0])
    clock = MonotonicClock(time_function=lambda: next(ticks))
    clock.start()
    assert abs(clock.song_time_seconds() - 0.5) < 1e-9
    assert abs(clock.song_time_seconds() - 2.0) < 1e-9

    tempo_map = TempoMap()
    tempo_map.add_bpm_change(0.0, 120.0)
    tempo_map.add_bpm_change(2.0, 60.0)
    assert abs(tempo_map.beat_to_seconds(4.0) - 2.0) < 1e-9
    assert abs(tempo_map.beat_to_seconds(5.0) - 3.0) < 1e-9
    assert tempo_map.bpm_at(2.5).bpm == 60.0


if __name__ == "__main__":
    _run_unit_tests()
    print("timing_model.py: ok")

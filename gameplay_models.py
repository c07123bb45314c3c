# -*- coding: utf-8 -*-
########################
# gameplay_models.py
########################
# Purpose:
# - Core gameplay data models for the runtime gameplay pipeline.
# - Defines the Chart representation, live Note state, input events and judgement results.
#
# Design notes:
# - Keep these models stable. Prefer extending with new optional fields rather than breaking changes.
# - No audio, rendering or input APIs here. These are plain dataclasses and enums.
# - Note is the only mutable model. Only NoteScheduler.mark_judged writes its judgement fields.
#
########################
# Interfaces:
# Public constants:
# - LANE_COUNT = 4
# - FALLBACK_DECODE_FAILURE, FALLBACK_SPARSE_CHART
# - TIME_DECIMALS = 9
#
# Public functions:
# - time_delta(later_seconds: float, earlier_seconds: float) -> float
#
# Public enums:
# - class NoteState(enum.Enum): PENDING | HIT | MISSED
# - class JudgementLabel(enum.Enum): COOL | FINE | MISS
#
# Public dataclasses:
# - BeatTrack(beat_times: tuple[float, ...], tempo: Optional[int], used_fallback: bool, fallback_reason: Optional[str])
# - ChartNote(time_seconds: float, lane: int)
# - Chart(notes: tuple[ChartNote, ...], tempo: Optional[int], duration_seconds: float)
# - Note(id: int, lane: int, time: float, state: NoteState, judged_at: Optional[float], ...)
# - InputEvent(lane: int, at_time: float)
# - TapEvent(x: float, y: float, at_time: float)
# - JudgementResult(note: Note, label: JudgementLabel, score_delta: int, combo_after: int, time_seconds: float, automatic: bool)
# - SchedulerState(next_chart_index: int, active_count: int, smoothed_approach: float)
#
# Inputs/Outputs:
# - These types are exchanged between OnsetDetector, chart_generator, NoteScheduler, JudgeEngine,
#   GameSession and any renderer or input collaborator.
#
########################

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass
from typing import Optional, Tuple, Union


LANE_COUNT = 4

FALLBACK_DECODE_FAILURE = "decode_failure"
FALLBACK_SPARSE_CHART = "sparse_chart"

# Timing comparisons are made at nanosecond resolution so window edges such as 2.08 - 2.0 land on 0.08.
TIME_DECIMALS = 9


def time_delta(later_seconds: float, earlier_seconds: float) -> float:
    return round(float(later_seconds) - float(earlier_seconds), TIME_DECIMALS)


class NoteState(enum.Enum):
    PENDING = "pending"
    HIT = "hit"
    MISSED = "missed"


class JudgementLabel(enum.Enum):
    COOL = "cool"
    FINE = "fine"
    MISS = "miss"

    @property
    def is_hit(self) -> bool:
        return self is not JudgementLabel.MISS


@dataclass(frozen=True)
class BeatTrack:
    beat_times: Tuple[float, ...]
    tempo: Optional[int]
    used_fallback: bool = False
    fallback_reason: Optional[str] = None


@dataclass(frozen=True)
class ChartNote:
    time_seconds: float
    lane: int


@dataclass(frozen=True)
class Chart:
    notes: Tuple[ChartNote, ...]
    tempo: Optional[int]
    duration_seconds: float


@dataclass
class Note:
    id: int
    lane: int
    time: float
    state: NoteState = NoteState.PENDING
    judged_at: Optional[float] = None
    label: Optional[JudgementLabel] = None
    delta_seconds: Optional[float] = None
    position: Optional[Tuple[float, float]] = None

    @property
    def is_pending(self) -> bool:
        return self.state is NoteState.PENDING

    def snapshot(self) -> "Note":
        return dataclasses.replace(self)


@dataclass(frozen=True)
class InputEvent:
    lane: int
    at_time: float


@dataclass(frozen=True)
class TapEvent:
    x: float
    y: float
    at_time: float


GameplayInput = Union[InputEvent, TapEvent]


@dataclass(frozen=True)
class JudgementResult:
    note: Note
    label: JudgementLabel
    score_delta: int
    combo_after: int
    time_seconds: float
    automatic: bool = False


@dataclass(frozen=True)
class SchedulerState:
    next_chart_index: int
    active_count: int
    smoothed_approach: float

# -*- coding: utf-8 -*-
########################
# chart_generator.py
########################
# Purpose:
# - Turn beat times into a playable Chart by assigning each beat a lane.
# - Lane assignment is a pluggable strategy chosen by configuration.
# - Also builds beat-grid charts from a TempoMap and a subdivision pattern table.
#
# Design notes:
# - Deterministic for a given seed: the lane RNG is seeded from the source id and generator version.
# - Chart notes are sorted by (time_seconds, lane).
#
########################
# Interfaces:
# Public dataclasses:
# - GeneratedChart(chart: Chart, bpm_guess: float, seed: int, generator_version: str, used_fallback: bool, fallback_reason: Optional[str])
#
# Public protocols:
# - LaneStrategy: next_lane(beat_index: int, time_seconds: float) -> int
#
# Public classes:
# - UniformRandomLanes(seed: int, lane_count: int = 4)
# - PatternTableLanes(pattern: Sequence[int], lane_count: int = 4)
#
# Public functions:
# - seed_for(source_id: str, generator_version: str = GENERATOR_VERSION) -> int
# - make_lane_strategy(chart_config: ChartConfig, *, source_id: str) -> tuple[LaneStrategy, int]
# - build_chart(beat_track: BeatTrack, *, lane_strategy: LaneStrategy, duration_seconds: Optional[float] = None) -> Chart
# - generate_chart(beat_track: BeatTrack, *, source_id: str, chart_config: Optional[ChartConfig] = None, ...) -> GeneratedChart
# - generate_fallback_chart(duration_seconds: Optional[float], *, source_id: str, reason: str, ...) -> GeneratedChart
# - build_subdivision_chart(tempo_map: TempoMap, *, duration_seconds: float, pattern_table=DIVA_PATTERN_TABLE, lead_in_seconds: float = 1.0) -> Chart
#
########################

from __future__ import annotations

import hashlib
import random
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Tuple

from config import ChartConfig, DetectorConfig
import gameplay_models
import onset_detector
import timing_model


GENERATOR_VERSION = "onset_v1"

DEFAULT_BPM = 120.0

# Lane cycle used by PatternTableLanes: W A S D walks with a few crossovers.
DEFAULT_LANE_PATTERN: Tuple[int, ...] = (
    0, 1, 2, 3,
    1, 0, 3, 2,
    0, 2, 1, 3,
    2, 3, 0, 1,
)

# pattern_table[measure][beat][subdivision] = lane or None
DIVA_PATTERN_TABLE: Tuple[Tuple[Tuple[Optional[int], ...], ...], ...] = (
    (
        (0, None, None, None),
        (1, None, 2, None),
        (None, None, None, None),
        (3, None, None, None),
    ),
    (
        (0, None, 1, None),
        (None, None, 2, None),
        (1, None, None, 3),
        (None, 0, None, None),
    ),
)


class LaneStrategy(Protocol):
    def next_lane(self, beat_index: int, time_seconds: float) -> int:
        ...


class UniformRandomLanes:
    def __init__(self, seed: int, lane_count: int = gameplay_models.LANE_COUNT) -> None:
        self._random_generator = random.Random(int(seed))
        self._lane_count = int(lane_count)

    def next_lane(self, beat_index: int, time_seconds: float) -> int:
        return self._random_generator.randrange(self._lane_count)


class PatternTableLanes:
    def __init__(self, pattern: Sequence[int] = DEFAULT_LANE_PATTERN, lane_count: int = gameplay_models.LANE_COUNT) -> None:
        if not pattern:
            raise ValueError("pattern must contain at least one lane")
        self._pattern = tuple(int(lane) % int(lane_count) for lane in pattern)

    def next_lane(self, beat_index: int, time_seconds: float) -> int:
        return self._pattern[int(beat_index) % len(self._pattern)]


@dataclass(frozen=True)
class GeneratedChart:
    chart: gameplay_models.Chart
    bpm_guess: float
    seed: int
    generator_version: str
    used_fallback: bool = False
    fallback_reason: Optional[str] = None


def seed_for(source_id: str, generator_version: str = GENERATOR_VERSION) -> int:
    payload = f"{source_id}|{generator_version}".encode("utf-8")
    digest = hashlib.sha256(payload).digest()
    return int.from_bytes(digest[:8], byteorder="big", signed=False)


def make_lane_strategy(chart_config: ChartConfig, *, source_id: str) -> Tuple[LaneStrategy, int]:
    seed = int(chart_config.seed) if chart_config.seed is not None else seed_for(source_id)
    if chart_config.lane_strategy == "pattern":
        # Rotate the pattern by the seed so different songs start on different lanes.
        offset = seed % len(DEFAULT_LANE_PATTERN)
        pattern = DEFAULT_LANE_PATTERN[offset:] + DEFAULT_LANE_PATTERN[:offset]
        return PatternTableLanes(pattern, lane_count=chart_config.lane_count), seed
    return UniformRandomLanes(seed, lane_count=chart_config.lane_count), seed


def build_chart(
    beat_track: gameplay_models.BeatTrack,
    *,
    lane_strategy: LaneStrategy,
    duration_seconds: Optional[float] = None,
) -> gameplay_models.Chart:
    notes = [
        gameplay_models.ChartNote(time_seconds=float(beat_time), lane=int(lane_strategy.next_lane(index, float(beat_time))))
        for index, beat_time in enumerate(beat_track.beat_times)
    ]
    notes.sort(key=lambda item: (item.time_seconds, item.lane))

    if duration_seconds is not None and float(duration_seconds) > 0.0:
        effective_duration_seconds = float(duration_seconds)
    else:
        effective_duration_seconds = notes[-1].time_seconds if notes else 0.0

    return gameplay_models.Chart(
        notes=tuple(notes),
        tempo=beat_track.tempo,
        duration_seconds=effective_duration_seconds,
    )


def generate_chart(
    beat_track: gameplay_models.BeatTrack,
    *,
    source_id: str,
    chart_config: Optional[ChartConfig] = None,
    duration_seconds: Optional[float] = None,
    generator_version: str = GENERATOR_VERSION,
) -> GeneratedChart:
    effective_config = chart_config if chart_config is not None else ChartConfig()
    lane_strategy, seed = make_lane_strategy(effective_config, source_id=source_id)
    chart = build_chart(beat_track, lane_strategy=lane_strategy, duration_seconds=duration_seconds)
    bpm_guess = float(beat_track.tempo) if beat_track.tempo is not None else DEFAULT_BPM
    return GeneratedChart(
        chart=chart,
        bpm_guess=bpm_guess,
        seed=int(seed),
        generator_version=str(generator_version),
        used_fallback=bool(beat_track.used_fallback),
        fallback_reason=beat_track.fallback_reason,
    )


def generate_fallback_chart(
    duration_seconds: Optional[float],
    *,
    source_id: str,
    reason: str,
    chart_config: Optional[ChartConfig] = None,
    detector_config: Optional[DetectorConfig] = None,
) -> GeneratedChart:
    """Chart straight from the metronome grid, used when no audio buffer could be decoded."""
    beat_track = onset_detector.OnsetDetector(detector_config).fallback(duration_seconds, reason)
    return generate_chart(
        beat_track,
        source_id=source_id,
        chart_config=chart_config,
        duration_seconds=duration_seconds,
    )


def build_subdivision_chart(
    tempo_map: timing_model.TempoMap,
    *,
    duration_seconds: float,
    pattern_table: Sequence[Sequence[Sequence[Optional[int]]]] = DIVA_PATTERN_TABLE,
    lead_in_seconds: float = 1.0,
) -> gameplay_models.Chart:
    if not pattern_table:
        raise ValueError("pattern_table must contain at least one measure")
    if not tempo_map.changes():
        raise ValueError("tempo_map must contain at least one bpm change")

    notes: List[gameplay_models.ChartNote] = []
    beat_index = 0
    while True:
        beat_start = float(lead_in_seconds) + tempo_map.beat_to_seconds(beat_index)
        if beat_start >= float(duration_seconds):
            break

        measure = pattern_table[(beat_index // 4) % len(pattern_table)]
        beat_pattern = measure[beat_index % len(measure)]
        for subdivision, lane in enumerate(beat_pattern):
            if lane is None:
                continue
            offset_beats = beat_index + subdivision / float(len(beat_pattern))
            time_seconds = float(lead_in_seconds) + tempo_map.beat_to_seconds(offset_beats)
            if time_seconds < float(duration_seconds):
                notes.append(gameplay_models.ChartNote(time_seconds=time_seconds, lane=int(lane)))

        beat_index += 1

    notes.sort(key=lambda item: (item.time_seconds, item.lane))
    first_change = tempo_map.bpm_at(0.0)
    tempo = int(round(first_change.bpm)) if first_change is not None else None
    return gameplay_models.Chart(notes=tuple(notes), tempo=tempo, duration_seconds=float(duration_seconds))

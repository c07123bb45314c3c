# -*- coding: utf-8 -*-
########################
# onset_detector.py
########################
# Purpose:
# - Derive beat times and a coarse tempo estimate from a decoded SampleBuffer.
# - Substitute a fallback metronome grid when detection is sparse or impossible.
#
# Design notes:
# - Deterministic. Only the first channel is analyzed.
# - Never raises on bad input: empty, short or silent buffers produce the fallback grid.
# - Tempo is a coarse average of inter-onset intervals, not an autocorrelation estimate.
#   Values outside the configured BPM range are discarded.
#
########################
# Key Logic:
# - Short-time energy: sqrt(mean(x^2)) per frame, frame_size samples, hop_size step,
#   only windows fully inside the buffer (start + frame_size < sample count).
# - Threshold: mean frame energy * threshold_ratio.
# - Peak pick: interior frames above threshold and strictly above both neighbours.
# - Debounce: greedy left to right, keep an onset only if at least min_gap_seconds after the last kept one.
#
########################
# Interfaces:
# Public exceptions:
# - class InvalidTempo(ValueError)
#
# Public functions:
# - frame_energies(samples: np.ndarray, frame_size: int, hop_size: int) -> np.ndarray
# - pick_onsets(energies: np.ndarray, *, sample_rate: int, hop_size: int, threshold_ratio: float, min_gap_seconds: float) -> list[float]
# - estimate_tempo(beat_times: Sequence[float]) -> Optional[int]
# - validate_tempo(bpm: int, *, min_bpm: int, max_bpm: int) -> int
# - fallback_beat_times(duration_seconds: Optional[float], *, spacing_seconds: float, default_duration_seconds: float) -> list[float]
#
# Public classes:
# - class OnsetDetector
#   - __init__(detector_config: Optional[DetectorConfig] = None)
#   - detect(buffer: SampleBuffer) -> BeatTrack
#   - fallback(duration_seconds: Optional[float], reason: str) -> BeatTrack
#
########################

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from audio_source import SampleBuffer
from config import DetectorConfig
import gameplay_models

logger = logging.getLogger(__name__)


class InvalidTempo(ValueError):
    """Raised when an estimated tempo falls outside the accepted BPM range."""


def frame_energies(samples: np.ndarray, frame_size: int, hop_size: int) -> np.ndarray:
    data = np.asarray(samples, dtype=np.float64).reshape(-1)
    # Windows must end strictly before the last sample.
    usable = data[: max(0, data.shape[0] - 1)]
    if usable.shape[0] < int(frame_size):
        return np.zeros(0, dtype=np.float64)
    windows = sliding_window_view(usable, int(frame_size))[:: int(hop_size)]
    return np.sqrt(np.mean(windows * windows, axis=1))


def pick_onsets(
    energies: np.ndarray,
    *,
    sample_rate: int,
    hop_size: int,
    threshold_ratio: float,
    min_gap_seconds: float,
) -> List[float]:
    if energies.shape[0] < 3 or int(sample_rate) <= 0:
        return []

    threshold = float(np.mean(energies)) * float(threshold_ratio)
    interior = energies[1:-1]
    is_peak = (interior > threshold) & (interior > energies[:-2]) & (interior > energies[2:])
    candidate_indexes = np.nonzero(is_peak)[0] + 1

    accepted: List[float] = []
    last_time = -math.inf
    for frame_index in candidate_indexes:
        time_seconds = float(frame_index) * float(hop_size) / float(sample_rate)
        if time_seconds - last_time >= float(min_gap_seconds):
            accepted.append(time_seconds)
            last_time = time_seconds
    return accepted


def estimate_tempo(beat_times: Sequence[float]) -> Optional[int]:
    if len(beat_times) < 2:
        return None
    span = float(beat_times[-1]) - float(beat_times[0])
    if span <= 0.0:
        return None
    average_interval = span / float(len(beat_times) - 1)
    return int(round(60.0 / average_interval))


def validate_tempo(bpm: int, *, min_bpm: int, max_bpm: int) -> int:
    if bpm < int(min_bpm) or bpm > int(max_bpm):
        raise InvalidTempo(f"Estimated tempo {bpm} BPM outside [{min_bpm}, {max_bpm}]")
    return int(bpm)


def fallback_beat_times(
    duration_seconds: Optional[float],
    *,
    spacing_seconds: float = 0.5,
    default_duration_seconds: float = 120.0,
) -> List[float]:
    if duration_seconds is None or not math.isfinite(float(duration_seconds)) or float(duration_seconds) <= 0.0:
        span = float(default_duration_seconds)
    else:
        span = float(duration_seconds)

    # Index based so long grids do not accumulate float drift.
    count = int(math.ceil(span / float(spacing_seconds)))
    beat_times = [index * float(spacing_seconds) for index in range(count)]
    return [value for value in beat_times if value < span]


class OnsetDetector:
    def __init__(self, detector_config: Optional[DetectorConfig] = None) -> None:
        self._config = detector_config if detector_config is not None else DetectorConfig()

    def config(self) -> DetectorConfig:
        return self._config

    def _tempo_for(self, beat_times: Sequence[float]) -> Optional[int]:
        bpm = estimate_tempo(beat_times)
        if bpm is None:
            return None
        try:
            return validate_tempo(bpm, min_bpm=self._config.min_tempo_bpm, max_bpm=self._config.max_tempo_bpm)
        except InvalidTempo as exc:
            logger.warning("Discarding tempo estimate: %s", exc)
            return None

    def fallback(self, duration_seconds: Optional[float], reason: str) -> gameplay_models.BeatTrack:
        beat_times = fallback_beat_times(
            duration_seconds,
            spacing_seconds=self._config.fallback_spacing_seconds,
            default_duration_seconds=self._config.fallback_duration_seconds,
        )
        logger.warning(
            "Using fallback metronome grid (%s): %d beats at %.3fs spacing",
            reason,
            len(beat_times),
            self._config.fallback_spacing_seconds,
        )
        return gameplay_models.BeatTrack(
            beat_times=tuple(beat_times),
            tempo=self._tempo_for(beat_times),
            used_fallback=True,
            fallback_reason=str(reason),
        )

    def detect(self, buffer: SampleBuffer) -> gameplay_models.BeatTrack:
        samples = buffer.first_channel()
        if samples.size and not np.all(np.isfinite(samples)):
            samples = np.nan_to_num(samples, nan=0.0, posinf=0.0, neginf=0.0)

        energies = frame_energies(samples, self._config.frame_size, self._config.hop_size)
        beat_times = pick_onsets(
            energies,
            sample_rate=buffer.sample_rate,
            hop_size=self._config.hop_size,
            threshold_ratio=self._config.threshold_ratio,
            min_gap_seconds=self._config.min_gap_seconds,
        )

        if len(beat_times) < int(self._config.min_onsets):
            logger.info("Detected %d onsets, below minimum %d", len(beat_times), self._config.min_onsets)
            return self.fallback(buffer.duration_seconds, gameplay_models.FALLBACK_SPARSE_CHART)

        tempo = self._tempo_for(beat_times)
        logger.info("Detected %d onsets, tempo estimate %s BPM", len(beat_times), tempo)
        return gameplay_models.BeatTrack(beat_times=tuple(beat_times), tempo=tempo)


def detect(buffer: SampleBuffer, detector_config: Optional[DetectorConfig] = None) -> gameplay_models.BeatTrack:
    return OnsetDetector(detector_config).detect(buffer)


def _run_unit_tests() -> None:
    sample_rate = 16384
    samples = np.zeros(sample_rate * 4, dtype=np.float64)
    for pulse_index in range(1, 8):
        start = pulse_index * sample_rate // 2
        samples[start:start + 1024] = 1.0

    track = detect(SampleBuffer.mono(samples, sample_rate))
    assert not track.used_fallback
    assert track.beat_times == tuple(0.5 * index for index in range(1, 8))
    assert track.tempo == 120

    silent = detect(SampleBuffer.mono(np.zeros(sample_rate), sample_rate))
    assert silent.used_fallback
    assert silent.beat_times == (0.0, 0.5)


if __name__ == "__main__":
    _run_unit_tests()
    print("onset_detector.py: ok")

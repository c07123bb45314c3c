# -*- coding: utf-8 -*-
########################
# chart_engine.py
########################
# Purpose:
# - Chart preparation before gameplay starts.
# - Decodes the audio source, runs onset detection and lane assignment, and returns a ready Chart.
#
########################
# Key Logic:
# - prepare() is the only suspension point of the core. It always completes with a playable chart:
#   - decoded buffer -> OnsetDetector -> chart_generator (sparse detection falls back inside the detector)
#   - DecodeFailure -> chart_generator.generate_fallback_chart directly, no buffer reaches the detector
# - Strict contract:
#   - Never raise on audio problems. Fallback is a first class outcome reported in ChartResult.
#
########################
# Interfaces:
# Public dataclasses:
# - @dataclass(frozen=True) class ChartResult
#   - chart: gameplay_models.Chart
#   - bpm_guess: float
#   - source_kind: str  # "detected" | "fallback"
#   - source_id: str
#   - seed: int
#   - fallback_reason: Optional[str]
#
# Public classes:
# - class ChartEngine
#   - __init__(app_config: Optional[AppConfig] = None)
#   - async prepare(audio_source: AudioSource) -> ChartResult
#   - chart_from_buffer(buffer: SampleBuffer, *, source_id: str) -> ChartResult
#
# Inputs:
# - AudioSource (async decode)
#
# Outputs:
# - ChartResult ready to hand to GameSession.
#
########################

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from audio_source import AudioSource, DecodeFailure, SampleBuffer
from config import AppConfig
import chart_generator
import gameplay_models
import onset_detector

logger = logging.getLogger(__name__)

SOURCE_KIND_DETECTED = "detected"
SOURCE_KIND_FALLBACK = "fallback"


@dataclass(frozen=True)
class ChartResult:
    chart: gameplay_models.Chart
    bpm_guess: float
    source_kind: str
    source_id: str
    seed: int
    fallback_reason: Optional[str] = None


def _result_from_generated(generated: chart_generator.GeneratedChart, *, source_id: str) -> ChartResult:
    return ChartResult(
        chart=generated.chart,
        bpm_guess=float(generated.bpm_guess),
        source_kind=SOURCE_KIND_FALLBACK if generated.used_fallback else SOURCE_KIND_DETECTED,
        source_id=str(source_id),
        seed=int(generated.seed),
        fallback_reason=generated.fallback_reason,
    )


class ChartEngine:
    def __init__(self, app_config: Optional[AppConfig] = None) -> None:
        self._config = app_config if app_config is not None else AppConfig()
        self._detector = onset_detector.OnsetDetector(self._config.detector)

    def chart_from_buffer(self, buffer: SampleBuffer, *, source_id: str) -> ChartResult:
        beat_track = self._detector.detect(buffer)
        generated = chart_generator.generate_chart(
            beat_track,
            source_id=source_id,
            chart_config=self._config.chart,
            duration_seconds=buffer.duration_seconds,
        )
        return _result_from_generated(generated, source_id=source_id)

    def fallback_chart(self, *, source_id: str, duration_seconds: Optional[float] = None) -> ChartResult:
        generated = chart_generator.generate_fallback_chart(
            duration_seconds,
            source_id=source_id,
            reason=gameplay_models.FALLBACK_DECODE_FAILURE,
            chart_config=self._config.chart,
            detector_config=self._config.detector,
        )
        return _result_from_generated(generated, source_id=source_id)

    async def prepare(self, audio_source: AudioSource) -> ChartResult:
        source_id = str(audio_source.source_id)
        try:
            buffer = await audio_source.decode()
        except DecodeFailure as exc:
            logger.warning("Audio decode failed for %r, using fallback chart: %s", source_id, exc)
            result = self.fallback_chart(source_id=source_id)
        else:
            result = self.chart_from_buffer(buffer, source_id=source_id)

        logger.info(
            "Prepared %s chart for %r: %d notes, bpm %.0f",
            result.source_kind,
            source_id,
            len(result.chart.notes),
            result.bpm_guess,
        )
        return result

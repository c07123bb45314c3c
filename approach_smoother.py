# -*- coding: utf-8 -*-
########################
# approach_smoother.py
########################
# Purpose:
# - Damped note travel duration ("approach time") for renderers.
# - Busier moments (more pending notes) stretch travel time so notes do not crowd the screen.
#
# Design notes:
# - Visual and feel parameter only. Judgement timing never reads this value.
# - One update() per frame: smoothed += (target - smoothed) * smoothing.
#
########################
# Interfaces:
# Public functions:
# - base_approach_seconds(tempo_bpm: Optional[float], approach_config: ApproachConfig) -> float
#
# Public classes:
# - class ApproachSmoother
#   - __init__(tempo_bpm: Optional[float] = None, approach_config: Optional[ApproachConfig] = None)
#   - base_seconds -> float
#   - value -> float
#   - update(active_count: int) -> float
#   - travel_fraction(note: Note, now: float) -> float
#   - reset() -> None
#
########################

from __future__ import annotations

from typing import Optional

from config import ApproachConfig
import gameplay_models


def base_approach_seconds(tempo_bpm: Optional[float], approach_config: ApproachConfig) -> float:
    bpm = float(tempo_bpm) if tempo_bpm is not None and float(tempo_bpm) > 0.0 else float(approach_config.default_bpm)
    return float(approach_config.base_seconds) + float(approach_config.beats_per_approach) * 60.0 / bpm


class ApproachSmoother:
    def __init__(self, tempo_bpm: Optional[float] = None, approach_config: Optional[ApproachConfig] = None) -> None:
        self._config = approach_config if approach_config is not None else ApproachConfig()
        self._base_seconds = base_approach_seconds(tempo_bpm, self._config)
        self._smoothed_seconds = self._base_seconds

    @property
    def base_seconds(self) -> float:
        return self._base_seconds

    @property
    def value(self) -> float:
        return self._smoothed_seconds

    def target_for(self, active_count: int) -> float:
        return self._base_seconds + max(0, int(active_count)) * float(self._config.density_step_seconds)

    def update(self, active_count: int) -> float:
        target = self.target_for(active_count)
        self._smoothed_seconds += (target - self._smoothed_seconds) * float(self._config.smoothing)
        return self._smoothed_seconds

    def travel_fraction(self, note: gameplay_models.Note, now: float) -> float:
        """0.0 when the note spawns, 1.0 when it reaches its target."""
        if self._smoothed_seconds <= 0.0:
            return 1.0
        fraction = 1.0 - (float(note.time) - float(now)) / self._smoothed_seconds
        return max(0.0, min(1.0, fraction))

    def reset(self) -> None:
        self._smoothed_seconds = self._base_seconds

# -*- coding: utf-8 -*-
########################
# audio_source.py
########################
# Purpose:
# - Decoded audio buffer model and the audio source boundary used during chart preparation.
# - Provides a soundfile based source for local audio files and an in-memory source for tests and tools.
#
# Design notes:
# - Decoding is the only asynchronous step in the core. It runs before gameplay starts.
# - Decode problems surface as DecodeFailure. ChartEngine recovers from it with the fallback grid.
# - SampleBuffer is immutable: channel arrays are copied and marked read-only.
#
########################
# Interfaces:
# Public exceptions:
# - class DecodeFailure(Exception)
#
# Public dataclasses:
# - SampleBuffer(sample_rate: int, channels: tuple[np.ndarray, ...])
#   - duration_seconds -> float
#   - first_channel() -> np.ndarray
#
# Public protocols:
# - AudioSource: current_time() -> float, async decode() -> SampleBuffer, source_id -> str
#
# Public classes:
# - class SoundFileAudioSource(path, clock=None)
# - class InMemoryAudioSource(buffer, clock=None, source_id="memory")
#
########################

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence, Tuple, Union

import numpy as np
import soundfile as sf

from timing_model import ClockSource, TimingModel

logger = logging.getLogger(__name__)


class DecodeFailure(Exception):
    """Raised when an audio source cannot produce a decoded sample buffer."""


@dataclass(frozen=True)
class SampleBuffer:
    sample_rate: int
    channels: Tuple[np.ndarray, ...]

    def __post_init__(self) -> None:
        frozen_channels = []
        for channel in self.channels:
            array = np.array(channel, dtype=np.float64, copy=True).reshape(-1)
            array.setflags(write=False)
            frozen_channels.append(array)
        object.__setattr__(self, "channels", tuple(frozen_channels))
        object.__setattr__(self, "sample_rate", int(self.sample_rate))

    @classmethod
    def mono(cls, samples: Union[Sequence[float], np.ndarray], sample_rate: int) -> "SampleBuffer":
        return cls(sample_rate=sample_rate, channels=(np.asarray(samples),))

    @property
    def frame_count(self) -> int:
        if not self.channels:
            return 0
        return int(self.channels[0].shape[0])

    @property
    def duration_seconds(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return float(self.frame_count) / float(self.sample_rate)

    def first_channel(self) -> np.ndarray:
        if not self.channels:
            return np.zeros(0, dtype=np.float64)
        return self.channels[0]


class AudioSource(Protocol):
    @property
    def source_id(self) -> str:
        ...

    def current_time(self) -> float:
        ...

    async def decode(self) -> SampleBuffer:
        ...


class SoundFileAudioSource:
    """Audio file on disk, decoded with soundfile in a worker thread."""

    def __init__(self, path: Union[str, Path], clock: Optional[ClockSource] = None) -> None:
        self._path = Path(path)
        self._clock: ClockSource = clock if clock is not None else TimingModel()

    @property
    def source_id(self) -> str:
        return self._path.name

    @property
    def path(self) -> Path:
        return self._path

    def current_time(self) -> float:
        return float(self._clock.song_time_seconds())

    def _read(self) -> SampleBuffer:
        try:
            data, sample_rate = sf.read(str(self._path), dtype="float32", always_2d=True)
        except (RuntimeError, OSError, ValueError) as exc:
            raise DecodeFailure(f"Failed to decode {self._path}: {exc}") from exc

        if int(sample_rate) <= 0:
            raise DecodeFailure(f"Invalid sample rate {sample_rate!r} in {self._path}")

        channels = tuple(np.ascontiguousarray(data[:, index]) for index in range(data.shape[1]))
        return SampleBuffer(sample_rate=int(sample_rate), channels=channels)

    async def decode(self) -> SampleBuffer:
        logger.debug("Decoding %s", self._path)
        return await asyncio.to_thread(self._read)


class InMemoryAudioSource:
    """Already decoded audio. Passing buffer=None models an unavailable decoder."""

    def __init__(
        self,
        buffer: Optional[SampleBuffer],
        clock: Optional[ClockSource] = None,
        source_id: str = "memory",
    ) -> None:
        self._buffer = buffer
        self._clock: ClockSource = clock if clock is not None else TimingModel()
        self._source_id = str(source_id)

    @property
    def source_id(self) -> str:
        return self._source_id

    def current_time(self) -> float:
        return float(self._clock.song_time_seconds())

    async def decode(self) -> SampleBuffer:
        if self._buffer is None:
            raise DecodeFailure(f"No decoded audio available for {self._source_id!r}")
        return self._buffer

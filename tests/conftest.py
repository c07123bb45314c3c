import numpy as np
import pytest

from audio_source import SampleBuffer
import gameplay_models

# Sample rate chosen so 0.5 s is a whole number of 512-sample hops.
PULSE_SAMPLE_RATE = 16384
PULSE_LENGTH = 1024


def pulse_samples(seconds: float, interval: float, sample_rate: int = PULSE_SAMPLE_RATE) -> np.ndarray:
    """Silence with a full-scale burst of PULSE_LENGTH samples every `interval` seconds, first burst at `interval`."""
    samples = np.zeros(int(seconds * sample_rate), dtype=np.float64)
    step = int(round(interval * sample_rate))
    for start in range(step, samples.shape[0] - 2 * PULSE_LENGTH, step):
        samples[start:start + PULSE_LENGTH] = 1.0
    return samples


@pytest.fixture
def pulse_buffer():
    """10 s buffer with energy pulses at exact 0.5 s intervals (0.5 .. 9.5 s)."""
    return SampleBuffer.mono(pulse_samples(10.0, 0.5), PULSE_SAMPLE_RATE)


@pytest.fixture
def silent_buffer():
    return SampleBuffer.mono(np.zeros(3 * 44100), 44100)


@pytest.fixture
def make_chart():
    def _make(entries, tempo=None, duration_seconds=None):
        notes = tuple(gameplay_models.ChartNote(time_seconds=float(t), lane=int(lane)) for t, lane in entries)
        if duration_seconds is None:
            duration_seconds = (max(t for t, _ in entries) + 2.0) if entries else 0.0
        return gameplay_models.Chart(notes=notes, tempo=tempo, duration_seconds=float(duration_seconds))

    return _make

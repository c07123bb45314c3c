import numpy as np
import pytest

from audio_source import SampleBuffer
from config import DetectorConfig
import gameplay_models
import onset_detector
from onset_detector import InvalidTempo, OnsetDetector, detect, estimate_tempo, fallback_beat_times, frame_energies, validate_tempo

from conftest import PULSE_SAMPLE_RATE, pulse_samples

HOP_SECONDS = 512 / PULSE_SAMPLE_RATE


def test_pulses_at_half_second_intervals_are_recovered(pulse_buffer):
    track = detect(pulse_buffer)

    assert not track.used_fallback
    assert track.fallback_reason is None
    expected = [0.5 * index for index in range(1, 20)]
    assert len(track.beat_times) == len(expected)
    for detected_time, expected_time in zip(track.beat_times, expected):
        assert abs(detected_time - expected_time) <= HOP_SECONDS
    assert track.tempo == 120


@pytest.mark.parametrize("sample_rate", [PULSE_SAMPLE_RATE, 44100])
def test_pulses_are_recovered_at_common_sample_rates(sample_rate):
    track = detect(SampleBuffer.mono(pulse_samples(10.0, 0.5, sample_rate), sample_rate))

    assert not track.used_fallback
    assert len(track.beat_times) >= 18
    nearest_pulses = [round(detected_time / 0.5) * 0.5 for detected_time in track.beat_times]
    assert len(set(nearest_pulses)) == len(nearest_pulses)
    for detected_time, pulse_time in zip(track.beat_times, nearest_pulses):
        assert detected_time == pytest.approx(pulse_time, abs=512 / sample_rate)
    assert track.tempo == 120


def test_dense_onsets_are_debounced_to_minimum_gap():
    buffer = SampleBuffer.mono(pulse_samples(6.0, 0.125), PULSE_SAMPLE_RATE)
    track = detect(buffer)

    assert not track.used_fallback
    gaps = np.diff(track.beat_times)
    assert np.all(gaps >= 0.23)
    # Every second 0.125 s pulse falls inside the debounce window.
    assert gaps == pytest.approx(np.full(gaps.shape, 0.25))


def test_noise_bursts_respect_minimum_gap():
    random_generator = np.random.default_rng(7)
    samples = random_generator.normal(0.0, 0.05, 44100 * 8)
    for start in random_generator.integers(0, samples.shape[0] - 4096, size=40):
        samples[start:start + 2048] += random_generator.normal(0.0, 0.8, 2048)
    track = detect(SampleBuffer.mono(samples, 44100))

    assert len(track.beat_times) >= 4
    assert all(later - earlier >= 0.23 for earlier, later in zip(track.beat_times, track.beat_times[1:]))


def test_silent_buffer_uses_fallback_grid(silent_buffer):
    track = detect(silent_buffer)

    assert track.used_fallback
    assert track.fallback_reason == gameplay_models.FALLBACK_SPARSE_CHART
    assert track.beat_times == (0.0, 0.5, 1.0, 1.5, 2.0, 2.5)
    assert track.tempo == 120


@pytest.mark.parametrize("samples", [[], [0.3] * 100, [0.0] * 2000])
def test_empty_or_short_buffer_does_not_raise(samples):
    track = detect(SampleBuffer.mono(samples, 44100))

    assert track.used_fallback
    assert len(track.beat_times) > 0
    gaps = np.diff(track.beat_times)
    assert gaps == pytest.approx(np.full(gaps.shape, 0.5))


def test_unknown_duration_grid_spans_two_minutes():
    beat_times = fallback_beat_times(None)

    assert len(beat_times) == 240
    assert beat_times[0] == 0.0
    assert beat_times[-1] == pytest.approx(119.5)
    assert fallback_beat_times(0.0) == beat_times


def test_non_finite_samples_are_ignored(pulse_buffer):
    samples = np.array(pulse_buffer.first_channel())
    samples[100] = np.nan
    track = detect(SampleBuffer.mono(samples, PULSE_SAMPLE_RATE))

    assert not track.used_fallback
    assert track.tempo == 120


def test_frame_energies_only_uses_full_windows():
    assert frame_energies(np.ones(2048), 1024, 512).shape == (2,)
    assert frame_energies(np.ones(2049), 1024, 512).shape == (3,)
    assert frame_energies(np.ones(1024), 1024, 512).shape == (0,)
    assert frame_energies(np.full(4096, 0.5), 1024, 512) == pytest.approx(np.full(6, 0.5))


def test_estimate_tempo_uses_average_interval():
    assert estimate_tempo([1.0]) is None
    assert estimate_tempo([]) is None
    assert estimate_tempo([0.0, 0.5, 1.0, 1.5]) == 120
    assert estimate_tempo([0.0, 1.0, 2.0]) == 60


def test_validate_tempo_bounds():
    assert validate_tempo(40, min_bpm=40, max_bpm=300) == 40
    assert validate_tempo(300, min_bpm=40, max_bpm=300) == 300
    with pytest.raises(InvalidTempo):
        validate_tempo(39, min_bpm=40, max_bpm=300)
    with pytest.raises(InvalidTempo):
        validate_tempo(301, min_bpm=40, max_bpm=300)


def test_out_of_range_tempo_is_discarded_but_beats_kept(pulse_buffer):
    detector = OnsetDetector(DetectorConfig(max_tempo_bpm=100))
    track = detector.detect(pulse_buffer)

    assert track.tempo is None
    assert not track.used_fallback
    assert len(track.beat_times) == 19


def test_detection_is_deterministic_and_uses_first_channel(pulse_buffer):
    stereo = SampleBuffer(
        sample_rate=PULSE_SAMPLE_RATE,
        channels=(pulse_buffer.first_channel(), np.zeros(pulse_buffer.frame_count)),
    )

    assert detect(stereo) == detect(pulse_buffer)
    assert detect(pulse_buffer) == detect(pulse_buffer)


def test_module_self_check():
    onset_detector._run_unit_tests()

"""Unit tests for sample-rate detection."""
import pytest

from future_self.services.audio.sample_rate import (
    SOURCE_DEFAULT,
    SOURCE_HEURISTIC,
    SOURCE_METADATA,
    SampleRateDetector,
    sample_rate_from_metadata,
)


class TestSampleRateDetector:
    """Test chunk-size inference and metadata override."""

    def test_default_before_enough_observations(self):
        detector = SampleRateDetector(default_rate=16000)
        for _ in range(4):
            assert detector.observe_chunk(3840) is None

        assert detector.sample_rate == 16000
        assert detector.source == SOURCE_DEFAULT
        assert not detector.is_determined

    def test_stable_3840_byte_chunks_infer_48khz(self):
        detector = SampleRateDetector()
        results = [detector.observe_chunk(3840) for _ in range(5)]

        assert results[:4] == [None, None, None, None]
        assert results[4] == 48000
        assert detector.sample_rate == 48000
        assert detector.source == SOURCE_HEURISTIC

    @pytest.mark.parametrize(
        "size,rate",
        [(640, 8000), (1280, 16000), (1920, 24000), (3528, 44100), (3840, 48000)],
    )
    def test_known_bands(self, size, rate):
        detector = SampleRateDetector()
        for _ in range(5):
            detector.observe_chunk(size)
        assert detector.sample_rate == rate

    def test_small_jitter_within_band(self):
        detector = SampleRateDetector()
        for size in (1275, 1280, 1285, 1280, 1282):
            detector.observe_chunk(size)
        assert detector.sample_rate == 16000

    def test_unstable_sizes_do_not_decide(self):
        detector = SampleRateDetector()
        for size in (640, 3840, 640, 3840, 640):
            detector.observe_chunk(size)

        assert not detector.is_determined
        assert detector.sample_rate == 16000

    def test_unknown_band_uses_default(self):
        detector = SampleRateDetector(default_rate=24000)
        for _ in range(5):
            detector.observe_chunk(1000)

        assert detector.is_determined
        assert detector.sample_rate == 24000

    def test_metadata_wins_over_heuristic(self):
        detector = SampleRateDetector()
        for _ in range(5):
            detector.observe_chunk(3840)

        assert detector.observe_metadata({"type": "audio-format", "sampleRate": 8000}) == 8000
        assert detector.sample_rate == 8000
        assert detector.source == SOURCE_METADATA

        # Further chunks never override metadata
        for _ in range(5):
            assert detector.observe_chunk(1280) is None
        assert detector.sample_rate == 8000

    def test_metadata_without_rate_is_ignored(self):
        detector = SampleRateDetector()
        assert detector.observe_metadata({"type": "hello"}) is None
        assert detector.source == SOURCE_DEFAULT


class TestSampleRateFromMetadata:

    @pytest.mark.parametrize(
        "message,expected",
        [
            ({"sampleRate": 24000}, 24000),
            ({"sample_rate": "16000"}, 16000),
            ({"format": {"sampleRate": 48000}}, 48000),
            ({"sampleRate": "fast"}, None),
            ({"sampleRate": 0}, None),
            ({}, None),
        ],
    )
    def test_keys(self, message, expected):
        assert sample_rate_from_metadata(message) == expected

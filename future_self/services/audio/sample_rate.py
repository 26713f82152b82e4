"""Sample-rate determination for the monitor feed.

The feed does not always announce its format. When it does not, the rate is
inferred from the size of consecutive chunks: the platform sends 20 ms frames
of interleaved stereo 16-bit PCM, so a stable chunk size maps to a rate
(bytes = rate * 0.02 * 2 channels * 2 bytes). This is best-effort: jittery
chunking or a different frame duration defeats it, and the default rate is
used instead.
"""
import logging
from collections import deque
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

# Stable stereo chunk size (bytes) -> sample rate (Hz)
CHUNK_SIZE_SAMPLE_RATES: Dict[int, int] = {
    640: 8000,
    1280: 16000,
    1920: 24000,
    3528: 44100,
    3840: 48000,
}

SOURCE_DEFAULT = "default"
SOURCE_HEURISTIC = "heuristic"
SOURCE_METADATA = "metadata"


def sample_rate_from_metadata(message: Mapping[str, Any]) -> Optional[int]:
    """Pull an explicit sample rate out of a metadata frame, if present."""
    candidates = [
        message.get("sampleRate"),
        message.get("sample_rate"),
    ]
    fmt = message.get("format")
    if isinstance(fmt, Mapping):
        candidates.extend([fmt.get("sampleRate"), fmt.get("sample_rate")])

    for value in candidates:
        try:
            rate = int(value)
        except (TypeError, ValueError):
            continue
        if rate > 0:
            return rate
    return None


class SampleRateDetector:
    """Decides the sample rate of a feed from metadata or chunk sizes."""

    def __init__(
        self,
        default_rate: int = 16000,
        min_observations: int = 5,
        stability_tolerance: float = 0.02,
        band_tolerance: float = 0.05,
        size_table: Optional[Mapping[int, int]] = None,
    ):
        self.default_rate = default_rate
        self.min_observations = min_observations
        self.stability_tolerance = stability_tolerance
        self.band_tolerance = band_tolerance
        self.size_table = dict(size_table or CHUNK_SIZE_SAMPLE_RATES)
        self._sizes: deque = deque(maxlen=min_observations)
        self._rate: Optional[int] = None
        self._source = SOURCE_DEFAULT

    @property
    def sample_rate(self) -> int:
        """Best current answer: metadata, then heuristic, then default."""
        return self._rate or self.default_rate

    @property
    def source(self) -> str:
        return self._source

    @property
    def is_determined(self) -> bool:
        return self._rate is not None

    def observe_metadata(self, message: Mapping[str, Any]) -> Optional[int]:
        """Adopt an explicit rate from metadata. Always wins over the heuristic."""
        rate = sample_rate_from_metadata(message)
        if rate is None:
            return None
        if rate != self._rate or self._source != SOURCE_METADATA:
            logger.info(f"[AUDIO FORMAT] Sample rate from metadata: {rate} Hz")
        self._rate = rate
        self._source = SOURCE_METADATA
        return rate

    def observe_chunk(self, size: int) -> Optional[int]:
        """Record a chunk size. Returns the rate the first time it is inferred."""
        if self._rate is not None or size <= 0:
            return None

        self._sizes.append(size)
        if len(self._sizes) < self.min_observations:
            return None

        mean = sum(self._sizes) / len(self._sizes)
        if any(abs(s - mean) > mean * self.stability_tolerance for s in self._sizes):
            return None

        rate = self._lookup(mean)
        self._rate = rate
        self._source = SOURCE_HEURISTIC
        logger.info(
            f"[AUDIO FORMAT] Chunk size stabilised at {mean:.0f} bytes -> {rate} Hz"
        )
        return rate

    def _lookup(self, mean_size: float) -> int:
        for size, rate in self.size_table.items():
            if abs(mean_size - size) <= size * self.band_tolerance:
                return rate
        logger.info(
            f"[AUDIO FORMAT] No known band for {mean_size:.0f}-byte chunks, "
            f"using default {self.default_rate} Hz"
        )
        return self.default_rate

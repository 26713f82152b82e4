"""Unit tests for channel extraction."""
import struct

from future_self.services.audio.channels import (
    extract_first_channel,
    extract_first_channel_chunks,
)


def interleave(caller, assistant) -> bytes:
    return b"".join(struct.pack("<hh", left, right) for left, right in zip(caller, assistant))


class TestExtractFirstChannel:
    """Test isolating the caller's channel."""

    def test_keeps_even_indexed_samples(self):
        """N stereo sample pairs produce exactly N mono samples from channel 0."""
        caller = [100, -200, 300, -32768, 32767]
        assistant = [1, 2, 3, 4, 5]

        mono = extract_first_channel(interleave(caller, assistant))

        assert len(mono) == len(caller) * 2
        assert list(struct.unpack(f"<{len(caller)}h", mono)) == caller

    def test_deterministic(self):
        pcm = interleave([5, 6, 7], [8, 9, 10])
        assert extract_first_channel(pcm) == extract_first_channel(pcm)

    def test_empty_input(self):
        assert extract_first_channel(b"") == b""

    def test_drops_trailing_odd_byte(self):
        pcm = interleave([42], [7]) + b"\x01"
        assert extract_first_channel(pcm) == struct.pack("<h", 42)

    def test_chunks_are_extracted_independently(self):
        """Each chunk starts on a frame boundary, so per-chunk extraction is exact."""
        chunk_a = interleave([1, 2], [-1, -2])
        chunk_b = interleave([3], [-3])

        mono = extract_first_channel_chunks([chunk_a, chunk_b])

        assert struct.unpack("<3h", mono) == (1, 2, 3)

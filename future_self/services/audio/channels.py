"""PCM channel handling."""
from typing import Iterable

import numpy as np

SAMPLE_WIDTH = 2  # 16-bit PCM
PCM16_LE = np.dtype("<i2")


def extract_first_channel(pcm: bytes) -> bytes:
    """Keep the even-indexed samples of interleaved stereo 16-bit LE PCM.

    The monitor feed mixes the caller on channel 0 and the assistant on
    channel 1, so this isolates the caller's voice. A trailing odd byte is
    dropped.
    """
    usable = len(pcm) - (len(pcm) % SAMPLE_WIDTH)
    if usable <= 0:
        return b""
    samples = np.frombuffer(pcm, dtype=PCM16_LE, count=usable // SAMPLE_WIDTH)
    return samples[0::2].astype(PCM16_LE).tobytes()


def extract_first_channel_chunks(chunks: Iterable[bytes]) -> bytes:
    """Extract channel 0 from each chunk independently and concatenate."""
    return b"".join(extract_first_channel(chunk) for chunk in chunks)

"""WAV container packaging for mono 16-bit PCM."""
import struct
from typing import NamedTuple

WAV_HEADER_SIZE = 44
PCM_FORMAT_TAG = 1
FMT_CHUNK_SIZE = 16

# RIFF header, fmt subchunk, data subchunk header
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


class WavInfo(NamedTuple):
    """Fields recovered from a canonical 44-byte WAV header."""

    format_tag: int
    channels: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bits_per_sample: int
    riff_size: int
    data_size: int


def build_wav(
    pcm: bytes, sample_rate: int, channels: int = 1, bits_per_sample: int = 16
) -> bytes:
    """Wrap raw PCM in a canonical 44-byte-header WAV container."""
    if sample_rate <= 0:
        raise ValueError(f"sample_rate must be positive, got {sample_rate}")

    data_size = len(pcm)
    block_align = channels * bits_per_sample // 8
    byte_rate = sample_rate * block_align

    header = _HEADER.pack(
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        FMT_CHUNK_SIZE,
        PCM_FORMAT_TAG,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b"data",
        data_size,
    )
    return header + pcm


def parse_wav_header(data: bytes) -> WavInfo:
    """Parse a canonical 44-byte WAV header."""
    if len(data) < WAV_HEADER_SIZE:
        raise ValueError(f"WAV data too short: {len(data)} bytes")

    (
        riff,
        riff_size,
        wave,
        fmt,
        fmt_size,
        format_tag,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        data_marker,
        data_size,
    ) = _HEADER.unpack_from(data)

    if riff != b"RIFF" or wave != b"WAVE" or fmt != b"fmt " or data_marker != b"data":
        raise ValueError("Not a canonical PCM WAV header")
    if fmt_size != FMT_CHUNK_SIZE:
        raise ValueError(f"Unexpected fmt chunk size: {fmt_size}")

    return WavInfo(
        format_tag=format_tag,
        channels=channels,
        sample_rate=sample_rate,
        byte_rate=byte_rate,
        block_align=block_align,
        bits_per_sample=bits_per_sample,
        riff_size=riff_size,
        data_size=data_size,
    )


def wav_duration_seconds(data: bytes) -> float:
    info = parse_wav_header(data)
    if not info.byte_rate:
        return 0.0
    return info.data_size / info.byte_rate

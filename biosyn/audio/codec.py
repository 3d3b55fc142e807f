"""
PCM / base64 conversion utilities.

Pure, stateless transforms between base64 text, raw PCM16 little-endian
bytes, and float sample arrays.

Failure policy:
- Decoding never raises. A corrupt payload degrades to an empty byte
  string or a one-frame silent buffer, so one bad fragment becomes a
  micro-gap instead of ending playback.
- Odd byte counts lose their trailing byte (truncated, never padded).
"""

from __future__ import annotations

import base64
import binascii
import re

import numpy as np

from biosyn.audio.frames import AudioBuffer, PcmBlob
from biosyn.constants import (
    CAPTURE_MIME_TYPE,
    PCM_FULL_SCALE,
    PCM_MAX_SAMPLE,
    PCM_MIN_SAMPLE,
    PCM_SAMPLE_WIDTH_BYTES,
    SILENT_BUFFER_FRAMES,
)

_RATE_RE = re.compile(r"rate=(\d+)")


def decode_base64_to_bytes(text: str) -> bytes:
    """Decode base64 text; malformed input yields b"" instead of raising."""
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError, TypeError):
        return b""


def encode_bytes_to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def silent_buffer(channels: int, sample_rate: int) -> AudioBuffer:
    """Minimal silent buffer substituted for an undecodable segment."""
    return AudioBuffer(
        samples=np.zeros((max(channels, 1), SILENT_BUFFER_FRAMES), dtype=np.float32),
        sample_rate=sample_rate,
    )


def bytes_to_audio_buffer(pcm_bytes: bytes, sample_rate: int, channels: int) -> AudioBuffer:
    """
    Interpret PCM16 little-endian interleaved bytes as an AudioBuffer.

    - Trailing odd byte is dropped.
    - Samples are de-interleaved by channel count.
    - Each sample is normalized by 1/32768 into [-1.0, 1.0).
    """
    try:
        usable = len(pcm_bytes) - (len(pcm_bytes) % PCM_SAMPLE_WIDTH_BYTES)
        interleaved = np.frombuffer(pcm_bytes[:usable], dtype="<i2")

        frame_count = len(interleaved) // channels
        interleaved = interleaved[: frame_count * channels]

        planar = interleaved.reshape(frame_count, channels).T
        samples = planar.astype(np.float32) / PCM_FULL_SCALE
        return AudioBuffer(samples=np.ascontiguousarray(samples), sample_rate=sample_rate)
    except Exception:  # pylint: disable=broad-exception-caught
        return silent_buffer(channels, sample_rate)


def float_samples_to_pcm_bytes(samples: np.ndarray) -> bytes:
    """Scale [-1, 1] floats to clamped signed 16-bit little-endian bytes."""
    scaled = np.asarray(samples, dtype=np.float32) * PCM_FULL_SCALE
    clamped = np.clip(scaled, PCM_MIN_SAMPLE, PCM_MAX_SAMPLE)
    return clamped.astype("<i2").tobytes()


def float_samples_to_blob(samples: np.ndarray) -> PcmBlob:
    """Encode captured float samples for outbound transmission (16 kHz PCM)."""
    return PcmBlob(
        data=encode_bytes_to_base64(float_samples_to_pcm_bytes(samples)),
        mime_type=CAPTURE_MIME_TYPE,
    )


def parse_pcm_rate(mime_type: str | None, default: int) -> int:
    """Read the rate= parameter of a PCM mime descriptor."""
    if not mime_type:
        return default
    match = _RATE_RE.search(mime_type)
    if match is None:
        return default
    return int(match.group(1))

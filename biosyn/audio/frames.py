"""
Audio data primitives.

Pure data containers only.
No behavior beyond derived properties, no queues, no timing logic.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class AudioFrame:
    """
    One fixed-size block of captured microphone audio.

    sequence_num:
        Monotonic per capture stream, starting at 1. Arrival order is
        transmission order; frames are never reordered.

    samples:
        Mono float32 samples in [-1.0, 1.0].

    ts_ms:
        Wall-clock timestamp (milliseconds) when the block reached the
        event loop. Used for observability only.
    """
    sequence_num: int
    samples: np.ndarray
    sample_rate: int
    ts_ms: int


@dataclass(frozen=True)
class AudioBuffer:
    """
    Decoded, de-interleaved audio ready for scheduling.

    samples has shape (channels, frame_count), dtype float32.
    """
    samples: np.ndarray
    sample_rate: int

    @property
    def channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration_s(self) -> float:
        return self.frame_count / self.sample_rate


@dataclass(frozen=True)
class PcmBlob:
    """Base64 PCM payload tagged with its mime descriptor, ready to transmit."""
    data: str
    mime_type: str

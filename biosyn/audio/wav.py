"""WAV export for synthesized audio."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import soundfile as sf

from biosyn.audio.frames import AudioBuffer


def write_wav(buffer: AudioBuffer, path: str | Path) -> Path:
    """
    Write buffer as 16-bit PCM WAV.

    Samples are clamped to [-1, 1] before quantization.
    """
    out = Path(path)
    frames = np.clip(buffer.samples.T, -1.0, 1.0)
    sf.write(str(out), frames, buffer.sample_rate, subtype="PCM_16", format="WAV")
    return out

"""
BEHAVIOR-AS-CONSTANTS
---------------------
Single source of truth for the behavioral invariants of the perception core.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment-specific values (keys, URLs, model names) live in config.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Tuple

# =============================================================================
# PCM Wire Format (signed 16-bit little-endian)
# =============================================================================

PCM_SAMPLE_WIDTH_BYTES: Final[int] = 2
PCM_FULL_SCALE: Final[float] = 32768.0
PCM_MAX_SAMPLE: Final[int] = 32767
PCM_MIN_SAMPLE: Final[int] = -32768

# =============================================================================
# Capture (microphone -> remote)
# =============================================================================

CAPTURE_SAMPLE_RATE_HZ: Final[int] = 16_000
CAPTURE_CHANNELS: Final[int] = 1
CAPTURE_FRAME_SAMPLES: Final[int] = 4096
CAPTURE_MIME_TYPE: Final[str] = f"audio/pcm;rate={CAPTURE_SAMPLE_RATE_HZ}"

# Frames allowed to wait for a slow handler (~16 s at 4096 samples / 16 kHz).
# Reaching it means the consumer is stuck; only then is the oldest frame dropped.
CAPTURE_MAX_PENDING_FRAMES: Final[int] = 64

# =============================================================================
# Playback (remote synthesis -> speaker)
# =============================================================================

PLAYBACK_SAMPLE_RATE_HZ: Final[int] = 24_000
PLAYBACK_CHANNELS: Final[int] = 1

# Frames in the silent buffer substituted for an undecodable segment
SILENT_BUFFER_FRAMES: Final[int] = 1

# =============================================================================
# Visualizer (analyser node emulation)
# =============================================================================

ANALYSER_FFT_SIZE: Final[int] = 64
ANALYSER_MIN_DECIBELS: Final[float] = -100.0
ANALYSER_MAX_DECIBELS: Final[float] = -30.0
ANALYSER_SMOOTHING: Final[float] = 0.8

VISUALIZER_BANDS: Final[int] = 8
VISUALIZER_MIN_LEVEL: Final[float] = 4.0
VISUALIZER_MAX_LEVEL: Final[float] = 24.0

# =============================================================================
# Live dictation session
# =============================================================================

LIVE_DEFAULT_VOICE: Final[str] = "Kore"
LIVE_RESPONSE_MODALITY: Final[str] = "AUDIO"
LIVE_EVENT_Q_MAX_EVENTS: Final[int] = 256

# =============================================================================
# Profile synchronization
# =============================================================================

SYNC_DEBOUNCE_MS: Final[int] = 2_000
CONNECTIVITY_PROBE_INTERVAL_S: Final[float] = 15.0

# Logical cache keys (names kept compatible with existing browser caches)
CACHE_KEY_IDENTITY: Final[str] = "biosyn_auth_user"
CACHE_KEY_LAST_REPORT: Final[str] = "biosyn_last_report"
CACHE_KEY_CHAT_HISTORY: Final[str] = "biosyn_chat_history"
CACHE_KEY_SETTINGS: Final[str] = "biosyn_settings"

# =============================================================================
# Analysis retry policy (one-shot requests only, never the live channel)
# =============================================================================

ANALYSIS_MAX_ATTEMPTS: Final[int] = 3
ANALYSIS_RETRY_BASE_DELAY_MS: Final[int] = 1_000
ANALYSIS_RETRY_MULTIPLIER: Final[int] = 2

TRANSIENT_HTTP_STATUS_CODES: Final[Tuple[int, ...]] = (429, 500, 502, 503, 504)
AUTH_HTTP_STATUS_CODES: Final[Tuple[int, ...]] = (401, 403)

ANALYSIS_TEMPERATURE: Final[float] = 0.2

# =============================================================================
# Languages & defaults
# =============================================================================

SUPPORTED_LANGUAGES: Final[Tuple[str, ...]] = (
    "English",
    "Spanish",
    "French",
    "German",
    "Chinese",
    "Arabic",
    "Hindi",
    "Portuguese",
    "Japanese",
    "Telugu",
)
DEFAULT_LANGUAGE: Final[str] = "English"
DEFAULT_THEME: Final[str] = "dark"


# =============================================================================
# Convenience Bundles
# =============================================================================

@dataclass(frozen=True)
class PcmFormat:
    """
    Immutable bundle describing one PCM stream direction.

    This is a convenience wrapper for passing format metadata around;
    it is NOT a second source of truth.
    """
    sample_rate_hz: int
    channels: int
    sample_width_bytes: int = PCM_SAMPLE_WIDTH_BYTES

    @property
    def bytes_per_second(self) -> int:
        """Return number of PCM bytes per second of audio."""
        return self.sample_rate_hz * self.channels * self.sample_width_bytes


CAPTURE_FORMAT: Final[PcmFormat] = PcmFormat(CAPTURE_SAMPLE_RATE_HZ, CAPTURE_CHANNELS)
PLAYBACK_FORMAT: Final[PcmFormat] = PcmFormat(PLAYBACK_SAMPLE_RATE_HZ, PLAYBACK_CHANNELS)

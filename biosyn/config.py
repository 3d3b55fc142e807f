"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No orchestration logic
- No audio format constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from biosyn.constants import LIVE_DEFAULT_VOICE, SYNC_DEBOUNCE_MS


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the controller and the adapters it builds.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str
    enable_json_logs: bool

    # ------------------------------------------------------------------
    # One-shot oracle (analysis, chat, speech)
    # ------------------------------------------------------------------

    llm_provider: str
    analysis_model: str
    chat_model: str
    tts_model: str
    tts_voice: str
    openai_api_key: str | None
    gemini_api_key: str | None

    # ------------------------------------------------------------------
    # Live dictation channel
    # ------------------------------------------------------------------

    live_model: str
    live_voice: str
    live_endpoint: str

    # ------------------------------------------------------------------
    # Profile sync
    # ------------------------------------------------------------------

    profile_store_url: str
    cache_dir: Path
    sync_debounce_ms: int

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    @property
    def oracle_api_key(self) -> str | None:
        """Key for whichever provider serves the one-shot oracle."""
        if self.llm_provider.lower() == "gemini":
            return self.gemini_api_key
        return self.openai_api_key

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Missing credentials are left as None; the components that need
        them fail fast with AuthMissing before any network call.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            llm_provider=os.environ.get("LLM_PROVIDER", "openai"),
            analysis_model=os.environ.get("ANALYSIS_MODEL", "gpt-4o"),
            chat_model=os.environ.get("CHAT_MODEL", "gpt-4o-mini-search-preview"),
            tts_model=os.environ.get("TTS_MODEL", "gpt-4o-mini-tts"),
            tts_voice=os.environ.get("TTS_VOICE", "coral"),
            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            gemini_api_key=os.environ.get("GEMINI_API_KEY"),

            live_model=os.environ.get(
                "LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-12-2025"
            ),
            live_voice=os.environ.get("LIVE_VOICE", LIVE_DEFAULT_VOICE),
            live_endpoint=os.environ.get(
                "LIVE_ENDPOINT",
                "wss://generativelanguage.googleapis.com/ws/"
                "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent",
            ),

            profile_store_url=os.environ.get("PROFILE_STORE_URL", "http://localhost:3000"),
            cache_dir=Path(os.environ.get("BIOSYN_CACHE_DIR", "~/.biosyn/cache")).expanduser(),
            sync_debounce_ms=int(os.environ.get("SYNC_DEBOUNCE_MS", str(SYNC_DEBOUNCE_MS))),
        )

"""
Application controller.

Wires the state path (ProfileSyncEngine) and the audio paths
(LiveDictationSession via DictationToggle, ReportAudioNarrator) behind
the user-level actions of the application.

Responsibilities:
- Gate and run analysis / chat requests, storing their results
- Keep the most recent classified error for presentation
- Own the lifetime of the components it builds

Non-responsibilities:
- No wire protocols, no audio scheduling, no cache layout
"""

from __future__ import annotations

from typing import Any, Callable

from biosyn.adapters.live.base import LiveChannel, LiveSessionParams
from biosyn.adapters.live.gemini_live import GeminiLiveChannel
from biosyn.adapters.oracle.base import ChatReply, Oracle
from biosyn.adapters.oracle.openai_oracle import OpenAIOracle
from biosyn.adapters.oracle.prompts import (
    LIVE_INTAKE_INSTRUCTION_V1,
    REPORT_NARRATION_SCRIPT_V1,
    SpeechTone,
)
from biosyn.audio.capture import AudioCaptureStream, InputDevice
from biosyn.audio.clock import ClockFactory
from biosyn.config import AppConfig
from biosyn.errors import ClassifiedError, PerceptionError, classify_error
from biosyn.narration.narrator import ReportAudioNarrator
from biosyn.observability.logger import log_event
from biosyn.perception.analysis import SymptomAnalyzer
from biosyn.perception.report import HealthPerception, SymptomInput
from biosyn.session.dictation import DictationToggle, LiveDictationSession
from biosyn.storage.cache import FileStore, LocalPersistenceCache
from biosyn.sync.connectivity import ConnectivityMonitor
from biosyn.sync.engine import ProfileSyncEngine
from biosyn.sync.profile import ChatMessage, UserIdentity, UserProfile, UserSettings
from biosyn.sync.remote import RemoteProfileStore

ChannelFactory = Callable[[], LiveChannel]

REPORT_ITEM_ID = "report"


class AppController:
    """Top-level orchestration of one user's application session."""

    def __init__(
        self,
        *,
        engine: ProfileSyncEngine,
        analyzer: SymptomAnalyzer,
        narrator: ReportAudioNarrator,
        connectivity: ConnectivityMonitor,
        channel_factory: ChannelFactory,
        input_device: InputDevice,
        clock_factory: ClockFactory,
        live_voice: str,
        remote: RemoteProfileStore | None = None,
    ) -> None:
        self.engine = engine
        self.analyzer = analyzer
        self.narrator = narrator
        self.connectivity = connectivity
        self._channel_factory = channel_factory
        self._input_device = input_device
        self._clock_factory = clock_factory
        self._live_voice = live_voice
        self._remote = remote

        self.dictation = DictationToggle(self._new_dictation_session)
        self.symptom_draft = ""
        self.last_error: ClassifiedError | None = None

    @staticmethod
    def from_config(
        config: AppConfig,
        *,
        input_device: InputDevice,
        clock_factory: ClockFactory,
    ) -> AppController:
        """Build the production component graph."""
        connectivity = ConnectivityMonitor()
        remote = RemoteProfileStore(config.profile_store_url)
        cache = LocalPersistenceCache(FileStore(config.cache_dir))
        oracle: Oracle = OpenAIOracle.from_config(config)

        def _channel() -> LiveChannel:
            return GeminiLiveChannel(
                api_key=config.gemini_api_key,
                model=config.live_model,
                endpoint=config.live_endpoint,
            )

        return AppController(
            engine=ProfileSyncEngine(
                cache, remote, connectivity, debounce_ms=config.sync_debounce_ms
            ),
            analyzer=SymptomAnalyzer(oracle, connectivity),
            narrator=ReportAudioNarrator(oracle, clock_factory, voice=config.tts_voice),
            connectivity=connectivity,
            channel_factory=_channel,
            input_device=input_device,
            clock_factory=clock_factory,
            live_voice=config.live_voice,
            remote=remote,
        )

    @property
    def language(self) -> str:
        return self.engine.settings.language

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def startup(self, *, probe_connectivity: bool = False) -> None:
        await self.engine.restore()
        if probe_connectivity and self._remote is not None:
            self.connectivity.watch(self._remote.ping)

    async def shutdown(self) -> None:
        await self.dictation.stop()
        await self.narrator.stop()
        await self.connectivity.stop_watching()
        await self.engine.close()
        if self._remote is not None:
            await self._remote.aclose()

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def login(self, identity: UserIdentity) -> UserProfile:
        return await self.engine.login(identity)

    async def logout(self) -> None:
        await self.dictation.stop()
        await self.narrator.stop()
        self.symptom_draft = ""
        self.last_error = None
        await self.engine.logout()

    async def update_user(self, user: UserProfile) -> None:
        await self.engine.update_user(user)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def submit_symptoms(self, symptoms: SymptomInput) -> HealthPerception:
        """
        Analyze symptoms, store the report and record it in the history.

        Raises:
            PerceptionError subclasses; last_error holds the classification.
        """
        self.last_error = None
        try:
            report = await self.analyzer.analyze(symptoms)
        except PerceptionError as e:
            self._record_error("submit_symptoms", e)
            raise

        await self.engine.record_analysis(symptoms.description, report)
        return report

    def reset(self) -> None:
        """Discard the current report (start a new assessment)."""
        self.engine.set_report(None)
        self.symptom_draft = ""

    def view_history_report(self, item_id: str) -> dict[str, Any] | None:
        """Make a past report the current one. Returns None for an unknown id."""
        user = self.engine.user
        if user is None:
            return None
        for item in user.health_history:
            if item.id == item_id:
                self.engine.set_report(item.full_report)
                return item.full_report
        return None

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def send_chat_message(self, text: str, image: str | None = None) -> ChatReply:
        """
        Append the user's message, ask the assistant, append the reply.

        On failure the user's message stays in the history and the error
        propagates.
        """
        history = self.engine.chat_history
        self.engine.append_chat_message(ChatMessage(role="user", text=text, image=image))

        self.last_error = None
        try:
            reply = await self.analyzer.chat(history, text, self.language, image)
        except PerceptionError as e:
            self._record_error("send_chat_message", e)
            raise

        self.engine.append_chat_message(
            ChatMessage(role="model", text=reply.text, sources=list(reply.sources))
        )
        return reply

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    async def toggle_dictation(self) -> LiveDictationSession | None:
        self.last_error = None
        try:
            return await self.dictation.toggle()
        except PerceptionError as e:
            self._record_error("toggle_dictation", e)
            raise

    async def speak_report(
        self,
        tone: SpeechTone | None = None,
        voice: str | None = None,
    ) -> None:
        """Narrate a summary of the current report (toggle)."""
        report = self.engine.report
        if report is None:
            return
        script = REPORT_NARRATION_SCRIPT_V1.format(
            language=report.get("language", self.language),
            severity=report.get("severity", ""),
            specialist=report.get("recommendedSpecialist", ""),
            causes=", ".join(report.get("potentialCauses") or []),
        )
        await self._speak(script, REPORT_ITEM_ID, tone, voice)

    async def speak_chat_message(self, index: int, voice: str | None = None) -> None:
        """Narrate one chat message (toggle)."""
        history = self.engine.chat_history
        if not 0 <= index < len(history):
            return
        await self._speak(history[index].text, f"chat:{index}", None, voice)

    # ------------------------------------------------------------------
    # Settings pass-throughs
    # ------------------------------------------------------------------

    def accept_disclaimer(self) -> None:
        self.engine.accept_disclaimer()

    def finish_onboarding(self) -> None:
        self.engine.finish_onboarding()

    def set_language(self, language: str) -> None:
        self.engine.set_language(language)

    def update_settings(self, settings: UserSettings) -> None:
        self.engine.update_settings(settings)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _speak(
        self,
        text: str,
        item_id: str,
        tone: SpeechTone | None,
        voice: str | None,
    ) -> None:
        self.last_error = None
        try:
            await self.narrator.speak(text, item_id=item_id, tone=tone, voice=voice)
        except PerceptionError as e:
            self._record_error("speak", e)
            raise

    def _new_dictation_session(self) -> LiveDictationSession:
        params = LiveSessionParams(
            language=self.language,
            voice=self._live_voice,
            system_instruction=LIVE_INTAKE_INSTRUCTION_V1.format(language=self.language),
        )
        return LiveDictationSession(
            self._channel_factory(),
            AudioCaptureStream(self._input_device),
            self._clock_factory,
            params,
            on_transcript=self._on_transcript,
            initial_transcript=self.symptom_draft,
        )

    def _on_transcript(self, text: str) -> None:
        self.symptom_draft = text

    def _record_error(self, action: str, error: PerceptionError) -> None:
        classified = classify_error(error)
        self.last_error = classified
        log_event({
            "event_type": "ACTION_FAILED",
            "action": action,
            "category": classified.category.value,
            "error": repr(error),
        })

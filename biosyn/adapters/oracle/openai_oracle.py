"""
OpenAI-compatible oracle adapter.

Serves report generation, grounded chat and one-shot speech through
openai.AsyncOpenAI. The Gemini provider is reached through its
OpenAI-compatible endpoint with the same client.

Design notes:
- SDK retries are disabled; the analysis path owns the retry policy.
- openai.* exceptions never leave this module.
- Responsible ONLY for talking to the provider; parsing and validation
  of reports happens in perception/report.py.
"""

from __future__ import annotations

from typing import Any, NoReturn, Sequence

import openai
from openai import AsyncOpenAI

from biosyn.adapters.oracle.base import ChatReply, Oracle
from biosyn.adapters.oracle.prompts import (
    ANALYSIS_SYSTEM_PROMPT_V1,
    ANALYSIS_USER_PROMPT_V1,
    CHAT_SYSTEM_PROMPT_V1,
    TONE_INSTRUCTIONS,
    SpeechTone,
)
from biosyn.audio.codec import encode_bytes_to_base64
from biosyn.config import AppConfig
from biosyn.constants import (
    ANALYSIS_TEMPERATURE,
    AUTH_HTTP_STATUS_CODES,
    TRANSIENT_HTTP_STATUS_CODES,
)
from biosyn.errors import (
    AuthMissing,
    ContentRejected,
    MalformedResponse,
    PerceptionError,
    TransientServerOverload,
)
from biosyn.observability.logger import log_event
from biosyn.perception.report import SymptomInput
from biosyn.sync.profile import ChatMessage, GroundingSource

GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"

# Raw PCM from the speech endpoint: 24 kHz, 16-bit signed LE, mono.
_SPEECH_FORMAT = "pcm"


def build_llm_client(config: AppConfig) -> AsyncOpenAI:
    """Build an LLM client with the provider selected by environment variables."""
    if config.llm_provider.lower() == "gemini":
        return AsyncOpenAI(
            api_key=config.gemini_api_key,
            base_url=GEMINI_OPENAI_BASE_URL,
            max_retries=0,
        )

    return AsyncOpenAI(api_key=config.openai_api_key, max_retries=0)


def _image_url(image: str) -> str:
    if image.startswith("data:"):
        return image
    return f"data:image/jpeg;base64,{image}"


def _raise_translated(e: openai.OpenAIError, operation: str) -> NoReturn:
    """Map an SDK exception onto the error taxonomy."""
    if isinstance(e, openai.APIConnectionError):
        # includes APITimeoutError
        raise TransientServerOverload(f"{operation}: {e!r}") from e

    if isinstance(e, openai.APIStatusError):
        status = e.status_code
        if status in TRANSIENT_HTTP_STATUS_CODES:
            raise TransientServerOverload(f"{operation}: HTTP {status}", status_code=status) from e
        if status in AUTH_HTTP_STATUS_CODES:
            raise AuthMissing(f"{operation}: API key is missing or invalid") from e
        raise PerceptionError(f"{operation}: HTTP {status}") from e

    raise PerceptionError(f"{operation}: {e!r}") from e


class OpenAIOracle(Oracle):
    """Oracle backed by an OpenAI-compatible API."""

    def __init__(
        self,
        *,
        client: Any | None,
        analysis_model: str,
        chat_model: str,
        tts_model: str,
        api_key: str | None,
    ) -> None:
        """
        Args:
            client:
                AsyncOpenAI (or a compatible object). None when no key is
                configured; every request then raises AuthMissing.
            api_key:
                The key the client was built with; only its presence is
                checked here.
        """
        self._client = client
        self._analysis_model = analysis_model
        self._chat_model = chat_model
        self._tts_model = tts_model
        self._api_key = api_key

    @staticmethod
    def from_config(config: AppConfig) -> OpenAIOracle:
        return OpenAIOracle(
            client=build_llm_client(config) if config.oracle_api_key else None,
            analysis_model=config.analysis_model,
            chat_model=config.chat_model,
            tts_model=config.tts_model,
            api_key=config.oracle_api_key,
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self._api_key) and self._client is not None

    def _require_client(self, operation: str) -> Any:
        if not self.has_credentials:
            raise AuthMissing(f"{operation}: API key is missing")
        return self._client

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    async def generate_report(self, symptoms: SymptomInput) -> str:
        user_text = ANALYSIS_USER_PROMPT_V1.format(
            age=symptoms.age,
            gender=symptoms.gender,
            description=symptoms.description,
            duration=symptoms.duration,
            medical_history=symptoms.medical_history or "None reported",
        )
        user_content: list[dict[str, Any]] = [{"type": "text", "text": user_text}]
        if symptoms.image:
            user_content.append({
                "type": "image_url",
                "image_url": {"url": _image_url(symptoms.image)},
            })

        messages = [
            {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT_V1.format(language=symptoms.language)},
            {"role": "user", "content": user_content},
        ]

        try:
            response = await self._require_client("generate_report").chat.completions.create(
                model=self._analysis_model,
                messages=messages,
                temperature=ANALYSIS_TEMPERATURE,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as e:
            _raise_translated(e, "generate_report")

        choice = response.choices[0]
        if choice.finish_reason == "content_filter":
            raise ContentRejected("report request was flagged by safety filters")

        text = choice.message.content
        if not text:
            raise MalformedResponse("oracle returned an empty report")

        log_event({
            "event_type": "ORACLE_REPORT_RECEIVED",
            "model": self._analysis_model,
            "chars": len(text),
        })
        return text

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def chat(
        self,
        history: Sequence[ChatMessage],
        message: str,
        language: str,
        image: str | None = None,
    ) -> ChatReply:
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": CHAT_SYSTEM_PROMPT_V1.format(language=language)},
        ]
        for turn in history:
            messages.append({
                "role": "assistant" if turn.role == "model" else "user",
                "content": turn.text,
            })

        if image:
            messages.append({
                "role": "user",
                "content": [
                    {"type": "text", "text": message},
                    {"type": "image_url", "image_url": {"url": _image_url(image)}},
                ],
            })
        else:
            messages.append({"role": "user", "content": message})

        try:
            response = await self._require_client("chat").chat.completions.create(
                model=self._chat_model,
                messages=messages,
            )
        except openai.OpenAIError as e:
            _raise_translated(e, "chat")

        choice = response.choices[0]
        if choice.finish_reason == "content_filter":
            raise ContentRejected("chat message was flagged by safety filters")

        sources: list[GroundingSource] = []
        for annotation in getattr(choice.message, "annotations", None) or []:
            if getattr(annotation, "type", None) != "url_citation":
                continue
            citation = annotation.url_citation
            if citation.url:
                sources.append(GroundingSource(title=citation.title or "Source", uri=citation.url))

        return ChatReply(
            text=choice.message.content or "No response generated.",
            sources=sources,
        )

    # ------------------------------------------------------------------
    # Speech
    # ------------------------------------------------------------------

    async def synthesize_speech(
        self,
        text: str,
        voice: str,
        tone: SpeechTone | None = None,
    ) -> str | None:
        kwargs: dict[str, Any] = {
            "model": self._tts_model,
            "voice": voice,
            "input": text,
            "response_format": _SPEECH_FORMAT,
        }
        if tone is not None:
            kwargs["instructions"] = TONE_INSTRUCTIONS[tone]

        try:
            response = await self._require_client("synthesize_speech").audio.speech.create(**kwargs)
        except openai.OpenAIError as e:
            _raise_translated(e, "synthesize_speech")

        pcm = response.content
        if not pcm:
            return None
        return encode_bytes_to_base64(pcm)

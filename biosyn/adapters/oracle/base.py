"""
Remote oracle contract.

The oracle is opaque: it turns structured input into a report (raw
JSON text), a chat reply with citations, or one base64 PCM payload.

Key invariants:
- Adapters translate provider errors into the errors.py taxonomy.
- Adapters never retry; the analysis path owns the retry policy.
- Adapters never parse the report; perception/report.py does.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence, TYPE_CHECKING

from biosyn.adapters.oracle.prompts import SpeechTone

if TYPE_CHECKING:
    from biosyn.perception.report import SymptomInput
    from biosyn.sync.profile import ChatMessage, GroundingSource


@dataclass(frozen=True)
class ChatReply:
    """Assistant reply plus the web sources it cited."""
    text: str
    sources: list[GroundingSource] = field(default_factory=list)


class Oracle(ABC):
    """Abstract one-shot AI backend."""

    @property
    @abstractmethod
    def has_credentials(self) -> bool:
        """False when no API key is configured (checked before any request)."""
        raise NotImplementedError

    @abstractmethod
    async def generate_report(self, symptoms: SymptomInput) -> str:
        """Return the raw JSON text of a perception report."""
        raise NotImplementedError

    @abstractmethod
    async def chat(
        self,
        history: Sequence[ChatMessage],
        message: str,
        language: str,
        image: str | None = None,
    ) -> ChatReply:
        raise NotImplementedError

    @abstractmethod
    async def synthesize_speech(
        self,
        text: str,
        voice: str,
        tone: SpeechTone | None = None,
    ) -> str | None:
        """
        One-shot synthesis.

        Returns base64 PCM16 (24 kHz mono), or None when the provider
        returned no audio.
        """
        raise NotImplementedError

"""
Symptom analysis and chat request path.

Gating order for every request:
1. Offline        -> fail fast, no network call
2. AuthMissing    -> fail fast, no network call
3. Oracle call with bounded exponential backoff on
   TransientServerOverload; every other error propagates immediately
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Sequence, TypeVar

from biosyn.adapters.oracle.base import ChatReply, Oracle
from biosyn.errors import AuthMissing
from biosyn.observability.logger import log_event
from biosyn.orchestrator.retry import (
    get_retry_delay_ms,
    next_attempt,
    reset_attempt,
    should_retry,
)
from biosyn.perception.report import HealthPerception, SymptomInput, parse_report
from biosyn.sync.connectivity import ConnectivityMonitor
from biosyn.sync.profile import ChatMessage

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]


class SymptomAnalyzer:
    """One-shot oracle requests with connectivity/credential gating and retry."""

    def __init__(
        self,
        oracle: Oracle,
        connectivity: ConnectivityMonitor,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._oracle = oracle
        self._connectivity = connectivity
        self._sleep = sleep

    async def analyze(self, symptoms: SymptomInput) -> HealthPerception:
        """
        Produce a validated report.

        Raises:
            Offline, AuthMissing, TransientServerOverload (after the last
            attempt), MalformedResponse, ContentRejected, PerceptionError.
        """
        self._gate("analysis")
        text = await self._with_retry("analysis", lambda: self._oracle.generate_report(symptoms))
        return parse_report(text, symptoms.language)

    async def chat(
        self,
        history: Sequence[ChatMessage],
        message: str,
        language: str,
        image: str | None = None,
    ) -> ChatReply:
        self._gate("chat")
        return await self._with_retry(
            "chat",
            lambda: self._oracle.chat(history, message, language, image),
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _gate(self, operation: str) -> None:
        self._connectivity.require_online(operation)
        if not self._oracle.has_credentials:
            raise AuthMissing(f"{operation}: API key is missing")

    async def _with_retry(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        attempt = reset_attempt()
        while True:
            try:
                return await call()
            except Exception as e:
                if not should_retry(error=e, attempt=attempt):
                    raise
                delay_ms = get_retry_delay_ms(attempt)
                log_event({
                    "event_type": "ANALYSIS_RETRY_SCHEDULED",
                    "operation": operation,
                    "attempt": attempt.attempt + 1,
                    "delay_ms": delay_ms,
                    "error": repr(e),
                })
                await self._sleep(delay_ms / 1000)
                attempt = next_attempt(attempt)

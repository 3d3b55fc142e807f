"""
Gapless playback scheduling over a single output clock.

Algorithm:
    next_start = max(next_start, clock.now())
    schedule segment at next_start
    next_start += segment.duration

Guarantees:
- No overlap: a segment never starts before its predecessor has logically
  finished.
- Segments arriving faster than real time queue up back-to-back.
- A late segment (network stall) leaves a natural gap; the cursor never
  rewinds.
- The cursor advances only for segments that were actually scheduled.
"""

from __future__ import annotations

from biosyn.audio.clock import ClockState, OutputClock, ScheduledSource
from biosyn.audio.frames import AudioBuffer
from biosyn.observability.logger import log_event


class AudioPlaybackScheduler:
    """
    Arrival-ordered, gapless scheduler bound to one OutputClock.

    The scheduler exclusively owns its clock's timeline; it does not own
    the clock's lifetime (the session closes the clock).
    """

    def __init__(self, clock: OutputClock, *, session_id: str | None = None) -> None:
        self._clock = clock
        self._session_id = session_id
        self._next_start: float = 0.0
        self._active: set[ScheduledSource] = set()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def clock(self) -> OutputClock:
        return self._clock

    @property
    def next_start_time(self) -> float:
        return self._next_start

    @property
    def active_sources(self) -> frozenset[ScheduledSource]:
        return frozenset(self._active)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def schedule(self, buffer: AudioBuffer) -> ScheduledSource | None:
        """
        Schedule buffer immediately after everything already scheduled.

        Returns None (segment dropped) if the clock is closed or a
        suspended clock cannot be resumed.
        """
        clock = self._clock

        if clock.state is ClockState.CLOSED:
            self._log_drop("clock_closed")
            return None

        if clock.state is ClockState.SUSPENDED:
            try:
                await clock.resume()
            except Exception as e:  # pylint: disable=broad-exception-caught
                self._log_drop(f"resume_failed: {e!r}")
                return None

        start_at = max(self._next_start, clock.now())
        source = clock.start_source(buffer, start_at, on_ended=self._on_ended)

        self._next_start = start_at + buffer.duration_s
        self._active.add(source)
        return source

    def stop(self) -> None:
        """
        Halt every tracked source, forget them, and reset the cursor.

        This is the only way to cancel audio that is scheduled but has not
        played yet. Idempotent.
        """
        for source in list(self._active):
            try:
                source.stop()
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "PLAYBACK_SOURCE_STOP_FAILED",
                    "session_id": self._session_id,
                    "error": repr(e),
                })
        self._active.clear()
        self._next_start = 0.0

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _on_ended(self, source: ScheduledSource) -> None:
        self._active.discard(source)

    def _log_drop(self, reason: str) -> None:
        log_event({
            "event_type": "PLAYBACK_SEGMENT_DROPPED",
            "session_id": self._session_id,
            "reason": reason,
        })

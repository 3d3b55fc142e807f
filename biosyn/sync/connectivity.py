"""
Connectivity tracking.

Binary ONLINE / OFFLINE signal. The host feeds it (set_online /
set_offline) or lets watch() poll a probe in the background.

Rules:
- Remote-dependent operations call require_online() first and fail fast
  with Offline instead of attempting the request.
- Listeners run synchronously on each real transition, never on a
  repeated signal.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, Callable

from biosyn.constants import CONNECTIVITY_PROBE_INTERVAL_S
from biosyn.errors import Offline
from biosyn.observability.logger import log_event

Listener = Callable[[bool], None]
Probe = Callable[[], Awaitable[bool]]


class ConnectionStatus(Enum):
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"


class ConnectivityMonitor:
    """Current online/offline state plus transition listeners."""

    def __init__(self, *, online: bool = True) -> None:
        self._status = ConnectionStatus.ONLINE if online else ConnectionStatus.OFFLINE
        self._listeners: list[Listener] = []
        self._watch_task: asyncio.Task[None] | None = None

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_online(self) -> bool:
        return self._status is ConnectionStatus.ONLINE

    def set_online(self) -> None:
        self._set(ConnectionStatus.ONLINE)

    def set_offline(self) -> None:
        self._set(ConnectionStatus.OFFLINE)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a transition listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def require_online(self, operation: str) -> None:
        """
        Raises:
            Offline if the signal is currently OFFLINE.
        """
        if not self.is_online:
            raise Offline(operation)

    # ------------------------------------------------------------------
    # Background probe
    # ------------------------------------------------------------------

    def watch(self, probe: Probe, interval_s: float = CONNECTIVITY_PROBE_INTERVAL_S) -> None:
        """Poll probe() every interval_s. A raising probe counts as offline."""
        if self._watch_task is not None and not self._watch_task.done():
            return
        self._watch_task = asyncio.create_task(self._watch_loop(probe, interval_s))

    async def stop_watching(self) -> None:
        task = self._watch_task
        self._watch_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _watch_loop(self, probe: Probe, interval_s: float) -> None:
        while True:
            try:
                reachable = await probe()
            except asyncio.CancelledError:
                raise
            except Exception:  # pylint: disable=broad-exception-caught
                reachable = False

            if reachable:
                self.set_online()
            else:
                self.set_offline()
            await asyncio.sleep(interval_s)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _set(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        self._status = status
        log_event({
            "event_type": "CONNECTIVITY_CHANGED",
            "status": status.value,
        })
        online = status is ConnectionStatus.ONLINE
        for listener in list(self._listeners):
            listener(online)

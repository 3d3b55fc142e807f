# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from fakes import settle

from biosyn.errors import Offline
from biosyn.sync.connectivity import ConnectionStatus, ConnectivityMonitor


def test_listeners_fire_once_per_real_transition(logged):
    monitor = ConnectivityMonitor()
    seen: list[bool] = []
    monitor.subscribe(seen.append)

    monitor.set_offline()
    monitor.set_offline()
    monitor.set_online()

    assert seen == [False, True]
    assert [e["status"] for e in logged if e["event_type"] == "CONNECTIVITY_CHANGED"] == [
        "OFFLINE",
        "ONLINE",
    ]


def test_unsubscribe_stops_notifications():
    monitor = ConnectivityMonitor()
    seen: list[bool] = []
    unsubscribe = monitor.subscribe(seen.append)

    unsubscribe()
    unsubscribe()
    monitor.set_offline()

    assert seen == []


def test_require_online_fails_fast_when_offline():
    monitor = ConnectivityMonitor(online=False)

    assert monitor.status is ConnectionStatus.OFFLINE
    with pytest.raises(Offline) as info:
        monitor.require_online("analysis")
    assert info.value.operation == "analysis"

    monitor.set_online()
    monitor.require_online("analysis")


@pytest.mark.asyncio
async def test_watch_follows_probe_and_treats_errors_as_offline():
    monitor = ConnectivityMonitor()
    results = [False, RuntimeError("dns failure"), True]

    async def probe() -> bool:
        result = results.pop(0) if results else True
        if isinstance(result, Exception):
            raise result
        return result

    seen: list[bool] = []
    monitor.subscribe(seen.append)

    monitor.watch(probe, interval_s=0)
    await settle(30)
    await monitor.stop_watching()

    assert seen == [False, True]
    assert monitor.is_online


@pytest.mark.asyncio
async def test_stop_watching_without_watch_is_a_no_op():
    await ConnectivityMonitor().stop_watching()

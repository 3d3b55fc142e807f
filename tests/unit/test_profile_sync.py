# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json

import pytest

from fakes import ProfileServer

from biosyn.perception.report import HealthPerception
from biosyn.storage.cache import LocalPersistenceCache, MemoryStore
from biosyn.sync.connectivity import ConnectivityMonitor
from biosyn.sync.engine import ProfileSyncEngine, merge_chat_histories, merge_health_histories
from biosyn.sync.profile import ChatMessage, HealthHistoryItem, UserIdentity, UserSettings
from biosyn.sync.remote import RemoteProfileStore

ANA = UserIdentity(email="ana@example.com", name="Ana")

ALL_KEYS = {
    "biosyn_auth_user",
    "biosyn_last_report",
    "biosyn_chat_history",
    "biosyn_settings",
}


def build(*, online=True, profiles=None, initial=None, debounce_ms=20):
    server = ProfileServer(profiles)
    store = MemoryStore(initial)
    connectivity = ConnectivityMonitor(online=online)
    engine = ProfileSyncEngine(
        LocalPersistenceCache(store),
        RemoteProfileStore("http://profiles.test", client=server.client()),
        connectivity,
        debounce_ms=debounce_ms,
    )
    return engine, store, server, connectivity


def msg(role: str, text: str) -> ChatMessage:
    return ChatMessage(role=role, text=text)


# ---------------------------------------------------------------------
# Debounce
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_burst_of_mutations_produces_one_flush():
    engine, store, _, _ = build()
    await engine.login(ANA)

    for language in ["Spanish", "French", "German", "Hindi", "Telugu"]:
        engine.set_language(language)
    await engine.wait_idle()

    assert engine.flush_count == 1
    assert json.loads(store.data["biosyn_settings"])["language"] == "Telugu"

    engine.accept_disclaimer()
    await engine.wait_idle()

    assert engine.flush_count == 2
    assert json.loads(store.data["biosyn_settings"])["consented"] is True


@pytest.mark.asyncio
async def test_signed_out_mutations_do_not_flush():
    engine, store, server, _ = build()

    engine.set_language("Spanish")
    engine.append_chat_message(msg("user", "hi"))
    await engine.wait_idle()

    assert engine.flush_count == 0
    assert store.data == {}
    assert not server.posts
    assert engine.settings.language == "Spanish"


@pytest.mark.asyncio
async def test_flush_mirrors_report_and_chat_presence():
    engine, store, _, _ = build()
    await engine.login(ANA)

    engine.set_report({"severity": "Low", "language": "French"})
    engine.append_chat_message(msg("user", "hello"))
    await engine.wait_idle()

    assert json.loads(store.data["biosyn_last_report"])["severity"] == "Low"
    assert json.loads(store.data["biosyn_chat_history"]) == [{"role": "user", "text": "hello"}]
    assert engine.settings.language == "French"

    engine.set_report(None)
    engine.set_chat_history([])
    await engine.wait_idle()

    assert "biosyn_last_report" not in store.data
    assert "biosyn_chat_history" not in store.data


@pytest.mark.asyncio
async def test_new_mutation_does_not_cancel_an_in_flight_flush():
    engine, _, server, _ = build(profiles={"ana@example.com": {"email": "ana@example.com", "name": "Ana"}})
    await engine.login(ANA)
    await engine.wait_idle()
    server.posts.clear()

    gate = asyncio.Event()
    server.post_gate = gate
    server.post_entered.clear()

    engine.set_language("Spanish")
    await asyncio.wait_for(server.post_entered.wait(), timeout=1)
    assert engine.is_syncing

    engine.set_language("French")
    gate.set()
    await engine.wait_idle()

    assert [p["email"] for p in server.posts] == ["ana@example.com", "ana@example.com"]
    assert engine.flush_count == 3


@pytest.mark.asyncio
async def test_close_flushes_pending_changes_immediately():
    engine, store, _, _ = build(debounce_ms=60_000)
    await engine.login(ANA)
    engine.set_language("German")

    await engine.close()

    assert engine.flush_count == 1
    assert json.loads(store.data["biosyn_settings"])["language"] == "German"


# ---------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unknown_user_is_registered_immediately():
    engine, store, server, _ = build(debounce_ms=60_000)

    user = await engine.login(ANA)

    assert user.email == "ana@example.com"
    assert engine.authenticated
    assert server.gets == ["ana@example.com"]
    assert len(server.posts) == 1
    assert json.loads(store.data["biosyn_auth_user"])["email"] == "ana@example.com"
    await engine.close()


@pytest.mark.asyncio
async def test_existing_remote_profile_supersedes_identity():
    remote = {
        "email": "ana@example.com",
        "name": "Ana Remote",
        "healthHistory": [{
            "id": "1",
            "date": "2024-05-01",
            "symptoms": "cough",
            "perception": "Cold",
            "severity": "Low",
            "fullReport": {},
        }],
    }
    engine, _, server, _ = build(profiles={"ana@example.com": remote}, debounce_ms=60_000)

    user = await engine.login(ANA)

    assert user.name == "Ana Remote"
    assert user.health_history[0].perception == "Cold"
    assert not server.posts
    await engine.close()


@pytest.mark.asyncio
async def test_login_keeps_local_chat_when_remote_has_none():
    engine, _, _, _ = build(profiles={"ana@example.com": {"email": "ana@example.com", "name": "Ana"}})
    engine.append_chat_message(msg("user", "typed before sign-in"))

    await engine.login(ANA)

    assert engine.chat_history == [msg("user", "typed before sign-in")]
    await engine.close()


@pytest.mark.asyncio
async def test_login_adopts_remote_chat_when_local_is_empty():
    remote = {
        "email": "ana@example.com",
        "name": "Ana",
        "chatHistory": [{"role": "model", "text": "Welcome back"}],
    }
    engine, _, _, _ = build(profiles={"ana@example.com": remote})

    await engine.login(ANA)

    assert engine.chat_history == [msg("model", "Welcome back")]
    await engine.close()


def test_merge_appends_local_messages_missing_remotely():
    remote = [msg("model", "r1")]
    local = [msg("user", "l1"), msg("model", "r1")]

    assert merge_chat_histories(local, remote) == [msg("model", "r1"), msg("user", "l1")]
    assert merge_chat_histories([], remote) == remote
    assert merge_chat_histories(local, []) == local


@pytest.mark.asyncio
async def test_logout_clears_every_key_and_state():
    engine, store, server, _ = build()
    await engine.login(ANA)
    engine.set_report({"severity": "High"})
    engine.append_chat_message(msg("user", "hello"))
    await engine.wait_idle()
    assert set(store.data) == ALL_KEYS

    await engine.logout()

    assert store.data == {}
    assert engine.user is None
    assert engine.report is None
    assert engine.chat_history == []
    assert "ana@example.com" in server.profiles


@pytest.mark.asyncio
async def test_logout_waits_for_in_flight_flush():
    engine, store, server, _ = build(profiles={"ana@example.com": {"email": "ana@example.com", "name": "Ana"}})
    await engine.login(ANA)
    await engine.wait_idle()

    gate = asyncio.Event()
    server.post_gate = gate
    server.post_entered.clear()
    engine.set_language("Spanish")
    await asyncio.wait_for(server.post_entered.wait(), timeout=1)

    logout = asyncio.create_task(engine.logout())
    await asyncio.sleep(0)
    assert not logout.done()

    gate.set()
    await logout

    assert store.data == {}


# ---------------------------------------------------------------------
# Connectivity & remote failures
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_offline_session_stays_local_until_reconnect(logged):
    engine, store, server, connectivity = build(online=False)

    await engine.login(ANA)
    engine.set_language("Spanish")
    await engine.wait_idle()

    assert not server.gets and not server.posts
    assert json.loads(store.data["biosyn_settings"])["language"] == "Spanish"
    assert any(e["event_type"] == "PROFILE_SYNC_REMOTE_SKIPPED" for e in logged)

    connectivity.set_online()
    await engine.wait_idle()

    assert len(server.posts) == 1
    assert server.posts[0]["email"] == "ana@example.com"


@pytest.mark.asyncio
async def test_remote_failures_are_swallowed(logged):
    engine, store, server, _ = build()
    server.fail_posts = True

    await engine.login(ANA)
    engine.set_language("Hindi")
    await engine.wait_idle()

    assert json.loads(store.data["biosyn_settings"])["language"] == "Hindi"
    failures = [e for e in logged if e["event_type"] == "PROFILE_SYNC_REMOTE_FAILED"]
    assert {e["reason"] for e in failures} == {"register", "flush"}


# ---------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_restore_loads_every_key():
    initial = {
        "biosyn_auth_user": json.dumps({"email": "ana@example.com", "name": "Ana"}),
        "biosyn_last_report": json.dumps({"severity": "Low", "language": "Spanish"}),
        "biosyn_chat_history": json.dumps([{"role": "user", "text": "hola"}]),
        "biosyn_settings": json.dumps({"language": "French", "consented": True, "onboarded": True}),
    }
    engine, _, server, _ = build(online=False, initial=initial)

    await engine.restore()

    assert engine.user.email == "ana@example.com"
    assert engine.report == {"severity": "Low", "language": "Spanish"}
    assert engine.chat_history == [msg("user", "hola")]
    assert engine.settings.language == "French"
    assert engine.settings.consented and engine.settings.onboarded
    assert not server.gets


@pytest.mark.asyncio
async def test_restore_refreshes_identity_when_online():
    initial = {"biosyn_auth_user": json.dumps({"email": "ana@example.com", "name": "Ana"})}
    profiles = {"ana@example.com": {"email": "ana@example.com", "name": "Ana Remote"}}
    engine, store, _, _ = build(initial=initial, profiles=profiles)

    await engine.restore()

    assert engine.user.name == "Ana Remote"
    assert json.loads(store.data["biosyn_auth_user"])["name"] == "Ana Remote"


@pytest.mark.asyncio
async def test_restore_heals_undecodable_entries(logged):
    initial = {
        "biosyn_chat_history": json.dumps([{"text": "missing role"}]),
        "biosyn_settings": "{broken",
    }
    engine, store, _, _ = build(online=False, initial=initial)

    await engine.restore()

    assert engine.chat_history == []
    assert engine.settings.language == "English"
    assert store.data == {}
    assert sum(e["event_type"] == "CACHE_ENTRY_CORRUPT" for e in logged) == 2


# ---------------------------------------------------------------------
# History & settings
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_record_analysis_prepends_history_and_writes_through(report_dict):
    engine, store, server, _ = build(debounce_ms=60_000)
    await engine.login(ANA)
    report = HealthPerception.from_dict(report_dict, language="English")

    item = await engine.record_analysis("throbbing headache", report)

    assert engine.user.health_history[0] == item
    assert item.perception == "Tension headache"
    assert item.severity == "Moderate"
    assert item.full_report["potentialCauses"] == report_dict["potentialCauses"]
    assert server.posts[-1]["healthHistory"][0]["symptoms"] == "throbbing headache"
    assert json.loads(store.data["biosyn_auth_user"])["healthHistory"][0]["id"] == item.id
    assert engine.report["severity"] == "Moderate"
    await engine.close()


@pytest.mark.asyncio
async def test_record_analysis_signed_out_only_sets_report(report_dict):
    engine, _, server, _ = build()
    report = HealthPerception.from_dict(report_dict)

    assert await engine.record_analysis("cough", report) is None
    assert engine.report is not None
    assert not server.posts


@pytest.mark.asyncio
async def test_update_settings_switches_active_language():
    engine, store, _, _ = build()
    await engine.login(ANA)

    engine.update_settings(UserSettings(theme="light", default_language="Japanese"))
    await engine.wait_idle()

    saved = json.loads(store.data["biosyn_settings"])
    assert saved["language"] == "Japanese"
    assert saved["userSettings"]["theme"] == "light"


# ---------------------------------------------------------------------
# Remote record reconciliation
# ---------------------------------------------------------------------

PAST_VISIT = {
    "id": "1",
    "date": "2024-05-01",
    "symptoms": "cough",
    "perception": "Cold",
    "severity": "Low",
    "fullReport": {},
}

MALFORMED = {"ana@example.com": {"email": "ana@example.com", "healthHistory": [{"date": "x"}]}}


def visit(item_id: str) -> HealthHistoryItem:
    return HealthHistoryItem(
        id=item_id, date="2024-06-01", symptoms="s", perception="p", severity="Low", full_report={},
    )


@pytest.mark.asyncio
async def test_malformed_remote_profile_does_not_break_login(logged):
    engine, store, server, _ = build(profiles=MALFORMED)

    user = await engine.login(ANA)
    await engine.wait_idle()

    assert user.email == "ana@example.com"
    assert engine.authenticated
    assert json.loads(store.data["biosyn_auth_user"])["email"] == "ana@example.com"
    assert not server.posts
    reasons = {e["reason"] for e in logged if e["event_type"] == "PROFILE_SYNC_REMOTE_FAILED"}
    assert {"login_fetch", "flush_reconcile"} <= reasons


@pytest.mark.asyncio
async def test_malformed_remote_profile_keeps_cached_identity_on_restore(logged):
    initial = {"biosyn_auth_user": json.dumps({"email": "ana@example.com", "name": "Ana"})}
    engine, _, _, _ = build(initial=initial, profiles=MALFORMED)

    await engine.restore()

    assert engine.user.name == "Ana"
    assert any(
        e["event_type"] == "PROFILE_SYNC_REMOTE_FAILED" and e["reason"] == "restore_fetch"
        for e in logged
    )


@pytest.mark.asyncio
async def test_offline_login_keeps_remote_history_after_reconnect():
    remote = {"email": "ana@example.com", "name": "Ana", "healthHistory": [PAST_VISIT]}
    engine, _, server, connectivity = build(online=False, profiles={"ana@example.com": remote})

    await engine.login(ANA)
    engine.set_language("Spanish")
    await engine.wait_idle()
    assert not server.posts

    connectivity.set_online()
    await engine.wait_idle()

    assert server.gets == ["ana@example.com"]
    assert server.profiles["ana@example.com"]["healthHistory"] == [PAST_VISIT]
    assert engine.user.health_history[0].id == "1"


@pytest.mark.asyncio
async def test_offline_analysis_merges_with_remote_history(report_dict):
    remote = {"email": "ana@example.com", "name": "Ana", "healthHistory": [PAST_VISIT]}
    engine, _, server, connectivity = build(online=False, profiles={"ana@example.com": remote})
    await engine.login(ANA)

    item = await engine.record_analysis(
        "migraine", HealthPerception.from_dict(report_dict, language="English")
    )
    connectivity.set_online()
    await engine.wait_idle()

    saved = [h["id"] for h in server.profiles["ana@example.com"]["healthHistory"]]
    assert saved == [item.id, "1"]


@pytest.mark.asyncio
async def test_reconnect_registers_user_unknown_to_the_store(logged):
    engine, _, server, connectivity = build(online=False)
    await engine.login(ANA)

    connectivity.set_online()
    await engine.wait_idle()

    assert server.gets == ["ana@example.com"]
    assert [p["email"] for p in server.posts] == ["ana@example.com"]
    assert any(e["event_type"] == "PROFILE_SYNC_RECONCILED" for e in logged)


def test_health_merge_puts_local_only_items_first():
    local = [visit("3"), visit("1")]
    remote = [visit("2"), visit("1")]

    assert [h.id for h in merge_health_histories(local, remote)] == ["3", "2", "1"]
    assert merge_health_histories([], remote) == remote
